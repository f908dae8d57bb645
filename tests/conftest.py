from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine, text

from app.services.db_pool import ConnectionPool

EXAMES_ROWS = 10000


@pytest.fixture
def exames_db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'exames.db'}"
    engine = create_engine(url)
    start = date(2025, 1, 1)
    rows = [
        {
            "data_exame": (start + timedelta(days=i % 365)).isoformat(),
            "medico_solicitante": f"Dr. {i % 7}",
            "plano": f"Plano {i % 3}",
            "procedimento": f"Proc {i % 11}",
            "total": 100.0 + i % 50,
            "matmed": 10.0,
        }
        for i in range(EXAMES_ROWS)
    ]
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE exames (id INTEGER PRIMARY KEY, data_exame TEXT, medico_solicitante TEXT,"
                " plano TEXT, procedimento TEXT, total REAL, matmed REAL)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO exames (data_exame, medico_solicitante, plano, procedimento, total, matmed)"
                " VALUES (:data_exame, :medico_solicitante, :plano, :procedimento, :total, :matmed)"
            ),
            rows,
        )
    engine.dispose()
    return url


@pytest.fixture
def pool(exames_db_url):
    pool = ConnectionPool(exames_db_url, max_connections=2, acquire_timeout_s=1)
    yield pool
    pool.close_all()
