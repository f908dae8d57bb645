import asyncio
from datetime import date

import pytest
from fastapi.testclient import TestClient

from app.assistant.nodes.failure_node import ALL_FAILED_MESSAGE
from app.assistant.nodes.plan_node import NO_SQL_MESSAGE
from app.assistant.nodes.synthesize_node import SYNTHESIS_ERROR_MESSAGE
from app.assistant.services.plan_parser import PlannerResult
from app.assistant.services.planner_service import PlannerService
from app.core.exceptions import PlanningFailed, SynthesisFailed
from app.core.lifespan import build_services
from app.main import create_app
from app.schemas.chat import ChatState, Period
from app.services.chat_service import ChatService
from app.services.db_pool import ConnectionPool
from app.services.query_executor import QueryExecutor
from app.services.query_service import QueryService


class FixedPlanner:
    def __init__(self, sql=None, error=None, retries=0):
        self.llm = object()
        self.sql = sql or []
        self.error = error
        self.retries = retries

    async def plan(self, question, history=(), state=None, today=None):
        if self.error is not None:
            raise self.error
        return PlannerResult(sql=list(self.sql), hint="resposta"), self.retries


class RecordingSynthesizer:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def synthesize(self, question, results, hint=""):
        self.calls.append(list(results))
        if self.fail:
            raise SynthesisFailed("provider unavailable")
        ok = [r for r in results if r.success]
        return f"{len(ok)} consulta(s) com sucesso."


class CountingQueryService(QueryService):
    def __init__(self, executor):
        super().__init__(executor)
        self.executed = []

    async def run_sql(self, sql, max_rows):
        self.executed.append(sql)
        return await super().run_sql(sql, max_rows)


@pytest.fixture
def query_service(pool):
    return CountingQueryService(QueryExecutor(pool))


def _template_planner():
    planner = object.__new__(PlannerService)
    planner.llm = None
    planner.cache = None
    planner.max_retries = 2
    planner.history_window = 5
    return planner


def test_top_doctors_question_uses_template(query_service):
    service = ChatService(_template_planner(), query_service, RecordingSynthesizer())

    result = asyncio.run(
        service.send_message("Top 5 médicos do 1º semestre de 2025", [], today=date(2026, 1, 1))
    )

    assert result.retries == 0
    assert len(result.sql_queries) == 1
    assert "data_exame >= '2025-01-01' AND data_exame < '2025-07-01'" in result.sql_queries[0]
    assert result.updated_state.period.semester == 1
    assert result.updated_state.top_n == 5


def test_partial_failure_still_synthesizes(query_service):
    synthesizer = RecordingSynthesizer()
    planner = FixedPlanner(["SELECT COUNT(*) AS n FROM exames", "SELECT * FROM tabela_inexistente"])
    service = ChatService(planner, query_service, synthesizer)

    result = asyncio.run(service.send_message("Quantos exames temos?", []))

    assert len(result.sql_results) == 2
    assert [r.success for r in result.sql_results] == [True, False]
    assert result.sql_results[0].sample_rows == [{"n": 10000}]
    assert result.sql_results[1].error == "Database object not found"
    assert result.response == "1 consulta(s) com sucesso."
    assert result.error is None
    # the missing table is not retried
    assert len(query_service.executed) == 2
    assert len(synthesizer.calls) == 1


def test_successful_candidate_is_not_repaired(query_service):
    planner = FixedPlanner(["SELECT COUNT(*) AS n FROM exames WHERE Total > 0"])
    service = ChatService(planner, query_service, RecordingSynthesizer())

    result = asyncio.run(service.send_message("Quantos exames com valor?", []))

    # sqlite column names are case-insensitive, so the first attempt already succeeds
    assert result.sql_results[0].success
    assert len(query_service.executed) == 1


def test_failed_candidate_with_repair_runs_twice(query_service):
    planner = FixedPlanner(["SELECT SUM(Total) AS s FROM exames GROUP BY Mes"])
    service = ChatService(planner, query_service, RecordingSynthesizer())

    result = asyncio.run(service.send_message("Faturamento por mês", []))

    assert query_service.executed == [
        "SELECT SUM(Total) AS s FROM exames GROUP BY Mes",
        "SELECT SUM(total) AS s FROM exames GROUP BY mes",
    ]
    assert result.retries == 1
    assert result.sql_results[0].success is False
    assert result.response == ALL_FAILED_MESSAGE


def test_all_candidates_failing(query_service):
    synthesizer = RecordingSynthesizer()
    planner = FixedPlanner(["SELECT * FROM tabela_inexistente", "DELETE FROM exames"])
    service = ChatService(planner, query_service, synthesizer)

    result = asyncio.run(service.send_message("Apague tudo", []))

    assert result.response == ALL_FAILED_MESSAGE
    assert result.sql_queries == ["SELECT * FROM tabela_inexistente", "DELETE FROM exames"]
    assert [r.success for r in result.sql_results] == [False, False]
    assert "Database object not found" in result.error
    assert "SQL validation failed" in result.error
    assert synthesizer.calls == []


def test_planning_failure_reports_no_sql():
    planner = FixedPlanner(error=PlanningFailed("no SQL", attempts=3))
    service = ChatService(planner, None, RecordingSynthesizer())

    outcome = asyncio.run(service._invoke("???", [], None, None))

    assert outcome.status_code == 400
    assert outcome.response.response == NO_SQL_MESSAGE
    assert outcome.response.sql_queries == []
    assert outcome.response.retries == 2
    assert outcome.response.error


def test_synthesis_failure_keeps_sql_and_results(query_service):
    planner = FixedPlanner(["SELECT COUNT(*) AS n FROM exames"])
    service = ChatService(planner, query_service, RecordingSynthesizer(fail=True))

    outcome = asyncio.run(service._invoke("Quantos exames?", [], None, None))

    assert outcome.status_code == 500
    assert outcome.response.response == SYNTHESIS_ERROR_MESSAGE
    assert outcome.response.sql_queries == ["SELECT COUNT(*) AS n FROM exames"]
    assert outcome.response.sql_results[0].success


def test_unexpected_errors_are_converted():
    planner = FixedPlanner(error=RuntimeError("boom"))
    service = ChatService(planner, None, RecordingSynthesizer())

    result = asyncio.run(service.send_message("Quantos exames?", []))

    assert result.error == "boom"
    assert result.response == SYNTHESIS_ERROR_MESSAGE
    assert result.sql_queries == []


def test_state_is_merged_into_updated_state(query_service):
    planner = FixedPlanner(["SELECT COUNT(*) AS n FROM exames"])
    service = ChatService(planner, query_service, RecordingSynthesizer())
    state = ChatState(period=Period(type="year", year=2025), planos=["Unimed"])

    result = asyncio.run(service.send_message("e em março?", [], state, today=date(2026, 1, 1)))

    assert result.updated_state.period.month == 3
    assert result.updated_state.period.year == 2025
    assert result.updated_state.planos == ["Unimed"]


@pytest.fixture
def app_client(exames_db_url):
    app = create_app()
    pool = ConnectionPool(exames_db_url, max_connections=2)
    build_services(app, pool)
    yield app, TestClient(app)
    pool.close_all()


def test_chat_endpoint_requires_message(app_client):
    _, client = app_client

    response = client.post("/chat", json={"history": []})

    assert response.status_code == 400
    assert response.json()["error"] == "Message is required"


def test_chat_endpoint_without_llm_key(app_client):
    app, client = app_client
    app.state.chat_service.planner.llm = None

    response = client.post("/chat", json={"message": "Quanto faturamos?"})

    assert response.status_code == 500
    assert response.json()["error"] == "LLM API key not configured"
    assert response.json()["sqlQueries"] == []

    probe = client.get("/chat").json()
    assert probe["status"] == "not_configured"
    assert probe["llm_api"] == "missing_key"
    assert "timestamp" in probe


def test_chat_endpoint_returns_camel_case_payload(app_client):
    app, client = app_client
    query_service = app.state.query_service
    app.state.chat_service = ChatService(
        FixedPlanner(["SELECT COUNT(*) AS n FROM exames"]), query_service, RecordingSynthesizer()
    )

    response = client.post(
        "/chat",
        json={
            "message": "Quantos exames em 2025?",
            "history": [{"role": "user", "content": "oi", "timestamp": "2025-01-01T10:00:00"}],
            "state": {"period": {"type": "year", "year": 2024}, "topN": 3},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "1 consulta(s) com sucesso."
    assert body["sqlQueries"] == ["SELECT COUNT(*) AS n FROM exames"]
    assert body["sqlResults"][0]["rowCount"] == 1
    assert body["sqlResults"][0]["sampleRows"] == [{"n": 10000}]
    assert body["updatedState"]["period"]["year"] == 2025
    assert body["updatedState"]["topN"] == 3
    assert body["retries"] == 0

    probe = client.get("/chat").json()
    assert probe["status"] == "configured"
    assert probe["llm_api"] == "ready"


def test_failed_candidate_reports_attempted_sql(query_service):
    sql = "SELECT * FROM tabela_inexistente WHERE data_exame >= '2025-01-01'"
    service = ChatService(FixedPlanner([sql]), query_service, RecordingSynthesizer())

    result = asyncio.run(service.send_message("Exames de 2025", []))

    assert result.sql_results[0].success is False
    assert result.sql_results[0].sql == sql


def test_chat_endpoint_rejects_malformed_period_dates(app_client):
    app, client = app_client
    app.state.chat_service = ChatService(
        FixedPlanner(["SELECT 1"]), app.state.query_service, RecordingSynthesizer()
    )

    response = client.post(
        "/chat",
        json={"message": "E nesse período?", "state": {"period": {"type": "range", "start": "bad", "end": "2025-02-01"}}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid period date 'bad', expected YYYY-MM-DD"
