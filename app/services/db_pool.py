import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from ..config import get_settings

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Read-only connection pool. The engine is created lazily on first use and
    lives until `close_all()`. Connections are only handed out through
    `acquire()`, which always returns them to the pool.
    """

    def __init__(
        self,
        db_url: Optional[str],
        max_connections: int = 5,
        idle_timeout_s: int = 30,
        acquire_timeout_s: int = 5,
    ):
        self.db_url = db_url
        self.max_connections = max_connections
        self.idle_timeout_s = idle_timeout_s
        self.acquire_timeout_s = acquire_timeout_s
        self._engine: Optional[Engine] = None

    @classmethod
    def from_settings(cls) -> "ConnectionPool":
        settings = get_settings()
        return cls(
            settings.DATABASE_URL_RO,
            max_connections=settings.DB_POOL_MAX_CONNECTIONS,
            idle_timeout_s=settings.DB_POOL_IDLE_TIMEOUT_S,
            acquire_timeout_s=settings.DB_POOL_ACQUIRE_TIMEOUT_S,
        )

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> Engine:
        if self._engine is not None:
            return self._engine

        if not self.db_url:
            raise RuntimeError("DATABASE_URL_RO environment variable is required")

        connect_args: Dict[str, Any] = {}
        if self.db_url.startswith("sqlite"):
            # pooled sqlite connections are shared across worker threads
            connect_args["check_same_thread"] = False

        logger.info("Creating read-only DB pool for: %s", self.db_url.split("@")[-1])  # Log safe part
        self._engine = create_engine(
            self.db_url,
            poolclass=QueuePool,
            pool_size=self.max_connections,
            max_overflow=0,
            pool_timeout=self.acquire_timeout_s,
            # QueuePool has no idle reaper: the idle timeout is applied as a max
            # connection age, and older connections are replaced on checkout
            pool_recycle=self.idle_timeout_s,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        return self._engine

    @contextmanager
    def acquire(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction; read-only where the dialect supports it."""
        engine = self.open()
        conn = engine.connect()
        try:
            with conn.begin():
                if conn.dialect.name == "postgresql":
                    conn.execute(text("SET TRANSACTION READ ONLY"))
                yield conn
        finally:
            self.release(conn)

    def release(self, conn: Connection) -> None:
        try:
            conn.close()
        except Exception as e:
            logger.error("Failed to return connection to pool: %s", e)

    def stats(self) -> Optional[Dict[str, int]]:
        if self._engine is None:
            return None
        pool = self._engine.pool
        return {
            "size": pool.size(),
            "checked_out": pool.checkedout(),
        }

    def close_all(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("Read-only DB pool closed")
