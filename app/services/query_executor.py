import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sqlalchemy import exc as sa_exc
from sqlalchemy import text

from app.core.exceptions import (
    ConnectionTimeout,
    DatabaseError,
    ObjectNotFound,
    PermissionDenied,
    QueryExecutionError,
    QueryTimeout,
    SqlSyntaxError,
)
from app.services.db_pool import ConnectionPool

logger = logging.getLogger(__name__)

# Grace period on top of the statement timeout before we stop waiting on the worker thread
TIMEOUT_GRACE_S = 2.0

_SQLSTATE_ERRORS = {
    "57014": QueryTimeout,  # query_canceled (statement_timeout)
    "42501": PermissionDenied,
    "42601": SqlSyntaxError,
    "42P01": ObjectNotFound,  # undefined_table
    "42703": ObjectNotFound,  # undefined_column
    "42883": ObjectNotFound,  # undefined_function
    "3F000": ObjectNotFound,  # invalid_schema_name
}

_MESSAGE_ERRORS = (
    ("timeout", QueryTimeout),
    ("permission denied", PermissionDenied),
    ("syntax error", SqlSyntaxError),
    ("does not exist", ObjectNotFound),
    ("no such table", ObjectNotFound),
    ("no such column", ObjectNotFound),
    ("no such function", ObjectNotFound),
)


@dataclass(frozen=True)
class QueryExecutionResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    elapsed_ms: int = 0
    sql: str = ""


def _sqlstate(error: Exception) -> str:
    orig = getattr(error, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return str(getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None) or "")


def classify_error(error: Exception, elapsed_ms: int = 0) -> QueryExecutionError:
    if isinstance(error, QueryExecutionError):
        return error

    if isinstance(error, sa_exc.TimeoutError):
        return ConnectionTimeout(f"No pooled connection available: {error}", elapsed_ms)

    message = str(getattr(error, "orig", None) or error)
    error_cls = _SQLSTATE_ERRORS.get(_sqlstate(error))
    if error_cls is None:
        lowered = message.lower()
        error_cls = next((cls for token, cls in _MESSAGE_ERRORS if token in lowered), DatabaseError)

    if error_cls is QueryTimeout:
        message = f"Query timeout after {elapsed_ms}ms: {message}"
    return error_cls(message, elapsed_ms)


class QueryExecutor:
    """Runs one pre-validated statement on a pooled read-only connection."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @staticmethod
    def _apply_statement_timeout(conn, timeout_ms: int) -> None:
        if conn.dialect.name == "postgresql":
            conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

    def _run(self, sql: str, timeout_ms: int, started: float) -> QueryExecutionResult:
        try:
            with self.pool.acquire() as conn:
                self._apply_statement_timeout(conn, timeout_ms)
                # raw driver execution so colons and percent signs in literals are left alone
                result = conn.exec_driver_sql(sql)
                rows = [dict(row) for row in result.mappings().all()]
        except Exception as e:
            error = classify_error(e, int((time.monotonic() - started) * 1000))
            logger.debug("Query failed as %s after %sms", type(error).__name__, error.elapsed_ms)
            raise error from e

        return QueryExecutionResult(
            rows=rows,
            row_count=len(rows),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            sql=sql,
        )

    async def execute_query(self, sql: str, timeout_ms: int = 30000) -> QueryExecutionResult:
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run, sql, timeout_ms, started),
                timeout=timeout_ms / 1000 + TIMEOUT_GRACE_S,
            )
        except asyncio.TimeoutError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise QueryTimeout(f"Query timeout after {elapsed_ms}ms", elapsed_ms) from e

