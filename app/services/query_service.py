import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder

from app.config import get_settings
from app.core.exceptions import QueryExecutionError, QueryTimeout
from app.schemas.tools import RunSqlErrorResponse, RunSqlRequest, RunSqlResponse
from app.schemas.validation import validate_body
from app.services.query_executor import QueryExecutor
from app.services.sql_guard import prepare_sql, sanitize_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryOutcome:
    status_code: int
    payload: Dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.payload.get("success"))


class QueryService:
    """
    The only path from callers (HTTP clients and the chat orchestrator) to the
    analytical database. Never raises: every outcome is a QueryOutcome.
    """

    def __init__(self, executor: QueryExecutor):
        settings = get_settings()
        self.executor = executor
        self.query_timeout_ms = settings.MAX_QUERY_TIMEOUT_MS
        self.max_sample_rows = settings.MAX_SAMPLE_ROWS

    @staticmethod
    def _error(error: str, details: Optional[str] = None, sql: Optional[str] = None, status: int = 400) -> QueryOutcome:
        sanitized = sanitize_for_log(sql) if sql else None
        logger.error(
            "[run-sql] %s | details=%s | sql=%s", error, sanitize_for_log(details) if details else None, sanitized
        )
        payload = RunSqlErrorResponse(error=error, details=details, sql=sanitized)
        return QueryOutcome(status, payload.model_dump(exclude_none=True))

    def _success(self, rows, row_count: int, elapsed_ms: int, sql: str) -> QueryOutcome:
        sample = rows[: self.max_sample_rows]
        payload = RunSqlResponse(
            rowCount=row_count,
            sampleRows=jsonable_encoder(sample),
            elapsedMs=elapsed_ms,
            sql=sql,
        )
        logger.info(
            "[run-sql] ok | rows=%s sample=%s elapsed=%sms | sql=%s",
            row_count,
            len(sample),
            elapsed_ms,
            sanitize_for_log(sql),
        )
        return QueryOutcome(200, payload.model_dump())

    async def run(self, body: Any) -> QueryOutcome:
        started = time.monotonic()
        try:
            request, errors = validate_body(RunSqlRequest, body)
            if request is None:
                return self._error(errors[0], "; ".join(errors[1:]) or None)

            preparation = prepare_sql(request.sql, request.max_rows)
            if preparation.error:
                return self._error(
                    f"SQL validation failed: {preparation.error}", preparation.error, request.sql, 400
                )

            try:
                result = await self.executor.execute_query(preparation.prepared_sql, self.query_timeout_ms)
            except QueryExecutionError as e:
                details = e.message
                if isinstance(e, QueryTimeout):
                    details = f"Query execution exceeded {self.query_timeout_ms}ms timeout"
                return self._error(e.title, details, preparation.prepared_sql, e.status_code)

            return self._success(result.rows, result.row_count, result.elapsed_ms, result.sql)

        except Exception as e:
            logger.exception(
                "[run-sql] unexpected failure after %sms: %s", int((time.monotonic() - started) * 1000), e
            )
            return self._error(
                "Internal server error",
                "An unexpected error occurred while processing the request",
                status=500,
            )

    async def run_sql(self, sql: str, max_rows: int) -> QueryOutcome:
        return await self.run({"sql": sql, "max_rows": max_rows})
