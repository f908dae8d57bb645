import logging
from typing import Dict, List, Optional

from app.assistant.services.sql_repair import repair_sql
from app.config import get_settings
from app.schemas.chat import SqlResult
from app.services.query_service import QueryOutcome, QueryService

logger = logging.getLogger(__name__)

# Permission problems and guardrail rejections are never fixed by a rewrite.
NON_RETRIABLE_STATUS = {403}
VALIDATION_PREFIX = "SQL validation failed"


def to_sql_result(outcome: QueryOutcome, sql: str) -> SqlResult:
    payload = outcome.payload
    if outcome.success:
        return SqlResult(
            success=True,
            row_count=payload.get("rowCount"),
            sample_rows=payload.get("sampleRows"),
            elapsed_ms=payload.get("elapsedMs"),
            sql=payload.get("sql") or sql,
        )
    # the error payload echoes log-sanitized SQL; report what was attempted
    return SqlResult(
        success=False,
        sql=sql,
        error=payload.get("error"),
        details=payload.get("details"),
    )


def _should_repair(outcome: QueryOutcome) -> bool:
    if outcome.status_code in NON_RETRIABLE_STATUS:
        return False
    return not str(outcome.payload.get("error", "")).startswith(VALIDATION_PREFIX)


class ExecuteNode:
    def __init__(self, query_service: QueryService, row_cap: Optional[int] = None):
        self.query_service = query_service
        self.row_cap = row_cap or get_settings().CHAT_ROW_CAP

    async def run(self, state: Dict) -> Dict:
        results: List[SqlResult] = []
        repairs = 0

        # one candidate at a time; a repair retry finishes before the next candidate starts
        for sql in state.get("sql_queries") or []:
            outcome = await self.query_service.run_sql(sql, self.row_cap)
            executed = sql

            if not outcome.success and _should_repair(outcome):
                error_text = f"{outcome.payload.get('error', '')} {outcome.payload.get('details', '')}"
                repaired = repair_sql(sql, error_text)
                if repaired != sql:
                    logger.info("Retrying candidate after local repair")
                    repairs += 1
                    outcome = await self.query_service.run_sql(repaired, self.row_cap)
                    executed = repaired

            if not outcome.success:
                logger.warning("Candidate failed: %s", outcome.payload.get("error"))
            results.append(to_sql_result(outcome, executed))

        update: Dict = {"sql_results": results, "retries": int(state.get("retries") or 0) + repairs}
        if results and not any(r.success for r in results):
            update["failure"] = "execution"
        return update
