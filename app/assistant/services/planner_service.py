import logging
from datetime import date
from typing import Any, List, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.assistant.services.chat_state_service import compact_history, summarize_state_for_llm
from app.assistant.services.fast_path import plan_from_template
from app.assistant.services.plan_parser import PlannerResult, parse_planner_response
from app.config import get_settings
from app.core.exceptions import PlanningFailed
from app.schemas.chat import ChatState, ConversationTurn
from app.services.cache import PlanCache
from app.services.llm_retry_service import ainvoke_until_parsed, build_chat_model

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a data analyst that answers strictly from the database. You never answer with numbers; you only plan SQL.

DATABASE (PostgreSQL, read-only)
Table public.exames, one row per billed exam:
- data_exame DATE, ano INT, mes INT
- paciente TEXT, procedimento TEXT, plano TEXT, medico_solicitante TEXT
- matmed NUMERIC (materials/medication cost)
- valor_convenio NUMERIC, valor_particular NUMERIC, total NUMERIC
- receita_liquida NUMERIC, fonte TEXT
Business rules: total = valor_convenio + valor_particular; receita_liquida = total - matmed.
Periods: filter with data_exame >= 'YYYY-MM-DD' AND data_exame < 'YYYY-MM-DD' (end exclusive).
S1 = January..June, S2 = July..December. Use date_trunc('month', data_exame) for monthly series.

RULES
1) Only SELECT (or WITH ... SELECT). Never INSERT, UPDATE, DELETE, DDL, SET or EXPLAIN.
2) One statement per array entry, no semicolons, no comments.
3) Prefer a single query; use more than one only when the question needs independent figures.
4) Use lower-case column names exactly as listed.

OUTPUT
Return only JSON, no markdown:
{"sql": ["SELECT ..."], "rationale": "short reason", "final_answer_hint": "what the answer should show"}"""

STRICT_JSON_INSTRUCTION = (
    "\n\nYou MUST return raw JSON only, without markdown, with the field sql (array of strings). "
    "Do not include comments."
)


class PlannerService:
    def __init__(self, cache: Optional[PlanCache] = None):
        settings = get_settings()
        self.llm = build_chat_model(temperature=0.1)
        self.cache = cache
        self.max_retries = settings.PLANNER_MAX_RETRIES
        self.history_window = settings.HISTORY_WINDOW

    def _build_messages(
        self,
        question: str,
        history: Sequence[ConversationTurn],
        state: Optional[ChatState],
        attempt: int,
    ) -> List[Any]:
        messages: List[Any] = [SystemMessage(content=SYSTEM_PROMPT)]
        if state is not None:
            messages.append(SystemMessage(content=f"Conversation context: {summarize_state_for_llm(state)}"))
        for turn in compact_history(history, self.history_window):
            if not turn.content:
                continue
            if turn.role == "assistant":
                messages.append(AIMessage(content=turn.content))
            else:
                messages.append(HumanMessage(content=turn.content))

        content = question if attempt == 0 else question + STRICT_JSON_INSTRUCTION
        messages.append(HumanMessage(content=content))
        return messages

    @staticmethod
    def _parse(raw: str) -> Optional[PlannerResult]:
        plan = parse_planner_response(raw)
        if plan is None or not plan.sql:
            return None
        return plan

    def _cache_key(self, question: str, history: Sequence[ConversationTurn], state: Optional[ChatState]) -> str:
        recent = [t.content for t in list(history)[-self.history_window :] if t.role == "user"]
        return PlanCache.generate_key(question, summarize_state_for_llm(state), recent)

    async def plan(
        self,
        question: str,
        history: Sequence[ConversationTurn] = (),
        state: Optional[ChatState] = None,
        today: Optional[date] = None,
    ) -> Tuple[PlannerResult, int]:
        """
        Returns (PlannerResult, retries). Raises PlanningFailed once the
        LLM has been re-prompted `max_retries` times without usable SQL.
        """
        template = plan_from_template(question, state, today)
        if template is not None:
            return template, 0

        if self.llm is None:
            raise PlanningFailed("LLM API key not configured", attempts=0)

        cache_key = self._cache_key(question, history, state)
        if self.cache is not None:
            cached = await self.cache.get_plan(cache_key)
            if cached is not None:
                logger.info("Plan cache HIT for key: %s", cache_key)
                return cached, 0

        attempts = self.max_retries + 1
        try:
            plan, retries = await ainvoke_until_parsed(
                self.llm,
                lambda attempt: self._build_messages(question, history, state, attempt),
                self._parse,
                attempts=attempts,
                backoff_seconds=0.3,
                task_name="planner",
            )
        except Exception as e:
            logger.error("Planner gave up after %s attempts: %s", attempts, e)
            raise PlanningFailed(f"LLM did not produce SQL after {attempts} attempts: {e}", attempts=attempts) from e

        if self.cache is not None:
            await self.cache.set_plan(cache_key, plan)
        return plan, retries
