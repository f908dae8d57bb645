import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Sequence

from app.assistant.nodes.synthesize_node import SYNTHESIS_ERROR_MESSAGE
from app.assistant.orchestration.graph import create_graph
from app.assistant.services.chat_state_service import default_state, extract_state_updates, merge_state
from app.assistant.services.planner_service import PlannerService
from app.assistant.services.synthesis_service import SynthesisService
from app.schemas.chat import ChatRequest, ChatResponse, ChatState, ConversationTurn
from app.schemas.validation import validate_body
from app.services.query_service import QueryService

logger = logging.getLogger(__name__)

LLM_KEY_MISSING = "LLM API key not configured"


@dataclass(frozen=True)
class ChatOutcome:
    status_code: int
    response: ChatResponse


class ChatService:
    """
    Runs one chat turn through plan -> execute -> synthesize. Never raises:
    failures come back as a ChatResponse with `error` set.
    """

    def __init__(self, planner: PlannerService, query_service: QueryService, synthesizer: SynthesisService):
        self.planner = planner
        self.workflow = create_graph(planner, query_service, synthesizer)

    @property
    def llm_configured(self) -> bool:
        return self.planner.llm is not None

    async def _invoke(
        self,
        question: str,
        history: Sequence[ConversationTurn],
        state: Optional[ChatState],
        today: Optional[date],
    ) -> ChatOutcome:
        previous = state or default_state()
        updated_state = merge_state(previous, extract_state_updates(question, previous, today))

        try:
            result = await self.workflow.ainvoke(
                {
                    "question": question,
                    "today": today,
                    "history": list(history),
                    "chat_state": state,
                    "retries": 0,
                }
            )
        except Exception as e:
            logger.exception("Chat turn failed: %s", e)
            return ChatOutcome(
                500, ChatResponse(response=SYNTHESIS_ERROR_MESSAGE, error=str(e), updated_state=updated_state)
            )

        failure = result.get("failure")
        response = ChatResponse(
            response=result.get("response") or "",
            sql_queries=result.get("sql_queries") or [],
            sql_results=result.get("sql_results") or [],
            updated_state=updated_state,
            error=result.get("error"),
            retries=int(result.get("retries") or 0),
        )
        logger.info(
            "[chat] question=%r sql=%s retries=%s failure=%s",
            question[:80],
            len(response.sql_queries),
            response.retries,
            failure,
        )

        if failure == "planning":
            return ChatOutcome(400, response)
        if failure == "synthesis":
            return ChatOutcome(500, response)
        return ChatOutcome(200, response)

    async def send_message(
        self,
        question: str,
        history: Sequence[ConversationTurn] = (),
        state: Optional[ChatState] = None,
        today: Optional[date] = None,
    ) -> ChatResponse:
        outcome = await self._invoke(question, history, state, today)
        return outcome.response

    async def handle(self, body: Any, today: Optional[date] = None) -> ChatOutcome:
        request, errors = validate_body(ChatRequest, body)
        if request is None:
            return ChatOutcome(400, ChatResponse(response="", error=errors[0]))

        if not self.llm_configured:
            return ChatOutcome(500, ChatResponse(response="", error=LLM_KEY_MISSING))

        return await self._invoke(request.message, request.history, request.state, today)
