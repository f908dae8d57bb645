from datetime import date
from typing import List, Optional, TypedDict

from app.assistant.services.plan_parser import PlannerResult
from app.schemas.chat import ChatState, ConversationTurn, SqlResult


class AgentState(TypedDict, total=False):
    question: str
    today: Optional[date]
    history: List[ConversationTurn]
    chat_state: Optional[ChatState]
    plan: Optional[PlannerResult]
    sql_queries: List[str]
    sql_results: List[SqlResult]
    retries: int
    response: str
    error: Optional[str]
    failure: Optional[str]  # planning | execution | synthesis
