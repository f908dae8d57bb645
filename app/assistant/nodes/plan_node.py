from typing import Dict

from app.assistant.services.planner_service import PlannerService
from app.core.exceptions import PlanningFailed

NO_SQL_MESSAGE = "Não consegui gerar SQL para sua pergunta. Por favor, reformule de forma mais específica."


class PlanNode:
    def __init__(self, planner: PlannerService):
        self.planner = planner

    async def run(self, state: Dict) -> Dict:
        try:
            plan, retries = await self.planner.plan(
                state.get("question", ""),
                state.get("history") or [],
                state.get("chat_state"),
                state.get("today"),
            )
        except PlanningFailed as e:
            return {
                "plan": None,
                "sql_queries": [],
                "retries": max(0, e.attempts - 1),
                "response": NO_SQL_MESSAGE,
                "error": f"Nenhuma SQL gerada: {e}",
                "failure": "planning",
            }

        return {"plan": plan, "sql_queries": list(plan.sql), "retries": retries}
