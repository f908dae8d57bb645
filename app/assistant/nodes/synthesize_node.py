import logging
from typing import Dict

from app.assistant.services.synthesis_service import SynthesisService
from app.core.exceptions import SynthesisFailed

logger = logging.getLogger(__name__)

SYNTHESIS_ERROR_MESSAGE = "Erro ao processar sua pergunta. Por favor, tente novamente."


class SynthesizeNode:
    def __init__(self, synthesizer: SynthesisService):
        self.synthesizer = synthesizer

    async def run(self, state: Dict) -> Dict:
        plan = state.get("plan")
        hint = plan.hint if plan is not None else ""
        try:
            # Failed candidates stay in the context so the answer can say what is missing.
            answer = await self.synthesizer.synthesize(state.get("question", ""), state.get("sql_results") or [], hint)
        except SynthesisFailed as e:
            logger.error("Synthesis failed: %s", e)
            return {"response": SYNTHESIS_ERROR_MESSAGE, "error": str(e), "failure": "synthesis"}
        return {"response": answer, "error": None}
