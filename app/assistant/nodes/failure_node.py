from typing import Dict

ALL_FAILED_MESSAGE = "Todas as consultas SQL falharam. Verifique se os dados estão disponíveis."


class ExecutionFailureNode:
    async def run(self, state: Dict) -> Dict:
        errors = [
            f"{r.error}: {r.details}" if r.details else str(r.error)
            for r in state.get("sql_results") or []
        ]
        return {"response": ALL_FAILED_MESSAGE, "error": " | ".join(errors)}
