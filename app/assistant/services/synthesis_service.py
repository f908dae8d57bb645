import json
import logging
from typing import Sequence

from langchain_core.messages import HumanMessage

from app.core.exceptions import SynthesisFailed
from app.schemas.chat import SqlResult
from app.services.llm_retry_service import build_chat_model, response_text

logger = logging.getLogger(__name__)

ANSWER_INSTRUCTIONS = """Write an objective answer in Brazilian Portuguese:
1. Start with a direct, clear answer.
2. For rankings (Top-N), show a simple table.
3. Money as R$ 123.456,78.
4. Do not add a "Como calculei" section; the SQL is shown separately.
5. If a query failed, say which figure could not be computed instead of guessing it.
6. Be concise.

IMPORTANT: Use ONLY the data in the results above. Never invent numbers."""


def format_results_context(results: Sequence[SqlResult]) -> str:
    blocks = []
    for index, result in enumerate(results, start=1):
        if not result.success:
            blocks.append(f"Query {index}: ERROR - {result.error}")
            continue
        rows = json.dumps(result.sample_rows or [], ensure_ascii=False, indent=2, default=str)
        blocks.append(f"Query {index} ({result.row_count} rows):\nSQL: {result.sql}\nResults:\n{rows}")
    return "\n\n".join(blocks)


class SynthesisService:
    def __init__(self):
        self.llm = build_chat_model(temperature=0.1)

    def build_prompt(self, question: str, results: Sequence[SqlResult], hint: str = "") -> str:
        hint_line = f"\nExpected answer: {hint}\n" if hint else ""
        return (
            f"Original question: {question}\n{hint_line}\n"
            f"Results of the executed SQL:\n{format_results_context(results)}\n\n"
            f"{ANSWER_INSTRUCTIONS}"
        )

    async def synthesize(self, question: str, results: Sequence[SqlResult], hint: str = "") -> str:
        """Single LLM call; failures are not retried."""
        if self.llm is None:
            raise SynthesisFailed("LLM API key not configured")
        try:
            response = await self.llm.ainvoke([HumanMessage(content=self.build_prompt(question, results, hint))])
        except Exception as e:
            logger.error("Synthesis call failed: %s", e)
            raise SynthesisFailed(str(e)) from e

        answer = response_text(response).strip()
        if not answer:
            raise SynthesisFailed("LLM returned an empty answer")
        return answer
