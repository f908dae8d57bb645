import asyncio
import logging
from typing import Any, Callable, Optional, Tuple, TypeVar

from langchain_openai import ChatOpenAI

from app.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_chat_model(temperature: float = 0) -> Optional[ChatOpenAI]:
    """OpenAI-compatible chat model, or None when no credential is configured."""
    settings = get_settings()
    if not settings.LLM_API_KEY:
        return None
    return ChatOpenAI(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_BASE_URL,
        model=settings.LLM_MODEL,
        temperature=temperature,
        timeout=settings.LLM_TIMEOUT,
        max_retries=0,
    )


def response_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # some providers return content blocks
        return "".join(str(block.get("text", "")) if isinstance(block, dict) else str(block) for block in content)
    return str(content or "")


async def ainvoke_until_parsed(
    llm: Any,
    build_prompt: Callable[[int], Any],
    parse: Callable[[str], Optional[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.35,
    task_name: str = "llm_call",
) -> Tuple[T, int]:
    """
    Retry wrapper for LLM async invocations.
    - The prompt is rebuilt per attempt (0-based) so later attempts can be stricter.
    - Retries on exceptions and on responses `parse` rejects (returns None).
    Returns the parsed value and the number of re-attempts that were needed.
    """
    if attempts < 1:
        attempts = 1

    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        try:
            response = await llm.ainvoke(build_prompt(attempt))
            raw = response_text(response)
            logger.debug("%s raw response: %s", task_name, raw[:300])
            parsed = parse(raw)
            if parsed is None:
                raise ValueError(f"{task_name} produced invalid response on attempt {attempt + 1}")
            return parsed, attempt
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if attempt + 1 >= attempts:
                break
            sleep_time = backoff_seconds * (attempt + 1)
            logger.warning(
                "%s failed attempt %s/%s: %s. Retrying in %.2fs",
                task_name,
                attempt + 1,
                attempts,
                exc,
                sleep_time,
            )
            await asyncio.sleep(sleep_time)

    if last_error:
        raise last_error
    raise RuntimeError(f"{task_name} failed with unknown error")
