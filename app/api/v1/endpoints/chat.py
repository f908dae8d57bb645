import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.v1.deps import get_chat_service
from app.schemas.chat import ChatResponse
from app.services.chat_service import ChatService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/chat")
async def chat(request: Request, chat_service: ChatService = Depends(get_chat_service)):
    """
    Answers one analytical question. The response always carries the SQL
    that ran and its per-candidate results, also on failure.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("chat received invalid JSON: %s", e)
        return JSONResponse(
            ChatResponse(response="", error="Invalid JSON in request body").model_dump(mode="json", by_alias=True),
            status_code=400,
        )

    outcome = await chat_service.handle(body)
    return JSONResponse(
        outcome.response.model_dump(mode="json", by_alias=True, exclude_none=True),
        status_code=outcome.status_code,
    )


@router.get("/chat")
async def chat_status(chat_service: ChatService = Depends(get_chat_service)):
    configured = chat_service.llm_configured
    return {
        "status": "configured" if configured else "not_configured",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "llm_api": "ready" if configured else "missing_key",
    }
