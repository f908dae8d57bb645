from fastapi import APIRouter

from app.api.v1.endpoints import chat, tools

api_router = APIRouter()
api_router.include_router(tools.router, tags=["tools"])
api_router.include_router(chat.router, tags=["chat"])
