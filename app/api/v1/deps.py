from fastapi import Request

from app.services.chat_service import ChatService
from app.services.query_service import QueryService


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
