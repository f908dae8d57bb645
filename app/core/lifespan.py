from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from app.assistant.services.planner_service import PlannerService
from app.assistant.services.synthesis_service import SynthesisService
from app.services.cache import PlanCache
from app.services.chat_service import ChatService
from app.services.db_pool import ConnectionPool
from app.services.query_executor import QueryExecutor
from app.services.query_service import QueryService

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, pool: ConnectionPool, cache: PlanCache = None) -> None:
    """Wire the service graph onto app.state. The pool opens lazily on first query."""
    query_service = QueryService(QueryExecutor(pool))
    app.state.pool = pool
    app.state.plan_cache = cache
    app.state.query_service = query_service
    app.state.chat_service = ChatService(PlannerService(cache), query_service, SynthesisService())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting analytics backend...")
    if not getattr(app.state, "query_service", None):
        cache = PlanCache()
        await cache.connect()
        build_services(app, ConnectionPool.from_settings(), cache)
    yield
    app.state.pool.close_all()
    if app.state.plan_cache is not None:
        await app.state.plan_cache.close()
    logger.info("Shutting down analytics backend...")
