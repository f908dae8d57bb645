import hashlib
import json
import logging
from dataclasses import asdict
from typing import Any, Optional, Sequence

import redis.asyncio as redis

from app.assistant.services.plan_parser import PlannerResult
from app.config import get_settings

logger = logging.getLogger(__name__)


class PlanCache:
    """
    Redis-backed cache of LLM plans. Every failure degrades to a cache miss;
    the planner must work the same with Redis down.
    """

    def __init__(self, url: Optional[str] = None, ttl: Optional[int] = None):
        settings = get_settings()
        self.url = url or settings.REDIS_URL
        self.ttl = ttl or settings.PLAN_CACHE_TTL_S
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Establish connection to Redis."""
        if self._redis:
            return
        client = redis.from_url(self.url, encoding="utf-8", decode_responses=True, max_connections=10)
        try:
            await client.ping()
        except Exception as e:
            logger.error("Failed to connect to Redis, plan cache disabled: %s", e)
            await client.close()
            return
        self._redis = client
        logger.info("Connected to Redis plan cache")

    async def close(self):
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Redis connection closed")

    @staticmethod
    def generate_key(question: str, state_summary: str, recent_history: Sequence[str]) -> str:
        payload = json.dumps([question.strip().lower(), state_summary, list(recent_history)], ensure_ascii=False)
        return f"plan:{hashlib.sha256(payload.encode()).hexdigest()}"

    async def get_plan(self, key: str) -> Optional[PlannerResult]:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as e:
            logger.error("Plan cache GET error: %s", e)
            return None
        if not raw:
            return None
        try:
            data: Any = json.loads(raw)
            return PlannerResult(
                sql=[str(s) for s in data["sql"]],
                rationale=str(data.get("rationale", "")),
                hint=str(data.get("hint", "")),
                source="cache",
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding malformed cached plan %s: %s", key, e)
            return None

    async def set_plan(self, key: str, plan: PlannerResult) -> bool:
        if not self._redis:
            return False
        try:
            await self._redis.setex(key, self.ttl, json.dumps(asdict(plan), ensure_ascii=False))
            return True
        except Exception as e:
            logger.error("Plan cache SET error: %s", e)
            return False
