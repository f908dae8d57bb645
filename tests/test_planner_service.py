import asyncio
import json
from datetime import date

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.assistant.services.plan_parser import PlannerResult
from app.assistant.services.planner_service import STRICT_JSON_INSTRUCTION, PlannerService
from app.core.exceptions import PlanningFailed
from app.schemas.chat import ChatState, ConversationTurn, Period
from app.services.cache import PlanCache


class ScriptedLLM:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return AIMessage(content=reply)


class MemoryPlanCache:
    def __init__(self, cached=None):
        self.cached = cached
        self.stored = {}

    async def get_plan(self, key):
        return self.cached

    async def set_plan(self, key, plan):
        self.stored[key] = plan
        return True


async def _no_sleep(_seconds):
    return None


def _planner(llm, cache=None):
    planner = object.__new__(PlannerService)
    planner.llm = llm
    planner.cache = cache
    planner.max_retries = 2
    planner.history_window = 5
    return planner


def test_template_bypasses_llm():
    llm = ScriptedLLM([])
    plan, retries = asyncio.run(_planner(llm).plan("Top 5 médicos do 1º semestre de 2025"))

    assert retries == 0
    assert plan.source == "template"
    assert llm.calls == []


def test_missing_llm_fails_planning_without_attempts():
    with pytest.raises(PlanningFailed) as info:
        asyncio.run(_planner(None).plan("Qual o faturamento total?"))

    assert info.value.attempts == 0


def test_retry_with_strict_instruction_after_unparseable_reply(monkeypatch):
    monkeypatch.setattr("app.services.llm_retry_service.asyncio.sleep", _no_sleep)
    llm = ScriptedLLM(["Desculpe, não entendi.", json.dumps({"sql": ["SELECT SUM(total) FROM exames"]})])

    plan, retries = asyncio.run(_planner(llm).plan("Qual o faturamento total?"))

    assert retries == 1
    assert plan.sql == ["SELECT SUM(total) FROM exames"]
    assert STRICT_JSON_INSTRUCTION not in llm.calls[0][-1].content
    assert STRICT_JSON_INSTRUCTION in llm.calls[1][-1].content


def test_llm_errors_count_as_attempts(monkeypatch):
    monkeypatch.setattr("app.services.llm_retry_service.asyncio.sleep", _no_sleep)
    llm = ScriptedLLM([RuntimeError("rate limit"), "nada", "ainda nada"])

    with pytest.raises(PlanningFailed) as info:
        asyncio.run(_planner(llm).plan("Qual o faturamento total?"))

    assert info.value.attempts == 3
    assert len(llm.calls) == 3


def test_prompt_includes_state_and_history():
    llm = ScriptedLLM(['{"sql": ["SELECT 1"]}'])
    history = [
        ConversationTurn(role="user", content="faturamento de 2025"),
        ConversationTurn(role="assistant", content="Foi R$ 10,00"),
    ]
    state = ChatState(period=Period(type="year", year=2025))

    asyncio.run(_planner(llm).plan("e por plano?", history, state))

    messages = llm.calls[0]
    assert isinstance(messages[0], SystemMessage)
    assert "2025" in messages[1].content
    assert isinstance(messages[2], HumanMessage)
    assert isinstance(messages[3], AIMessage)
    assert messages[-1].content == "e por plano?"


def test_cache_hit_skips_llm():
    cached = PlannerResult(sql=["SELECT 1"], source="cache")
    llm = ScriptedLLM([])

    plan, retries = asyncio.run(_planner(llm, MemoryPlanCache(cached)).plan("Qual o faturamento total?"))

    assert plan is cached
    assert retries == 0
    assert llm.calls == []


def test_successful_plan_is_cached():
    cache = MemoryPlanCache()
    llm = ScriptedLLM(['{"sql": ["SELECT 1"], "rationale": "r"}'])

    asyncio.run(_planner(llm, cache).plan("Qual o faturamento total?", today=date(2026, 1, 1)))

    assert list(cache.stored.values())[0].sql == ["SELECT 1"]
    assert list(cache.stored)[0].startswith("plan:")


def test_plan_cache_key_is_stable_and_case_insensitive():
    first = PlanCache.generate_key("Faturamento 2025", "Estado inicial (sem filtros)", ["oi"])
    second = PlanCache.generate_key("  faturamento 2025 ", "Estado inicial (sem filtros)", ["oi"])
    other = PlanCache.generate_key("Faturamento 2025", "Período: 2024", ["oi"])

    assert first == second
    assert first != other


class FakeRedis:
    def __init__(self, value=None, fail=False):
        self.value = value
        self.fail = fail
        self.saved = None

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.value

    async def setex(self, key, ttl, value):
        if self.fail:
            raise ConnectionError("redis down")
        self.saved = (key, ttl, value)


def test_plan_cache_degrades_to_miss():
    cache = PlanCache(url="redis://localhost:6379", ttl=60)
    assert asyncio.run(cache.get_plan("plan:x")) is None
    assert asyncio.run(cache.set_plan("plan:x", PlannerResult(sql=["SELECT 1"]))) is False

    cache._redis = FakeRedis(fail=True)
    assert asyncio.run(cache.get_plan("plan:x")) is None
    assert asyncio.run(cache.set_plan("plan:x", PlannerResult(sql=["SELECT 1"]))) is False

    cache._redis = FakeRedis(value="not json")
    assert asyncio.run(cache.get_plan("plan:x")) is None


def test_plan_cache_round_trip_through_redis_value():
    cache = PlanCache(url="redis://localhost:6379", ttl=60)
    cache._redis = FakeRedis()

    assert asyncio.run(cache.set_plan("plan:x", PlannerResult(sql=["SELECT 1"], hint="h")))
    key, ttl, value = cache._redis.saved
    cache._redis.value = value

    plan = asyncio.run(cache.get_plan(key))
    assert ttl == 60
    assert plan.sql == ["SELECT 1"]
    assert plan.hint == "h"
    assert plan.source == "cache"
