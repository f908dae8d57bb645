"""
Tolerant parsing of planner output. Models wrap JSON in markdown, use smart
quotes, put raw newlines inside strings, or skip JSON altogether, so the
text goes through an ordered chain of strategies until one yields SQL.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannerResult:
    sql: List[str] = field(default_factory=list)
    rationale: str = ""
    hint: str = ""
    source: str = "llm"


@dataclass(frozen=True)
class Parsed:
    plan: PlannerResult


class _NotApplicable:
    def __repr__(self) -> str:
        return "NOT_APPLICABLE"


NOT_APPLICABLE = _NotApplicable()
ParseOutcome = Union[Parsed, _NotApplicable]

_FENCE = re.compile(r"```(?:json|sql)?\s*", re.IGNORECASE)
_JSON_TAGS = re.compile(r"</?json>", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SQL_ARRAY = re.compile(r'"sql"\s*:\s*\[([\s\S]*?)\]')
_SQL_FENCE = re.compile(r"```sql\s*\n([\s\S]*?)```", re.IGNORECASE)
_BARE_SELECT = re.compile(r"\bSELECT\b[\s\S]*?(?:;|$)", re.IGNORECASE)
_TRAILING_SEMICOLONS = re.compile(r";+\s*$")


def clean_response_text(text: str) -> str:
    cleaned = _FENCE.sub("", text or "")
    cleaned = _JSON_TAGS.sub("", cleaned)
    cleaned = cleaned.replace("“", '"').replace("”", '"')
    cleaned = cleaned.replace("‘", "'").replace("’", "'")
    return cleaned.strip()


def normalize_sql_list(candidates: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        sql = _TRAILING_SEMICOLONS.sub("", candidate.strip())
        if sql:
            out.append(sql)
    return out


def _plan_from_payload(payload: Any, source: str = "llm") -> ParseOutcome:
    if not isinstance(payload, dict):
        return NOT_APPLICABLE
    raw_sql = payload.get("sql")
    if isinstance(raw_sql, str):
        raw_sql = [raw_sql]
    if not isinstance(raw_sql, list):
        return NOT_APPLICABLE
    sql = normalize_sql_list(raw_sql)
    if not sql:
        return NOT_APPLICABLE
    return Parsed(
        PlannerResult(
            sql=sql,
            rationale=str(payload.get("rationale") or "Auto-gerado"),
            hint=str(payload.get("final_answer_hint") or payload.get("hint") or ""),
            source=source,
        )
    )


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(_TRAILING_COMMA.sub(r"\1", text))


def _first_balanced_block(text: str) -> Optional[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def _escape_newlines_in_strings(block: str) -> str:
    out = []
    in_string = False
    escaped = False
    for char in block:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                out.append("\\n")
                continue
            elif char == "\r":
                continue
            elif char == "\t":
                out.append("\\t")
                continue
        elif char == '"':
            in_string = True
        out.append(char)
    return "".join(out)


class StrictJsonStrategy:
    name = "strict_json"

    def parse(self, raw: str) -> ParseOutcome:
        try:
            return _plan_from_payload(_loads(clean_response_text(raw)))
        except (json.JSONDecodeError, ValueError):
            return NOT_APPLICABLE


class BraceBlockStrategy:
    name = "brace_block"

    def parse(self, raw: str) -> ParseOutcome:
        cleaned = clean_response_text(raw)
        block = _first_balanced_block(cleaned)
        if block is None:
            return NOT_APPLICABLE
        try:
            return _plan_from_payload(_loads(_escape_newlines_in_strings(block)))
        except (json.JSONDecodeError, ValueError):
            return NOT_APPLICABLE


class SqlFallbackStrategy:
    """Last resort: pull anything that looks like a SELECT out of the raw text."""

    name = "sql_fallback"

    @staticmethod
    def _unquote(fragment: str) -> List[str]:
        parts = re.findall(r'"((?:[^"\\]|\\.)*)"', fragment)
        return [p.replace("\\n", "\n").replace('\\"', '"') for p in parts] or [fragment]

    @staticmethod
    def _unwrap(candidate: str) -> str:
        text = candidate.strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ("\"", "'"):
            text = text[1:-1].strip()
        return text.replace("\\n", "\n")

    def parse(self, raw: str) -> ParseOutcome:
        text = (raw or "").replace("“", '"').replace("”", '"')
        candidates: List[str] = [m.group(1) for m in _SQL_FENCE.finditer(text)]
        if not candidates:
            for match in _SQL_ARRAY.finditer(text):
                candidates.extend(self._unquote(match.group(1)))
        if not candidates:
            candidates = [m.group(0) for m in _BARE_SELECT.finditer(text)]

        sql = normalize_sql_list(self._unwrap(c) for c in candidates)
        if not sql:
            return NOT_APPLICABLE
        return Parsed(PlannerResult(sql=sql, rationale="Extraído via fallback", source="llm"))


DEFAULT_STRATEGIES = (StrictJsonStrategy(), BraceBlockStrategy(), SqlFallbackStrategy())


def parse_planner_response(raw: str, strategies=DEFAULT_STRATEGIES) -> Optional[PlannerResult]:
    for strategy in strategies:
        outcome = strategy.parse(raw)
        if isinstance(outcome, Parsed):
            logger.info("Planner response parsed with %s (%s statements)", strategy.name, len(outcome.plan.sql))
            return outcome.plan
    logger.warning("Planner response could not be parsed")
    return None
