import re
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from app.assistant.services.periods import normalize_text, parse_period
from app.schemas.chat import ChatState, ConversationTurn, Period

MAX_TOP_N = 50

MONTH_LABELS = ("Jan", "Fev", "Mar", "Abr", "Mai", "Jun", "Jul", "Ago", "Set", "Out", "Nov", "Dez")
METRIC_LABELS = {
    "receita_liquida": "receita líquida",
    "valor_convenio": "valor convênio",
    "valor_particular": "valor particular",
    "matmed": "MatMed",
}

_TOP_N = re.compile(r"\btop\s*(\d+)|\b(\d+)\s+(?:melhores|maiores|principais)\b")
_GROUP_BY = (
    (re.compile(r"\bpor\s+mes\b|\bmensal"), "mes"),
    (re.compile(r"\bpor\s+ano\b|\banual"), "ano"),
    (re.compile(r"\bpor\s+medico|\bmedicos\b"), "medico"),
    (re.compile(r"\bpor\s+procedimento|\bprocedimentos\b"), "procedimento"),
    (re.compile(r"\bpor\s+(plano|convenio)|\bplanos\b|\bconvenios\b"), "plano"),
)
_METRICS = (
    (re.compile(r"\breceita\s+liquida\b|\bliquid"), "receita_liquida"),
    (re.compile(r"\bmatmed\b|\bmat\s*/?\s*med\b"), "matmed"),
    (re.compile(r"\bvalor\s+(do\s+)?convenio\b"), "valor_convenio"),
    (re.compile(r"\bvalor\s+particular\b|\bparticular\b"), "valor_particular"),
    (re.compile(r"\bfaturamento\b|\breceita\s+bruta\b|\btotal\b"), "total"),
)


def default_state() -> ChatState:
    return ChatState()


def _clean_names(values: Optional[Sequence[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return list(dict.fromkeys(cleaned)) or None


def merge_state(prev: ChatState, updates: Dict[str, Any]) -> ChatState:
    """
    Merge extracted updates into the previous state. Keys absent from
    `updates` keep their previous value; nothing is replaced wholesale.
    """
    merged = prev.model_copy(deep=True)

    if updates.get("period") is not None:
        merged.period = updates["period"]
    if updates.get("metric"):
        merged.metric = updates["metric"]
    if "group_by" in updates:
        merged.group_by = updates["group_by"]
    if "top_n" in updates:
        top_n = updates["top_n"]
        merged.top_n = None if not top_n else min(max(1, int(top_n)), MAX_TOP_N)
    for key in ("planos", "medicos", "procedimentos"):
        if key in updates:
            setattr(merged, key, _clean_names(updates[key]))
    if "compare" in updates:
        merged.compare = updates["compare"]

    return merged


def extract_state_updates(question: str, prev: Optional[ChatState] = None, today: Optional[date] = None) -> Dict[str, Any]:
    text = normalize_text(question)
    updates: Dict[str, Any] = {}

    reference_year = (today or date.today()).year
    if prev is not None and prev.period.year:
        reference_year = prev.period.year
    period = parse_period(question, reference_year)
    if period is not None:
        updates["period"] = period

    top_n = _TOP_N.search(text)
    if top_n:
        updates["top_n"] = int(top_n.group(1) or top_n.group(2))

    for pattern, metric in _METRICS:
        if pattern.search(text):
            updates["metric"] = metric
            break

    for pattern, group_by in _GROUP_BY:
        if pattern.search(text):
            updates["group_by"] = group_by
            break

    return updates


def _describe_period(period: Period) -> str:
    if period.type == "semester" and period.year and period.semester:
        return f"S{period.semester}/{period.year}"
    if period.type == "quarter" and period.year and period.quarter:
        return f"T{period.quarter}/{period.year}"
    if period.type == "year" and period.year:
        return str(period.year)
    if period.type == "month" and period.year and period.month:
        return f"{MONTH_LABELS[period.month - 1]}/{period.year}"
    if period.type == "range" and period.start and period.end:
        return f"{period.start} até {period.end}"
    return ""


def summarize_state_for_llm(state: Optional[ChatState]) -> str:
    if state is None:
        return "Estado inicial (sem filtros)"

    parts: List[str] = []
    period = _describe_period(state.period)
    if period:
        parts.append(f"Período: {period}")

    filters = []
    if state.planos:
        filters.append(f"plano={','.join(state.planos)}")
    if state.medicos:
        filters.append(f"médico={','.join(state.medicos)}")
    if state.procedimentos:
        filters.append(f"procedimento={','.join(state.procedimentos)}")
    if filters:
        parts.append(f"Filtros: {'; '.join(filters)}")

    if state.metric and state.metric != "total":
        parts.append(f"Métrica: {METRIC_LABELS.get(state.metric, state.metric)}")
    if state.group_by:
        parts.append(f"Agrupado por: {state.group_by}")
    if state.top_n:
        parts.append(f"Top {state.top_n}")
    if state.compare is not None:
        if state.compare.with_ == "previous_period":
            parts.append("Comparando com período anterior")
        elif state.compare.with_ == "same_period_last_year":
            parts.append("Comparando com mesmo período ano passado")

    return "; ".join(parts) if parts else "Estado inicial (sem filtros)"


def compact_history(history: Sequence[ConversationTurn], window: int = 5) -> List[ConversationTurn]:
    """
    Keep the last `window` turns verbatim and fold anything older into a
    single assistant turn naming up to three of the earlier questions.
    """
    turns = list(history)
    if len(turns) <= window:
        return turns

    older, recent = turns[:-window], turns[-window:]
    questions = [t.content[:50] for t in older if t.role == "user"][-3:]
    summary = ConversationTurn(
        role="assistant",
        content=f"[Resumo do contexto anterior: {len(questions)} perguntas sobre {', '.join(questions)}...]",
        timestamp=older[-1].timestamp,
    )
    return [summary] + recent
