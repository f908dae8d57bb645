"""
Deterministic SQL for the most common ranking questions ("top 5 médicos do
1º semestre de 2025"). Matching questions skip the LLM planner entirely.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Dict, Optional, Type

from app.assistant.services.periods import PeriodRange, normalize_text, parse_period, period_to_range
from app.assistant.services.plan_parser import PlannerResult
from app.schemas.chat import ChatState

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10
MAX_TOP_N = 50

ORDER_LABELS: Dict[str, str] = {
    "faturamento": "faturamento",
    "receita_liquida": "receita líquida",
    "qtd_exames": "quantidade",
}

_TOP_N = re.compile(r"\btop\s*(\d+)|\b(\d+)\s+(?:melhores|maiores|principais)\b")
_RANKING_CUE = re.compile(r"\b(top|ranking|melhores|maiores|principais)\b")
_COMPARISON_CUE = re.compile(r"\b(vs|versus|compar\w*)\b")


@dataclass(frozen=True)
class TopNIntent:
    limit: int
    period: PeriodRange
    order_by: str = "faturamento"

    column: ClassVar[str] = ""
    label: ClassVar[str] = ""

    @property
    def hint(self) -> str:
        return f"Top {self.limit} {self.label} por {ORDER_LABELS[self.order_by]}"

    def render_sql(self) -> str:
        return render_top_n(self)


@dataclass(frozen=True)
class TopByDoctor(TopNIntent):
    column: ClassVar[str] = "medico_solicitante"
    label: ClassVar[str] = "médicos"


@dataclass(frozen=True)
class TopByPlan(TopNIntent):
    column: ClassVar[str] = "plano"
    label: ClassVar[str] = "planos"


@dataclass(frozen=True)
class TopByProcedure(TopNIntent):
    column: ClassVar[str] = "procedimento"
    label: ClassVar[str] = "procedimentos"


def render_top_n(intent: TopNIntent) -> str:
    if intent.order_by not in ORDER_LABELS:
        raise ValueError(f"Unsupported ranking metric: {intent.order_by}")
    column = intent.column
    return (
        f"SELECT {column},\n"
        "       SUM(total) AS faturamento,\n"
        "       SUM(total - matmed) AS receita_liquida,\n"
        "       COUNT(*) AS qtd_exames\n"
        "FROM public.exames\n"
        f"WHERE data_exame >= '{intent.period.start.isoformat()}' AND data_exame < '{intent.period.end.isoformat()}'\n"
        f"      AND COALESCE(TRIM({column}),'') <> ''\n"
        f"GROUP BY {column}\n"
        f"ORDER BY {intent.order_by} DESC\n"
        f"LIMIT {int(intent.limit)}"
    )


def _dimension(text: str) -> Optional[Type[TopNIntent]]:
    if "medico" in text:
        return TopByDoctor
    if "plano" in text or "convenio" in text:
        return TopByPlan
    if "procedimento" in text or "exame" in text:
        return TopByProcedure
    return None


def _order_by(text: str) -> str:
    if "liquida" in text:
        return "receita_liquida"
    if "quantidade" in text or "qtd" in text:
        return "qtd_exames"
    return "faturamento"


def _limit(text: str, state: Optional[ChatState]) -> int:
    match = _TOP_N.search(text)
    if match:
        value = int(match.group(1) or match.group(2))
    elif state is not None and state.top_n:
        value = state.top_n
    else:
        value = DEFAULT_TOP_N
    return min(max(1, value), MAX_TOP_N)


def _has_named_filters(state: Optional[ChatState]) -> bool:
    return state is not None and bool(state.planos or state.medicos or state.procedimentos)


def match_intent(question: str, state: Optional[ChatState] = None, today: Optional[date] = None) -> Optional[TopNIntent]:
    text = normalize_text(question)
    if not _RANKING_CUE.search(text) or _COMPARISON_CUE.search(text):
        return None
    # named filters need the LLM to write the WHERE clause
    if _has_named_filters(state):
        return None

    intent_cls = _dimension(text)
    if intent_cls is None:
        return None

    today = today or date.today()
    state_range = period_to_range(state.period) if state is not None else None
    reference_year = state_range.start.year if state_range else today.year

    period = period_to_range(parse_period(question, reference_year)) or state_range
    if period is None:
        period = PeriodRange.for_year(reference_year)

    return intent_cls(limit=_limit(text, state), period=period, order_by=_order_by(text))


def plan_from_template(question: str, state: Optional[ChatState] = None, today: Optional[date] = None) -> Optional[PlannerResult]:
    intent = match_intent(question, state, today)
    if intent is None:
        return None
    logger.info("Fast path matched %s (%s)", type(intent).__name__, intent.hint)
    return PlannerResult(
        sql=[intent.render_sql()],
        rationale=f"Template {type(intent).__name__}",
        hint=intent.hint,
        source="template",
    )
