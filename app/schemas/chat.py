import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PeriodType = Literal["month", "year", "range", "semester", "quarter", "none"]
Metric = Literal["total", "receita_liquida", "valor_convenio", "valor_particular", "matmed"]
GroupBy = Literal["mes", "medico", "procedimento", "plano", "ano"]

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Period(CamelModel):
    type: PeriodType = "none"
    start: Optional[str] = None  # 'YYYY-MM-DD'
    end: Optional[str] = None  # 'YYYY-MM-DD', exclusive
    year: Optional[int] = None
    semester: Optional[Literal[1, 2]] = None
    quarter: Optional[Literal[1, 2, 3, 4]] = None
    month: Optional[int] = Field(default=None, ge=1, le=12)

    @field_validator("start", "end")
    @classmethod
    def _check_date(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            if not _ISO_DATE.match(value):
                raise ValueError(value)
            date.fromisoformat(value)
        except ValueError:
            raise ValueError(f"Invalid period date '{value}', expected YYYY-MM-DD") from None
        return value


class Comparison(CamelModel):
    with_: Literal["previous_period", "same_period_last_year", "custom"] = Field(alias="with")
    custom: Optional[Period] = None


class ChatState(CamelModel):
    period: Period = Field(default_factory=Period)
    planos: Optional[List[str]] = None
    medicos: Optional[List[str]] = None
    procedimentos: Optional[List[str]] = None
    metric: Optional[Metric] = "total"
    group_by: Optional[GroupBy] = None
    top_n: Optional[int] = None
    compare: Optional[Comparison] = None


class SqlResult(CamelModel):
    success: bool
    row_count: Optional[int] = None
    sample_rows: Optional[List[Dict[str, Any]]] = None
    elapsed_ms: Optional[int] = None
    sql: str
    error: Optional[str] = None
    details: Optional[str] = None


class ConversationTurn(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    sql_result: Optional[SqlResult] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ChatRequest(CamelModel):
    message: str = Field(default=None, validate_default=True)
    history: List[ConversationTurn] = Field(default_factory=list)
    state: Optional[ChatState] = None

    @field_validator("message", mode="before")
    @classmethod
    def _check_message(cls, value: Any) -> str:
        if not value or not isinstance(value, str) or not value.strip():
            raise ValueError("Message is required")
        return value.strip()


class ChatResponse(CamelModel):
    response: str
    sql_queries: List[str] = Field(default_factory=list)
    sql_results: List[SqlResult] = Field(default_factory=list)
    updated_state: Optional[ChatState] = None
    error: Optional[str] = None
    retries: int = 0
