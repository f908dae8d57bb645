from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.config import get_settings


class RunSqlRequest(BaseModel):
    sql: str = Field(default=None, validate_default=True)
    max_rows: int = Field(default=None, validate_default=True)

    @field_validator("sql", mode="before")
    @classmethod
    def _check_sql(cls, value: Any) -> str:
        if not value or not isinstance(value, str):
            raise ValueError("sql parameter is required and must be a string")
        if not value.strip():
            raise ValueError("sql parameter cannot be empty")
        limit = get_settings().MAX_SQL_LENGTH
        if len(value) > limit:
            raise ValueError(f"sql parameter exceeds maximum length of {limit} characters")
        return value.strip()

    @field_validator("max_rows", mode="before")
    @classmethod
    def _check_max_rows(cls, value: Any) -> int:
        settings = get_settings()
        if value is None:
            return settings.DEFAULT_ROW_LIMIT
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError("max_rows must be a positive integer")
        if value > settings.MAX_ROWS_HARD_LIMIT:
            raise ValueError(f"max_rows cannot exceed {settings.MAX_ROWS_HARD_LIMIT}")
        return value


class RunSqlResponse(BaseModel):
    success: Literal[True] = True
    rowCount: int
    sampleRows: List[Dict[str, Any]]
    elapsedMs: int
    sql: str


class RunSqlErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    details: Optional[str] = None
    sql: Optional[str] = None
