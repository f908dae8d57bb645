import re
import unicodedata
from dataclasses import dataclass
from datetime import date
from typing import Optional

from app.schemas.chat import Period

MONTHS = (
    "janeiro",
    "fevereiro",
    "marco",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)
MONTH_ABBREVIATIONS = tuple(m[:3] for m in MONTHS)

_ORDINAL = r"(?:(\d)\s*[o°a]?|(primeiro|segundo|terceiro|quarto))"
_ORDINAL_WORDS = {"primeiro": 1, "segundo": 2, "terceiro": 3, "quarto": 4}

_YEAR = re.compile(r"\b(20\d{2})\b")
_SEMESTER = re.compile(rf"\b{_ORDINAL}\s+semestre\b|\b[sh]([12])\s*/?\s*(?=20\d{{2}}|\b)")
_QUARTER = re.compile(rf"\b{_ORDINAL}\s+trimestre\b|\b[qt]([1-4])\s*/?\s*(?=20\d{{2}}|\b)")
_MONTH_NAME = re.compile(r"\b(" + "|".join(MONTHS) + r")\b")
_MONTH_ABBREVIATION = re.compile(r"\b(" + "|".join(MONTH_ABBREVIATIONS) + r")/(20\d{2})\b")


def normalize_text(text: str) -> str:
    """Lowercase and strip accents so 'Médico' and 'medico' match the same patterns."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


@dataclass(frozen=True)
class PeriodRange:
    start: date
    end: date  # exclusive

    @classmethod
    def for_year(cls, year: int) -> "PeriodRange":
        return cls(date(year, 1, 1), date(year + 1, 1, 1))

    @classmethod
    def for_months(cls, year: int, first_month: int, count: int) -> "PeriodRange":
        end_month = first_month + count
        end = date(year + 1, 1, 1) if end_month > 12 else date(year, end_month, 1)
        return cls(date(year, first_month, 1), end)


def _ordinal_value(match: re.Match) -> Optional[int]:
    digit, word, short = match.group(1), match.group(2), match.group(3)
    if digit:
        return int(digit)
    if word:
        return _ORDINAL_WORDS[word]
    if short:
        return int(short)
    return None


def parse_period(question: str, reference_year: int) -> Optional[Period]:
    """
    Map a Portuguese period phrase to a Period. Returns None when the question
    names no period at all.
    """
    text = normalize_text(question)
    year_match = _YEAR.search(text)
    year = int(year_match.group(1)) if year_match else reference_year

    abbreviation = _MONTH_ABBREVIATION.search(text)
    if abbreviation:
        month = MONTH_ABBREVIATIONS.index(abbreviation.group(1)) + 1
        return Period(type="month", year=int(abbreviation.group(2)), month=month)

    month_name = _MONTH_NAME.search(text)
    if month_name:
        return Period(type="month", year=year, month=MONTHS.index(month_name.group(1)) + 1)

    semester = _SEMESTER.search(text)
    if semester:
        value = _ordinal_value(semester)
        if value in (1, 2):
            return Period(type="semester", year=year, semester=value)

    quarter = _QUARTER.search(text)
    if quarter:
        value = _ordinal_value(quarter)
        if value in (1, 2, 3, 4):
            return Period(type="quarter", year=year, quarter=value)

    if year_match:
        return Period(type="year", year=year)

    return None


def period_to_range(period: Optional[Period]) -> Optional[PeriodRange]:
    if period is None or period.type == "none":
        return None
    if period.type == "range" and period.start and period.end:
        return PeriodRange(date.fromisoformat(period.start), date.fromisoformat(period.end))
    if not period.year:
        return None
    if period.type == "year":
        return PeriodRange.for_year(period.year)
    if period.type == "semester" and period.semester:
        return PeriodRange.for_months(period.year, 1 + 6 * (period.semester - 1), 6)
    if period.type == "quarter" and period.quarter:
        return PeriodRange.for_months(period.year, 1 + 3 * (period.quarter - 1), 3)
    if period.type == "month" and period.month:
        return PeriodRange.for_months(period.year, period.month, 1)
    return None
