import re
from typing import Optional

# Identifiers that models tend to emit in Excel casing ("Total", "MatMed")
# while the exames table uses lower-case column names.
_CASE_FIXES = (
    (re.compile(r"\bMes\b", re.IGNORECASE), "mes"),
    (re.compile(r"\bAno\b", re.IGNORECASE), "ano"),
    (re.compile(r"\bTotal\b", re.IGNORECASE), "total"),
    (re.compile(r"\bMatMed\b", re.IGNORECASE), "matmed"),
)
_MONTH_CALL = re.compile(r"\bmonth\s*\(\s*(\w+)\s*\)", re.IGNORECASE)


def repair_sql(sql: str, error: Optional[str] = None) -> str:
    """
    One deterministic repair pass for a failed candidate. Returns the input
    unchanged when nothing applies.
    """
    repaired = sql
    for pattern, replacement in _CASE_FIXES:
        repaired = pattern.sub(replacement, repaired)

    # MySQL-style month(col) is not available on PostgreSQL
    if "function" in (error or "").lower() and _MONTH_CALL.search(repaired):
        repaired = _MONTH_CALL.sub(r"date_trunc('month', \1)", repaired)

    return repaired
