"""
Pattern-based guardrails for SQL coming from callers and from the LLM.

Only single SELECT/WITH statements may reach the read-only connection. The
keyword checks are deliberately coarse: an identifier such as `update_flag`
is fine, but a bare `update` anywhere in the text rejects the statement.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

logger = logging.getLogger(__name__)

EMPTY_SQL = "SQL cannot be empty"
SELECT_ONLY = "Only SELECT statements are allowed"
MULTIPLE_STATEMENTS = "Multiple statements are not allowed"

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_]\w*)?\$")
_SELECT_START = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)
_DML_KEYWORDS = re.compile(r"\b(INSERT|UPDATE|DELETE|MERGE|UPSERT|REPLACE)\b", re.IGNORECASE)
_DDL_KEYWORDS = re.compile(r"\b(CREATE|DROP|ALTER|TRUNCATE|RENAME)\b", re.IGNORECASE)
_ADMIN_KEYWORDS = re.compile(r"\b(GRANT|REVOKE|SET|RESET|SHOW|EXPLAIN|ANALYZE)\b", re.IGNORECASE)
_STATEMENT_AFTER_SEMICOLON = re.compile(r";\s*\S")
_TRAILING_SEMICOLON = re.compile(r";\s*$")
_EXISTING_LIMIT = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)

_SINGLE_QUOTED = re.compile(r"'[^']*(?:'|$)")
_DOUBLE_QUOTED = re.compile(r'"[^"]*(?:"|$)')
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_US_PHONE = re.compile(r"\b\d{3}-\d{3}-\d{4}\b")
_US_PHONE_PAREN = re.compile(r"\(\d{3}\)\s*\d{3}-\d{4}\b")
_BR_PHONE_PAREN = re.compile(r"\(\d{2}\)\s*\d{4,5}-\d{4}\b")
_BR_PHONE = re.compile(r"\b\d{4,5}-\d{4}\b")

_QUERY_NODES = tuple(
    getattr(exp, name) for name in ("Query", "Select", "Union", "Intersect", "Except") if hasattr(exp, name)
)
_FORBIDDEN_NODES = tuple(
    getattr(exp, name)
    for name in (
        "Insert", "Update", "Delete", "Merge", "Drop", "Create", "Alter", "AlterTable", "TruncateTable", "Command", "Into"
    )
    if hasattr(exp, name)
)


@dataclass(frozen=True)
class SqlValidation:
    is_valid: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class SqlPreparation:
    original_sql: str
    prepared_sql: Optional[str] = None
    error: Optional[str] = None


def _literal_end(sql: str, start: int) -> int:
    """Index just past the quoted literal or identifier opening at `start`."""
    quote = sql[start]
    # E'...' strings take backslash escapes; ELSE'...' is not one
    backslash_escapes = (
        quote == "'"
        and start > 0
        and sql[start - 1] in "eE"
        and (start == 1 or not (sql[start - 2].isalnum() or sql[start - 2] == "_"))
    )
    index = start + 1
    while index < len(sql):
        char = sql[index]
        if backslash_escapes and char == "\\":
            index += 2
            continue
        if char == quote:
            if sql.startswith(quote * 2, index):
                index += 2
                continue
            return index + 1
        index += 1
    return len(sql)


def _scrub(sql: str, blank_literals: bool = False) -> str:
    """
    Drop comments while stepping over quoted text, so `--` or `/*` inside a
    literal is never read as a comment. Each comment becomes one space.
    With `blank_literals`, literal bodies are emptied as well.
    """
    sql = sql or ""
    out = []
    index = 0
    while index < len(sql):
        char = sql[index]
        if char in ("'", '"'):
            end = _literal_end(sql, index)
            out.append(char * 2 if blank_literals else sql[index:end])
            index = end
            continue
        if char == "$":
            tag = _DOLLAR_TAG.match(sql, index)
            if tag:
                close = sql.find(tag.group(0), tag.end())
                end = len(sql) if close == -1 else close + len(tag.group(0))
                out.append("''" if blank_literals else sql[index:end])
                index = end
                continue
        if sql.startswith("--", index):
            newline = sql.find("\n", index)
            index = len(sql) if newline == -1 else newline
            out.append(" ")
            continue
        if sql.startswith("/*", index):
            close = sql.find("*/", index + 2)
            index = len(sql) if close == -1 else close + 2
            out.append(" ")
            continue
        out.append(char)
        index += 1
    return "".join(out)


def strip_comments(sql: str) -> str:
    return _scrub(sql)


def is_select_only(sql: str) -> bool:
    cleaned = strip_comments(sql).strip()
    if not cleaned:
        return False
    if not _SELECT_START.match(cleaned):
        return False
    for pattern in (_DML_KEYWORDS, _DDL_KEYWORDS, _ADMIN_KEYWORDS):
        if pattern.search(cleaned):
            return False
    return True


def has_single_statement(sql: str) -> bool:
    # semicolons inside literals do not separate statements
    cleaned = _scrub(sql, blank_literals=True).strip()
    if _STATEMENT_AFTER_SEMICOLON.search(cleaned):
        return False
    return ";" not in _TRAILING_SEMICOLON.sub("", cleaned)


def inject_limit(sql: str, limit: int = 5000) -> str:
    """
    Append `LIMIT <limit>` unless the statement already carries a numeric
    LIMIT. Comments are removed first so a trailing `--` cannot swallow the
    appended clause; a LIMIT inside a comment or literal does not count.
    """
    trimmed = _TRAILING_SEMICOLON.sub("", strip_comments(sql).strip()).rstrip()
    if _EXISTING_LIMIT.search(_scrub(trimmed, blank_literals=True)):
        return trimmed
    return f"{trimmed} LIMIT {int(limit)}"


def sanitize_for_log(sql: str) -> str:
    sanitized = _SINGLE_QUOTED.sub("'***'", sql or "")
    sanitized = _DOUBLE_QUOTED.sub('"***"', sanitized)
    sanitized = _EMAIL.sub("***@***.***", sanitized)
    sanitized = _US_PHONE.sub("***-***-****", sanitized)
    sanitized = _US_PHONE_PAREN.sub("(***) ***-****", sanitized)
    sanitized = _BR_PHONE_PAREN.sub("(**) *****-****", sanitized)
    sanitized = _BR_PHONE.sub("*****-****", sanitized)
    return sanitized


def _ast_violation(sql: str) -> Optional[str]:
    """
    Second opinion from sqlglot. Only rejects; text that sqlglot cannot
    parse is left to the database, which reports it as a syntax error.
    """
    try:
        statements = [s for s in sqlglot.parse(sql, read="postgres") if s is not None]
    except SqlglotError as exc:
        logger.debug("sqlglot could not parse statement: %s", exc)
        return None

    if len(statements) > 1:
        return MULTIPLE_STATEMENTS

    for statement in statements:
        if not isinstance(statement, _QUERY_NODES):
            return SELECT_ONLY
        for node in statement.walk():
            # walk() yields (node, parent, key) tuples on older sqlglot releases
            if isinstance(node, tuple):
                node = node[0]
            if isinstance(node, _FORBIDDEN_NODES):
                return SELECT_ONLY
    return None


def validate_sql(sql: str) -> SqlValidation:
    if not sql or not sql.strip():
        return SqlValidation(False, EMPTY_SQL)

    # stacked statements are reported as such even when a later one is DDL
    if not has_single_statement(sql):
        return SqlValidation(False, MULTIPLE_STATEMENTS)

    if not is_select_only(sql):
        return SqlValidation(False, SELECT_ONLY)

    violation = _ast_violation(sql)
    if violation:
        logger.warning("AST check rejected statement: %s", sanitize_for_log(sql))
        return SqlValidation(False, violation)

    return SqlValidation(True)


def prepare_sql(sql: str, max_rows: int = 5000) -> SqlPreparation:
    validation = validate_sql(sql)
    if not validation.is_valid:
        return SqlPreparation(original_sql=sql, error=validation.error)
    return SqlPreparation(original_sql=sql, prepared_sql=inject_limit(sql, max_rows))
