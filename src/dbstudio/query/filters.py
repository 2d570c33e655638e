"""Engine-neutral filter vocabulary and its per-engine compilers.

Callers send an ordered list of ``{column, op, value?}`` predicates. The SQL
compiler produces a ``WHERE`` fragment plus bound parameters; the document
compiler produces a MongoDB query document. Both paths take the same
predicates, so a count and a page fetch built from one list always agree.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from dbstudio.db.utils import SqlDialect
from dbstudio.logging.logger import get_logger
from dbstudio.schema.identifiers import FIELD_PATH, RELATIONAL

log = get_logger("query.filters")


class FilterOp(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


_OPS_BY_VALUE = {op.value: op for op in FilterOp}


@dataclass(frozen=True)
class FilterPredicate:
    column: str
    op: Union[FilterOp, str]
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "FilterPredicate":
        op_raw = str(raw.get("op") or "").strip().lower()
        # Unknown ops survive parsing as plain strings; compilers drop them.
        op: Union[FilterOp, str] = _OPS_BY_VALUE.get(op_raw, op_raw)
        value = raw.get("value")
        return cls(column=str(raw.get("column") or ""), op=op, value=None if value is None else str(value))

    @property
    def supported(self) -> bool:
        return isinstance(self.op, FilterOp)


PredicateLike = Union[FilterPredicate, Mapping[str, Any]]


def parse_filters(filters: Optional[Iterable[PredicateLike]]) -> List[FilterPredicate]:
    out: List[FilterPredicate] = []
    for f in filters or []:
        out.append(f if isinstance(f, FilterPredicate) else FilterPredicate.from_dict(f))
    return out


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_SQL_COMPARISONS = {
    FilterOp.EQ: "=",
    FilterOp.NEQ: "!=",
    FilterOp.GT: ">",
    FilterOp.GTE: ">=",
    FilterOp.LT: "<",
    FilterOp.LTE: "<=",
}


@dataclass(frozen=True)
class SqlFragment:
    where_sql: str = ""
    params: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.where_sql)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the pattern matches the text literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def translate_sql(predicates: Iterable[PredicateLike], dialect: SqlDialect) -> SqlFragment:
    clauses: List[str] = []
    params: List[Any] = []
    ph = dialect.placeholder

    for p in parse_filters(predicates):
        if not p.column:
            continue
        RELATIONAL.require(p.column, "filter column")
        if not p.supported:
            log.debug("Dropping unsupported filter op", extra={"op": str(p.op), "column": p.column})
            continue
        col = dialect.ident(p.column)
        text_col = dialect.as_text(col)
        raw = p.value if p.value is not None else ""

        if p.op in _SQL_COMPARISONS:
            clauses.append(f"{col} {_SQL_COMPARISONS[p.op]} {ph}")
            params.append(raw)
        elif p.op is FilterOp.CONTAINS:
            clauses.append(f"{text_col} {dialect.like_op} {ph}")
            params.append(f"%{escape_like(raw)}%")
        elif p.op is FilterOp.STARTS_WITH:
            clauses.append(f"{text_col} {dialect.like_op} {ph}")
            params.append(f"{escape_like(raw)}%")
        elif p.op is FilterOp.ENDS_WITH:
            clauses.append(f"{text_col} {dialect.like_op} {ph}")
            params.append(f"%{escape_like(raw)}")
        elif p.op is FilterOp.IS_NULL:
            clauses.append(f"{col} IS NULL")
        elif p.op is FilterOp.IS_NOT_NULL:
            clauses.append(f"{col} IS NOT NULL")
        # exists / not_exists have no relational meaning

    if not clauses:
        return SqlFragment()
    return SqlFragment(where_sql=" WHERE " + " AND ".join(clauses), params=params)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

_REGEX_SPECIALS = re.compile(r"[.*+?^${}()|\[\]\\]")

MAX_SAFE_INTEGER = 2**53 - 1

_DOC_COMPARISONS = {
    FilterOp.GT: "$gt",
    FilterOp.GTE: "$gte",
    FilterOp.LT: "$lt",
    FilterOp.LTE: "$lte",
}


def escape_regex(value: str) -> str:
    return _REGEX_SPECIALS.sub(lambda m: "\\" + m.group(0), value)


def _as_number(text: str) -> Optional[Union[int, float]]:
    # Accept only text that a double prints back identically: "1.0", "1e3", "+5",
    # "007" and integers beyond 2**53 - 1 stay strings.
    try:
        n = int(text)
    except ValueError:
        pass
    else:
        if str(n) == text and abs(n) <= MAX_SAFE_INTEGER:
            return n
        return None
    if "e" in text.lower() or text.endswith(".0"):
        return None
    try:
        f = float(text)
    except ValueError:
        return None
    if math.isfinite(f) and repr(f) == text:
        return f
    return None


def coerce_value(value: Optional[str]) -> Any:
    """Best-effort typing of a filter value for the document engine."""
    if value is None:
        return None
    trimmed = value.strip()
    if trimmed == "":
        return value
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    n = _as_number(trimmed)
    if n is not None:
        return n
    return value


def _regex(pattern: str) -> Dict[str, str]:
    return {"$regex": pattern, "$options": "i"}


def translate_document(predicates: Iterable[PredicateLike]) -> Dict[str, Any]:
    clauses: List[Dict[str, Any]] = []

    for p in parse_filters(predicates):
        if not p.column:
            continue
        FIELD_PATH.require(p.column, "filter field")
        if not p.supported:
            log.debug("Dropping unsupported filter op", extra={"op": str(p.op), "column": p.column})
            continue
        col = p.column
        value = coerce_value(p.value)
        text = escape_regex(p.value or "")

        if p.op is FilterOp.EQ:
            clauses.append({col: value})
        elif p.op is FilterOp.NEQ:
            clauses.append({col: {"$ne": value}})
        elif p.op in _DOC_COMPARISONS:
            clauses.append({col: {_DOC_COMPARISONS[p.op]: value}})
        elif p.op is FilterOp.CONTAINS:
            clauses.append({col: _regex(text)})
        elif p.op is FilterOp.STARTS_WITH:
            clauses.append({col: _regex(f"^{text}")})
        elif p.op is FilterOp.ENDS_WITH:
            clauses.append({col: _regex(f"{text}$")})
        elif p.op is FilterOp.EXISTS:
            clauses.append({col: {"$exists": True}})
        elif p.op is FilterOp.NOT_EXISTS:
            clauses.append({col: {"$exists": False}})
        elif p.op is FilterOp.IS_NULL:
            clauses.append({col: None})
        elif p.op is FilterOp.IS_NOT_NULL:
            clauses.append({col: {"$ne": None}})

    if not clauses:
        return {}
    return {"$and": clauses}


def describe(predicates: Sequence[FilterPredicate]) -> List[Dict[str, Any]]:
    """Loggable form of a filter list (values omitted)."""
    return [{"column": p.column, "op": str(getattr(p.op, "value", p.op))} for p in predicates]
