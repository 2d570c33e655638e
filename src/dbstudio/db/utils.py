from __future__ import annotations

import base64
import datetime as _dt
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from dbstudio.schema.identifiers import RELATIONAL


@dataclass(frozen=True)
class SqlDialect:
    """Per-engine rendering rules for the two relational engines.

    Both PyMySQL and psycopg2 use the ``format`` paramstyle, so the placeholder
    is ``%s`` for each; only quoting and text matching differ.
    """

    name: str
    ident_quote: str  # either '"' or '`'
    like_op: str = "LIKE"
    placeholder: str = "%s"
    # Wraps a quoted column for text matching; Postgres has no ILIKE for numbers or dates.
    text_cast: str = "{}"

    def ident(self, name: str) -> str:
        RELATIONAL.require(name, "identifier")
        q = self.ident_quote
        return f"{q}{name}{q}"

    def as_text(self, quoted: str) -> str:
        return self.text_cast.format(quoted)

    def qualified(self, table: str, schema: Optional[str] = None) -> str:
        if schema:
            return f"{self.ident(schema)}.{self.ident(table)}"
        return self.ident(table)


MYSQL = SqlDialect(name="mysql", ident_quote="`", like_op="LIKE")
POSTGRES = SqlDialect(name="postgresql", ident_quote='"', like_op="ILIKE", text_cast="CAST({} AS TEXT)")


def split_search(search: Optional[str]) -> List[Tuple[str, str]]:
    """Parse a free-form extra-params string (``?a=1&b=2`` or ``a=1&b=2``)."""
    raw = (search or "").strip()
    if raw.startswith("?"):
        raw = raw[1:]
    if not raw:
        return []
    return parse_qsl(raw, keep_blank_values=True)


def pop_tls_params(params: List[Tuple[str, str]]) -> Tuple[Optional[str], Optional[str], List[Tuple[str, str]]]:
    """Remove TLS keys from the extra params before they reach a driver.

    Returns ``(ssl_mode, ssl_flag, remaining)``; ``ssl-mode`` wins over ``sslmode``.
    """
    ssl_mode: Optional[str] = None
    ssl_mode_alt: Optional[str] = None
    ssl_flag: Optional[str] = None
    remaining: List[Tuple[str, str]] = []
    for k, v in params:
        key = k.lower()
        if key == "ssl-mode":
            ssl_mode = ssl_mode or v
        elif key == "sslmode":
            ssl_mode_alt = ssl_mode_alt or v
        elif key == "ssl":
            ssl_flag = ssl_flag or v
        else:
            remaining.append((k, v))
    return ssl_mode or ssl_mode_alt, ssl_flag, remaining


def join_query(params: Iterable[Tuple[str, str]]) -> str:
    return urlencode(list(params))


def to_plain(value: Any) -> Any:
    """Map driver-native values into JSON-friendly Python values."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, _dt.timedelta):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(v) for v in value]
    # ObjectId, Decimal128, Timestamp and anything else with a sane str().
    return str(value)


def to_record(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k): to_plain(v) for k, v in row.items()}
