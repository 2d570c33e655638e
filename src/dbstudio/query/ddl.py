from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, List, Optional, Sequence, Tuple

from dbstudio.db.utils import SqlDialect
from dbstudio.exceptions.errors import ValidationError
from dbstudio.schema.models import ColumnDefinition

# "varchar(255)", "decimal(10, 2)", "int unsigned", "text[]", "double precision"
_TYPE_RE = re.compile(r"[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+\s*(,\s*\d+\s*)?\))?( unsigned)?(\[\])?", re.I)
_UNSAFE_TOKENS = (";", "--", "/*", "*/")


@dataclass(frozen=True)
class SqlStatement:
    sql: str
    params: List[Any] = field(default_factory=list)

    def args(self) -> Optional[Tuple[Any, ...]]:
        # No params -> the driver skips %-interpolation, so a literal % stays as written.
        return tuple(self.params) if self.params else None


def _column_type(col: ColumnDefinition) -> str:
    t = (col.type or "").strip()
    if not _TYPE_RE.fullmatch(t):
        raise ValidationError(f"Invalid column type for {col.name}: {t or '(empty)'}")
    return t.upper()


def _check_expr(col: ColumnDefinition) -> str:
    expr = (col.check or "").strip()
    if any(tok in expr for tok in _UNSAFE_TOKENS):
        raise ValidationError(f"Unsafe tokens in CHECK expression for {col.name}")
    return expr


def column_fragment(col: ColumnDefinition, dialect: SqlDialect, interpolated: bool = False) -> SqlStatement:
    """Render one column definition. The DEFAULT value is bound, never inlined.

    ``interpolated`` tells the renderer the final statement will carry params,
    in which case literal ``%`` in a CHECK expression must be doubled.
    """
    parts: List[str] = [dialect.ident(col.name), _column_type(col)]
    params: List[Any] = []

    if col.auto_increment and dialect.name == "postgresql":
        parts.append("GENERATED BY DEFAULT AS IDENTITY")
    if not col.nullable or col.primary_key:
        parts.append("NOT NULL")
    if col.auto_increment and dialect.name == "mysql":
        parts.append("AUTO_INCREMENT")
    if col.unique and not col.primary_key:
        parts.append("UNIQUE")
    if col.default is not None and not col.auto_increment:
        parts.append(f"DEFAULT {dialect.placeholder}")
        params.append(col.default)

    expr = _check_expr(col)
    if expr:
        if interpolated or params:
            expr = expr.replace("%", "%%")
        parts.append(f"CHECK ({expr})")

    return SqlStatement(" ".join(parts), params)


def _has_bound_default(col: ColumnDefinition) -> bool:
    return col.default is not None and not col.auto_increment


def create_table_statement(
    table: str,
    columns: Sequence[ColumnDefinition],
    dialect: SqlDialect,
    schema: Optional[str] = None,
) -> SqlStatement:
    if not columns:
        raise ValidationError("At least one column is required.")

    interpolated = any(_has_bound_default(c) for c in columns)
    fragments = [column_fragment(c, dialect, interpolated) for c in columns]

    body = [f.sql for f in fragments]
    pk = [dialect.ident(c.name) for c in columns if c.primary_key]
    if pk:
        body.append(f"PRIMARY KEY ({', '.join(pk)})")

    params: List[Any] = []
    for f in fragments:
        params.extend(f.params)

    sql = f"CREATE TABLE {dialect.qualified(table, schema)} ({', '.join(body)})"
    return SqlStatement(sql, params)


def add_column_statement(
    table: str,
    column: ColumnDefinition,
    dialect: SqlDialect,
    schema: Optional[str] = None,
) -> SqlStatement:
    frag = column_fragment(column, dialect)
    sql = f"ALTER TABLE {dialect.qualified(table, schema)} ADD COLUMN {frag.sql}"
    if column.primary_key:
        sql += f", ADD PRIMARY KEY ({dialect.ident(column.name)})"
    return SqlStatement(sql, frag.params)
