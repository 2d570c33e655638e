from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dbstudio.db.base import EngineAdapter, MutationOutcome, PageResult, RawResult
from dbstudio.db.utils import SqlDialect, to_record
from dbstudio.exceptions.errors import ValidationError
from dbstudio.logging.logger import get_logger
from dbstudio.query.ddl import SqlStatement, add_column_statement, create_table_statement
from dbstudio.query.filters import FilterPredicate, SqlFragment, translate_sql
from dbstudio.query.pagination import PageRequest, paginate
from dbstudio.schema.identifiers import RELATIONAL
from dbstudio.schema.models import ColumnDefinition, ConnectionDescriptor, TableInfo

log = get_logger("db.sql")


def _bind(value: Any) -> Any:
    # Nested structures go to JSON columns as text.
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class SqlAdapter(EngineAdapter):
    """CRUD shared by the relational engines; subclasses supply connect/describe."""

    dialect: SqlDialect

    def translate_filter(self, predicates: Sequence[FilterPredicate]) -> SqlFragment:
        return translate_sql(predicates, self.dialect)

    def _table(self, table: str, schema: Optional[str]) -> str:
        RELATIONAL.require(table, "table name")
        if schema:
            RELATIONAL.require(schema, "schema name")
        return self.dialect.qualified(table, schema)

    def _cursor(self, handle: Any) -> Any:
        return handle.cursor()

    def _run(self, handle: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        cur = self._cursor(handle)
        log.debug("Executing SQL", extra={"engine": self.kind.value, "sql_head": sql[:300]})
        cur.execute(sql, tuple(params) if params else None)
        return cur

    def _matched_rows(self, cursor: Any) -> int:
        return max(int(cursor.rowcount or 0), 0)

    # -- reads -------------------------------------------------------------

    def _count(self, handle: Any, qualified: str, where: SqlFragment) -> int:
        cur = self._run(handle, f"SELECT COUNT(*) AS total FROM {qualified}{where.where_sql}", where.params)
        try:
            row = cur.fetchone()
        finally:
            cur.close()
        if not row:
            return 0
        return int(row["total"] if isinstance(row, Mapping) else row[0])

    def fetch_page(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        request: PageRequest,
        predicates: Sequence[FilterPredicate],
        schema: Optional[str] = None,
    ) -> PageResult:
        qualified = self._table(table, schema)
        where = self.translate_filter(predicates)
        table_schema = self.describe(handle, descriptor, table, schema)

        total = self._count(handle, qualified, where)
        window = paginate(request, total)

        order_sql = ""
        pk = table_schema.primary_key()
        if pk and RELATIONAL.is_valid(pk):
            order_sql = f" ORDER BY {self.dialect.ident(pk)}"

        ph = self.dialect.placeholder
        sql = f"SELECT * FROM {qualified}{where.where_sql}{order_sql} LIMIT {ph} OFFSET {ph}"
        cur = self._run(handle, sql, [*where.params, window.page_size, window.offset])
        try:
            rows = cur.fetchall()
        finally:
            cur.close()
        return PageResult(records=[to_record(r) for r in rows], window=window, schema=table_schema)

    # -- mutations ---------------------------------------------------------

    def insert(
        self, handle: Any, descriptor: ConnectionDescriptor, table: str, values: Mapping[str, Any], schema: Optional[str] = None
    ) -> MutationOutcome:
        qualified = self._table(table, schema)
        if not values:
            raise ValidationError("No data provided for insertion.")
        cols = [self.dialect.ident(RELATIONAL.require(c, "column name")) for c in values.keys()]
        placeholders = ", ".join(self.dialect.placeholder for _ in cols)
        sql = f"INSERT INTO {qualified} ({', '.join(cols)}) VALUES ({placeholders})"
        cur = self._run(handle, sql, [_bind(v) for v in values.values()])
        try:
            n = max(int(cur.rowcount or 0), 0)
            last_id = getattr(cur, "lastrowid", None)
        finally:
            cur.close()
        return MutationOutcome(matched=n, modified=n, inserted_id=str(last_id) if last_id else None)

    def update(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        values: Mapping[str, Any],
        schema: Optional[str] = None,
    ) -> MutationOutcome:
        qualified = self._table(table, schema)
        key = RELATIONAL.require(key_column, "primary key column")
        if key_value is None or key_value == "":
            raise ValidationError("Primary key value is required.")
        if not values:
            raise ValidationError("No data provided to update.")
        ph = self.dialect.placeholder
        sets = ", ".join(f"{self.dialect.ident(RELATIONAL.require(c, 'column name'))} = {ph}" for c in values.keys())
        sql = f"UPDATE {qualified} SET {sets} WHERE {self.dialect.ident(key)} = {ph}"
        cur = self._run(handle, sql, [*(_bind(v) for v in values.values()), key_value])
        try:
            modified = max(int(cur.rowcount or 0), 0)
            matched = self._matched_rows(cur)
        finally:
            cur.close()
        return MutationOutcome(matched=matched, modified=modified)

    def delete(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        schema: Optional[str] = None,
    ) -> int:
        qualified = self._table(table, schema)
        key = RELATIONAL.require(key_column, "primary key column")
        if key_value is None or key_value == "":
            raise ValidationError("Primary key value is required.")
        sql = f"DELETE FROM {qualified} WHERE {self.dialect.ident(key)} = {self.dialect.placeholder}"
        cur = self._run(handle, sql, [key_value])
        try:
            return max(int(cur.rowcount or 0), 0)
        finally:
            cur.close()

    def raw_query(self, handle: Any, descriptor: ConnectionDescriptor, text: str) -> RawResult:
        if not (text or "").strip():
            raise ValidationError("Query text is required.")
        cur = self._cursor(handle)
        try:
            # No params: the text goes to the server exactly as typed.
            cur.execute(text)
            if cur.description:
                return RawResult(records=[to_record(r) for r in cur.fetchall()], rowcount=cur.rowcount)
            return RawResult(records=[], rowcount=cur.rowcount)
        finally:
            cur.close()

    # -- DDL ---------------------------------------------------------------

    def _exec_statement(self, handle: Any, stmt: SqlStatement) -> None:
        cur = self._run(handle, stmt.sql, stmt.args())
        cur.close()

    def create_table(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        columns: Sequence[ColumnDefinition],
        schema: Optional[str] = None,
    ) -> None:
        self._table(table, schema)
        self._exec_statement(handle, create_table_statement(table, columns, self.dialect, schema))

    def add_columns(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        columns: Sequence[ColumnDefinition],
        schema: Optional[str] = None,
    ) -> None:
        self._table(table, schema)
        if not columns:
            raise ValidationError("No column definitions provided.")
        # Render everything first so a bad definition fails before any ALTER runs.
        statements = [add_column_statement(table, c, self.dialect, schema) for c in columns]
        for stmt in statements:
            self._exec_statement(handle, stmt)

    def drop_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        self._exec_statement(handle, SqlStatement(f"DROP TABLE {self._table(table, schema)}"))

    def truncate_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        self._exec_statement(handle, SqlStatement(f"TRUNCATE TABLE {self._table(table, schema)}"))

    # -- listing -----------------------------------------------------------

    def _count_tables(self, handle: Any, names: List[str], schema: Optional[str]) -> List[TableInfo]:
        out: List[TableInfo] = []
        for name in names:
            if not RELATIONAL.is_valid(name):
                log.info("Skipping count for unquotable table name", extra={"table": name})
                out.append(TableInfo(name=name, count=-1))
                continue
            out.append(TableInfo(name=name, count=self._count(handle, self._table(name, schema), SqlFragment())))
        return out

    def _rows(self, handle: Any, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cur = self._run(handle, sql, params)
        try:
            return [dict(r) for r in cur.fetchall()]
        finally:
            cur.close()
