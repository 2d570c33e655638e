from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Union

from dbstudio.config.settings import Settings
from dbstudio.db.base import EngineAdapter, scrub
from dbstudio.db.mongo import object_id
from dbstudio.db.registry import default_adapters
from dbstudio.exceptions.errors import (
    DbStudioError,
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from dbstudio.logging.logger import get_logger, redact
from dbstudio.query.filters import FilterPredicate, describe, parse_filters
from dbstudio.query.pagination import PageRequest
from dbstudio.schema.identifiers import FIELD_PATH, RELATIONAL
from dbstudio.schema.models import ColumnDefinition, ConnectionDescriptor, EngineKind
from dbstudio.service.results import OperationResult
from dbstudio.vault.store import ConnectionVault

log = get_logger("service.studio")

Step = Callable[[EngineAdapter, Any, ConnectionDescriptor], OperationResult]
Check = Callable[[EngineAdapter, ConnectionDescriptor], None]

NO_CHANGES = "No changes were applied."


def _row_noun(kind: EngineKind) -> str:
    return "Row" if kind.is_relational else "Document"


def _table_noun(kind: EngineKind) -> str:
    return "Table" if kind.is_relational else "Collection"


def _require_table(descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
    if descriptor.engine.is_relational:
        RELATIONAL.require(table, "table name")
        if schema:
            RELATIONAL.require(schema, "schema name")
    else:
        FIELD_PATH.require(table, "collection name")


def _require_key(descriptor: ConnectionDescriptor, key_column: Optional[str], key_value: Any) -> None:
    if descriptor.engine.is_relational:
        RELATIONAL.require(key_column, "primary key column")
        if key_value is None or key_value == "":
            raise ValidationError("Primary key value is required.")
    else:
        object_id(key_value)


def _require_columns(descriptor: ConnectionDescriptor, values: Mapping[str, Any], empty_message: str) -> None:
    if not values:
        raise ValidationError(empty_message)
    if descriptor.engine.is_relational:
        for c in values.keys():
            RELATIONAL.require(c, "column name")


def _column_defs(columns: Iterable[Union[ColumnDefinition, Dict[str, Any]]]) -> list:
    return [c if isinstance(c, ColumnDefinition) else ColumnDefinition.from_dict(c) for c in columns or ()]


class DataStudio:
    """One entry point for every stored connection.

    Each operation follows the same path: look up the descriptor in the vault,
    validate the request, open one connection through the engine's adapter,
    make the native call, map the result and release the connection. Errors
    never escape: they come back as ``OperationResult(success=False)``.
    """

    def __init__(
        self,
        vault: ConnectionVault,
        adapters: Optional[Mapping[EngineKind, EngineAdapter]] = None,
        settings: Optional[Settings] = None,
    ):
        self.vault = vault
        self.adapters: Dict[EngineKind, EngineAdapter] = dict(adapters) if adapters else default_adapters(settings)
        self.default_page_size = settings.default_page_size if settings else 20
        self.max_page_size: Optional[int] = settings.max_page_size if settings else None
        self.allow_raw_queries = settings.allow_raw_queries if settings else True

    def close(self) -> None:
        self.vault.close()

    def __enter__(self) -> "DataStudio":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _adapter(self, kind: EngineKind) -> EngineAdapter:
        try:
            return self.adapters[kind]
        except KeyError:
            raise UnsupportedOperationError(f"No adapter registered for {kind.value}.") from None

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _failure(self, op: str, err: Exception, descriptor: Optional[ConnectionDescriptor]) -> OperationResult:
        msg = scrub(str(err), descriptor) if descriptor else redact(str(err))
        if isinstance(err, DbStudioError):
            log.warning("Operation failed", extra={"op": op, "error_type": type(err).__name__, "error": msg})
            return OperationResult.fail(msg)
        # No exc_info: the traceback would carry the unscrubbed driver message.
        log.error(
            "Operation failed | op=%s | error=%s",
            op,
            msg,
            extra={"op": op, "error_type": type(err).__name__},
        )
        return OperationResult.fail(f"{op.replace('_', ' ').capitalize()} failed: {msg}")

    def _run(self, op: str, conn_id: str, step: Step, check: Optional[Check] = None) -> OperationResult:
        descriptor: Optional[ConnectionDescriptor] = None
        try:
            descriptor = self.vault.get(conn_id)
            adapter = self._adapter(descriptor.engine)
            if check is not None:
                # Validation happens before any connection is opened.
                check(adapter, descriptor)
            log.info("Running operation", extra={"op": op, "connection_id": conn_id, "engine": descriptor.engine.value})
            with adapter.connect(descriptor) as handle:
                return step(adapter, handle, descriptor)
        except Exception as e:
            return self._failure(op, e, descriptor)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def test_connection(self, descriptor: Union[ConnectionDescriptor, Dict[str, Any]]) -> OperationResult:
        """Open and ping a connection from a transient descriptor; nothing is persisted."""
        d: Optional[ConnectionDescriptor] = None
        try:
            d = descriptor if isinstance(descriptor, ConnectionDescriptor) else ConnectionDescriptor.from_dict(descriptor)
            if not d.host:
                raise ValidationError("Host is required.")
            adapter = self._adapter(d.engine)
            with adapter.connect(d) as handle:
                adapter.ping(handle)
            return OperationResult.ok("Connection successful.")
        except Exception as e:
            return self._failure("test_connection", e, d)

    def create_connection(self, payload: Union[ConnectionDescriptor, Dict[str, Any]]) -> OperationResult:
        try:
            d = payload if isinstance(payload, ConnectionDescriptor) else ConnectionDescriptor.from_dict(payload)
            summary = self.vault.store(d)
            return OperationResult.ok("Connection saved.", connection=summary.to_dict())
        except Exception as e:
            return self._failure("create_connection", e, None)

    def list_connections(self) -> OperationResult:
        try:
            return OperationResult.ok(connections=[s.to_dict() for s in self.vault.list()])
        except Exception as e:
            return self._failure("list_connections", e, None)

    def connection_meta(self, conn_id: str) -> OperationResult:
        try:
            summary = self.vault.summary(conn_id)
            if summary is None:
                raise NotFoundError("Connection not found.")
            return OperationResult.ok(connection=summary.to_dict())
        except Exception as e:
            return self._failure("connection_meta", e, None)

    def remove_connection(self, conn_id: str) -> OperationResult:
        try:
            if not self.vault.delete(conn_id):
                raise NotFoundError("Connection not found.")
            return OperationResult.ok("Connection removed.")
        except Exception as e:
            return self._failure("remove_connection", e, None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_tables(self, conn_id: str, schema: Optional[str] = None) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            if schema and d.engine.is_relational:
                RELATIONAL.require(schema, "schema name")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            tables = adapter.list_tables(handle, d, schema)
            return OperationResult.ok(tables=[t.to_dict() for t in tables])

        return self._run("list_tables", conn_id, step, check)

    def describe_table(self, conn_id: str, table: str, schema: Optional[str] = None) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            if not d.engine.is_relational:
                raise UnsupportedOperationError("MongoDB collections have no fixed schema to describe.")
            _require_table(d, table, schema)

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            return OperationResult.ok(schema=adapter.describe(handle, d, table, schema).to_dict())

        return self._run("describe_table", conn_id, step, check)

    def fetch_page(
        self,
        conn_id: str,
        table: str,
        page: Any = 1,
        page_size: Any = None,
        filters: Sequence[Union[FilterPredicate, Dict[str, Any]]] = (),
        schema: Optional[str] = None,
    ) -> OperationResult:
        predicates = []
        request: Optional[PageRequest] = None

        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            nonlocal predicates, request
            _require_table(d, table, schema)
            request = PageRequest(page, page_size if page_size is not None else self.default_page_size)
            request.ensure_max(self.max_page_size)
            predicates = parse_filters(filters)
            # Compiling once up front surfaces bad columns before connecting.
            adapter.translate_filter(predicates)

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            log.debug("Fetching page", extra={"table": table, "filters": describe(predicates)})
            result = adapter.fetch_page(handle, d, table, request, predicates, schema)
            w = result.window
            return OperationResult.ok(
                "Data fetched successfully.",
                data=result.records,
                schema=result.schema.to_dict() if result.schema else None,
                total_pages=w.total_pages,
                total=w.total,
                page=w.page,
                page_size=w.page_size,
            )

        return self._run("fetch_page", conn_id, step, check)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, conn_id: str, table: str, values: Mapping[str, Any], schema: Optional[str] = None) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            _require_table(d, table, schema)
            _require_columns(d, values, "No data provided for insertion.")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            outcome = adapter.insert(handle, d, table, values, schema)
            return OperationResult.ok(f"{_row_noun(d.engine)} inserted successfully.", inserted_id=outcome.inserted_id)

        return self._run("insert", conn_id, step, check)

    def update(
        self,
        conn_id: str,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        values: Mapping[str, Any],
        schema: Optional[str] = None,
    ) -> OperationResult:
        """Update one row (by primary key) or one document (by ``_id``).

        ``key_column`` is ignored for MongoDB.
        """

        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            _require_table(d, table, schema)
            _require_key(d, key_column, key_value)
            _require_columns(d, values, "No data provided to update.")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            outcome = adapter.update(handle, d, table, key_column, key_value, values, schema)
            noun = _row_noun(d.engine)
            counts = {"matched_count": outcome.matched, "modified_count": outcome.modified}
            if outcome.matched == 0:
                return OperationResult.fail(f"{noun} not found.", **counts)
            if outcome.modified == 0:
                return OperationResult.ok(NO_CHANGES, **counts)
            return OperationResult.ok(f"{noun} updated successfully.", **counts)

        return self._run("update", conn_id, step, check)

    def delete(
        self,
        conn_id: str,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        schema: Optional[str] = None,
    ) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            _require_table(d, table, schema)
            _require_key(d, key_column, key_value)

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            deleted = adapter.delete(handle, d, table, key_column, key_value, schema)
            if deleted == 0:
                target = "key" if d.engine.is_relational else "ID"
                return OperationResult.fail(f"No {_row_noun(d.engine).lower()} found with the given {target}.")
            return OperationResult.ok(f"{_row_noun(d.engine)} deleted successfully.")

        return self._run("delete", conn_id, step, check)

    def unset_field(self, conn_id: str, collection: str, doc_id: str, field: str) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            if d.engine.is_relational:
                raise UnsupportedOperationError(f"Removing a field is not supported for {d.engine.value}.")
            FIELD_PATH.require(collection, "collection name")
            object_id(doc_id)
            FIELD_PATH.require(field, "field name")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            if adapter.unset_field(handle, d, collection, doc_id, field) == 0:
                return OperationResult.fail("No document found or field already missing.")
            return OperationResult.ok("Field removed successfully.")

        return self._run("unset_field", conn_id, step, check)

    def raw_query(self, conn_id: str, text: str) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            if not self.allow_raw_queries:
                raise UnsupportedOperationError("Raw queries are disabled.")
            if not (text or "").strip():
                raise ValidationError("Query text is required.")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            result = adapter.raw_query(handle, d, text)
            extra = {"rowCount": result.rowcount} if result.rowcount is not None else {}
            return OperationResult.ok("Query executed successfully.", data=result.records, extra=extra)

        return self._run("raw_query", conn_id, step, check)

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def create_table(
        self,
        conn_id: str,
        table: str,
        columns: Iterable[Union[ColumnDefinition, Dict[str, Any]]] = (),
        schema: Optional[str] = None,
    ) -> OperationResult:
        defs = []

        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            nonlocal defs
            _require_table(d, table, schema)
            defs = _column_defs(columns)
            if d.engine.is_relational:
                if not defs:
                    raise ValidationError("At least one column is required.")
                for c in defs:
                    RELATIONAL.require(c.name, "column name")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            adapter.create_table(handle, d, table, defs, schema)
            return OperationResult.ok(f'{_table_noun(d.engine)} "{table}" created successfully.')

        return self._run("create_table", conn_id, step, check)

    def drop_table(self, conn_id: str, table: str, schema: Optional[str] = None) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            _require_table(d, table, schema)

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            adapter.drop_table(handle, d, table, schema)
            return OperationResult.ok(f'{_table_noun(d.engine)} "{table}" deleted successfully.')

        return self._run("drop_table", conn_id, step, check)

    def truncate_table(self, conn_id: str, table: str, schema: Optional[str] = None) -> OperationResult:
        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            _require_table(d, table, schema)

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            adapter.truncate_table(handle, d, table, schema)
            return OperationResult.ok(f'{_table_noun(d.engine)} "{table}" truncated successfully.')

        return self._run("truncate_table", conn_id, step, check)

    def add_columns(
        self,
        conn_id: str,
        table: str,
        columns: Iterable[Union[ColumnDefinition, Dict[str, Any]]],
        schema: Optional[str] = None,
    ) -> OperationResult:
        defs = []

        def check(adapter: EngineAdapter, d: ConnectionDescriptor) -> None:
            nonlocal defs
            if not d.engine.is_relational:
                raise UnsupportedOperationError(f"Adding columns is not supported for {d.engine.value}.")
            _require_table(d, table, schema)
            defs = _column_defs(columns)
            if not defs:
                raise ValidationError("No column definitions provided.")
            for c in defs:
                RELATIONAL.require(c.name, "column name")

        def step(adapter: EngineAdapter, handle: Any, d: ConnectionDescriptor) -> OperationResult:
            adapter.add_columns(handle, d, table, defs, schema)
            return OperationResult.ok(f'Added {len(defs)} column(s) to "{table}".')

        return self._run("add_columns", conn_id, step, check)
