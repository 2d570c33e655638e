from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

from bson import ObjectId, json_util
from pymongo import MongoClient

from dbstudio.db.base import EngineAdapter, MutationOutcome, PageResult, RawResult, TlsPolicy, resolve_tls
from dbstudio.db.utils import join_query, pop_tls_params, split_search, to_record
from dbstudio.exceptions.errors import UnsupportedOperationError, ValidationError
from dbstudio.logging.logger import get_logger
from dbstudio.query.filters import FilterPredicate, translate_document
from dbstudio.query.pagination import PageRequest, paginate
from dbstudio.schema.identifiers import FIELD_PATH
from dbstudio.schema.models import (
    MONGO_SRV,
    MONGO_STANDARD,
    ColumnDefinition,
    ConnectionDescriptor,
    EngineKind,
    TableInfo,
    TableSchema,
)

log = get_logger("db.mongo")

_TLS_PARAMS = {
    TlsPolicy.DISABLED: [("tls", "false")],
    TlsPolicy.UNVERIFIED: [("tls", "true"), ("tlsInsecure", "true")],
    TlsPolicy.VERIFY_CA: [("tls", "true"), ("tlsAllowInvalidHostnames", "true")],
    TlsPolicy.VERIFY_IDENTITY: [("tls", "true")],
}


def build_uri(descriptor: ConnectionDescriptor, app_name: str = "dbstudio") -> str:
    """Connection string for either variant.

    ``mongodb+srv`` gets ``retryWrites=true&w=majority&appName=...`` unless the
    extra params set those keys; the standard variant carries the port.
    ``ssl-mode``/``sslmode`` map onto pymongo's ``tls*`` options, while a native
    ``ssl=...`` param is left for the driver.
    """
    ssl_mode, ssl_flag, remaining = pop_tls_params(split_search(descriptor.search))
    if ssl_flag is not None:
        remaining.append(("ssl", ssl_flag))
    policy = resolve_tls(ssl_mode, None, descriptor.ssl)
    if policy is not None:
        remaining.extend(_TLS_PARAMS[policy])

    auth = ""
    if descriptor.user:
        auth = f"{quote(descriptor.user, safe='')}:{quote(descriptor.password, safe='')}@"
    db = quote(descriptor.database, safe="")

    protocol = descriptor.protocol or MONGO_STANDARD
    if protocol == MONGO_SRV:
        given = {k for k, _ in remaining}
        defaults = [("retryWrites", "true"), ("w", "majority"), ("appName", app_name)]
        params = [(k, v) for k, v in defaults if k not in given] + remaining
        return f"{MONGO_SRV}://{auth}{descriptor.host}/{db}?{join_query(params)}"
    if protocol != MONGO_STANDARD:
        raise ValidationError(f"Unsupported MongoDB protocol: {protocol}")

    port = f":{descriptor.port}" if descriptor.port else ""
    uri = f"{MONGO_STANDARD}://{auth}{descriptor.host}{port}/{db}"
    if remaining:
        uri += f"?{join_query(remaining)}"
    return uri


def object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise ValidationError("Invalid MongoDB ObjectId format.")
    return ObjectId(value)


def _collection(name: str) -> str:
    return FIELD_PATH.require(name, "collection name")


class MongoAdapter(EngineAdapter):
    kind = EngineKind.MONGO

    def __init__(self, connect_timeout_s: int = 10, app_name: str = "dbstudio"):
        super().__init__(connect_timeout_s)
        self.app_name = app_name

    def _open(self, descriptor: ConnectionDescriptor) -> Any:
        timeout_ms = int(self.connect_timeout_s * 1000)
        client = MongoClient(
            build_uri(descriptor, self.app_name),
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        try:
            # MongoClient connects lazily; force a round trip so failures surface here.
            client.admin.command("ping")
        except Exception:
            client.close()
            raise
        return client

    def _close(self, handle: Any) -> None:
        handle.close()

    def _db(self, handle: Any, descriptor: ConnectionDescriptor) -> Any:
        return handle[descriptor.database]

    def translate_filter(self, predicates: Sequence[FilterPredicate]) -> Dict[str, Any]:
        return translate_document(predicates)

    def list_tables(self, handle: Any, descriptor: ConnectionDescriptor, schema: Optional[str] = None) -> List[TableInfo]:
        db = self._db(handle, descriptor)
        return [
            TableInfo(name=n, count=int(db[n].estimated_document_count()))
            for n in sorted(db.list_collection_names())
        ]

    def describe(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> TableSchema:
        raise UnsupportedOperationError("MongoDB collections have no fixed schema to describe.")

    def fetch_page(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        request: PageRequest,
        predicates: Sequence[FilterPredicate],
        schema: Optional[str] = None,
    ) -> PageResult:
        col = self._db(handle, descriptor)[_collection(table)]
        query = self.translate_filter(predicates)
        window = paginate(request, col.count_documents(query))
        cursor = col.find(query).sort("_id", 1).skip(window.offset).limit(window.page_size)
        try:
            records = [to_record(doc) for doc in cursor]
        finally:
            cursor.close()
        return PageResult(records=records, window=window, schema=None)

    def insert(
        self, handle: Any, descriptor: ConnectionDescriptor, table: str, values: Mapping[str, Any], schema: Optional[str] = None
    ) -> MutationOutcome:
        col = self._db(handle, descriptor)[_collection(table)]
        if not values:
            raise ValidationError("No data provided for insertion.")
        # insert_one stamps _id onto the mapping it receives; keep the caller's copy clean.
        result = col.insert_one(dict(values))
        return MutationOutcome(matched=1, modified=1, inserted_id=str(result.inserted_id))

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
        col = self._db(handle, descriptor)[_collection(table)]
        oid = object_id(key_value)
        changes = {k: v for k, v in (values or {}).items() if k != "_id"}
        if not changes:
            raise ValidationError("No data provided to update.")
        bad = [k for k in changes if not isinstance(k, str) or k.startswith("$")]
        if bad:
            raise ValidationError(f"Invalid field name: {bad[0]}")
        result = col.update_one({"_id": oid}, {"$set": changes})
        return MutationOutcome(matched=result.matched_count, modified=result.modified_count)

    def delete(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        schema: Optional[str] = None,
    ) -> int:
        col = self._db(handle, descriptor)[_collection(table)]
        oid = object_id(key_value)
        return col.delete_one({"_id": oid}).deleted_count

    def unset_field(self, handle: Any, descriptor: ConnectionDescriptor, table: str, doc_id: str, field_path: str) -> int:
        col = self._db(handle, descriptor)[_collection(table)]
        oid = object_id(doc_id)
        path = FIELD_PATH.require(field_path, "field name")
        return col.update_one({"_id": oid}, {"$unset": {path: ""}}).modified_count

    def raw_query(self, handle: Any, descriptor: ConnectionDescriptor, text: str) -> RawResult:
        """Run a database command given as (extended) JSON, e.g. ``{"find": "users"}``."""
        if not (text or "").strip():
            raise ValidationError("Query text is required.")
        try:
            command = json_util.loads(text)
        except ValueError as e:
            raise ValidationError(f"Query must be a JSON command document: {e}") from e
        if not isinstance(command, dict) or not command:
            raise ValidationError("Query must be a JSON command document.")
        reply = self._db(handle, descriptor).command(command)
        batch = (reply.get("cursor") or {}).get("firstBatch")
        if isinstance(batch, list):
            return RawResult(records=[to_record(d) for d in batch], rowcount=len(batch))
        return RawResult(records=[to_record(reply)], rowcount=reply.get("n"))

    def create_table(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        columns: Sequence[ColumnDefinition],
        schema: Optional[str] = None,
    ) -> None:
        if columns:
            log.debug("Ignoring column definitions for MongoDB collection", extra={"collection": table})
        self._db(handle, descriptor).create_collection(_collection(table))

    def drop_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        self._db(handle, descriptor).drop_collection(_collection(table))

    def truncate_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        result = self._db(handle, descriptor)[_collection(table)].delete_many({})
        log.info("Collection emptied", extra={"collection": table, "deleted": result.deleted_count})
