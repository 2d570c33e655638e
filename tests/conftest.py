from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from dbstudio.db.base import EngineAdapter, MutationOutcome, PageResult, RawResult
from dbstudio.db.utils import MYSQL
from dbstudio.query.filters import translate_document, translate_sql
from dbstudio.query.pagination import paginate
from dbstudio.schema.models import ColumnInfo, EngineKind, TableInfo, TableSchema
from dbstudio.service.studio import DataStudio
from dbstudio.vault.crypto import SecretCipher
from dbstudio.vault.keys import KeyProvider
from dbstudio.vault.store import ConnectionVault


class FakeHandle:
    def __init__(self) -> None:
        self.closed = False


class FakeAdapter(EngineAdapter):
    """In-memory adapter that records what the facade asked for."""

    def __init__(self, kind: EngineKind = EngineKind.MYSQL, **kwargs: Any):
        super().__init__()
        self.kind = kind
        self.opened = 0
        self.closed = 0
        self.calls: List[str] = []
        self.fail_open: Optional[Exception] = None
        self.fail_op: Optional[Exception] = None
        self.update_outcome = MutationOutcome(matched=1, modified=1)
        self.deleted = 1
        self.unset = 1
        self.records: List[Dict[str, Any]] = [{"id": 1, "name": "ada"}]
        self.total = 1
        self.last_descriptor = None
        self.__dict__.update(kwargs)

    def _open(self, descriptor):
        self.last_descriptor = descriptor
        if self.fail_open is not None:
            raise self.fail_open
        self.opened += 1
        return FakeHandle()

    def _close(self, handle):
        self.closed += 1
        handle.closed = True

    def _op(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_op is not None:
            raise self.fail_op

    def translate_filter(self, predicates):
        if self.kind.is_relational:
            return translate_sql(predicates, MYSQL)
        return translate_document(predicates)

    def list_tables(self, handle, descriptor, schema=None):
        self._op("list_tables")
        return [TableInfo(name="users", count=self.total)]

    def describe(self, handle, descriptor, table, schema=None):
        self._op("describe")
        return TableSchema(table_name=table, columns=[ColumnInfo("id", "int", False, "PRI")])

    def fetch_page(self, handle, descriptor, table, request, predicates, schema=None):
        self._op("fetch_page")
        schema_obj = self.describe(handle, descriptor, table, schema) if self.kind.is_relational else None
        return PageResult(records=list(self.records), window=paginate(request, self.total), schema=schema_obj)

    def insert(self, handle, descriptor, table, values, schema=None):
        self._op("insert")
        return MutationOutcome(matched=1, modified=1, inserted_id="42")

    def update(self, handle, descriptor, table, key_column, key_value, values, schema=None):
        self._op("update")
        return self.update_outcome

    def delete(self, handle, descriptor, table, key_column, key_value, schema=None):
        self._op("delete")
        return self.deleted

    def unset_field(self, handle, descriptor, table, doc_id, field_path):
        if self.kind.is_relational:
            return super().unset_field(handle, descriptor, table, doc_id, field_path)
        self._op("unset_field")
        return self.unset

    def raw_query(self, handle, descriptor, text):
        self._op("raw_query")
        return RawResult(records=[{"n": 1}], rowcount=1)

    def create_table(self, handle, descriptor, table, columns, schema=None):
        self._op("create_table")

    def add_columns(self, handle, descriptor, table, columns, schema=None):
        self._op("add_columns")

    def drop_table(self, handle, descriptor, table, schema=None):
        self._op("drop_table")

    def truncate_table(self, handle, descriptor, table, schema=None):
        self._op("truncate_table")


@pytest.fixture
def key_provider(tmp_path) -> KeyProvider:
    return KeyProvider(passphrase="unit-test-passphrase", key_file=str(tmp_path / "vault.key"))


@pytest.fixture
def cipher(key_provider) -> SecretCipher:
    return SecretCipher(key_provider)


@pytest.fixture
def vault(tmp_path, cipher):
    v = ConnectionVault(str(tmp_path / "vault.sqlite"), cipher)
    yield v
    v.close()


@pytest.fixture
def adapters() -> Dict[EngineKind, FakeAdapter]:
    return {kind: FakeAdapter(kind) for kind in EngineKind}


@pytest.fixture
def studio(vault, adapters) -> DataStudio:
    return DataStudio(vault, adapters=adapters)


def mysql_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "type": "mysql",
        "name": "local",
        "host": "db.local",
        "port": 3306,
        "user": "app",
        "database": "shop",
        "password": "s3cret-pass",
    }
    payload.update(overrides)
    return payload


def mongo_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "type": "mongodb",
        "name": "docs",
        "host": "mongo.local",
        "port": 27017,
        "user": "app",
        "database": "content",
        "password": "m0ngo-pass",
    }
    payload.update(overrides)
    return payload
