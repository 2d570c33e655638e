from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from typing import Any, List, Optional, Tuple

import pytest

from dbstudio.db.mysql import MySqlAdapter
from dbstudio.db.postgres import PostgresAdapter
from dbstudio.exceptions.errors import NotFoundError, ValidationError
from dbstudio.query.pagination import PageRequest
from dbstudio.schema.models import ColumnDefinition, ConnectionDescriptor, EngineKind, TableInfo


class ScriptedCursor:
    def __init__(self, conn: "ScriptedConnection"):
        self.conn = conn
        self.rowcount = -1
        self.description = None
        self.lastrowid = None
        self._rows: List[dict] = []
        self._result = None

    def execute(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> None:
        self.conn.executed.append((sql, params))
        self._result = SimpleNamespace(message=self.conn.info)
        for prefix, rows, rowcount in self.conn.script:
            if sql.lstrip().startswith(prefix):
                self._rows = list(rows)
                self.rowcount = len(rows) if rowcount is None else rowcount
                self.description = [("col",)] if rows else None
                self.lastrowid = self.conn.lastrowid
                return
        self._rows = []
        self.rowcount = 0

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def close(self) -> None:
        self.conn.cursors_closed += 1


class ScriptedConnection:
    def __init__(self, *script, info: bytes = b"", lastrowid: Optional[int] = None):
        self.script = list(script)
        self.info = info
        self.lastrowid = lastrowid
        self.executed: List[Tuple[str, Any]] = []
        self.cursors_closed = 0

    def cursor(self) -> ScriptedCursor:
        return ScriptedCursor(self)


USERS_COLUMNS = [
    {"Field": "id", "Type": "int", "Null": "NO", "Key": "PRI", "Default": None, "Extra": "auto_increment"},
    {"Field": "age", "Type": b"int", "Null": "YES", "Key": "", "Default": None, "Extra": ""},
]


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    return ConnectionDescriptor(name="n", engine=EngineKind.MYSQL, host="h", user="u", database="shop", password="pw")


def test_fetch_page_counts_and_reads_with_the_same_filter(descriptor) -> None:
    conn = ScriptedConnection(
        ("SHOW COLUMNS", USERS_COLUMNS, None),
        ("SELECT COUNT", [{"total": 41}], None),
        ("SELECT *", [{"id": 21, "age": Decimal("31")}], None),
    )
    result = MySqlAdapter().fetch_page(
        conn, descriptor, "users", PageRequest(3, 10), [{"column": "age", "op": "gt", "value": "30"}]
    )

    assert conn.executed[0] == ("SHOW COLUMNS FROM `users`", None)
    assert conn.executed[1] == ("SELECT COUNT(*) AS total FROM `users` WHERE `age` > %s", ("30",))
    assert conn.executed[2] == (
        "SELECT * FROM `users` WHERE `age` > %s ORDER BY `id` LIMIT %s OFFSET %s",
        ("30", 10, 20),
    )
    assert result.records == [{"id": 21, "age": 31}]
    assert result.window.total == 41
    assert result.window.total_pages == 5
    assert result.schema.primary_key() == "id"
    assert result.schema.columns[1].native_type == "int"
    assert conn.cursors_closed == 3


def test_fetch_page_without_primary_key_has_no_order(descriptor) -> None:
    columns = [dict(USERS_COLUMNS[1])]
    conn = ScriptedConnection(("SHOW COLUMNS", columns, None), ("SELECT COUNT", [{"total": 0}], None))
    result = MySqlAdapter().fetch_page(conn, descriptor, "logs", PageRequest(1, 20), [])
    assert conn.executed[2] == ("SELECT * FROM `logs` LIMIT %s OFFSET %s", (20, 0))
    assert result.window.total_pages == 0
    assert result.records == []


def test_fetch_page_rejects_bad_table_before_any_sql(descriptor) -> None:
    conn = ScriptedConnection()
    with pytest.raises(ValidationError):
        MySqlAdapter().fetch_page(conn, descriptor, "users; DROP TABLE x", PageRequest(), [])
    assert conn.executed == []


def test_insert_binds_values_and_serialises_nested(descriptor) -> None:
    conn = ScriptedConnection(("INSERT", [], 1), lastrowid=42)
    outcome = MySqlAdapter().insert(conn, descriptor, "users", {"name": "ada", "tags": ["a", "b"]})
    assert conn.executed == [
        ("INSERT INTO `users` (`name`, `tags`) VALUES (%s, %s)", ("ada", '["a", "b"]')),
    ]
    assert outcome.inserted_id == "42"
    assert outcome.modified == 1


def test_insert_requires_values(descriptor) -> None:
    with pytest.raises(ValidationError, match="No data provided"):
        MySqlAdapter().insert(ScriptedConnection(), descriptor, "users", {})


def test_insert_rejects_bad_column(descriptor) -> None:
    conn = ScriptedConnection()
    with pytest.raises(ValidationError):
        MySqlAdapter().insert(conn, descriptor, "users", {"name) VALUES (1); --": "x"})
    assert conn.executed == []


def test_mysql_update_reports_matched_from_server_info(descriptor) -> None:
    conn = ScriptedConnection(("UPDATE", [], 0), info=b"(Rows matched: 1  Changed: 0  Warnings: 0")
    outcome = MySqlAdapter().update(conn, descriptor, "users", "id", 5, {"name": "ada"})
    assert conn.executed == [("UPDATE `users` SET `name` = %s WHERE `id` = %s", ("ada", 5))]
    assert (outcome.matched, outcome.modified) == (1, 0)


def test_mysql_update_falls_back_to_rowcount(descriptor) -> None:
    conn = ScriptedConnection(("UPDATE", [], 1))
    outcome = MySqlAdapter().update(conn, descriptor, "users", "id", 5, {"name": "ada"})
    assert (outcome.matched, outcome.modified) == (1, 1)


def test_postgres_update_uses_double_quotes(descriptor) -> None:
    conn = ScriptedConnection(("UPDATE", [], 1))
    outcome = PostgresAdapter().update(conn, descriptor, "users", "id", 5, {"meta": {"a": 1}}, schema="app")
    assert conn.executed == [('UPDATE "app"."users" SET "meta" = %s WHERE "id" = %s', ('{"a": 1}', 5))]
    assert (outcome.matched, outcome.modified) == (1, 1)


@pytest.mark.parametrize("key_value", [None, ""])
def test_update_requires_key_value(descriptor, key_value) -> None:
    with pytest.raises(ValidationError, match="Primary key value"):
        MySqlAdapter().update(ScriptedConnection(), descriptor, "users", "id", key_value, {"a": 1})


def test_delete_returns_rowcount(descriptor) -> None:
    conn = ScriptedConnection(("DELETE", [], 0))
    assert MySqlAdapter().delete(conn, descriptor, "users", "id", 99) == 0
    assert conn.executed == [("DELETE FROM `users` WHERE `id` = %s", (99,))]


def test_raw_query_passes_text_verbatim(descriptor) -> None:
    conn = ScriptedConnection(("SELECT", [{"n": Decimal("2.5")}], None))
    result = MySqlAdapter().raw_query(conn, descriptor, "SELECT 2.5 AS n")
    assert conn.executed == [("SELECT 2.5 AS n", None)]
    assert result.records == [{"n": 2.5}]
    assert result.rowcount == 1


def test_raw_query_without_result_set(descriptor) -> None:
    conn = ScriptedConnection(("UPDATE", [], 3))
    result = PostgresAdapter().raw_query(conn, descriptor, "UPDATE t SET a = 1")
    assert result.records == []
    assert result.rowcount == 3


def test_raw_query_requires_text(descriptor) -> None:
    with pytest.raises(ValidationError):
        MySqlAdapter().raw_query(ScriptedConnection(), descriptor, "   ")


def test_add_columns_renders_all_before_executing(descriptor) -> None:
    conn = ScriptedConnection()
    columns = [ColumnDefinition("nickname", "varchar(50)"), ColumnDefinition("bad name", "int")]
    with pytest.raises(ValidationError):
        MySqlAdapter().add_columns(conn, descriptor, "users", columns)
    assert conn.executed == []


def test_drop_and_truncate(descriptor) -> None:
    conn = ScriptedConnection()
    adapter = PostgresAdapter()
    adapter.truncate_table(conn, descriptor, "users")
    adapter.drop_table(conn, descriptor, "users", schema="app")
    assert [sql for sql, _ in conn.executed] == ['TRUNCATE TABLE "users"', 'DROP TABLE "app"."users"']


def test_mysql_list_tables_counts_quotable_names(descriptor) -> None:
    conn = ScriptedConnection(
        ("SHOW TABLES", [{"Tables_in_shop": "users"}, {"Tables_in_shop": "odd-name"}], None),
        ("SELECT COUNT", [{"total": 3}], None),
    )
    assert MySqlAdapter().list_tables(conn, descriptor) == [
        TableInfo(name="users", count=3),
        TableInfo(name="odd-name", count=-1),
    ]


def test_postgres_describe_missing_table(descriptor) -> None:
    conn = ScriptedConnection()
    with pytest.raises(NotFoundError, match="Table not found: ghosts"):
        PostgresAdapter().describe(conn, descriptor, "ghosts")
    sql, params = conn.executed[0]
    assert params == ("public", "ghosts", "public", "ghosts")
