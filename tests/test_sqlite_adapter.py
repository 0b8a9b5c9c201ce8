from __future__ import annotations

import json

import pytest

from polyglot_db_mcp.adapters.drivers import SQLiteAdapter
from polyglot_db_mcp.core import DispatchGateway, ValidationError

pytestmark = pytest.mark.anyio


@pytest.fixture()
async def adapter(anyio_backend):
    sqlite = SQLiteAdapter({"SQLITE_PATH": ":memory:"})
    await sqlite.sqlite_exec({"sql": "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, age INTEGER)"})
    await sqlite.sqlite_exec({"sql": "CREATE UNIQUE INDEX users_name ON users (name)"})
    yield sqlite
    await sqlite.disconnect()


async def test_insert_then_query(adapter):
    inserted = await adapter.sqlite_insert({"table": "users", "data": '{"name": "Ada", "age": 36}'})
    await adapter.sqlite_insert({"table": "users", "data": {"name": "Linus", "age": 28}})

    result = await adapter.sqlite_query({"sql": "SELECT name, age FROM users WHERE age > ? ORDER BY name", "params": "[30]"})

    assert inserted == {"inserted": True, "lastInsertRowId": 1}
    assert result == {"count": 1, "rows": [{"name": "Ada", "age": 36}]}


async def test_update_and_delete_with_filters(adapter):
    await adapter.sqlite_exec({"sql": "INSERT INTO users (name, age) VALUES ('a', 1), ('b', 2), ('c', 3)"})

    updated = await adapter.sqlite_update({"table": "users", "data": {"age": 10}, "where": "age < ?", "whereParams": "[3]"})
    deleted = await adapter.sqlite_delete({"table": "users", "where": {"name": "c"}})
    remaining = await adapter.sqlite_query({"sql": "SELECT name, age FROM users ORDER BY name"})

    assert updated == {"changes": 2}
    assert deleted == {"deleted": 1}
    assert remaining["rows"] == [{"name": "a", "age": 10}, {"name": "b", "age": 10}]


async def test_delete_without_where_is_refused(adapter):
    with pytest.raises(ValidationError, match="refusing to remove every row"):
        await adapter.sqlite_delete({"table": "users", "where": ""})


async def test_schema_and_tables(adapter):
    schema = await adapter.sqlite_schema({"table": "users"})
    tables = await adapter.sqlite_tables({})

    assert [column["name"] for column in schema["columns"]] == ["id", "name", "age"]
    assert schema["columns"][0]["pk"] is True
    assert schema["columns"][1]["notnull"] is True
    assert schema["indexes"][0]["name"] == "users_name"
    assert schema["indexes"][0]["unique"] is True
    assert [table["name"] for table in tables["tables"]] == ["users"]


async def test_schema_rejects_injected_table_name(adapter):
    with pytest.raises(ValidationError, match="Invalid table name"):
        await adapter.sqlite_schema({"table": "users); DROP TABLE users; --"})


async def test_transaction_commits_all_statements(adapter):
    batch = [
        {"sql": "INSERT INTO users (name, age) VALUES (?, ?)", "params": ["x", 1]},
        {"sql": "INSERT INTO users (name, age) VALUES (?, ?)", "params": ["y", 2]},
        {"sql": "SELECT COUNT(*) AS n FROM users"},
    ]

    result = await adapter.sqlite_transaction({"statements": json.dumps(batch)})

    assert result["success"] is True
    assert result["results"][0]["changes"] == 1
    assert result["results"][2]["rows"] == [{"n": 2}]


async def test_transaction_rolls_back_on_failure(adapter):
    batch = [
        {"sql": "INSERT INTO users (name, age) VALUES (?, ?)", "params": ["x", 1]},
        {"sql": "INSERT INTO users (name, age) VALUES (?, ?)", "params": ["x", 2]},
    ]

    with pytest.raises(Exception, match="UNIQUE"):
        await adapter.sqlite_transaction({"statements": batch})

    count = await adapter.sqlite_query({"sql": "SELECT COUNT(*) AS n FROM users"})
    assert count["rows"] == [{"n": 0}]


async def test_gateway_reports_backend_errors(adapter):
    gateway = DispatchGateway.from_adapters([adapter])

    envelope = await gateway.invoke("sqlite_query", {"sql": "SELECT * FROM missing"})
    report = await gateway.status()

    assert envelope.error.kind == "backend_execution"
    assert "no such table: missing" in envelope.error.message
    assert envelope.error.adapter == "sqlite"
    assert report["connected"] == ["sqlite"]
