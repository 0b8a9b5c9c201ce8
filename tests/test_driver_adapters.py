from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId

from polyglot_db_mcp.adapters.drivers import DragonflyAdapter, MariaDBAdapter, MemcachedAdapter, MongoDBAdapter, Neo4jAdapter, PostgreSQLAdapter
from polyglot_db_mcp.adapters.drivers.memcached import parse_servers
from polyglot_db_mcp.adapters.drivers.mongodb import sort_spec
from polyglot_db_mcp.core import ConfigurationError, DispatchGateway, ValidationError

pytestmark = pytest.mark.anyio


# --------------------------------------------------------------------------- postgresql


def _pg_pool(*, rows=None, status="SELECT 0"):
    pool = MagicMock()
    pool.fetch = AsyncMock(return_value=rows or [])
    pool.execute = AsyncMock(return_value=status)
    pool.fetchval = AsyncMock(return_value=1)
    pool.close = AsyncMock()
    return pool


async def test_pg_query_converts_placeholders_for_reads():
    pool = _pg_pool(rows=[{"id": 1}])
    adapter = PostgreSQLAdapter({})
    with patch.object(PostgreSQLAdapter, "_open", AsyncMock(return_value=pool)):
        result = await adapter.pg_query({"query": "SELECT id FROM users WHERE name = ? AND meta = ?", "params": ["Ada", {"a": 1}]})

    pool.fetch.assert_awaited_once_with("SELECT id FROM users WHERE name = $1 AND meta = $2", "Ada", '{"a": 1}')
    assert result == {"rows": [{"id": 1}], "count": 1}


async def test_pg_query_reports_command_status_for_writes():
    pool = _pg_pool(status="UPDATE 3")
    adapter = PostgreSQLAdapter({})
    with patch.object(PostgreSQLAdapter, "_open", AsyncMock(return_value=pool)):
        result = await adapter.pg_query({"query": "UPDATE users SET active = false"})

    assert result == {"status": "UPDATE 3", "count": 3}


@pytest.mark.parametrize(
    ("query", "sent"),
    [
        ("SELECT id FROM docs WHERE tags ?| $1 AND id > $2", "SELECT id FROM docs WHERE tags ?| $1 AND id > $2"),
        ("SELECT id FROM docs WHERE tags ?& ? AND meta ?? 'owner' AND id > ?", "SELECT id FROM docs WHERE tags ?& $1 AND meta ? 'owner' AND id > $2"),
    ],
)
async def test_pg_query_preserves_jsonb_operators(query, sent):
    pool = _pg_pool(rows=[])
    adapter = PostgreSQLAdapter({})
    with patch.object(PostgreSQLAdapter, "_open", AsyncMock(return_value=pool)):
        await adapter.pg_query({"query": query, "params": [["red", "blue"], 10]})

    pool.fetch.assert_awaited_once_with(sent, '["red", "blue"]', 10)


async def test_pg_select_builds_bound_statement():
    pool = _pg_pool(rows=[])
    adapter = PostgreSQLAdapter({})
    with patch.object(PostgreSQLAdapter, "_open", AsyncMock(return_value=pool)):
        await adapter.pg_select({"table": "public.users", "columns": "id,name", "where": '{"active": true}', "orderBy": "name", "limit": 5})

    pool.fetch.assert_awaited_once_with('SELECT "id", "name" FROM "public"."users" WHERE "active" = $1 ORDER BY "name" LIMIT $2', True, 5)


async def test_pg_delete_requires_where():
    adapter = PostgreSQLAdapter({})

    with pytest.raises(ValidationError, match="refusing to remove every row"):
        await adapter.pg_delete({"table": "users"})


# --------------------------------------------------------------------------- mariadb


class _FakeCursor:
    def __init__(self, rows=None, *, description=None, rowcount=0, lastrowid=0):
        self.rows = rows or []
        self.description = description
        self.rowcount = rowcount
        self.lastrowid = lastrowid
        self.executed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query, args=None):
        self.executed.append((query, args))

    async def fetchall(self):
        return self.rows


class _FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.begin = AsyncMock()
        self.commit = AsyncMock()
        self.rollback = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def cursor(self):
        return self._cursor


def _maria_pool(cursor):
    connection = _FakeConnection(cursor)
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=connection)
    return pool, connection


async def test_maria_query_rewrites_placeholders_and_escapes_percent():
    cursor = _FakeCursor([{"name": "Ada"}], description=[("name",)])
    pool, _ = _maria_pool(cursor)
    adapter = MariaDBAdapter({})
    with patch.object(MariaDBAdapter, "_open", AsyncMock(return_value=pool)):
        result = await adapter.maria_query({"sql": "SELECT name FROM users WHERE name LIKE '%a%' AND id = ?", "params": "[7]"})

    assert cursor.executed == [("SELECT name FROM users WHERE name LIKE '%%a%%' AND id = %s", (7,))]
    assert result == {"count": 1, "rows": [{"name": "Ada"}]}


async def test_maria_update_uses_backtick_identifiers():
    cursor = _FakeCursor(rowcount=2)
    pool, _ = _maria_pool(cursor)
    adapter = MariaDBAdapter({})
    with patch.object(MariaDBAdapter, "_open", AsyncMock(return_value=pool)):
        result = await adapter.maria_update({"table": "users", "data": {"age": 40}, "where": "id IN (?, ?)", "whereParams": [1, 2]})

    assert cursor.executed == [("UPDATE `users` SET `age` = %s WHERE id IN (%s, %s)", (40, 1, 2))]
    assert result == {"affectedRows": 2}


async def test_maria_transaction_rolls_back_on_error():
    cursor = _FakeCursor()
    cursor.execute = AsyncMock(side_effect=[None, RuntimeError("Duplicate entry")])
    pool, connection = _maria_pool(cursor)
    adapter = MariaDBAdapter({})
    batch = [{"sql": "INSERT INTO t VALUES (?)", "params": [1]}, {"sql": "INSERT INTO t VALUES (?)", "params": [1]}]
    with patch.object(MariaDBAdapter, "_open", AsyncMock(return_value=pool)):
        with pytest.raises(RuntimeError, match="Duplicate entry"):
            await adapter.maria_transaction({"statements": batch})

    connection.begin.assert_awaited_once()
    connection.rollback.assert_awaited_once()
    connection.commit.assert_not_awaited()


# --------------------------------------------------------------------------- dragonfly / redis


def _redis_client():
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.zrange = AsyncMock(return_value=[("a", 1.0), ("b", 2.5)])
    client.smembers = AsyncMock(return_value={"z", "a"})
    client.aclose = AsyncMock()

    async def scan_iter(match=None, count=None):
        for key in ("user:1", "user:2", "user:3"):
            yield key

    client.scan_iter = scan_iter
    return client


async def test_redis_set_passes_ttl():
    client = _redis_client()
    adapter = DragonflyAdapter({"REDIS_HOST": "cache"})
    with patch.object(DragonflyAdapter, "_open", AsyncMock(return_value=client)):
        result = await adapter.redis_set({"key": "k", "value": 5, "ttl": "30"})

    client.set.assert_awaited_once_with("k", "5", ex=30)
    assert result == {"success": True, "key": "k"}


async def test_redis_keys_scans_with_limit():
    adapter = DragonflyAdapter({})
    with patch.object(DragonflyAdapter, "_open", AsyncMock(return_value=_redis_client())):
        result = await adapter.redis_keys({"pattern": "user:*", "limit": 2})

    assert result == {"count": 2, "keys": ["user:1", "user:2"]}


async def test_redis_zrange_with_scores_and_sorted_members():
    adapter = DragonflyAdapter({})
    with patch.object(DragonflyAdapter, "_open", AsyncMock(return_value=_redis_client())):
        ranged = await adapter.redis_zrange({"key": "board", "withScores": True})
        members = await adapter.redis_smembers({"key": "tags"})

    assert ranged == {"key": "board", "result": [{"value": "a", "score": 1.0}, {"value": "b", "score": 2.5}]}
    assert members == {"key": "tags", "members": ["a", "z"]}


async def test_redis_zadd_validates_members():
    adapter = DragonflyAdapter({})

    with pytest.raises(ValidationError, match=r"members\[0\]"):
        await adapter.redis_zadd({"key": "board", "members": '[{"value": "a"}]'})


async def test_unreachable_redis_reports_disconnected():
    client = _redis_client()
    client.ping = AsyncMock(side_effect=ConnectionError("Error 111 connecting to cache:6379"))
    adapter = DragonflyAdapter({})
    gateway = DispatchGateway.from_adapters([adapter])
    with patch.object(DragonflyAdapter, "_open", AsyncMock(return_value=client)):
        report = await gateway.status()

    assert report["disconnected"] == ["dragonfly"]
    assert "Error 111" in adapter.last_error


# --------------------------------------------------------------------------- memcached


def test_parse_servers():
    assert parse_servers("a:11212, b") == [("a", 11212), ("b", 11211)]
    with pytest.raises(ConfigurationError):
        parse_servers("a:port")
    with pytest.raises(ConfigurationError):
        parse_servers(" , ")


async def test_memcached_get_decodes_bytes():
    client = MagicMock()
    client.get.return_value = b"hello"
    adapter = MemcachedAdapter({})
    with patch.object(MemcachedAdapter, "_open", AsyncMock(return_value=client)):
        result = await adapter.memcached_get({"key": "greeting"})

    client.get.assert_called_once_with("greeting")
    assert result == {"key": "greeting", "value": "hello", "found": True}


async def test_memcached_add_reports_existing_key():
    client = MagicMock()
    client.add.return_value = False
    adapter = MemcachedAdapter({})
    with patch.object(MemcachedAdapter, "_open", AsyncMock(return_value=client)):
        result = await adapter.memcached_add({"key": "k", "value": "v"})

    client.add.assert_called_once_with("k", "v", expire=0, noreply=False)
    assert result == {"success": False, "key": "k", "error": "Key already exists"}


async def test_memcached_rejects_invalid_keys():
    adapter = MemcachedAdapter({})

    with pytest.raises(ValidationError, match="Invalid memcached key"):
        await adapter.memcached_get({"key": "has space"})
    with pytest.raises(ValidationError):
        await adapter.memcached_get({"key": "k" * 251})


async def test_memcached_stats_per_server():
    server = MagicMock()
    server.stats.return_value = {b"uptime": 10, b"version": b"1.6.21"}
    client = MagicMock()
    client.clients = {"cache:11211": server}
    adapter = MemcachedAdapter({})
    with patch.object(MemcachedAdapter, "_open", AsyncMock(return_value=client)):
        result = await adapter.memcached_stats({})

    assert result == {"servers": {"cache:11211": {"uptime": 10, "version": "1.6.21"}}}


# --------------------------------------------------------------------------- neo4j


def _counters(**values):
    defaults = {
        "nodes_created": 0,
        "nodes_deleted": 0,
        "relationships_created": 0,
        "relationships_deleted": 0,
        "properties_set": 0,
    }
    defaults.update(values)
    return SimpleNamespace(**defaults)


async def test_neo4j_find_nodes_binds_match_object():
    adapter = Neo4jAdapter({})
    run = AsyncMock(return_value=([{"n": {"name": "Ada"}}], _counters()))
    with patch.object(adapter, "_run", run):
        result = await adapter.neo4j_find_nodes({"label": "Person", "match": '{"name": "Ada"}', "limit": 5})

    query, params = run.await_args.args
    assert query == "MATCH (n:`Person`) WHERE all(k IN keys($match) WHERE n[k] = $match[k]) RETURN n LIMIT $limit"
    assert params == {"limit": 5, "match": {"name": "Ada"}}
    assert result == {"nodes": [{"name": "Ada"}], "count": 1}


async def test_neo4j_delete_node_requires_match():
    adapter = Neo4jAdapter({})

    with pytest.raises(ValidationError, match="requires a filter condition"):
        await adapter.neo4j_delete_node({"label": "Person"})


async def test_neo4j_rejects_injected_labels():
    adapter = Neo4jAdapter({})

    with pytest.raises(ValidationError):
        await adapter.neo4j_create_node({"labels": "Person`) DETACH DELETE n //", "properties": "{}"})


async def test_neo4j_shortest_path_caps_depth():
    adapter = Neo4jAdapter({})
    args = {"fromLabel": "A", "fromMatch": '{"id": 1}', "toLabel": "B", "toMatch": '{"id": 2}', "maxDepth": 50}

    with pytest.raises(ValidationError, match="at most 15"):
        await adapter.neo4j_shortest_path(args)


# --------------------------------------------------------------------------- mongodb


def _mongo_database(collection):
    database = MagicMock()
    database.get_collection.return_value = collection
    database.command = AsyncMock(return_value={"ok": 1.0})
    return database


def _mongo_cursor(documents):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=documents)
    return cursor


async def test_mongo_find_applies_filter_sort_and_paging():
    cursor = _mongo_cursor([{"name": "Ada"}])
    collection = MagicMock()
    collection.find.return_value = cursor
    adapter = MongoDBAdapter({})
    with patch.object(MongoDBAdapter, "_open", AsyncMock(return_value=_mongo_database(collection))):
        result = await adapter.mongo_find(
            {"collection": "people", "filter": '{"_id": "65f1c0ffee0000000000abcd"}', "sort": '{"age": -1}', "limit": 5}
        )

    query, projection = collection.find.call_args.args
    assert query == {"_id": ObjectId("65f1c0ffee0000000000abcd")}
    assert projection is None
    cursor.sort.assert_called_once_with([("age", -1)])
    cursor.skip.assert_called_once_with(0)
    cursor.limit.assert_called_once_with(5)
    assert result == {"documents": [{"name": "Ada"}], "count": 1}


@pytest.mark.parametrize("operation_name", ["mongo_delete_one", "mongo_delete_many", "mongo_update_many"])
async def test_mongo_destructive_operations_require_filter(operation_name):
    collection = MagicMock()
    adapter = MongoDBAdapter({})
    with patch.object(MongoDBAdapter, "_open", AsyncMock(return_value=_mongo_database(collection))):
        with pytest.raises(ValidationError, match="requires a filter condition"):
            await getattr(adapter, operation_name)({"collection": "people", "filter": "{}", "update": '{"$set": {"a": 1}}'})

    collection.delete_one.assert_not_called()
    collection.delete_many.assert_not_called()
    collection.update_many.assert_not_called()


async def test_mongo_update_requires_operator_document():
    adapter = MongoDBAdapter({})

    with pytest.raises(ValidationError, match="update operators"):
        await adapter.mongo_update_one({"collection": "people", "filter": '{"name": "Ada"}', "update": '{"name": "Grace"}'})


async def test_mongo_update_one_reports_counts():
    collection = MagicMock()
    collection.update_one = AsyncMock(return_value=SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None))
    adapter = MongoDBAdapter({})
    with patch.object(MongoDBAdapter, "_open", AsyncMock(return_value=_mongo_database(collection))):
        result = await adapter.mongo_update_one(
            {"collection": "people", "filter": {"name": "Ada"}, "update": {"$set": {"age": 36}}, "upsert": "true"}
        )

    collection.update_one.assert_awaited_once_with({"name": "Ada"}, {"$set": {"age": 36}}, upsert=True)
    assert result == {"matchedCount": 1, "modifiedCount": 1, "upsertedId": None}


async def test_mongo_rejects_system_collections():
    adapter = MongoDBAdapter({})

    with pytest.raises(ValidationError, match="Invalid collection name"):
        await adapter.mongo_count({"collection": "system.users"})


def test_sort_spec_rejects_unknown_directions():
    assert sort_spec({"a": 1, "b": -1}, key="sort") == [("a", 1), ("b", -1)]
    with pytest.raises(ValidationError):
        sort_spec({"a": "up"}, key="sort")
