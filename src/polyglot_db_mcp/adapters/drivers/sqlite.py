"""
SQLite adapter backed by :mod:`aiosqlite`.

The connection runs in autocommit mode (``isolation_level=None``) so
``sqlite_transaction`` can issue explicit ``BEGIN``/``COMMIT``. All statements
share one connection; a per-adapter lock keeps a running transaction from
interleaving with other calls.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Sequence

import aiosqlite
import anyio

from ...core.descriptors import operation, string_param
from ..base import BackendAdapter
from . import sql as statements
from .sql import SQLITE


class SQLiteAdapter(BackendAdapter[aiosqlite.Connection]):
    name = "sqlite"
    description = "Embedded relational database"

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(env)
        self._serial: Optional[anyio.Lock] = None

    def _statement_lock(self) -> anyio.Lock:
        if self._serial is None:
            self._serial = anyio.Lock()
        return self._serial

    async def _open(self) -> aiosqlite.Connection:
        path = self.env.string("SQLITE_PATH", default=":memory:") or ":memory:"
        conn = await aiosqlite.connect(path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self.logger.debug("Opened database", extra={"url": path})
        return conn

    async def _close(self, handle: aiosqlite.Connection) -> None:
        await handle.close()

    async def _ping(self, handle: aiosqlite.Connection) -> None:
        async with handle.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        conn = await self.acquire()
        async with self._statement_lock():
            async with conn.execute(sql, list(params)) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Dict[str, Any]:
        conn = await self.acquire()
        async with self._statement_lock():
            async with conn.execute(sql, list(params)) as cursor:
                return {"changes": cursor.rowcount, "lastInsertRowId": cursor.lastrowid}

    def _params(self, args: Mapping[str, Any], key: str = "params") -> List[Any]:
        return list(self.json_arg(args, key, expect=list) or [])

    @operation(
        "Execute a SELECT query",
        sql=string_param("SQL SELECT query", required=True),
        params=string_param("Query parameters as JSON array (optional)"),
    )
    async def sqlite_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._fetch(self.require_str(args, "sql"), self._params(args))
        return {"count": len(rows), "rows": rows}

    @operation(
        "Execute a SQL statement (INSERT, UPDATE, DELETE, CREATE, etc.)",
        sql=string_param("SQL statement", required=True),
        params=string_param("Statement parameters as JSON array (optional)"),
    )
    async def sqlite_exec(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._execute(self.require_str(args, "sql"), self._params(args))

    @operation("List all tables in the database")
    async def sqlite_tables(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        tables = await self._fetch("SELECT name, sql FROM sqlite_master WHERE type = 'table' ORDER BY name")
        return {"tables": tables}

    @operation("Get the schema of a table", table=string_param("Table name", required=True))
    async def sqlite_schema(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.identifier(args.get("table"), label="table name")
        quoted = SQLITE.quote(table, dotted=False)
        columns = [
            {
                "cid": row["cid"],
                "name": row["name"],
                "type": row["type"],
                "notnull": bool(row["notnull"]),
                "default": row["dflt_value"],
                "pk": bool(row["pk"]),
            }
            for row in await self._fetch(f"PRAGMA table_info({quoted})")
        ]
        indexes = [
            {"seq": row["seq"], "name": row["name"], "unique": bool(row["unique"])}
            for row in await self._fetch(f"PRAGMA index_list({quoted})")
        ]
        return {"table": table, "columns": columns, "indexes": indexes}

    @operation(
        "Insert a row into a table",
        table=string_param("Table name", required=True),
        data=string_param("Row data as JSON object", required=True),
    )
    async def sqlite_insert(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        sql, params = statements.build_insert(SQLITE, self.require_str(args, "table"), data)
        result = await self._execute(sql, params)
        return {"inserted": True, "lastInsertRowId": result["lastInsertRowId"]}

    @operation(
        "Update rows in a table",
        table=string_param("Table name", required=True),
        data=string_param("Update data as JSON object", required=True),
        where=string_param("WHERE clause without 'WHERE' (use ? placeholders) or JSON object of column equalities", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def sqlite_update(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        sql, params = statements.build_update(
            SQLITE,
            self.require_str(args, "table"),
            data,
            statements.where_arg(args),
            self._params(args, "whereParams"),
        )
        result = await self._execute(sql, params)
        return {"changes": result["changes"]}

    @operation(
        "Delete rows from a table",
        table=string_param("Table name", required=True),
        where=string_param("WHERE clause without 'WHERE' (use ? placeholders) or JSON object of column equalities", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def sqlite_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        sql, params = statements.build_delete(
            SQLITE,
            self.require_str(args, "table"),
            statements.where_arg(args),
            self._params(args, "whereParams"),
        )
        result = await self._execute(sql, params)
        return {"deleted": result["changes"]}

    @operation(
        "Execute multiple statements in a transaction",
        statements=string_param("JSON array of {sql, params} objects", required=True),
    )
    async def sqlite_transaction(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        batch = statements.parse_statements(self.json_arg(args, "statements", expect=list, required=True))
        conn = await self.acquire()
        results: List[Dict[str, Any]] = []
        async with self._statement_lock():
            await conn.execute("BEGIN")
            try:
                for sql, params in batch:
                    async with conn.execute(sql, params) as cursor:
                        if statements.is_read_statement(sql):
                            results.append({"sql": sql, "rows": [dict(row) for row in await cursor.fetchall()]})
                        else:
                            results.append({"sql": sql, "changes": cursor.rowcount})
            except BaseException:
                with anyio.CancelScope(shield=True):
                    await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")
        return {"success": True, "results": results}
