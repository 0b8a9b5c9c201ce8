"""
MariaDB / MySQL adapter on an :mod:`aiomysql` pool.

Statements run with ``autocommit=True`` and a ``DictCursor``; caller SQL uses
``?`` placeholders which are rewritten to the driver's ``%s`` style (literal
``%`` signs are escaped). ``maria_transaction`` pins one pooled connection for
the whole batch.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import aiomysql
import anyio

from ...core.descriptors import operation, string_param
from ..base import BackendAdapter
from . import sql as statements
from .sql import MYSQL

STATUS_VARIABLES = ("Uptime", "Threads_connected", "Questions", "Slow_queries")


def _bind(params: Sequence[Any]) -> Tuple[Any, ...]:
    return tuple(json.dumps(value, ensure_ascii=False) if isinstance(value, (dict, list)) else value for value in params)


class MariaDBAdapter(BackendAdapter[aiomysql.Pool]):
    name = "mariadb"
    description = "MySQL-compatible relational database"
    prefixes = ("maria",)

    async def _open(self) -> aiomysql.Pool:
        return await aiomysql.create_pool(
            host=self.env.string("MARIADB_HOST", default="localhost"),
            port=self.env.integer("MARIADB_PORT", default=3306),
            user=self.env.string("MARIADB_USER", default="root"),
            password=self.env.string("MARIADB_PASSWORD", default="") or "",
            db=self.env.string("MARIADB_DATABASE"),
            maxsize=self.env.integer("MARIADB_POOL_SIZE", default=5),
            autocommit=True,
            cursorclass=aiomysql.DictCursor,
        )

    async def _close(self, handle: aiomysql.Pool) -> None:
        handle.close()
        await handle.wait_closed()

    async def _ping(self, handle: aiomysql.Pool) -> None:
        async with handle.acquire() as conn:
            await conn.ping(reconnect=False)

    async def _run(self, sql: str, params: Sequence[Any] = (), *, convert: bool = True) -> Dict[str, Any]:
        pool = await self.acquire()
        query = MYSQL.convert(sql) if convert else sql
        async with pool.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(query, _bind(params))
                rows = await cursor.fetchall() if cursor.description else []
                return {
                    "rows": [dict(row) for row in rows],
                    "affectedRows": cursor.rowcount,
                    "insertId": cursor.lastrowid,
                }

    def _params(self, args: Mapping[str, Any], key: str = "params") -> List[Any]:
        return list(self.json_arg(args, key, expect=list) or [])

    @operation(
        "Execute a SELECT query",
        sql=string_param("SQL SELECT query (use ? placeholders)", required=True),
        params=string_param("Query parameters as JSON array (optional)"),
    )
    async def maria_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self._run(self.require_str(args, "sql"), self._params(args))
        return {"count": len(result["rows"]), "rows": result["rows"]}

    @operation(
        "Execute a SQL statement (INSERT, UPDATE, DELETE, etc.)",
        sql=string_param("SQL statement (use ? placeholders)", required=True),
        params=string_param("Statement parameters as JSON array (optional)"),
    )
    async def maria_exec(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self._run(self.require_str(args, "sql"), self._params(args))
        return {"affectedRows": result["affectedRows"], "insertId": result["insertId"]}

    @operation("List all databases")
    async def maria_databases(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self._run("SHOW DATABASES")
        return {"databases": [row["Database"] for row in result["rows"]]}

    @operation("List all tables in a database", database=string_param("Database name (optional, uses current)"))
    async def maria_tables(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        database = self.optional_str(args, "database")
        sql = f"SHOW TABLES FROM {MYSQL.quote(database, dotted=False)}" if database else "SHOW TABLES"
        rows = (await self._run(sql))["rows"]
        return {"tables": [next(iter(row.values())) for row in rows if row]}

    @operation("Describe a table structure", table=string_param("Table name", required=True))
    async def maria_describe(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self._run(f"DESCRIBE {MYSQL.quote(self.require_str(args, 'table'))}")
        return {"columns": result["rows"]}

    @operation(
        "Insert a row into a table",
        table=string_param("Table name", required=True),
        data=string_param("Row data as JSON object", required=True),
    )
    async def maria_insert(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        sql, params = statements.build_insert(MYSQL, self.require_str(args, "table"), data)
        result = await self._run(sql, params, convert=False)
        return {"inserted": True, "insertId": result["insertId"], "affectedRows": result["affectedRows"]}

    @operation(
        "Update rows in a table",
        table=string_param("Table name", required=True),
        data=string_param("Update data as JSON object", required=True),
        where=string_param("WHERE clause without 'WHERE' (use ? placeholders) or JSON object of column equalities", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def maria_update(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        sql, params = statements.build_update(
            MYSQL, self.require_str(args, "table"), data, statements.where_arg(args), self._params(args, "whereParams")
        )
        result = await self._run(sql, params, convert=False)
        return {"affectedRows": result["affectedRows"]}

    @operation(
        "Delete rows from a table",
        table=string_param("Table name", required=True),
        where=string_param("WHERE clause without 'WHERE' (use ? placeholders) or JSON object of column equalities", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def maria_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        sql, params = statements.build_delete(MYSQL, self.require_str(args, "table"), statements.where_arg(args), self._params(args, "whereParams"))
        result = await self._run(sql, params, convert=False)
        return {"affectedRows": result["affectedRows"]}

    @operation(
        "Execute multiple statements in a transaction",
        statements=string_param("JSON array of {sql, params} objects (use ? placeholders)", required=True),
    )
    async def maria_transaction(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        batch = statements.parse_statements(self.json_arg(args, "statements", expect=list, required=True))
        pool = await self.acquire()
        results: List[Dict[str, Any]] = []
        async with pool.acquire() as conn:
            await conn.begin()
            try:
                async with conn.cursor() as cursor:
                    for sql, params in batch:
                        await cursor.execute(MYSQL.convert(sql), _bind(params))
                        if cursor.description:
                            results.append({"sql": sql, "result": [dict(row) for row in await cursor.fetchall()]})
                        else:
                            results.append({"sql": sql, "result": {"affectedRows": cursor.rowcount}})
            except BaseException:
                with anyio.CancelScope(shield=True):
                    await conn.rollback()
                raise
            await conn.commit()
        return {"success": True, "results": results}

    @operation("Get server status")
    async def maria_status(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        markers = ", ".join("?" for _ in STATUS_VARIABLES)
        status = await self._run(f"SHOW STATUS WHERE Variable_name IN ({markers})", STATUS_VARIABLES)
        version = await self._run("SELECT VERSION() AS version")
        rows = version["rows"]
        return {
            "version": rows[0]["version"] if rows else None,
            "status": {row["Variable_name"]: row["Value"] for row in status["rows"]},
        }
