"""
PostgreSQL adapter on an :mod:`asyncpg` connection pool.

Caller SQL uses ``?`` placeholders, rewritten to asyncpg's ``$n`` style; queries that
already use ``$n`` are passed through. ``??`` stands for a literal ``?``.
Object and array values are sent as JSON text so they land in ``json``/``jsonb``
columns.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Sequence

import asyncpg

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import ValidationError
from ..base import BackendAdapter
from . import sql as statements
from .sql import POSTGRES

_NATIVE_PLACEHOLDER = re.compile(r"\$\d")
_COLUMN_TYPE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\s+[A-Za-z][A-Za-z0-9_]*)*(\s*\(\s*\d+(\s*,\s*\d+)?\s*\))?(\[\])*$")
_CONSTRAINTS = re.compile(
    r"^(\s*(PRIMARY\s+KEY|NOT\s+NULL|NULL|UNIQUE"
    r"|DEFAULT\s+(-?\d+(\.\d+)?|'[^';\\]*'|TRUE|FALSE|NULL|CURRENT_TIMESTAMP|CURRENT_DATE|NOW\(\)|GEN_RANDOM_UUID\(\))"
    r"|REFERENCES\s+[A-Za-z_][A-Za-z0-9_.]*(\s*\(\s*[A-Za-z_][A-Za-z0-9_]*\s*\))?))+\s*$",
    re.IGNORECASE,
)


def _bind(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


class PostgreSQLAdapter(BackendAdapter[asyncpg.Pool]):
    name = "postgresql"
    description = "Advanced open source relational database"
    prefixes = ("pg",)

    async def _open(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            host=self.env.string("POSTGRES_HOST", default="localhost"),
            port=self.env.integer("POSTGRES_PORT", default=5432),
            database=self.env.string("POSTGRES_DATABASE", "POSTGRES_DB", default="postgres"),
            user=self.env.string("POSTGRES_USER", default="postgres"),
            password=self.env.string("POSTGRES_PASSWORD", default="") or None,
            min_size=1,
            max_size=self.env.integer("POSTGRES_POOL_SIZE", default=10),
        )

    async def _close(self, handle: asyncpg.Pool) -> None:
        await handle.close()

    async def _ping(self, handle: asyncpg.Pool) -> None:
        await handle.fetchval("SELECT 1")

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        pool = await self.acquire()
        records = await pool.fetch(sql, *[_bind(value) for value in params])
        return [dict(record) for record in records]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> str:
        pool = await self.acquire()
        return await pool.execute(sql, *[_bind(value) for value in params])

    def _table(self, args: Mapping[str, Any]) -> str:
        return POSTGRES.quote(self.require_str(args, "table"))

    @operation(
        "Execute a SQL query",
        query=string_param(
            "SQL query to execute. Use ? or $1-style placeholders; with ? placeholders write the jsonb ? operator as ?? "
            "(?| and ?& need no escaping)",
            required=True,
        ),
        params=string_param("Query parameters as JSON array (optional)"),
    )
    async def pg_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = self.require_str(args, "query")
        params = list(self.json_arg(args, "params", expect=list) or [])
        if params and not _NATIVE_PLACEHOLDER.search(query):
            query = POSTGRES.convert(query)
        if statements.is_read_statement(query) or " returning " in f" {query.lower()} ":
            rows = await self._fetch(query, params)
            return {"rows": rows, "count": len(rows)}
        status = await self._execute(query, params)
        return {"status": status, "count": statements.affected_rows(status)}

    @operation(
        "Select rows from a table",
        table=string_param("Table name", required=True),
        columns=string_param("Comma-separated columns to select (default: *)"),
        where=string_param("WHERE condition with ? placeholders, or JSON object of column equalities (optional)"),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
        orderBy=string_param("ORDER BY columns, e.g. 'name ASC, id DESC' (optional)"),
        limit=number_param("Max rows (default 100)"),
    )
    async def pg_select(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(args)
        columns = statements.select_list(POSTGRES, self.optional_str(args, "columns"))
        clause, params = statements.build_where(POSTGRES, statements.where_arg(args), self.json_arg(args, "whereParams", expect=list))
        query = f"SELECT {columns} FROM {table}"
        if clause:
            query += f" WHERE {clause}"
        query += statements.order_by(POSTGRES, self.optional_str(args, "orderBy"))
        params.append(self.int_arg(args, "limit", 100, minimum=0))
        query += f" LIMIT ${len(params)}"
        rows = await self._fetch(query, params)
        return {"rows": rows, "count": len(rows)}

    @operation(
        "Insert a row into a table",
        table=string_param("Table name", required=True),
        data=string_param("JSON object of column: value pairs", required=True),
        returning=string_param("Comma-separated columns to return (optional)"),
    )
    async def pg_insert(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        returning = self.list_arg(args, "returning")
        query, params = statements.build_insert(POSTGRES, self.require_str(args, "table"), data, returning=returning or None)
        if returning:
            return {"inserted": True, "result": await self._fetch(query, params)}
        status = await self._execute(query, params)
        return {"inserted": True, "count": statements.affected_rows(status)}

    @operation(
        "Update rows in a table",
        table=string_param("Table name", required=True),
        data=string_param("JSON object of column: value pairs to update", required=True),
        where=string_param("WHERE condition with ? placeholders, or JSON object of column equalities (required)", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def pg_update(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = statements.row_data(self.json_arg(args, "data", expect=dict, required=True))
        query, params = statements.build_update(
            POSTGRES, self.require_str(args, "table"), data, statements.where_arg(args), self.json_arg(args, "whereParams", expect=list)
        )
        status = await self._execute(query, params)
        return {"updated": True, "count": statements.affected_rows(status)}

    @operation(
        "Delete rows from a table",
        table=string_param("Table name", required=True),
        where=string_param("WHERE condition with ? placeholders, or JSON object of column equalities (required)", required=True),
        whereParams=string_param("WHERE parameters as JSON array (optional)"),
    )
    async def pg_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query, params = statements.build_delete(
            POSTGRES, self.require_str(args, "table"), statements.where_arg(args), self.json_arg(args, "whereParams", expect=list)
        )
        status = await self._execute(query, params)
        return {"deleted": True, "count": statements.affected_rows(status)}

    @operation("List all tables in the database", schema=string_param("Schema name (default: public)"))
    async def pg_tables(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._fetch(
            "SELECT table_name, table_type FROM information_schema.tables WHERE table_schema = $1 ORDER BY table_name",
            [self.optional_str(args, "schema", "public")],
        )
        return {"tables": rows, "count": len(rows)}

    @operation(
        "Get column information for a table",
        table=string_param("Table name", required=True),
        schema=string_param("Schema name (default: public)"),
    )
    async def pg_columns(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._fetch(
            "SELECT column_name, data_type, is_nullable, column_default FROM information_schema.columns "
            "WHERE table_schema = $1 AND table_name = $2 ORDER BY ordinal_position",
            [self.optional_str(args, "schema", "public"), self.require_str(args, "table")],
        )
        return {"columns": rows}

    @operation(
        "Query JSONB columns with PostgreSQL JSON operators",
        table=string_param("Table name", required=True),
        jsonColumn=string_param("JSONB column name", required=True),
        path=string_param("JSON path (e.g., 'address.city')", required=True),
        value=string_param("Value to match (optional)"),
        limit=number_param("Max rows (default 100)"),
    )
    async def pg_json_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(args)
        column = POSTGRES.quote(self.require_str(args, "jsonColumn"), dotted=False)
        path = [part for part in self.require_str(args, "path").split(".") if part]
        if not path:
            raise ValidationError("'path' must name at least one key.")
        limit = self.int_arg(args, "limit", 100, minimum=0)
        value = args.get("value")
        if value is not None and value != "":
            query = f"SELECT * FROM {table} WHERE {column} #>> $1::text[] = $2 LIMIT $3"
            rows = await self._fetch(query, [path, str(value), limit])
        else:
            query = f"SELECT *, {column} #> $1::text[] AS extracted FROM {table} LIMIT $2"
            rows = await self._fetch(query, [path, limit])
        return {"rows": rows, "count": len(rows)}

    @operation(
        "Create a new table",
        table=string_param("Table name", required=True),
        columns=string_param("Column definitions as JSON array [{name, type, constraints}]", required=True),
    )
    async def pg_create_table(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.require_str(args, "table")
        definitions: List[str] = []
        for position, column in enumerate(self.json_arg(args, "columns", expect=list, required=True)):
            if not isinstance(column, Mapping):
                raise ValidationError(f"columns[{position}] must be an object with name and type.")
            column_type = str(column.get("type") or "")
            if not _COLUMN_TYPE.match(column_type):
                raise ValidationError(f"columns[{position}] has an invalid type '{column_type}'.")
            definition = f"{POSTGRES.quote(str(column.get('name') or ''), dotted=False)} {column_type}"
            constraints = column.get("constraints")
            if constraints:
                if not isinstance(constraints, str) or not _CONSTRAINTS.match(constraints):
                    raise ValidationError(f"columns[{position}] has unsupported constraints '{constraints}'.")
                definition += f" {constraints.strip()}"
            definitions.append(definition)
        if not definitions:
            raise ValidationError("'columns' must define at least one column.")
        await self._execute(f"CREATE TABLE {POSTGRES.quote(table)} ({', '.join(definitions)})")
        return {"created": True, "table": table}

    @operation("List installed PostgreSQL extensions")
    async def pg_extensions(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"extensions": await self._fetch("SELECT extname, extversion FROM pg_extension ORDER BY extname")}
