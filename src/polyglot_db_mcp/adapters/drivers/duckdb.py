"""
DuckDB adapter: analytical SQL over tables and CSV/Parquet/JSON files.

The DuckDB Python API is synchronous; each statement runs in a worker thread on
its own cursor of the shared database connection. File paths are embedded as
escaped string literals because ``COPY`` does not accept bound parameters.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import anyio
import duckdb

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import ValidationError
from ..base import BackendAdapter
from .sql import DUCKDB

MAX_ROWS = 1000


def file_literal(path: str) -> str:
    if "\x00" in path:
        raise ValidationError("'path' must not contain NUL characters.")
    return "'" + path.replace("'", "''") + "'"


class DuckDBAdapter(BackendAdapter[duckdb.DuckDBPyConnection]):
    name = "duckdb"
    description = "Analytical database - query CSV, Parquet, JSON files directly"
    prefixes = ("duck",)

    async def _open(self) -> duckdb.DuckDBPyConnection:
        path = self.env.string("DUCKDB_PATH", default=":memory:") or ":memory:"
        read_only = self.env.boolean("DUCKDB_READ_ONLY", default=False) and path != ":memory:"
        return await anyio.to_thread.run_sync(lambda: duckdb.connect(path, read_only=read_only))

    async def _close(self, handle: duckdb.DuckDBPyConnection) -> None:
        await anyio.to_thread.run_sync(handle.close)

    async def _ping(self, handle: duckdb.DuckDBPyConnection) -> None:
        await anyio.to_thread.run_sync(lambda: handle.execute("SELECT 1").fetchone())

    async def _all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        conn = await self.acquire()

        def run() -> List[Dict[str, Any]]:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, list(params) if params else None)
                if cursor.description is None:
                    return []
                columns = [column[0] for column in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            finally:
                cursor.close()

        return await anyio.to_thread.run_sync(run)

    @staticmethod
    def _relation(target: str) -> str:
        if re.search(r"\bselect\b", target, re.IGNORECASE):
            return target.strip().rstrip(";")
        return DUCKDB.quote(target)

    async def _read_file(self, reader: str, token: str, path: str, query: Optional[str], limit: int) -> Dict[str, Any]:
        source = f"{reader}({file_literal(path)})"
        if query:
            sql = re.sub(rf"\b{token}\b", lambda _: source, query, flags=re.IGNORECASE)
            rows = await self._all(sql)
        else:
            rows = await self._all(f"SELECT * FROM {source} LIMIT ?", [limit])
        return {"count": len(rows), "rows": rows}

    @operation(
        "Execute a SQL query",
        sql=string_param("SQL query", required=True),
        params=string_param("Query parameters as JSON array (optional)"),
    )
    async def duck_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._all(self.require_str(args, "sql"), self.json_arg(args, "params", expect=list))
        return {"count": len(rows), "rows": rows[:MAX_ROWS], "truncated": len(rows) > MAX_ROWS}

    @operation(
        "Execute a SQL statement (CREATE, INSERT, etc.)",
        sql=string_param("SQL statement", required=True),
        params=string_param("Statement parameters as JSON array (optional)"),
    )
    async def duck_exec(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        await self._all(self.require_str(args, "sql"), self.json_arg(args, "params", expect=list))
        return {"success": True}

    @operation(
        "Query a CSV file directly",
        path=string_param("Path to CSV file", required=True),
        query=string_param("SQL query using 'csv' as table name (optional)"),
        limit=number_param("Limit rows (default 100)"),
    )
    async def duck_read_csv(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._read_file(
            "read_csv_auto", "csv", self.require_str(args, "path"), self.optional_str(args, "query"), self.int_arg(args, "limit", 100, minimum=0)
        )

    @operation(
        "Query a Parquet file directly",
        path=string_param("Path to Parquet file (can be local or S3)", required=True),
        query=string_param("SQL query using 'parquet' as table name (optional)"),
        limit=number_param("Limit rows (default 100)"),
    )
    async def duck_read_parquet(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._read_file(
            "read_parquet", "parquet", self.require_str(args, "path"), self.optional_str(args, "query"), self.int_arg(args, "limit", 100, minimum=0)
        )

    @operation(
        "Query a JSON file directly",
        path=string_param("Path to JSON file", required=True),
        query=string_param("SQL query using 'json' as table name (optional)"),
        limit=number_param("Limit rows (default 100)"),
    )
    async def duck_read_json(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._read_file(
            "read_json_auto", "json", self.require_str(args, "path"), self.optional_str(args, "query"), self.int_arg(args, "limit", 100, minimum=0)
        )

    @operation(
        "Export query results to Parquet file",
        sql=string_param("SQL query to export", required=True),
        path=string_param("Output Parquet file path", required=True),
    )
    async def duck_export_parquet(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.require_str(args, "path")
        await self._all(f"COPY ({self.require_str(args, 'sql')}) TO {file_literal(path)} (FORMAT PARQUET)")
        return {"exported_to": path}

    @operation(
        "Export query results to CSV file",
        sql=string_param("SQL query to export", required=True),
        path=string_param("Output CSV file path", required=True),
    )
    async def duck_export_csv(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.require_str(args, "path")
        await self._all(f"COPY ({self.require_str(args, 'sql')}) TO {file_literal(path)} (FORMAT CSV, HEADER)")
        return {"exported_to": path}

    @operation("List all tables")
    async def duck_tables(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"tables": await self._all("SHOW TABLES")}

    @operation("Describe a table or query result structure", target=string_param("Table name or SQL query", required=True))
    async def duck_describe(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"columns": await self._all(f"DESCRIBE {self._relation(self.require_str(args, 'target'))}")}

    @operation("Get statistical summary of a table or query", target=string_param("Table name or SQL query", required=True))
    async def duck_summarize(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"summary": await self._all(f"SUMMARIZE {self._relation(self.require_str(args, 'target'))}")}

    @operation(
        "Import CSV file into a table",
        path=string_param("Path to CSV file", required=True),
        table=string_param("Target table name", required=True),
    )
    async def duck_import_csv(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.require_str(args, "table")
        quoted = DUCKDB.quote(table)
        await self._all(f"CREATE TABLE {quoted} AS SELECT * FROM read_csv_auto({file_literal(self.require_str(args, 'path'))})")
        count = await self._all(f"SELECT COUNT(*) AS count FROM {quoted}")
        return {"table": table, "rows_imported": count[0]["count"] if count else 0}
