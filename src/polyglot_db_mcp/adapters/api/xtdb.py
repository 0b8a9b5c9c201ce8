"""
XTDB adapter: bitemporal queries and transactions over the HTTP API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from ...core.descriptors import number_param, operation, string_param
from .base import HTTPBackendAdapter


class XTDBAdapter(HTTPBackendAdapter):
    name = "xtdb"
    description = "Bitemporal database with immutable history"
    health_path = "/status"

    def base_url(self) -> str:
        return self.env.string("XTDB_URL", default="http://localhost:3000") or "http://localhost:3000"

    def default_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _query(self, body: Mapping[str, Any]) -> Any:
        return await self.request("POST", "/query", json_body=dict(body))

    async def _submit(self, tx_ops: List[Any]) -> Any:
        return await self.request("POST", "/tx", json_body={"txOps": tx_ops})

    @operation("Get XTDB server status")
    async def xtdb_status(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"status": await self.request("GET", "/status")}

    @operation(
        "Execute an XTQL or SQL query",
        query=string_param("XTQL or SQL query", required=True),
        args=string_param("Query arguments as JSON (optional)"),
    )
    async def xtdb_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": self.require_str(args, "query")}
        query_args = self.json_arg(args, "args")
        if query_args is not None:
            body["args"] = query_args
        return {"results": await self._query(body)}

    @operation(
        "Put a document into XTDB",
        table=string_param("Table name", required=True),
        id=string_param("Document ID", required=True),
        doc=string_param("Document as JSON", required=True),
        validFrom=string_param("Valid-from time (ISO 8601, optional)"),
    )
    async def xtdb_put(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.identifier(args.get("table"), label="table name", dotted=True)
        document = dict(self.json_arg(args, "doc", expect=dict, required=True))
        document["_id"] = self.require_str(args, "id")
        put: Dict[str, Any] = {"table": table, "doc": document}
        valid_from = self.optional_str(args, "validFrom")
        if valid_from:
            put["validFrom"] = valid_from
        return {"transaction": await self._submit([{"put": put}])}

    @operation(
        "Delete a document from XTDB",
        table=string_param("Table name", required=True),
        id=string_param("Document ID", required=True),
        validFrom=string_param("Valid-from time (ISO 8601, optional)"),
    )
    async def xtdb_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        delete: Dict[str, Any] = {
            "table": self.identifier(args.get("table"), label="table name", dotted=True),
            "id": self.require_str(args, "id"),
        }
        valid_from = self.optional_str(args, "validFrom")
        if valid_from:
            delete["validFrom"] = valid_from
        return {"transaction": await self._submit([{"delete": delete}])}

    @operation(
        "Get an entity by ID",
        table=string_param("Table name", required=True),
        id=string_param("Document ID", required=True),
        validTime=string_param("Valid time to query at (ISO 8601, optional)"),
        txTime=string_param("Transaction time to query at (ISO 8601, optional)"),
    )
    async def xtdb_entity(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.identifier(args.get("table"), label="table name", dotted=True)
        body: Dict[str, Any] = {"query": f"SELECT * FROM {table} WHERE _id = ?", "args": [self.require_str(args, "id")]}
        for key in ("validTime", "txTime"):
            value = self.optional_str(args, key)
            if value:
                body[key] = value
        result = await self._query(body)
        return {"entity": result[0] if isinstance(result, list) and result else None}

    @operation(
        "Get the history of an entity",
        table=string_param("Table name", required=True),
        id=string_param("Document ID", required=True),
    )
    async def xtdb_history(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.identifier(args.get("table"), label="table name", dotted=True)
        query = (
            "SELECT *, _valid_from, _valid_to, _system_from, _system_to "
            f"FROM {table} FOR ALL VALID_TIME FOR ALL SYSTEM_TIME WHERE _id = ?"
        )
        return {"history": await self._query({"query": query, "args": [self.require_str(args, "id")]})}

    @operation(
        "Query the database as of a specific point in time",
        query=string_param("SQL query", required=True),
        validTime=string_param("Valid time (ISO 8601)", required=True),
        txTime=string_param("Transaction time (ISO 8601, optional)"),
    )
    async def xtdb_as_of(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": self.require_str(args, "query"), "validTime": self.require_str(args, "validTime")}
        tx_time = self.optional_str(args, "txTime")
        if tx_time:
            body["txTime"] = tx_time
        return {"results": await self._query(body)}

    @operation(
        "Submit a transaction with multiple operations",
        operations=string_param("Transaction operations as JSON array", required=True),
    )
    async def xtdb_tx(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"transaction": await self._submit(self.json_arg(args, "operations", expect=list, required=True))}

    @operation("Get recent transactions", limit=number_param("Number of transactions (default 10)"))
    async def xtdb_recent_txs(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"transactions": await self.request("GET", "/tx-log", params={"limit": self.int_arg(args, "limit", 10, minimum=1)})}
