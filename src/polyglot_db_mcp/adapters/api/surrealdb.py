"""
SurrealDB adapter over the ``/sql`` HTTP endpoint.

Caller values are bound as SurrealQL variables: each one is declared with a
``LET $name = <json>;`` statement whose right-hand side is JSON-encoded, and
record ids are built with ``type::thing``. Table and relation names are
validated identifiers.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import BackendExecutionError, ValidationError
from .base import HTTPBackendAdapter

ARROWS = {"out": "->", "in": "<-", "both": "<->"}


class SurrealDBAdapter(HTTPBackendAdapter):
    name = "surrealdb"
    description = "Multi-model database (document, graph, relational)"
    prefixes = ("surreal",)
    health_path = "/health"

    def base_url(self) -> str:
        return self.env.string("SURREAL_URL", default="http://localhost:8000") or "http://localhost:8000"

    def default_headers(self) -> Dict[str, str]:
        namespace = self.env.string("SURREAL_NAMESPACE", default="test") or "test"
        database = self.env.string("SURREAL_DATABASE", default="test") or "test"
        return {"Surreal-NS": namespace, "Surreal-DB": database, "NS": namespace, "DB": database}

    def auth(self) -> Optional[httpx.Auth]:
        username = self.env.string("SURREAL_USERNAME", default="root") or "root"
        password = self.env.string("SURREAL_PASSWORD", default="root") or "root"
        return httpx.BasicAuth(username, password)

    async def sql(self, statement: str, variables: Optional[Mapping[str, Any]] = None) -> List[Any]:
        """
        Run SurrealQL with bound variables and return one result per caller statement.

        Raises :class:`BackendExecutionError` when any statement reports ``ERR``.
        """

        bindings = dict(variables or {})
        for name in bindings:
            if not name.isidentifier():
                raise ValidationError(f"Invalid variable name '{name}'.")
        prelude = "".join(f"LET ${name} = {json.dumps(value, ensure_ascii=False)};\n" for name, value in bindings.items())
        payload = await self.request(
            "POST",
            "/sql",
            content=prelude + statement,
            headers={"Content-Type": "text/plain", "Accept": "application/json"},
        )
        responses = payload if isinstance(payload, list) else [payload]
        for response in responses:
            if isinstance(response, Mapping) and response.get("status") == "ERR":
                raise BackendExecutionError(f"SurrealQL error: {response.get('result') or response.get('detail')}")
        results = [item.get("result") if isinstance(item, Mapping) else item for item in responses]
        return results[len(bindings) :]

    def _table(self, args: Mapping[str, Any], key: str = "table") -> str:
        return self.identifier(args.get(key), label=f"'{key}'")

    @staticmethod
    def _record(value: Any, *, label: str) -> Tuple[str, str]:
        if not isinstance(value, str) or ":" not in value:
            raise ValidationError(f"{label} must be a record id such as person:tobie.")
        table, _, record_id = value.partition(":")
        if not table or not record_id:
            raise ValidationError(f"{label} must be a record id such as person:tobie.")
        return table, record_id

    @staticmethod
    def _first(results: List[Any]) -> Any:
        return results[0] if results else None

    @operation(
        "Execute a SurrealQL query",
        query=string_param("SurrealQL query to execute", required=True),
        vars=string_param("Variables as JSON object (optional)"),
    )
    async def surreal_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        variables = self.json_arg(args, "vars", expect=dict) or {}
        return {"results": await self.sql(self.require_str(args, "query"), variables)}

    @operation("Select all records from a table", table=string_param("Table name", required=True))
    async def surreal_select(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        records = self._first(await self.sql("SELECT * FROM type::table($tb);", {"tb": self._table(args)})) or []
        return {"count": len(records), "records": records}

    @operation(
        "Create a new record",
        table=string_param("Table name", required=True),
        data=string_param("Record data as JSON", required=True),
        id=string_param("Optional record ID"),
    )
    async def surreal_create(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        variables: Dict[str, Any] = {"tb": self._table(args), "data": self.json_arg(args, "data", expect=dict, required=True)}
        record_id = self.optional_str(args, "id")
        if record_id:
            variables["id"] = record_id
            statement = "CREATE type::thing($tb, $id) CONTENT $data;"
        else:
            statement = "CREATE type::table($tb) CONTENT $data;"
        return {"created": self._first(await self.sql(statement, variables))}

    @operation(
        "Update a record (replace entirely)",
        table=string_param("Table name", required=True),
        id=string_param("Record ID", required=True),
        data=string_param("New record data as JSON", required=True),
    )
    async def surreal_update(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        variables = {"tb": self._table(args), "id": self.require_str(args, "id"), "data": self.json_arg(args, "data", expect=dict, required=True)}
        return {"updated": self._first(await self.sql("UPDATE type::thing($tb, $id) CONTENT $data;", variables))}

    @operation(
        "Merge data into a record (partial update)",
        table=string_param("Table name", required=True),
        id=string_param("Record ID", required=True),
        data=string_param("Data to merge as JSON", required=True),
    )
    async def surreal_merge(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        variables = {"tb": self._table(args), "id": self.require_str(args, "id"), "data": self.json_arg(args, "data", expect=dict, required=True)}
        return {"merged": self._first(await self.sql("UPDATE type::thing($tb, $id) MERGE $data;", variables))}

    @operation(
        "Delete a record by ID (table-wide deletes are refused)",
        table=string_param("Table name", required=True),
        id=string_param("Record ID", required=True),
    )
    async def surreal_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        record_id = self.require_filter(self.optional_str(args, "id"), operation="surreal_delete")
        variables = {"tb": self._table(args), "id": record_id}
        return {"deleted": self._first(await self.sql("DELETE type::thing($tb, $id) RETURN BEFORE;", variables))}

    @operation(
        "Create a graph relation between two records",
        **{"from": string_param("Source record (table:id)", required=True)},
        relation=string_param("Relation table name", required=True),
        to=string_param("Target record (table:id)", required=True),
        data=string_param("Optional relation data as JSON"),
    )
    async def surreal_relate(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        from_table, from_id = self._record(args.get("from"), label="'from'")
        to_table, to_id = self._record(args.get("to"), label="'to'")
        relation = self._table(args, "relation")
        variables = {
            "from_tb": from_table,
            "from_id": from_id,
            "to_tb": to_table,
            "to_id": to_id,
            "data": self.json_arg(args, "data", expect=dict) or {},
        }
        statement = (
            "LET $src = type::thing($from_tb, $from_id);\n"
            "LET $dst = type::thing($to_tb, $to_id);\n"
            f"RELATE $src->{relation}->$dst CONTENT $data;"
        )
        results = await self.sql(statement, variables)
        return {"relation": results[-1] if results else None}

    @operation(
        "Traverse graph relations",
        start=string_param("Starting record (table:id)", required=True),
        direction=string_param("Direction: 'out', 'in', or 'both'"),
        relation=string_param("Relation type to traverse", required=True),
        depth=number_param("Max traversal depth (default 1)"),
    )
    async def surreal_graph_traverse(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        table, record_id = self._record(args.get("start"), label="'start'")
        direction = self.optional_str(args, "direction", "out")
        arrow = ARROWS.get(direction)
        if arrow is None:
            raise ValidationError("'direction' must be one of: out, in, both.")
        relation = self._table(args, "relation")
        depth = self.int_arg(args, "depth", 1, minimum=1)
        if depth > 10:
            raise ValidationError("'depth' must be at most 10.")
        path = f"{arrow}{relation}{arrow}?" * depth
        statement = f"SELECT {path} AS paths FROM type::thing($tb, $id);"
        return {"paths": self._first(await self.sql(statement, {"tb": table, "id": record_id}))}

    @operation("Get database info (tables, schema)")
    async def surreal_info(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"info": self._first(await self.sql("INFO FOR DB;"))}

    @operation("Describe one table (fields, indexes, live queries)", table=string_param("Table to describe", required=True))
    async def surreal_table_info(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"tableInfo": self._first(await self.sql(f"INFO FOR TABLE {self._table(args)};"))}
