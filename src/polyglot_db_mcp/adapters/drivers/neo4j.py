"""
Neo4j adapter on the async Bolt driver.

Labels and relationship types cannot be parameterised in Cypher; they are
validated as identifiers and backtick-quoted. Property matches are JSON objects
bound as ``$`` parameters and compared key by key.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.graph import Node, Path, Relationship

from ...core.descriptors import boolean_param, number_param, operation, string_param
from ...core.errors import ValidationError
from ..base import BackendAdapter

MAX_PATH_DEPTH = 15


def serialize(value: Any) -> Any:
    """Convert driver graph types into plain JSON-friendly structures."""

    if isinstance(value, Node):
        return {**{key: serialize(item) for key, item in dict(value).items()}, "_labels": sorted(value.labels), "_id": value.element_id}
    if isinstance(value, Relationship):
        return {
            "type": value.type,
            "properties": {key: serialize(item) for key, item in dict(value).items()},
            "_id": value.element_id,
            "_startId": value.start_node.element_id if value.start_node is not None else None,
            "_endId": value.end_node.element_id if value.end_node is not None else None,
        }
    if isinstance(value, Path):
        return {
            "length": len(value),
            "nodes": [serialize(node) for node in value.nodes],
            "relationships": [relationship.type for relationship in value.relationships],
        }
    if isinstance(value, Mapping):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value


class Neo4jAdapter(BackendAdapter[AsyncDriver]):
    name = "neo4j"
    description = "Native graph database with Cypher query language"

    async def _open(self) -> AsyncDriver:
        url = self.env.string("NEO4J_URL", "NEO4J_URI", default="bolt://localhost:7687")
        auth = (
            self.env.string("NEO4J_USER", "NEO4J_USERNAME", default="neo4j"),
            self.env.string("NEO4J_PASSWORD", default="neo4j"),
        )
        return AsyncGraphDatabase.driver(url, auth=auth)

    async def _close(self, handle: AsyncDriver) -> None:
        await handle.close()

    async def _ping(self, handle: AsyncDriver) -> None:
        await handle.verify_connectivity()

    async def _run(self, query: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[List[Dict[str, Any]], Any]:
        driver = await self.acquire()
        database = self.env.string("NEO4J_DATABASE", default="neo4j")
        async with driver.session(database=database) as session:
            result = await session.run(query, dict(params or {}))
            records = [{key: serialize(record[key]) for key in record.keys()} async for record in result]
            summary = await result.consume()
        return records, summary.counters

    def _label(self, args: Mapping[str, Any], key: str, *, required: bool = True) -> str:
        value = self.optional_str(args, key) if not required else self.require_str(args, key)
        if not value:
            return ""
        return f"`{self.identifier(value, label=f'{key} value')}`"

    def _labels(self, value: str, *, separator: str) -> str:
        names = [item.strip() for item in value.split(",") if item.strip()]
        if not names:
            raise ValidationError("At least one label or type is required.")
        return separator.join(f"`{self.identifier(name, label='label or type')}`" for name in names)

    def _match(self, args: Mapping[str, Any], key: str) -> Dict[str, Any]:
        value = self.json_arg(args, key, expect=dict, required=True)
        if not value:
            raise ValidationError(f"'{key}' must name at least one property.")
        for name in value:
            self.identifier(name, label=f"property name in '{key}'")
        return value

    @staticmethod
    def _where(variable: str, parameter: str) -> str:
        return f"all(k IN keys(${parameter}) WHERE {variable}[k] = ${parameter}[k])"

    @operation(
        "Execute a Cypher query",
        query=string_param("Cypher query to execute", required=True),
        params=string_param("Query parameters as JSON (optional)"),
    )
    async def neo4j_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        records, counters = await self._run(self.require_str(args, "query"), self.json_arg(args, "params", expect=dict))
        return {
            "records": records,
            "count": len(records),
            "summary": {
                "nodesCreated": counters.nodes_created,
                "nodesDeleted": counters.nodes_deleted,
                "relationshipsCreated": counters.relationships_created,
                "relationshipsDeleted": counters.relationships_deleted,
                "propertiesSet": counters.properties_set,
            },
        }

    @operation(
        "Create a node with labels and properties",
        labels=string_param("Node labels (comma-separated)", required=True),
        properties=string_param("Node properties as JSON", required=True),
    )
    async def neo4j_create_node(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        labels = self._labels(self.require_str(args, "labels"), separator=":")
        properties = self.json_arg(args, "properties", expect=dict, required=True)
        records, _ = await self._run(f"CREATE (n:{labels} $props) RETURN n", {"props": properties})
        return {"created": True, "node": records[0]["n"] if records else None}

    @operation(
        "Create a relationship between nodes",
        fromLabel=string_param("Label of source node", required=True),
        fromMatch=string_param("Property match for source as JSON (e.g., {\"name\": \"Alice\"})", required=True),
        toLabel=string_param("Label of target node", required=True),
        toMatch=string_param("Property match for target as JSON", required=True),
        relType=string_param("Relationship type (e.g., KNOWS)", required=True),
        properties=string_param("Relationship properties as JSON (optional)"),
    )
    async def neo4j_create_relationship(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = (
            f"MATCH (a:{self._label(args, 'fromLabel')}) WHERE {self._where('a', 'fromMatch')} "
            f"MATCH (b:{self._label(args, 'toLabel')}) WHERE {self._where('b', 'toMatch')} "
            f"CREATE (a)-[r:{self._label(args, 'relType')} $props]->(b) RETURN a, r, b"
        )
        params = {
            "fromMatch": self._match(args, "fromMatch"),
            "toMatch": self._match(args, "toMatch"),
            "props": self.json_arg(args, "properties", expect=dict) or {},
        }
        records, _ = await self._run(query, params)
        return {"created": bool(records), "count": len(records)}

    @operation(
        "Find nodes by label and optional properties",
        label=string_param("Node label", required=True),
        match=string_param("Property equality match as JSON (optional)"),
        limit=number_param("Max results (default 100)"),
    )
    async def neo4j_find_nodes(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = f"MATCH (n:{self._label(args, 'label')})"
        params: Dict[str, Any] = {"limit": self.int_arg(args, "limit", 100, minimum=0)}
        if args.get("match"):
            params["match"] = self._match(args, "match")
            query += f" WHERE {self._where('n', 'match')}"
        records, _ = await self._run(query + " RETURN n LIMIT $limit", params)
        nodes = [record["n"] for record in records]
        return {"nodes": nodes, "count": len(nodes)}

    @operation(
        "Find relationships between nodes",
        fromLabel=string_param("Source node label (optional)"),
        relType=string_param("Relationship type (optional)"),
        toLabel=string_param("Target node label (optional)"),
        limit=number_param("Max results (default 100)"),
    )
    async def neo4j_find_relationships(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        from_part, rel_part, to_part = (self._label(args, key, required=False) for key in ("fromLabel", "relType", "toLabel"))
        query = (
            f"MATCH (a{':' + from_part if from_part else ''})-[r{':' + rel_part if rel_part else ''}]->"
            f"(b{':' + to_part if to_part else ''}) RETURN a, r, b LIMIT $limit"
        )
        records, _ = await self._run(query, {"limit": self.int_arg(args, "limit", 100, minimum=0)})
        return {"relationships": records, "count": len(records)}

    @operation(
        "Find shortest path between two nodes",
        fromLabel=string_param("Source node label", required=True),
        fromMatch=string_param("Source node match as JSON (e.g., {\"name\": \"Alice\"})", required=True),
        toLabel=string_param("Target node label", required=True),
        toMatch=string_param("Target node match as JSON", required=True),
        relTypes=string_param("Relationship types to traverse (optional, comma-separated)"),
        maxDepth=number_param("Maximum path depth (default 10)"),
    )
    async def neo4j_shortest_path(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rel_types = self.optional_str(args, "relTypes")
        rel_part = f":{self._labels(rel_types, separator='|')}" if rel_types else ""
        depth = self.int_arg(args, "maxDepth", 10, minimum=1)
        if depth > MAX_PATH_DEPTH:
            raise ValidationError(f"'maxDepth' must be at most {MAX_PATH_DEPTH}.")
        query = (
            f"MATCH (a:{self._label(args, 'fromLabel')}) WHERE {self._where('a', 'fromMatch')} "
            f"MATCH (b:{self._label(args, 'toLabel')}) WHERE {self._where('b', 'toMatch')} "
            f"MATCH p = shortestPath((a)-[{rel_part}*..{depth}]-(b)) RETURN p"
        )
        records, _ = await self._run(query, {"fromMatch": self._match(args, "fromMatch"), "toMatch": self._match(args, "toMatch")})
        paths = [record["p"] for record in records]
        return {"paths": paths, "count": len(paths)}

    @operation(
        "Delete a node (and its relationships)",
        label=string_param("Node label", required=True),
        match=string_param("Property match as JSON (e.g., {\"id\": 123})", required=True),
        detach=boolean_param("Also delete relationships (default true)"),
    )
    async def neo4j_delete_node(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        self.require_filter(args.get("match"), operation="neo4j_delete_node")
        detach = "DETACH " if self.bool_arg(args, "detach", True) else ""
        query = f"MATCH (n:{self._label(args, 'label')}) WHERE {self._where('n', 'match')} {detach}DELETE n"
        _, counters = await self._run(query, {"match": self._match(args, "match")})
        return {"deleted": counters.nodes_deleted > 0, "nodesDeleted": counters.nodes_deleted}

    @operation("List all node labels in the database")
    async def neo4j_labels(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        records, _ = await self._run("CALL db.labels()")
        labels = [record["label"] for record in records]
        return {"labels": labels, "count": len(labels)}

    @operation("List all relationship types in the database")
    async def neo4j_relationship_types(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        records, _ = await self._run("CALL db.relationshipTypes()")
        types = [record["relationshipType"] for record in records]
        return {"types": types, "count": len(types)}

    @operation("Get database statistics")
    async def neo4j_stats(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        nodes, _ = await self._run("MATCH (n) RETURN count(n) AS count")
        relationships, _ = await self._run("MATCH ()-[r]->() RETURN count(r) AS count")
        return {
            "nodeCount": nodes[0]["count"] if nodes else 0,
            "relationshipCount": relationships[0]["count"] if relationships else 0,
        }
