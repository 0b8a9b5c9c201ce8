"""
Elasticsearch / OpenSearch adapter over the REST API.

Authentication prefers ``ELASTICSEARCH_API_KEY``; otherwise basic auth is used
when both ``ELASTICSEARCH_USER`` and ``ELASTICSEARCH_PASSWORD`` are set.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import ValidationError
from .base import HTTPBackendAdapter

MATCH_ALL: Dict[str, Any] = {"match_all": {}}
MULTI_MATCH_TYPES = ("best_fields", "most_fields", "cross_fields", "phrase", "phrase_prefix", "bool_prefix")
BULK_ACTIONS = ("index", "create", "update", "delete")


def _hits(result: Mapping[str, Any]) -> Dict[str, Any]:
    hits = result.get("hits") or {}
    total = hits.get("total")
    if isinstance(total, Mapping):
        total = total.get("value")
    documents = [{"_id": hit.get("_id"), "_score": hit.get("_score"), **(hit.get("_source") or {})} for hit in hits.get("hits", [])]
    return {"total": total, "hits": documents, "count": len(documents)}


class ElasticsearchAdapter(HTTPBackendAdapter):
    name = "elasticsearch"
    description = "Elasticsearch/OpenSearch - Distributed search and analytics engine"
    prefixes = ("es",)

    def base_url(self) -> str:
        return self.env.string("ELASTICSEARCH_URL", default="http://localhost:9200") or "http://localhost:9200"

    def default_headers(self) -> Dict[str, str]:
        api_key = self.env.string("ELASTICSEARCH_API_KEY")
        return {"Authorization": f"ApiKey {api_key}"} if api_key else {}

    def auth(self) -> Optional[httpx.Auth]:
        if self.env.string("ELASTICSEARCH_API_KEY"):
            return None
        username = self.env.string("ELASTICSEARCH_USER")
        password = self.env.string("ELASTICSEARCH_PASSWORD")
        if username and password:
            return httpx.BasicAuth(username, password)
        return None

    def _query(self, args: Mapping[str, Any], key: str = "query", *, required: bool = False) -> Dict[str, Any]:
        return self.json_arg(args, key, expect=dict, required=required) or dict(MATCH_ALL)

    @operation(
        "Search documents in an index",
        index=string_param("Index name (or pattern like logs-*)", required=True),
        query=string_param("Query DSL as JSON", required=True),
        size=number_param("Max results (default 10)"),
        **{"from": number_param("Offset for pagination (default 0)")},
        sort=string_param("Sort specification as JSON (optional)"),
    )
    async def es_search(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        body: Dict[str, Any] = {
            "query": self._query(args, required=True),
            "size": self.int_arg(args, "size", 10, minimum=0),
            "from": self.int_arg(args, "from", 0, minimum=0),
        }
        sort = self.json_arg(args, "sort")
        if sort:
            body["sort"] = sort
        return _hits(await self.request("POST", f"/{index}/_search", json_body=body))

    @operation(
        "Simple match query (full-text search)",
        index=string_param("Index name", required=True),
        field=string_param("Field to search", required=True),
        text=string_param("Search text", required=True),
        size=number_param("Max results (default 10)"),
    )
    async def es_match(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        body = {
            "query": {"match": {self.require_str(args, "field"): self.require_str(args, "text")}},
            "size": self.int_arg(args, "size", 10, minimum=0),
        }
        return _hits(await self.request("POST", f"/{index}/_search", json_body=body))

    @operation(
        "Search across multiple fields",
        index=string_param("Index name", required=True),
        fields=string_param("Fields to search (comma-separated)", required=True),
        text=string_param("Search text", required=True),
        type=string_param("Match type: best_fields, most_fields, cross_fields, phrase"),
        size=number_param("Max results (default 10)"),
    )
    async def es_multi_match(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        match_type = self.optional_str(args, "type", "best_fields")
        if match_type not in MULTI_MATCH_TYPES:
            raise ValidationError(f"'type' must be one of: {', '.join(MULTI_MATCH_TYPES)}.")
        body = {
            "query": {
                "multi_match": {
                    "query": self.require_str(args, "text"),
                    "fields": [str(field) for field in self.list_arg(args, "fields", required=True)],
                    "type": match_type,
                }
            },
            "size": self.int_arg(args, "size", 10, minimum=0),
        }
        return _hits(await self.request("POST", f"/{index}/_search", json_body=body))

    @operation(
        "Index (insert/update) a document",
        index=string_param("Index name", required=True),
        id=string_param("Document ID (optional, auto-generated if omitted)"),
        document=string_param("Document as JSON", required=True),
    )
    async def es_index_doc(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        document = self.json_arg(args, "document", expect=dict, required=True)
        if self.optional_str(args, "id"):
            result = await self.request("PUT", f"/{index}/_doc/{self.segment(args, 'id')}", json_body=document)
        else:
            result = await self.request("POST", f"/{index}/_doc", json_body=document)
        return {"_id": result.get("_id"), "_version": result.get("_version"), "result": result.get("result")}

    @operation(
        "Bulk index multiple documents",
        index=string_param("Default index name", required=True),
        operations=string_param("Array of {action, doc, id?} as JSON", required=True),
    )
    async def es_bulk(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.require_str(args, "index")
        operations = self.json_arg(args, "operations", expect=list, required=True)
        lines: List[str] = []
        for position, item in enumerate(operations):
            if not isinstance(item, Mapping):
                raise ValidationError(f"operations[{position}] must be an object.")
            action = item.get("action") or "index"
            if action not in BULK_ACTIONS:
                raise ValidationError(f"operations[{position}].action must be one of: {', '.join(BULK_ACTIONS)}.")
            meta: Dict[str, Any] = {"_index": index}
            if item.get("id") is not None:
                meta["_id"] = str(item["id"])
            lines.append(json.dumps({action: meta}, ensure_ascii=False))
            if item.get("doc") is not None:
                lines.append(json.dumps(item["doc"], ensure_ascii=False))
        result = await self.request(
            "POST",
            "/_bulk",
            content="\n".join(lines) + "\n",
            headers={"Content-Type": "application/x-ndjson"},
        )
        return {"took": result.get("took"), "errors": result.get("errors"), "items": len(result.get("items") or [])}

    @operation(
        "Get a document by ID",
        index=string_param("Index name", required=True),
        id=string_param("Document ID", required=True),
    )
    async def es_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("GET", f"/{self.segment(args, 'index')}/_doc/{self.segment(args, 'id')}")
        return {"_id": result.get("_id"), "found": result.get("found"), "document": result.get("_source")}

    @operation(
        "Delete a document by ID",
        index=string_param("Index name", required=True),
        id=string_param("Document ID", required=True),
    )
    async def es_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("DELETE", f"/{self.segment(args, 'index')}/_doc/{self.segment(args, 'id')}")
        return {"_id": result.get("_id"), "result": result.get("result")}

    @operation(
        "Delete documents matching a query",
        index=string_param("Index name", required=True),
        query=string_param("Query DSL as JSON", required=True),
    )
    async def es_delete_by_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        query = self.require_filter(self.json_arg(args, "query", expect=dict), operation="es_delete_by_query")
        result = await self.request("POST", f"/{index}/_delete_by_query", json_body={"query": query})
        return {"deleted": result.get("deleted"), "total": result.get("total")}

    @operation(
        "Count documents matching a query",
        index=string_param("Index name", required=True),
        query=string_param("Query DSL as JSON (optional)"),
    )
    async def es_count(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("POST", f"/{self.segment(args, 'index')}/_count", json_body={"query": self._query(args)})
        return {"count": result.get("count")}

    @operation(
        "Run an aggregation query",
        index=string_param("Index name", required=True),
        aggs=string_param("Aggregations as JSON", required=True),
        query=string_param("Filter query as JSON (optional)"),
    )
    async def es_aggregate(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        body = {"size": 0, "query": self._query(args), "aggs": self.json_arg(args, "aggs", expect=dict, required=True)}
        result = await self.request("POST", f"/{index}/_search", json_body=body)
        return {"aggregations": result.get("aggregations")}

    @operation(
        "Create a new index with mappings",
        index=string_param("Index name", required=True),
        mappings=string_param("Mappings as JSON (optional)"),
        settings=string_param("Settings as JSON (optional)"),
    )
    async def es_create_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        mappings = self.json_arg(args, "mappings", expect=dict)
        if mappings:
            body["mappings"] = mappings
        settings = self.json_arg(args, "settings", expect=dict)
        if settings:
            body["settings"] = settings
        result = await self.request("PUT", f"/{self.segment(args, 'index')}", json_body=body or None)
        return {"acknowledged": result.get("acknowledged"), "index": result.get("index")}

    @operation("Delete an index", index=string_param("Index name", required=True))
    async def es_delete_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.require_str(args, "index")
        if index.strip() in {"*", "_all"}:
            raise ValidationError("Refusing to delete every index; name the index explicitly.")
        result = await self.request("DELETE", f"/{self.segment(args, 'index')}")
        return {"acknowledged": result.get("acknowledged")}

    @operation("List all indices", pattern=string_param("Index pattern (default: *)"))
    async def es_indices(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        pattern = self.optional_str(args, "pattern", "*")
        result = await self.request("GET", f"/_cat/indices/{quote(pattern, safe='*,')}", params={"format": "json"}) or []
        indices = [
            {
                "index": item.get("index"),
                "health": item.get("health"),
                "status": item.get("status"),
                "docsCount": item.get("docs.count"),
                "storeSize": item.get("store.size"),
            }
            for item in result
        ]
        return {"indices": indices, "count": len(indices)}

    @operation("Get index mapping", index=string_param("Index name", required=True))
    async def es_mapping(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.require_str(args, "index")
        result = await self.request("GET", f"/{self.segment(args, 'index')}/_mapping") or {}
        return {"mapping": (result.get(index) or {}).get("mappings")}

    @operation("Get cluster health status")
    async def es_cluster_health(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("GET", "/_cluster/health")
        return {
            "status": result.get("status"),
            "numberOfNodes": result.get("number_of_nodes"),
            "activeShards": result.get("active_primary_shards"),
            "relocatingShards": result.get("relocating_shards"),
        }
