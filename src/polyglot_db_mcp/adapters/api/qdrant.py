"""
Qdrant adapter: vector collections, point upserts and similarity search over
the REST API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from ...core.descriptors import boolean_param, number_param, operation, string_param
from ...core.errors import ValidationError
from .base import HTTPBackendAdapter

DISTANCES = ("Cosine", "Euclid", "Dot", "Manhattan")
INDEX_TYPES = ("keyword", "integer", "float", "bool", "geo", "text", "datetime", "uuid")


def _point_ids(values: List[Any]) -> List[Any]:
    ids: List[Any] = []
    for value in values:
        if isinstance(value, int) and not isinstance(value, bool):
            ids.append(value)
            continue
        text = str(value).strip()
        ids.append(int(text) if text.isdigit() else text)
    return ids


class QdrantAdapter(HTTPBackendAdapter):
    name = "qdrant"
    description = "Vector database for embeddings and semantic search"
    health_path = "/collections"

    def base_url(self) -> str:
        return self.env.string("QDRANT_URL", default="http://localhost:6333") or "http://localhost:6333"

    def default_headers(self) -> Dict[str, str]:
        api_key = self.env.string("QDRANT_API_KEY")
        return {"api-key": api_key} if api_key else {}

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        payload = await self.request(method, path, **kwargs)
        if isinstance(payload, Mapping) and "result" in payload:
            return payload["result"]
        return payload

    @operation("List all collections")
    async def qdrant_collections(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self._call("GET", "/collections")
        return {"collections": (result or {}).get("collections", [])}

    @operation("Get collection details", collection=string_param("Collection name", required=True))
    async def qdrant_collection_info(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"info": await self._call("GET", f"/collections/{self.segment(args, 'collection')}")}

    @operation(
        "Create a new collection",
        collection=string_param("Collection name", required=True),
        vectorSize=number_param("Vector dimension size", required=True),
        distance=string_param("Distance metric: Cosine, Euclid, or Dot"),
    )
    async def qdrant_create_collection(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        size = self.int_arg(args, "vectorSize", minimum=1)
        if size is None:
            raise ValidationError("'vectorSize' is required.")
        distance = self.optional_str(args, "distance", "Cosine")
        if distance not in DISTANCES:
            raise ValidationError(f"'distance' must be one of: {', '.join(DISTANCES)}.")
        await self._call("PUT", f"/collections/{collection}", json_body={"vectors": {"size": size, "distance": distance}})
        return {"created": args["collection"], "vectorSize": size, "distance": distance}

    @operation("Delete a collection", collection=string_param("Collection name", required=True))
    async def qdrant_delete_collection(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        await self._call("DELETE", f"/collections/{self.segment(args, 'collection')}")
        return {"deleted": args["collection"]}

    @operation(
        "Insert or update points (vectors with payload)",
        collection=string_param("Collection name", required=True),
        points=string_param("JSON array of {id, vector, payload} objects", required=True),
    )
    async def qdrant_upsert(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        points = self.json_arg(args, "points", expect=list, required=True)
        await self._call("PUT", f"/collections/{collection}/points", params={"wait": "true"}, json_body={"points": points})
        return {"upserted": len(points)}

    @operation(
        "Search for similar vectors",
        collection=string_param("Collection name", required=True),
        vector=string_param("Query vector as JSON array", required=True),
        limit=number_param("Number of results (default 10)"),
        filter=string_param("Filter conditions as JSON (optional)"),
        withPayload=boolean_param("Include payload (default true)"),
    )
    async def qdrant_search(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        body: Dict[str, Any] = {
            "vector": self.json_arg(args, "vector", expect=list, required=True),
            "limit": self.int_arg(args, "limit", 10, minimum=1),
            "with_payload": self.bool_arg(args, "withPayload", True),
        }
        search_filter = self.json_arg(args, "filter", expect=dict)
        if search_filter:
            body["filter"] = search_filter
        return {"results": await self._call("POST", f"/collections/{collection}/points/search", json_body=body)}

    @operation(
        "Search for multiple vectors at once",
        collection=string_param("Collection name", required=True),
        vectors=string_param("JSON array of query vectors", required=True),
        limit=number_param("Results per query (default 10)"),
    )
    async def qdrant_search_batch(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        vectors = self.json_arg(args, "vectors", expect=list, required=True)
        limit = self.int_arg(args, "limit", 10, minimum=1)
        searches = [{"vector": vector, "limit": limit, "with_payload": True} for vector in vectors]
        return {"results": await self._call("POST", f"/collections/{collection}/points/search/batch", json_body={"searches": searches})}

    @operation(
        "Get points by IDs",
        collection=string_param("Collection name", required=True),
        ids=string_param("Comma-separated point IDs", required=True),
    )
    async def qdrant_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        ids = _point_ids(self.list_arg(args, "ids", required=True))
        body = {"ids": ids, "with_payload": True, "with_vector": True}
        return {"points": await self._call("POST", f"/collections/{collection}/points", json_body=body)}

    @operation(
        "Delete points by IDs or filter",
        collection=string_param("Collection name", required=True),
        ids=string_param("Comma-separated point IDs (optional)"),
        filter=string_param("Filter conditions as JSON (optional)"),
    )
    async def qdrant_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        path = f"/collections/{collection}/points/delete"
        ids = _point_ids(self.list_arg(args, "ids"))
        if ids:
            await self._call("POST", path, params={"wait": "true"}, json_body={"points": ids})
            return {"deleted_ids": ids}
        search_filter = self.require_filter(self.json_arg(args, "filter", expect=dict), operation="qdrant_delete")
        await self._call("POST", path, params={"wait": "true"}, json_body={"filter": search_filter})
        return {"deleted_by_filter": True}

    @operation(
        "Scroll through all points in a collection",
        collection=string_param("Collection name", required=True),
        limit=number_param("Points per page (default 100)"),
        offset=string_param("Offset point ID (optional)"),
        filter=string_param("Filter conditions as JSON (optional)"),
    )
    async def qdrant_scroll(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        body: Dict[str, Any] = {"limit": self.int_arg(args, "limit", 100, minimum=1), "with_payload": True}
        offset = args.get("offset")
        if offset not in (None, ""):
            body["offset"] = _point_ids([offset])[0]
        search_filter = self.json_arg(args, "filter", expect=dict)
        if search_filter:
            body["filter"] = search_filter
        result = await self._call("POST", f"/collections/{collection}/points/scroll", json_body=body) or {}
        return {"points": result.get("points", []), "next_offset": result.get("next_page_offset")}

    @operation(
        "Count points in a collection",
        collection=string_param("Collection name", required=True),
        filter=string_param("Filter conditions as JSON (optional)"),
    )
    async def qdrant_count(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        body: Dict[str, Any] = {"exact": True}
        search_filter = self.json_arg(args, "filter", expect=dict)
        if search_filter:
            body["filter"] = search_filter
        result = await self._call("POST", f"/collections/{collection}/points/count", json_body=body) or {}
        return {"count": result.get("count")}

    @operation(
        "Create payload index for filtering",
        collection=string_param("Collection name", required=True),
        field=string_param("Payload field name", required=True),
        type=string_param("Field type: keyword, integer, float, bool, geo, text", required=True),
    )
    async def qdrant_create_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = self.segment(args, "collection")
        field = self.require_str(args, "field")
        field_type = self.require_str(args, "type")
        if field_type not in INDEX_TYPES:
            raise ValidationError(f"'type' must be one of: {', '.join(INDEX_TYPES)}.")
        body = {"field_name": field, "field_schema": field_type}
        await self._call("PUT", f"/collections/{collection}/index", params={"wait": "true"}, json_body=body)
        return {"indexed": field, "type": field_type}
