"""
Meilisearch adapter over the REST API.

Write operations are asynchronous on the Meilisearch side; they return the
enqueued task summary, which can be followed with ``meili_tasks``.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from ...core.descriptors import number_param, operation, string_param
from .base import HTTPBackendAdapter

TASK_STATUSES = ("enqueued", "processing", "succeeded", "failed", "canceled")


class MeilisearchAdapter(HTTPBackendAdapter):
    name = "meilisearch"
    description = "Fast full-text search engine"
    prefixes = ("meili",)
    health_path = "/health"

    def base_url(self) -> str:
        return self.env.string("MEILISEARCH_URL", default="http://localhost:7700") or "http://localhost:7700"

    def default_headers(self) -> Dict[str, str]:
        api_key = self.env.string("MEILISEARCH_API_KEY")
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    @operation(
        "Search for documents",
        index=string_param("Index name", required=True),
        query=string_param("Search query"),
        limit=number_param("Max results (default 20)"),
        filter=string_param("Filter expression (optional)"),
        sort=string_param("Sort expression (optional)"),
    )
    async def meili_search(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        body: Dict[str, Any] = {"q": self.optional_str(args, "query", ""), "limit": self.int_arg(args, "limit", 20, minimum=0)}
        search_filter = self.optional_str(args, "filter")
        if search_filter:
            body["filter"] = search_filter
        sort = self.list_arg(args, "sort")
        if sort:
            body["sort"] = [str(item) for item in sort]
        result = await self.request("POST", f"/indexes/{index}/search", json_body=body)
        return {
            "hits": result.get("hits", []),
            "estimatedTotalHits": result.get("estimatedTotalHits"),
            "processingTimeMs": result.get("processingTimeMs"),
        }

    @operation("List all indexes")
    async def meili_indexes(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("GET", "/indexes", params={"limit": 1000})
        indexes = [
            {
                "uid": item.get("uid"),
                "primaryKey": item.get("primaryKey"),
                "createdAt": item.get("createdAt"),
                "updatedAt": item.get("updatedAt"),
            }
            for item in (result or {}).get("results", [])
        ]
        return {"indexes": indexes}

    @operation(
        "Create a new index",
        index=string_param("Index name", required=True),
        primaryKey=string_param("Primary key field (optional)"),
    )
    async def meili_create_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"uid": self.require_str(args, "index")}
        primary_key = self.optional_str(args, "primaryKey")
        if primary_key:
            body["primaryKey"] = primary_key
        return {"task": await self.request("POST", "/indexes", json_body=body)}

    @operation("Delete an index", index=string_param("Index name", required=True))
    async def meili_delete_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"task": await self.request("DELETE", f"/indexes/{self.segment(args, 'index')}")}

    @operation(
        "Add or update documents",
        index=string_param("Index name", required=True),
        documents=string_param("JSON array of documents", required=True),
        primaryKey=string_param("Primary key field (optional)"),
    )
    async def meili_add_documents(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        documents = self.json_arg(args, "documents", expect=list, required=True)
        primary_key = self.optional_str(args, "primaryKey")
        params = {"primaryKey": primary_key} if primary_key else None
        task = await self.request("POST", f"/indexes/{index}/documents", params=params, json_body=documents)
        return {"task": task, "documentsAdded": len(documents)}

    @operation(
        "Get a document by ID",
        index=string_param("Index name", required=True),
        id=string_param("Document ID", required=True),
    )
    async def meili_get_document(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"document": await self.request("GET", f"/indexes/{self.segment(args, 'index')}/documents/{self.segment(args, 'id')}")}

    @operation(
        "Get documents from an index",
        index=string_param("Index name", required=True),
        limit=number_param("Max documents (default 20)"),
        offset=number_param("Offset (default 0)"),
    )
    async def meili_get_documents(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        params = {"limit": self.int_arg(args, "limit", 20, minimum=0), "offset": self.int_arg(args, "offset", 0, minimum=0)}
        result = await self.request("GET", f"/indexes/{self.segment(args, 'index')}/documents", params=params) or {}
        return {"documents": result.get("results", []), "total": result.get("total")}

    @operation(
        "Delete a document by ID",
        index=string_param("Index name", required=True),
        id=string_param("Document ID", required=True),
    )
    async def meili_delete_document(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"task": await self.request("DELETE", f"/indexes/{self.segment(args, 'index')}/documents/{self.segment(args, 'id')}")}

    @operation(
        "Delete documents by filter or IDs",
        index=string_param("Index name", required=True),
        ids=string_param("Comma-separated document IDs (optional)"),
        filter=string_param("Filter expression (optional)"),
    )
    async def meili_delete_documents(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        ids = [str(item) for item in self.list_arg(args, "ids")]
        if ids:
            return {"task": await self.request("POST", f"/indexes/{index}/documents/delete-batch", json_body=ids)}
        search_filter = self.require_filter(self.optional_str(args, "filter"), operation="meili_delete_documents")
        return {"task": await self.request("POST", f"/indexes/{index}/documents/delete", json_body={"filter": search_filter})}

    @operation("Get index settings", index=string_param("Index name", required=True))
    async def meili_settings(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"settings": await self.request("GET", f"/indexes/{self.segment(args, 'index')}/settings")}

    @operation(
        "Update index settings",
        index=string_param("Index name", required=True),
        settings=string_param("Settings as JSON object", required=True),
    )
    async def meili_update_settings(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        index = self.segment(args, "index")
        settings = self.json_arg(args, "settings", expect=dict, required=True)
        return {"task": await self.request("PATCH", f"/indexes/{index}/settings", json_body=settings)}

    @operation("Get index statistics", index=string_param("Index name", required=True))
    async def meili_stats(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return {"stats": await self.request("GET", f"/indexes/{self.segment(args, 'index')}/stats")}

    @operation(
        "Get recent tasks",
        limit=number_param("Max tasks (default 20)"),
        status=string_param("Filter by status (optional)"),
    )
    async def meili_tasks(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.int_arg(args, "limit", 20, minimum=1)}
        status = self.optional_str(args, "status")
        if status:
            params["statuses"] = status
        result = await self.request("GET", "/tasks", params=params) or {}
        return {"tasks": result.get("results", [])}
