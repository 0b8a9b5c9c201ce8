"""
MongoDB adapter on pymongo's native asyncio client.

Filters, projections, updates and pipelines arrive as JSON documents and are
handed to the driver as data, never assembled into query text. A string ``_id``
that is a valid ObjectId is converted so callers can paste ids they got back.
Update and delete operations refuse an empty filter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from ...core.descriptors import boolean_param, number_param, operation, string_param
from ...core.errors import ValidationError
from ..base import BackendAdapter


def coerce_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def sort_spec(value: Mapping[str, Any], *, key: str) -> List[Tuple[str, Any]]:
    """Turn ``{"field": 1, "other": -1}`` into the ordered pair list the driver expects."""

    pairs = []
    for field, direction in value.items():
        if direction not in (1, -1, "text", "2dsphere", "hashed"):
            raise ValidationError(f"""'{key}' directions must be 1, -1, "text", "2dsphere" or "hashed", got {direction!r} for '{field}'.""")
        pairs.append((field, direction))
    if not pairs:
        raise ValidationError(f"'{key}' must name at least one field.")
    return pairs


class MongoDBAdapter(BackendAdapter[AsyncDatabase]):
    name = "mongodb"
    description = "Document database with flexible schemas"
    prefixes = ("mongo",)

    async def _open(self) -> AsyncDatabase:
        client: AsyncMongoClient = AsyncMongoClient(
            self.env.string("MONGODB_URL", "MONGODB_URI", default="mongodb://localhost:27017"),
            serverSelectionTimeoutMS=self.env.integer("MONGODB_TIMEOUT_MS", default=5000),
        )
        return client.get_database(self.env.string("MONGODB_DATABASE", default="test"))

    async def _close(self, handle: AsyncDatabase) -> None:
        await handle.client.close()

    async def _ping(self, handle: AsyncDatabase) -> None:
        await handle.command("ping")

    async def _collection(self, args: Mapping[str, Any]):
        name = self.require_str(args, "collection")
        if "$" in name or "\x00" in name or name.startswith("system."):
            raise ValidationError(f"Invalid collection name '{name}'.")
        database = await self.acquire()
        return database.get_collection(name)

    def _filter(self, args: Mapping[str, Any], *, required: bool = False) -> Dict[str, Any]:
        value = dict(self.json_arg(args, "filter", expect=dict, required=required) or {})
        if "_id" in value:
            value["_id"] = coerce_id(value["_id"])
        return value

    def _guarded_filter(self, args: Mapping[str, Any], operation_name: str) -> Dict[str, Any]:
        return self.require_filter(self._filter(args), operation=operation_name)

    def _update(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        update = self.json_arg(args, "update", expect=dict, required=True)
        if not update or not all(key.startswith("$") for key in update):
            raise ValidationError("'update' must contain only update operators such as {\"$set\": {...}}.")
        return update

    @operation(
        "Find documents in a collection",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON (default: {})"),
        projection=string_param("Fields to include/exclude as JSON (optional)"),
        sort=string_param("Sort specification as JSON, e.g. {\"age\": -1} (optional)"),
        limit=number_param("Max documents (default 100)"),
        skip=number_param("Documents to skip (default 0)"),
    )
    async def mongo_find(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = await self._collection(args)
        cursor = collection.find(self._filter(args), self.json_arg(args, "projection", expect=dict))
        sort = self.json_arg(args, "sort", expect=dict)
        if sort:
            cursor = cursor.sort(sort_spec(sort, key="sort"))
        cursor = cursor.skip(self.int_arg(args, "skip", 0, minimum=0)).limit(self.int_arg(args, "limit", 100, minimum=1))
        documents = await cursor.to_list()
        return {"documents": documents, "count": len(documents)}

    @operation(
        "Find a single document",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON", required=True),
    )
    async def mongo_find_one(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = await self._collection(args)
        document = await collection.find_one(self._filter(args, required=True))
        return {"document": document, "found": document is not None}

    @operation(
        "Insert a single document",
        collection=string_param("Collection name", required=True),
        document=string_param("Document as JSON", required=True),
    )
    async def mongo_insert_one(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = await self._collection(args)
        result = await collection.insert_one(self.json_arg(args, "document", expect=dict, required=True))
        return {"insertedId": str(result.inserted_id), "acknowledged": result.acknowledged}

    @operation(
        "Insert multiple documents",
        collection=string_param("Collection name", required=True),
        documents=string_param("Array of documents as JSON", required=True),
    )
    async def mongo_insert_many(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        documents = self.json_arg(args, "documents", expect=list, required=True)
        if not documents or not all(isinstance(item, dict) for item in documents):
            raise ValidationError("'documents' must be a non-empty array of objects.")
        collection = await self._collection(args)
        result = await collection.insert_many(documents)
        return {"insertedCount": len(result.inserted_ids), "insertedIds": [str(item) for item in result.inserted_ids]}

    @operation(
        "Update a single document",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON", required=True),
        update=string_param("Update operations as JSON (e.g., {\"$set\": {...}})", required=True),
        upsert=boolean_param("Create if not exists (default false)"),
    )
    async def mongo_update_one(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = self._guarded_filter(args, "mongo_update_one")
        update = self._update(args)
        collection = await self._collection(args)
        result = await collection.update_one(query, update, upsert=self.bool_arg(args, "upsert"))
        upserted: Optional[str] = str(result.upserted_id) if result.upserted_id is not None else None
        return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count, "upsertedId": upserted}

    @operation(
        "Update multiple documents",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON", required=True),
        update=string_param("Update operations as JSON", required=True),
    )
    async def mongo_update_many(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = self._guarded_filter(args, "mongo_update_many")
        update = self._update(args)
        collection = await self._collection(args)
        result = await collection.update_many(query, update)
        return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count}

    @operation(
        "Delete a single document",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON", required=True),
    )
    async def mongo_delete_one(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = self._guarded_filter(args, "mongo_delete_one")
        collection = await self._collection(args)
        result = await collection.delete_one(query)
        return {"deletedCount": result.deleted_count}

    @operation(
        "Delete multiple documents",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON", required=True),
    )
    async def mongo_delete_many(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = self._guarded_filter(args, "mongo_delete_many")
        collection = await self._collection(args)
        result = await collection.delete_many(query)
        return {"deletedCount": result.deleted_count}

    @operation(
        "Run an aggregation pipeline",
        collection=string_param("Collection name", required=True),
        pipeline=string_param("Aggregation pipeline as JSON array", required=True),
    )
    async def mongo_aggregate(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        pipeline = self.json_arg(args, "pipeline", expect=list, required=True)
        if not all(isinstance(stage, dict) and len(stage) == 1 for stage in pipeline):
            raise ValidationError("Each pipeline stage must be an object with exactly one stage operator.")
        collection = await self._collection(args)
        cursor = await collection.aggregate(pipeline)
        results = await cursor.to_list()
        return {"results": results, "count": len(results)}

    @operation(
        "Count documents matching a filter",
        collection=string_param("Collection name", required=True),
        filter=string_param("Query filter as JSON (default: {})"),
    )
    async def mongo_count(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = await self._collection(args)
        return {"count": await collection.count_documents(self._filter(args))}

    @operation(
        "Get distinct values for a field",
        collection=string_param("Collection name", required=True),
        field=string_param("Field name", required=True),
        filter=string_param("Query filter as JSON (optional)"),
    )
    async def mongo_distinct(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        field = self.require_str(args, "field")
        collection = await self._collection(args)
        values = await collection.distinct(field, self._filter(args))
        return {"field": field, "values": values, "count": len(values)}

    @operation("List all collections in the database")
    async def mongo_collections(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        database = await self.acquire()
        names = sorted(await database.list_collection_names())
        return {"collections": names, "count": len(names)}

    @operation(
        "Create an index on a collection",
        collection=string_param("Collection name", required=True),
        keys=string_param("Index keys as JSON (e.g., {\"field\": 1})", required=True),
        options=string_param("Index options as JSON, e.g. {\"unique\": true} (optional)"),
    )
    async def mongo_create_index(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        keys = sort_spec(self.json_arg(args, "keys", expect=dict, required=True), key="keys")
        options = self.json_arg(args, "options", expect=dict) or {}
        collection = await self._collection(args)
        index_name = await collection.create_index(keys, **options)
        return {"indexName": index_name, "created": True}

    @operation(
        "List indexes on a collection",
        collection=string_param("Collection name", required=True),
    )
    async def mongo_indexes(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        collection = await self._collection(args)
        information = await collection.index_information()
        indexes = [{"name": name, **details} for name, details in information.items()]
        return {"indexes": indexes, "count": len(indexes)}
