"""
Dragonfly / Redis adapter on :mod:`redis.asyncio`.

Operations keep Redis command names under the ``redis_`` prefix so the same
tools work against Dragonfly, Redis and other protocol-compatible servers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

import redis.asyncio as redis

from ...core.descriptors import boolean_param, number_param, operation, string_param
from ...core.errors import ValidationError
from ..base import BackendAdapter


class DragonflyAdapter(BackendAdapter[redis.Redis]):
    name = "dragonfly"
    description = "Redis-compatible in-memory data store (works with Redis too)"
    prefixes = ("redis",)

    async def _open(self) -> redis.Redis:
        return redis.Redis(
            host=self.env.string("DRAGONFLY_HOST", "REDIS_HOST", default="localhost"),
            port=self.env.integer("DRAGONFLY_PORT", "REDIS_PORT", default=6379),
            password=self.env.string("DRAGONFLY_PASSWORD", "REDIS_PASSWORD"),
            db=self.env.integer("DRAGONFLY_DB", "REDIS_DB", default=0),
            decode_responses=True,
        )

    async def _close(self, handle: redis.Redis) -> None:
        await handle.aclose()

    async def _ping(self, handle: redis.Redis) -> None:
        await handle.ping()

    @operation("Get a string value by key", key=string_param("Key to get", required=True))
    async def redis_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        client = await self.acquire()
        return {"key": key, "value": await client.get(key)}

    @operation(
        "Set a string value",
        key=string_param("Key to set", required=True),
        value=string_param("Value to set", required=True),
        ttl=number_param("TTL in seconds (optional)"),
    )
    async def redis_set(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        value = args.get("value")
        if value is None:
            raise ValidationError("'value' is required.")
        ttl = self.int_arg(args, "ttl", minimum=1)
        client = await self.acquire()
        await client.set(key, str(value), ex=ttl)
        return {"success": True, "key": key}

    @operation("Delete one or more keys", keys=string_param("Comma-separated keys to delete", required=True))
    async def redis_del(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        keys = [str(key) for key in self.list_arg(args, "keys", required=True)]
        client = await self.acquire()
        return {"deleted": await client.delete(*keys)}

    @operation(
        "Find keys matching a pattern",
        pattern=string_param("Pattern (e.g., 'user:*')", required=True),
        limit=number_param("Max keys to return (default 1000)"),
    )
    async def redis_keys(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        pattern = self.require_str(args, "pattern")
        limit = self.int_arg(args, "limit", 1000, minimum=1)
        client = await self.acquire()
        keys: List[str] = []
        # SCAN instead of KEYS so large keyspaces do not block the server.
        async for key in client.scan_iter(match=pattern, count=min(limit, 1000)):
            keys.append(key)
            if len(keys) >= limit:
                break
        return {"count": len(keys), "keys": keys}

    @operation(
        "Get a hash field value",
        key=string_param("Hash key", required=True),
        field=string_param("Field name", required=True),
    )
    async def redis_hget(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, field = self.require_str(args, "key"), self.require_str(args, "field")
        client = await self.acquire()
        return {"key": key, "field": field, "value": await client.hget(key, field)}

    @operation("Get all fields and values in a hash", key=string_param("Hash key", required=True))
    async def redis_hgetall(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        client = await self.acquire()
        return {"key": key, "data": await client.hgetall(key)}

    @operation(
        "Set hash field(s)",
        key=string_param("Hash key", required=True),
        fields=string_param("Fields as JSON object", required=True),
    )
    async def redis_hset(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        fields = self.json_arg(args, "fields", expect=dict, required=True)
        if not fields:
            raise ValidationError("'fields' must contain at least one field.")
        client = await self.acquire()
        added = await client.hset(key, mapping={str(name): str(value) for name, value in fields.items()})
        return {"success": True, "key": key, "added": added}

    @operation(
        "Push values to the left of a list",
        key=string_param("List key", required=True),
        values=string_param("Comma-separated values", required=True),
    )
    async def redis_lpush(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        values = [str(value) for value in self.list_arg(args, "values", required=True)]
        client = await self.acquire()
        return {"key": key, "length": await client.lpush(key, *values)}

    @operation(
        "Get a range of elements from a list",
        key=string_param("List key", required=True),
        start=number_param("Start index (default 0)"),
        stop=number_param("Stop index (default -1 for all)"),
    )
    async def redis_lrange(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        client = await self.acquire()
        items = await client.lrange(key, self.int_arg(args, "start", 0), self.int_arg(args, "stop", -1))
        return {"key": key, "items": items}

    @operation(
        "Add members to a set",
        key=string_param("Set key", required=True),
        members=string_param("Comma-separated members", required=True),
    )
    async def redis_sadd(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        members = [str(member) for member in self.list_arg(args, "members", required=True)]
        client = await self.acquire()
        return {"key": key, "added": await client.sadd(key, *members)}

    @operation("Get all members of a set", key=string_param("Set key", required=True))
    async def redis_smembers(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        client = await self.acquire()
        return {"key": key, "members": sorted(await client.smembers(key))}

    @operation(
        "Add members to a sorted set",
        key=string_param("Sorted set key", required=True),
        members=string_param("JSON array of {score, value} objects", required=True),
    )
    async def redis_zadd(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        mapping: Dict[str, float] = {}
        for position, item in enumerate(self.json_arg(args, "members", expect=list, required=True)):
            if not isinstance(item, Mapping) or "value" not in item or "score" not in item:
                raise ValidationError(f"members[{position}] must be an object with 'score' and 'value'.")
            try:
                mapping[str(item["value"])] = float(item["score"])
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"members[{position}].score must be a number.") from exc
        if not mapping:
            raise ValidationError("'members' must not be empty.")
        client = await self.acquire()
        return {"key": key, "added": await client.zadd(key, mapping)}

    @operation(
        "Get range from sorted set by index",
        key=string_param("Sorted set key", required=True),
        start=number_param("Start index (default 0)"),
        stop=number_param("Stop index (default -1)"),
        withScores=boolean_param("Include scores"),
    )
    async def redis_zrange(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        with_scores = self.bool_arg(args, "withScores")
        client = await self.acquire()
        result = await client.zrange(key, self.int_arg(args, "start", 0), self.int_arg(args, "stop", -1), withscores=with_scores)
        if with_scores:
            result = [{"value": value, "score": score} for value, score in result]
        return {"key": key, "result": result}

    @operation("Get server info", section=string_param("Info section (optional)"))
    async def redis_info(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        section = self.optional_str(args, "section")
        client = await self.acquire()
        info = await client.info(section) if section else await client.info()
        return {"info": info}

    @operation("Get the number of keys in the database")
    async def redis_dbsize(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        client = await self.acquire()
        return {"keys": await client.dbsize()}
