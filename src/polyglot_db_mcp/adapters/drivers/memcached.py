"""
Memcached adapter on :mod:`pymemcache`.

``MEMCACHED_SERVERS`` is a comma-separated ``host:port`` list spread over a
:class:`~pymemcache.client.hash.HashClient`. pymemcache is blocking and its
clients are not thread-safe, so calls run one at a time in a worker thread.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

import anyio
from pymemcache.client.hash import HashClient

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import ConfigurationError, ValidationError
from ..base import BackendAdapter

T = TypeVar("T")

MAX_KEY_LENGTH = 250


def parse_servers(value: str) -> List[Tuple[str, int]]:
    servers: List[Tuple[str, int]] = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        host, _, port = item.rpartition(":") if ":" in item else (item, "", "11211")
        try:
            servers.append((host or "localhost", int(port)))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid MEMCACHED_SERVERS entry '{item}'.") from exc
    if not servers:
        raise ConfigurationError("MEMCACHED_SERVERS does not name any server.")
    return servers


def _text(value: Any) -> Any:
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value


class MemcachedAdapter(BackendAdapter[HashClient]):
    name = "memcached"
    description = "Distributed memory caching system"

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(env)
        self._serial: Optional[anyio.Lock] = None

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._serial is None:
            self._serial = anyio.Lock()
        async with self._serial:
            return await anyio.to_thread.run_sync(lambda: func(*args, **kwargs))

    async def _open(self) -> HashClient:
        servers = parse_servers(self.env.string("MEMCACHED_SERVERS", default="localhost:11211") or "localhost:11211")
        timeout = float(self.env.integer("MEMCACHED_TIMEOUT", default=5))
        return HashClient(servers, connect_timeout=timeout, timeout=timeout, ignore_exc=False)

    async def _close(self, handle: HashClient) -> None:
        await self._call(handle.close)

    async def _ping(self, handle: HashClient) -> None:
        for client in list(handle.clients.values()):
            await self._call(client.version)

    def _key(self, args: Mapping[str, Any]) -> str:
        key = self.require_str(args, "key")
        if len(key.encode("utf-8")) > MAX_KEY_LENGTH or any(char.isspace() or ord(char) < 32 for char in key):
            raise ValidationError(f"Invalid memcached key '{key}': at most {MAX_KEY_LENGTH} bytes, no whitespace or control characters.")
        return key

    @staticmethod
    def _value(args: Mapping[str, Any]) -> str:
        value = args.get("value")
        if value is None:
            raise ValidationError("'value' is required.")
        return str(value)

    @operation("Get a value by key", key=string_param("Key to get", required=True))
    async def memcached_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self._key(args)
        client = await self.acquire()
        value = await self._call(client.get, key)
        return {"key": key, "value": _text(value), "found": value is not None}

    @operation(
        "Set a value",
        key=string_param("Key to set", required=True),
        value=string_param("Value to set", required=True),
        ttl=number_param("TTL in seconds (default 0 = no expiry)"),
    )
    async def memcached_set(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, value = self._key(args), self._value(args)
        ttl = self.int_arg(args, "ttl", 0, minimum=0)
        client = await self.acquire()
        stored = await self._call(client.set, key, value, expire=ttl, noreply=False)
        return {"success": bool(stored), "key": key, "ttl": ttl}

    @operation(
        "Add a value only if key doesn't exist",
        key=string_param("Key to add", required=True),
        value=string_param("Value to set", required=True),
        ttl=number_param("TTL in seconds (default 0)"),
    )
    async def memcached_add(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, value = self._key(args), self._value(args)
        client = await self.acquire()
        if await self._call(client.add, key, value, expire=self.int_arg(args, "ttl", 0, minimum=0), noreply=False):
            return {"success": True, "key": key}
        return {"success": False, "key": key, "error": "Key already exists"}

    @operation(
        "Replace a value only if key exists",
        key=string_param("Key to replace", required=True),
        value=string_param("New value", required=True),
        ttl=number_param("TTL in seconds (default 0)"),
    )
    async def memcached_replace(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, value = self._key(args), self._value(args)
        client = await self.acquire()
        if await self._call(client.replace, key, value, expire=self.int_arg(args, "ttl", 0, minimum=0), noreply=False):
            return {"success": True, "key": key}
        return {"success": False, "key": key, "error": "Key does not exist"}

    @operation("Delete a key", key=string_param("Key to delete", required=True))
    async def memcached_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self._key(args)
        client = await self.acquire()
        found = await self._call(client.delete, key, noreply=False)
        return {"deleted": key, "found": bool(found)}

    @operation(
        "Increment a numeric value",
        key=string_param("Key to increment", required=True),
        amount=number_param("Amount to increment (default 1)"),
    )
    async def memcached_incr(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self._key(args)
        client = await self.acquire()
        value = await self._call(client.incr, key, self.int_arg(args, "amount", 1, minimum=0), noreply=False)
        return {"key": key, "value": value}

    @operation(
        "Decrement a numeric value",
        key=string_param("Key to decrement", required=True),
        amount=number_param("Amount to decrement (default 1)"),
    )
    async def memcached_decr(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self._key(args)
        client = await self.acquire()
        value = await self._call(client.decr, key, self.int_arg(args, "amount", 1, minimum=0), noreply=False)
        return {"key": key, "value": value}

    @operation(
        "Append data to existing value",
        key=string_param("Key to append to", required=True),
        value=string_param("Value to append", required=True),
    )
    async def memcached_append(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, value = self._key(args), self._value(args)
        client = await self.acquire()
        stored = await self._call(client.append, key, value, noreply=False)
        return {"success": bool(stored), "key": key}

    @operation(
        "Prepend data to existing value",
        key=string_param("Key to prepend to", required=True),
        value=string_param("Value to prepend", required=True),
    )
    async def memcached_prepend(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key, value = self._key(args), self._value(args)
        client = await self.acquire()
        stored = await self._call(client.prepend, key, value, noreply=False)
        return {"success": bool(stored), "key": key}

    @operation("Flush all keys from cache")
    async def memcached_flush(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        client = await self.acquire()
        for server in list(client.clients.values()):
            await self._call(server.flush_all, noreply=False)
        return {"flushed": True}

    @operation("Get server statistics")
    async def memcached_stats(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        client = await self.acquire()
        servers: Dict[str, Any] = {}
        for name, server in list(client.clients.items()):
            stats = await self._call(server.stats)
            servers[str(name)] = {_text(key): _text(value) for key, value in stats.items()}
        return {"servers": servers}
