"""
Backend adapters.

Each adapter owns one backend connection and publishes a fixed set of
operations. :func:`builtin_adapters` returns the shipped set in registration
order, which is also the order clients see in catalogues.
"""

from typing import List, Mapping, Optional

from .api import ElasticsearchAdapter, InfluxDBAdapter, MeilisearchAdapter, QdrantAdapter, SurrealDBAdapter, XTDBAdapter
from .base import BackendAdapter, ConnectionState
from .drivers import (
    DragonflyAdapter,
    DuckDBAdapter,
    MariaDBAdapter,
    MemcachedAdapter,
    MongoDBAdapter,
    Neo4jAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
)

BUILTIN_ADAPTERS = (
    SurrealDBAdapter,
    DragonflyAdapter,
    XTDBAdapter,
    SQLiteAdapter,
    DuckDBAdapter,
    QdrantAdapter,
    MeilisearchAdapter,
    MariaDBAdapter,
    MemcachedAdapter,
    PostgreSQLAdapter,
    MongoDBAdapter,
    Neo4jAdapter,
    ElasticsearchAdapter,
    InfluxDBAdapter,
)


def builtin_adapters(env: Optional[Mapping[str, str]] = None) -> List[BackendAdapter]:
    """Return fresh instances of every shipped adapter, in registration order."""

    return [adapter_cls(env) for adapter_cls in BUILTIN_ADAPTERS]


__all__ = [
    "BUILTIN_ADAPTERS",
    "BackendAdapter",
    "ConnectionState",
    "builtin_adapters",
]
