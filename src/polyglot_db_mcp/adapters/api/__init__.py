"""
Adapters for backends reached over HTTP APIs.
"""

from .base import APIError, HTTPBackendAdapter
from .elasticsearch import ElasticsearchAdapter
from .influxdb import InfluxDBAdapter
from .meilisearch import MeilisearchAdapter
from .qdrant import QdrantAdapter
from .surrealdb import SurrealDBAdapter
from .xtdb import XTDBAdapter

__all__ = [
    "APIError",
    "HTTPBackendAdapter",
    "ElasticsearchAdapter",
    "InfluxDBAdapter",
    "MeilisearchAdapter",
    "QdrantAdapter",
    "SurrealDBAdapter",
    "XTDBAdapter",
]
