"""
Adapters for backends reached through native client drivers.
"""

from .dragonfly import DragonflyAdapter
from .duckdb import DuckDBAdapter
from .mariadb import MariaDBAdapter
from .memcached import MemcachedAdapter
from .mongodb import MongoDBAdapter
from .neo4j import Neo4jAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter

__all__ = [
    "DragonflyAdapter",
    "DuckDBAdapter",
    "MariaDBAdapter",
    "MemcachedAdapter",
    "MongoDBAdapter",
    "Neo4jAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
]
