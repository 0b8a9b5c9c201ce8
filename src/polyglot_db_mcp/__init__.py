"""
polyglot-db-mcp: one Model Context Protocol surface over many databases.
"""

__version__ = "1.2.0"

__all__ = ["__version__"]
