"""
Command-line entry points.
"""

from .main import app, build_gateway

__all__ = ["app", "build_gateway"]
