"""
Database package initialization
"""
from .core import build_engine, build_session_factory, create_schema, get_async_session

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_schema",
    "get_async_session",
]
