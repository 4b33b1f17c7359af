"""Infra layer utilities (storage, source clients)."""

from .source_client import FixtureSourceClient, HttpSourceClient, SourceClient, build_source_client
from .storage import SQLiteManager

__all__ = [
    "FixtureSourceClient",
    "HttpSourceClient",
    "SQLiteManager",
    "SourceClient",
    "build_source_client",
]
