"""Persistence boundary for the canvas graph."""

from blockflow.store.base import GraphStore
from blockflow.store.memory import InMemoryGraphStore
from blockflow.store.sqlite import SqliteGraphStore

__all__ = ["GraphStore", "InMemoryGraphStore", "SqliteGraphStore"]
