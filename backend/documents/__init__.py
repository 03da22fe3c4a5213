"""
Document store package.
Path-addressed document backends with realtime subscriptions.
"""

from documents.base import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    Subscription,
)
from documents.memory_store import MemoryDocumentStore
from documents.sqlite_store import SQLiteDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentNotFoundError",
    "DocumentStore",
    "Subscription",
    "MemoryDocumentStore",
    "SQLiteDocumentStore",
]
