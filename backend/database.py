"""
Document store lifecycle.

Provides connect/disconnect and accessors for the application's document
store. The backend is chosen by STORE_BACKEND: "sqlite" (default) keeps
everything in one SQLite file, "memory" keeps it in process.

Typical usage:
    from database import get_store
    @router.get("/")
    async def handler(store: DocumentStore = Depends(get_store)): ...
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import Request

from config import Settings, get_settings
from documents import DocumentStore, MemoryDocumentStore, SQLiteDocumentStore

logger = logging.getLogger(__name__)

# ============================================================
# Global store instance (set by connect_db during startup)
# ============================================================
_database: Optional[DocumentStore] = None


def create_store(settings: Optional[Settings] = None) -> DocumentStore:
    """Build an unconnected store for the configured backend."""
    settings = settings or get_settings()
    backend = settings.store_backend.lower()
    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "sqlite":
        Path(settings.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
        return SQLiteDocumentStore(settings.sqlite_path)
    raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend!r}")


async def connect_db(settings: Optional[Settings] = None) -> DocumentStore:
    """Create and connect the document store.

    Called once during application startup (main.py lifespan).
    """
    global _database

    store = create_store(settings)
    logger.info(f"Connecting to {store.backend_name} document store")
    await store.connect()
    _database = store
    logger.info("Document store connected successfully")
    return store


async def close_db() -> None:
    """Close the document store. Called during application shutdown."""
    global _database
    if _database:
        await _database.close()
        _database = None
        logger.info("Document store closed")


def get_database() -> DocumentStore:
    """Get the connected store.

    Raises:
        RuntimeError: If connect_db() hasn't been called yet.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_db() first.")
    return _database


def get_store(request: Request) -> DocumentStore:
    """FastAPI dependency: the store attached to this application."""
    store = getattr(request.app.state, "store", None)
    return store if store is not None else get_database()
