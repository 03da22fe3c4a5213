"""
Per-email permissions cache.

Holds the permission bundle for every email seen by this process for up
to `ttl` seconds, de-duplicates concurrent lookups, and pushes updates to
everyone subscribed to an email. An instance is owned by whoever needs
it (the application state, a test); there is no module-level cache.

Lookups go through a fetcher object with an async `fetch(email)` method
returning a PermissionResult:
  HttpPermissionFetcher  → POST {base_url}/api/permissions over httpx
  StorePermissionFetcher → resolve the role directly from the store
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from config import Settings
from documents.base import DocumentStore, Subscription
from models.permission import PermissionResult, UserRole
from permissions.roles import check_permissions

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class PermissionsCacheEntry:
    email: str
    isAllowed: bool = False
    canEdit: bool = False
    isAdmin: bool = False
    role: Optional[UserRole] = None
    timestamp: float = 0.0
    loading: bool = False
    error: Optional[str] = None

    @classmethod
    def from_result(cls, email: str, result: PermissionResult, timestamp: float) -> "PermissionsCacheEntry":
        return cls(
            email=email,
            isAllowed=result.isAllowed,
            canEdit=result.canEdit,
            isAdmin=result.isAdmin,
            role=result.role,
            timestamp=timestamp,
        )

    def to_result(self) -> PermissionResult:
        return PermissionResult(
            isAllowed=self.isAllowed,
            canEdit=self.canEdit,
            isAdmin=self.isAdmin,
            role=self.role,
        )


EntryCallback = Callable[[PermissionsCacheEntry], None]


class PermissionFetcher(Protocol):
    async def fetch(self, email: str) -> PermissionResult:
        ...


class HttpPermissionFetcher:
    """Ask a running server's permissions endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, email: str) -> Dict[str, Any]:
        response = await client.post(
            f"{self.base_url}/api/permissions",
            json={"email": email},
        )
        response.raise_for_status()
        return response.json()

    async def fetch(self, email: str) -> PermissionResult:
        if self._client is not None:
            data = await self._post(self._client, email)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                data = await self._post(client, email)
        return PermissionResult.model_validate(data)


class StorePermissionFetcher:
    """Resolve permissions in-process from the document store and settings."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings

    async def fetch(self, email: str) -> PermissionResult:
        return await check_permissions(self._store, email, self._settings)


class PermissionsCache:
    """
    TTL cache of permission bundles keyed by lowercased email.

    Args:
        fetcher: Object whose async fetch(email) returns a PermissionResult.
        ttl: Seconds an entry stays fresh.
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(self, fetcher: PermissionFetcher, ttl: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self._fetcher = fetcher
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, PermissionsCacheEntry] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._subscribers: Dict[str, List[EntryCallback]] = {}

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    def _is_fresh(self, entry: PermissionsCacheEntry) -> bool:
        return not entry.loading and (self._clock() - entry.timestamp) < self.ttl

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, email: Optional[str], callback: EntryCallback) -> Subscription:
        """Receive the entry for an email now and on every update.

        A fresh entry, or the loading placeholder of a lookup already in
        flight, is delivered before this returns. Otherwise a lookup is
        started and its loading placeholder delivered. An empty email is
        answered with a denied entry and never fetched.
        """
        if not email:
            callback(PermissionsCacheEntry(email="", timestamp=self._clock()))
            return Subscription(lambda: None)

        key = self._key(email)
        self._subscribers.setdefault(key, []).append(callback)

        def _unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)

        entry = self._entries.get(key)
        if entry is not None and (self._is_fresh(entry) or key in self._pending):
            callback(entry)
        else:
            self._start_fetch(key)
            callback(self._entries[key])

        return Subscription(_unsubscribe)

    def _notify(self, key: str, entry: PermissionsCacheEntry) -> None:
        for callback in list(self._subscribers.get(key, [])):
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Permissions subscriber failed for {key}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    def _start_fetch(self, key: str) -> asyncio.Task:
        pending = self._pending.get(key)
        if pending is not None:
            return pending

        now = self._clock()
        self._entries[key] = PermissionsCacheEntry(email=key, timestamp=now, loading=True)
        task = asyncio.get_running_loop().create_task(self._fetch(key))
        self._pending[key] = task
        logger.debug(f"Fetching permissions for {key}")
        return task

    async def _fetch(self, key: str) -> None:
        try:
            result = await self._fetcher.fetch(key)
            entry = PermissionsCacheEntry.from_result(key, result, self._clock())
        except Exception as e:
            logger.error(f"Error fetching permissions for {key}: {e}")
            entry = PermissionsCacheEntry(email=key, timestamp=self._clock(), error=str(e))

        pending = self._pending.get(key)
        if pending is not None and pending is not asyncio.current_task():
            return  # superseded by a newer lookup
        self._pending.pop(key, None)
        self._entries[key] = entry
        self._notify(key, entry)

    async def get_permissions(self, email: Optional[str]) -> PermissionsCacheEntry:
        """Awaitable lookup: the fresh entry, or the result of a fetch."""
        if not email:
            return PermissionsCacheEntry(email="", timestamp=self._clock())
        key = self._key(email)
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry
        task = self._start_fetch(key)
        await asyncio.shield(task)
        return self._entries.get(key) or PermissionsCacheEntry(email=key, timestamp=self._clock())

    def get_entry(self, email: str) -> Optional[PermissionsCacheEntry]:
        return self._entries.get(self._key(email))

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    def invalidate_user(self, email: str) -> None:
        """Drop one email's entry; re-fetch if anyone is still subscribed."""
        key = self._key(email)
        self._entries.pop(key, None)
        self._pending.pop(key, None)
        logger.info(f"Invalidated permissions for {key}")
        if self._subscribers.get(key):
            self._start_fetch(key)
            self._notify(key, self._entries[key])

    def clear_cache(self) -> None:
        """Drop every entry and in-flight tracker. Nothing is re-fetched."""
        self._entries.clear()
        self._pending.clear()
        logger.info("Permissions cache cleared")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def get_cache_status(self) -> Dict[str, Dict[str, Any]]:
        """Debug view: per email age, loading/error state and subscriber count."""
        now = self._clock()
        status = {}
        for key in set(self._entries) | set(self._subscribers):
            entry = self._entries.get(key)
            status[key] = {
                "age": (now - entry.timestamp) if entry else None,
                "loading": bool(entry and entry.loading),
                "error": entry.error if entry else None,
                "subscribers": len(self._subscribers.get(key, [])),
            }
        return status

    async def wait_idle(self) -> None:
        """Wait until no lookup is in flight."""
        while self._pending:
            tasks = list(self._pending.values())
            await asyncio.gather(*tasks, return_exceptions=True)
