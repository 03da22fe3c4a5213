"""
FastAPI main application entry point.

Architecture:
  Browser → http://localhost:8000/api/notes/...       → journal notes, tree, blocks
  Browser → ws://localhost:8000/api/notes/{id}/ws     → live editing session
  Browser → http://localhost:8000/api/permissions     → role lookup
  Browser → http://localhost:8000/api/admin/users     → role management (admin)

Services (document store, notes cache, permissions cache) are created per
application in the lifespan and hung off app.state; routers reach them
through dependencies, never through module globals.

Security model:
  - Callers present `Authorization: Bearer <email>`; sign-in happens upstream
  - Roles come from userPermissions, ALLOWED_USERS or DEV_ADMIN_EMAIL
  - Note visibility tags gate every read and write
  - Security headers prevent clickjacking, MIME sniffing, etc.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import Settings, get_settings
from database import close_db, connect_db
from documents.base import DocumentStore
from journal.notes_cache import NotesCache
from permissions.cache import (
    HttpPermissionFetcher,
    PermissionFetcher,
    PermissionsCache,
    StorePermissionFetcher,
)

# Import routers
from routers import admin_users, notes, permissions

# ============================================================
# Logging Configuration
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Suppress per-statement chatter from the SQLite driver
logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ============================================================
# Application Lifespan (startup/shutdown)
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    logger.info("Starting up Party Journal...")
    settings: Settings = app.state.settings
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    owns_store = app.state.store is None
    if owns_store:
        app.state.store = await connect_db(settings)
    store = app.state.store

    fetcher = app.state.permissions_fetcher
    if fetcher is None and settings.permissions_api_url:
        logger.info(f"Fetching permissions from {settings.permissions_api_url}")
        fetcher = HttpPermissionFetcher(settings.permissions_api_url)
    if fetcher is None:
        fetcher = StorePermissionFetcher(store, settings)
    app.state.permissions_cache = PermissionsCache(
        fetcher, ttl=settings.permissions_cache_ttl_seconds
    )

    # Keep the shared notes subscription open for the list and tree endpoints
    app.state.notes_cache = NotesCache(store)
    notes_handle = await app.state.notes_cache.subscribe(
        lambda items: logger.debug(f"Notes cache holds {len(items)} notes")
    )

    if settings.dev_admin_email:
        logger.warning(
            f"DEV_ADMIN_EMAIL is set ({settings.dev_admin_email}); "
            "admin endpoints accept requests without an admin bearer"
        )

    yield  # Application runs here

    logger.info("Shutting down Party Journal...")
    notes_handle.cancel()
    await app.state.permissions_cache.wait_idle()
    if owns_store:
        await close_db()
        app.state.store = None


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


# ============================================================
# Application factory
# ============================================================
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    permissions_fetcher: Optional[PermissionFetcher] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Defaults to get_settings().
        store: An already connected store; when omitted the lifespan
            connects (and later closes) the configured backend.
        permissions_fetcher: Overrides the in-process role resolver used
            by the request permissions cache.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Party Journal API",
        description="Shared campaign journal with realtime line-block editing",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.permissions_fetcher = permissions_fetcher

    # ============================================================
    # Middleware Stack (executes bottom-to-top)
    # ============================================================
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================
    # API Routes, all mounted under /api prefix
    # ============================================================
    app.include_router(permissions.router, prefix="/api/permissions", tags=["Permissions"])
    app.include_router(admin_users.router, prefix="/api/admin/users", tags=["Admin"])
    app.include_router(notes.router, prefix="/api/notes", tags=["Notes"])

    # ============================================================
    # Health Check Endpoints
    # ============================================================
    @app.get("/api/health")
    async def health_check() -> dict:
        """Liveness probe: confirms the process is running."""
        return {"status": "healthy", "version": "1.0.0"}

    @app.get("/api/health/ready")
    async def readiness_check(request: Request):
        """Readiness probe: verifies the document store answers."""
        checks: dict = {}
        state = request.app.state

        try:
            ok = state.store is not None and await state.store.ping()
            checks["database"] = "ok" if ok else "error: not connected"
        except Exception as e:
            checks["database"] = f"error: {e}"

        notes_cache = getattr(state, "notes_cache", None)
        checks["notesCache"] = "subscribed" if notes_cache and notes_cache.is_subscribed else "idle"

        if checks["database"].startswith("error"):
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()


# ============================================================
# Run with Uvicorn (for development)
# ============================================================
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
