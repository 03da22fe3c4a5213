"""
Configuration module for Party Journal.
Loads environment variables and provides centralized config access.
"""

import logging
from pathlib import Path
from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)

# ============================================================
# Centralized Data Paths
# ============================================================
# All persisted data lives under <project>/data/ for easy backup/deletion.
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite document store
SQLITE_DB_PATH = DATA_DIR / "journal.db"

VALID_ROLES = ("admin", "editor", "viewer")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ============================================================
    # Document Store
    # ============================================================
    # "sqlite" persists to sqlite_path; "memory" keeps everything in
    # process and is wiped on restart (handy for demos).
    store_backend: str = "sqlite"
    sqlite_path: str = str(SQLITE_DB_PATH)

    # ============================================================
    # Access Control
    # ============================================================
    # Comma-separated "email:role" pairs, e.g.
    #   ALLOWED_USERS="dm@example.com:admin,ana@example.com:editor"
    # Consulted when an email has no userPermissions record.
    allowed_users: str = ""
    # Bootstrap admin: always resolves to the admin role and is accepted
    # by the admin endpoints when no admin bearer is presented.
    dev_admin_email: Optional[str] = None

    # ============================================================
    # Caching & Editor Timing
    # ============================================================
    permissions_cache_ttl_seconds: float = 300.0
    save_debounce_ms: int = 300   # quiet period before body/title saves
    typing_grace_ms: int = 50     # delay before remote pushes are accepted again
    blur_release_ms: int = 100    # delay after the editor loses focus

    # When set, roles are fetched from another Party Journal server
    # (POST {url}/api/permissions) instead of resolved from the local store
    permissions_api_url: Optional[str] = None

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Comma-separated CORS origins
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse the comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def allowed_users_map(self) -> Dict[str, str]:
        """Parse ALLOWED_USERS into {lowercased email: role}.

        Malformed pairs and unknown roles are skipped with a warning.
        """
        result: Dict[str, str] = {}
        for pair in self.allowed_users.split(","):
            pair = pair.strip()
            if not pair:
                continue
            email, sep, role = pair.rpartition(":")
            email, role = email.strip().lower(), role.strip().lower()
            if not sep or not email or role not in VALID_ROLES:
                logger.warning(f"Ignoring malformed ALLOWED_USERS entry: {pair!r}")
                continue
            result[email] = role
        return result


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()
