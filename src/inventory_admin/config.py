"""Application configuration helpers."""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

ENV_PREFIX = "INVENTORY_ADMIN_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: str = "false") -> bool:
    return _env(name, default).lower() in {"1", "true", "yes"}


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "InventoryAdmin"
    return Path.home() / ".inventory_admin"


def _default_database_url() -> str:
    """Resolve the database URL taking overrides into account."""

    override = os.environ.get(f"{ENV_PREFIX}DATABASE_URL")
    if override:
        return override
    return f"sqlite:///{_default_data_root() / 'inventory.sqlite3'}"


def _default_secret_key() -> str:
    """Return the secret key used to verify session tokens."""

    override = os.environ.get(f"{ENV_PREFIX}SECRET")
    if override:
        return override
    return secrets.token_hex(32)


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: _env("APP_NAME", "Inventory Admin"))
    host: str = field(default_factory=lambda: _env("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(_env("PORT", "8000")))
    reload: bool = field(default_factory=lambda: _env_bool("RELOAD"))
    log_level: str = field(default_factory=lambda: _env("LOG_LEVEL", "info"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON"))
    database_url: str = field(default_factory=_default_database_url)
    echo_sql: bool = field(default_factory=lambda: _env_bool("ECHO_SQL"))
    secret_key: str = field(default_factory=_default_secret_key)
    default_reason: str = field(default_factory=lambda: _env("DEFAULT_REASON", "Manual stock adjustment"))
    history_limit: int = field(default_factory=lambda: int(_env("HISTORY_LIMIT", "50")))
    max_history_limit: int = field(default_factory=lambda: int(_env("MAX_HISTORY_LIMIT", "200")))
    movements_window_days: int = field(default_factory=lambda: int(_env("MOVEMENTS_WINDOW_DAYS", "30")))
    movements_limit: int = field(default_factory=lambda: int(_env("MOVEMENTS_LIMIT", "100")))

    @property
    def sqlite_path(self) -> Path | None:
        """Return the file backing a SQLite URL, if any."""

        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        location = self.database_url[len(prefix):]
        if not location or location == ":memory:":
            return None
        return Path(location).expanduser()

    def ensure_storage(self) -> None:
        """Ensure that the directory holding a SQLite database exists."""

        path = self.sqlite_path
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    def clamp_history_limit(self, limit: int | None) -> int:
        """Bound a requested history size to ``[1, max_history_limit]``."""

        if limit is None:
            limit = self.history_limit
        return max(1, min(limit, self.max_history_limit))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings
