"""Centralized configuration loaded from .env.

This module provides a single place to read environment variables needed by the
refresh pipeline: database connection, Finnhub credentials, the trigger secret
and the refresh pacing knobs. It uses python-dotenv to load a `.env` file
colocated with the package, and exposes simple accessors.

Environment Variables
- DATABASE_URL: full libpq connection string (preferred)
- DB_NAME, DB_USER, DB_PASS/DB_PASSWORD, DB_HOST, DB_PORT, DB_SSLMODE
- DB_SCHEMA: optional search_path for the pipeline tables
- DB_POOL_MIN, DB_POOL_MAX: connection pool bounds
- FINNHUB_API_KEY, FINNHUB_BASE_URL, FINNHUB_TIMEOUT
- UPDATE_SECRET_KEY: secret the refresh trigger must present
- REFRESH_BATCH_SIZE, REFRESH_MODE, REFRESH_WIDTH, REFRESH_GROUP_PAUSE,
  REFRESH_ITEM_DELAY, REFRESH_ITEM_TIMEOUT
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load .env next to this file so it works regardless of CWD
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env"))

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
DEFAULT_FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
REFRESH_MODES = ("grouped", "sequential")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a sanitized environment variable value.

    Parameters
    ----------
    name : str
        Variable name to read from the environment.
    default : Optional[str]
        Default value to use if the variable is missing or empty after sanitation.

    Returns
    -------
    Optional[str]
        Trimmed value with one level of wrapping quotes removed, or ``default``.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip()
    if (len(v) >= 2) and ((v[0] == '"' and v[-1] == '"') or (v[0] == "'" and v[-1] == "'")):
        v = v[1:-1]
    v = v.strip()
    return v if v != "" else default


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    """Read an integer variable; invalid or too-small values fall back to ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not an integer; using %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("[config] %s=%d below minimum %d; using %d", name, value, minimum, default)
        return default
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    """Read a float variable; invalid or too-small values fall back to ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not a number; using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("[config] %s=%s below minimum %s; using %s", name, value, minimum, default)
        return default
    return value


@dataclass(frozen=True)
class DatabaseSettings:
    """Typed container for database connection settings."""
    url: Optional[str]
    name: Optional[str]
    user: Optional[str]
    password: Optional[str]
    host: Optional[str]
    port: Optional[str]
    sslmode: Optional[str]
    schema: Optional[str] = None
    pool_min: int = 1
    pool_max: int = 5

    def connect_kwargs(self) -> dict:
        """Keyword arguments for ``psycopg2.connect`` / pool constructors.

        ``url`` wins over the discrete fields; ``None`` values are dropped so
        libpq can apply its own defaults.
        """
        if self.url:
            kwargs = {"dsn": self.url}
        else:
            kwargs = {
                "dbname": self.name,
                "user": self.user,
                "password": self.password,
                "host": self.host,
                "port": self.port,
            }
        if self.sslmode:
            kwargs["sslmode"] = self.sslmode
        if self.schema:
            kwargs["options"] = f"-c search_path={self.schema}"
        return {k: v for k, v in kwargs.items() if v is not None}


def get_db_settings() -> DatabaseSettings:
    """Return database settings from environment.

    Returns
    -------
    DatabaseSettings
        Dataclass with the connection string or discrete fields and pool bounds.
    """
    pool_min = _env_int("DB_POOL_MIN", 1, minimum=1)
    pool_max = _env_int("DB_POOL_MAX", 5, minimum=1)
    return DatabaseSettings(
        url=_env("DATABASE_URL"),
        name=_env("DB_NAME"),
        user=_env("DB_USER"),
        password=_env("DB_PASS") or _env("DB_PASSWORD"),  # support both names
        host=_env("DB_HOST"),
        port=_env("DB_PORT"),
        sslmode=_env("DB_SSLMODE"),
        schema=_env("DB_SCHEMA"),
        pool_min=pool_min,
        pool_max=max(pool_min, pool_max),
    )


@dataclass(frozen=True)
class RefreshSettings:
    """Pacing and batch knobs for one refresh cycle."""
    batch_size: int = BATCH_SIZE
    mode: str = "grouped"
    width: int = 5
    group_pause: float = 1.0
    item_delay: float = 0.2
    item_timeout: float = 30.0


def get_refresh_settings() -> RefreshSettings:
    """Return refresh pacing settings from environment."""
    mode = (_env("REFRESH_MODE", "grouped") or "grouped").lower()
    if mode not in REFRESH_MODES:
        logger.warning("[config] REFRESH_MODE=%r unknown; using 'grouped'", mode)
        mode = "grouped"
    return RefreshSettings(
        batch_size=_env_int("REFRESH_BATCH_SIZE", BATCH_SIZE, minimum=1),
        mode=mode,
        width=_env_int("REFRESH_WIDTH", 5, minimum=1),
        group_pause=_env_float("REFRESH_GROUP_PAUSE", 1.0),
        item_delay=_env_float("REFRESH_ITEM_DELAY", 0.2),
        item_timeout=_env_float("REFRESH_ITEM_TIMEOUT", 30.0, minimum=0.1),
    )


def get_finnhub_api_key() -> Optional[str]:
    """Return the Finnhub API token, or ``None`` when not configured."""
    return _env("FINNHUB_API_KEY")


def get_finnhub_base_url() -> str:
    return (_env("FINNHUB_BASE_URL", DEFAULT_FINNHUB_BASE_URL) or DEFAULT_FINNHUB_BASE_URL).rstrip("/")


def get_finnhub_timeout() -> float:
    return _env_float("FINNHUB_TIMEOUT", 10.0, minimum=0.1)


def get_update_secret() -> Optional[str]:
    """Return the secret the refresh trigger compares callers against."""
    return _env("UPDATE_SECRET_KEY")
