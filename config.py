"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_truthy_env(value: str | None) -> bool:
    """Return ``True`` when ``value`` represents an affirmative flag."""

    if value is None:
        return False
    text = value.strip().lower()
    return text in {"1", "true", "yes", "on"}


def _parse_marker_list(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    text = _clean_text(value)
    if not text:
        return default
    markers = tuple(part.strip().lower() for part in text.split(",") if part.strip())
    return markers or default


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "catalog.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

DB_HOST: Final[str] = _clean_text(os.environ.get("DB_HOST")) or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 3306)
DB_NAME: Final[str] = _clean_text(os.environ.get("DB_NAME")) or "game_catalog"
DB_USER: Final[str] = _clean_text(os.environ.get("DB_USER"))
DB_PASSWORD: Final[str] = _clean_text(os.environ.get("DB_PASSWORD"))
CATALOG_DB_PATH: Final[Path] = _path_from(
    os.environ.get("CATALOG_DB_PATH"), BASE_DIR / "catalog.db"
)


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    explicit = _clean_text(os.environ.get("DATABASE_URL"))
    if explicit:
        return explicit

    maria_overrides = {
        key: _clean_text(os.environ.get(key))
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    }
    if any(value for value in maria_overrides.values()):
        auth = ""
        if DB_USER:
            password = quote_plus(DB_PASSWORD) if DB_PASSWORD else ""
            auth = DB_USER
            if password:
                auth = f"{auth}:{password}"
            auth = f"{auth}@"
        return f"mariadb://{auth}{DB_HOST}:{DB_PORT}/{DB_NAME}"

    sqlite_path = CATALOG_DB_PATH.resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()

DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

DEFAULT_IGDB_USER_AGENT: Final[str] = "GameCatalog/1.0 (support@example.com)"
IGDB_USER_AGENT: Final[str] = (
    _clean_text(os.environ.get("IGDB_USER_AGENT")) or DEFAULT_IGDB_USER_AGENT
)

IGDB_CLIENT_ID: Final[str] = _clean_text(os.environ.get("IGDB_CLIENT_ID"))
IGDB_CLIENT_SECRET: Final[str] = _clean_text(os.environ.get("IGDB_CLIENT_SECRET"))
IGDB_ACCESS_TOKEN: Final[str] = _clean_text(os.environ.get("IGDB_ACCESS_TOKEN"))
IGDB_ENABLED: bool = True

IGDB_SEARCH_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("IGDB_SEARCH_LIMIT"), 5
)
IGDB_TOKEN_TTL_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("IGDB_TOKEN_TTL_SECONDS"), 3_600.0
)

MERGE_DEFAULT_LIMIT_GROUPS: Final[int] = _coerce_positive_int(
    os.environ.get("MERGE_DEFAULT_LIMIT_GROUPS"), 100
)
MERGE_MAX_LIMIT_GROUPS: Final[int] = _coerce_positive_int(
    os.environ.get("MERGE_MAX_LIMIT_GROUPS"), 500
)
BACKFILL_DEFAULT_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("BACKFILL_DEFAULT_LIMIT"), 50
)
BACKFILL_MAX_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("BACKFILL_MAX_LIMIT"), 500
)
COVER_PROPAGATION_DEFAULT_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("COVER_PROPAGATION_DEFAULT_LIMIT"), 200
)
COVER_PROPAGATION_MAX_LIMIT: Final[int] = _coerce_positive_int(
    os.environ.get("COVER_PROPAGATION_MAX_LIMIT"), 1000
)
LIBRARY_DUPLICATE_GROUP_CAP: Final[int] = _coerce_positive_int(
    os.environ.get("LIBRARY_DUPLICATE_GROUP_CAP"), 100
)

PLACEHOLDER_COVER_MARKERS: Final[tuple[str, ...]] = _parse_marker_list(
    os.environ.get("PLACEHOLDER_COVER_MARKERS"), ("unknown.png", "placeholder")
)

CELERY_BROKER_URL: Final[str] = (
    _clean_text(os.environ.get("CELERY_BROKER_URL")) or "redis://localhost:6379/0"
)
CELERY_RESULT_BACKEND: Final[str] = (
    _clean_text(os.environ.get("CELERY_RESULT_BACKEND")) or CELERY_BROKER_URL
)
CELERY_TASK_ALWAYS_EAGER: Final[bool] = _coerce_truthy_env(
    os.environ.get("CELERY_TASK_ALWAYS_EAGER")
)


def clamp_limit(value: object, default: int, maximum: int) -> int:
    """Return ``value`` as a positive integer no larger than ``maximum``."""

    try:
        numeric = int(str(value).strip()) if value not in (None, "") else default
    except (TypeError, ValueError):
        numeric = default
    if numeric <= 0:
        numeric = default
    return min(numeric, maximum)


def validate_igdb_credentials() -> bool:
    """Ensure IGDB credentials are configured and update ``IGDB_ENABLED``."""

    global IGDB_ENABLED

    if IGDB_CLIENT_ID and IGDB_ACCESS_TOKEN:
        IGDB_ENABLED = True
        return IGDB_ENABLED

    missing = [
        name
        for name, value in (
            ("IGDB_CLIENT_ID", IGDB_CLIENT_ID),
            ("IGDB_CLIENT_SECRET", IGDB_CLIENT_SECRET),
        )
        if not value
    ]

    IGDB_ENABLED = not missing
    if missing:
        logger.error(
            "Missing required IGDB credentials; set %s. Titles will resolve "
            "without catalog metadata.",
            " and ".join(missing),
        )

    return IGDB_ENABLED


__all__ = [
    "BACKFILL_DEFAULT_LIMIT",
    "BACKFILL_MAX_LIMIT",
    "BASE_DIR",
    "CATALOG_DB_PATH",
    "CELERY_BROKER_URL",
    "CELERY_RESULT_BACKEND",
    "CELERY_TASK_ALWAYS_EAGER",
    "COVER_PROPAGATION_DEFAULT_LIMIT",
    "COVER_PROPAGATION_MAX_LIMIT",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DB_HOST",
    "DB_NAME",
    "DB_PASSWORD",
    "DB_PORT",
    "DB_USER",
    "DEFAULT_IGDB_USER_AGENT",
    "IGDB_ACCESS_TOKEN",
    "IGDB_CLIENT_ID",
    "IGDB_CLIENT_SECRET",
    "IGDB_ENABLED",
    "IGDB_SEARCH_LIMIT",
    "IGDB_TOKEN_TTL_SECONDS",
    "IGDB_USER_AGENT",
    "LIBRARY_DUPLICATE_GROUP_CAP",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "MERGE_DEFAULT_LIMIT_GROUPS",
    "MERGE_MAX_LIMIT_GROUPS",
    "PLACEHOLDER_COVER_MARKERS",
    "clamp_limit",
    "validate_igdb_credentials",
]
