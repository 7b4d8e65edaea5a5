"""SQLAlchemy Core schema for the canonical game catalog."""

from __future__ import annotations

import logging

from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, ProgrammingError

logger = logging.getLogger(__name__)

metadata = MetaData()

games = Table(
    "games",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("canonical_title", String(512), nullable=False),
    Column("igdb_game_id", BigInteger, nullable=True),
    Column("summary", Text),
    Column("genres", Text),
    Column("developer", String(255)),
    Column("publisher", String(255)),
    Column("first_release_year", Integer),
    Column("cover_url", String(1024)),
    Column("images_source", String(32)),
    Column("content_type", String(32)),
    Column("identity_attempts", Integer, nullable=False, default=0, server_default=text("0")),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

game_title_keys = Table(
    "game_title_keys",
    metadata,
    Column("title_key", String(512), primary_key=True),
    Column("game_id", Integer, ForeignKey("games.id"), nullable=False, index=True),
    Column("created_at", String(40), nullable=False),
)

title_aliases = Table(
    "title_aliases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("platform_key", String(32), nullable=False),
    Column("raw_title", String(512), nullable=False),
    Column("search_title", String(512), nullable=False),
    UniqueConstraint("platform_key", "raw_title", name="title_aliases_platform_raw_unique"),
)

releases = Table(
    "releases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("game_id", Integer, ForeignKey("games.id"), nullable=True, index=True),
    Column("platform_key", String(32), nullable=False),
    Column("platform_label", String(64)),
    Column("display_title", String(512), nullable=False),
    Column("cover_url", String(1024)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

release_external_ids = Table(
    "release_external_ids",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("release_id", Integer, ForeignKey("releases.id"), nullable=False, index=True),
    Column("source", String(32), nullable=False),
    Column("external_id", String(128), nullable=False),
    Column("created_at", String(40), nullable=False),
    UniqueConstraint("source", "external_id", name="release_external_ids_source_external_id_unique"),
)

portfolio_entries = Table(
    "portfolio_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("release_id", Integer, ForeignKey("releases.id"), nullable=False, index=True),
    Column("status", String(32)),
    Column("updated_at", String(40)),
    UniqueConstraint("user_id", "release_id", name="portfolio_entries_user_release_unique"),
)


def _progress_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(64), nullable=False),
        Column("release_id", Integer, ForeignKey("releases.id"), nullable=False, index=True),
        Column("title_name", String(512)),
        Column("progress", Integer),
        Column("playtime_minutes", Integer),
        Column("last_updated_at", String(40)),
        UniqueConstraint("user_id", "release_id", name=f"{name}_user_release_unique"),
    )


psn_title_progress = _progress_table("psn_title_progress")
xbox_title_progress = _progress_table("xbox_title_progress")
steam_title_progress = _progress_table("steam_title_progress")

ra_achievement_cache = Table(
    "ra_achievement_cache",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("release_id", Integer, ForeignKey("releases.id"), nullable=False, index=True),
    Column("achievement_id", String(64), nullable=False),
    Column("payload", Text),
    Column("fetched_at", String(40)),
    UniqueConstraint(
        "user_id", "release_id", "achievement_id", name="ra_achievement_cache_user_release_unique"
    ),
)

release_enrichment_state = Table(
    "release_enrichment_state",
    metadata,
    Column("release_id", Integer, ForeignKey("releases.id"), primary_key=True),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_attempt_at", String(40)),
    Column("last_error", Text),
)

catalog_merges = Table(
    "catalog_merges",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity", String(16), nullable=False),
    Column("winner_id", Integer, nullable=False),
    Column("loser_id", Integer, nullable=False),
    Column("reason", String(64), nullable=False),
    Column("merged_at", String(40), nullable=False),
)


# Unique keys applied after repair jobs have cleaned legacy data.
UNIQUE_INDEXES: tuple[tuple[str, str, tuple[str, ...], str | None], ...] = (
    ("games_igdb_game_id_unique", "games", ("igdb_game_id",), "igdb_game_id IS NOT NULL"),
    ("games_canonical_title_unique", "games", ("canonical_title",), None),
    ("releases_platform_key_game_id_unique", "releases", ("platform_key", "game_id"), None),
)


def ensure_unique_indexes(engine: Engine) -> list[str]:
    """Create the catalog's unique indexes, returning the ones applied."""

    dialect = engine.dialect.name
    preparer = engine.dialect.identifier_preparer
    applied: list[str] = []
    for name, table_name, columns, predicate in UNIQUE_INDEXES:
        column_sql = ", ".join(preparer.quote(column) for column in columns)
        if dialect in {"mysql", "mariadb"}:
            # MySQL allows repeated NULLs in unique indexes and has no IF NOT EXISTS.
            statement = (
                f"CREATE UNIQUE INDEX {preparer.quote(name)} "
                f"ON {preparer.quote(table_name)} ({column_sql})"
            )
        else:
            statement = (
                f"CREATE UNIQUE INDEX IF NOT EXISTS {preparer.quote(name)} "
                f"ON {preparer.quote(table_name)} ({column_sql})"
            )
            if predicate:
                statement = f"{statement} WHERE {predicate}"
        try:
            with engine.begin() as conn:
                conn.execute(text(statement))
        except (OperationalError, ProgrammingError) as exc:
            if dialect in {"mysql", "mariadb"} and "duplicate key name" in str(exc).lower():
                continue
            raise
        applied.append(name)
    logger.debug("Ensured unique indexes: %s", ", ".join(applied))
    return applied


def ensure_schema(engine: Engine, *, unique_indexes: bool = True) -> None:
    """Create catalog tables (and, unless disabled, the unique indexes)."""

    metadata.create_all(engine)
    if unique_indexes:
        ensure_unique_indexes(engine)


DEPENDENT_RELEASE_TABLES: tuple[tuple[Table, tuple[str, ...]], ...] = (
    (portfolio_entries, ("user_id",)),
    (psn_title_progress, ("user_id",)),
    (xbox_title_progress, ("user_id",)),
    (steam_title_progress, ("user_id",)),
    (ra_achievement_cache, ("user_id", "achievement_id")),
)
"""Tables holding per-user rows keyed by release, with their uniqueness scope."""


__all__ = [
    "DEPENDENT_RELEASE_TABLES",
    "UNIQUE_INDEXES",
    "catalog_merges",
    "ensure_schema",
    "ensure_unique_indexes",
    "game_title_keys",
    "games",
    "metadata",
    "portfolio_entries",
    "psn_title_progress",
    "ra_achievement_cache",
    "release_enrichment_state",
    "release_external_ids",
    "releases",
    "steam_title_progress",
    "title_aliases",
    "xbox_title_progress",
]
