"""Wiring of the catalog components around one database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError

import config
from catalog.games import CanonicalGameResolver
from catalog.releases import ReleaseIdentityMapper
from catalog.store import CatalogStore
from db.schema import ensure_schema, ensure_unique_indexes
from db.utils import DatabaseEngine, build_engine_from_dsn
from dedupe.merge import CatalogMerger
from igdb.client import IGDBClient
from igdb.matching import ExternalMatchResolver, GameSearchClient

logger = logging.getLogger(__name__)

__all__ = ["CatalogServices", "build_igdb_client", "build_services", "open_database"]


@dataclass
class CatalogServices:
    store: CatalogStore
    matcher: ExternalMatchResolver | None
    games: CanonicalGameResolver
    releases: ReleaseIdentityMapper
    merger: CatalogMerger


def build_igdb_client() -> IGDBClient:
    return IGDBClient(
        client_id=config.IGDB_CLIENT_ID,
        client_secret=config.IGDB_CLIENT_SECRET,
        access_token=config.IGDB_ACCESS_TOKEN,
        user_agent=config.IGDB_USER_AGENT,
        token_ttl=config.IGDB_TOKEN_TTL_SECONDS,
    )


def build_services(
    database: DatabaseEngine,
    *,
    client: GameSearchClient | None = None,
    clock: Callable[[], datetime] | None = None,
) -> CatalogServices:
    """Assemble store, resolvers and merger sharing ``database``.

    Without a search client the resolvers run title-only.
    """

    store = CatalogStore(database, clock=clock)
    matcher = (
        ExternalMatchResolver(client, search_limit=config.IGDB_SEARCH_LIMIT)
        if client is not None
        else None
    )
    games = CanonicalGameResolver(store, matcher)
    merger = CatalogMerger(store)
    releases = ReleaseIdentityMapper(store, games, merger)
    return CatalogServices(store=store, matcher=matcher, games=games, releases=releases, merger=merger)


def open_database(dsn: str | None = None, *, create: bool = True) -> DatabaseEngine:
    """Connect to ``dsn`` (default ``config.DB_DSN``) and ensure the schema.

    Unique indexes that existing duplicates prevent are skipped with a
    warning; running the merge jobs and ``ensure-indexes`` applies them.
    """

    database = build_engine_from_dsn(dsn or config.DB_DSN, timeout=config.DB_CONNECT_TIMEOUT_SECONDS)
    if not create:
        return database
    ensure_schema(database.engine, unique_indexes=False)
    try:
        ensure_unique_indexes(database.engine)
    except IntegrityError as exc:
        logger.warning("Catalog unique indexes not applied; merge duplicates first: %s", exc.orig)
    return database
