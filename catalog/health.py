"""Counters describing how well the catalog spine is anchored."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select

from catalog.store import CatalogStore
from db.schema import catalog_merges, games, release_external_ids, releases


def _duplicate_group_count(store: CatalogStore, *columns: Any) -> int:
    grouped = (
        select(*columns)
        .where(*(column.is_not(None) for column in columns))
        .group_by(*columns)
        .having(func.count() > 1)
        .subquery()
    )
    with store.database.sa_connection() as conn:
        return int(conn.execute(select(func.count()).select_from(grouped)).scalar_one())


def catalog_health(store: CatalogStore) -> dict[str, Any]:
    missing_cover = or_(games.c.cover_url.is_(None), games.c.cover_url == "")
    release_missing_cover = or_(releases.c.cover_url.is_(None), releases.c.cover_url == "")
    return {
        "games_total": store.count(games),
        "games_with_igdb_id": store.count(games, games.c.igdb_game_id.is_not(None)),
        "games_with_cover": store.count(games, ~missing_cover),
        "games_missing_cover": store.count(games, missing_cover),
        "releases_total": store.count(releases),
        "releases_without_game": store.count(releases, releases.c.game_id.is_(None)),
        "releases_missing_cover": store.count(releases, release_missing_cover),
        "external_id_mappings": store.count(release_external_ids),
        "duplicate_igdb_groups": _duplicate_group_count(store, games.c.igdb_game_id),
        "duplicate_release_groups": _duplicate_group_count(
            store, releases.c.platform_key, releases.c.game_id
        ),
        "merges_recorded": store.count(catalog_merges),
    }


__all__ = ["catalog_health"]
