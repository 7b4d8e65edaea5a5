"""Relational access for games, releases and external-id mappings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.engine import Connection

from db.schema import (
    catalog_merges,
    game_title_keys,
    games,
    portfolio_entries,
    release_external_ids,
    releases,
    title_aliases,
)
from db.utils import DatabaseEngine, DatabaseHandle, insert_ignore
from helpers import isoformat_utc

logger = logging.getLogger(__name__)

__all__ = ["CatalogStore"]


def _row_dict(row: Any) -> dict[str, Any] | None:
    if row is None:
        return None
    return dict(row._mapping)


class CatalogStore:
    """Thin repository over the catalog tables.

    Every write runs in its own transaction so a unique violation surfaces
    to the caller with the connection already rolled back.
    """

    def __init__(
        self,
        database: DatabaseEngine | DatabaseHandle,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def database(self) -> DatabaseEngine | DatabaseHandle:
        return self._db

    def now(self) -> str:
        return isoformat_utc(self._clock())

    def _fetch_one(self, stmt: Any) -> dict[str, Any] | None:
        with self._db.sa_connection() as conn:
            return _row_dict(conn.execute(stmt).first())

    def _fetch_all(self, stmt: Any) -> list[dict[str, Any]]:
        with self._db.sa_connection() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    # Games

    def get_game(self, game_id: int) -> dict[str, Any] | None:
        return self._fetch_one(select(games).where(games.c.id == game_id))

    def find_game_by_external_id(self, igdb_game_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            select(games).where(games.c.igdb_game_id == igdb_game_id).order_by(games.c.id).limit(1)
        )

    def find_game_by_title_key(self, title_key: str) -> dict[str, Any] | None:
        """Return the game stored under ``title_key`` or remembered for it.

        A remembered game anchored to IGDB wins over a title-only row that
        still carries the same spelling.
        """

        if not title_key:
            return None
        game = self._fetch_one(
            select(games).where(games.c.canonical_title == title_key).order_by(games.c.id).limit(1)
        )
        if game is not None and game["igdb_game_id"] is not None:
            return game
        remembered = self._fetch_one(
            select(games)
            .join(game_title_keys, game_title_keys.c.game_id == games.c.id)
            .where(game_title_keys.c.title_key == title_key)
            .limit(1)
        )
        return remembered or game

    def insert_game(self, values: Mapping[str, Any]) -> int:
        now = self.now()
        payload = {**values, "created_at": now, "updated_at": now}
        with self._db.begin() as conn:
            result = conn.execute(games.insert().values(**payload))
            return int(result.inserted_primary_key[0])

    def update_game(self, game_id: int, values: Mapping[str, Any]) -> None:
        if not values:
            return
        with self._db.begin() as conn:
            conn.execute(
                update(games).where(games.c.id == game_id).values(**values, updated_at=self.now())
            )

    def record_title_key(self, title_key: str, game_id: int) -> bool:
        if not title_key:
            return False
        with self._db.begin() as conn:
            return insert_ignore(
                conn,
                game_title_keys,
                {"title_key": title_key, "game_id": game_id, "created_at": self.now()},
            )

    def games_with_covers_to_copy(
        self,
        *,
        markers: Sequence[str],
        game_ids: Sequence[int] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Games with a real cover and at least one release still lacking one."""

        def bare(column: Any) -> Any:
            lowered = func.lower(column)
            return or_(
                column.is_(None),
                func.trim(column) == "",
                *[lowered.contains(marker, autoescape=True) for marker in markers],
            )

        pending = (
            select(releases.c.id)
            .where(releases.c.game_id == games.c.id, bare(releases.c.cover_url))
            .exists()
        )
        stmt = select(games).where(~bare(games.c.cover_url), pending).order_by(games.c.id)
        if game_ids is not None:
            if not game_ids:
                return []
            stmt = stmt.where(games.c.id.in_(list(game_ids)))
        if limit:
            stmt = stmt.limit(limit)
        return self._fetch_all(stmt)

    def games_missing_identity(self, *, limit: int) -> list[dict[str, Any]]:
        """Games without an external id or without any cover.

        Least-attempted first, then oldest, so games IGDB never resolves
        drift behind ones that have not been tried yet.
        """

        stmt = (
            select(games)
            .where(
                or_(
                    games.c.igdb_game_id.is_(None),
                    games.c.cover_url.is_(None),
                    games.c.cover_url == "",
                )
            )
            .where(or_(games.c.content_type.is_(None), games.c.content_type == "game"))
            .order_by(games.c.identity_attempts, games.c.id)
            .limit(limit)
        )
        return self._fetch_all(stmt)

    def record_identity_attempt(self, game_id: int) -> None:
        with self._db.begin() as conn:
            conn.execute(
                update(games)
                .where(games.c.id == game_id)
                .values(identity_attempts=games.c.identity_attempts + 1)
            )

    # Search aliases

    def find_search_alias(self, platform_key: str | None, raw_title: str) -> str | None:
        if not platform_key or not raw_title:
            return None
        row = self._fetch_one(
            select(title_aliases.c.search_title).where(
                and_(
                    title_aliases.c.platform_key == platform_key,
                    title_aliases.c.raw_title == raw_title,
                )
            )
        )
        return row["search_title"] if row else None

    def add_search_alias(self, platform_key: str, raw_title: str, search_title: str) -> bool:
        with self._db.begin() as conn:
            return insert_ignore(
                conn,
                title_aliases,
                {"platform_key": platform_key, "raw_title": raw_title, "search_title": search_title},
            )

    # Releases

    def get_release(self, release_id: int) -> dict[str, Any] | None:
        return self._fetch_one(select(releases).where(releases.c.id == release_id))

    def find_release(self, platform_key: str, game_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            select(releases)
            .where(and_(releases.c.platform_key == platform_key, releases.c.game_id == game_id))
            .order_by(releases.c.id)
            .limit(1)
        )

    def insert_release(self, values: Mapping[str, Any]) -> int:
        now = self.now()
        payload = {**values, "created_at": now, "updated_at": now}
        with self._db.begin() as conn:
            result = conn.execute(releases.insert().values(**payload))
            return int(result.inserted_primary_key[0])

    def touch_release(self, release_id: int, *, platform_label: str | None = None) -> None:
        values: dict[str, Any] = {"updated_at": self.now()}
        if platform_label:
            values["platform_label"] = platform_label
        with self._db.begin() as conn:
            conn.execute(update(releases).where(releases.c.id == release_id).values(**values))

    def releases_for_game(self, game_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            select(releases).where(releases.c.game_id == game_id).order_by(releases.c.id)
        )

    def set_release_covers(self, release_ids: Iterable[int], cover_url: str) -> int:
        ids = list(release_ids)
        if not ids:
            return 0
        with self._db.begin() as conn:
            result = conn.execute(
                update(releases)
                .where(releases.c.id.in_(ids))
                .values(cover_url=cover_url, updated_at=self.now())
            )
            return int(result.rowcount or 0)

    # External-id mappings

    def find_mapping(self, source: str, external_id: str) -> int | None:
        row = self._fetch_one(
            select(release_external_ids.c.release_id).where(
                and_(
                    release_external_ids.c.source == source,
                    release_external_ids.c.external_id == external_id,
                )
            )
        )
        return int(row["release_id"]) if row else None

    def insert_mapping_ignore(self, source: str, external_id: str, release_id: int) -> bool:
        """Attach ``(source, external_id)`` to ``release_id`` unless already mapped."""

        with self._db.begin() as conn:
            return insert_ignore(
                conn,
                release_external_ids,
                {
                    "source": source,
                    "external_id": external_id,
                    "release_id": release_id,
                    "created_at": self.now(),
                },
            )

    def mappings_for_release(self, release_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            select(release_external_ids)
            .where(release_external_ids.c.release_id == release_id)
            .order_by(release_external_ids.c.id)
        )

    # Library

    def library_releases(self, user_id: str) -> list[dict[str, Any]]:
        """Releases in ``user_id``'s library joined with their games."""

        stmt = (
            select(
                releases.c.id,
                releases.c.game_id,
                releases.c.platform_key,
                releases.c.display_title,
                releases.c.cover_url,
                releases.c.updated_at,
                games.c.canonical_title,
                games.c.igdb_game_id,
                games.c.cover_url.label("game_cover_url"),
            )
            .select_from(
                portfolio_entries.join(releases, releases.c.id == portfolio_entries.c.release_id)
                .outerjoin(games, games.c.id == releases.c.game_id)
            )
            .where(portfolio_entries.c.user_id == user_id)
            .order_by(releases.c.id)
        )
        return self._fetch_all(stmt)

    # Merge audit

    def record_merge(
        self, conn: Connection, *, entity: str, winner_id: int, loser_id: int, reason: str
    ) -> None:
        conn.execute(
            catalog_merges.insert().values(
                entity=entity,
                winner_id=winner_id,
                loser_id=loser_id,
                reason=reason,
                merged_at=self.now(),
            )
        )

    def merge_history(self, *, entity: str | None = None) -> list[dict[str, Any]]:
        stmt = select(catalog_merges).order_by(catalog_merges.c.id)
        if entity:
            stmt = stmt.where(catalog_merges.c.entity == entity)
        return self._fetch_all(stmt)

    def count(self, table: Any, *criteria: Any) -> int:
        stmt = select(func.count()).select_from(table)
        for criterion in criteria:
            stmt = stmt.where(criterion)
        with self._db.sa_connection() as conn:
            return int(conn.execute(stmt).scalar_one())
