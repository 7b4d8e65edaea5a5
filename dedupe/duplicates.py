"""Duplicate detection and winner selection for games and releases.

Groups are read in bounded slices so a repair run never loads the whole
catalog. Winner selection is shared by every job: a row anchored to IGDB
beats an unanchored one, then a usable cover beats a missing or placeholder
one, then the most recently updated row wins, with the lowest id breaking
ties.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd
from sqlalchemy import and_, func, select

from catalog.covers import is_placeholder_cover, is_usable_cover
from catalog.store import CatalogStore
from catalog.titles import library_title_key
from db.schema import games, releases
from helpers import clean_text, coerce_int

logger = logging.getLogger(__name__)

__all__ = [
    "DuplicateGroup",
    "LibraryDuplicateGroup",
    "choose_winner",
    "compute_metadata_updates",
    "find_external_id_groups",
    "find_library_title_groups",
    "find_platform_game_groups",
]


@dataclass
class DuplicateGroup:
    """A detected duplicate set with its chosen survivor."""

    key: tuple[Any, ...]
    winner: Mapping[str, Any]
    losers: list[Mapping[str, Any]] = field(default_factory=list)

    @property
    def winner_id(self) -> int:
        return int(self.winner["id"])

    @property
    def loser_ids(self) -> list[int]:
        return [int(row["id"]) for row in self.losers]


@dataclass
class LibraryDuplicateGroup:
    key: str
    releases: list[dict[str, Any]]
    winner_release_id: int

    @property
    def count(self) -> int:
        return len(self.releases)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "count": self.count,
            "winner_release_id": self.winner_release_id,
            "releases": self.releases,
        }


def _timestamp_score(value: Any) -> float:
    text = clean_text(value)
    if not text:
        return 0.0
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    return parsed.timestamp()


def _winner_score(row: Mapping[str, Any]) -> tuple[Any, ...] | None:
    row_id = coerce_int(row.get("id"))
    if row_id is None:
        return None
    cover = row.get("cover_url")
    if not is_usable_cover(cover):
        cover = row.get("game_cover_url")
    return (
        row.get("igdb_game_id") is not None,
        is_usable_cover(cover),
        _timestamp_score(row.get("updated_at")),
        -row_id,
    )


def choose_winner(rows: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    """Pick the surviving row of a duplicate set."""

    best_row: Mapping[str, Any] | None = None
    best_score: tuple[Any, ...] | None = None
    for row in rows:
        score = _winner_score(row)
        if score is None:
            continue
        if best_score is None or score > best_score:
            best_score = score
            best_row = row
    return best_row


def _build_group(key: tuple[Any, ...], rows: Sequence[Mapping[str, Any]]) -> DuplicateGroup | None:
    winner = choose_winner(rows)
    if winner is None:
        return None
    losers = [row for row in rows if row is not winner]
    if not losers:
        return None
    return DuplicateGroup(key=key, winner=winner, losers=losers)


def compute_metadata_updates(
    winner: Mapping[str, Any],
    losers: Iterable[Mapping[str, Any]],
    *,
    columns: Sequence[str] = ("summary", "genres", "developer", "publisher", "first_release_year"),
) -> dict[str, Any]:
    """Collect values the losers can contribute to gaps in ``winner``.

    Only empty winner columns are filled; a winner without a usable cover
    takes the first usable loser cover along with its provenance.
    """

    loser_list = list(losers)
    updates: dict[str, Any] = {}
    for column in columns:
        if clean_text(winner.get(column)):
            continue
        for row in loser_list:
            value = row.get(column)
            if clean_text(value):
                updates[column] = value
                break
    if not is_usable_cover(winner.get("cover_url")):
        for row in loser_list:
            if is_usable_cover(row.get("cover_url")):
                updates["cover_url"] = row["cover_url"]
                updates["images_source"] = row.get("images_source")
                break
    return updates


def find_external_id_groups(store: CatalogStore, *, limit_groups: int) -> list[DuplicateGroup]:
    """Games sharing one IGDB id, up to ``limit_groups`` sets."""

    key_stmt = (
        select(games.c.igdb_game_id)
        .where(games.c.igdb_game_id.is_not(None))
        .group_by(games.c.igdb_game_id)
        .having(func.count() > 1)
        .order_by(games.c.igdb_game_id)
        .limit(limit_groups)
    )
    groups: list[DuplicateGroup] = []
    with store.database.sa_connection() as conn:
        keys = [row[0] for row in conn.execute(key_stmt)]
        for igdb_game_id in keys:
            rows = [
                dict(row._mapping)
                for row in conn.execute(
                    select(games).where(games.c.igdb_game_id == igdb_game_id).order_by(games.c.id)
                )
            ]
            group = _build_group((igdb_game_id,), rows)
            if group is not None:
                groups.append(group)
    logger.debug("Found %d games sharing an IGDB id", len(groups))
    return groups


def find_platform_game_groups(store: CatalogStore, *, limit_groups: int) -> list[DuplicateGroup]:
    """Releases sharing a ``(platform_key, game_id)`` pair."""

    key_stmt = (
        select(releases.c.platform_key, releases.c.game_id)
        .where(releases.c.game_id.is_not(None))
        .group_by(releases.c.platform_key, releases.c.game_id)
        .having(func.count() > 1)
        .order_by(releases.c.game_id, releases.c.platform_key)
        .limit(limit_groups)
    )
    row_stmt = select(
        releases,
        games.c.igdb_game_id,
        games.c.cover_url.label("game_cover_url"),
    ).select_from(releases.outerjoin(games, games.c.id == releases.c.game_id))
    groups: list[DuplicateGroup] = []
    with store.database.sa_connection() as conn:
        keys = [(row[0], row[1]) for row in conn.execute(key_stmt)]
        for platform_key, game_id in keys:
            rows = [
                dict(row._mapping)
                for row in conn.execute(
                    row_stmt.where(
                        and_(releases.c.platform_key == platform_key, releases.c.game_id == game_id)
                    ).order_by(releases.c.id)
                )
            ]
            group = _build_group((platform_key, game_id), rows)
            if group is not None:
                groups.append(group)
    logger.debug("Found %d duplicate platform releases", len(groups))
    return groups


def find_library_title_groups(
    store: CatalogStore, user_id: str, *, cap: int | None = None
) -> tuple[list[LibraryDuplicateGroup], int]:
    """Group one user's library by a loose title key.

    Returns the groups, largest first and capped at ``cap``, together with
    the number of library releases scanned.
    """

    rows = store.library_releases(user_id)
    if not rows:
        return [], 0
    frame = pd.DataFrame(rows)
    titles = frame["canonical_title"].where(frame["canonical_title"].notna(), frame["display_title"])
    frame["key"] = titles.fillna("").map(library_title_key)
    frame = frame[frame["key"] != ""]

    groups: list[LibraryDuplicateGroup] = []
    for key, group in frame.groupby("key", sort=True):
        if len(group) < 2:
            continue
        records = group.drop(columns=["key"]).to_dict("records")
        records = [{column: (None if pd.isna(value) else value) for column, value in record.items()} for record in records]
        winner = choose_winner(records)
        entries = [
            {
                "release_id": int(record["id"]),
                "display_title": record["display_title"],
                "platform_key": record["platform_key"],
                "release_cover": record["cover_url"],
                "game_id": coerce_int(record["game_id"]),
                "game_title": record["canonical_title"],
                "igdb_game_id": coerce_int(record["igdb_game_id"]),
                "game_cover": record["game_cover_url"],
                "bad_cover": not is_usable_cover(record["cover_url"])
                and not is_usable_cover(record["game_cover_url"]),
                "placeholder_cover": is_placeholder_cover(record["cover_url"]),
                "updated_at": record["updated_at"],
            }
            for record in records
        ]
        groups.append(
            LibraryDuplicateGroup(
                key=str(key),
                releases=entries,
                winner_release_id=int(winner["id"]) if winner else entries[0]["release_id"],
            )
        )

    groups.sort(key=lambda item: item.count, reverse=True)
    if cap is not None:
        groups = groups[:cap]
    return groups, len(rows)
