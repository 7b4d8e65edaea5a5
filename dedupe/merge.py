"""Merge primitive shared by every duplicate repair job.

Merging moves every row that references a loser onto the winner, drops the
loser's rows that would collide with rows the winner already has in the
same per-user scope, records the merge, and only then deletes the losers.
A table that fails to move is reported and leaves the losers in place so a
later run can finish the job.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from sqlalchemy import Table, and_, delete, func, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from catalog.store import CatalogStore
from db.schema import (
    DEPENDENT_RELEASE_TABLES,
    game_title_keys,
    games,
    release_enrichment_state,
    release_external_ids,
    releases,
)
from db.utils import insert_ignore
from dedupe.duplicates import compute_metadata_updates

logger = logging.getLogger(__name__)

ENTITY_GAME = "game"
ENTITY_RELEASE = "release"

__all__ = ["CatalogMerger", "MergeOutcome"]


@dataclass
class MergeOutcome:
    """What one merge did, or would do in dry-run mode."""

    entity: str
    winner_id: int
    loser_ids: list[int]
    dry_run: bool
    moved: Counter = field(default_factory=Counter)
    dropped: Counter = field(default_factory=Counter)
    deleted: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def absorb(self, other: "MergeOutcome") -> None:
        self.moved.update(other.moved)
        self.dropped.update(other.dropped)
        if other.entity == ENTITY_RELEASE:
            self.dropped[releases.name] += other.deleted
        self.failures.update(other.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "winner_id": self.winner_id,
            "loser_ids": list(self.loser_ids),
            "dry_run": self.dry_run,
            "moved": dict(self.moved),
            "dropped": dict(self.dropped),
            "deleted": self.deleted,
            "failures": dict(self.failures),
        }


def _plan_scoped_rows(
    conn: Connection,
    table: Table,
    scope: Sequence[str],
    winner_id: int,
    loser_ids: Sequence[int],
) -> tuple[list[int], list[int]]:
    """Split loser rows into ones to repoint and ones that would collide."""

    scope_columns = [table.c[name] for name in scope]
    taken = {
        tuple(row)
        for row in conn.execute(select(*scope_columns).where(table.c.release_id == winner_id))
    }
    move_ids: list[int] = []
    drop_ids: list[int] = []
    loser_rows = conn.execute(
        select(table.c.id, *scope_columns)
        .where(table.c.release_id.in_(list(loser_ids)))
        .order_by(table.c.id)
    )
    for row in loser_rows:
        key = tuple(row[1:])
        if key in taken:
            drop_ids.append(row[0])
            continue
        taken.add(key)
        move_ids.append(row[0])
    return move_ids, drop_ids


def _count(conn: Connection, table: Table, *criteria: Any) -> int:
    stmt = select(func.count()).select_from(table)
    for criterion in criteria:
        stmt = stmt.where(criterion)
    return int(conn.execute(stmt).scalar_one())


class CatalogMerger:
    """Fold duplicate releases and games into a chosen winner."""

    def __init__(self, store: CatalogStore) -> None:
        self._store = store
        self._db = store.database

    def _existing_ids(self, table: Table, ids: Iterable[int]) -> list[int]:
        wanted = list(ids)
        if not wanted:
            return []
        with self._db.sa_connection() as conn:
            found = {row[0] for row in conn.execute(select(table.c.id).where(table.c.id.in_(wanted)))}
        return [value for value in wanted if value in found]

    def merge_releases(
        self,
        winner_id: int,
        loser_ids: Iterable[int],
        *,
        reason: str,
        dry_run: bool = False,
    ) -> MergeOutcome:
        """Fold ``loser_ids`` into release ``winner_id``.

        Losers that no longer exist are ignored, so re-running a finished
        merge does nothing.
        """

        candidates = [int(value) for value in dict.fromkeys(loser_ids) if int(value) != winner_id]
        losers = self._existing_ids(releases, candidates)
        outcome = MergeOutcome(ENTITY_RELEASE, winner_id, losers, dry_run)
        if not losers:
            return outcome
        if dry_run:
            self._plan_release_merge(outcome)
            return outcome

        for table, scope in DEPENDENT_RELEASE_TABLES:
            try:
                with self._db.begin() as conn:
                    move_ids, drop_ids = _plan_scoped_rows(conn, table, scope, winner_id, losers)
                    if drop_ids:
                        conn.execute(delete(table).where(table.c.id.in_(drop_ids)))
                    if move_ids:
                        conn.execute(
                            update(table).where(table.c.id.in_(move_ids)).values(release_id=winner_id)
                        )
            except SQLAlchemyError as exc:
                logger.error(
                    "Moving %s rows from releases %s to %s failed: %s",
                    table.name,
                    losers,
                    winner_id,
                    exc,
                )
                outcome.failures[table.name] = str(exc)
                continue
            outcome.moved[table.name] += len(move_ids)
            outcome.dropped[table.name] += len(drop_ids)

        try:
            with self._db.begin() as conn:
                result = conn.execute(
                    update(release_external_ids)
                    .where(release_external_ids.c.release_id.in_(losers))
                    .values(release_id=winner_id)
                )
                outcome.moved[release_external_ids.name] += int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.error("Repointing mappings of releases %s to %s failed: %s", losers, winner_id, exc)
            outcome.failures[release_external_ids.name] = str(exc)

        if outcome.failures:
            logger.warning(
                "Release merge into %s incomplete (%s); losers kept for a later run",
                winner_id,
                ", ".join(sorted(outcome.failures)),
            )
            return outcome

        self._backfill_release_cover(winner_id, losers)
        with self._db.begin() as conn:
            conn.execute(
                delete(release_enrichment_state).where(release_enrichment_state.c.release_id.in_(losers))
            )
            for loser_id in losers:
                self._store.record_merge(
                    conn, entity=ENTITY_RELEASE, winner_id=winner_id, loser_id=loser_id, reason=reason
                )
            result = conn.execute(delete(releases).where(releases.c.id.in_(losers)))
            outcome.deleted = int(result.rowcount or 0)
        logger.info("Merged releases %s into %s (%s)", losers, winner_id, reason)
        return outcome

    def _plan_release_merge(self, outcome: MergeOutcome) -> None:
        with self._db.sa_connection() as conn:
            for table, scope in DEPENDENT_RELEASE_TABLES:
                move_ids, drop_ids = _plan_scoped_rows(
                    conn, table, scope, outcome.winner_id, outcome.loser_ids
                )
                outcome.moved[table.name] += len(move_ids)
                outcome.dropped[table.name] += len(drop_ids)
            outcome.moved[release_external_ids.name] += _count(
                conn,
                release_external_ids,
                release_external_ids.c.release_id.in_(outcome.loser_ids),
            )
        outcome.deleted = len(outcome.loser_ids)
        logger.info(
            "Would merge releases %s into %s: %s",
            outcome.loser_ids,
            outcome.winner_id,
            dict(outcome.moved),
        )

    def _backfill_release_cover(self, winner_id: int, loser_ids: Sequence[int]) -> None:
        winner = self._store.get_release(winner_id)
        if winner is None:
            return
        donors = [self._store.get_release(loser_id) or {} for loser_id in loser_ids]
        updates = compute_metadata_updates(winner, donors, columns=())
        if "cover_url" in updates:
            self._store.set_release_covers([winner_id], updates["cover_url"])

    def merge_games(
        self,
        winner_id: int,
        loser_ids: Iterable[int],
        *,
        reason: str,
        dry_run: bool = False,
    ) -> MergeOutcome:
        """Fold games ``loser_ids`` into ``winner_id``.

        Releases of a loser move to the winner; when the winner already has a
        release on that platform the two releases are merged first so each
        platform keeps a single release per game.
        """

        candidates = [int(value) for value in dict.fromkeys(loser_ids) if int(value) != winner_id]
        losers = self._existing_ids(games, candidates)
        outcome = MergeOutcome(ENTITY_GAME, winner_id, losers, dry_run)
        if not losers:
            return outcome

        platform_releases: dict[str, int] = {}
        for release in self._store.releases_for_game(winner_id):
            platform_releases.setdefault(release["platform_key"], int(release["id"]))

        for loser_id in losers:
            for release in self._store.releases_for_game(loser_id):
                platform = release["platform_key"]
                release_id = int(release["id"])
                target = platform_releases.get(platform)
                if target is not None:
                    sub = self.merge_releases(target, [release_id], reason=reason, dry_run=dry_run)
                    outcome.absorb(sub)
                    continue
                platform_releases[platform] = release_id
                if dry_run:
                    outcome.moved[releases.name] += 1
                    continue
                try:
                    with self._db.begin() as conn:
                        conn.execute(
                            update(releases)
                            .where(releases.c.id == release_id)
                            .values(game_id=winner_id, updated_at=self._store.now())
                        )
                except SQLAlchemyError as exc:
                    logger.error("Moving release %s to game %s failed: %s", release_id, winner_id, exc)
                    outcome.failures[f"{releases.name}:{release_id}"] = str(exc)
                    continue
                outcome.moved[releases.name] += 1

        if dry_run:
            with self._db.sa_connection() as conn:
                outcome.moved[game_title_keys.name] += _count(
                    conn, game_title_keys, game_title_keys.c.game_id.in_(losers)
                )
            outcome.deleted = len(losers)
            logger.info("Would merge games %s into %s: %s", losers, winner_id, dict(outcome.moved))
            return outcome

        try:
            with self._db.begin() as conn:
                result = conn.execute(
                    update(game_title_keys)
                    .where(game_title_keys.c.game_id.in_(losers))
                    .values(game_id=winner_id)
                )
                outcome.moved[game_title_keys.name] += int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.error("Moving title keys of games %s to %s failed: %s", losers, winner_id, exc)
            outcome.failures[game_title_keys.name] = str(exc)

        if outcome.failures:
            logger.warning(
                "Game merge into %s incomplete (%s); losers kept for a later run",
                winner_id,
                ", ".join(sorted(outcome.failures)),
            )
            return outcome

        winner = self._store.get_game(winner_id)
        loser_rows = [row for row in (self._store.get_game(loser_id) for loser_id in losers) if row]
        with self._db.begin() as conn:
            remaining = _count(conn, releases, releases.c.game_id.in_(losers))
            if remaining:
                # Releases arrived for a loser while merging; leave it for the next run.
                outcome.failures[releases.name] = f"{remaining} releases still reference losers"
                logger.warning("Games %s gained releases during merge; not deleting", losers)
                return outcome
            for loser_id in losers:
                self._store.record_merge(
                    conn, entity=ENTITY_GAME, winner_id=winner_id, loser_id=loser_id, reason=reason
                )
            result = conn.execute(delete(games).where(games.c.id.in_(losers)))
            outcome.deleted = int(result.rowcount or 0)
            for row in loser_rows:
                insert_ignore(
                    conn,
                    game_title_keys,
                    {"title_key": row["canonical_title"], "game_id": winner_id, "created_at": self._store.now()},
                )
        if winner is not None:
            updates = compute_metadata_updates(winner, loser_rows)
            if updates:
                self._store.update_game(winner_id, updates)
        logger.info("Merged games %s into %s (%s)", losers, winner_id, reason)
        return outcome
