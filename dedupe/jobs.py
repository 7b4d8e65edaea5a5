"""Batch repair jobs collapsing duplicate games and releases."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from catalog.store import CatalogStore
from config import (
    LIBRARY_DUPLICATE_GROUP_CAP,
    MERGE_DEFAULT_LIMIT_GROUPS,
    MERGE_MAX_LIMIT_GROUPS,
    clamp_limit,
)
from dedupe.duplicates import (
    DuplicateGroup,
    choose_winner,
    find_external_id_groups,
    find_library_title_groups,
    find_platform_game_groups,
)
from dedupe.merge import CatalogMerger, MergeOutcome

logger = logging.getLogger(__name__)

JOB_SHARED_EXTERNAL_ID = "merge-by-shared-external-id"
JOB_PLATFORM_AND_GAME = "merge-by-platform-and-game"
JOB_LIBRARY_TITLE = "merge-by-normalized-title-in-library"

__all__ = [
    "MergeJobReport",
    "merge_by_platform_and_game",
    "merge_by_shared_external_id",
    "merge_library_title_duplicates",
    "scan_library_title_duplicates",
]


@dataclass
class MergeJobReport:
    job: str
    dry_run: bool
    limit_groups: int | None = None
    groups_found: int = 0
    groups_merged: int = 0
    moved: Counter = field(default_factory=Counter)
    dropped: Counter = field(default_factory=Counter)
    deleted: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    groups: list[dict[str, Any]] = field(default_factory=list)

    def record(self, key: Any, outcome: MergeOutcome) -> None:
        self.moved.update(outcome.moved)
        self.dropped.update(outcome.dropped)
        self.deleted += outcome.deleted
        if outcome.ok:
            self.groups_merged += 1
        for table, error in outcome.failures.items():
            self.failures.append(
                {"key": key, "winner_id": outcome.winner_id, "table": table, "error": error}
            )
        self.groups.append({"key": key, **outcome.to_dict()})

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "dry_run": self.dry_run,
            "limit_groups": self.limit_groups,
            "groups_found": self.groups_found,
            "groups_merged": self.groups_merged,
            "moved": dict(self.moved),
            "dropped": dict(self.dropped),
            "deleted": self.deleted,
            "failures": list(self.failures),
            "groups": list(self.groups),
        }


def _run_groups(
    report: MergeJobReport,
    groups: list[DuplicateGroup],
    merge: Any,
) -> MergeJobReport:
    report.groups_found = len(groups)
    for group in groups:
        key = list(group.key)
        logger.info(
            "%s group %s: winner %s, losers %s",
            report.job,
            key,
            group.winner_id,
            group.loser_ids,
        )
        outcome = merge(group.winner_id, group.loser_ids, reason=report.job, dry_run=report.dry_run)
        report.record(key, outcome)
    if report.failures:
        logger.warning("%s finished with %d failures", report.job, len(report.failures))
    return report


def merge_by_shared_external_id(
    store: CatalogStore,
    *,
    dry_run: bool = True,
    limit_groups: Any = None,
    merger: CatalogMerger | None = None,
) -> MergeJobReport:
    """Collapse games that carry the same IGDB id."""

    limit = clamp_limit(limit_groups, MERGE_DEFAULT_LIMIT_GROUPS, MERGE_MAX_LIMIT_GROUPS)
    merger = merger or CatalogMerger(store)
    report = MergeJobReport(JOB_SHARED_EXTERNAL_ID, dry_run, limit)
    groups = find_external_id_groups(store, limit_groups=limit)
    return _run_groups(report, groups, merger.merge_games)


def merge_by_platform_and_game(
    store: CatalogStore,
    *,
    dry_run: bool = True,
    limit_groups: Any = None,
    merger: CatalogMerger | None = None,
) -> MergeJobReport:
    """Collapse releases sharing one ``(platform_key, game_id)`` pair."""

    limit = clamp_limit(limit_groups, MERGE_DEFAULT_LIMIT_GROUPS, MERGE_MAX_LIMIT_GROUPS)
    merger = merger or CatalogMerger(store)
    report = MergeJobReport(JOB_PLATFORM_AND_GAME, dry_run, limit)
    groups = find_platform_game_groups(store, limit_groups=limit)
    return _run_groups(report, groups, merger.merge_releases)


def scan_library_title_duplicates(
    store: CatalogStore, user_id: str, *, cap: Any = None
) -> dict[str, Any]:
    """Report likely duplicate releases inside one user's library.

    Nothing is merged here; a title key is a heuristic and two different
    games can share one. Groups come back largest first for review.
    """

    limit = clamp_limit(cap, LIBRARY_DUPLICATE_GROUP_CAP, LIBRARY_DUPLICATE_GROUP_CAP)
    groups, scanned = find_library_title_groups(store, user_id)
    return {
        "user_id": user_id,
        "total_library_releases": scanned,
        "duplicate_groups": len(groups),
        "duplicates": [group.to_dict() for group in groups[:limit]],
    }


def merge_library_title_duplicates(
    store: CatalogStore,
    user_id: str,
    confirmed_keys: Iterable[str],
    *,
    dry_run: bool = True,
    merger: CatalogMerger | None = None,
) -> MergeJobReport:
    """Merge the library duplicate groups a reviewer confirmed.

    The games behind a confirmed group are merged into the group's best
    game. Releases without a game fold into the group's release on the same
    platform.
    """

    merger = merger or CatalogMerger(store)
    confirmed = [str(key).strip() for key in confirmed_keys if str(key).strip()]
    report = MergeJobReport(JOB_LIBRARY_TITLE, dry_run)
    if not confirmed:
        return report

    groups, _ = find_library_title_groups(store, user_id)
    by_key = {group.key: group for group in groups}
    unknown = [key for key in confirmed if key not in by_key]
    if unknown:
        logger.info("Ignoring unconfirmed or stale library keys for %s: %s", user_id, unknown)

    for key in confirmed:
        group = by_key.get(key)
        if group is None:
            continue
        report.groups_found += 1
        game_ids = list(dict.fromkeys(
            entry["game_id"] for entry in group.releases if entry["game_id"] is not None
        ))
        game_rows = [row for row in (store.get_game(game_id) for game_id in game_ids) if row]
        winner = choose_winner(game_rows)
        if winner is not None and len(game_rows) > 1:
            losers = [row["id"] for row in game_rows if row["id"] != winner["id"]]
            logger.info("Library group %r: merging games %s into %s", key, losers, winner["id"])
            report.record(key, merger.merge_games(winner["id"], losers, reason=JOB_LIBRARY_TITLE, dry_run=dry_run))

        anchored = {
            entry["platform_key"]: entry["release_id"]
            for entry in group.releases
            if entry["game_id"] is not None
        }
        for entry in group.releases:
            if entry["game_id"] is not None:
                continue
            current = store.find_release(entry["platform_key"], winner["id"]) if winner else None
            target = current["id"] if current else anchored.get(entry["platform_key"])
            if target is None:
                continue
            outcome = merger.merge_releases(
                target, [entry["release_id"]], reason=JOB_LIBRARY_TITLE, dry_run=dry_run
            )
            report.record(key, outcome)
    return report
