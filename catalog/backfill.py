"""Re-resolve games that never got an IGDB anchor or a cover."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from catalog.covers import propagate_game_covers
from catalog.games import CanonicalGameResolver
from dedupe.merge import CatalogMerger
from igdb.client import IGDBUnavailableError

logger = logging.getLogger(__name__)

BACKFILL_MERGE_REASON = "backfill"

__all__ = ["BackfillReport", "backfill_game_identities"]


@dataclass
class BackfillReport:
    dry_run: bool
    limit: int
    scanned: int = 0
    anchored: int = 0
    covers_found: int = 0
    merged: int = 0
    missed: int = 0
    failed: int = 0
    releases_updated: int = 0
    changes: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "limit": self.limit,
            "scanned": self.scanned,
            "anchored": self.anchored,
            "covers_found": self.covers_found,
            "merged": self.merged,
            "missed": self.missed,
            "failed": self.failed,
            "releases_updated": self.releases_updated,
            "changes": list(self.changes),
            "errors": list(self.errors),
        }


def backfill_game_identities(
    resolver: CanonicalGameResolver,
    merger: CatalogMerger,
    *,
    limit: int,
    dry_run: bool = False,
) -> BackfillReport:
    """Look up IGDB for games missing an id or cover, least-attempted first.

    A game whose match is already held by another game is merged into that
    game. Covers found along the way are copied down to releases.
    """

    store = resolver.store
    matcher = resolver.matcher
    report = BackfillReport(dry_run=dry_run, limit=limit)
    if matcher is None:
        logger.warning("IGDB matcher not configured; backfill skipped")
        return report

    touched: list[int] = []
    for game in store.games_missing_identity(limit=limit):
        report.scanned += 1
        game_id = int(game["id"])
        try:
            if game["igdb_game_id"] is not None:
                hit = matcher.fetch_by_id(game["igdb_game_id"])
            else:
                hit = matcher.resolve(game["canonical_title"])
        except IGDBUnavailableError as exc:
            report.failed += 1
            report.errors.append({"game_id": game_id, "error": str(exc)})
            logger.warning("IGDB unavailable while backfilling game %s: %s", game_id, exc)
            continue
        if not dry_run:
            store.record_identity_attempt(game_id)
        if hit is None:
            report.missed += 1
            continue

        holder = store.find_game_by_external_id(hit.igdb_game_id)
        change = {
            "game_id": game_id,
            "igdb_game_id": hit.igdb_game_id,
            "title": hit.title,
            "merge_into": holder["id"] if holder is not None and holder["id"] != game_id else None,
        }
        report.changes.append(change)
        if hit.cover_url:
            report.covers_found += 1

        if change["merge_into"] is not None:
            outcome = merger.merge_games(
                change["merge_into"], [game_id], reason=BACKFILL_MERGE_REASON, dry_run=dry_run
            )
            if outcome.ok:
                report.merged += 1
            else:
                report.failed += 1
                report.errors.append({"game_id": game_id, "error": outcome.failures})
            touched.append(change["merge_into"])
            continue
        if game["igdb_game_id"] is None:
            report.anchored += 1
        if dry_run:
            continue
        identity = resolver.attach_external_match(game, hit)
        touched.append(identity.game_id)

    if touched:
        covers = propagate_game_covers(store, game_ids=touched, dry_run=dry_run)
        report.releases_updated = covers.releases_updated
    logger.info(
        "Backfill %s: %d scanned, %d anchored, %d merged, %d missed, %d failed",
        "planned" if dry_run else "applied",
        report.scanned,
        report.anchored,
        report.merged,
        report.missed,
        report.failed,
    )
    return report
