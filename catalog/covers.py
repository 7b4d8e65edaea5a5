"""Cover-art rules: when a stored cover may change, and copying covers down."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from config import PLACEHOLDER_COVER_MARKERS
from helpers import has_text_value

if TYPE_CHECKING:  # pragma: no cover
    from catalog.store import CatalogStore

logger = logging.getLogger(__name__)

IGDB_IMAGES_SOURCE = "igdb"

__all__ = [
    "IGDB_IMAGES_SOURCE",
    "CoverPropagationReport",
    "is_placeholder_cover",
    "is_usable_cover",
    "propagate_game_covers",
    "should_overwrite_cover",
]


def is_placeholder_cover(url: Any, markers: Sequence[str] = PLACEHOLDER_COVER_MARKERS) -> bool:
    if not has_text_value(url):
        return False
    text = str(url).strip().lower()
    return any(marker in text for marker in markers)


def is_usable_cover(url: Any) -> bool:
    """Return ``True`` for a non-empty cover URL that is not a placeholder."""

    return has_text_value(url) and not is_placeholder_cover(url)


def should_overwrite_cover(current: Any, images_source: Any) -> bool:
    """Return ``True`` when a stored cover may be replaced.

    Empty and placeholder covers are always replaceable. A real cover that
    came from IGDB is permanent; covers of any other provenance may be
    upgraded.
    """

    if not is_usable_cover(current):
        return True
    source = str(images_source or "").strip().lower()
    return not source.startswith(IGDB_IMAGES_SOURCE)


@dataclass
class CoverPropagationReport:
    dry_run: bool
    limit: int | None = None
    games_scanned: int = 0
    releases_updated: int = 0
    updates: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "limit": self.limit,
            "games_scanned": self.games_scanned,
            "releases_updated": self.releases_updated,
            "sample_updates": self.updates[:20],
        }


def propagate_game_covers(
    store: "CatalogStore",
    *,
    game_ids: Iterable[int] | None = None,
    limit: int | None = None,
    dry_run: bool = False,
) -> CoverPropagationReport:
    """Copy each game's usable cover onto its releases lacking one.

    Only games that still have a bare release are selected, so a bounded
    ``limit`` works through the catalog in slices across repeated runs.
    Releases that already carry a usable cover are never touched.
    """

    report = CoverPropagationReport(dry_run=dry_run, limit=limit)
    selected = list(game_ids) if game_ids is not None else None
    candidates = store.games_with_covers_to_copy(
        markers=PLACEHOLDER_COVER_MARKERS, game_ids=selected, limit=limit
    )
    for game in candidates:
        report.games_scanned += 1
        cover_url = game["cover_url"]
        if not is_usable_cover(cover_url):
            continue
        targets = [
            release["id"]
            for release in store.releases_for_game(game["id"])
            if not is_usable_cover(release["cover_url"])
        ]
        if not targets:
            continue
        if not dry_run:
            store.set_release_covers(targets, cover_url)
        report.releases_updated += len(targets)
        report.updates.append({"game_id": game["id"], "release_ids": targets, "cover_url": cover_url})
        logger.info(
            "%s cover of game %s to releases %s",
            "Would copy" if dry_run else "Copied",
            game["id"],
            targets,
        )
    return report
