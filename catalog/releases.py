"""Release identity: platform-native ids mapped onto per-platform releases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from catalog.covers import is_usable_cover
from catalog.errors import InvalidTitleError, ResolutionError
from catalog.games import CanonicalGameResolver
from catalog.store import CatalogStore
from catalog.titles import normalize_platform_label
from db.utils import upsert_with_race_recovery

if TYPE_CHECKING:  # pragma: no cover
    from dedupe.merge import CatalogMerger

logger = logging.getLogger(__name__)

EXTERNAL_ID_RACE_REASON = "external-id-race"

__all__ = ["ReleaseIdentityMapper", "ReleaseMapping"]


@dataclass(frozen=True)
class ReleaseMapping:
    release_id: int
    game_id: int | None
    created: bool = False
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "game_id": self.game_id,
            "created": self.created,
            "cached": self.cached,
        }


def _platform_key(value: Any) -> str:
    return str(value or "").strip().lower()


class ReleaseIdentityMapper:
    """Resolve ``(platform_key, native_id)`` pairs to release ids.

    An existing external-id mapping is final and returned as is. A first
    sighting resolves the game, reuses or creates the platform release and
    claims the mapping with insert-or-ignore; whoever claimed it first wins
    and a release created by the loser is folded into the winner.
    """

    def __init__(
        self,
        store: CatalogStore,
        games: CanonicalGameResolver,
        merger: "CatalogMerger | None" = None,
    ) -> None:
        self._store = store
        self._games = games
        self._merger = merger

    def resolve(
        self,
        platform_key: str,
        native_id: Any,
        raw_title: str | None,
        *,
        platform_label: str | None = None,
    ) -> int:
        return self.map_release(
            platform_key, native_id, raw_title, platform_label=platform_label
        ).release_id

    def map_release(
        self,
        platform_key: str,
        native_id: Any,
        raw_title: str | None,
        *,
        platform_label: str | None = None,
    ) -> ReleaseMapping:
        platform = _platform_key(platform_key)
        native = str(native_id if native_id is not None else "").strip()
        if not platform or not native:
            raise ValueError("platform_key and native_id are required")
        title = str(raw_title or "").strip()
        try:
            return self._map(platform, native, title, normalize_platform_label(platform_label))
        except SQLAlchemyError as exc:
            raise ResolutionError(
                f"store error while mapping {platform}:{native}: {exc}",
                raw_title=title,
                platform_key=platform,
            ) from exc

    def _map(
        self, platform: str, native: str, title: str, label: str | None
    ) -> ReleaseMapping:
        mapped = self._store.find_mapping(platform, native)
        if mapped is not None:
            self._store.touch_release(mapped, platform_label=label)
            return ReleaseMapping(mapped, None, cached=True)

        if not title:
            raise InvalidTitleError(f"no title for unmapped {platform}:{native}")
        identity = self._games.resolve(title, platform)
        game_id = identity.game_id

        existing = self._store.find_release(platform, game_id)
        if existing is not None:
            release_id, created = int(existing["id"]), False
        else:
            release_id, created = self._create_release(platform, game_id, title, label)

        self._store.insert_mapping_ignore(platform, native, release_id)
        owner = self._store.find_mapping(platform, native)
        if owner is None:
            raise ResolutionError(
                f"mapping for {platform}:{native} missing after insert",
                raw_title=title,
                platform_key=platform,
            )
        if owner != release_id:
            logger.info(
                "Mapping %s:%s already claimed by release %s; folding release %s into it",
                platform,
                native,
                owner,
                release_id,
            )
            self._fold_into(owner, release_id, game_id, created)
            return ReleaseMapping(owner, game_id)
        return ReleaseMapping(release_id, game_id, created=created)

    def _create_release(
        self, platform: str, game_id: int, title: str, label: str | None
    ) -> tuple[int, bool]:
        game = self._store.get_game(game_id) or {}
        cover_url = game.get("cover_url")
        values = {
            "game_id": game_id,
            "platform_key": platform,
            "platform_label": label,
            "display_title": title,
            "cover_url": cover_url if is_usable_cover(cover_url) else None,
        }

        def insert() -> tuple[int, bool]:
            release_id = self._store.insert_release(values)
            logger.info("Created %s release %s for game %s (%r)", platform, release_id, game_id, title)
            return release_id, True

        def reread(_exc: IntegrityError) -> tuple[int, bool] | None:
            row = self._store.find_release(platform, game_id)
            return (int(row["id"]), False) if row is not None else None

        return upsert_with_race_recovery(insert, reread, label=f"release {platform}/{game_id}")

    def _fold_into(self, owner_id: int, release_id: int, game_id: int, created: bool) -> None:
        if self._merger is None:
            logger.warning("No merger configured; release %s left beside %s", release_id, owner_id)
            return
        owner = self._store.get_release(owner_id)
        if not created and (owner is None or owner["game_id"] != game_id):
            # An established release of another game is never merged on a guess.
            logger.warning(
                "Release %s (game %s) differs from mapping owner %s; not merging",
                release_id,
                game_id,
                owner_id,
            )
            return
        outcome = self._merger.merge_releases(owner_id, [release_id], reason=EXTERNAL_ID_RACE_REASON)
        if outcome.failures:
            logger.error("Race merge of release %s into %s incomplete: %s", release_id, owner_id, outcome.failures)
