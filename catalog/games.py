"""Canonical game resolution: raw title in, one stable game row out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from catalog.covers import IGDB_IMAGES_SOURCE, propagate_game_covers, should_overwrite_cover
from catalog.errors import (
    GameNotFoundError,
    IdentityConflictError,
    InvalidTitleError,
    ResolutionError,
)
from catalog.store import CatalogStore
from catalog.titles import canonical_title_key, is_likely_non_game
from db.utils import is_unique_violation, unique_violation_mentions, upsert_with_race_recovery
from helpers import encode_name_list, has_text_value
from igdb.client import IGDBHit
from igdb.matching import ExternalMatchResolver

logger = logging.getLogger(__name__)

CONTENT_TYPE_GAME = "game"
CONTENT_TYPE_APP = "app"

_METADATA_FIELDS = ("summary", "genres", "developer", "publisher", "first_release_year")

__all__ = ["CanonicalGameResolver", "GameIdentity"]


@dataclass(frozen=True)
class GameIdentity:
    game_id: int
    external_id: int | None = None
    created: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"game_id": self.game_id, "external_id": self.external_id, "created": self.created}


def _identity(row: Mapping[str, Any], *, created: bool = False) -> GameIdentity:
    return GameIdentity(int(row["id"]), row.get("igdb_game_id"), created)


def metadata_patch(hit: IGDBHit) -> dict[str, Any]:
    """Return the game columns an IGDB hit can fill."""

    return {
        "summary": hit.summary,
        "genres": encode_name_list(hit.genres),
        "developer": hit.developer,
        "publisher": hit.publisher,
        "first_release_year": hit.first_release_year,
        "cover_url": hit.cover_url,
    }


class CanonicalGameResolver:
    """Map raw titles onto rows of ``games``.

    A title whose key already belongs to an anchored game returns without
    touching IGDB. Everything else goes through the external matcher and
    lands on an existing row (external id first, title key second) or a new
    one. Lost insert races re-read the winner instead of failing.
    """

    def __init__(self, store: CatalogStore, matcher: ExternalMatchResolver | None = None) -> None:
        self._store = store
        self._matcher = matcher

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def matcher(self) -> ExternalMatchResolver | None:
        return self._matcher

    def resolve(self, raw_title: str | None, platform_hint: str | None = None) -> GameIdentity:
        title = str(raw_title or "").strip()
        key = canonical_title_key(title)
        if not key:
            raise InvalidTitleError("title must not be blank")
        try:
            return self._resolve(title, key, platform_hint)
        except SQLAlchemyError as exc:
            raise ResolutionError(
                f"store error while resolving game: {exc}", raw_title=title, platform_key=platform_hint
            ) from exc

    def _resolve(self, title: str, key: str, platform_key: str | None) -> GameIdentity:
        existing = self._store.find_game_by_title_key(key)
        if existing is not None and existing["igdb_game_id"] is not None:
            return _identity(existing)

        if is_likely_non_game(title, platform_key):
            logger.debug("Skipping IGDB lookup for non-game title %r", title)
            return self._ensure_title_only(key, existing, content_type=CONTENT_TYPE_APP)
        if self._matcher is None:
            return self._ensure_title_only(key, existing)

        search_title = self._store.find_search_alias(platform_key, title)
        hit = self._matcher.resolve(title, platform_key=platform_key, search_title=search_title)
        if hit is None:
            return self._ensure_title_only(key, existing)

        identity = self._apply_hit(hit, key, existing)
        if identity.external_id is not None:
            self._store.record_title_key(key, identity.game_id)
        return identity

    def ensure_title_only(self, raw_title: str | None) -> GameIdentity:
        """Return the game stored under the title's key, creating a bare row."""

        key = canonical_title_key(raw_title)
        if not key:
            raise InvalidTitleError("title must not be blank")
        return self._ensure_title_only(key, self._store.find_game_by_title_key(key))

    def _ensure_title_only(
        self,
        key: str,
        existing: Mapping[str, Any] | None,
        *,
        content_type: str | None = None,
    ) -> GameIdentity:
        if existing is not None:
            return _identity(existing)

        def insert() -> GameIdentity:
            game_id = self._store.insert_game({"canonical_title": key, "content_type": content_type})
            logger.info("Created title-only game %s for %r", game_id, key)
            return GameIdentity(game_id, None, created=True)

        def reread(_exc: IntegrityError) -> GameIdentity | None:
            row = self._store.find_game_by_title_key(key)
            return _identity(row) if row is not None else None

        return upsert_with_race_recovery(insert, reread, label=f"game title {key!r}")

    def _apply_hit(
        self, hit: IGDBHit, key: str, existing: Mapping[str, Any] | None
    ) -> GameIdentity:
        patch = metadata_patch(hit)
        official_key = canonical_title_key(hit.title) or key

        by_external = self._store.find_game_by_external_id(hit.igdb_game_id)
        if by_external is not None:
            self._merge_metadata(by_external, patch)
            return _identity(by_external)

        by_title = self._store.find_game_by_title_key(official_key)
        if by_title is None and existing is not None:
            # A title-only row stored under the raw spelling takes the official name.
            by_title = existing
        if by_title is not None:
            return self._attach_hit(by_title, hit, patch, official_key)

        values = {
            "canonical_title": official_key,
            "igdb_game_id": hit.igdb_game_id,
            "content_type": CONTENT_TYPE_GAME,
            **patch,
            "images_source": IGDB_IMAGES_SOURCE if has_text_value(hit.cover_url) else None,
        }

        def insert() -> GameIdentity:
            game_id = self._store.insert_game(values)
            logger.info("Created game %s for IGDB %s (%r)", game_id, hit.igdb_game_id, hit.title)
            return GameIdentity(game_id, hit.igdb_game_id, created=True)

        def reread(exc: IntegrityError) -> GameIdentity | None:
            row = self._store.find_game_by_external_id(hit.igdb_game_id)
            if row is not None:
                self._merge_metadata(row, patch)
                return _identity(row)
            row = self._store.find_game_by_title_key(official_key)
            if row is not None:
                return self._attach_hit(row, hit, patch, official_key)
            logger.warning(
                "Unique violation for %r but no racing row found: %s", official_key, exc.orig
            )
            return None

        return upsert_with_race_recovery(insert, reread, label=f"game IGDB {hit.igdb_game_id}")

    def attach_external_match(self, row: Mapping[str, Any], hit: IGDBHit) -> GameIdentity:
        """Apply ``hit`` to an existing game row.

        When another game already holds the IGDB id, that game is returned
        and ``row`` is left untouched so the caller can merge the two.
        """

        patch = metadata_patch(hit)
        holder = self._store.find_game_by_external_id(hit.igdb_game_id)
        if holder is not None:
            self._merge_metadata(holder, patch)
            return _identity(holder)
        official_key = canonical_title_key(hit.title) or row["canonical_title"]
        return self._attach_hit(row, hit, patch, official_key)

    def _attach_hit(
        self,
        row: Mapping[str, Any],
        hit: IGDBHit,
        patch: Mapping[str, Any],
        official_key: str,
    ) -> GameIdentity:
        current_external = row.get("igdb_game_id")
        if current_external is not None and current_external != hit.igdb_game_id:
            # The row's own anchor stands; only fill gaps it has.
            self._merge_metadata(row, patch, fill_only=True)
            return _identity(row)

        changes: dict[str, Any] = {"igdb_game_id": hit.igdb_game_id, "content_type": CONTENT_TYPE_GAME}
        if row["canonical_title"] != official_key:
            changes["canonical_title"] = official_key
        changes.update(self._metadata_changes(row, patch))
        try:
            self._store.update_game(row["id"], changes)
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            if unique_violation_mentions(exc, "igdb_game_id"):
                winner = self._store.find_game_by_external_id(hit.igdb_game_id)
                if winner is None:
                    raise
                logger.debug("IGDB %s claimed concurrently by game %s", hit.igdb_game_id, winner["id"])
                self._merge_metadata(winner, patch)
                return _identity(winner)
            # Official name already taken by another row: anchor without renaming.
            changes.pop("canonical_title", None)
            self._store.update_game(row["id"], changes)
        if row["canonical_title"] != official_key:
            self._store.record_title_key(row["canonical_title"], row["id"])
        return GameIdentity(int(row["id"]), hit.igdb_game_id)

    def _metadata_changes(
        self, row: Mapping[str, Any], patch: Mapping[str, Any], *, fill_only: bool = False
    ) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for field in _METADATA_FIELDS:
            value = patch.get(field)
            if value is None or value == "":
                continue
            current = row.get(field)
            if fill_only and current not in (None, ""):
                continue
            if current != value:
                changes[field] = value
        cover_url = patch.get("cover_url")
        if (
            not fill_only
            and has_text_value(cover_url)
            and cover_url != row.get("cover_url")
            and should_overwrite_cover(row.get("cover_url"), row.get("images_source"))
        ):
            changes["cover_url"] = cover_url
            changes["images_source"] = IGDB_IMAGES_SOURCE
        return changes

    def _merge_metadata(
        self, row: Mapping[str, Any], patch: Mapping[str, Any], *, fill_only: bool = False
    ) -> None:
        changes = self._metadata_changes(row, patch, fill_only=fill_only)
        if changes:
            self._store.update_game(row["id"], changes)

    def pin_external_id(self, game_id: int, igdb_game_id: int) -> GameIdentity:
        """Anchor ``game_id`` to an IGDB record chosen by hand.

        Identity fields and the cover are replaced outright. The pin is
        refused when another game already holds ``igdb_game_id``; merge the
        two games instead.
        """

        game = self._store.get_game(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        holder = self._store.find_game_by_external_id(igdb_game_id)
        if holder is not None and holder["id"] != game_id:
            raise IdentityConflictError(igdb_game_id, holder["id"])
        if self._matcher is None:
            raise ResolutionError(
                "no external catalog configured", raw_title=game["canonical_title"], platform_key=None
            )
        hit = self._matcher.fetch_by_id(igdb_game_id)
        if hit is None:
            raise GameNotFoundError(igdb_game_id)

        patch = metadata_patch(hit)
        changes: dict[str, Any] = {
            field: patch[field] for field in _METADATA_FIELDS if patch.get(field) is not None
        }
        changes["igdb_game_id"] = hit.igdb_game_id
        changes["content_type"] = CONTENT_TYPE_GAME
        if has_text_value(hit.cover_url):
            changes["cover_url"] = hit.cover_url
            changes["images_source"] = IGDB_IMAGES_SOURCE
        official_key = canonical_title_key(hit.title)
        renamed = bool(official_key) and official_key != game["canonical_title"]
        if renamed:
            changes["canonical_title"] = official_key
        try:
            renamed = self._apply_pin(game_id, changes)
        except IntegrityError as exc:
            if not unique_violation_mentions(exc, "igdb_game_id"):
                raise
            holder = self._store.find_game_by_external_id(hit.igdb_game_id)
            if holder is None:
                raise
            raise IdentityConflictError(hit.igdb_game_id, holder["id"]) from exc
        if renamed:
            self._store.record_title_key(game["canonical_title"], game_id)
        logger.info("Pinned game %s to IGDB %s (%r)", game_id, igdb_game_id, hit.title)
        propagate_game_covers(self._store, game_ids=[game_id])
        return GameIdentity(game_id, hit.igdb_game_id)

    def _apply_pin(self, game_id: int, changes: dict[str, Any]) -> bool:
        """Write ``changes``, keeping the old title when the new one is taken."""

        try:
            self._store.update_game(game_id, changes)
        except IntegrityError as exc:
            if "canonical_title" not in changes or not unique_violation_mentions(exc, "canonical_title"):
                raise
            changes.pop("canonical_title")
            self._store.update_game(game_id, changes)
            return False
        return "canonical_title" in changes
