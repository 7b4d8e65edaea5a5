"""Exceptions raised by the catalog resolvers."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog identity failures."""


class InvalidTitleError(CatalogError, ValueError):
    """Raised when a title is blank after trimming."""


class GameNotFoundError(CatalogError, LookupError):
    def __init__(self, game_id: int) -> None:
        super().__init__(f"game {game_id} does not exist")
        self.game_id = game_id


class IdentityConflictError(CatalogError):
    """Raised when an external id is already held by another game."""

    def __init__(self, igdb_game_id: int, holder_id: int) -> None:
        super().__init__(f"IGDB id {igdb_game_id} already belongs to game {holder_id}")
        self.igdb_game_id = igdb_game_id
        self.holder_id = holder_id


class ResolutionError(CatalogError):
    """An unexpected store failure while resolving one title.

    Carries the raw title and platform so sync callers can report or retry
    the single title without aborting their run.
    """

    def __init__(self, message: str, *, raw_title: str | None, platform_key: str | None) -> None:
        super().__init__(message)
        self.raw_title = raw_title
        self.platform_key = platform_key

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} (title={self.raw_title!r}, platform={self.platform_key!r})"


__all__ = [
    "CatalogError",
    "GameNotFoundError",
    "IdentityConflictError",
    "InvalidTitleError",
    "ResolutionError",
]
