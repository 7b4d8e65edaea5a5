"""Resolve raw titles against IGDB using ordered search candidates."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from catalog.candidates import build_query_candidates
from catalog.titles import (
    clean_title_for_platform,
    expand_abbreviations_for_search,
    extract_year_from_title,
    slugify_for_igdb,
    tokenize,
)
from igdb.client import IGDBHit, IGDBUnavailableError

logger = logging.getLogger(__name__)

__all__ = [
    "ExternalMatchResolver",
    "GameSearchClient",
    "rank_hits",
    "score_hit",
]


class GameSearchClient(Protocol):
    def search_games(self, query: str, *, limit: int = 5) -> list[IGDBHit]: ...

    def fetch_by_slug(self, slug: str) -> list[IGDBHit]: ...

    def fetch_game_by_id(self, igdb_game_id: int) -> IGDBHit | None: ...


def score_hit(hit: IGDBHit, query: str, *, raw_title: str | None = None) -> int:
    """Score ``hit`` against ``query`` by token overlap plus year bonuses.

    Each query token of two or more characters found in the hit's name is
    worth 10. When the raw title implies a release year, a hit naming that
    year and a hit released that year each earn 100, which is what separates
    annualized franchise entries.
    """

    name_tokens = set(tokenize(hit.title))
    score = sum(10 for token in tokenize(query) if len(token) >= 2 and token in name_tokens)

    expected_year = extract_year_from_title(raw_title if raw_title is not None else query)
    if expected_year is not None:
        if str(expected_year) in name_tokens or f"{expected_year % 100:02d}" in name_tokens:
            score += 100
        if hit.first_release_year == expected_year:
            score += 100
    return score


def rank_hits(
    hits: Iterable[IGDBHit], query: str, *, raw_title: str | None = None
) -> list[tuple[IGDBHit, int]]:
    """Return ``hits`` paired with scores, best first; ties keep IGDB order."""

    scored = [(hit, score_hit(hit, query, raw_title=raw_title)) for hit in hits]
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


class ExternalMatchResolver:
    """Find the IGDB record for a raw title, or report a definitive miss.

    Candidates are searched in order and the first non-empty result list
    wins, taking its top entry. When every search comes back empty an exact
    slug lookup is tried once. IGDB being unreachable is reported as a miss.
    """

    def __init__(self, client: GameSearchClient, *, search_limit: int = 5) -> None:
        self._client = client
        self._search_limit = max(1, int(search_limit))

    def resolve(
        self,
        raw_title: str,
        *,
        platform_key: str | None = None,
        search_title: str | None = None,
    ) -> IGDBHit | None:
        source = expand_abbreviations_for_search(search_title or raw_title)
        candidates = build_query_candidates(source, platform_key)
        if not candidates:
            return None

        try:
            for query in candidates:
                results = self._client.search_games(query, limit=self._search_limit)
                if results:
                    logger.debug("IGDB hit for %r via %r: %s", raw_title, query, results[0].igdb_game_id)
                    return results[0]

            slug = slugify_for_igdb(clean_title_for_platform(source, platform_key))
            if slug:
                slug_results = self._client.fetch_by_slug(slug)
                if slug_results:
                    logger.debug("IGDB slug hit for %r via %r", raw_title, slug)
                    return slug_results[0]
        except IGDBUnavailableError as exc:
            logger.warning("IGDB unavailable while resolving %r: %s", raw_title, exc)
            return None

        logger.info("IGDB miss for %r (tried %s)", raw_title, candidates)
        return None

    def search_ranked(
        self, query: str, *, platform_key: str | None = None, limit: int | None = None
    ) -> list[tuple[IGDBHit, int]]:
        """Return scored hits for the first candidate of ``query`` that finds any."""

        candidates = build_query_candidates(expand_abbreviations_for_search(query), platform_key)
        search_limit = max(1, int(limit)) if limit else self._search_limit
        try:
            for candidate in candidates:
                results = self._client.search_games(candidate, limit=search_limit)
                if results:
                    return rank_hits(results, candidate, raw_title=query)
        except IGDBUnavailableError as exc:
            logger.warning("IGDB unavailable while searching %r: %s", query, exc)
        return []

    def fetch_by_id(self, igdb_game_id: int) -> IGDBHit | None:
        """Look up one IGDB record; unavailability propagates to the caller."""

        return self._client.fetch_game_by_id(igdb_game_id)
