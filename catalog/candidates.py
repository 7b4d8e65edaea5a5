"""Search-candidate generation for external catalog lookups."""

from __future__ import annotations

from catalog.titles import (
    clean_title_for_platform,
    normalize_edition_words,
    strip_brand_prefixes,
    strip_platform_suffixes,
    title_case_loose,
)

__all__ = ["build_query_candidates"]


def build_query_candidates(raw_title: str | None, platform_key: str | None = None) -> list[str]:
    """Return search strings for ``raw_title``, most likely first.

    The list holds the cleaned title, then progressively more aggressive
    rewrites of it. Exact duplicates and empty strings
    are dropped; a blank title yields an empty list.
    """

    raw = str(raw_title or "").strip()
    if not raw:
        return []

    base = clean_title_for_platform(raw, platform_key)

    without_platform = strip_platform_suffixes(base)
    without_brand = strip_brand_prefixes(without_platform)
    edition_normalized = normalize_edition_words(without_brand)
    title_cased = title_case_loose(edition_normalized)

    candidates: list[str] = []
    for candidate in (base, without_platform, without_brand, edition_normalized, title_cased):
        text = " ".join(candidate.split())
        if text and text not in candidates:
            candidates.append(text)
    return candidates
