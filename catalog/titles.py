"""Title cleaning and identity keys for catalog matching.

Everything here is a pure string transform. ``clean_title_for_search`` and
friends aggressively rewrite a title so that external catalog searches have a
chance of hitting; they are never used to decide identity on their own.
``canonical_title_key`` is the deliberately conservative key compared for
uniqueness.
"""

from __future__ import annotations

import re
from typing import Final

__all__ = [
    "PLATFORM_XBOX",
    "canonical_title_key",
    "clean_title_for_platform",
    "clean_title_for_search",
    "clean_title_for_xbox",
    "de_mash_title",
    "expand_abbreviations_for_search",
    "extract_year_from_title",
    "is_likely_non_game",
    "library_title_key",
    "normalize_edition_words",
    "normalize_platform_label",
    "normalize_separators",
    "slugify_for_igdb",
    "split_known_mashes",
    "strip_brand_prefixes",
    "strip_platform_suffixes",
    "strip_trademarks",
    "title_case_loose",
    "tokenize",
]

PLATFORM_XBOX: Final[str] = "xbox"

_WHITESPACE_RE = re.compile(r"\s+")
_TRADEMARK_RE = re.compile("[\u2122\u00ae\u00a9\u24b8\u24c7]")

_PROTECT_OPEN = "\ue000"
_PROTECT_CLOSE = "\ue001"
_TWO_K_RE = re.compile(r"\b2K(\d{1,2})\b", re.IGNORECASE)
_TWO_K_PROTECTED_RE = re.compile(f"{_PROTECT_OPEN}(\\d{{1,2}}){_PROTECT_CLOSE}")
_TWO_K_SPLIT_RE = re.compile(r"\b2 K (\d{1,2})\b", re.IGNORECASE)
_DE_MASH_STEPS = (
    (re.compile(r"([a-z])([A-Z])"), r"\1 \2"),
    (re.compile(r"([A-Z])([A-Z][a-z])"), r"\1 \2"),
    (re.compile(r"([A-Za-z])(\d)"), r"\1 \2"),
    (re.compile(r"(\d)([A-Za-z])"), r"\1 \2"),
)

_KNOWN_MASHES = (
    (re.compile("SuperStreetFighter", re.IGNORECASE), "Super Street Fighter"),
    (re.compile("RainbowSix", re.IGNORECASE), "Rainbow Six"),
    (re.compile("TigerWoodsPGA", re.IGNORECASE), "Tiger Woods PGA"),
    (re.compile("PGATOUR", re.IGNORECASE), "PGA Tour"),
    (re.compile("StreetFighter", re.IGNORECASE), "Street Fighter"),
    (re.compile("TombRaider", re.IGNORECASE), "Tomb Raider"),
    (re.compile("GhostRecon", re.IGNORECASE), "Ghost Recon"),
)

_ROMAN_RANGES = (
    (re.compile(r"\bI\s*-\s*III\b"), "1-3"),
    (re.compile(r"\bII\s*-\s*III\b"), "2-3"),
    (re.compile(r"\bIII\b"), "3"),
    (re.compile(r"\bII\b"), "2"),
)

_SEARCH_ABBREVIATIONS = (
    (re.compile(r"\bgta\b", re.IGNORECASE), "grand theft auto"),
    (re.compile(r"\bult\.", re.IGNORECASE), "ultimate"),
    (re.compile(r"\bpgatour\b", re.IGNORECASE), "pga tour"),
)

_EXPANDED_ABBREVIATIONS = (
    (re.compile(r"\bTC'?s\b", re.IGNORECASE), "Tom Clancy's"),
    (re.compile(r"\bTMNT\b", re.IGNORECASE), "Teenage Mutant Ninja Turtles"),
    (re.compile(r"\bUlt\.", re.IGNORECASE), "Ultimate"),
    (re.compile(r"\bGTA\b", re.IGNORECASE), "Grand Theft Auto"),
    (re.compile(r"\bOOTS\b", re.IGNORECASE), "Out of the Shadows"),
    (re.compile(r"\bFS\b", re.IGNORECASE), "Future Soldier"),
    (re.compile(r"\bTFD\b", re.IGNORECASE), "The 40th Day"),
)

_PLATFORM_SUFFIXES = (
    re.compile(r"\b(PS5|PS4|PS3|PS2|PS1|PSX|PS Vita|Vita)\b", re.IGNORECASE),
    re.compile(r"\b(Xbox Series X\|S|Series X\|S|Xbox One|Xbox 360|Xbox)\b", re.IGNORECASE),
    re.compile(r"\b(PC|Steam)\b", re.IGNORECASE),
)

_BRAND_PREFIXES = (
    re.compile(r"^\s*EA\s*SPORTS?\s+", re.IGNORECASE),
    re.compile(r"^\s*TC'?s\s+", re.IGNORECASE),
)

_SEARCH_TAILS = (
    (re.compile(r"\(.*?\)"), " "),
    (re.compile(r"\[.*?\]"), " "),
    (re.compile(r":\s*(campaign edition).*", re.IGNORECASE), ""),
    (re.compile(r":\s*(tfd)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(x[- ]?factor edition)\b", re.IGNORECASE), " "),
    (re.compile(r"\bstarring\b.*$", re.IGNORECASE), ""),
)
_EDITION_TAIL_RE = re.compile(
    r"\b(remastered|definitive|ultimate|complete|anniversary|edition)\b.*$",
    re.IGNORECASE,
)

_XBOX_CRUFT = (
    re.compile(r"\b(xbox one|xbox series x|xbox series s|series x|series s|xbox)\b", re.IGNORECASE),
    re.compile(r"\b(bundle|pack|add[- ]on|dlc)\b", re.IGNORECASE),
    re.compile(r"\b(ps5|ps4)\b", re.IGNORECASE),
)

_NON_GAME_RE = re.compile(
    r"\b(amazon|netflix|hulu|spotify|iheartradio|movies|tv|groove|app|demo|trial"
    r"|beta|pack|add-on|dlc|soundtrack)\b|add\s+on|season\s+pass",
    re.IGNORECASE,
)
_XBOX_NON_GAME_RE = re.compile(
    r"\b(iheartradio|movies\s*&\s*tv|amazon\s+instant\s+video|netflix|hulu|spotify"
    r"|groove\s+music|instant\s+video)\b|amazon\s+instant|movies\s*&\s*tv",
    re.IGNORECASE,
)

_FOUR_DIGIT_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
_SHORT_YEAR_RE = re.compile(r"\b(\d{2})\b")

_LIBRARY_EDITION_RE = re.compile(r"\b(edition|deluxe|ultimate|definitive|remastered|complete)\b")

_PLATFORM_LABELS = (
    (re.compile(r"\bps\s*5\b|playstation\s*5"), "PS5"),
    (re.compile(r"\bps\s*4\b|playstation\s*4"), "PS4"),
    (re.compile(r"\bps\s*3\b|playstation\s*3"), "PS3"),
    (re.compile(r"\bps\s*2\b|playstation\s*2"), "PS2"),
    (re.compile(r"\bps\s*vr\b|playstation\s*vr"), "PSVR"),
    (re.compile(r"\bps\s*vita\b|\bvita\b"), "PS Vita"),
    (re.compile(r"\bpsp\b"), "PSP"),
    (re.compile(r"\bps\s*1\b|\bpsx\b|\bps\s*one\b|^playstation$"), "PS1"),
    (re.compile(r"xbox\s*series|\bxsx\b|\bxss\b"), "Xbox Series X|S"),
    (re.compile(r"xbox\s*one|\bxb1\b"), "Xbox One"),
    (re.compile(r"xbox\s*360|\bx360\b"), "Xbox 360"),
    (re.compile(r"^pc$|windows|steam"), "PC"),
)


def _collapse(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def strip_trademarks(value: str | None) -> str:
    """Remove trademark/copyright glyphs, including their enclosed variants."""

    return _collapse(_TRADEMARK_RE.sub("", value or ""))


def de_mash_title(value: str) -> str:
    """Insert spaces into run-together titles without splitting ``2K9``-style tokens."""

    text = _TWO_K_RE.sub(lambda m: f"{_PROTECT_OPEN}{m.group(1)}{_PROTECT_CLOSE}", value or "")
    for pattern, replacement in _DE_MASH_STEPS:
        text = pattern.sub(replacement, text)
    text = _TWO_K_PROTECTED_RE.sub(r"2K\1", text)
    return _TWO_K_SPLIT_RE.sub(r"2K\1", text)


def split_known_mashes(value: str) -> str:
    text = value or ""
    for pattern, replacement in _KNOWN_MASHES:
        text = pattern.sub(replacement, text)
    return text


def normalize_separators(value: str) -> str:
    text = re.sub("[•·∙]", " ", value or "")
    text = re.sub("[–—]", "-", text)
    text = text.replace("&", " and ")
    return _collapse(text)


def _normalize_roman_ranges(value: str) -> str:
    text = value
    for pattern, replacement in _ROMAN_RANGES:
        text = pattern.sub(replacement, text)
    return text


def _expand_search_abbreviations(value: str) -> str:
    text = value
    for pattern, replacement in _SEARCH_ABBREVIATIONS:
        text = pattern.sub(replacement, text)
    return text


def expand_abbreviations_for_search(value: str | None) -> str:
    """Expand franchise shorthand (``TC's``, ``GTA``, ``TMNT`` ...) for searching."""

    text = value or ""
    for pattern, replacement in _EXPANDED_ABBREVIATIONS:
        text = pattern.sub(replacement, text)
    return text


def strip_platform_suffixes(value: str) -> str:
    text = value or ""
    for pattern in _PLATFORM_SUFFIXES:
        text = pattern.sub(" ", text)
    return _collapse(text)


def strip_brand_prefixes(value: str) -> str:
    text = value or ""
    for pattern in _BRAND_PREFIXES:
        text = pattern.sub("", text)
    return text.strip()


def normalize_edition_words(value: str) -> str:
    return re.sub(r"\bGOTY\b", "Game of the Year", value or "", flags=re.IGNORECASE).strip()


def title_case_loose(value: str) -> str:
    """Title-case ``value`` only when it has no lowercase letters at all."""

    if not value or re.search(r"[a-z]", value):
        return value
    return re.sub(r"\b[a-z]", lambda m: m.group(0).upper(), value.lower())


def clean_title_for_search(title: str | None) -> str:
    """Return the fully cleaned search form of ``title``.

    Platform suffixes are removed before de-mashing as well as after, so a
    trailing ``PS4`` is not split into ``PS 4`` and left behind.
    """

    base = de_mash_title(strip_platform_suffixes(strip_trademarks(title)))
    text = split_known_mashes(normalize_separators(base))
    text = _expand_search_abbreviations(_normalize_roman_ranges(text))
    text = strip_platform_suffixes(text)
    for pattern, replacement in _SEARCH_TAILS:
        text = pattern.sub(replacement, text)
    text = _collapse(text)
    without_edition = _collapse(_EDITION_TAIL_RE.sub("", text))
    # Titles that start with an edition word would otherwise vanish entirely.
    return without_edition or text


def clean_title_for_xbox(title: str | None) -> str:
    """Search form for console-network-b titles, which carry storefront packaging words."""

    text = clean_title_for_search(title)
    for pattern in _XBOX_CRUFT:
        text = pattern.sub(" ", text)
    return _collapse(de_mash_title(normalize_separators(text)))


def clean_title_for_platform(title: str | None, platform_key: str | None = None) -> str:
    if (platform_key or "").strip().lower() == PLATFORM_XBOX:
        return clean_title_for_xbox(title)
    return clean_title_for_search(title)


def canonical_title_key(title: str | None) -> str:
    """Return the uniqueness key for a title.

    Only trademark glyphs, apostrophe variants and whitespace are normalized;
    casing and wording are preserved.
    """

    text = strip_trademarks(title).replace("\u2019", "'")
    text = re.sub(r"\bJr\.?'?s\b", "Jr's", text, flags=re.IGNORECASE)
    return _collapse(text)


def library_title_key(title: str | None) -> str:
    """Loose key used to spot duplicate releases inside one user's library."""

    text = _TRADEMARK_RE.sub("", (title or "").lower())
    text = re.sub("[:\\-–—]", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    text = _LIBRARY_EDITION_RE.sub(" ", text)
    return _collapse(text)


def slugify_for_igdb(value: str | None) -> str:
    text = _TRADEMARK_RE.sub("", (value or "").lower())
    text = text.replace("&", "and")
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def is_likely_non_game(title: str | None, platform_key: str | None = None) -> bool:
    """Return ``True`` for media apps, demos and add-ons that are not games."""

    text = (title or "").strip().lower()
    if not text:
        return False
    if (platform_key or "").strip().lower() == PLATFORM_XBOX and _XBOX_NON_GAME_RE.search(text):
        return True
    return bool(_NON_GAME_RE.search(text))


def extract_year_from_title(title: str | None) -> int | None:
    """Return the release year implied by a title (``2007``, ``2K9``, ``NHL 22``)."""

    text = (title or "").strip()
    four = _FOUR_DIGIT_YEAR_RE.search(text)
    if four:
        return int(four.group(0))
    two_k = _TWO_K_RE.search(text)
    if two_k:
        return 2000 + int(two_k.group(1))
    short = _SHORT_YEAR_RE.search(text)
    if short:
        number = int(short.group(1))
        return 2000 + number if number <= 29 else 1900 + number
    return None


def tokenize(value: str | None) -> list[str]:
    """Lowercase alphanumeric tokens of ``value`` in first-seen order."""

    text = _TRADEMARK_RE.sub("", (value or "").lower())
    tokens: list[str] = []
    for token in re.split(r"[^a-z0-9]+", text):
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def normalize_platform_label(value: str | None) -> str | None:
    """Map a raw hardware string onto a canonical platform label."""

    text = _collapse((value or "").lower())
    if not text:
        return None
    for pattern, label in _PLATFORM_LABELS:
        if pattern.search(text):
            return label
    return (value or "").strip() or None
