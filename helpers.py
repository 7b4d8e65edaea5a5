"""Small value-coercion helpers shared by the catalog, IGDB and dedupe layers.

Rows coming back from SQLAlchemy, pandas frames and IGDB payloads disagree on
how "missing" is spelled (``None``, ``NaN``, ``""``, the string ``"nan"``).
Everything here folds those spellings into one answer.
"""

from __future__ import annotations

import json
import numbers
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import pandas as pd


__all__ = [
    "clean_text",
    "coerce_int",
    "encode_name_list",
    "has_text_value",
    "isoformat_utc",
    "name_list",
    "release_year_from_timestamp",
    "unique_names",
]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # pd.isna on list-likes returns an array
        return False


def clean_text(value: Any) -> str:
    """Return ``value`` as stripped text, ``""`` for null-ish input."""

    if isinstance(value, str):
        return value.strip()
    if _is_missing(value):
        return ""
    return str(value).strip()


def has_text_value(value: Any) -> bool:
    """Return ``True`` when ``value`` holds usable text."""

    text = clean_text(value)
    return bool(text) and text.lower() != "nan"


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an ``int`` or ``None`` when it is not integral."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        if _is_missing(value) or not float(value).is_integer():
            return None
        return int(value)
    text = clean_text(value)
    if text.endswith(".0"):
        text = text[:-2]
    try:
        return int(text)
    except ValueError:
        return None


def unique_names(values: Iterable[Any]) -> list[str]:
    """Strip and de-duplicate ``values`` case-insensitively, keeping order."""

    seen: set[str] = set()
    names: list[str] = []
    for value in values:
        text = clean_text(value)
        if text and text.casefold() not in seen:
            seen.add(text.casefold())
            names.append(text)
    return names


def name_list(value: Any) -> list[str]:
    """Flatten a comma string, a scalar or a list of ``{"name": ...}`` objects."""

    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if not isinstance(value, Iterable):
        return [] if _is_missing(value) else [str(value)]
    names = []
    for element in value:
        if isinstance(element, Mapping):
            element = element.get("name")
            if not isinstance(element, str):
                continue
        text = clean_text(element)
        if text:
            names.append(text)
    return names


def release_year_from_timestamp(value: Any) -> int | None:
    """Return the UTC calendar year of a unix ``value`` or ``None``."""

    try:
        timestamp = float(value)
    except (TypeError, ValueError):
        return None
    if not timestamp > 0:
        return None
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).year
    except (OverflowError, OSError, ValueError):
        return None


def isoformat_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def encode_name_list(values: Iterable[str] | None) -> str | None:
    """Serialize ``values`` as a JSON array, ``None`` when nothing is left."""

    names = unique_names(values or [])
    return json.dumps(names, ensure_ascii=False) if names else None
