"""Per-title driver used by platform sync jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from catalog.errors import CatalogError, InvalidTitleError
from catalog.releases import ReleaseIdentityMapper

logger = logging.getLogger(__name__)

__all__ = ["SyncReport", "map_platform_titles"]


@dataclass
class SyncReport:
    platform_key: str
    total: int = 0
    mapped: int = 0
    created: int = 0
    linked: int = 0
    skipped: int = 0
    failed: int = 0
    release_ids: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform_key": self.platform_key,
            "total": self.total,
            "mapped": self.mapped,
            "created": self.created,
            "linked": self.linked,
            "skipped": self.skipped,
            "failed": self.failed,
            "release_ids": dict(self.release_ids),
            "errors": list(self.errors),
        }


def _item_fields(item: Any) -> tuple[Any, Any, Any]:
    if isinstance(item, Mapping):
        return item.get("native_id"), item.get("title"), item.get("platform_label")
    if isinstance(item, (str, bytes)):
        raise TypeError("sync items are mappings or (native_id, title[, label]) pairs")
    values = tuple(item)
    if len(values) == 2:
        return values[0], values[1], None
    return values[0], values[1], values[2]


def map_platform_titles(
    mapper: ReleaseIdentityMapper,
    platform_key: str,
    items: Iterable[Any],
) -> SyncReport:
    """Map each ``(native_id, title, platform_label)`` item to a release.

    A title that cannot be resolved is counted and reported; the rest of
    the batch keeps going.
    """

    report = SyncReport(platform_key=platform_key)
    for item in items:
        report.total += 1
        try:
            native_id, title, label = _item_fields(item)
        except (TypeError, IndexError):
            report.skipped += 1
            report.errors.append({"item": repr(item), "error": "malformed sync item", "skipped": True})
            logger.warning("Skipping malformed %s sync item %r", platform_key, item)
            continue
        try:
            mapping = mapper.map_release(platform_key, native_id, title, platform_label=label)
        except (InvalidTitleError, ValueError) as exc:
            report.skipped += 1
            report.errors.append({"native_id": native_id, "title": title, "error": str(exc), "skipped": True})
            continue
        except CatalogError as exc:
            report.failed += 1
            report.errors.append({"native_id": native_id, "title": title, "error": str(exc)})
            logger.error("Failed to map %s title %r (%s): %s", platform_key, title, native_id, exc)
            continue
        report.release_ids[str(native_id).strip()] = mapping.release_id
        if mapping.cached:
            report.mapped += 1
        elif mapping.created:
            report.created += 1
        else:
            report.linked += 1
    logger.info(
        "Mapped %d %s titles: %d cached, %d created, %d linked, %d skipped, %d failed",
        report.total,
        platform_key,
        report.mapped,
        report.created,
        report.linked,
        report.skipped,
        report.failed,
    )
    return report
