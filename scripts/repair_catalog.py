#!/usr/bin/env python3
"""Run catalog repair jobs from the command line and print a summary."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any, Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config
from catalog.backfill import backfill_game_identities
from catalog.covers import propagate_game_covers
from catalog.health import catalog_health
from catalog.services import build_igdb_client, build_services, open_database
from db.schema import ensure_unique_indexes
from dedupe.jobs import (
    merge_by_platform_and_game,
    merge_by_shared_external_id,
    merge_library_title_duplicates,
    scan_library_title_duplicates,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dsn", help="database URL (defaults to the configured DB_DSN)")
    parser.add_argument("--verbose", "-v", action="store_true", help="log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("merge-games", "merge games sharing an IGDB id"),
        ("merge-releases", "merge releases sharing a platform and game"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("--apply", action="store_true", help="write changes (default is a dry run)")
        command.add_argument("--limit-groups", type=int, default=None)

    library = sub.add_parser("library-duplicates", help="review or merge one user's duplicates")
    library.add_argument("user_id")
    library.add_argument("--confirm", action="append", default=[], metavar="KEY",
                         help="merge the group with this key (repeatable)")
    library.add_argument("--apply", action="store_true")

    backfill = sub.add_parser("backfill", help="re-resolve games missing an IGDB id or cover")
    backfill.add_argument("--limit", type=int, default=None)
    backfill.add_argument("--dry-run", action="store_true")

    covers = sub.add_parser("propagate-covers", help="copy game covers to releases lacking one")
    covers.add_argument("--limit", type=int, default=None)
    covers.add_argument("--dry-run", action="store_true")

    sub.add_parser("health", help="print catalog health counters")
    sub.add_parser("ensure-indexes", help="apply the catalog unique indexes")
    return parser


def _run(args: argparse.Namespace) -> tuple[dict[str, Any], bool]:
    database = open_database(args.dsn)
    if args.command == "ensure-indexes":
        return {"applied": ensure_unique_indexes(database.engine)}, True

    with_search = args.command == "backfill" and config.validate_igdb_credentials()
    services = build_services(database, client=build_igdb_client() if with_search else None)
    store = services.store

    if args.command == "merge-games":
        report = merge_by_shared_external_id(
            store, dry_run=not args.apply, limit_groups=args.limit_groups, merger=services.merger
        )
        return report.to_dict(), not report.failures
    if args.command == "merge-releases":
        report = merge_by_platform_and_game(
            store, dry_run=not args.apply, limit_groups=args.limit_groups, merger=services.merger
        )
        return report.to_dict(), not report.failures
    if args.command == "library-duplicates":
        if not args.confirm:
            return scan_library_title_duplicates(store, args.user_id), True
        report = merge_library_title_duplicates(
            store, args.user_id, args.confirm, dry_run=not args.apply, merger=services.merger
        )
        return report.to_dict(), not report.failures
    if args.command == "backfill":
        limit = config.clamp_limit(args.limit, config.BACKFILL_DEFAULT_LIMIT, config.BACKFILL_MAX_LIMIT)
        report = backfill_game_identities(
            services.games, services.merger, limit=limit, dry_run=args.dry_run
        )
        return report.to_dict(), report.failed == 0
    if args.command == "propagate-covers":
        limit = config.clamp_limit(
            args.limit, config.COVER_PROPAGATION_DEFAULT_LIMIT, config.COVER_PROPAGATION_MAX_LIMIT
        )
        return propagate_game_covers(store, limit=limit, dry_run=args.dry_run).to_dict(), True
    return catalog_health(store), True


def main(argv: Sequence[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        summary, ok = _run(args)
    except Exception as exc:
        print(f"Catalog repair failed: {exc}")
        raise SystemExit(1)

    print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    if not ok:
        print("Completed with failures; re-run to finish the remaining groups.")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
