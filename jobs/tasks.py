"""Celery tasks running the catalog repair jobs in the background."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from celery import Celery
from celery.app.task import Task

import config
from catalog.backfill import backfill_game_identities
from catalog.covers import propagate_game_covers
from catalog.services import CatalogServices, build_igdb_client, build_services, open_database
from db.utils import get_db
from dedupe.jobs import (
    merge_by_platform_and_game,
    merge_by_shared_external_id,
    merge_library_title_duplicates,
)

logger = logging.getLogger(__name__)

celery_app = Celery('game_catalog')


def _configure_celery(app: Celery) -> None:
    eager = config.CELERY_TASK_ALWAYS_EAGER
    app.conf.update(
        broker_url=config.CELERY_BROKER_URL,
        result_backend=config.CELERY_RESULT_BACKEND,
        task_track_started=True,
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        task_always_eager=eager,
        task_eager_propagates=eager,
    )


_configure_celery(celery_app)


def _services(*, with_search: bool = False) -> CatalogServices:
    database = get_db(open_database)
    client = build_igdb_client() if with_search and config.validate_igdb_credentials() else None
    return build_services(database, client=client)


def _log_start(task: Task, name: str, **params: Any) -> None:
    logger.info('Task %s (%s) started with %s', name, getattr(task.request, 'id', None), params)


@celery_app.task(name='catalog.merge_games', bind=True)
def merge_games_task(
    self: Task, *, dry_run: bool = True, limit_groups: Optional[int] = None
) -> dict[str, Any]:
    _log_start(self, 'merge_games', dry_run=dry_run, limit_groups=limit_groups)
    services = _services()
    report = merge_by_shared_external_id(
        services.store, dry_run=dry_run, limit_groups=limit_groups, merger=services.merger
    )
    return report.to_dict()


@celery_app.task(name='catalog.merge_releases', bind=True)
def merge_releases_task(
    self: Task, *, dry_run: bool = True, limit_groups: Optional[int] = None
) -> dict[str, Any]:
    _log_start(self, 'merge_releases', dry_run=dry_run, limit_groups=limit_groups)
    services = _services()
    report = merge_by_platform_and_game(
        services.store, dry_run=dry_run, limit_groups=limit_groups, merger=services.merger
    )
    return report.to_dict()


@celery_app.task(name='catalog.merge_library_duplicates', bind=True)
def merge_library_duplicates_task(
    self: Task, *, user_id: str, keys: Iterable[str], dry_run: bool = True
) -> dict[str, Any]:
    _log_start(self, 'merge_library_duplicates', user_id=user_id, dry_run=dry_run)
    services = _services()
    report = merge_library_title_duplicates(
        services.store, user_id, list(keys), dry_run=dry_run, merger=services.merger
    )
    return report.to_dict()


@celery_app.task(name='catalog.backfill', bind=True)
def backfill_task(
    self: Task, *, limit: Optional[int] = None, dry_run: bool = False
) -> dict[str, Any]:
    bounded = config.clamp_limit(limit, config.BACKFILL_DEFAULT_LIMIT, config.BACKFILL_MAX_LIMIT)
    _log_start(self, 'backfill', limit=bounded, dry_run=dry_run)
    services = _services(with_search=True)
    report = backfill_game_identities(
        services.games, services.merger, limit=bounded, dry_run=dry_run
    )
    return report.to_dict()


@celery_app.task(name='catalog.propagate_covers', bind=True)
def propagate_covers_task(
    self: Task, *, limit: Optional[int] = None, dry_run: bool = False
) -> dict[str, Any]:
    bounded = config.clamp_limit(
        limit, config.COVER_PROPAGATION_DEFAULT_LIMIT, config.COVER_PROPAGATION_MAX_LIMIT
    )
    _log_start(self, 'propagate_covers', limit=bounded, dry_run=dry_run)
    report = propagate_game_covers(_services().store, limit=bounded, dry_run=dry_run)
    return report.to_dict()


__all__ = [
    'backfill_task',
    'celery_app',
    'merge_games_task',
    'merge_library_duplicates_task',
    'merge_releases_task',
    'propagate_covers_task',
]
