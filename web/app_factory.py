"""Flask application factory: logging, database and catalog services."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Mapping

from flask import Flask

import config
from catalog.services import build_igdb_client, build_services, open_database
from db.utils import DatabaseEngine, get_db, set_fallback_connection
from igdb.matching import GameSearchClient
from routes import catalog as catalog_routes

logger = logging.getLogger(__name__)


_DEBUG_FLAGS = {'1', 'true', 'yes', 'on'}


def _determine_log_level(flask_app: Flask) -> int:
    explicit = str(flask_app.config.get('LOG_LEVEL') or os.environ.get('LOG_LEVEL', '')).strip()
    if explicit:
        level = logging.getLevelName(explicit.upper())
        if isinstance(level, int):
            return level
    if flask_app.debug or str(flask_app.config.get('ENV', '')).lower() == 'development':
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in _DEBUG_FLAGS:
        return logging.DEBUG
    return logging.INFO


def _file_handler(log_path: Path) -> dict[str, Any] | None:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    return {
        'class': 'logging.handlers.RotatingFileHandler',
        'formatter': 'standard',
        'level': logging.DEBUG,
        'filename': os.fspath(log_path),
        'maxBytes': 5 * 1024 * 1024,
        'backupCount': 5,
        'encoding': 'utf-8',
    }


def _configure_logging(flask_app: Flask) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(flask_app.config.get('LOG_FILE') or config.LOG_FILE)

    handlers: dict[str, dict[str, Any]] = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
            'level': log_level,
            'stream': 'ext://sys.stdout',
        },
    }
    file_handler = _file_handler(log_path)
    if file_handler is not None:
        handlers['file'] = file_handler

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': handlers,
            'root': {'level': log_level, 'handlers': list(handlers)},
        }
    )
    flask_app.logger.setLevel(log_level)
    if file_handler is None:
        logger.warning('Log directory %s is not writable; logging to console only', log_path.parent)


def create_app(
    *,
    database: DatabaseEngine | None = None,
    search_client: GameSearchClient | None = None,
    settings: Mapping[str, Any] | None = None,
) -> Flask:
    """Return a configured Flask application instance.

    ``database`` defaults to ``config.DB_DSN``; ``search_client`` defaults
    to an IGDB client when credentials are configured.
    """

    flask_app = Flask(__name__)
    flask_app.config.update(settings or {})
    _configure_logging(flask_app)

    if database is None:
        database = open_database()
    if search_client is None and config.validate_igdb_credentials():
        search_client = build_igdb_client()
    set_fallback_connection(database)

    def _build(db: Any):
        return build_services(db, client=search_client)

    catalog_routes.configure({'get_db': get_db, 'build_services': _build})
    flask_app.register_blueprint(catalog_routes.catalog_blueprint)
    logger.info(
        'Catalog app ready (database=%s, igdb=%s)',
        database.dialect_name,
        'on' if search_client is not None else 'off',
    )
    return flask_app
