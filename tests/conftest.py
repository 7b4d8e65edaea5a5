"""Pytest fixtures shared across the test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from catalog.services import build_services
from catalog.store import CatalogStore
from db import utils as db_utils
from db.schema import ensure_schema
from tests.catalog_helpers import FakeSearchClient


class FrozenClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


@pytest.fixture(autouse=True)
def reset_database_state():
    """Reset cached database handles between tests."""

    db_utils.set_fallback_connection(None)
    yield
    db_utils.set_fallback_connection(None)


def _sqlite_database(path, *, unique_indexes):
    database = db_utils.build_engine_from_dsn(f'sqlite:///{path}')
    ensure_schema(database.engine, unique_indexes=unique_indexes)
    return database


@pytest.fixture
def database(tmp_path):
    database = _sqlite_database(tmp_path / 'catalog.db', unique_indexes=True)
    yield database
    database.dispose()


@pytest.fixture
def legacy_database(tmp_path):
    """A catalog created before the unique indexes existed."""

    database = _sqlite_database(tmp_path / 'legacy.db', unique_indexes=False)
    yield database
    database.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(database, clock):
    return CatalogStore(database, clock=clock)


@pytest.fixture
def legacy_store(legacy_database, clock):
    return CatalogStore(legacy_database, clock=clock)


@pytest.fixture
def search_client():
    return FakeSearchClient()


@pytest.fixture
def services(database, search_client, clock):
    return build_services(database, client=search_client, clock=clock)


@pytest.fixture
def legacy_services(legacy_database, search_client, clock):
    return build_services(legacy_database, client=search_client, clock=clock)
