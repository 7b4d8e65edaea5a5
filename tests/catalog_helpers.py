from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from db.schema import games, portfolio_entries
from igdb.client import IGDBHit


def make_hit(igdb_game_id: int, title: str, **fields: Any) -> IGDBHit:
    fields.setdefault('cover_url', f'https://images.igdb.com/igdb/image/upload/t_cover_big/co{igdb_game_id}.jpg')
    return IGDBHit(igdb_game_id=igdb_game_id, title=title, **fields)


class FakeSearchClient:
    """In-memory stand-in for the IGDB client that records every call."""

    def __init__(self, results=None, *, slugs=None, by_id=None, error: Exception | None = None):
        self.results: dict[str, list[IGDBHit]] = dict(results or {})
        self.slugs: dict[str, list[IGDBHit]] = dict(slugs or {})
        self.by_id: dict[int, IGDBHit] = dict(by_id or {})
        self.error = error
        self.calls: list[tuple[str, Any]] = []

    def search_games(self, query, *, limit=5):
        self.calls.append(('search', query))
        if self.error is not None:
            raise self.error
        return list(self.results.get(query, []))[:limit]

    def fetch_by_slug(self, slug):
        self.calls.append(('slug', slug))
        if self.error is not None:
            raise self.error
        return list(self.slugs.get(slug, []))

    def fetch_game_by_id(self, igdb_game_id):
        self.calls.append(('id', igdb_game_id))
        if self.error is not None:
            raise self.error
        return self.by_id.get(int(igdb_game_id))

    @property
    def searches(self) -> list[str]:
        return [value for kind, value in self.calls if kind == 'search']


def seed_game(store, title, *, igdb_game_id=None, cover_url=None, images_source=None, **extra) -> int:
    return store.insert_game(
        {
            'canonical_title': title,
            'igdb_game_id': igdb_game_id,
            'cover_url': cover_url,
            'images_source': images_source,
            **extra,
        }
    )


def seed_release(store, game_id, platform_key, *, title='Release', cover_url=None) -> int:
    return store.insert_release(
        {
            'game_id': game_id,
            'platform_key': platform_key,
            'display_title': title,
            'cover_url': cover_url,
        }
    )


def add_row(database, table, **values) -> None:
    with database.begin() as conn:
        conn.execute(table.insert().values(**values))


def add_library_entry(database, user_id, release_id, *, table=portfolio_entries, **values) -> None:
    add_row(database, table, user_id=user_id, release_id=release_id, **values)


def count_rows(database, table, *criteria) -> int:
    stmt = select(func.count()).select_from(table)
    for criterion in criteria:
        stmt = stmt.where(criterion)
    with database.sa_connection() as conn:
        return int(conn.execute(stmt).scalar_one())


def fetch_rows(database, table, *criteria) -> list[dict[str, Any]]:
    stmt = select(table)
    for criterion in criteria:
        stmt = stmt.where(criterion)
    with database.sa_connection() as conn:
        return [dict(row._mapping) for row in conn.execute(stmt.order_by(next(iter(table.c))))]


def game_count(database) -> int:
    return count_rows(database, games)
