import pytest

from catalog.covers import (
    is_placeholder_cover,
    is_usable_cover,
    propagate_game_covers,
    should_overwrite_cover,
)
from tests.catalog_helpers import seed_game, seed_release

IGDB_COVER = 'https://images.igdb.com/igdb/image/upload/t_cover_big/co72.jpg'


@pytest.mark.parametrize(
    'current, source, expected',
    [
        (None, 'igdb', True),
        ('', None, True),
        ('https://cdn.example.com/unknown.png', 'igdb', True),
        ('https://cdn.example.com/placeholder/cover.jpg', 'igdb', True),
        (IGDB_COVER, 'igdb', False),
        (IGDB_COVER, 'IGDB-import', False),
        ('https://cdn.example.com/cover.jpg', 'steam', True),
        ('https://cdn.example.com/cover.jpg', None, True),
    ],
)
def test_should_overwrite_cover(current, source, expected):
    assert should_overwrite_cover(current, source) is expected


def test_placeholder_detection():
    assert is_placeholder_cover('https://cdn.example.com/UNKNOWN.PNG') is True
    assert is_placeholder_cover(None) is False
    assert is_usable_cover(IGDB_COVER) is True
    assert is_usable_cover('  ') is False
    assert is_usable_cover('https://cdn.example.com/unknown.png') is False


def test_propagation_fills_only_releases_without_usable_cover(store):
    game_id = seed_game(store, 'Portal 2', igdb_game_id=72, cover_url=IGDB_COVER, images_source='igdb')
    empty = seed_release(store, game_id, 'steam')
    placeholder = seed_release(store, game_id, 'psn', cover_url='https://cdn.example.com/unknown.png')
    own_cover = seed_release(store, game_id, 'xbox', cover_url='https://cdn.example.com/xbox.jpg')

    report = propagate_game_covers(store)

    assert report.releases_updated == 2
    assert report.updates == [{'game_id': game_id, 'release_ids': [empty, placeholder], 'cover_url': IGDB_COVER}]
    assert store.get_release(empty)['cover_url'] == IGDB_COVER
    assert store.get_release(placeholder)['cover_url'] == IGDB_COVER
    assert store.get_release(own_cover)['cover_url'] == 'https://cdn.example.com/xbox.jpg'

    again = propagate_game_covers(store)
    assert again.releases_updated == 0


def test_propagation_dry_run_and_game_filter(store):
    first = seed_game(store, 'Portal 2', cover_url=IGDB_COVER)
    second = seed_game(store, 'Celeste', cover_url='https://cdn.example.com/celeste.jpg')
    placeholder_game = seed_game(store, 'Braid', cover_url='https://cdn.example.com/unknown.png')
    first_release = seed_release(store, first, 'steam')
    seed_release(store, second, 'steam')
    braid_release = seed_release(store, placeholder_game, 'steam')

    planned = propagate_game_covers(store, game_ids=[first, placeholder_game], dry_run=True)

    assert planned.games_scanned == 1
    assert planned.releases_updated == 1
    assert store.get_release(first_release)['cover_url'] is None
    assert store.get_release(braid_release)['cover_url'] is None
    assert propagate_game_covers(store, game_ids=[]).games_scanned == 0


def test_bounded_propagation_works_through_games_in_slices(store):
    done = seed_game(store, 'Braid', cover_url='https://cdn.example.com/braid.jpg')
    seed_release(store, done, 'steam', cover_url='https://cdn.example.com/braid-steam.jpg')
    first = seed_game(store, 'Portal 2', cover_url=IGDB_COVER)
    second = seed_game(store, 'Celeste', cover_url='https://cdn.example.com/celeste.jpg')
    first_release = seed_release(store, first, 'steam')
    second_release = seed_release(store, second, 'psn', cover_url='https://cdn.example.com/placeholder.png')

    runs = [propagate_game_covers(store, limit=1) for _ in range(3)]

    assert [run.updates[0]['game_id'] if run.updates else None for run in runs] == [first, second, None]
    assert runs[0].to_dict()['limit'] == 1
    assert store.get_release(first_release)['cover_url'] == IGDB_COVER
    assert store.get_release(second_release)['cover_url'] == 'https://cdn.example.com/celeste.jpg'
