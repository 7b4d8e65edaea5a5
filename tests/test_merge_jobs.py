import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table

from catalog.games import CanonicalGameResolver
from db.schema import (
    DEPENDENT_RELEASE_TABLES,
    ensure_unique_indexes,
    game_title_keys,
    games,
    portfolio_entries,
    psn_title_progress,
    ra_achievement_cache,
    release_enrichment_state,
    release_external_ids,
    releases,
)
from dedupe import merge as merge_module
from dedupe.duplicates import choose_winner, compute_metadata_updates
from dedupe.jobs import (
    JOB_PLATFORM_AND_GAME,
    merge_by_platform_and_game,
    merge_by_shared_external_id,
    merge_library_title_duplicates,
    scan_library_title_duplicates,
)
from tests.catalog_helpers import add_library_entry, add_row, count_rows, fetch_rows, seed_game, seed_release

IGDB_COVER = 'https://images.igdb.com/igdb/image/upload/t_cover_big/co72.jpg'


@pytest.fixture
def duplicated_releases(legacy_database, legacy_store):
    """Three steam releases of one game with overlapping per-user rows."""

    game_id = seed_game(legacy_store, 'Portal 2', igdb_game_id=72, cover_url=IGDB_COVER, images_source='igdb')
    r1 = seed_release(legacy_store, game_id, 'steam')
    r2 = seed_release(legacy_store, game_id, 'steam', cover_url='https://cdn.example.com/unknown.png')
    r3 = seed_release(legacy_store, game_id, 'steam')

    add_library_entry(legacy_database, 'u1', r1)
    add_library_entry(legacy_database, 'u1', r2)
    add_library_entry(legacy_database, 'u2', r3)
    add_library_entry(legacy_database, 'u2', r1)
    add_row(legacy_database, psn_title_progress, user_id='u1', release_id=r2, progress=40)
    add_row(legacy_database, ra_achievement_cache, user_id='u1', release_id=r1, achievement_id='a1')
    add_row(legacy_database, ra_achievement_cache, user_id='u1', release_id=r3, achievement_id='a1')
    add_row(legacy_database, ra_achievement_cache, user_id='u1', release_id=r2, achievement_id='a2')
    legacy_store.insert_mapping_ignore('steam', '620', r1)
    legacy_store.insert_mapping_ignore('steam', '620-alt', r2)
    add_row(legacy_database, release_enrichment_state, release_id=r1, attempts=2)
    return game_id, (r1, r2, r3)


def test_choose_winner_order():
    rows = [
        {'id': 1, 'igdb_game_id': None, 'cover_url': IGDB_COVER, 'updated_at': '2024-03-01T00:00:00+00:00'},
        {'id': 2, 'igdb_game_id': 72, 'cover_url': None, 'updated_at': '2024-01-01T00:00:00+00:00'},
        {'id': 3, 'igdb_game_id': 72, 'cover_url': IGDB_COVER, 'updated_at': '2024-01-01T00:00:00+00:00'},
        {'id': 4, 'igdb_game_id': 72, 'cover_url': IGDB_COVER, 'updated_at': '2024-01-01T00:00:00+00:00'},
    ]

    assert choose_winner(rows)['id'] == 3
    assert choose_winner(rows[:2])['id'] == 2
    assert choose_winner(rows[2:] + [{**rows[3], 'id': 5, 'updated_at': '2024-02-01T00:00:00+00:00'}])['id'] == 5
    assert choose_winner([]) is None


def test_choose_winner_treats_placeholder_as_missing_and_falls_back_to_game_cover():
    rows = [
        {'id': 1, 'igdb_game_id': 72, 'cover_url': 'https://cdn.example.com/unknown.png', 'updated_at': None},
        {'id': 2, 'igdb_game_id': 72, 'cover_url': None, 'game_cover_url': IGDB_COVER, 'updated_at': None},
    ]

    assert choose_winner(rows)['id'] == 2


def test_compute_metadata_updates_fills_gaps_only():
    winner = {'summary': 'Kept', 'genres': None, 'cover_url': None}
    losers = [
        {'summary': 'Dropped', 'genres': '["Puzzle"]', 'cover_url': 'https://cdn.example.com/unknown.png'},
        {'developer': 'Valve', 'cover_url': IGDB_COVER, 'images_source': 'igdb'},
    ]

    updates = compute_metadata_updates(winner, losers)

    assert updates == {
        'genres': '["Puzzle"]',
        'developer': 'Valve',
        'cover_url': IGDB_COVER,
        'images_source': 'igdb',
    }


def test_platform_merge_dry_run_changes_nothing(legacy_database, legacy_store, duplicated_releases):
    report = merge_by_platform_and_game(legacy_store)

    assert report.dry_run is True
    assert report.groups_found == 1
    assert report.moved['portfolio_entries'] == 1
    assert report.dropped['portfolio_entries'] == 2
    assert report.moved['psn_title_progress'] == 1
    assert report.moved['ra_achievement_cache'] == 1
    assert report.dropped['ra_achievement_cache'] == 1
    assert report.moved['release_external_ids'] == 2
    assert report.deleted == 2
    assert count_rows(legacy_database, releases) == 3
    assert count_rows(legacy_database, portfolio_entries) == 4
    assert legacy_store.merge_history() == []


def test_platform_merge_apply_repoints_and_is_repeatable(legacy_database, legacy_store, duplicated_releases):
    _, (r1, r2, r3) = duplicated_releases

    report = merge_by_platform_and_game(legacy_store, dry_run=False)

    assert report.failures == []
    assert report.groups_merged == 1
    assert report.deleted == 2
    assert [row['id'] for row in fetch_rows(legacy_database, releases)] == [r3]
    library = fetch_rows(legacy_database, portfolio_entries)
    assert sorted((row['user_id'], row['release_id']) for row in library) == [('u1', r3), ('u2', r3)]
    assert count_rows(legacy_database, release_external_ids, release_external_ids.c.release_id == r3) == 2
    assert count_rows(legacy_database, ra_achievement_cache) == 2
    assert count_rows(legacy_database, release_enrichment_state) == 0
    history = legacy_store.merge_history(entity='release')
    assert sorted(row['loser_id'] for row in history) == [r1, r2]
    assert {row['reason'] for row in history} == {JOB_PLATFORM_AND_GAME}

    rerun = merge_by_platform_and_game(legacy_store, dry_run=False)
    assert rerun.groups_found == 0
    assert len(legacy_store.merge_history()) == 2
    assert ensure_unique_indexes(legacy_database.engine) == [
        'games_igdb_game_id_unique',
        'games_canonical_title_unique',
        'releases_platform_key_game_id_unique',
    ]


def test_failed_table_keeps_losers_for_next_run(legacy_database, legacy_store, duplicated_releases, monkeypatch):
    _, (r1, r2, r3) = duplicated_releases
    missing = Table(
        'missing_progress',
        MetaData(),
        Column('id', Integer, primary_key=True),
        Column('user_id', String(64)),
        Column('release_id', Integer),
    )
    monkeypatch.setattr(
        merge_module, 'DEPENDENT_RELEASE_TABLES', DEPENDENT_RELEASE_TABLES + ((missing, ('user_id',)),)
    )

    report = merge_by_platform_and_game(legacy_store, dry_run=False)

    assert [failure['table'] for failure in report.failures] == ['missing_progress']
    assert report.groups_merged == 0
    assert count_rows(legacy_database, releases) == 3
    assert count_rows(legacy_database, portfolio_entries, portfolio_entries.c.release_id == r3) == 2

    monkeypatch.setattr(merge_module, 'DEPENDENT_RELEASE_TABLES', DEPENDENT_RELEASE_TABLES)
    retry = merge_by_platform_and_game(legacy_store, dry_run=False)

    assert retry.failures == []
    assert retry.deleted == 2
    assert count_rows(legacy_database, releases) == 1


def test_game_merge_folds_colliding_platform_releases(legacy_database, legacy_store):
    older = seed_game(legacy_store, 'Portal 2', igdb_game_id=72)
    newer = seed_game(
        legacy_store, 'Portal II', igdb_game_id=72, cover_url=IGDB_COVER, images_source='igdb', summary='Sequel'
    )
    legacy_store.update_game(older, {'developer': 'Valve'})
    older_steam = seed_release(legacy_store, older, 'steam')
    older_psn = seed_release(legacy_store, older, 'psn')
    newer_steam = seed_release(legacy_store, newer, 'steam')
    add_library_entry(legacy_database, 'u1', older_steam)

    report = merge_by_shared_external_id(legacy_store, dry_run=False, limit_groups='5')

    assert report.limit_groups == 5
    assert report.failures == []
    assert report.groups_found == 1
    assert report.dropped['releases'] == 1
    assert report.deleted == 1
    assert [row['id'] for row in fetch_rows(legacy_database, games)] == [newer]
    winner = legacy_store.get_game(newer)
    assert winner['summary'] == 'Sequel'
    assert winner['developer'] == 'Valve'
    remaining = fetch_rows(legacy_database, releases)
    assert sorted(row['id'] for row in remaining) == sorted([older_psn, newer_steam])
    assert {row['game_id'] for row in remaining} == {newer}
    assert fetch_rows(legacy_database, portfolio_entries)[0]['release_id'] == newer_steam
    keys = fetch_rows(legacy_database, game_title_keys)
    assert [(row['title_key'], row['game_id']) for row in keys] == [('Portal 2', newer)]

    resolver = CanonicalGameResolver(legacy_store)
    assert resolver.resolve('Portal 2').game_id == newer
    assert merge_by_shared_external_id(legacy_store, dry_run=False).groups_found == 0
    ensure_unique_indexes(legacy_database.engine)


def test_game_merge_dry_run_reports_plan(legacy_database, legacy_store):
    older = seed_game(legacy_store, 'Portal 2', igdb_game_id=72)
    newer = seed_game(legacy_store, 'Portal II', igdb_game_id=72, cover_url=IGDB_COVER)
    seed_release(legacy_store, older, 'steam')
    seed_release(legacy_store, older, 'psn')
    seed_release(legacy_store, newer, 'steam')

    report = merge_by_shared_external_id(legacy_store)

    assert report.moved['releases'] == 1
    assert report.dropped['releases'] == 1
    assert report.deleted == 1
    assert count_rows(legacy_database, games) == 2
    assert count_rows(legacy_database, releases) == 3


@pytest.fixture
def library(database, store):
    diablo = seed_game(store, 'Diablo IV', igdb_game_id=1, cover_url=IGDB_COVER, images_source='igdb')
    deluxe = seed_game(store, 'Diablo® IV Deluxe Edition')
    portal = seed_game(store, 'Portal 2', igdb_game_id=72)
    diablo_psn = seed_release(store, diablo, 'psn', title='Diablo IV')
    deluxe_steam = seed_release(store, deluxe, 'steam', title='Diablo IV Deluxe')
    orphan_psn = seed_release(store, None, 'psn', title='DIABLO IV')
    portal_steam = seed_release(store, portal, 'steam', title='Portal 2')
    for release_id in (diablo_psn, deluxe_steam, orphan_psn, portal_steam):
        add_library_entry(database, 'u1', release_id)
    add_library_entry(database, 'u2', diablo_psn)
    add_library_entry(database, 'u2', portal_steam)
    return {
        'diablo': diablo,
        'deluxe': deluxe,
        'diablo_psn': diablo_psn,
        'deluxe_steam': deluxe_steam,
        'orphan_psn': orphan_psn,
    }


def test_library_scan_groups_per_user(store, library):
    summary = scan_library_title_duplicates(store, 'u1')

    assert summary['total_library_releases'] == 4
    assert summary['duplicate_groups'] == 1
    group = summary['duplicates'][0]
    assert group['key'] == 'diablo iv'
    assert group['count'] == 3
    assert group['winner_release_id'] == library['diablo_psn']
    orphan = next(entry for entry in group['releases'] if entry['release_id'] == library['orphan_psn'])
    assert orphan['game_id'] is None
    assert orphan['bad_cover'] is True

    assert scan_library_title_duplicates(store, 'u2')['duplicate_groups'] == 0
    assert scan_library_title_duplicates(store, 'nobody')['total_library_releases'] == 0


def test_library_merge_only_touches_confirmed_groups(database, store, library):
    ignored = merge_library_title_duplicates(store, 'u1', ['portal 2'], dry_run=False)
    assert ignored.groups_found == 0
    assert count_rows(database, games) == 3

    report = merge_library_title_duplicates(store, 'u1', ['diablo iv'], dry_run=False)

    assert report.failures == []
    assert report.groups_found == 1
    assert store.get_game(library['deluxe']) is None
    assert store.get_release(library['deluxe_steam'])['game_id'] == library['diablo']
    assert store.get_release(library['orphan_psn']) is None
    u1_releases = sorted(
        row['release_id'] for row in fetch_rows(database, portfolio_entries, portfolio_entries.c.user_id == 'u1')
    )
    assert library['orphan_psn'] not in u1_releases
    assert library['diablo_psn'] in u1_releases
    assert scan_library_title_duplicates(store, 'u1')['duplicates'][0]['count'] == 2
