from catalog.backfill import backfill_game_identities
from catalog.health import catalog_health
from catalog.services import build_services
from igdb.client import IGDBUnavailableError
from tests.catalog_helpers import FakeSearchClient, make_hit, seed_game, seed_release


def test_catalog_health_counts(legacy_store):
    anchored = seed_game(legacy_store, 'Portal 2', igdb_game_id=72, cover_url='https://cdn.example.com/p2.jpg')
    seed_game(legacy_store, 'Portal II', igdb_game_id=72)
    seed_release(legacy_store, anchored, 'steam')
    seed_release(legacy_store, anchored, 'steam', cover_url='https://cdn.example.com/p2.jpg')
    orphan = seed_release(legacy_store, None, 'psn')
    legacy_store.insert_mapping_ignore('psn', 'NPWR1', orphan)

    stats = catalog_health(legacy_store)

    assert stats == {
        'games_total': 2,
        'games_with_igdb_id': 2,
        'games_with_cover': 1,
        'games_missing_cover': 1,
        'releases_total': 3,
        'releases_without_game': 1,
        'releases_missing_cover': 2,
        'external_id_mappings': 1,
        'duplicate_igdb_groups': 1,
        'duplicate_release_groups': 1,
        'merges_recorded': 0,
    }


def test_backfill_anchors_games_and_copies_covers(services, search_client, store):
    game_id = seed_game(store, 'Celeste')
    release_id = seed_release(store, game_id, 'steam')
    seed_game(store, 'Unknown Homebrew')
    seed_game(store, 'Netflix App', content_type='app')
    search_client.results['Celeste'] = [make_hit(504, 'Celeste')]

    report = backfill_game_identities(services.games, services.merger, limit=10)

    assert report.scanned == 2
    assert report.anchored == 1
    assert report.missed == 1
    assert report.releases_updated == 1
    game = store.get_game(game_id)
    assert game['igdb_game_id'] == 504
    assert store.get_release(release_id)['cover_url'] == game['cover_url']


def test_backfill_merges_into_existing_holder(services, search_client, store):
    holder = seed_game(store, 'Portal 2', igdb_game_id=72, cover_url='https://cdn.example.com/p2.jpg',
                       images_source='igdb')
    stray = seed_game(store, 'Portal 2 (PC)')
    seed_release(store, stray, 'steam')
    search_client.results['Portal 2'] = [make_hit(72, 'Portal 2')]

    planned = backfill_game_identities(services.games, services.merger, limit=10, dry_run=True)
    assert planned.changes == [
        {'game_id': stray, 'igdb_game_id': 72, 'title': 'Portal 2', 'merge_into': holder}
    ]
    assert store.get_game(stray) is not None

    report = backfill_game_identities(services.games, services.merger, limit=10)

    assert report.merged == 1
    assert store.get_game(stray) is None
    assert [release['game_id'] for release in store.releases_for_game(holder)] == [holder]


def test_backfill_counts_unavailable_lookups(database, clock, store):
    seed_game(store, 'Anchored Without Cover', igdb_game_id=5)
    client = FakeSearchClient(error=IGDBUnavailableError('down'))
    services = build_services(database, client=client, clock=clock)

    report = backfill_game_identities(services.games, services.merger, limit=10)

    assert report.failed == 1
    assert report.errors[0]['error'] == 'down'


def test_backfill_without_matcher_does_nothing(database, clock, store):
    seed_game(store, 'Celeste')
    services = build_services(database, client=None, clock=clock)

    report = backfill_game_identities(services.games, services.merger, limit=10)

    assert report.scanned == 0


def test_backfill_rotates_unresolvable_games_behind_untried_ones(services, search_client, store):
    first_miss = seed_game(store, 'Unknown Homebrew A')
    second_miss = seed_game(store, 'Unknown Homebrew B')
    celeste = seed_game(store, 'Celeste')
    search_client.results['Celeste'] = [make_hit(504, 'Celeste')]

    first = backfill_game_identities(services.games, services.merger, limit=2)
    second = backfill_game_identities(services.games, services.merger, limit=2)

    assert first.missed == 2
    assert store.get_game(celeste)['igdb_game_id'] == 504
    assert second.anchored == 1
    assert [store.get_game(game_id)['identity_attempts'] for game_id in (first_miss, second_miss)] == [2, 1]


def test_backfill_dry_run_does_not_count_attempts(services, store):
    game_id = seed_game(store, 'Unknown Homebrew A')

    backfill_game_identities(services.games, services.merger, limit=5, dry_run=True)

    assert store.get_game(game_id)['identity_attempts'] == 0
