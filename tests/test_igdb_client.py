import io
import json
from urllib.error import HTTPError

import pytest

from igdb.client import (
    AccessTokenCache,
    IGDBClient,
    IGDBUnavailableError,
    coerce_igdb_id,
    cover_url_from_cover,
)


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode('utf-8')

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self):
        return self._body


class FakeOpener:
    """Replays queued responses (or raises queued errors) per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


PORTAL_PAYLOAD = {
    'id': 72,
    'name': 'Portal 2',
    'slug': 'portal-2',
    'summary': 'Sequel.',
    'first_release_date': 1303171200,
    'genres': [{'name': 'Puzzle'}, {'name': 'Shooter'}],
    'involved_companies': [
        {'company': {'name': 'Valve'}, 'developer': True, 'publisher': False},
        {'company': {'name': 'Electronic Arts'}, 'developer': False, 'publisher': True},
    ],
    'cover': {'url': '//images.igdb.com/igdb/image/upload/t_thumb/co1rs4.jpg'},
}


def _client(opener, **kwargs):
    kwargs.setdefault('client_id', 'client')
    kwargs.setdefault('access_token', 'token')
    return IGDBClient(opener=opener, sleep=lambda _: None, env={}, **kwargs)


def test_search_games_normalizes_payload():
    opener = FakeOpener([PORTAL_PAYLOAD, {'id': 'bad'}])
    client = _client(opener)

    hits = client.search_games('Portal 2', limit=3)

    assert len(hits) == 1
    hit = hits[0]
    assert hit.igdb_game_id == 72
    assert hit.title == 'Portal 2'
    assert hit.genres == ('Puzzle', 'Shooter')
    assert hit.developer == 'Valve'
    assert hit.publisher == 'Electronic Arts'
    assert hit.first_release_year == 2011
    assert hit.cover_url == 'https://images.igdb.com/igdb/image/upload/t_cover_big/co1rs4.jpg'

    request = opener.requests[0]
    assert request.full_url == 'https://api.igdb.com/v4/games'
    assert request.data.decode('utf-8').startswith('search "Portal 2";')
    assert request.get_header('Authorization') == 'Bearer token'


def test_blank_search_skips_request():
    opener = FakeOpener()

    assert _client(opener).search_games('  ') == []
    assert opener.requests == []


def test_fetch_game_by_id_returns_none_for_empty_result():
    client = _client(FakeOpener([]))

    assert client.fetch_game_by_id(72) is None
    assert client.fetch_game_by_id('not-an-id') is None


def test_rate_limit_is_retried_after_delay():
    sleeps = []
    limited = HTTPError('https://api.igdb.com/v4/games', 429, 'Too Many Requests', {'Retry-After': '2'}, None)
    opener = FakeOpener(limited, [PORTAL_PAYLOAD])
    client = IGDBClient(
        client_id='client', access_token='token', opener=opener, sleep=sleeps.append, env={}
    )

    hits = client.fetch_by_slug('portal-2')

    assert [hit.igdb_game_id for hit in hits] == [72]
    assert sleeps == [2.0]


def test_server_error_raises_unavailable():
    failure = HTTPError(
        'https://api.igdb.com/v4/games', 500, 'Server Error', {}, io.BytesIO(b'server exploded')
    )
    client = _client(FakeOpener(failure))

    with pytest.raises(IGDBUnavailableError) as excinfo:
        client.search_games('Portal 2')

    assert '500 server exploded' in str(excinfo.value)


def test_unconfigured_client_raises_unavailable():
    client = IGDBClient(env={})

    assert client.is_configured is False
    with pytest.raises(IGDBUnavailableError):
        client.search_games('Portal 2')


def test_twitch_token_is_exchanged_and_cached():
    opener = FakeOpener(
        {'access_token': 'fresh', 'expires_in': 5000},
        [PORTAL_PAYLOAD],
        [PORTAL_PAYLOAD],
    )
    client = IGDBClient(
        client_id='client', client_secret='secret', opener=opener, sleep=lambda _: None, env={}
    )

    client.search_games('Portal 2')
    client.search_games('Portal 2')

    urls = [request.full_url for request in opener.requests]
    assert urls == [IGDBClient.TOKEN_URL, f'{IGDBClient.BASE_URL}/games', f'{IGDBClient.BASE_URL}/games']
    assert opener.requests[1].get_header('Authorization') == 'Bearer fresh'


def test_expired_token_is_refreshed_once():
    expired = HTTPError('https://api.igdb.com/v4/games', 401, 'Unauthorized', {}, None)
    opener = FakeOpener(
        {'access_token': 'first', 'expires_in': 5000},
        expired,
        {'access_token': 'second', 'expires_in': 5000},
        [PORTAL_PAYLOAD],
    )
    client = IGDBClient(
        client_id='client', client_secret='secret', opener=opener, sleep=lambda _: None, env={}
    )

    hits = client.search_games('Portal 2')

    assert hits[0].igdb_game_id == 72
    assert opener.requests[-1].get_header('Authorization') == 'Bearer second'


def test_access_token_cache_honours_expiry():
    now = [0.0]
    fetched = []

    def fetch():
        fetched.append(now[0])
        return f'token-{len(fetched)}', 120.0

    cache = AccessTokenCache(fetch, refresh_margin=60.0, clock=lambda: now[0])

    assert cache.get() == 'token-1'
    now[0] = 59.0
    assert cache.get() == 'token-1'
    now[0] = 61.0
    assert cache.get() == 'token-2'


@pytest.mark.parametrize(
    'value, expected',
    [(72, 72), ('72', 72), ('72.0', 72), (72.0, 72), (0, None), (True, None), ('abc', None), (None, None)],
)
def test_coerce_igdb_id(value, expected):
    assert coerce_igdb_id(value) == expected


def test_cover_url_from_image_id():
    assert cover_url_from_cover({'image_id': 'co1rs4'}) == (
        'https://images.igdb.com/igdb/image/upload/t_cover_big/co1rs4.jpg'
    )
    assert cover_url_from_cover(None) is None
