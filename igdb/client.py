"""IGDB client and typed game records."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from helpers import (
    clean_text,
    coerce_int,
    name_list,
    release_year_from_timestamp,
)

logger = logging.getLogger(__name__)


__all__ = [
    "AccessTokenCache",
    "IGDBClient",
    "IGDBHit",
    "IGDBUnavailableError",
    "coerce_igdb_id",
    "cover_url_from_cover",
    "normalize_cover_url",
]

IGDB_GAME_FIELDS = (
    "id,name,slug,summary,first_release_date,genres.name,"
    "involved_companies.company.name,"
    "involved_companies.developer,"
    "involved_companies.publisher,"
    "cover.url,cover.image_id"
)


class IGDBUnavailableError(RuntimeError):
    """Raised when IGDB cannot be queried (credentials, network, bad payload)."""


@dataclass(frozen=True)
class IGDBHit:
    """A single IGDB game record reduced to the fields the catalog stores."""

    igdb_game_id: int
    title: str
    summary: str | None = None
    genres: tuple[str, ...] = field(default_factory=tuple)
    developer: str | None = None
    publisher: str | None = None
    first_release_year: int | None = None
    cover_url: str | None = None
    slug: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "igdb_game_id": self.igdb_game_id,
            "title": self.title,
            "summary": self.summary,
            "genres": list(self.genres),
            "developer": self.developer,
            "publisher": self.publisher,
            "first_release_year": self.first_release_year,
            "cover_url": self.cover_url,
            "slug": self.slug,
        }


def normalize_cover_url(url: Any) -> str | None:
    """Return an absolute ``t_cover_big`` URL for an IGDB cover reference."""

    text = clean_text(url)
    if not text:
        return None
    if text.startswith("//"):
        text = f"https:{text}"
    return text.replace("t_thumb", "t_cover_big")


def cover_url_from_cover(value: Any, size: str = "t_cover_big") -> str | None:
    """Return the IGDB image URL for a cover payload or identifier."""

    if isinstance(value, Mapping):
        url = normalize_cover_url(value.get("url"))
        if url:
            return url
        value = value.get("image_id")
    image_id = clean_text(value)
    if not image_id:
        return None
    size_key = str(size).strip() or "t_cover_big"
    return f"https://images.igdb.com/igdb/image/upload/{size_key}/{image_id}.jpg"


def coerce_igdb_id(value: Any) -> int | None:
    """Normalize potential IGDB identifiers to a positive integer."""

    numeric = coerce_int(value)
    return numeric if numeric is not None and numeric > 0 else None


class AccessTokenCache:
    """Holds one bearer token until it is close to expiry.

    ``fetch`` returns ``(token, expires_in_seconds | None)``. Lifetimes are
    capped at ``max_ttl`` and measured with the injected ``clock``.
    """

    def __init__(
        self,
        fetch: Callable[[], tuple[str, float | None]],
        *,
        max_ttl: float = 3_600.0,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._fetch = fetch
        self._max_ttl = max_ttl if max_ttl > 0 else 3_600.0
        self._refresh_margin = max(refresh_margin, 0.0)
        self._clock = clock or time.monotonic
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = Lock()

    def get(self) -> str:
        with self._lock:
            now = self._clock()
            if self._token is not None and now < self._expires_at:
                return self._token
            token, expires_in = self._fetch()
            ttl = self._max_ttl
            if expires_in is not None and expires_in > 0:
                ttl = min(float(expires_in), self._max_ttl)
            self._token = token
            self._expires_at = now + max(ttl - self._refresh_margin, 0.0)
            return token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0


class IGDBClient:
    """IGDB API access with Twitch authentication and rate-limit retries."""

    BASE_URL = "https://api.igdb.com/v4"
    TOKEN_URL = "https://id.twitch.tv/oauth2/token"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        access_token: str | None = None,
        user_agent: str | None = None,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        token_ttl: float = 3_600.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[[Any], Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._client_id = (
            client_id or self._env.get("IGDB_CLIENT_ID") or self._env.get("TWITCH_CLIENT_ID") or ""
        ).strip()
        self._client_secret = (
            client_secret
            or self._env.get("IGDB_CLIENT_SECRET")
            or self._env.get("TWITCH_CLIENT_SECRET")
            or ""
        ).strip()
        self._static_token = (access_token or "").strip()
        self._user_agent = (user_agent or "").strip()
        self._max_retries = max(1, int(max_retries)) if max_retries else 3
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory
        self._opener = opener
        self._sleep = sleep or time.sleep
        self._token_cache = AccessTokenCache(
            self.exchange_twitch_credentials, max_ttl=token_ttl, clock=clock
        )

    @property
    def user_agent(self) -> str:
        if self._user_agent:
            return self._user_agent
        env_agent = self._env.get("IGDB_USER_AGENT")
        if env_agent:
            return env_agent.strip()
        return "GameCatalog/1.0 (support@example.com)"

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and (self._static_token or self._client_secret))

    def exchange_twitch_credentials(self) -> tuple[str, float | None]:
        """Return a Twitch app access token and its lifetime in seconds."""

        if not self._client_id or not self._client_secret:
            raise IGDBUnavailableError("missing twitch client credentials")

        payload = urlencode(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            }
        ).encode("utf-8")

        request = self._build_request(self.TOKEN_URL, payload)
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        data = self._request_json(
            request,
            error_prefix="failed to obtain twitch token",
            allow_rate_limit=False,
        )

        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise IGDBUnavailableError("missing access token in twitch response")
        expires_in = data.get("expires_in")
        try:
            lifetime = float(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            lifetime = None
        return str(token), lifetime

    def search_games(self, query: str, *, limit: int = 5) -> list[IGDBHit]:
        """Return IGDB's text-search results for ``query``, best guess first."""

        text = " ".join(str(query or "").replace('"', "").split())
        if not text:
            return []
        body = f'search "{text}"; fields {IGDB_GAME_FIELDS}; limit {max(1, int(limit))};'
        return self._query_games(body, description=f"search {text!r}")

    def fetch_by_slug(self, slug: str) -> list[IGDBHit]:
        text = str(slug or "").replace('"', "").strip()
        if not text:
            return []
        body = f'where slug = "{text}"; fields {IGDB_GAME_FIELDS}; limit 1;'
        return self._query_games(body, description=f"slug {text!r}")

    def fetch_game_by_id(self, igdb_game_id: Any) -> IGDBHit | None:
        numeric = coerce_igdb_id(igdb_game_id)
        if numeric is None:
            return None
        body = f"where id = {numeric}; fields {IGDB_GAME_FIELDS}; limit 1;"
        hits = self._query_games(body, description=f"id {numeric}")
        return hits[0] if hits else None

    def normalize_game(self, item: Mapping[str, Any]) -> IGDBHit | None:
        """Return an :class:`IGDBHit` for an IGDB payload, or ``None`` when unusable."""

        if not isinstance(item, Mapping):
            return None

        igdb_id = coerce_igdb_id(item.get("id"))
        if igdb_id is None:
            logger.warning("Skipping IGDB entry with invalid id %s", item.get("id"))
            return None

        name = clean_text(item.get("name"))
        if not name:
            logger.warning("Skipping IGDB entry %s without a name", igdb_id)
            return None

        developer, publisher = self._normalize_involved_companies(item.get("involved_companies"))

        return IGDBHit(
            igdb_game_id=igdb_id,
            title=name,
            summary=clean_text(item.get("summary")) or None,
            genres=tuple(name_list(item.get("genres"))),
            developer=developer,
            publisher=publisher,
            first_release_year=release_year_from_timestamp(item.get("first_release_date")),
            cover_url=cover_url_from_cover(item.get("cover")) if item.get("cover") else None,
            slug=clean_text(item.get("slug")) or None,
        )

    @staticmethod
    def _normalize_involved_companies(companies: Any) -> tuple[str | None, str | None]:
        developer: str | None = None
        publisher: str | None = None
        first_named: str | None = None
        if not isinstance(companies, list):
            return None, None
        for company in companies:
            if not isinstance(company, Mapping):
                continue
            company_obj = company.get("company")
            if isinstance(company_obj, Mapping):
                company_name = clean_text(company_obj.get("name"))
            else:
                company_name = clean_text(company_obj)
            if not company_name:
                continue
            if first_named is None:
                first_named = company_name
            if developer is None and company.get("developer"):
                developer = company_name
            if publisher is None and company.get("publisher"):
                publisher = company_name
        return developer or first_named, publisher

    def _query_games(self, body: str, *, description: str) -> list[IGDBHit]:
        if not self.is_configured:
            raise IGDBUnavailableError("IGDB credentials are not configured")

        payload: Any = None
        for attempt in range(2):
            token = self._static_token or self._token_cache.get()
            request = self._build_request(f"{self.BASE_URL}/games", body.encode("utf-8"))
            request.add_header("Client-ID", self._client_id)
            request.add_header("Authorization", f"Bearer {token}")
            request.add_header("Accept", "application/json")
            request.add_header("Content-Type", "text/plain")
            request.add_header("User-Agent", self.user_agent)
            try:
                payload = self._request_json(request, error_prefix=f"IGDB {description} failed")
            except _ExpiredToken:
                if self._static_token or attempt:
                    raise IGDBUnavailableError(f"IGDB rejected the access token for {description}")
                self._token_cache.invalidate()
                continue
            break

        if not isinstance(payload, list):
            return []
        hits: list[IGDBHit] = []
        for item in payload:
            hit = self.normalize_game(item)
            if hit is not None:
                hits.append(hit)
        return hits

    def _build_request(self, url: str, data: bytes) -> Any:
        build_request = self._request_factory or Request
        return build_request(url, data=data, method="POST")

    def _request_json(
        self,
        request: Any,
        *,
        error_prefix: str,
        allow_rate_limit: bool = True,
    ) -> Any:
        opener = self._opener or urlopen
        attempts = self._max_retries if allow_rate_limit else 1
        for attempt in range(attempts):
            try:
                with opener(request) as response:
                    body = response.read()
            except HTTPError as exc:
                if allow_rate_limit and exc.code == 429 and attempt + 1 < attempts:
                    delay = self._retry_delay(exc)
                    if delay > 0:
                        self._sleep(delay)
                    continue
                if allow_rate_limit and exc.code == 401:
                    raise _ExpiredToken() from exc
                raise IGDBUnavailableError(_format_http_error(error_prefix, exc)) from exc
            except (URLError, OSError) as exc:
                raise IGDBUnavailableError(f"{error_prefix}: {exc}") from exc
            text = body.decode("utf-8", errors="replace") if body else ""
            try:
                return json.loads(text) if text else []
            except ValueError as exc:
                raise IGDBUnavailableError("invalid JSON response from IGDB") from exc
        raise IGDBUnavailableError(f"{error_prefix}: rate limited")

    def _retry_delay(self, error: HTTPError) -> float:
        headers = getattr(error, "headers", None)
        if headers is not None:
            for key in ("Retry-After", "retry-after"):
                value = headers.get(key)
                if value:
                    try:
                        delay = float(value)
                        if delay > 0:
                            return delay
                    except (TypeError, ValueError):
                        continue
        return self._rate_limit_wait


class _ExpiredToken(Exception):
    """Internal signal that IGDB answered 401 for a cached token."""


def _format_http_error(prefix: str, error: HTTPError) -> str:
    message = f"{prefix}: {error.code}"
    error_message = ""
    try:
        error_body = error.read()
    except OSError:  # pragma: no cover - best effort to capture error body
        error_body = b""
    if error_body:
        error_message = error_body.decode("utf-8", errors="replace").strip()
    if not error_message and error.reason:
        error_message = str(error.reason)
    if error_message:
        message = f"{message} {error_message}"
    return message
