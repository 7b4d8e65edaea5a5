"""Catalog identity, sync and repair API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, g, jsonify, request

import config
from catalog.backfill import backfill_game_identities
from catalog.covers import propagate_game_covers
from catalog.health import catalog_health
from catalog.services import CatalogServices
from catalog.sync import map_platform_titles
from dedupe.jobs import (
    merge_by_platform_and_game,
    merge_by_shared_external_id,
    merge_library_title_duplicates,
    scan_library_title_duplicates,
)
from helpers import coerce_int
from routes.api_utils import (
    BadRequestError,
    UpstreamServiceError,
    handle_api_errors,
    json_body,
    parse_bool,
    require_text,
)

catalog_blueprint = Blueprint("catalog", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Inject the service factory and database accessor."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"catalog routes missing context value: {key}")
    return _context[key]


def _services() -> CatalogServices:
    services = g.get("catalog_services")
    if services is None:
        services = _ctx("build_services")(_ctx("get_db")())
        g.catalog_services = services
    return services


def _param(payload: Mapping[str, Any], name: str) -> Any:
    if name in payload:
        return payload[name]
    return request.args.get(name)


@catalog_blueprint.route("/api/catalog/games/resolve", methods=["POST"])
@handle_api_errors
def api_resolve_game():
    payload = json_body()
    title = require_text(payload, "title")
    identity = _services().games.resolve(title, payload.get("platform_key"))
    return jsonify(identity.to_dict())


@catalog_blueprint.route("/api/catalog/releases/resolve", methods=["POST"])
@handle_api_errors
def api_resolve_release():
    payload = json_body()
    platform_key = require_text(payload, "platform_key")
    native_id = require_text(payload, "native_id")
    mapping = _services().releases.map_release(
        platform_key,
        native_id,
        payload.get("title"),
        platform_label=payload.get("platform_label"),
    )
    return jsonify(mapping.to_dict())


@catalog_blueprint.route("/api/catalog/sync/<platform_key>", methods=["POST"])
@handle_api_errors
def api_sync_platform(platform_key: str):
    payload = json_body()
    titles = payload.get("titles")
    if not isinstance(titles, list):
        raise BadRequestError("titles must be a list")
    report = map_platform_titles(_services().releases, platform_key.strip().lower(), titles)
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/search")
@handle_api_errors
def api_search():
    query = (request.args.get("q") or "").strip()
    if not query:
        raise BadRequestError("q is required")
    matcher = _services().matcher
    if matcher is None:
        raise UpstreamServiceError("IGDB search is not configured")
    limit = coerce_int(request.args.get("limit")) or config.IGDB_SEARCH_LIMIT
    ranked = matcher.search_ranked(
        query, platform_key=request.args.get("platform_key"), limit=min(limit, 50)
    )
    results = [{**hit.to_dict(), "score": score} for hit, score in ranked]
    return jsonify({"query": query, "results": results})


@catalog_blueprint.route("/api/catalog/games/<int:game_id>/pin", methods=["POST"])
@handle_api_errors
def api_pin_game(game_id: int):
    payload = json_body()
    igdb_game_id = coerce_int(payload.get("igdb_game_id"))
    if igdb_game_id is None or igdb_game_id <= 0:
        raise BadRequestError("igdb_game_id must be a positive integer")
    identity = _services().games.pin_external_id(game_id, igdb_game_id)
    return jsonify(identity.to_dict())


@catalog_blueprint.route("/api/catalog/merge/games", methods=["POST"])
@handle_api_errors
def api_merge_games():
    payload = json_body()
    services = _services()
    report = merge_by_shared_external_id(
        services.store,
        dry_run=parse_bool(_param(payload, "dry_run"), default=True),
        limit_groups=_param(payload, "limit_groups"),
        merger=services.merger,
    )
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/merge/releases", methods=["POST"])
@handle_api_errors
def api_merge_releases():
    payload = json_body()
    services = _services()
    report = merge_by_platform_and_game(
        services.store,
        dry_run=parse_bool(_param(payload, "dry_run"), default=True),
        limit_groups=_param(payload, "limit_groups"),
        merger=services.merger,
    )
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/library/<user_id>/duplicates", methods=["GET", "POST"])
@handle_api_errors
def api_library_duplicates(user_id: str):
    services = _services()
    if request.method == "GET":
        return jsonify(
            scan_library_title_duplicates(services.store, user_id, cap=request.args.get("cap"))
        )
    payload = json_body()
    keys = payload.get("keys")
    if not isinstance(keys, list) or not keys:
        raise BadRequestError("keys must be a non-empty list of confirmed group keys")
    report = merge_library_title_duplicates(
        services.store,
        user_id,
        keys,
        dry_run=parse_bool(payload.get("dry_run"), default=True),
        merger=services.merger,
    )
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/backfill", methods=["POST"])
@handle_api_errors
def api_backfill():
    payload = json_body()
    services = _services()
    limit = config.clamp_limit(
        _param(payload, "limit"), config.BACKFILL_DEFAULT_LIMIT, config.BACKFILL_MAX_LIMIT
    )
    report = backfill_game_identities(
        services.games,
        services.merger,
        limit=limit,
        dry_run=parse_bool(_param(payload, "dry_run")),
    )
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/covers/propagate", methods=["POST"])
@handle_api_errors
def api_propagate_covers():
    payload = json_body()
    game_ids = payload.get("game_ids")
    if game_ids is not None:
        if not isinstance(game_ids, list):
            raise BadRequestError("game_ids must be a list")
        parsed = [coerce_int(value) for value in game_ids]
        if any(value is None for value in parsed):
            raise BadRequestError("game_ids must contain integers")
        game_ids = parsed
    limit = config.clamp_limit(
        _param(payload, "limit"),
        config.COVER_PROPAGATION_DEFAULT_LIMIT,
        config.COVER_PROPAGATION_MAX_LIMIT,
    )
    report = propagate_game_covers(
        _services().store,
        game_ids=game_ids,
        limit=limit,
        dry_run=parse_bool(_param(payload, "dry_run")),
    )
    return jsonify(report.to_dict())


@catalog_blueprint.route("/api/catalog/health")
@handle_api_errors
def api_health():
    return jsonify({"ok": True, "stats": catalog_health(_services().store)})


__all__ = ["catalog_blueprint", "configure"]
