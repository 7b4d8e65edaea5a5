"""Shared helpers for catalog API routes (errors, request parsing, logging)."""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from catalog.errors import (
    CatalogError,
    GameNotFoundError,
    IdentityConflictError,
    InvalidTitleError,
    ResolutionError,
)
from igdb.client import IGDBUnavailableError

P = ParamSpec("P")
R = TypeVar("R")

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


class APIError(Exception):
    """An error rendered as ``{"error": message, **payload}`` with ``status_code``."""

    status_code: int = 500
    message: str = "catalog request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or type(self).message
        super().__init__(self.message)
        self.status_code = status_code or type(self).status_code
        self.payload = dict(payload or {})

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.payload}


class BadRequestError(APIError):
    status_code = 400
    message = "invalid request"


class NotFoundError(APIError):
    status_code = 404
    message = "not found"


class ConflictError(APIError):
    status_code = 409
    message = "identity conflict"


class UpstreamServiceError(APIError):
    status_code = 502
    message = "IGDB unavailable"


def translate_catalog_error(exc: Exception) -> APIError | None:
    """Map catalog and IGDB exceptions onto API errors."""

    if isinstance(exc, InvalidTitleError):
        return BadRequestError(str(exc))
    if isinstance(exc, GameNotFoundError):
        return NotFoundError(str(exc))
    if isinstance(exc, IdentityConflictError):
        return ConflictError(str(exc), payload={"holder_id": exc.holder_id})
    if isinstance(exc, IGDBUnavailableError):
        return UpstreamServiceError(str(exc))
    if isinstance(exc, ResolutionError):
        return APIError(
            str(exc),
            payload={"raw_title": exc.raw_title, "platform_key": exc.platform_key},
        )
    if isinstance(exc, CatalogError):
        return APIError(str(exc))
    return None


def json_body() -> dict[str, Any]:
    """Return the request's JSON object, or an empty dict when absent."""

    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("JSON body must be an object")
    return payload


def parse_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    text = "" if value is None else str(value).strip().lower()
    if not text:
        return default
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise BadRequestError(f"invalid boolean value: {value!r}")


def require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    text = str(value).strip() if value is not None else ""
    if not text:
        raise BadRequestError(f"{key} is required")
    return text


def _request_summary(status_code: int) -> str:
    summary = {
        "method": request.method,
        "path": request.path,
        "endpoint": request.endpoint,
        "status_code": status_code,
    }
    if request.view_args:
        summary["view_args"] = dict(request.view_args)
    if request.args:
        summary["args"] = request.args.to_dict(flat=False)
    body = request.get_json(silent=True)
    if body is not None:
        summary["json"] = body
    return json.dumps(summary, ensure_ascii=False, default=str)


def _log_api_error(exc: Exception, status_code: int) -> None:
    level = logging.WARNING if status_code < 500 else logging.ERROR
    current_app.logger.log(
        level,
        "Catalog API error (%s): %s | request=%s",
        status_code,
        exc,
        _request_summary(status_code),
        exc_info=exc if level >= logging.ERROR else None,
    )


def _error_response(error: APIError, cause: Exception):
    _log_api_error(cause, error.status_code)
    return jsonify(error.to_dict()), error.status_code


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator that turns raised errors into logged JSON responses."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except APIError as exc:
            return _error_response(exc, exc)
        except HTTPException as exc:
            return _error_response(
                APIError(exc.description or str(exc), status_code=exc.code or 500), exc
            )
        except (CatalogError, IGDBUnavailableError) as exc:
            return _error_response(translate_catalog_error(exc) or APIError(str(exc)), exc)
        except Exception as exc:  # pragma: no cover - last-resort JSON response
            current_app.logger.exception(
                "Unhandled catalog API error: %s | request=%s", exc, _request_summary(500)
            )
            return jsonify({"error": "Internal server error"}), 500

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "UpstreamServiceError",
    "handle_api_errors",
    "json_body",
    "parse_bool",
    "require_text",
    "translate_catalog_error",
]
