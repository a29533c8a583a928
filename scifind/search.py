"""HTTP handlers for searching papers across providers and managing those providers."""

from __future__ import annotations

import dataclasses
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from flask import Response, jsonify, request

from scifind.logger import LOGGER_NAME, LogLevel, log_with_context

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

_INTEGER = re.compile(r"[+-]?[0-9]+")
_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class ServiceValidationError(ValueError):
    """A request was rejected because its input is invalid."""


class ServiceTimeoutError(TimeoutError):
    """An operation did not finish in time."""


class ServiceRateLimitError(RuntimeError):
    """An operation was refused because a rate limit was hit."""


def split_and_trim(s: str, sep: str) -> list[str]:
    """Split s on sep, strip each part and drop the empty ones."""
    return [part.strip() for part in s.split(sep) if part.strip()]


def _now_rfc3339() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def _jsonable(value: Any) -> Any:
    """Convert service results into plain JSON-friendly values."""
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return _jsonable(value.to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {spec.name: _jsonable(getattr(value, spec.name)) for spec in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return (value // timedelta(microseconds=1)) * 1000
    return value


def _field(value: Any, name: str, default: Any = None) -> Any:
    if isinstance(value, Mapping):
        return value.get(name, default)
    return getattr(value, name, default)


def _parse_int(name: str, text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ServiceValidationError(f"invalid {name}: parsing {text!r}: invalid syntax")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ServiceValidationError(f"invalid {name}: parsing {text!r}: value out of range")
    return value


def _parse_date(name: str, text: str) -> datetime:
    try:
        if not _DATE.fullmatch(text):
            raise ValueError(f"cannot parse {text!r} as YYYY-MM-DD")
        parsed = datetime.strptime(text, "%Y-%m-%d")
    except ValueError as exc:
        raise ServiceValidationError(f"invalid {name} format: {exc}") from exc
    return parsed.replace(tzinfo=timezone.utc)


@dataclass
class SearchRequest:
    """A search across one or more providers."""

    request_id: str = ""
    query: str = ""
    limit: int = 0
    offset: int = 0
    providers: list[str] = field(default_factory=list)
    date_from: datetime | None = None
    date_to: datetime | None = None
    filters: dict[str, str] = field(default_factory=dict)

    def set_defaults(self) -> None:
        """Fill in the default page size when none was given."""
        if self.limit == 0:
            self.limit = DEFAULT_LIMIT

    def validate(self) -> None:
        """Raise ServiceValidationError if the request cannot be searched."""
        if not self.query.strip():
            raise ServiceValidationError("query is required")
        if not 1 <= self.limit <= MAX_LIMIT:
            raise ServiceValidationError(f"limit must be between 1 and {MAX_LIMIT}")
        if self.offset < 0:
            raise ServiceValidationError("offset must not be negative")


@dataclass
class ErrorResponse:
    """The body of an API error response."""

    error: str
    message: str
    request_id: str = ""
    timestamp: str = ""

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error, "message": self.message}
        if self.request_id:
            body["request_id"] = self.request_id
        body["timestamp"] = self.timestamp
        return body


def _reply(status: int, payload: Any) -> tuple[Response, int]:
    return jsonify(_jsonable(payload)), status


def _lookup_status(exc: Exception) -> int:
    if "not found" in str(exc):
        return 404
    if isinstance(exc, ServiceValidationError):
        return 400
    return 500


class SearchHandler:
    """Serves /v1/search: searching, single-paper lookup and provider management."""

    def __init__(self, service: Any, logger: logging.Logger | None = None) -> None:
        self.service = service
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def parse_search_request(self, args: Mapping[str, str], request_id: str) -> SearchRequest:
        """Build and validate a SearchRequest from query arguments."""
        req = SearchRequest(request_id=request_id, query=args.get("query", "") or "")

        limit_text = args.get("limit", "")
        if limit_text:
            req.limit = _parse_int("limit", limit_text)
        offset_text = args.get("offset", "")
        if offset_text:
            req.offset = _parse_int("offset", offset_text)

        providers_text = args.get("providers", "")
        if providers_text:
            req.providers = split_and_trim(providers_text, ",")

        date_from = args.get("date_from", "")
        if date_from:
            req.date_from = _parse_date("date_from", date_from)
        date_to = args.get("date_to", "")
        if date_to:
            req.date_to = _parse_date("date_to", date_to)

        for name in ("author", "journal", "category", "subject"):
            value = args.get(name, "")
            if value:
                req.filters[name] = value

        req.set_defaults()
        req.validate()
        return req

    def search(self) -> tuple[Response, int]:
        """GET /v1/search: search papers across providers."""
        request_id = str(uuid.uuid4())
        try:
            search_req = self.parse_search_request(request.args, request_id)
        except ServiceValidationError as exc:
            log_with_context(
                self.logger, LogLevel.WARN, "Invalid search request", request_id=request_id, error=str(exc)
            )
            return _reply(400, ErrorResponse("Invalid request", str(exc), request_id, _now_rfc3339()))

        log_with_context(
            self.logger,
            LogLevel.INFO,
            "Search request received",
            request_id=request_id,
            query=search_req.query,
            limit=search_req.limit,
            providers=search_req.providers,
        )

        try:
            response = self.service.search(search_req)
        except Exception as exc:
            log_with_context(self.logger, LogLevel.ERROR, "Search failed", request_id=request_id, error=str(exc))
            if isinstance(exc, ServiceValidationError):
                status = 400
            elif isinstance(exc, ServiceTimeoutError):
                status = 408
            elif isinstance(exc, ServiceRateLimitError):
                status = 429
            else:
                status = 500
            return _reply(status, ErrorResponse("Search failed", str(exc), request_id, _now_rfc3339()))

        log_with_context(
            self.logger,
            LogLevel.INFO,
            "Search completed successfully",
            request_id=request_id,
            results=_field(response, "result_count", 0),
            duration=_field(response, "duration", timedelta(0)),
        )
        return _reply(200, response)

    def get_paper(self, provider: str, id: str) -> tuple[Response, int]:
        """GET /v1/search/papers/<provider>/<id>: one paper from one provider."""
        if not provider or not id:
            return _reply(
                400, ErrorResponse("Invalid request", "Provider and paper ID are required", timestamp=_now_rfc3339())
            )

        try:
            paper = self.service.get_paper(provider, id)
        except Exception as exc:
            log_with_context(
                self.logger,
                LogLevel.ERROR,
                "Failed to get paper",
                provider=provider,
                paper_id=id,
                error=str(exc),
            )
            return _reply(_lookup_status(exc), ErrorResponse("Failed to get paper", str(exc)))

        return _reply(200, {"paper": paper, "source": provider, "timestamp": datetime.now(timezone.utc)})

    def get_providers(self) -> tuple[Response, int]:
        """GET /v1/search/providers: the status of every provider."""
        try:
            status = self.service.get_provider_status()
        except Exception as exc:
            log_with_context(self.logger, LogLevel.ERROR, "Failed to get provider status", error=str(exc))
            return _reply(500, ErrorResponse("Failed to get provider status", str(exc)))

        return _reply(200, {"providers": status, "timestamp": datetime.now(timezone.utc)})

    def get_provider_metrics(self) -> tuple[Response, int]:
        """GET /v1/search/providers/metrics: metrics for all providers or the one named."""
        try:
            metrics = self.service.get_provider_metrics()
        except Exception as exc:
            log_with_context(self.logger, LogLevel.ERROR, "Failed to get provider metrics", error=str(exc))
            return _reply(500, ErrorResponse("Failed to get provider metrics", str(exc)))

        provider_name = request.args.get("provider", "")
        if provider_name:
            if provider_name not in metrics:
                return _reply(
                    404, ErrorResponse("Provider not found", f"Provider '{provider_name}' not found")
                )
            metrics = {provider_name: metrics[provider_name]}

        return _reply(200, {"providers": metrics, "timestamp": datetime.now(timezone.utc)})

    def configure_provider(self, provider: str) -> tuple[Response, int]:
        """PUT /v1/search/providers/<provider>/configure: replace a provider's settings."""
        if not provider:
            return _reply(400, ErrorResponse("Invalid request", "Provider name is required"))

        body = request.get_json(silent=True)
        if body is None:
            return _reply(400, ErrorResponse("Invalid request body", "request body must be valid JSON"))
        if not isinstance(body, dict):
            return _reply(400, ErrorResponse("Invalid request body", "request body must be a JSON object"))

        try:
            self.service.configure_provider(provider, body)
        except Exception as exc:
            log_with_context(
                self.logger, LogLevel.ERROR, "Failed to configure provider", provider=provider, error=str(exc)
            )
            return _reply(_lookup_status(exc), ErrorResponse("Failed to configure provider", str(exc)))

        status: Mapping[str, Any] | None = None
        try:
            status = self.service.get_provider_status()
        except Exception as exc:
            log_with_context(
                self.logger, LogLevel.WARN, "Failed to get updated provider status", error=str(exc)
            )

        provider_status = (status or {}).get(provider, {})
        return _reply(
            200,
            {
                "provider_name": provider,
                "status": provider_status,
                "message": "Provider configuration updated successfully",
                "timestamp": datetime.now(timezone.utc),
            },
        )