"""HTTP handlers for the paper and author endpoints."""

from __future__ import annotations

import logging
import re
from typing import Any

from flask import Response, jsonify, request

from scifind.logger import LOGGER_NAME, LogLevel, log_with_context

DEFAULT_LIMIT = "20"
DEFAULT_OFFSET = "0"
MAX_LIMIT = 100

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class _InvalidParameter(ValueError):
    """A query parameter could not be accepted."""


def _parse_int(text: str) -> int | None:
    """Parse a base-10 integer the strict way: optional sign, ASCII digits, 64-bit range."""
    if not _INTEGER.fullmatch(text):
        return None
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def _pagination() -> tuple[int, int]:
    """Read limit and offset from the query string, with defaults 20 and 0."""
    limit = _parse_int(request.args.get("limit", DEFAULT_LIMIT))
    if limit is None or not 1 <= limit <= MAX_LIMIT:
        raise _InvalidParameter("invalid limit parameter")
    offset = _parse_int(request.args.get("offset", DEFAULT_OFFSET))
    if offset is None or offset < 0:
        raise _InvalidParameter("invalid offset parameter")
    return limit, offset


def _json(status: int, payload: Any) -> tuple[Response, int]:
    return jsonify(payload), status


def _error(status: int, message: str, **extra: str) -> tuple[Response, int]:
    return _json(status, {"error": message, **extra})


class PaperHandler:
    """Serves /v1/papers: listing, lookup, and the not-yet-supported write operations."""

    def __init__(self, paper_service: Any, logger: logging.Logger | None = None) -> None:
        self.paper_service = paper_service
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def list_papers(self) -> tuple[Response, int]:
        """GET /v1/papers: a page of papers with the total count."""
        try:
            limit, offset = _pagination()
        except _InvalidParameter as exc:
            return _error(400, str(exc))

        try:
            papers, total = self.paper_service.list(None, limit, offset)
        except Exception as exc:
            log_with_context(self.logger, LogLevel.ERROR, "failed to list papers", error=str(exc))
            return _error(500, "failed to retrieve papers")

        return _json(200, {"papers": papers, "total": total, "limit": limit, "offset": offset})

    def get_paper(self, id: str) -> tuple[Response, int]:
        """GET /v1/papers/<id>: one paper, or 404."""
        if not id:
            return _error(400, "paper ID is required")

        try:
            paper = self.paper_service.get_by_id(id)
        except Exception as exc:
            log_with_context(
                self.logger, LogLevel.ERROR, "failed to get paper", paper_id=id, error=str(exc)
            )
            return _error(404, "paper not found")

        return _json(200, paper)

    def create_paper(self) -> tuple[Response, int]:
        """POST /v1/papers: papers are only created through search providers."""
        return _error(
            501,
            "paper creation not yet implemented",
            message="papers are currently created through search providers",
        )

    def update_paper(self, id: str) -> tuple[Response, int]:
        """PUT /v1/papers/<id>: updates are not supported."""
        return _error(501, "paper update not yet implemented")

    def delete_paper(self, id: str) -> tuple[Response, int]:
        """DELETE /v1/papers/<id>: deletion is not supported."""
        return _error(501, "paper deletion not yet implemented")


class AuthorHandler:
    """Serves /v1/authors: listing, search, lookup and an author's papers."""

    def __init__(self, author_service: Any, logger: logging.Logger | None = None) -> None:
        self.author_service = author_service
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def list_authors(self) -> tuple[Response, int]:
        """GET /v1/authors: a page of authors, filtered by name when q is given."""
        query = request.args.get("q", "")
        try:
            limit, offset = _pagination()
        except _InvalidParameter as exc:
            return _error(400, str(exc))

        try:
            if query:
                authors, total = self.author_service.search(query, limit, offset)
            else:
                authors, total = self.author_service.list(None, limit, offset)
        except Exception as exc:
            log_with_context(
                self.logger,
                LogLevel.ERROR,
                "failed to list/search authors",
                query=query,
                error=str(exc),
            )
            return _error(500, "failed to retrieve authors")

        return _json(
            200,
            {"authors": authors, "total": total, "query": query, "limit": limit, "offset": offset},
        )

    def get_author(self, id: str) -> tuple[Response, int]:
        """GET /v1/authors/<id>: one author, or 404."""
        if not id:
            return _error(400, "author ID is required")

        try:
            author = self.author_service.get_by_id(id)
        except Exception as exc:
            log_with_context(
                self.logger, LogLevel.ERROR, "failed to get author", author_id=id, error=str(exc)
            )
            return _error(404, "author not found")

        return _json(200, author)

    def get_author_papers(self, id: str) -> tuple[Response, int]:
        """GET /v1/authors/<id>/papers: a page of the author's papers."""
        if not id:
            return _error(400, "author ID is required")
        try:
            limit, offset = _pagination()
        except _InvalidParameter as exc:
            return _error(400, str(exc))

        try:
            papers, total = self.author_service.get_papers(id, limit, offset)
        except Exception as exc:
            log_with_context(
                self.logger,
                LogLevel.ERROR,
                "failed to get author papers",
                author_id=id,
                error=str(exc),
            )
            return _error(500, "failed to retrieve author papers")

        return _json(
            200,
            {"author_id": id, "papers": papers, "total": total, "limit": limit, "offset": offset},
        )