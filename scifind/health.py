"""Liveness, readiness and full health-check endpoints."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from flask import Flask, Response, jsonify

from scifind.logger import LOGGER_NAME, _duration_text

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

_START = time.monotonic()


def _uptime() -> str:
    return _duration_text(timedelta(seconds=time.monotonic() - _START))


def _nanoseconds(value: timedelta) -> int:
    return (value // timedelta(microseconds=1)) * 1000


@dataclass
class CheckResult:
    """The outcome of one health check."""

    status: str
    duration: timedelta = timedelta(0)
    error: str = ""
    metadata: Any = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status, "duration": _nanoseconds(self.duration)}
        if self.error:
            body["error"] = self.error
        if self.metadata is not None:
            body["metadata"] = self.metadata
        return body


@dataclass
class HealthStatus:
    """The body of a readiness or health response."""

    status: str
    timestamp: datetime
    version: str
    build_time: str
    git_commit: str
    environment: str
    uptime: str
    checks: dict[str, CheckResult] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "build_time": self.build_time,
            "git_commit": self.git_commit,
            "environment": self.environment,
            "uptime": self.uptime,
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
        }


class HealthHandler:
    """Serves /health, /health/live, /health/ready and /ping."""

    def __init__(
        self,
        health_service: Any,
        logger: logging.Logger | None = None,
        *,
        version: str = "1.0.0",
        build_time: str = "unknown",
        git_commit: str = "unknown",
        environment: str = "development",
    ) -> None:
        self.health_service = health_service
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.version = version
        self.build_time = build_time
        self.git_commit = git_commit
        self.environment = environment

    def _new_status(self) -> HealthStatus:
        return HealthStatus(
            status=HEALTHY,
            timestamp=datetime.now(timezone.utc),
            version=self.version,
            build_time=self.build_time,
            git_commit=self.git_commit,
            environment=self.environment,
            uptime=_uptime(),
        )

    def liveness(self) -> tuple[Response, int]:
        """Report that the process is alive."""
        return (
            jsonify(status="alive", timestamp=datetime.now(timezone.utc).isoformat(), uptime=_uptime()),
            200,
        )

    def readiness(self) -> tuple[Response, int]:
        """Report readiness; 503 when a required dependency is unhealthy."""
        status = self._new_status()

        database = self._check_database()
        status.checks["database"] = database
        if database.status != HEALTHY:
            status.status = UNHEALTHY

        nats = self._check_nats()
        status.checks["nats"] = nats
        if nats.status != HEALTHY:
            status.status = DEGRADED

        resources = self._check_resources()
        status.checks["resources"] = resources
        if resources.status != HEALTHY and status.status == HEALTHY:
            status.status = DEGRADED

        code = 503 if status.status == UNHEALTHY else 200
        return jsonify(status.to_dict()), code

    def health(self) -> tuple[Response, int]:
        """Run every health check and report the combined status."""
        status = self._new_status()
        checks: list[tuple[str, Callable[[], CheckResult]]] = [
            ("database", self._check_database),
            ("nats", self._check_nats),
            ("resources", self._check_resources),
            ("external_apis", self._check_external_apis),
        ]
        for name, check in checks:
            result = check()
            status.checks[name] = result
            if result.status == UNHEALTHY:
                status.status = UNHEALTHY
            elif result.status == DEGRADED and status.status == HEALTHY:
                status.status = DEGRADED
        return jsonify(status.to_dict()), 200

    def _check_database(self) -> CheckResult:
        start = time.perf_counter()

        def elapsed() -> timedelta:
            return timedelta(seconds=time.perf_counter() - start)

        if self.health_service is None:
            return CheckResult(UNHEALTHY, elapsed(), "health service not available")
        try:
            self.health_service.health()
        except Exception as exc:
            return CheckResult(UNHEALTHY, elapsed(), f"database health check failed: {exc}")
        return CheckResult(HEALTHY, elapsed(), metadata={"database": "connected"})

    def _check_nats(self) -> CheckResult:
        start = time.perf_counter()
        if self.health_service is None:
            return CheckResult(
                DEGRADED, timedelta(seconds=time.perf_counter() - start), "health service not available"
            )
        return CheckResult(
            HEALTHY, timedelta(seconds=time.perf_counter() - start), metadata={"nats": "status_unknown"}
        )

    def _check_resources(self) -> CheckResult:
        start = time.perf_counter()
        metadata = {"goroutines": "unknown", "memory": "unknown", "cpu": "unknown"}
        return CheckResult(HEALTHY, timedelta(seconds=time.perf_counter() - start), metadata=metadata)

    def _check_external_apis(self) -> CheckResult:
        start = time.perf_counter()
        metadata = {
            "arxiv": "unknown",
            "semantic_scholar": "unknown",
            "exa": "unknown",
            "tavily": "unknown",
        }
        return CheckResult(HEALTHY, timedelta(seconds=time.perf_counter() - start), metadata=metadata)

    def register_routes(self, app: Flask) -> None:
        """Register the health endpoints on app."""
        app.add_url_rule("/health/live", "health_live", self.liveness, methods=["GET"])
        app.add_url_rule("/health/ready", "health_ready", self.readiness, methods=["GET"])
        app.add_url_rule("/health", "health", self.health, methods=["GET"])
        app.add_url_rule("/health/", "health_slash", self.health, methods=["GET"])
        app.add_url_rule("/ping", "ping", self.liveness, methods=["GET"])