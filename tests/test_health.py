from datetime import timedelta

import pytest
from flask import Flask

from scifind.health import CheckResult, HealthHandler


class _Service:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def health(self):
        self.calls += 1
        if self.error is not None:
            raise self.error


def _client(service):
    app = Flask(__name__)
    HealthHandler(service).register_routes(app)
    return app.test_client()


def test_liveness_reports_alive():
    resp = _client(_Service()).get("/health/live")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "alive"
    assert body["uptime"].endswith("s")


def test_ping_is_liveness():
    resp = _client(_Service()).get("/ping")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "alive"


def test_readiness_healthy():
    service = _Service()
    resp = _client(service).get("/health/ready")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert set(body["checks"]) == {"database", "nats", "resources"}
    assert body["checks"]["database"]["metadata"] == {"database": "connected"}
    assert body["version"] == "1.0.0"
    assert body["build_time"] == "unknown"
    assert body["environment"] == "development"
    assert service.calls == 1


def test_readiness_database_failure_is_unavailable():
    resp = _client(_Service(RuntimeError("db down"))).get("/health/ready")
    assert resp.status_code == 503
    body = resp.get_json()
    assert body["status"] == "unhealthy"
    assert body["checks"]["database"]["error"] == "database health check failed: db down"


def test_readiness_without_service_is_degraded():
    resp = _client(None).get("/health/ready")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["error"] == "health service not available"
    assert body["checks"]["nats"]["status"] == "degraded"


def test_health_runs_all_checks():
    resp = _client(_Service()).get("/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert set(body["checks"]) == {"database", "nats", "resources", "external_apis"}
    assert body["checks"]["external_apis"]["metadata"]["arxiv"] == "unknown"
    assert body["status"] == "healthy"


@pytest.mark.parametrize("service", [None, _Service(RuntimeError("boom"))])
def test_health_unhealthy_still_ok_status(service):
    resp = _client(service).get("/health/")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "unhealthy"


def test_check_durations_are_non_negative():
    body = _client(_Service()).get("/health").get_json()
    assert all(check["duration"] >= 0 for check in body["checks"].values())


def test_check_result_omits_empty_fields():
    result = CheckResult("healthy", timedelta(microseconds=2))
    assert result.to_dict() == {"status": "healthy", "duration": 2000}