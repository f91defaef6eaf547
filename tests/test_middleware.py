import asyncio
import json
import logging

import pytest
from prometheus_client import CollectorRegistry

from rivet import (
    MetricsMiddleware,
    Path,
    RequestLoggerMiddleware,
    RivetApp,
    TestClient,
    TimeoutMiddleware,
)
from rivet.errors import ApiError


def _records(caplog, name: str) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == name]


def test_request_logger_emits_json_line(app: RivetApp, caplog) -> None:
    app.add_middleware(RequestLoggerMiddleware)

    @app.get("/users/{id}")
    async def get_user(id: Path[int]):
        return {"id": id}

    with caplog.at_level(logging.INFO, logger="rivet.request"):
        resp = TestClient(app).get("/users/7", headers={"X-Request-ID": "req-1"})

    assert resp.headers["x-request-id"] == "req-1"
    (entry,) = _records(caplog, "rivet.request")
    assert entry["event"] == "request"
    assert entry["method"] == "GET"
    assert entry["path"] == "/users/7"
    assert entry["route"] == "/users/{id}"
    assert entry["status"] == 200
    assert entry["request_id"] == "req-1"
    assert entry["duration_ms"] >= 0


def test_request_logger_generates_request_id(app: RivetApp, caplog) -> None:
    app.add_middleware(RequestLoggerMiddleware)

    @app.get("/")
    async def index():
        return "ok"

    with caplog.at_level(logging.INFO, logger="rivet.request"):
        resp = TestClient(app).get("/")

    generated = resp.headers["x-request-id"]
    assert len(generated) == 32
    assert _records(caplog, "rivet.request")[0]["request_id"] == generated


def test_request_logger_records_error_status(app: RivetApp, caplog) -> None:
    app.add_middleware(RequestLoggerMiddleware)

    @app.get("/gone")
    async def gone():
        raise ApiError.not_found("Item 3 not found")

    with caplog.at_level(logging.INFO, logger="rivet.request"):
        resp = TestClient(app).get("/gone")

    assert resp.status_code == 404
    assert _records(caplog, "rivet.request")[0]["status"] == 404


def test_metrics_count_requests_per_route(app: RivetApp) -> None:
    registry = CollectorRegistry()
    metrics = MetricsMiddleware(registry)
    metrics.mount(app)

    @app.get("/items/{id}")
    async def get_item(id: Path[int]):
        return {"id": id}

    client = TestClient(app)
    client.get("/items/1")
    client.get("/items/2")
    client.get("/items/nope")

    ok = registry.get_sample_value(
        "rivet_requests_total",
        {"method": "GET", "route": "/items/{id}", "status": "200"},
    )
    bad = registry.get_sample_value(
        "rivet_requests_total",
        {"method": "GET", "route": "/items/{id}", "status": "400"},
    )
    assert ok == 2.0
    assert bad == 1.0
    assert (
        registry.get_sample_value(
            "rivet_request_duration_seconds_count",
            {"method": "GET", "route": "/items/{id}"},
        )
        == 3.0
    )


def test_metrics_exposition_route(app: RivetApp) -> None:
    MetricsMiddleware().mount(app, path="/internal/metrics")

    @app.get("/")
    async def index():
        return "ok"

    client = TestClient(app)
    client.get("/")
    resp = client.get("/internal/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert 'rivet_requests_total{method="GET",route="/",status="200"} 1.0' in resp.text


def test_metrics_instances_do_not_share_registries() -> None:
    first = MetricsMiddleware()
    second = MetricsMiddleware()
    assert first.registry is not second.registry


def test_timeout_middleware_returns_408(app: RivetApp) -> None:
    app.add_middleware(TimeoutMiddleware, seconds=0.05)

    @app.get("/slow")
    async def slow():
        await asyncio.sleep(1)

    @app.get("/fast")
    async def fast():
        return "done"

    client = TestClient(app)
    slow_resp = client.get("/slow")
    assert slow_resp.status_code == 408
    assert slow_resp.json()["message"] == "Request exceeded timeout of 50ms"
    assert client.get("/fast").text == "done"


def test_timeout_middleware_rejects_non_positive_values() -> None:
    with pytest.raises(ValueError):
        TimeoutMiddleware(0)
