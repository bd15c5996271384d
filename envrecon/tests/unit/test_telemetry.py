from __future__ import annotations

from envrecon.services.telemetry import (
    external_latency_by_integration,
    record_external_call,
    record_request,
    requests_by_status,
)


def test_requests_are_bucketed_by_status_class() -> None:
    before = requests_by_status(60)
    record_request(status_code=201, latency_ms=3.0)
    record_request(status_code=404, latency_ms=1.0)
    after = requests_by_status(60)
    assert after["2xx"] == before.get("2xx", 0) + 1
    assert after["4xx"] == before.get("4xx", 0) + 1


def test_external_calls_report_p95_max_and_failures() -> None:
    for latency in range(1, 21):
        record_external_call(integration="test.latency", latency_ms=float(latency), success=latency != 20)
    summary = external_latency_by_integration(60)["test.latency"]
    assert summary == {"p95": 19.0, "max": 20.0, "failures": 1}
