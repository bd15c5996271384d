from __future__ import annotations

import math
import time
from collections import Counter, deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Deque


# Process-local only; every API and worker process keeps its own view.
@dataclass(frozen=True)
class Sample:
    ts: float
    key: str
    latency_ms: float
    ok: bool


_requests: Deque[Sample] = deque(maxlen=20000)
_external_calls: Deque[Sample] = deque(maxlen=10000)
_counters: Counter[str] = Counter()


def _status_class(status_code: int) -> str:
    return f"{status_code // 100}xx"


def _within(samples: Deque[Sample], window_s: int) -> Iterator[Sample]:
    cutoff = time.time() - window_s
    return (sample for sample in samples if sample.ts >= cutoff)


def _p95(latencies: list[float]) -> float:
    ordered = sorted(latencies)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


def record_request(*, status_code: int, latency_ms: float) -> None:
    # Keyed by status class; paths carry ids and would not aggregate.
    _requests.append(
        Sample(ts=time.time(), key=_status_class(status_code), latency_ms=latency_ms, ok=status_code < 500)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    _external_calls.append(Sample(ts=time.time(), key=integration, latency_ms=latency_ms, ok=success))


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def requests_by_status(window_s: int) -> dict[str, int]:
    return dict(Counter(sample.key for sample in _within(_requests, window_s)))


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float | int]]:
    # CD and object storage calls: p95, max and failure count per integration.
    grouped: dict[str, list[Sample]] = {}
    for sample in _within(_external_calls, window_s):
        grouped.setdefault(sample.key, []).append(sample)
    return {
        integration: {
            "p95": _p95([sample.latency_ms for sample in samples]),
            "max": max(sample.latency_ms for sample in samples),
            "failures": sum(1 for sample in samples if not sample.ok),
        }
        for integration, samples in grouped.items()
    }
