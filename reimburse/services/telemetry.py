from __future__ import annotations

import math
import time
from collections import Counter, deque
from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True)
class CallSample:
    at: float
    integration: str
    latency_ms: float
    ok: bool


# Bounded so a long-running worker process never grows the sample buffer unchecked.
_samples: deque[CallSample] = deque(maxlen=5000)
_counters: Counter[str] = Counter()
_gauges: dict[str, float] = {}
_lock = Lock()


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    sample = CallSample(at=time.time(), integration=integration, latency_ms=latency_ms, ok=success)
    with _lock:
        _samples.append(sample)


def increment_counter(name: str, value: int = 1) -> None:
    # Worker loops on different tasks share these; keep updates atomic.
    with _lock:
        _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    with _lock:
        _gauges[name] = float(value)


def external_call_summary(window_s: float) -> dict[str, dict[str, float]]:
    """Per-integration call count, failures and latency over the trailing window."""
    cutoff = time.time() - window_s
    with _lock:
        recent = [sample for sample in _samples if sample.at >= cutoff]
    grouped: dict[str, list[CallSample]] = {}
    for sample in recent:
        grouped.setdefault(sample.integration, []).append(sample)
    summary: dict[str, dict[str, float]] = {}
    for integration, samples in grouped.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        p95 = latencies[max(0, math.ceil(0.95 * len(latencies)) - 1)]
        summary[integration] = {
            "calls": float(len(samples)),
            "failures": float(sum(1 for sample in samples if not sample.ok)),
            "p95_ms": p95,
            "max_ms": latencies[-1],
        }
    return summary


def counters_snapshot() -> dict[str, int]:
    with _lock:
        return dict(_counters)


def gauges_snapshot() -> dict[str, float]:
    with _lock:
        return dict(_gauges)


def reset_telemetry() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()
        _samples.clear()
