"""
In-process telemetry for onboarding and deployment flows.

Nothing is shipped to an external collector. Events become structured log
lines and counters/latencies live in memory so tests and the health endpoint
can read them back.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("floworx.telemetry")

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}


def _normalize_latency_name(metric_name: str) -> str:
    if metric_name.endswith("_ms"):
        return metric_name
    if metric_name.endswith(".latency"):
        return f"{metric_name}_ms"
    return metric_name


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Callers must not pass OAuth tokens or API keys.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
        - Writes to logger (debug level)
    """
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def snapshot_counters() -> dict[str, int]:
    return dict(_COUNTERS)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time a code block and record the sample for percentile reporting.

    Side Effects:
        - Appends to _LATENCIES dict (in-memory state)
        - Writes to logger (debug level) with timing
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        normalized = _normalize_latency_name(metric_name)
        logger.debug("timing=%s seconds=%.6f", normalized, elapsed)
        _LATENCIES.setdefault(normalized, []).append(elapsed)


def get_p95(metric_name: str) -> float:
    """
    P95 latency for a metric, 0.0 when no samples were recorded.
    """
    normalized = _normalize_latency_name(metric_name)
    samples = _LATENCIES.get(normalized, [])
    if not samples:
        return 0.0

    sorted_samples = sorted(samples)
    idx = int(len(sorted_samples) * 0.95)
    return sorted_samples[idx] if idx < len(sorted_samples) else sorted_samples[-1]


def reset_latencies() -> None:
    """
    Side Effects:
        - Clears _LATENCIES dict (in-memory state)
    """
    _LATENCIES.clear()


def reset_counters() -> None:
    """
    Side Effects:
        - Clears _COUNTERS dict (in-memory state)
    """
    _COUNTERS.clear()
