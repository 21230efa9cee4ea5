from __future__ import annotations

import math
from typing import Iterable

from ..models import STATUS_DOWN, STATUS_OK, HealthSample


def compute_uptime_percent(items: list[HealthSample]) -> float | None:
    """Share of ``ok`` samples in percent, or None for an empty window."""
    total = len(items)
    if total <= 0:
        return None
    ok_count = sum(1 for s in items if s.status == STATUS_OK)
    return (ok_count / float(total)) * 100.0


def compute_error_rate_percent(items: list[HealthSample]) -> float | None:
    total = len(items)
    if total <= 0:
        return None
    err_count = sum(1 for s in items if s.status == STATUS_DOWN)
    return (err_count / float(total)) * 100.0


def extract_latency_ms(items: Iterable[HealthSample]) -> list[float]:
    """Positive latencies, sorted ascending."""
    return sorted(float(s.latency_ms) for s in items if s.latency_ms > 0)


def percentile(sorted_values: list[float], p: float) -> float:
    """Nearest-rank percentile: the value at index ``floor(count * p / 100)``.

    Returns 0.0 for an empty list. The index is clamped to the last element so
    ``p=100`` is the maximum.
    """
    if not sorted_values:
        return 0.0
    k = int(math.floor(len(sorted_values) * float(p) / 100.0))
    k = max(0, min(k, len(sorted_values) - 1))
    return float(sorted_values[k])


def latency_percentiles_ms(items: list[HealthSample], *percentiles: float) -> tuple[float, ...]:
    values = extract_latency_ms(items)
    return tuple(percentile(values, p) for p in percentiles)
