"""Normalize heterogeneous health-endpoint responses into a tri-state status.

Health endpoints in the fleet disagree on shape: some return a ``checks`` list,
some a ``status`` string in any casing, some only an HTTP code. The body is first
parsed into one of three shapes (``ChecksBody``, ``StatusFieldBody``,
``EmptyBody``) and the shape is then classified by a fixed priority order:

1. a non-empty ``checks`` list decides on its own;
2. HTTP 5xx is ``down`` whatever the body says;
3. explicit error indicators (``error``, ``errors``, ``failed``, ``healthy: false``,
   ``health: false``) are ``down``;
4. the body's own ``status`` field;
5. the HTTP code.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from ..models import STATUS_DEGRADED, STATUS_DOWN, STATUS_OK, Status


CHECK_UNKNOWN = "unknown"

_OK_WORDS = frozenset({"up", "ok", "healthy"})
_DEGRADED_WORDS = frozenset({"degraded", "warning"})
_CHECK_DOWN_WORDS = frozenset({"down", "unhealthy", "error"})
_STATUS_DOWN_WORDS = frozenset({"down", "unhealthy"})

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ChecksBody:
    # Each entry already mapped to ok|degraded|down|unknown.
    check_statuses: tuple[str, ...]
    raw: Mapping[str, Any]


@dataclass(frozen=True)
class StatusFieldBody:
    status: str | None
    has_error: bool
    raw: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class EmptyBody:
    pass


HealthBody = Union[ChecksBody, StatusFieldBody, EmptyBody]


@dataclass(frozen=True)
class ResourceUsage:
    cpu_percent: float = 0.0
    memory_mb: float = 0.0


@dataclass(frozen=True)
class Classification:
    status: Status
    latency_ms: float
    cpu_percent: float
    memory_mb: float
    # Which rule decided the status: checks|http_5xx|error_indicator|status_field|http_code|no_body
    reason: str


def round1(value: float) -> float:
    """Round half-up to one decimal. Values that overflow a float round to 0.0."""
    try:
        scaled = float(value) * 10 + 0.5
    except OverflowError:
        return 0.0
    if not math.isfinite(scaled):
        return 0.0
    return math.floor(scaled) / 10


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(float(value))
    except OverflowError:
        # Integers too large for a float.
        return False


def _lower_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.strip().lower()
    return s or None


def _is_empty(raw: Any) -> bool:
    if raw is None or raw is False:
        return True
    if isinstance(raw, (str, bytes)):
        return not raw.strip()
    return False


def normalize_check_status(check: Any) -> str:
    if not isinstance(check, Mapping):
        return CHECK_UNKNOWN
    word = _lower_str(check.get("status")) or _lower_str(check.get("state"))
    if word in _OK_WORDS:
        return STATUS_OK
    if word in _CHECK_DOWN_WORDS:
        return STATUS_DOWN
    if word in _DEGRADED_WORDS:
        return STATUS_DEGRADED
    return CHECK_UNKNOWN


def has_error_indicator(raw: Mapping[str, Any]) -> bool:
    if any(bool(raw.get(key)) for key in ("error", "errors", "failed")):
        return True
    return raw.get("healthy") is False or raw.get("health") is False


def parse_health_body(raw: Any) -> HealthBody:
    """Parse a decoded response body into one of the known shapes."""
    if isinstance(raw, (ChecksBody, StatusFieldBody, EmptyBody)):
        return raw
    if _is_empty(raw):
        return EmptyBody()
    if not isinstance(raw, Mapping):
        # Plain text or a JSON scalar/list: only the HTTP code is usable.
        return StatusFieldBody(status=None, has_error=False)

    checks = raw.get("checks")
    if isinstance(checks, list) and checks:
        return ChecksBody(check_statuses=tuple(normalize_check_status(c) for c in checks), raw=raw)

    return StatusFieldBody(
        status=_lower_str(raw.get("status")),
        has_error=has_error_indicator(raw),
        raw=raw,
    )


def aggregate_checks(check_statuses: tuple[str, ...]) -> Status:
    if STATUS_DOWN in check_statuses:
        return STATUS_DOWN
    if all(s == STATUS_OK for s in check_statuses):
        return STATUS_OK
    # Any degraded or unknown entry.
    return STATUS_DEGRADED


def status_from_http_code(status_code: int) -> Status:
    if status_code == 200:
        return STATUS_OK
    if status_code >= 500:
        return STATUS_DOWN
    if status_code >= 400:
        return STATUS_DEGRADED
    return STATUS_DOWN


def _status_from_fields(status_code: int, body: StatusFieldBody) -> tuple[Status, str]:
    if status_code >= 500:
        return STATUS_DOWN, "http_5xx"
    if body.has_error:
        return STATUS_DOWN, "error_indicator"
    if body.status in _STATUS_DOWN_WORDS:
        return STATUS_DOWN, "status_field"
    if body.status in _OK_WORDS:
        return STATUS_OK, "status_field"
    if body.status in _DEGRADED_WORDS:
        return STATUS_DEGRADED, "status_field"
    return status_from_http_code(status_code), "http_code"


def _memory_mb(node: Any) -> float:
    if not isinstance(node, Mapping):
        return 0.0
    for key in ("heapUsed", "rss"):
        value = node.get(key)
        if _is_number(value) and value > 0:
            return round1(value / _BYTES_PER_MB)
    return 0.0


def extract_resources(body: HealthBody) -> ResourceUsage:
    """Read cpu/memory from ``system.cpu_load`` and ``system.memory_usage``."""
    raw = getattr(body, "raw", None)
    if not isinstance(raw, Mapping):
        return ResourceUsage()
    system = raw.get("system")
    if not isinstance(system, Mapping):
        return ResourceUsage()

    memory = _memory_mb(system.get("memory_usage"))

    cpu = 0.0
    cpu_load = system.get("cpu_load")
    if isinstance(cpu_load, list):
        loads = [float(v) for v in cpu_load if _is_number(v) and v > 0]
        if loads:
            cpu = round1(sum(loads) / len(loads) * 100)

    return ResourceUsage(cpu_percent=cpu, memory_mb=memory)


def extract_metrics_resources(raw: Any) -> ResourceUsage:
    """Read cpu/memory from a metrics-endpoint body (``cpu.usage``/``cpuUsage``, ``mem``/``memoryUsage``)."""
    if not isinstance(raw, Mapping):
        return ResourceUsage()

    cpu = 0.0
    cpu_node = raw.get("cpu")
    cpu_value = cpu_node.get("usage") if isinstance(cpu_node, Mapping) else None
    if not (_is_number(cpu_value) and cpu_value):
        cpu_value = raw.get("cpuUsage")
    if _is_number(cpu_value) and cpu_value > 0:
        cpu = round1(cpu_value)

    mem_node = raw.get("mem") or raw.get("memoryUsage")
    return ResourceUsage(cpu_percent=cpu, memory_mb=_memory_mb(mem_node))


def classify(status_code: int, body: Any, *, latency_ms: float = 0.0) -> Classification:
    """Classify one health response.

    ``body`` may be the decoded JSON body, raw text, ``None``, or an already
    parsed ``HealthBody``. Never raises on malformed bodies.
    """
    parsed = parse_health_body(body)
    code = int(status_code or 0)

    if isinstance(parsed, ChecksBody):
        status, reason = aggregate_checks(parsed.check_statuses), "checks"
    elif isinstance(parsed, EmptyBody):
        status, reason = status_from_http_code(code), "no_body"
    else:
        status, reason = _status_from_fields(code, parsed)

    resources = extract_resources(parsed)
    return Classification(
        status=status,
        latency_ms=max(0.0, float(latency_ms)),
        cpu_percent=resources.cpu_percent,
        memory_mb=resources.memory_mb,
        reason=reason,
    )
