"""Reliability (SLO) scores computed from the trailing sample window."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from ..models import SLO_FAIL, SLO_PASS, ReliabilityScore
from ..storage.base import ReliabilityScoreStore, SampleStore, ServiceRegistry
from .stats import compute_error_rate_percent, compute_uptime_percent, latency_percentiles_ms


logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_SLO_TARGET = 99.9


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SLOEngine:
    """Recomputes one ``ReliabilityScore`` per service from scratch on every run.

    Scores are a derived cache: the sample history is the source of truth, so a
    run with an unchanged window yields the same numbers.
    """

    def __init__(
        self,
        *,
        samples: SampleStore,
        registry: ServiceRegistry,
        scores: ReliabilityScoreStore,
        window_days: int = DEFAULT_WINDOW_DAYS,
        default_slo_target: float = DEFAULT_SLO_TARGET,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.samples = samples
        self.registry = registry
        self.scores = scores
        self.window = timedelta(days=window_days)
        self.default_slo_target = float(default_slo_target)
        self._clock = clock

    async def calculate_reliability_score(self, service_id: str) -> Optional[ReliabilityScore]:
        """Compute and upsert the score for one service.

        Returns None (and writes nothing) when the window holds no samples.
        Store errors propagate.
        """
        now = self._clock()
        items = await self.samples.range_for(service_id, now - self.window)
        if not items:
            logger.debug("No samples in window", service_id=service_id)
            return None

        uptime = compute_uptime_percent(items) or 0.0
        error_rate = compute_error_rate_percent(items) or 0.0
        p50, p95, p99 = latency_percentiles_ms(items, 50, 95, 99)

        service = await self.registry.get_by_id(service_id)
        target = self.default_slo_target
        if service is not None and service.slo_target:
            target = float(service.slo_target)

        score = ReliabilityScore(
            service_id=service_id,
            uptime_percent=uptime,
            p50_latency_ms=p50,
            p95_latency_ms=p95,
            p99_latency_ms=p99,
            error_rate_percent=error_rate,
            slo_target_percent=target,
            status=SLO_PASS if uptime >= target else SLO_FAIL,
            last_calculated=now,
            sample_count=len(items),
        )
        saved = await self.scores.upsert(score)
        logger.info("Reliability score calculated",
                    service_id=service_id,
                    uptime_percent=round(uptime, 3),
                    error_rate_percent=round(error_rate, 3),
                    status=score.status,
                    samples=len(items))
        return saved

    async def calculate_all(self) -> list[ReliabilityScore]:
        """Score every active service; one service's failure does not stop the others."""
        services = await self.registry.list_active()
        results = await asyncio.gather(
            *(self.calculate_reliability_score(s.id) for s in services),
            return_exceptions=True,
        )

        scores: list[ReliabilityScore] = []
        for service, result in zip(services, results):
            if isinstance(result, Exception):
                logger.error("Reliability calculation failed", service=service.name, error=str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                scores.append(result)
        return scores
