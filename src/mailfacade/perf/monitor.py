# mailfacade/perf/monitor.py
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List

logger = logging.getLogger(__name__)

SLOW_OPERATION_SECONDS = 5.0


@dataclass
class _OpStats:
    count: int = 0
    total_time: float = 0.0
    errors: int = 0
    last_run: float = 0.0


class PerformanceMonitor:
    """Per-operation timings and error rates, plus a coarse health score."""

    def __init__(self, *, slow_threshold: float = SLOW_OPERATION_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.slow_threshold = slow_threshold
        self._clock = clock
        self._metrics: Dict[str, _OpStats] = {}

    def record(self, name: str, duration: float, *, error: bool = False) -> None:
        stats = self._metrics.setdefault(name, _OpStats())
        stats.count += 1
        stats.total_time += duration
        stats.last_run = time.time()
        if error:
            stats.errors += 1
        if duration > self.slow_threshold:
            logger.warning("Slow operation detected: %s took %.0fms", name, duration * 1000)

    @asynccontextmanager
    async def track(self, name: str) -> AsyncIterator[None]:
        start = self._clock()
        try:
            yield
        except BaseException:
            self.record(name, self._clock() - start, error=True)
            raise
        self.record(name, self._clock() - start)

    def metrics(self) -> Dict[str, dict]:
        return {
            name: {
                "count": s.count,
                "average_ms": round(s.total_time / s.count * 1000),
                "error_rate": round(s.errors / s.count * 100),
                "last_run": s.last_run,
            }
            for name, s in self._metrics.items()
        }

    def health_score(self) -> dict:
        score = 100
        issues: List[str] = []
        for name, m in self.metrics().items():
            if m["error_rate"] > 10:
                score -= 20
                issues.append(f"High error rate for {name}: {m['error_rate']}%")
            if m["average_ms"] > 3000:
                score -= 15
                issues.append(f"Slow performance for {name}: {m['average_ms']}ms average")

        if score >= 90:
            status = "excellent"
        elif score >= 70:
            status = "good"
        elif score >= 50:
            status = "warning"
        else:
            status = "critical"
        return {"score": max(0, score), "status": status, "issues": issues}

    def clear(self) -> None:
        self._metrics.clear()
