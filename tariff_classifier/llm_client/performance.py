# tariff_classifier/llm_client/performance.py
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from tariff_classifier.config import PerformanceConfig, config

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationSample:
    finished_at: float
    duration: float
    success: bool


class PerformanceMonitor:
    """
    Замеры длительности обращений к reasoning-сервису по операциям
    (start_classification, continue_classification, tool_round).

    Медленные и критичные вызовы пишутся в лог; get_stats() отдаёт сводку
    за последние window_seconds.
    """

    def __init__(
        self,
        perf_config: Optional[PerformanceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._conf = perf_config or config.performance
        self._clock = clock
        self._samples: Dict[str, Deque[OperationSample]] = {}
        self._lock = threading.Lock()

    async def track(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        started = self._clock()
        try:
            result = await fn()
        except Exception:
            self._record(operation, started, success=False)
            raise

        duration = self._record(operation, started, success=True)
        if duration > self._conf.critical_threshold_seconds:
            logger.error("Critical LLM latency: %s took %.1fs", operation, duration)
        elif duration > self._conf.slow_threshold_seconds:
            logger.warning("Slow LLM call: %s took %.1fs", operation, duration)
        else:
            logger.debug("%s took %.2fs", operation, duration)
        return result

    def _record(self, operation: str, started: float, success: bool) -> float:
        now = self._clock()
        sample = OperationSample(finished_at=now, duration=now - started, success=success)
        with self._lock:
            samples = self._samples.setdefault(operation, deque(maxlen=self._conf.max_samples))
            samples.append(sample)
        return sample.duration

    def get_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """
        Сводка по одной операции или по всем (operation=None).
        Операции без замеров в окне в сводку не попадают.
        """
        with self._lock:
            names = [operation] if operation is not None else list(self._samples)
            snapshot = {name: list(self._samples.get(name, ())) for name in names}

        now = self._clock()
        stats: Dict[str, Any] = {}
        for name, samples in snapshot.items():
            recent = [s for s in samples if now - s.finished_at < self._conf.window_seconds]
            if not recent:
                continue
            successful = [s for s in recent if s.success]
            avg = sum(s.duration for s in successful) / len(successful) if successful else 0.0
            stats[name] = {
                "total_calls": len(recent),
                "success_rate": round(100 * len(successful) / len(recent)),
                "avg_duration_seconds": round(avg, 3),
                "slow_calls": sum(1 for s in recent if s.duration > self._conf.slow_threshold_seconds),
                "critical_calls": sum(1 for s in recent if s.duration > self._conf.critical_threshold_seconds),
            }
        return stats
