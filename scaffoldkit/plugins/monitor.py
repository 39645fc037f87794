"""Per-plugin operation metrics.

The registry wraps each call into a plugin in ``start_operation`` /
``end_operation`` (or the ``track`` context manager).  History is kept in
memory per plugin and bounded; ``report()`` summarises it.
"""

from __future__ import annotations

import itertools
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .context import PluginLogger


class OperationType(str, Enum):
    INITIALIZE = "initialize"
    GET_TEMPLATES = "get_templates"
    GENERATE_SCAFFOLD = "generate_scaffold"
    HEALTH_CHECK = "health_check"
    CLEANUP = "cleanup"


class PerformanceThresholds(BaseModel):
    """Limits in seconds; a success rate is a fraction in ``[0, 1]``."""

    max_initialization_time: float = 5.0
    max_template_retrieval_time: float = 1.0
    max_scaffold_generation_time: float = 30.0
    min_success_rate: float = Field(default=0.95, ge=0, le=1)

    def limit_for(self, operation: OperationType) -> float | None:
        return {
            OperationType.INITIALIZE: self.max_initialization_time,
            OperationType.GET_TEMPLATES: self.max_template_retrieval_time,
            OperationType.GENERATE_SCAFFOLD: self.max_scaffold_generation_time,
        }.get(operation)


@dataclass
class OperationMetric:
    plugin_id: str
    operation_id: str
    operation: OperationType
    started_at: float
    ended_at: float = 0.0
    success: bool = False
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return max(0.0, self.ended_at - self.started_at)


class OperationBreakdown(BaseModel):
    operation: OperationType
    count: int
    average_duration: float
    min_duration: float
    max_duration: float
    success_rate: float


class Recommendation(BaseModel):
    priority: str
    category: str
    issue: str
    recommendation: str


class PerformanceTrend(BaseModel):
    metric: str
    direction: str
    change: float


class PerformanceReport(BaseModel):
    plugin_id: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    total_operations: int
    average_duration: float
    success_rate: float
    operations: list[OperationBreakdown] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    trends: list[PerformanceTrend] = Field(default_factory=list)
    last_error: Optional[str] = None


class OperationHandle:
    """Yielded by ``PluginMonitor.track``; set ``success`` to record a soft failure."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        self.success = True
        self.error: str | None = None


class PluginMonitor:
    """In-memory performance monitor for plugin operations."""

    MIN_SAMPLES_FOR_TRENDS = 10

    def __init__(
        self,
        logger: PluginLogger | None = None,
        *,
        max_history: int = 1000,
        thresholds: PerformanceThresholds | None = None,
        enabled: bool = True,
    ) -> None:
        self.logger = logger
        self.max_history = max_history
        self.thresholds = thresholds or PerformanceThresholds()
        self.enabled = enabled
        self._history: dict[str, deque[OperationMetric]] = defaultdict(
            lambda: deque(maxlen=self.max_history)
        )
        self._active: dict[str, OperationMetric] = {}
        self._ids = itertools.count(1)

    # -- Recording ---------------------------------------------------------

    def start_operation(
        self, plugin_id: str, operation: OperationType, **metadata: Any
    ) -> str:
        """Begin timing an operation; returns ``""`` when monitoring is off."""
        if not self.enabled:
            return ""
        operation_id = f"{plugin_id}:{operation.value}:{next(self._ids)}"
        self._active[operation_id] = OperationMetric(
            plugin_id=plugin_id,
            operation_id=operation_id,
            operation=operation,
            started_at=time.monotonic(),
            metadata=metadata,
        )
        if self.logger:
            self.logger.debug("Operation started", plugin_id=plugin_id, operation=operation.value)
        return operation_id

    def end_operation(self, operation_id: str, success: bool = True, error: str | None = None) -> None:
        metric = self._active.pop(operation_id, None)
        if metric is None:
            return
        metric.ended_at = time.monotonic()
        metric.success = success
        metric.error = error
        self._history[metric.plugin_id].append(metric)

        limit = self.thresholds.limit_for(metric.operation)
        if limit is not None and metric.duration > limit and self.logger:
            self.logger.warn(
                "Performance threshold exceeded",
                plugin_id=metric.plugin_id,
                operation=metric.operation.value,
                duration=round(metric.duration, 3),
                limit=limit,
            )

    @asynccontextmanager
    async def track(
        self, plugin_id: str, operation: OperationType, **metadata: Any
    ) -> AsyncIterator[OperationHandle]:
        handle = OperationHandle(self.start_operation(plugin_id, operation, **metadata))
        try:
            yield handle
        except BaseException as exc:
            self.end_operation(handle.operation_id, False, str(exc) or type(exc).__name__)
            raise
        self.end_operation(handle.operation_id, handle.success, handle.error)

    # -- Reporting ---------------------------------------------------------

    def metrics(self, plugin_id: str) -> list[OperationMetric]:
        return list(self._history.get(plugin_id, ()))

    def report(self, plugin_id: str) -> PerformanceReport | None:
        """Summarise the recorded history of *plugin_id*, or ``None`` if empty."""
        metrics = self.metrics(plugin_id)
        if not metrics:
            return None

        failures = [m for m in metrics if not m.success and m.error]
        return PerformanceReport(
            plugin_id=plugin_id,
            total_operations=len(metrics),
            average_duration=_average(m.duration for m in metrics),
            success_rate=_success_rate(metrics),
            operations=self._breakdown(metrics),
            recommendations=self._recommendations(metrics),
            trends=self._trends(metrics),
            last_error=failures[-1].error if failures else None,
        )

    def stats(self) -> dict[str, int]:
        return {
            "plugins": len(self._history),
            "operations": sum(len(h) for h in self._history.values()),
            "active_operations": len(self._active),
        }

    def clear(self, plugin_id: str | None = None) -> None:
        if plugin_id is None:
            self._history.clear()
        else:
            self._history.pop(plugin_id, None)

    def _breakdown(self, metrics: list[OperationMetric]) -> list[OperationBreakdown]:
        groups: dict[OperationType, list[OperationMetric]] = defaultdict(list)
        for metric in metrics:
            groups[metric.operation].append(metric)

        rows = []
        for operation, group in groups.items():
            durations = [m.duration for m in group]
            rows.append(
                OperationBreakdown(
                    operation=operation,
                    count=len(group),
                    average_duration=_average(durations),
                    min_duration=min(durations),
                    max_duration=max(durations),
                    success_rate=_success_rate(group),
                )
            )
        return rows

    def _recommendations(self, metrics: list[OperationMetric]) -> list[Recommendation]:
        out: list[Recommendation] = []

        slow = [
            m
            for m in metrics
            if (limit := self.thresholds.limit_for(m.operation)) is not None and m.duration > limit
        ]
        if slow:
            ratio = len(slow) / len(metrics)
            out.append(
                Recommendation(
                    priority="high" if ratio > 0.5 else "medium",
                    category="speed",
                    issue=f"{ratio * 100:.1f}% of operations exceed performance thresholds",
                    recommendation="Cache expensive work or reduce filesystem I/O in slow operations",
                )
            )

        success_rate = _success_rate(metrics)
        if success_rate < self.thresholds.min_success_rate:
            out.append(
                Recommendation(
                    priority="high",
                    category="reliability",
                    issue=f"Success rate ({success_rate * 100:.1f}%) below threshold",
                    recommendation="Improve error handling and validate options before generating",
                )
            )

        listings = sum(1 for m in metrics if m.operation is OperationType.GET_TEMPLATES)
        generations = sum(1 for m in metrics if m.operation is OperationType.GENERATE_SCAFFOLD)
        if listings > max(generations, 1) * 10:
            out.append(
                Recommendation(
                    priority="low",
                    category="scalability",
                    issue="Templates are listed far more often than scaffolds are generated",
                    recommendation="Cache the template list",
                )
            )
        return out

    def _trends(self, metrics: list[OperationMetric]) -> list[PerformanceTrend]:
        if len(metrics) < self.MIN_SAMPLES_FOR_TRENDS:
            return []

        middle = len(metrics) // 2
        older, newer = metrics[:middle], metrics[middle:]
        trends = []

        old_time = _average(m.duration for m in older)
        new_time = _average(m.duration for m in newer)
        if old_time > 0:
            change = (new_time - old_time) / old_time * 100
            trends.append(
                PerformanceTrend(
                    metric="average_duration",
                    direction="degrading" if change > 5 else "improving" if change < -5 else "stable",
                    change=change,
                )
            )

        old_rate, new_rate = _success_rate(older), _success_rate(newer)
        if old_rate > 0:
            change = (new_rate - old_rate) / old_rate * 100
            trends.append(
                PerformanceTrend(
                    metric="success_rate",
                    direction="improving" if change > 2 else "degrading" if change < -2 else "stable",
                    change=change,
                )
            )
        return trends


def _average(values: Any) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def _success_rate(metrics: list[OperationMetric]) -> float:
    return sum(1 for m in metrics if m.success) / len(metrics) if metrics else 0.0
