"""
Observability & Audit Layer

RESPONSIBILITY: Audit trail and metrics for engine decisions
OUTPUTS: AuditLog, MetricsCollector

WHAT THIS LAYER MUST NOT DO:
============================
- Modify engine behavior
- Make decisions based on recorded data
- Block other operations

BOUNDARY ENFORCEMENT:
=====================
- Records frozen entries only
- Provides read-only copies of logs and metrics
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple
import hashlib
import itertools
import math

from .clock import SystemClock


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    INFERENCE_FAILURE = "inference_failure"
    STATE_CHANGE = "state_change"
    POLICY = "policy"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: datetime
    component: str  # Which component generated this
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def meta(self, key: str) -> Optional[str]:
        for k, v in self.metadata:
            if k == key:
                return v
        return None


class AuditLog:
    """
    Append-only audit log.

    Entries are never modified. Only the newest max_entries are kept.
    """

    def __init__(self, clock=None, max_entries: int = 10000):
        self._clock = clock or SystemClock()
        self._entries: Deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._sequence = itertools.count(1)

    def record(
        self,
        event_type: AuditEventType,
        component: str,
        action: str,
        entity_id: Optional[str] = None,
        **metadata: str
    ) -> AuditLogEntry:
        now = self._clock.now()
        seq = next(self._sequence)
        entry_id = hashlib.sha256(
            f"{component}_{action}|{seq}|{now.timestamp()}".encode()
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{entry_id}",
            event_type=event_type,
            timestamp=now,
            component=component,
            action=action,
            entity_id=entity_id,
            metadata=tuple(sorted((k, str(v)) for k, v in metadata.items())),
        )
        self._entries.append(entry)
        return entry

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = self._entries
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if action:
            entries = [e for e in entries if e.action == action]
        return list(entries)

    @property
    def entry_count(self) -> int:
        return len(self._entries)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricType(Enum):
    """Types of metrics collected."""
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMING = "timing"


@dataclass
class MetricDefinition:
    """Definition of a metric to collect."""
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: datetime
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


class _Series:
    """Recent points plus running aggregates over everything recorded."""

    def __init__(self, max_points: int):
        self.points: Deque[MetricPoint] = deque(maxlen=max_points)
        self.count = 0
        self.sum = 0.0
        self.min = math.inf
        self.max = -math.inf

    def add(self, point: MetricPoint) -> None:
        self.points.append(point)
        self.count += 1
        self.sum += point.value
        self.min = min(self.min, point.value)
        self.max = max(self.max, point.value)


class MetricsCollector:
    """
    Collect and aggregate engine metrics.

    Each metric keeps its last max_points data points; count, sum, min
    and max cover every point ever recorded.
    """

    def __init__(self, clock=None, max_points: int = 1000):
        self._clock = clock or SystemClock()
        self._max_points = max_points
        self._metrics: Dict[str, _Series] = {}
        self._definitions: Dict[str, MetricDefinition] = {}
        self._register_default_metrics()

    def _register_default_metrics(self):
        defaults = [
            MetricDefinition(
                name="inference_failures_total",
                metric_type=MetricType.COUNTER,
                description="Inference calls recovered by the hardener",
                labels=("kind", "code")
            ),
            MetricDefinition(
                name="inference_latency_ms",
                metric_type=MetricType.TIMING,
                description="Inference round trip in milliseconds",
                labels=("kind",)
            ),
            MetricDefinition(
                name="incidents_created_total",
                metric_type=MetricType.COUNTER,
                description="Incidents created",
                labels=("kind",)
            ),
            MetricDefinition(
                name="critical_keyword_overrides_total",
                metric_type=MetricType.COUNTER,
                description="Reports classified by the local keyword filter"
            ),
            MetricDefinition(
                name="subjects_registered",
                metric_type=MetricType.GAUGE,
                description="Number of registered subjects"
            ),
        ]

        for definition in defaults:
            self.register_metric(definition)


    def register_metric(self, definition: MetricDefinition):
        """Register a new metric definition."""
        self._definitions[definition.name] = definition
        if definition.name not in self._metrics:
            self._metrics[definition.name] = _Series(self._max_points)

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Record a metric data point."""
        if metric_name not in self._metrics:
            self._metrics[metric_name] = _Series(self._max_points)

        label_tuple = tuple(sorted(labels.items())) if labels else ()
        self._metrics[metric_name].add(MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=self._clock.now(),
            labels=label_tuple
        ))

    def increment(self, metric_name: str, labels: Optional[Dict[str, str]] = None):
        self.record(metric_name, 1.0, labels)

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        """Retained points, oldest first."""
        series = self._metrics.get(metric_name)
        return list(series.points) if series else []

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        series = self._metrics.get(metric_name)
        return series.points[-1] if series and series.points else None

    def total(self, metric_name: str) -> float:
        """Sum of every recorded value; the counter reading for counters."""
        series = self._metrics.get(metric_name)
        return series.sum if series else 0.0

    def compute_aggregates(self, metric_name: str) -> Dict[str, float]:
        """Compute aggregate statistics for a metric."""
        series = self._metrics.get(metric_name)

        if not series or not series.count:
            return {}

        return {
            'count': series.count,
            'sum': series.sum,
            'min': series.min,
            'max': series.max,
            'avg': series.sum / series.count,
        }

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Aggregates for every metric that has data."""
        return {
            name: self.compute_aggregates(name)
            for name, series in self._metrics.items()
            if series.count
        }
