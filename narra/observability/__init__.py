"""
Observability & Audit Layer

RESPONSIBILITY: Audit trail and metric series for every analysis request
ALLOWED INPUTS: Request outcomes reported by the engine facade
OUTPUTS: Per-component audit logs, labelled metric series, audit report

WHAT THIS LAYER MUST NOT DO:
============================
- Modify analysis results
- Raise into the calling operation
- Reorder collected entries
- Drop entries, except the oldest ones beyond a configured retention cap
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple
import hashlib
import itertools

from ..contracts.base import TimeWindow
from ..contracts.events import AuditEventType, AuditLogEntry, Labels, MetricPoint


# Components that report into the audit trail; others are added on first use
ANALYSIS_LAYERS: Tuple[str, ...] = (
    "arc", "perception", "irony", "influence", "clustering",
    "consistency", "impact", "whatif", "topology", "vectors",
)


# =============================================================================
# AUDIT LOG
# =============================================================================

class ComponentLog:
    """
    Audit entries reported by one component, oldest first.

    With ``max_entries`` set, the oldest entries are dropped once the log
    is full; ``dropped`` counts them.
    """

    def __init__(self, layer_name: str, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._layer_name = layer_name
        self._max_entries = max_entries
        self._entries: List[AuditLogEntry] = []
        self._dropped = 0

    def append(self, entry: AuditLogEntry):
        if entry.layer != self._layer_name:
            raise ValueError(f"Entry for '{entry.layer}' sent to '{self._layer_name}' log")
        self._entries.append(entry)
        if self._max_entries is not None and len(self._entries) > self._max_entries:
            overflow = len(self._entries) - self._max_entries
            del self._entries[:overflow]
            self._dropped += overflow

    def entries(
        self,
        time_window: Optional[TimeWindow] = None,
        event_type: Optional[AuditEventType] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        return [
            e for e in self._entries
            if (time_window is None or time_window.contains(e.timestamp))
            and (event_type is None or e.event_type is event_type)
            and (entity_id is None or e.entity_id == entity_id)
        ]

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def dropped(self) -> int:
        return self._dropped


# =============================================================================
# METRICS
# =============================================================================

class MetricType(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMING = "timing"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = ()


DEFAULT_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition("analysis_requests_total", MetricType.COUNTER,
                     "Analysis requests received", ("operation",)),
    MetricDefinition("analysis_failures_total", MetricType.COUNTER,
                     "Analysis requests answered with an error", ("operation", "error_code")),
    MetricDefinition("analysis_duration_ms", MetricType.TIMING,
                     "Wall time of successful analyses", ("operation",)),
    MetricDefinition("snapshots_recorded_total", MetricType.COUNTER,
                     "Arc snapshots appended to the ledger"),
)


@dataclass
class MetricSeries:
    """Points recorded for one metric, in recording order."""
    definition: MetricDefinition
    points: List[MetricPoint] = field(default_factory=list)

    def select(self, **labels: str) -> List[MetricPoint]:
        return [p for p in self.points if p.matches(**labels)]

    def summarize(self, **labels: str) -> Dict[str, float]:
        """
        count/sum/min/max/avg over the points matching ``labels``.

        Timings also report the nearest-rank 95th percentile.
        """
        values = [p.value for p in self.select(**labels)]
        if not values:
            return {}

        summary = {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'avg': sum(values) / len(values),
        }
        if self.definition.metric_type is MetricType.TIMING:
            ordered = sorted(values)
            rank = max(0, -(-95 * len(ordered) // 100) - 1)
            summary['p95'] = ordered[rank]
        return summary


class MetricsCollector:
    """Labelled metric series keyed by metric name."""

    def __init__(
        self,
        definitions: Tuple[MetricDefinition, ...] = DEFAULT_METRICS,
        max_points_per_metric: Optional[int] = None
    ):
        if max_points_per_metric is not None and max_points_per_metric < 1:
            raise ValueError("max_points_per_metric must be positive")
        self._max_points = max_points_per_metric
        self._series: Dict[str, MetricSeries] = {}
        for definition in definitions:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        existing = self._series.get(definition.name)
        if existing is None:
            self._series[definition.name] = MetricSeries(definition)
        else:
            existing.definition = definition

    def record(self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Append a point. Unregistered names become gauges."""
        if metric_name not in self._series:
            self.register_metric(MetricDefinition(metric_name, MetricType.GAUGE, ""))

        points = self._series[metric_name].points
        points.append(MetricPoint(
            metric_name=metric_name,
            value=float(value),
            recorded_at=datetime.now(timezone.utc),
            labels=tuple(sorted((labels or {}).items()))
        ))
        if self._max_points is not None and len(points) > self._max_points:
            del points[:len(points) - self._max_points]

    def series(self, metric_name: str) -> Optional[MetricSeries]:
        return self._series.get(metric_name)

    def definition(self, metric_name: str) -> Optional[MetricDefinition]:
        series = self._series.get(metric_name)
        return series.definition if series else None

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        series = self._series.get(metric_name)
        return list(series.points) if series else []

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        points = self.get_metric(metric_name)
        return points[-1] if points else None

    def compute_aggregates(self, metric_name: str, **labels: str) -> Dict[str, float]:
        series = self._series.get(metric_name)
        return series.summarize(**labels) if series else {}

    def names(self) -> List[str]:
        return sorted(self._series)


# =============================================================================
# OBSERVABILITY ENGINE
# =============================================================================

@dataclass
class ObservabilityConfig:
    enable_metrics: bool = True
    enable_audit: bool = True

    # Retention caps for long-lived engines; None keeps everything
    max_entries_per_layer: Optional[int] = None
    max_points_per_metric: Optional[int] = None


class ObservabilityEngine:
    """
    Collects the audit trail and metrics of one analytics engine.

    BOUNDARY ENFORCEMENT:
    - Records what it is told, never alters it
    - Exposes collected data read-only
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._logs: Dict[str, ComponentLog] = {}
        for name in ANALYSIS_LAYERS:
            self._log_for(name)
        self._metrics = (
            MetricsCollector(max_points_per_metric=self._config.max_points_per_metric)
            if self._config.enable_metrics else None
        )
        self._sequence = itertools.count()

    def log_audit(
        self,
        action: str,
        layer: str,
        entity_id: Optional[str] = None,
        event_type: AuditEventType = AuditEventType.ANALYSIS,
        metadata: Labels = ()
    ) -> Optional[AuditLogEntry]:
        """Record one request outcome. Returns None while auditing is disabled."""
        if not self._config.enable_audit:
            return None

        sequence = next(self._sequence)
        now = datetime.now(timezone.utc)
        digest = hashlib.sha256(
            f"{sequence}|{layer}|{action}|{entity_id}|{now.isoformat()}".encode('utf-8')
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{digest}",
            sequence=sequence,
            event_type=event_type,
            timestamp=now,
            layer=layer,
            action=action,
            entity_id=entity_id,
            metadata=tuple(metadata)
        )
        self._log_for(layer).append(entry)
        return entry

    def collect_metric(self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        if self._metrics is not None:
            self._metrics.record(metric_name, value, labels)

    def _log_for(self, layer: str) -> ComponentLog:
        log = self._logs.get(layer)
        if log is None:
            log = self._logs[layer] = ComponentLog(layer, self._config.max_entries_per_layer)
        return log

    def get_layer_log(self, layer_name: str) -> List[AuditLogEntry]:
        log = self._logs.get(layer_name)
        return log.entries() if log else []

    def get_unified_log(
        self,
        time_window: Optional[TimeWindow] = None,
        layers: Optional[List[str]] = None
    ) -> List[AuditLogEntry]:
        """Entries from all or the named components, in collection order."""
        names = layers if layers is not None else list(self._logs)
        merged = [
            entry
            for name in names if name in self._logs
            for entry in self._logs[name].entries(time_window=time_window)
        ]
        merged.sort(key=lambda e: e.sequence)
        return merged

    def failures(self, entity_id: Optional[str] = None) -> Iterator[AuditLogEntry]:
        for entry in self.get_unified_log():
            if entry.is_failure and (entity_id is None or entry.entity_id == entity_id):
                yield entry

    def get_metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def generate_audit_report(self, time_window: Optional[TimeWindow] = None) -> Dict:
        """Entry counts by component, event type and failed operation."""
        entries = self.get_unified_log(time_window=time_window)

        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        failed_operations: Dict[str, int] = {}
        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1
            if entry.is_failure:
                failed_operations[entry.action] = failed_operations.get(entry.action, 0) + 1

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'failed_operations': failed_operations,
            'failure_rate': (sum(failed_operations.values()) / len(entries)) if entries else 0.0,
            'dropped_entries': sum(log.dropped for log in self._logs.values()),
            'first_entry': entries[0].timestamp.isoformat() if entries else None,
            'last_entry': entries[-1].timestamp.isoformat() if entries else None,
        }
