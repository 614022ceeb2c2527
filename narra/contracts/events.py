"""
Audit and Metric Contracts

Immutable records produced by the observability layer. Every analysis
request leaves one audit entry; metric points carry sorted label pairs so
they compare and hash by value.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .base import split_entity_id


class AuditEventType(Enum):
    ANALYSIS = "analysis"
    SNAPSHOT = "snapshot"
    SIMULATION = "simulation"
    ERROR = "error"
    SYSTEM = "system"


Labels = Tuple[Tuple[str, str], ...]


def _lookup(pairs: Labels, key: str) -> Optional[str]:
    for k, v in pairs:
        if k == key:
            return v
    return None


@dataclass(frozen=True)
class AuditLogEntry:
    """One recorded request against an analytics component."""
    entry_id: str
    sequence: int  # Collection order, unique per engine
    event_type: AuditEventType
    timestamp: datetime
    layer: str
    action: str
    entity_id: Optional[str] = None
    metadata: Labels = ()

    def __post_init__(self):
        if self.sequence < 0:
            raise ValueError("sequence must be non-negative")

    @property
    def entity_type(self) -> Optional[str]:
        if not self.entity_id or ":" not in self.entity_id:
            return None
        return split_entity_id(self.entity_id)[0]

    @property
    def is_failure(self) -> bool:
        return self.event_type is AuditEventType.ERROR

    def metadata_value(self, key: str) -> Optional[str]:
        return _lookup(self.metadata, key)


@dataclass(frozen=True)
class MetricPoint:
    metric_name: str
    value: float
    recorded_at: datetime
    labels: Labels = ()

    def label(self, key: str) -> Optional[str]:
        return _lookup(self.labels, key)

    def matches(self, **labels: str) -> bool:
        return all(self.label(k) == v for k, v in labels.items())
