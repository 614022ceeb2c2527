"""
Base Contracts and Shared Types

Error codes, the Result envelope returned by the engine facade, the
exceptions raised inside analytics components, and time windows.

BOUNDARY ENFORCEMENT:
=====================
- Nothing in here reads the world or holds state
- Analytics components raise AnalysisError subclasses
- The engine facade turns them into Error records inside a Result
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR RECORDS
# =============================================================================

class ErrorCode(Enum):
    """Every way an analysis can fail to produce a report."""
    # Lookup
    NOT_FOUND = auto()
    MISSING_EMBEDDING = auto()
    MISSING_PERCEPTION = auto()

    # Vectors
    DIMENSION_MISMATCH = auto()
    EMPTY_INPUT = auto()

    # Not enough data to analyse
    INSUFFICIENT_HISTORY = auto()
    INSUFFICIENT_ENTITIES = auto()

    # Snapshot ledger
    OUT_OF_ORDER_SNAPSHOT = auto()
    NO_SNAPSHOT_BEFORE_EVENT = auto()

    INVALID_PARAMETER = auto()


@dataclass(frozen=True)
class Error:
    """
    A failed analysis, as data.

    ``context`` holds ordered key/value pairs; ``entity_id`` and
    ``operation`` are always present once the facade has seen the error.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = ()

    def with_context(self, key: str, value: str) -> Error:
        return Error(self.code, self.message, self.timestamp, self.context + ((key, value),))

    def context_value(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None

    @property
    def entity_id(self) -> Optional[str]:
        return self.context_value("entity_id")

    @property
    def operation(self) -> Optional[str]:
        return self.context_value("operation")

    def describe(self) -> str:
        """One-line rendering such as ``perception_gap(character:anna): NOT_FOUND - ...``."""
        subject = f"{self.operation or 'analysis'}({self.entity_id})" if self.entity_id else (self.operation or "analysis")
        return f"{subject}: {self.code.name} - {self.message}"


@dataclass(frozen=True)
class Result:
    """Outcome of one facade call: a report in ``value`` or an ``error``."""
    value: Optional[object] = None
    error: Optional[Error] = None

    def __post_init__(self):
        if self.value is not None and self.error is not None:
            raise ValueError("Result cannot carry both a value and an error")

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(error=error)

    def unwrap(self) -> object:
        """The report, or the failure re-raised as its AnalysisError subclass."""
        if self.error is None:
            return self.value
        raise error_class(self.error.code)(
            self.error.message,
            entity_id=self.error.entity_id,
            operation=self.error.operation
        )


# =============================================================================
# ANALYSIS EXCEPTIONS
# =============================================================================

class AnalysisError(Exception):
    """
    Raised by analytics components when an analysis cannot produce a result.

    Carries the entity and operation so the caller can render a message
    without re-deriving context.
    """
    code: ErrorCode = ErrorCode.INVALID_PARAMETER

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.operation = operation

    def to_error(self) -> Error:
        """Convert into an immutable Error record."""
        error = Error(
            code=self.code,
            message=self.message,
            timestamp=datetime.now(timezone.utc)
        )
        if self.entity_id is not None:
            error = error.with_context("entity_id", self.entity_id)
        if self.operation is not None:
            error = error.with_context("operation", self.operation)
        return error


class NotFound(AnalysisError):
    code = ErrorCode.NOT_FOUND


class DimensionMismatch(AnalysisError):
    code = ErrorCode.DIMENSION_MISMATCH


class EmptyInput(AnalysisError):
    code = ErrorCode.EMPTY_INPUT


class MissingEmbedding(AnalysisError):
    code = ErrorCode.MISSING_EMBEDDING


class MissingPerception(AnalysisError):
    code = ErrorCode.MISSING_PERCEPTION


class InsufficientHistory(AnalysisError):
    code = ErrorCode.INSUFFICIENT_HISTORY


class InsufficientEntities(AnalysisError):
    code = ErrorCode.INSUFFICIENT_ENTITIES


class OutOfOrderSnapshot(AnalysisError):
    code = ErrorCode.OUT_OF_ORDER_SNAPSHOT


class NoSnapshotBeforeEvent(AnalysisError):
    code = ErrorCode.NO_SNAPSHOT_BEFORE_EVENT


class InvalidParameter(AnalysisError):
    code = ErrorCode.INVALID_PARAMETER


def error_class(code: ErrorCode) -> type:
    """The AnalysisError subclass raised for ``code``."""
    for cls in AnalysisError.__subclasses__():
        if cls.code is code:
            return cls
    return AnalysisError


# =============================================================================
# IDENTITY HELPERS
# =============================================================================

def split_entity_id(entity_id: str) -> Tuple[str, str]:
    """Split a typed identifier such as ``character:alice`` into its parts."""
    if ":" not in entity_id:
        return "", entity_id
    prefix, _, key = entity_id.partition(":")
    return prefix, key


def name_from_id(entity_id: str) -> str:
    """Readable fallback name for a typed identifier."""
    _, key = split_entity_id(entity_id)
    return key.replace("_", " ").title() if key else entity_id


# =============================================================================
# TEMPORAL TYPES
# =============================================================================

def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    """Immutable closed time range [start, end], in UTC."""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, 'start', as_utc(self.start))
        object.__setattr__(self, 'end', as_utc(self.end))
        if self.end < self.start:
            raise ValueError("TimeWindow end must not precede start")

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end
