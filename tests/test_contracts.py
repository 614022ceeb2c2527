"""
Contract Tests
==============

Error records, the Result envelope and time windows.
"""

from datetime import datetime, timedelta, timezone

import pytest

from narra.contracts.base import (
    ErrorCode, InvalidParameter, MissingPerception, NotFound, Result, TimeWindow, error_class
)
from narra.contracts.world import ArcSnapshot, Certainty, Entity, EntityType
from tests.fixtures import EPOCH, at, event, knowledge, perception, scene


class TestErrorRecords:

    def test_exception_converts_with_context(self):
        error = MissingPerception("No perception", entity_id="character:anna", operation="perception_gap").to_error()

        assert error.code is ErrorCode.MISSING_PERCEPTION
        assert error.entity_id == "character:anna"
        assert error.operation == "perception_gap"
        assert error.describe() == "perception_gap(character:anna): MISSING_PERCEPTION - No perception"

    def test_with_context_returns_new_record(self):
        error = NotFound("gone").to_error()
        extended = error.with_context("entity_id", "character:ben")

        assert error.entity_id is None
        assert extended.entity_id == "character:ben"
        assert extended.describe() == "analysis(character:ben): NOT_FOUND - gone"

    def test_error_class_lookup(self):
        assert error_class(ErrorCode.NOT_FOUND) is NotFound
        assert error_class(ErrorCode.INVALID_PARAMETER) is InvalidParameter


class TestResult:

    def test_success_unwraps_value(self):
        result = Result.success(3)

        assert result.is_success
        assert result.unwrap() == 3

    def test_failure_reraises_matching_exception(self):
        result = Result.failure(NotFound("gone", entity_id="character:ghost", operation="arc_drift").to_error())

        assert result.is_failure
        with pytest.raises(NotFound) as info:
            result.unwrap()
        assert info.value.entity_id == "character:ghost"
        assert info.value.operation == "arc_drift"

    def test_value_and_error_are_exclusive(self):
        with pytest.raises(ValueError):
            Result(value=1, error=NotFound("gone").to_error())


class TestTimeWindow:

    def test_bounds_are_inclusive(self):
        window = TimeWindow(EPOCH, EPOCH + timedelta(hours=2))

        assert window.contains(EPOCH)
        assert window.contains(EPOCH + timedelta(hours=2))
        assert not window.contains(EPOCH + timedelta(hours=3))

    def test_reversed_window_rejected(self):
        with pytest.raises(ValueError):
            TimeWindow(EPOCH + timedelta(hours=1), EPOCH)

    def test_naive_bounds_are_read_as_utc(self):
        window = TimeWindow(datetime(2024, 1, 1), datetime(2024, 1, 1, 2))

        assert window.start == EPOCH
        assert window.contains(at(1))
        assert window.contains(datetime(2024, 1, 1, 2))


class TestTimestampNormalization:
    """Record timestamps are stored timezone-aware in UTC."""

    NAIVE = datetime(2024, 1, 1, 3)

    def test_naive_record_times_become_utc(self):
        records = [
            (Entity("character:anna", EntityType.CHARACTER, "Anna", self.NAIVE, self.NAIVE), "updated_at"),
            (event("storm", 1, self.NAIVE), "occurs_at"),
            (knowledge("character:anna", "event:storm", "storm came", Certainty.KNOWS, self.NAIVE), "learned_at"),
            (perception("character:ben", "character:anna", recorded_at=self.NAIVE), "recorded_at"),
            (scene("dock", self.NAIVE, ["character:anna"]), "occurred_at"),
            (ArcSnapshot("character:anna", (1.0, 0.0), self.NAIVE, 0), "recorded_at"),
        ]

        for record, attribute in records:
            moment = getattr(record, attribute)
            assert moment == at(3)
            assert moment.tzinfo is timezone.utc

    def test_aware_times_are_converted_to_utc(self):
        local = datetime(2024, 1, 1, 5, tzinfo=timezone(timedelta(hours=2)))

        assert scene("dock", local, []).occurred_at == at(3)
        assert scene("dock", local, []).occurred_at.tzinfo is timezone.utc

    def test_naive_and_aware_records_compare(self):
        naive = knowledge("character:anna", "event:storm", "storm came", Certainty.KNOWS, self.NAIVE)
        aware = knowledge("character:ben", "event:storm", "storm came", Certainty.KNOWS, at(4))

        assert naive.learned_at < aware.learned_at
