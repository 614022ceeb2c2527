"""
Arc Tracker Tests
=================

INVARIANTS TESTED:
1. Snapshots are append-only and strictly ordered per entity
2. A rejected append leaves the ledger unchanged
3. Drift is the sum of consecutive cosine distances
4. Comparisons pair snapshots from the most recent backwards
"""

import math
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings, strategies as st

from narra.contracts.base import (
    DimensionMismatch, InsufficientHistory, InvalidParameter, NoSnapshotBeforeEvent,
    NotFound, OutOfOrderSnapshot, TimeWindow
)
from narra.core.arc import ArcTracker, ArcTrend, parse_recent_window

from tests.fixtures import at


def unit_at_similarity(similarity: float):
    """2-d unit vector whose cosine similarity to (1, 0) is ``similarity``."""
    return (similarity, math.sqrt(1.0 - similarity * similarity))


class TestRecording:

    def test_baseline_has_zero_delta(self):
        tracker = ArcTracker()
        snapshot = tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))

        assert snapshot.is_baseline
        assert snapshot.delta == 0.0
        assert snapshot.sequence == 0

    def test_delta_is_distance_from_previous(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        snapshot = tracker.record_snapshot("character:alice", (0.0, 1.0), at(1))

        assert snapshot.sequence == 1
        assert snapshot.delta == pytest.approx(1.0)

    def test_out_of_order_rejected_without_mutation(self):
        """A snapshot at or before the latest one is refused and nothing changes."""
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(2))

        with pytest.raises(OutOfOrderSnapshot):
            tracker.record_snapshot("character:alice", (0.0, 1.0), at(1))
        with pytest.raises(OutOfOrderSnapshot):
            tracker.record_snapshot("character:alice", (0.0, 1.0), at(2))

        assert tracker.snapshot_count("character:alice") == 1
        assert tracker.latest("character:alice").embedding == (1.0, 0.0)

    def test_dimension_change_rejected(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))

        with pytest.raises(DimensionMismatch):
            tracker.record_snapshot("character:alice", (1.0, 0.0, 0.0), at(1))
        assert tracker.snapshot_count("character:alice") == 1

    def test_entities_have_independent_timelines(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(5))
        tracker.record_snapshot("character:bob", (1.0, 0.0), at(1))

        assert tracker.tracked_entities() == ["character:alice", "character:bob"]

    def test_history_is_bounded_at_creation(self):
        """Appends after the view is taken are not visible to it."""
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        view = tracker.history("character:alice")
        tracker.record_snapshot("character:alice", (0.0, 1.0), at(1))

        assert len(view) == 1
        assert [s.sequence for s in view] == [0]
        assert not tracker.history("character:nobody")

    def test_naive_times_are_read_as_utc(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        snapshot = tracker.record_snapshot("character:alice", (0.0, 1.0), datetime(2024, 1, 1, 1))

        assert snapshot.recorded_at == at(1)
        assert snapshot.recorded_at.tzinfo is timezone.utc
        assert tracker.snapshot_at("character:alice", datetime(2024, 1, 1, 0, 30)).sequence == 0
        with pytest.raises(OutOfOrderSnapshot):
            tracker.record_snapshot("character:alice", (1.0, 0.0), datetime(2024, 1, 1))

    def test_empty_embedding_rejected(self):
        tracker = ArcTracker()

        with pytest.raises(InvalidParameter):
            tracker.record_snapshot("character:alice", (), at(0))
        assert tracker.snapshot_count("character:alice") == 0


class TestDrift:

    def test_single_snapshot_is_insufficient(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        score = tracker.drift("character:alice")

        assert score.drift == 0.0
        assert score.insufficient_history is True
        assert score.snapshot_count == 1

    def test_drift_sums_consecutive_distances(self):
        """Going out and coming back accumulates drift but no displacement."""
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        tracker.record_snapshot("character:alice", (0.0, 1.0), at(1))
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(2))
        score = tracker.drift("character:alice")

        assert score.drift == pytest.approx(2.0)
        assert score.net_displacement == 0.0
        assert score.assessment == "essentially unchanged"
        assert score.insufficient_history is False

    def test_rank_by_drift_orders_descending(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:calm", (1.0, 0.0), at(0))
        tracker.record_snapshot("character:calm", (1.0, 0.1), at(1))
        tracker.record_snapshot("character:wild", (1.0, 0.0), at(0))
        tracker.record_snapshot("character:wild", (0.0, 1.0), at(1))

        ranking = tracker.rank_by_drift()
        assert [s.entity_id for s in ranking] == ["character:wild", "character:calm"]

    def test_rank_ties_prefer_recent_then_id(self):
        tracker = ArcTracker()
        for key, start in (("b", 0), ("a", 0), ("c", 5)):
            tracker.record_snapshot(f"character:{key}", (1.0, 0.0), at(start))
            tracker.record_snapshot(f"character:{key}", (0.0, 1.0), at(start + 1))

        ranking = tracker.rank_by_drift()
        assert [s.entity_id for s in ranking] == ["character:c", "character:a", "character:b"]

    @settings(max_examples=40, deadline=None)
    @given(st.lists(
        st.lists(st.tuples(st.floats(0.1, 10.0), st.floats(0.1, 10.0)), min_size=1, max_size=5),
        min_size=1,
        max_size=5
    ))
    def test_ranking_is_non_increasing(self, timelines):
        """Ranked drift never increases down the list."""
        tracker = ArcTracker()
        for index, timeline in enumerate(timelines):
            for step, vector in enumerate(timeline):
                tracker.record_snapshot(f"character:e{index}", vector, at(step))

        drifts = [s.drift for s in tracker.rank_by_drift()]
        assert drifts == sorted(drifts, reverse=True)
        assert all(d >= 0.0 for d in drifts)

    def test_rank_scope_and_limit(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:a", (1.0, 0.0), at(0))
        ranking = tracker.rank_by_drift(["character:a", "character:unknown"], limit=1)

        assert [s.entity_id for s in ranking] == ["character:a"]

    def test_growth_vector_needs_two_snapshots(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        with pytest.raises(InsufficientHistory):
            tracker.growth_vector("character:alice")

        tracker.record_snapshot("character:alice", (0.5, 0.5), at(1))
        growth = tracker.growth_vector("character:alice")
        assert growth.vector == pytest.approx((-0.5, 0.5))
        assert growth.snapshot_count == 2
        assert growth.net_drift == pytest.approx(1.0 - math.sqrt(0.5))
        assert growth.neighbors == ()

    def test_growth_neighbors_follow_the_direction(self):
        """Candidates are ranked by alignment with the growth, not with the latest position."""
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        tracker.record_snapshot("character:alice", (0.5, 0.5), at(1))
        candidates = [
            ("character:alice", (-1.0, 1.0)),
            ("character:bob", (0.0, 1.0)),
            ("character:carl", (-1.0, 1.0)),
            ("location:attic", (1.0, 0.0, 0.0)),
        ]

        growth = tracker.growth_vector("character:alice", candidates, limit=5)

        assert [n.candidate_id for n in growth.neighbors] == ["character:carl", "character:bob"]
        assert growth.neighbors[0].alignment == pytest.approx(1.0)
        assert [n.candidate_id for n in tracker.growth_vector("character:alice", candidates, limit=1).neighbors] == [
            "character:carl"
        ]

    def test_unchanged_zero_embedding_does_not_drift(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:blank", (0.0, 0.0), at(0))
        tracker.record_snapshot("character:blank", (0.0, 0.0), at(1))

        assert tracker.drift("character:blank").drift == 0.0


class TestCompare:

    def _converging(self) -> ArcTracker:
        tracker = ArcTracker()
        for step, similarity in enumerate((0.5, 0.6, 0.7)):
            tracker.record_snapshot("character:a", unit_at_similarity(similarity), at(step))
            tracker.record_snapshot("character:b", (1.0, 0.0), at(step))
        return tracker

    def test_closing_distance_is_convergent(self):
        """Distances 0.5, 0.4, 0.3 over recent:3 converge."""
        comparison = self._converging().compare("character:a", "character:b", "recent:3")

        assert comparison.trend == ArcTrend.CONVERGENT
        assert [p.distance for p in comparison.distances] == pytest.approx([0.5, 0.4, 0.3])
        assert comparison.distance_change == pytest.approx(-0.2)
        assert comparison.initial_distance == pytest.approx(0.5)
        assert comparison.current_distance == pytest.approx(0.3)

    def test_reversed_order_is_divergent(self):
        tracker = ArcTracker()
        for step, similarity in enumerate((0.7, 0.6, 0.5)):
            tracker.record_snapshot("character:a", unit_at_similarity(similarity), at(step))
            tracker.record_snapshot("character:b", (1.0, 0.0), at(step))

        assert tracker.compare("character:a", "character:b").trend == ArcTrend.DIVERGENT

    def test_small_change_is_stable(self):
        tracker = ArcTracker()
        for step, similarity in enumerate((0.50, 0.51)):
            tracker.record_snapshot("character:a", unit_at_similarity(similarity), at(step))
            tracker.record_snapshot("character:b", (1.0, 0.0), at(step))

        assert tracker.compare("character:a", "character:b").trend == ArcTrend.STABLE

    def test_single_pair_is_stable_and_flagged(self):
        tracker = self._converging()
        comparison = tracker.compare("character:a", "character:b", "recent:1")

        assert comparison.trend == ArcTrend.STABLE
        assert comparison.insufficient_history is True
        assert comparison.trajectory_similarity is None

    def test_pairs_align_on_most_recent(self):
        """A shorter timeline pairs with the other entity's latest snapshots."""
        tracker = ArcTracker()
        for step, similarity in enumerate((0.1, 0.5, 0.7)):
            tracker.record_snapshot("character:a", unit_at_similarity(similarity), at(step))
        tracker.record_snapshot("character:b", (1.0, 0.0), at(10))
        tracker.record_snapshot("character:b", (1.0, 0.0), at(11))

        comparison = tracker.compare("character:a", "character:b")
        assert len(comparison.distances) == 2
        assert comparison.initial_distance == pytest.approx(0.5)

    def test_time_window_without_pairs_raises(self):
        tracker = self._converging()
        empty = TimeWindow(at(100), at(200))

        with pytest.raises(InsufficientHistory):
            tracker.compare("character:a", "character:b", empty)

    def test_unknown_entity_raises(self):
        with pytest.raises(NotFound):
            self._converging().compare("character:a", "character:ghost")

    @pytest.mark.parametrize("window", ["recent:0", "recent:x", "latest:3"])
    def test_bad_window_rejected(self, window):
        with pytest.raises(InvalidParameter):
            self._converging().compare("character:a", "character:b", window)

    def test_parse_recent_window(self):
        assert parse_recent_window("recent:4") == 4


class TestMoment:

    def test_latest_snapshot_at_or_before(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(0))
        tracker.record_snapshot("character:alice", (0.0, 1.0), at(2))

        assert tracker.moment("character:alice", at(1)).sequence == 0
        assert tracker.moment("character:alice", at(2)).sequence == 1
        assert tracker.moment("character:alice", at(9)).sequence == 1

    def test_event_before_first_snapshot_raises(self):
        tracker = ArcTracker()
        tracker.record_snapshot("character:alice", (1.0, 0.0), at(5))

        with pytest.raises(NoSnapshotBeforeEvent):
            tracker.moment("character:alice", at(5) - timedelta(seconds=1))
