"""
Perception Analyzer Tests
=========================

Gap, observer agreement matrix and accuracy shift over history.
"""

import math

import pytest

from narra.contracts.base import MissingEmbedding, MissingPerception, NotFound
from narra.core.arc import ArcTracker
from narra.contracts.world import EntityType
from narra.core.perception import PerceptionAnalyzer

from tests.fixtures import at, character, entity, perception, world


ALICE = "character:alice"
BOB = "character:bob"
CAROL = "character:carol"
DAVE = "character:dave"


def direction(similarity: float):
    """Unit vector with the given cosine similarity to (1, 0)."""
    return (similarity, math.sqrt(1.0 - similarity * similarity))


def make_world():
    repository = world(
        character("alice", (1.0, 0.0)),
        character("bob", (0.0, 1.0)),
        character("carol", (0.0, 1.0)),
        character("dave"),
    )
    return repository


class TestGap:

    def test_gap_is_cosine_distance_to_reality(self):
        """A perception at similarity 0.2 to the target is a 0.8 gap."""
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, direction(0.2), feelings="wary", tension_level=6))

        gap = PerceptionAnalyzer(repository).gap(BOB, ALICE)

        assert gap.gap == pytest.approx(0.8, abs=1e-6)
        assert gap.accuracy == pytest.approx(0.2, abs=1e-6)
        assert gap.assessment == "dramatically wrong"
        assert gap.tension_level == 6

    def test_latest_perception_wins(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (0.0, 1.0), recorded_at=at(0)))
        repository.append_perception(perception(BOB, ALICE, (1.0, 0.0), recorded_at=at(1)))

        gap = PerceptionAnalyzer(repository).gap(BOB, ALICE)
        assert gap.gap == 0.0
        assert gap.assessment == "remarkably accurate"

    def test_no_perception_raises(self):
        with pytest.raises(MissingPerception):
            PerceptionAnalyzer(make_world()).gap(BOB, ALICE)

    def test_unembedded_perception_raises(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, None))

        with pytest.raises(MissingEmbedding):
            PerceptionAnalyzer(repository).gap(BOB, ALICE)

    def test_unembedded_target_raises(self):
        repository = make_world()
        repository.append_perception(perception(BOB, DAVE, (1.0, 0.0)))

        with pytest.raises(MissingEmbedding):
            PerceptionAnalyzer(repository).gap(BOB, DAVE)

    def test_unknown_target_raises(self):
        repository = make_world()
        repository.append_perception(perception(BOB, "character:ghost", (1.0, 0.0)))

        with pytest.raises(NotFound):
            PerceptionAnalyzer(repository).gap(BOB, "character:ghost")

    def test_misperception_vector(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (0.5, 0.5)))

        report = PerceptionAnalyzer(repository).misperception_vector(BOB, ALICE)

        assert report.vector == pytest.approx((-0.5, 0.5))
        assert report.gap == pytest.approx(1.0 - math.sqrt(0.5))
        assert report.assessment == "notable blind spots"

    def test_misperception_neighbors_exclude_the_pair(self):
        """Observer and target are never offered as explanations of the gap."""
        repository = make_world()
        repository.add_entity(entity("location:harbour", EntityType.LOCATION, (-1.0, 1.0)))
        repository.append_perception(perception(BOB, ALICE, (0.5, 0.5)))
        analyzer = PerceptionAnalyzer(repository)

        report = analyzer.misperception_vector(BOB, ALICE)

        assert [n.candidate_id for n in report.neighbors] == ["location:harbour", CAROL]
        assert [n.candidate_id for n in analyzer.misperception_vector(BOB, ALICE, limit=1).neighbors] == [
            "location:harbour"
        ]


class TestMatrix:

    def test_agreement_is_symmetric_without_self_pairs(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (1.0, 0.0)))
        repository.append_perception(perception(CAROL, ALICE, (0.0, 1.0)))
        repository.append_perception(perception(DAVE, ALICE, (1.0, 0.1)))

        matrix = PerceptionAnalyzer(repository).matrix(ALICE)

        assert matrix.agreement(BOB, CAROL) == pytest.approx(0.0)
        assert matrix.agreement(CAROL, BOB) == matrix.agreement(BOB, CAROL)
        assert matrix.agreement(BOB, BOB) is None
        assert len(matrix.agreements) == 3

    def test_rows_sorted_by_gap_with_partners(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (1.0, 0.0)))
        repository.append_perception(perception(CAROL, ALICE, (0.0, 1.0)))
        repository.append_perception(perception(DAVE, ALICE, (1.0, 0.1)))

        matrix = PerceptionAnalyzer(repository).matrix(ALICE)
        rows = {row.observer_id: row for row in matrix.rows}

        assert matrix.rows[0].observer_id == BOB
        assert matrix.rows[-1].observer_id == CAROL
        assert rows[BOB].agrees_with[0] == DAVE
        assert rows[BOB].disagrees_with[0] == CAROL
        assert matrix.target_has_embedding is True

    def test_requested_observer_without_perception_is_missing(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (1.0, 0.0)))

        matrix = PerceptionAnalyzer(repository).matrix(ALICE, [BOB, CAROL])

        assert matrix.missing_observers == (CAROL,)
        assert matrix.agreements == {}
        assert matrix.rows[0].agrees_with is None

    def test_unknown_target_raises(self):
        with pytest.raises(NotFound):
            PerceptionAnalyzer(make_world()).matrix("character:ghost")


class TestShift:

    def test_shift_against_arc_snapshots(self):
        """Each record is compared with the target as it was at the time."""
        repository = make_world()
        tracker = ArcTracker()
        tracker.record_snapshot(ALICE, (0.0, 1.0), at(0))
        tracker.record_snapshot(ALICE, (1.0, 0.0), at(10))

        repository.append_perception(perception(BOB, ALICE, (0.0, 1.0), recorded_at=at(1)))
        repository.append_perception(perception(BOB, ALICE, (0.0, 1.0), recorded_at=at(11)))

        shift = PerceptionAnalyzer(repository, tracker).shift(BOB, ALICE)

        assert [p.gap for p in shift.points] == pytest.approx([0.0, 1.0])
        assert [p.reference for p in shift.points] == ["snapshot", "snapshot"]
        assert shift.trajectory == "diverging"
        assert shift.gap_change == pytest.approx(1.0)

    def test_shift_falls_back_to_current_embedding(self):
        repository = make_world()
        repository.append_perception(perception(BOB, ALICE, (0.0, 1.0), recorded_at=at(1)))
        repository.append_perception(perception(BOB, ALICE, None, recorded_at=at(2)))
        repository.append_perception(perception(BOB, ALICE, (1.0, 0.0), recorded_at=at(3)))

        shift = PerceptionAnalyzer(repository).shift(BOB, ALICE)

        assert shift.trajectory == "converging"
        assert shift.skipped_without_embedding == 1
        assert {p.reference for p in shift.points} == {"current"}

    def test_shift_without_history_raises(self):
        with pytest.raises(MissingPerception):
            PerceptionAnalyzer(make_world()).shift(BOB, ALICE)
