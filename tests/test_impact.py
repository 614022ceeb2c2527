"""
Impact Analyzer Tests
=====================

Reference-graph reach of a proposed change.
"""

import pytest

from narra.contracts.base import InvalidParameter, NotFound
from narra.contracts.world import Certainty, EntityType, RelationshipType
from narra.core.impact import Directness, ImpactAnalyzer, ImpactSeverity, severity_for_distance

from tests.fixtures import at, character, entity, knowledge, relationship, scene, world


def village():
    """mira - tom (relationship), tom -> well (knowledge), feast scene with tom and ana."""
    repository = world(
        character("mira"),
        character("tom"),
        character("ana"),
        character("hermit"),
        entity("location:well", EntityType.LOCATION),
        entity("scene:feast", EntityType.SCENE),
    )
    repository.add_relationship(relationship("character:mira", "character:tom", RelationshipType.FAMILY))
    repository.append_knowledge(knowledge(
        "character:tom", "location:well", "The well is poisoned", Certainty.KNOWS, at(1)
    ))
    repository.add_scene(scene("feast", at(2), ["character:tom", "character:ana"]))
    return repository


class TestImpact:

    def test_severity_falls_with_distance(self):
        report = ImpactAnalyzer(village()).analyze("character:mira", "Mira leaves the village")
        by_id = {a.entity_id: a for a in report.affected}

        assert by_id["character:tom"].severity is ImpactSeverity.HIGH
        assert by_id["character:tom"].directness is Directness.DIRECT
        assert by_id["character:tom"].via == "relationship"
        assert by_id["location:well"].severity is ImpactSeverity.MEDIUM
        assert by_id["scene:feast"].severity is ImpactSeverity.MEDIUM
        assert by_id["character:ana"].severity is ImpactSeverity.LOW
        assert by_id["character:ana"].distance == 3
        assert "character:hermit" not in by_id

    def test_sorted_by_severity_then_distance(self):
        report = ImpactAnalyzer(village()).analyze("character:mira")

        assert [a.entity_id for a in report.affected] == [
            "character:tom", "location:well", "scene:feast", "character:ana"
        ]
        assert report.highest_severity is ImpactSeverity.HIGH
        assert len(report.direct) == 1

    def test_depth_limits_reach(self):
        report = ImpactAnalyzer(village()).analyze("character:mira", max_depth=1)
        assert [a.entity_id for a in report.affected] == ["character:tom"]

    def test_protected_entities_are_critical(self):
        report = ImpactAnalyzer(village()).analyze("character:mira", protected={"character:ana"})

        assert report.affected[0].entity_id == "character:ana"
        assert report.affected[0].severity is ImpactSeverity.CRITICAL
        assert report.has_protected_impact
        assert report.warnings == ("Change reaches protected character:ana at distance 3",)

    def test_changing_a_protected_entity_warns(self):
        report = ImpactAnalyzer(village()).analyze("character:hermit", protected={"character:hermit"})

        assert report.affected == ()
        assert report.has_protected_impact
        assert report.highest_severity is None

    def test_unknown_entity_raises(self):
        with pytest.raises(NotFound):
            ImpactAnalyzer(village()).analyze("character:ghost")

    def test_depth_ceiling(self):
        with pytest.raises(InvalidParameter):
            ImpactAnalyzer(village()).analyze("character:mira", max_depth=11)

    @pytest.mark.parametrize("distance, protected, expected", [
        (0, False, ImpactSeverity.CRITICAL),
        (1, False, ImpactSeverity.HIGH),
        (2, False, ImpactSeverity.MEDIUM),
        (5, False, ImpactSeverity.LOW),
        (5, True, ImpactSeverity.CRITICAL),
    ])
    def test_severity_for_distance(self, distance, protected, expected):
        assert severity_for_distance(distance, protected) is expected
