"""
What-If Simulator Tests
=======================

INVARIANTS TESTED:
1. Simulation never writes to the repository
2. The character embedding moves toward the fact by the blend factor
3. Irony changes are reported as created and resolved asymmetries
"""

from datetime import timedelta

import pytest

from narra.contracts.base import InvalidParameter, MissingEmbedding, NotFound
from narra.contracts.world import Certainty
from narra.core.whatif import WhatIfConfig, WhatIfSimulator
from narra.embedding import StaticEmbeddingProvider

from tests.fixtures import EPOCH, at, character, knowledge, perception, world


ALICE = "character:alice"
BOB = "character:bob"
VAULT = "location:vault"


def setting():
    repository = world(character("alice", (1.0, 0.0)), character("bob", (0.0, 1.0)))
    repository.append_perception(perception(BOB, ALICE, (1.0, 0.0)))
    return repository


class TestSimulateLearning:

    def test_embedding_blends_toward_fact(self):
        report = WhatIfSimulator(setting()).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert report.hypothetical_embedding == pytest.approx((0.7, 0.3))
        assert report.embedding_shift == pytest.approx(0.0809, abs=1e-3)
        assert report.impact == "moderate"

    def test_repository_is_untouched(self):
        repository = setting()
        WhatIfSimulator(repository).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert repository.list_knowledge() == []
        assert repository.get_embedding(ALICE) == (1.0, 0.0)

    def test_observers_become_stale(self):
        report = WhatIfSimulator(setting()).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert [c.observer_id for c in report.gap_changes] == [BOB]
        assert report.gap_changes[0].gap_before == 0.0
        assert report.gap_changes[0].delta > 0
        assert report.stale_perspectives == (BOB,)

    def test_learning_creates_asymmetry(self):
        report = WhatIfSimulator(setting()).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert [(a.informed_id, a.uninformed_id) for a in report.created_asymmetries] == [(ALICE, BOB)]
        assert report.resolved_asymmetries == ()
        assert report.fact_key == "location:vault|the vault is empty"

    def test_learning_resolves_asymmetry(self):
        repository = setting()
        repository.append_knowledge(knowledge(BOB, VAULT, "The vault is empty", Certainty.KNOWS, at(1)))

        report = WhatIfSimulator(repository).simulate_learning(
            ALICE, "the vault is empty.", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert [(a.informed_id, a.uninformed_id) for a in report.resolved_asymmetries] == [(BOB, ALICE)]
        assert report.created_asymmetries == ()

    def test_similar_existing_knowledge_is_a_conflict(self):
        repository = setting()
        repository.append_knowledge(knowledge(
            ALICE, VAULT, "The vault holds gold", Certainty.KNOWS, at(1), fact_embedding=(0.1, 1.0)
        ))
        repository.append_knowledge(knowledge(
            ALICE, VAULT, "The guards sleep", Certainty.KNOWS, at(1), fact_embedding=(1.0, 0.0)
        ))

        report = WhatIfSimulator(repository).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert [c.fact for c in report.conflicts] == ["The vault holds gold"]
        assert report.conflicts[0].similarity > 0.7

    def test_hypothetical_record_is_latest(self):
        """A same-fact denial on the ledger is superseded by the simulated record."""
        repository = setting()
        repository.append_knowledge(knowledge(ALICE, VAULT, "The vault is empty", Certainty.DENIES, at(9)))
        repository.append_knowledge(knowledge(BOB, VAULT, "The vault is empty", Certainty.KNOWS, at(1)))

        report = WhatIfSimulator(repository).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )
        assert len(report.resolved_asymmetries) == 1

    def test_target_defaults_to_character(self):
        report = WhatIfSimulator(setting()).simulate_learning(
            ALICE, "I was adopted", fact_embedding=(0.0, 1.0)
        )
        assert report.fact_key == "character:alice|i was adopted"

    def test_embedder_supplies_fact_vector(self):
        embedder = StaticEmbeddingProvider({"The vault is empty": (0.0, 1.0)})
        report = WhatIfSimulator(setting(), embedder).simulate_learning(ALICE, "The vault is empty", VAULT)

        assert report.hypothetical_embedding == pytest.approx((0.7, 0.3))

    def test_no_vector_source_raises(self):
        with pytest.raises(MissingEmbedding):
            WhatIfSimulator(setting()).simulate_learning(ALICE, "The vault is empty", VAULT)

    def test_unknown_character_raises(self):
        with pytest.raises(NotFound):
            WhatIfSimulator(setting()).simulate_learning("character:ghost", "x", fact_embedding=(0.0, 1.0))

    @pytest.mark.parametrize("fact", ["", "   "])
    def test_blank_fact_raises(self, fact):
        with pytest.raises(InvalidParameter):
            WhatIfSimulator(setting()).simulate_learning(ALICE, fact, fact_embedding=(0.0, 1.0))

    def test_empty_ledger_stamp_follows_character_update(self):
        """Repeated runs over the same world stamp the hypothetical record identically."""
        simulator = WhatIfSimulator(setting())
        runs = [
            simulator.simulate_learning(ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0))
            for _ in range(2)
        ]

        onsets = [run.created_asymmetries[0].onset for run in runs]
        assert onsets == [EPOCH + timedelta(seconds=1)] * 2

    def test_stamp_follows_latest_ledger_record(self):
        repository = setting()
        repository.append_knowledge(knowledge(BOB, VAULT, "The guards sleep", Certainty.KNOWS, at(4)))

        report = WhatIfSimulator(repository).simulate_learning(
            ALICE, "The vault is empty", target_id=VAULT, fact_embedding=(0.0, 1.0)
        )

        assert report.created_asymmetries[0].onset == at(4) + timedelta(seconds=1)

    def test_blend_factor_validated(self):
        with pytest.raises(ValueError):
            WhatIfConfig(blend_factor=1.2)

    @pytest.mark.parametrize("shift, label", [
        (0.01, "negligible"),
        (0.03, "minor"),
        (0.07, "moderate"),
        (0.15, "major"),
        (0.5, "transformative"),
    ])
    def test_impact_labels(self, shift, label):
        assert WhatIfSimulator(setting()).classify_impact(shift) == label
