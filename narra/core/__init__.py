"""
Analytics Core

One module per component, leaf-first:

- vector_math: cosine distance, centroids, nearest neighbours
- arc: per-entity snapshot timelines, drift, comparison, moments
- perception: perception gap, agreement matrix, accuracy shift
- irony: knowledge asymmetries over the knowledge ledger
- influence: fact diffusion through the relationship graph
- clustering: deterministic k-means themes and coverage gaps
- consistency: rule validation against the world and its facts
- impact: change impact over the reference graph
- whatif: hypothetical learning simulation
- topology: character-graph centrality and roles

Components read the world only through the repository interfaces and
hold no hidden state, apart from the ArcTracker's snapshot ledger.
"""

from .arc import ArcConfig, ArcTracker, ArcTrend
from .perception import PerceptionAnalyzer, PerceptionConfig
from .irony import IronyConfig, IronyDetector
from .influence import InfluenceConfig, InfluencePropagator
from .clustering import ClusteringConfig, CoverageExpectation, ThematicClusterer
from .consistency import ConsistencyValidator, Severity, ValidatorConfig
from .impact import ImpactAnalyzer, ImpactConfig, ImpactSeverity
from .whatif import WhatIfConfig, WhatIfSimulator
from .topology import CharacterNetwork, NarrativeRole

__all__ = [
    'ArcConfig', 'ArcTracker', 'ArcTrend',
    'PerceptionAnalyzer', 'PerceptionConfig',
    'IronyConfig', 'IronyDetector',
    'InfluenceConfig', 'InfluencePropagator',
    'ClusteringConfig', 'CoverageExpectation', 'ThematicClusterer',
    'ConsistencyValidator', 'Severity', 'ValidatorConfig',
    'ImpactAnalyzer', 'ImpactConfig', 'ImpactSeverity',
    'WhatIfConfig', 'WhatIfSimulator',
    'CharacterNetwork', 'NarrativeRole',
]
