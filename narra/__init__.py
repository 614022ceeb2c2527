"""
Narrative Analytics Engine

Read-only analytics over a world of characters, locations, events,
scenes, knowledge and facts. Each layer communicates only through the
contracts and the repository interfaces.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable world records, ErrorCode, Error, Result, audit events

2. REPOSITORY (repository/)
   - Reader interfaces over the world, an in-memory implementation and
     the hypothetical overlay used by what-if simulation
   - MUST NOT: Run analysis

3. ANALYTICS CORE (core/)
   - Arc tracking, perception, irony, influence, themes, consistency,
     impact, what-if and character-network analysis
   - MUST NOT: Write to the repository

4. EMBEDDING (embedding/)
   - Text-to-vector providers; only what-if simulation embeds new text

5. OBSERVABILITY (observability/)
   - Audit log and metrics for every request
   - MUST NOT: Modify system behavior

6. ENGINE (engine.py)
   - Facade returning a Result per operation

CONSTRAINTS ENFORCED:
=====================
- Deterministic: identical inputs and configuration give identical output
- Explicit errors: every failure is an ErrorCode, never a silent fallback
- Append-only arc history: snapshots are never edited or reordered
"""

from .engine import EngineConfig, NarrativeAnalyticsEngine

__version__ = "0.1.0"

__all__ = ['EngineConfig', 'NarrativeAnalyticsEngine', '__version__']
