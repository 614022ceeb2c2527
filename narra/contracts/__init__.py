"""
Contracts Module

Immutable world records, error types and audit events shared by every
component. Components exchange these types only; nothing here holds
behaviour beyond validation.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Failures are enumerated in ErrorCode and carried by AnalysisError
3. All timestamps are timezone-aware UTC
"""
