"""
Data module - Outcome access layer.

This module provides access to:
- OutcomeSource: abstract read-only outcome source
- InMemoryOutcomeSource: list-backed source
- SqliteOutcomeStore: SQLite-backed store with bounded connection timeout
- parse_rows: row validation into PredictionOutcome records

Usage:
    from data import SqliteOutcomeStore, parse_rows

    store = SqliteOutcomeStore("data/predictions.db")
    outcomes, skipped = parse_rows(store.fetch_outcomes(algorithm_id, since))
"""

from data.outcome_store import (
    OutcomeSource,
    InMemoryOutcomeSource,
    SqliteOutcomeStore,
    parse_rows,
)

__all__ = [
    'OutcomeSource',
    'InMemoryOutcomeSource',
    'SqliteOutcomeStore',
    'parse_rows',
]
