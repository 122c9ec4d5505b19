"""
Outcome Store
=============
Read access to per-algorithm prediction outcomes.

The engine only reads: `fetch_outcomes(algorithm_id, since)` returns raw
row dicts which are validated into PredictionOutcome records by
`parse_rows` (malformed rows are skipped with a warning).

Backends:
- InMemoryOutcomeSource: list-backed, for tests and embedding
- SqliteOutcomeStore: SQLite table read with pandas, bounded by a
  connection timeout; also records predictions and settlements so the
  CLI can be driven end to end

Usage:
    from data.outcome_store import SqliteOutcomeStore, parse_rows

    store = SqliteOutcomeStore("data/predictions.db")
    rows = store.fetch_outcomes(algorithm_id, since)
    outcomes, skipped = parse_rows(rows)
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from core.exceptions import DataUnavailableError
from calibration.types import OutcomeStatus, PredictionOutcome, ensure_utc, parse_rows

logger = logging.getLogger(__name__)


class OutcomeSource(ABC):
    """Abstract read-only outcome source."""

    @abstractmethod
    def fetch_outcomes(self, algorithm_id: str, since: datetime) -> List[Dict[str, Any]]:
        """
        Rows for one algorithm predicted at or after `since`.

        Raises:
            DataUnavailableError: the source is unreachable or timed out
        """
        pass

    @property
    def name(self) -> str:
        return type(self).__name__


class InMemoryOutcomeSource(OutcomeSource):
    """List-backed source; rows may be dicts or PredictionOutcome records."""

    def __init__(self, rows: Optional[List[Union[Dict[str, Any], PredictionOutcome]]] = None):
        self._rows: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        for row in rows or []:
            self.add(row)

    def add(self, row: Union[Dict[str, Any], PredictionOutcome]) -> None:
        if isinstance(row, PredictionOutcome):
            row = row.to_dict()
        with self._lock:
            self._rows.append(dict(row))

    def extend(self, rows) -> None:
        for row in rows:
            self.add(row)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def fetch_outcomes(self, algorithm_id: str, since: datetime) -> List[Dict[str, Any]]:
        since = ensure_utc(since)
        with self._lock:
            rows = [dict(r) for r in self._rows if r.get('algorithm_id') == algorithm_id]

        selected = []
        for row in rows:
            predicted_at = row.get('predicted_at')
            if isinstance(predicted_at, datetime) and ensure_utc(predicted_at) < since:
                continue
            if isinstance(predicted_at, str):
                try:
                    if ensure_utc(datetime.fromisoformat(predicted_at.replace('Z', '+00:00'))) < since:
                        continue
                except ValueError:
                    pass  # left for parse_rows to reject
            selected.append(row)
        return selected


class SqliteOutcomeStore(OutcomeSource):
    """
    SQLite-backed outcome store.

    Timestamps are stored as ISO-8601 UTC text, so lexical comparison in
    SQL matches chronological order.
    """

    DEFAULT_PATH = Path(__file__).parent / "predictions.db"

    def __init__(self, db_path: Union[str, Path, None] = None, timeout: float = 10.0):
        self.db_path = Path(db_path) if db_path else self.DEFAULT_PATH
        self.timeout = timeout
        self._init_db()

    @property
    def name(self) -> str:
        return f"sqlite:{self.db_path}"

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout)

    def _init_db(self) -> None:
        """Initialize database table."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS prediction_outcomes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        algorithm_id TEXT NOT NULL,
                        match_id TEXT NOT NULL,
                        confidence REAL,
                        predicted_at TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(algorithm_id, match_id)
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_outcomes_algorithm_time
                    ON prediction_outcomes (algorithm_id, predicted_at)
                """)
                conn.commit()
        except sqlite3.Error as e:
            raise DataUnavailableError(self.name, "could not initialize schema", e)

    def record_prediction(
        self,
        algorithm_id: str,
        match_id: str,
        confidence: float,
        predicted_at: datetime,
        status: Union[str, OutcomeStatus] = OutcomeStatus.PENDING,
    ) -> bool:
        """
        Insert one prediction, or replace it while it is still pending.

        Returns:
            False if the match was already settled (settled rows never change)
        """
        status = OutcomeStatus.parse(status)
        with self._connect() as conn:
            cursor = conn.execute("""
                INSERT INTO prediction_outcomes
                (algorithm_id, match_id, confidence, predicted_at, status)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(algorithm_id, match_id) DO UPDATE SET
                    confidence = excluded.confidence,
                    predicted_at = excluded.predicted_at,
                    status = excluded.status
                WHERE prediction_outcomes.status = 'pending'
            """, (
                algorithm_id, match_id, float(confidence),
                ensure_utc(predicted_at).isoformat(), status.value,
            ))
            conn.commit()
            written = cursor.rowcount > 0
        if not written:
            logger.warning(f"Ignoring prediction for settled match {algorithm_id}/{match_id}")
        return written

    def settle(self, algorithm_id: str, match_id: str, status: Union[str, OutcomeStatus]) -> bool:
        """
        Set the final status of a pending prediction.

        Returns:
            True if a pending row was updated
        """
        status = OutcomeStatus.parse(status)
        with self._connect() as conn:
            cursor = conn.execute("""
                UPDATE prediction_outcomes SET status = ?
                WHERE algorithm_id = ? AND match_id = ? AND status = 'pending'
            """, (status.value, algorithm_id, match_id))
            conn.commit()
            return cursor.rowcount > 0

    def fetch_outcomes(self, algorithm_id: str, since: datetime) -> List[Dict[str, Any]]:
        query = """
            SELECT algorithm_id, match_id, confidence, predicted_at, status
            FROM prediction_outcomes
            WHERE algorithm_id = ? AND predicted_at >= ?
            ORDER BY predicted_at
        """
        try:
            with self._connect() as conn:
                df = pd.read_sql_query(query, conn, params=(algorithm_id, ensure_utc(since).isoformat()))
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise DataUnavailableError(self.name, f"query failed for {algorithm_id}", e)

        # NaN -> None so missing confidence is reported as a missing field
        df = df.astype(object).where(df.notna(), None)
        return df.to_dict('records')

    def get_summary(self) -> pd.DataFrame:
        """Per-algorithm counts by status."""
        query = """
            SELECT algorithm_id, status, COUNT(*) AS n
            FROM prediction_outcomes
            GROUP BY algorithm_id, status
            ORDER BY algorithm_id, status
        """
        try:
            with self._connect() as conn:
                return pd.read_sql_query(query, conn)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise DataUnavailableError(self.name, "summary query failed", e)
