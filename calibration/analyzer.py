"""
Performance Analyzer
====================
Rolling-window statistics for each algorithm's settled predictions.

Converts a list of PredictionOutcome records into an
AlgorithmPerformanceWindow:
- Win/loss/push counts and win rate (pushes carry no signal)
- Calibration error (mean |confidence/100 - outcome|) and signed bias
- Current streak and the last ten results

Pure functions of their inputs; `now` is injectable for deterministic tests.

Usage:
    from calibration.analyzer import PerformanceAnalyzer

    analyzer = PerformanceAnalyzer()
    window = analyzer.analyze(algorithm_id, outcomes, window_days=7, config=config)
    print(f"{window.wins}-{window.losses} ({window.quality})")
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import pandas as pd

from core.config import CalibrationConfig
from calibration.types import (
    AlgorithmPerformanceWindow,
    OutcomeStatus,
    PredictionOutcome,
    Streak,
    ensure_utc,
)

logger = logging.getLogger(__name__)

RECENT_RESULTS_LENGTH = 10

_COLUMNS = ['algorithm_id', 'match_id', 'confidence', 'predicted_at', 'status']


def outcomes_to_frame(outcomes: Iterable[PredictionOutcome]) -> pd.DataFrame:
    """Build a DataFrame with one row per outcome and a UTC predicted_at column."""
    rows = [
        {
            'algorithm_id': o.algorithm_id,
            'match_id': o.match_id,
            'confidence': float(o.confidence),
            'predicted_at': o.predicted_at,
            'status': o.status.value,
        }
        for o in outcomes
    ]
    if not rows:
        return pd.DataFrame(columns=_COLUMNS)

    df = pd.DataFrame(rows, columns=_COLUMNS)
    df['predicted_at'] = pd.to_datetime(df['predicted_at'], utc=True)
    return df


class PerformanceAnalyzer:
    """
    Computes per-window performance statistics.

    Stateless: the same outcomes, window and `now` always give the same
    window record.
    """

    def analyze(
        self,
        algorithm_id: str,
        outcomes: List[PredictionOutcome],
        window_days: int,
        config: CalibrationConfig,
        now: Optional[datetime] = None,
    ) -> AlgorithmPerformanceWindow:
        """
        Analyze one algorithm over the last `window_days` days.

        Args:
            algorithm_id: Algorithm to analyze (other ids are ignored)
            outcomes: Raw outcomes, any algorithm, any status
            window_days: Window length in days
            config: Engine configuration (min_sample_size)
            now: Reference time, defaults to the current UTC time

        Returns:
            AlgorithmPerformanceWindow; an empty sample has win_rate None
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        df = outcomes_to_frame(outcomes)
        return self._analyze_frame(algorithm_id, df, window_days, config, now)

    def analyze_windows(
        self,
        algorithm_id: str,
        outcomes: List[PredictionOutcome],
        config: CalibrationConfig,
        now: Optional[datetime] = None,
    ) -> Dict[int, AlgorithmPerformanceWindow]:
        """Analyze the short, medium and long windows, keyed by window_days."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        df = outcomes_to_frame(outcomes)
        return {
            days: self._analyze_frame(algorithm_id, df, days, config, now)
            for days in config.window_lengths
        }

    def _analyze_frame(
        self,
        algorithm_id: str,
        df: pd.DataFrame,
        window_days: int,
        config: CalibrationConfig,
        now: datetime,
    ) -> AlgorithmPerformanceWindow:
        empty = AlgorithmPerformanceWindow(
            algorithm_id=algorithm_id,
            window_days=window_days,
            sample_size=0,
            wins=0,
            losses=0,
            min_sample_size=config.min_sample_size,
        )
        if df.empty:
            return empty

        cutoff = pd.Timestamp(now - timedelta(days=window_days))
        upper = pd.Timestamp(now)
        in_window = df[
            (df['algorithm_id'] == algorithm_id)
            & (df['predicted_at'] >= cutoff)
            & (df['predicted_at'] <= upper)
            & (df['status'] != OutcomeStatus.PENDING.value)
        ]
        if in_window.empty:
            return empty

        pushes = int((in_window['status'] == OutcomeStatus.PUSH.value).sum())
        decisive = in_window[in_window['status'].isin([OutcomeStatus.WON.value, OutcomeStatus.LOST.value])].copy()
        if decisive.empty:
            empty.pushes = pushes
            return empty

        decisive['hit'] = (decisive['status'] == OutcomeStatus.WON.value).astype(float)
        decisive['stated'] = decisive['confidence'] / 100.0

        wins = int(decisive['hit'].sum())
        sample_size = len(decisive)
        losses = sample_size - wins
        win_rate = wins / sample_size

        calibration_error = float((decisive['stated'] - decisive['hit']).abs().mean())
        calibration_bias = float(decisive['stated'].mean()) - win_rate
        avg_confidence = float(decisive['confidence'].mean())

        # Most recent first; match_id breaks timestamp ties deterministically
        ordered = decisive.sort_values(['predicted_at', 'match_id'], ascending=[False, True])
        results = ['W' if hit else 'L' for hit in ordered['hit'].tolist()]

        return AlgorithmPerformanceWindow(
            algorithm_id=algorithm_id,
            window_days=window_days,
            sample_size=sample_size,
            wins=wins,
            losses=losses,
            pushes=pushes,
            win_rate=win_rate,
            avg_confidence=avg_confidence,
            calibration_error=calibration_error,
            calibration_bias=calibration_bias,
            streak=compute_streak(results),
            recent_results=results[:RECENT_RESULTS_LENGTH],
            min_sample_size=config.min_sample_size,
        )


def compute_streak(results: List[str]) -> Streak:
    """Length of the leading run of identical results (most recent first)."""
    if not results:
        return Streak()
    first = results[0]
    length = 0
    for r in results:
        if r != first:
            break
        length += 1
    return Streak(type=first, length=length)


_DEFAULT_ANALYZER = PerformanceAnalyzer()


def analyze(
    algorithm_id: str,
    outcomes: List[PredictionOutcome],
    window_days: int,
    config: CalibrationConfig,
    now: Optional[datetime] = None,
) -> AlgorithmPerformanceWindow:
    return _DEFAULT_ANALYZER.analyze(algorithm_id, outcomes, window_days, config, now=now)
