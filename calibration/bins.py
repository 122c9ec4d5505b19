"""
Confidence-Bin Calibration
==========================
Compares stated confidence with realized win rate in 5-point buckets
(50-54, 55-59, ... 95-99) and derives a dampened adjustment factor per
bucket.

- A bucket is flagged over/underconfident when its realized win rate is
  more than 5 points away from its midpoint with at least 3 samples.
- A bucket only gets a non-neutral factor with at least 5 samples.
- The result counts as calibrated when at most 30% of buckets are
  problematic.

Usage:
    from calibration.bins import analyze_bins, apply_bin_calibration

    result = analyze_bins(outcomes)
    calibrated, factor, label = apply_bin_calibration(72.0, result)
"""

import logging
import math
from typing import Iterable, Optional, Tuple

import pandas as pd

from core.constants import BIN_CONFIDENCE_MAX, BIN_CONFIDENCE_MIN
from calibration.analyzer import outcomes_to_frame
from calibration.types import BinCalibrationResult, ConfidenceBin, OutcomeStatus, PredictionOutcome

logger = logging.getLogger(__name__)

BIN_START = 50
BIN_WIDTH = 5
BIN_COUNT = 10

FLAG_MIN_SAMPLES = 3
ADJUST_MIN_SAMPLES = 5
ERROR_TOLERANCE = 5.0  # percentage points
PROBLEMATIC_SHARE = 0.3

# Overconfident buckets never drop below this ratio; underconfident never exceed the cap
OVERCONFIDENT_FLOOR = 0.7
OVERCONFIDENT_DAMPING = 0.8
UNDERCONFIDENT_CAP = 1.15
UNDERCONFIDENT_DAMPING = 0.5


def _adjustment_factor(actual: float, expected: float, over: bool, under: bool, sample_size: int) -> float:
    if sample_size < ADJUST_MIN_SAMPLES:
        return 1.0
    ratio = actual / expected
    if over:
        target = max(OVERCONFIDENT_FLOOR, ratio)
        return OVERCONFIDENT_FLOOR + (target - OVERCONFIDENT_FLOOR) * OVERCONFIDENT_DAMPING
    if under:
        target = min(UNDERCONFIDENT_CAP, ratio)
        return 1.0 + (target - 1.0) * UNDERCONFIDENT_DAMPING
    return 1.0


def analyze_bins(outcomes: Iterable[PredictionOutcome]) -> BinCalibrationResult:
    """Build per-bucket calibration from settled wins and losses."""
    df = outcomes_to_frame(outcomes)
    if not df.empty:
        df = df[df['status'].isin([OutcomeStatus.WON.value, OutcomeStatus.LOST.value])].copy()
        df = df[df['confidence'] >= BIN_START]
    if not df.empty:
        df['bin'] = ((df['confidence'] - BIN_START) // BIN_WIDTH).astype(int).clip(upper=BIN_COUNT - 1)
        df['hit'] = (df['status'] == OutcomeStatus.WON.value).astype(int)
        grouped = df.groupby('bin')['hit'].agg(['count', 'sum'])
    else:
        grouped = pd.DataFrame(columns=['count', 'sum'])

    bins = []
    recommendations = []
    for index in range(BIN_COUNT):
        low = BIN_START + index * BIN_WIDTH
        high = low + BIN_WIDTH - 1
        expected = (low + high) / 2.0
        total = int(grouped.loc[index, 'count']) if index in grouped.index else 0
        wins = int(grouped.loc[index, 'sum']) if index in grouped.index else 0
        actual = wins / total * 100.0 if total > 0 else expected
        error = actual - expected

        over = error < -ERROR_TOLERANCE and total >= FLAG_MIN_SAMPLES
        under = error > ERROR_TOLERANCE and total >= FLAG_MIN_SAMPLES
        factor = _adjustment_factor(actual, expected, over, under, total)

        b = ConfidenceBin(
            low=low,
            high=high,
            sample_size=total,
            wins=wins,
            expected_win_rate=expected,
            actual_win_rate=round(actual, 1),
            calibration_error=round(error, 1),
            is_overconfident=over,
            is_underconfident=under,
            adjustment_factor=round(factor, 2),
        )
        bins.append(b)

        if 0 < total < ADJUST_MIN_SAMPLES:
            recommendations.append(
                f"{b.label}: only {total} predictions, need more data for reliable calibration"
            )
        elif over:
            recommendations.append(
                f"{b.label}: reducing confidence by {(1 - b.adjustment_factor) * 100:.0f}% "
                f"(actual {actual:.1f}% vs expected {expected:g}%)"
            )
        elif under:
            recommendations.append(
                f"{b.label}: boosting confidence by {(b.adjustment_factor - 1) * 100:.0f}% "
                f"(actual {actual:.1f}% vs expected {expected:g}%)"
            )
        elif total >= ADJUST_MIN_SAMPLES:
            recommendations.append(f"{b.label}: well calibrated ({actual:.1f}% actual, {total} picks)")

    with_data = [b for b in bins if b.sample_size >= FLAG_MIN_SAMPLES]
    if with_data:
        weighted = sum(b.adjustment_factor * b.sample_size for b in with_data)
        overall = weighted / sum(b.sample_size for b in with_data)
    else:
        overall = 1.0

    problematic = sum(
        1 for b in bins
        if (b.is_overconfident or b.is_underconfident) and b.sample_size >= ADJUST_MIN_SAMPLES
    )
    is_calibrated = problematic <= math.ceil(len(bins) * PROBLEMATIC_SHARE)

    result = BinCalibrationResult(
        bins=bins,
        overall_adjustment=round(overall, 2),
        is_calibrated=is_calibrated,
        total_predictions=int(sum(b.sample_size for b in bins)),
        recommendations=recommendations,
    )
    logger.debug(
        f"Bin calibration: overall {result.overall_adjustment}, "
        f"{len(result.adjusted_bins)} adjusted bins, calibrated={is_calibrated}"
    )
    return result


def find_bin(confidence: float, result: BinCalibrationResult) -> Optional[ConfidenceBin]:
    """Bucket for a confidence value; values outside 50..99 use the nearest bucket."""
    if not result.bins:
        return None
    index = int(math.floor((confidence - BIN_START) / BIN_WIDTH))
    return result.bins[max(0, min(index, len(result.bins) - 1))]


def apply_bin_calibration(
    confidence: float,
    result: Optional[BinCalibrationResult],
) -> Tuple[float, float, Optional[str]]:
    """
    Scale a confidence by its bucket's factor.

    Returns:
        (calibrated confidence clamped to 45..95, factor, bucket label);
        the input is returned unchanged when no calibration is available
    """
    if result is None:
        return confidence, 1.0, None
    b = find_bin(confidence, result)
    if b is None:
        return confidence, 1.0, None
    calibrated = max(BIN_CONFIDENCE_MIN, min(BIN_CONFIDENCE_MAX, confidence * b.adjustment_factor))
    return round(calibrated, 1), b.adjustment_factor, b.label
