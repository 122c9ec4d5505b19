"""
Health Scorer
=============
Reduces a performance window to a single 0-100 health score.

Three sub-scores, combined with CalibrationConfig.health_weights:
- Sample confidence: 0 at no samples, 100 at 3x min_sample_size
- Relative performance: 50 + (win_rate - baseline) * win_rate_scale
- Calibration quality: 100 * (1 - calibration_error)

A window below min_sample_size is capped at insufficient_sample_cap so a
lucky run on a handful of picks never reads as excellent. An empty
window scores a neutral 50.
"""

import logging
import math
from dataclasses import dataclass

from core.config import CalibrationConfig
from core.constants import NEUTRAL_HEALTH_SCORE
from calibration.types import AlgorithmPerformanceWindow

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class HealthBreakdown:
    sample_confidence: float
    relative_performance: float
    calibration_quality: float
    score: int

    def to_dict(self) -> dict:
        return {
            'sample_confidence': self.sample_confidence,
            'relative_performance': self.relative_performance,
            'calibration_quality': self.calibration_quality,
            'score': self.score,
        }


class HealthScorer:
    """Scores performance windows; holds no state."""

    def breakdown(self, window: AlgorithmPerformanceWindow, config: CalibrationConfig) -> HealthBreakdown:
        n = window.sample_size
        if n == 0 or window.win_rate is None:
            return HealthBreakdown(
                sample_confidence=0.0,
                relative_performance=float(NEUTRAL_HEALTH_SCORE),
                calibration_quality=float(NEUTRAL_HEALTH_SCORE),
                score=NEUTRAL_HEALTH_SCORE,
            )

        sample_confidence = min(100.0, 100.0 * n / (config.min_sample_size * 3))
        relative_performance = _clamp(
            50.0 + (window.win_rate - config.baseline_win_rate) * config.win_rate_scale
        )
        calibration_quality = _clamp(100.0 * (1.0 - window.calibration_error))

        w_sample, w_perf, w_calib = config.health_weights
        total = w_sample + w_perf + w_calib
        raw = (
            w_sample * sample_confidence
            + w_perf * relative_performance
            + w_calib * calibration_quality
        ) / total

        score = _round_half_up(_clamp(raw))
        if n < config.min_sample_size:
            score = min(score, config.insufficient_sample_cap)

        return HealthBreakdown(
            sample_confidence=sample_confidence,
            relative_performance=relative_performance,
            calibration_quality=calibration_quality,
            score=score,
        )

    def score(self, window: AlgorithmPerformanceWindow, config: CalibrationConfig) -> int:
        return self.breakdown(window, config).score


_DEFAULT_SCORER = HealthScorer()


def score(window: AlgorithmPerformanceWindow, config: CalibrationConfig) -> int:
    return _DEFAULT_SCORER.score(window, config)


def breakdown(window: AlgorithmPerformanceWindow, config: CalibrationConfig) -> HealthBreakdown:
    return _DEFAULT_SCORER.breakdown(window, config)
