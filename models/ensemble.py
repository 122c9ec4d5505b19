"""
Ensemble synthesis for base-learner picks.

Blends the picks of several prediction algorithms into one meta-pick,
using the current recalibration state for weights and multipliers.

Layers:
1. Weighted consensus over the base learners (paused algorithms excluded)
2. Gradient-boosting residual layer (disagreement with the consensus)
3. Sequential pattern layer over each side's recent form
4. Diversity score across the base learners
5. Stacking: all of the above, a pull toward 55 and a 40..95 clamp

An external synthesis service can refine the stacked result; any failure
there falls back to the local meta-pick.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.constants import META_CONFIDENCE_MAX, META_CONFIDENCE_MIN
from core.exceptions import SynthesisError
from calibration.trust import TrustQuery
from models.synthesis import SynthesisClient

logger = logging.getLogger(__name__)

CALIBRATION_CENTER = 55.0


@dataclass(frozen=True)
class BasePick:
    """One algorithm's pick for a match."""
    algorithm_id: str
    recommended: str
    confidence: float
    ev_percentage: float = 0.0
    kelly_stake_units: float = 0.0

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'recommended': self.recommended,
            'confidence': self.confidence,
            'ev_percentage': self.ev_percentage,
            'kelly_stake_units': self.kelly_stake_units,
        }


@dataclass
class EnsembleConfig:
    boosting_learning_rate: float = 0.15
    boosting_rounds: int = 5
    sequential_decay_rate: float = 0.9
    diversity_weight: float = 0.12
    calibration_strength: float = 0.3


@dataclass
class SequentialPattern:
    type: str = 'none'  # streak, alternating, regression, breakout, none
    strength: float = 0.0
    adjustment: float = 0.0
    description: str = 'Insufficient data'

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'strength': round(self.strength, 4),
            'adjustment': round(self.adjustment, 4),
            'description': self.description,
        }


@dataclass
class BoostingState:
    residuals: Dict[str, float] = field(default_factory=dict)
    adjustments: Dict[str, float] = field(default_factory=dict)
    rounds: int = 0


@dataclass
class MetaPick:
    """Final ensemble recommendation with per-layer transparency."""
    recommended: str
    confidence: float
    consensus_confidence: float
    algorithm_weights: Dict[str, float] = field(default_factory=dict)
    is_high_consensus: bool = False
    excluded: List[str] = field(default_factory=list)
    boosting_adjustments: Dict[str, float] = field(default_factory=dict)
    pattern: SequentialPattern = field(default_factory=SequentialPattern)
    diversity_score: float = 0.0
    calibration_delta: float = 0.0
    layer_contributions: Dict[str, float] = field(default_factory=dict)
    source: str = 'local'  # 'local' or 'synthesis'
    synthesis: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'recommended': self.recommended,
            'confidence': self.confidence,
            'consensus_confidence': self.consensus_confidence,
            'algorithm_weights': dict(self.algorithm_weights),
            'is_high_consensus': self.is_high_consensus,
            'excluded': list(self.excluded),
            'boosting_adjustments': dict(self.boosting_adjustments),
            'pattern': self.pattern.to_dict(),
            'diversity_score': self.diversity_score,
            'calibration_delta': self.calibration_delta,
            'layer_contributions': dict(self.layer_contributions),
            'source': self.source,
            'synthesis': self.synthesis,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =============================================================================
# LAYERS
# =============================================================================

def apply_gradient_boosting(
    picks: Sequence[BasePick],
    weights: Dict[str, float],
    config: EnsembleConfig = None,
) -> BoostingState:
    """
    Shrink each pick's residual against the weighted-mean confidence.

    Each round moves the adjustment by learning_rate * residual and
    shrinks the residual by the same fraction.
    """
    config = config or EnsembleConfig()
    if not picks:
        return BoostingState(rounds=config.boosting_rounds)

    ids = [p.algorithm_id for p in picks]
    confidences = np.array([p.confidence for p in picks], dtype=float)
    w = np.array([weights.get(a, 1.0 / len(picks)) for a in ids], dtype=float)
    target = float(np.dot(confidences, w) / w.sum()) if w.sum() > 0 else float(confidences.mean())

    residuals = target - confidences
    adjustments = np.zeros_like(residuals)
    for _ in range(config.boosting_rounds):
        adjustments += residuals * config.boosting_learning_rate
        residuals = residuals * (1 - config.boosting_learning_rate)

    return BoostingState(
        residuals=dict(zip(ids, residuals.tolist())),
        adjustments=dict(zip(ids, adjustments.tolist())),
        rounds=config.boosting_rounds,
    )


def detect_sequential_pattern(recent_form: Optional[Sequence[str]], decay_rate: float = 0.9) -> SequentialPattern:
    """
    Classify a recent-form sequence (most recent first, 'W'/'L'/'D').

    Checked in order: streak of 4+, alternation above 70%, regression
    between the two halves, breakout of the last three against the rest.
    """
    if not recent_form or len(recent_form) < 3:
        return SequentialPattern()

    encoded = [1 if r == 'W' else -1 if r == 'L' else 0 for r in recent_form]
    n = len(encoded)

    streak_len = 1
    for value in encoded[1:]:
        if value != encoded[0]:
            break
        streak_len += 1
    streak_strength = min(1.0, streak_len / 6)

    alternating = sum(
        1 for i in range(1, n)
        if encoded[i] != encoded[i - 1] and encoded[i] != 0 and encoded[i - 1] != 0
    )
    alternating_ratio = alternating / (n - 1)

    first_half, second_half = encoded[:n // 2], encoded[n // 2:]
    first_avg = float(np.mean(first_half))
    second_avg = float(np.mean(second_half))
    regression_signal = abs(first_avg - second_avg)

    recent, older = encoded[:3], encoded[3:]
    older_avg = float(np.mean(older)) if older else 0.0
    breakout_signal = float(np.mean(recent)) - older_avg

    if streak_len >= 4 and streak_strength > 0.5:
        direction = encoded[0]
        adjustment = direction * streak_strength * 3 * decay_rate
        label = {1: 'win', -1: 'loss', 0: 'draw'}[direction]
        return SequentialPattern(
            type='streak',
            strength=streak_strength,
            adjustment=max(-8.0, min(8.0, adjustment)),
            description=f"{streak_len}-game {label} streak (dampened for regression)",
        )

    if alternating_ratio > 0.7:
        return SequentialPattern(
            type='alternating',
            strength=alternating_ratio,
            adjustment=-encoded[0] * 2.0,
            description=f"Alternating pattern ({_round_half_up(alternating_ratio * 100)}% alternation)",
        )

    if regression_signal > 0.6 and first_avg * second_avg < 0:
        return SequentialPattern(
            type='regression',
            strength=regression_signal,
            adjustment=-second_avg * 3,
            description=f"Regression to mean from a {'hot' if second_avg > 0 else 'cold'} run",
        )

    if abs(breakout_signal) > 0.5 and len(older) >= 2:
        return SequentialPattern(
            type='breakout',
            strength=abs(breakout_signal),
            adjustment=breakout_signal * 4,
            description=f"Breakout {'upward' if breakout_signal > 0 else 'downward'}: recent form diverging",
        )

    return SequentialPattern(description='No strong sequential pattern')


def diversity_score(picks: Sequence[BasePick]) -> float:
    """0..1: confidence spread (0.4), recommendation disagreement (0.35), EV spread (0.25)."""
    if len(picks) < 2:
        return 0.0

    confidences = np.array([p.confidence for p in picks], dtype=float)
    evs = np.array([p.ev_percentage for p in picks], dtype=float)
    recommendations = {p.recommended for p in picks}

    confidence_diversity = min(1.0, float(confidences.std()) / 15)
    recommendation_diversity = (len(recommendations) - 1) / max(1, len(picks) - 1)
    ev_diversity = min(1.0, float(evs.std()) / 10)

    return confidence_diversity * 0.4 + recommendation_diversity * 0.35 + ev_diversity * 0.25


def stack(
    consensus_confidence: float,
    boosting: BoostingState,
    home_pattern: SequentialPattern,
    away_pattern: SequentialPattern,
    diversity: float,
    config: EnsembleConfig = None,
) -> dict:
    """Combine the layers into one confidence in 40..95."""
    config = config or EnsembleConfig()

    adjustments = list(boosting.adjustments.values())
    avg_boost = sum(adjustments) / len(adjustments) if adjustments else 0.0
    boost_impact = avg_boost * 0.5
    pattern_impact = (home_pattern.adjustment - away_pattern.adjustment) * 0.4
    diversity_bonus = diversity * config.diversity_weight * 10

    stacked = consensus_confidence + boost_impact + pattern_impact + diversity_bonus
    calibration_delta = (CALIBRATION_CENTER - stacked) * config.calibration_strength * 0.1
    stacked += calibration_delta

    confidence = max(META_CONFIDENCE_MIN, min(META_CONFIDENCE_MAX, float(_round_half_up(stacked))))
    primary = home_pattern if abs(home_pattern.strength) >= abs(away_pattern.strength) else away_pattern

    return {
        'confidence': confidence,
        'calibration_delta': round(calibration_delta, 2),
        'pattern': primary,
        'layer_contributions': {
            'base_learners': round(consensus_confidence, 2),
            'gradient_boosting': round(boost_impact, 2),
            'sequential_pattern': round(pattern_impact, 2),
            'diversity_bonus': round(diversity_bonus, 2),
        },
    }


# =============================================================================
# SYNTHESIZER
# =============================================================================

class EnsembleSynthesizer:
    """
    Produce a MetaPick from base-learner picks.

    Weights and multipliers come from the TrustQuery snapshot; paused
    algorithms never contribute.
    """

    def __init__(
        self,
        trust: TrustQuery,
        config: EnsembleConfig = None,
        client: Optional[SynthesisClient] = None,
    ):
        self.trust = trust
        self.config = config or EnsembleConfig()
        self.client = client

    def synthesize(
        self,
        picks: Sequence[BasePick],
        home_form: Optional[Sequence[str]] = None,
        away_form: Optional[Sequence[str]] = None,
        match: Optional[dict] = None,
    ) -> MetaPick:
        consensus = self.trust.weighted_consensus([
            {'algorithm_id': p.algorithm_id, 'recommendation': p.recommended, 'confidence': p.confidence}
            for p in picks
        ])

        if consensus.recommendation is None:
            logger.info("No active algorithm picks; skipping")
            return MetaPick(
                recommended='skip',
                confidence=META_CONFIDENCE_MIN,
                consensus_confidence=0.0,
                algorithm_weights=consensus.algorithm_weights,
                excluded=consensus.excluded,
            )

        active = [p for p in picks if p.algorithm_id not in consensus.excluded]
        boosting = apply_gradient_boosting(active, consensus.algorithm_weights, self.config)
        home_pattern = detect_sequential_pattern(home_form, self.config.sequential_decay_rate)
        away_pattern = detect_sequential_pattern(away_form, self.config.sequential_decay_rate)
        diversity = diversity_score(active)
        stacked = stack(consensus.confidence, boosting, home_pattern, away_pattern, diversity, self.config)

        meta = MetaPick(
            recommended=consensus.recommendation,
            confidence=stacked['confidence'],
            consensus_confidence=consensus.confidence,
            algorithm_weights=consensus.algorithm_weights,
            is_high_consensus=consensus.is_high_consensus,
            excluded=consensus.excluded,
            boosting_adjustments={k: round(v, 2) for k, v in boosting.adjustments.items()},
            pattern=stacked['pattern'],
            diversity_score=round(diversity, 2),
            calibration_delta=stacked['calibration_delta'],
            layer_contributions=stacked['layer_contributions'],
        )

        if self.client is not None and self.client.is_configured:
            return self._refine(meta, active, match or {})
        return meta

    def _refine(self, meta: MetaPick, picks: Sequence[BasePick], match: dict) -> MetaPick:
        metadata = {
            'diversity_score': meta.diversity_score,
            'sequential_pattern': meta.pattern.to_dict(),
            'boosting_adjustments': meta.boosting_adjustments,
            'layer_contributions': meta.layer_contributions,
            'calibration_delta': meta.calibration_delta,
            'stacked_confidence': meta.confidence,
        }
        try:
            result = self.client.synthesize(match, [p.to_dict() for p in picks], metadata)
        except SynthesisError as e:
            logger.warning(f"Synthesis unavailable, using local meta-pick: {e}")
            return meta

        meta.recommended = result['meta_pick']
        meta.confidence = result['meta_confidence']
        meta.synthesis = result['synthesis']
        meta.source = 'synthesis'
        return meta
