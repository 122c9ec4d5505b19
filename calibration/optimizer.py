"""
Weight Adjuster
===============
Turns per-algorithm health scores into new ensemble weights, confidence
multipliers and pause/resume decisions.

The adjuster:
1. Pauses unhealthy algorithms and resumes recovered ones (with hysteresis)
2. Allocates raw target weights proportional to health (linear or softmax)
3. Derives a confidence multiplier from how well stated confidence matched
   realized win rate (conservatively: only a fraction of the gap is applied)
4. Sets a per-algorithm minimum confidence threshold
5. Limits per-run weight changes and renormalizes to exactly 1.0

Usage:
    from calibration.optimizer import WeightAdjuster

    adjuster = WeightAdjuster()
    outcome = adjuster.adjust(health_scores, prior_weights, config,
                              calibration_windows=medium_windows)
    for action in outcome.actions:
        print(action.type.value, action.algorithm_id, action.reason)
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.config import CalibrationConfig
from core.constants import MAX_MIN_CONFIDENCE
from calibration.types import (
    Action,
    ActionType,
    AlgorithmPerformanceWindow,
    ModelWeight,
    ensure_utc,
)

logger = logging.getLogger(__name__)

# Tolerance when checking bound feasibility and slack
_EPSILON = 1e-12
_BISECTION_STEPS = 100

# Slope of the minimum confidence threshold per point of health below 50
_MIN_CONFIDENCE_SLOPE = 0.3


@dataclass
class AdjustmentOutcome:
    """New weight set (sorted by algorithm id) and the actions that produced it."""
    weights: List[ModelWeight] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)

    def weight_map(self) -> Dict[str, ModelWeight]:
        return {w.algorithm_id: w for w in self.weights}


def allocate_targets(
    health: Dict[str, float],
    budget: float,
    config: CalibrationConfig,
) -> Dict[str, float]:
    """
    Raw target weights for the active algorithms, summing to `budget`.

    Linear allocation is proportional to health; softmax allocation uses
    exp(health / softmax_temperature). Every algorithm gets at least
    min_weight_floor unless the floor cannot be honoured for all of them,
    in which case the budget is split equally.
    """
    ids = sorted(health)
    if not ids or budget <= 0:
        return {algorithm_id: 0.0 for algorithm_id in ids}

    scores = np.array([float(health[i]) for i in ids])
    if config.allocation == 'softmax':
        exps = np.exp((scores - scores.max()) / config.softmax_temperature)
        shares = exps / exps.sum()
    elif scores.sum() > 0:
        shares = scores / scores.sum()
    else:
        shares = np.full(len(ids), 1.0 / len(ids))

    floor = config.min_weight_floor
    if floor * len(ids) >= budget:
        return {algorithm_id: budget / len(ids) for algorithm_id in ids}

    targets = shares * budget
    pinned = np.zeros(len(ids), dtype=bool)
    # Pin anything under the floor and re-split the rest until stable
    while True:
        below = (targets < floor) & ~pinned
        if not below.any():
            break
        pinned |= below
        remaining = budget - floor * pinned.sum()
        free_shares = shares[~pinned]
        targets = np.where(pinned, floor, 0.0)
        if free_shares.sum() > 0:
            targets[~pinned] = free_shares / free_shares.sum() * remaining
        else:
            targets[~pinned] = remaining / max(1, (~pinned).sum())

    return {algorithm_id: float(t) for algorithm_id, t in zip(ids, targets)}


def water_fill(
    targets: Sequence[float],
    lower: Sequence[float],
    upper: Sequence[float],
    total: float,
) -> np.ndarray:
    """
    Shift all targets by a common amount, clipped to [lower, upper], so
    the result sums to `total`.

    Bounds that cannot reach `total` are relaxed first: a shortfall in the
    upper bounds is spread in proportion to the targets, an excess in the
    lower bounds is scaled away proportionally. Any floating-point
    remainder goes to the first position with slack.
    """
    targets = np.asarray(targets, dtype=float)
    lower = np.asarray(lower, dtype=float).copy()
    upper = np.asarray(upper, dtype=float).copy()
    if targets.size == 0:
        return targets

    if lower.sum() > total + _EPSILON:
        logger.info(
            f"Lower bounds exceed budget ({lower.sum():.4f} > {total:.4f}); relaxing"
        )
        lower = lower * (total / lower.sum())
    if upper.sum() < total - _EPSILON:
        logger.info(
            f"Upper bounds short of budget ({upper.sum():.4f} < {total:.4f}); relaxing"
        )
        shares = targets / targets.sum() if targets.sum() > 0 else np.full(targets.size, 1.0 / targets.size)
        upper = upper + (total - upper.sum()) * shares

    low_shift = float((lower - targets).min())
    high_shift = float((upper - targets).max())
    for _ in range(_BISECTION_STEPS):
        mid = (low_shift + high_shift) / 2.0
        if np.clip(targets + mid, lower, upper).sum() < total:
            low_shift = mid
        else:
            high_shift = mid

    weights = np.clip(targets + high_shift, lower, upper)
    remainder = total - weights.sum()
    if remainder != 0.0:
        slack = (upper - weights) if remainder > 0 else (weights - lower)
        candidates = np.nonzero(slack >= abs(remainder) - _EPSILON)[0]
        index = int(candidates[0]) if candidates.size else 0
        weights[index] = max(0.0, weights[index] + remainder)
    return weights


class WeightAdjuster:
    """
    Computes the next ModelWeight set from health scores and prior weights.

    Safety features:
    - No pause, resume or confidence change on an insufficient sample
    - Hysteresis gap between the pause and resume thresholds
    - Conservative confidence multiplier bounded to [min, max]
    - Maximum per-run weight change with exact renormalization
    """

    def adjust(
        self,
        health_scores: Dict[str, Tuple[int, AlgorithmPerformanceWindow]],
        prior_weights: List[ModelWeight],
        config: CalibrationConfig,
        *,
        calibration_windows: Optional[Dict[str, AlgorithmPerformanceWindow]] = None,
        now: Optional[datetime] = None,
    ) -> AdjustmentOutcome:
        """
        Compute new weights for one tick.

        Algorithm:
        1. Pause / resume from the short-term score and sample
        2. Raw targets for active algorithms (linear or softmax, with floor)
        3. Confidence multiplier from the medium-term window
        4. Minimum confidence threshold from health
        5. Rate-limit to prior +/- max_weight_delta and renormalize
        6. Emit actions for changes above the noise thresholds

        Algorithms present in prior_weights but missing from health_scores
        were skipped this tick; their prior record is carried forward.

        Args:
            health_scores: algorithm id -> (short-term health, short-term window)
            prior_weights: ModelWeight records from the last published tick
            config: Engine configuration
            calibration_windows: algorithm id -> medium-term window used for
                the confidence multiplier (falls back to the short-term window)
            now: Timestamp for changed records and actions

        Returns:
            AdjustmentOutcome with weights sorted by algorithm id
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        calibration_windows = calibration_windows or {}

        all_ids = sorted(set(health_scores) | {w.algorithm_id for w in prior_weights})
        if not all_ids:
            return AdjustmentOutcome()

        n = len(all_ids)
        priors = {w.algorithm_id: w for w in prior_weights}
        for algorithm_id in all_ids:
            if algorithm_id not in priors:
                priors[algorithm_id] = ModelWeight.neutral(algorithm_id, n)

        scored_ids = [i for i in all_ids if i in health_scores]
        skipped_ids = [i for i in all_ids if i not in health_scores]
        actions: List[Action] = []

        # 1. Pause / resume
        paused: Dict[str, bool] = {}
        transitions: Dict[str, str] = {}
        for algorithm_id in scored_ids:
            score, window = health_scores[algorithm_id]
            prior = priors[algorithm_id]
            paused[algorithm_id] = prior.is_paused
            if window.sample_size < config.min_sample_size:
                continue
            if not prior.is_paused and score < config.pause_health_threshold:
                paused[algorithm_id] = True
                transitions[algorithm_id] = (
                    f"paused: health {score} < {config.pause_health_threshold:g} "
                    f"over {window.sample_size} picks"
                )
                actions.append(Action(
                    algorithm_id=algorithm_id,
                    type=ActionType.PAUSED,
                    reason=transitions[algorithm_id],
                    magnitude=round(prior.adjusted_weight, 6),
                    timestamp=now,
                ))
                logger.warning(f"Pausing {algorithm_id}: health {score}")
            elif prior.is_paused and score >= config.resume_health_threshold:
                paused[algorithm_id] = False
                transitions[algorithm_id] = (
                    f"resumed: health {score} >= {config.resume_health_threshold:g}"
                )
                logger.info(f"Resuming {algorithm_id}: health {score}")

        # 2 + 5. Targets and rate-limited renormalization
        active_scored = [i for i in scored_ids if not paused[i]]
        fixed_active = [i for i in skipped_ids if not priors[i].is_paused]
        new_weights = self._solve_weights(active_scored, fixed_active, all_ids, health_scores, priors, config)

        # Resume actions carry the restored weight
        for algorithm_id in scored_ids:
            reason = transitions.get(algorithm_id, '')
            if reason.startswith('resumed'):
                actions.append(Action(
                    algorithm_id=algorithm_id,
                    type=ActionType.RESUMED,
                    reason=reason,
                    magnitude=round(new_weights[algorithm_id], 6),
                    timestamp=now,
                ))

        # 3, 4, 6. Per-algorithm records
        records: List[ModelWeight] = []
        for algorithm_id in all_ids:
            prior = priors[algorithm_id]
            if algorithm_id in skipped_ids:
                if new_weights[algorithm_id] != prior.adjusted_weight:
                    prior = replace(prior, adjusted_weight=new_weights[algorithm_id])
                records.append(prior)
                continue

            score, window = health_scores[algorithm_id]
            weight = new_weights[algorithm_id]
            multiplier, multiplier_action = self._confidence_multiplier(
                algorithm_id, score, window, calibration_windows.get(algorithm_id), prior, config, now
            )
            if multiplier_action is not None:
                actions.append(multiplier_action)

            delta = weight - prior.adjusted_weight
            if algorithm_id not in transitions and abs(delta) > config.weight_noise_threshold:
                increased = delta > 0
                actions.append(Action(
                    algorithm_id=algorithm_id,
                    type=ActionType.WEIGHT_INCREASED if increased else ActionType.WEIGHT_DECREASED,
                    reason=(
                        f"health {score}: weight {prior.adjusted_weight:.3f} -> {weight:.3f}"
                    ),
                    magnitude=round(abs(delta), 6),
                    timestamp=now,
                ))

            changed = (
                abs(delta) > _EPSILON
                or multiplier != prior.confidence_multiplier
                or paused[algorithm_id] != prior.is_paused
            )
            records.append(ModelWeight(
                algorithm_id=algorithm_id,
                base_weight=prior.base_weight,
                adjusted_weight=weight,
                confidence_multiplier=multiplier,
                min_confidence_threshold=self._min_confidence(score, window, config),
                is_paused=paused[algorithm_id],
                last_changed_at=now if changed else prior.last_changed_at,
                health_score=int(score),
                adjustment_reason=transitions.get(algorithm_id) or self._reason(score, window, config),
            ))

        return AdjustmentOutcome(weights=records, actions=actions)

    def _solve_weights(
        self,
        active_scored: List[str],
        fixed_active: List[str],
        all_ids: List[str],
        health_scores: Dict[str, Tuple[int, AlgorithmPerformanceWindow]],
        priors: Dict[str, ModelWeight],
        config: CalibrationConfig,
    ) -> Dict[str, float]:
        weights = {algorithm_id: 0.0 for algorithm_id in all_ids}

        if not active_scored and not fixed_active:
            # Everything paused: fall back to the equal split
            equal = 1.0 / len(all_ids)
            logger.warning("All algorithms paused; using equal-split weights")
            return {algorithm_id: equal for algorithm_id in all_ids}

        fixed_total = sum(priors[i].adjusted_weight for i in fixed_active)
        if not active_scored:
            # Only skipped algorithms are active; rescale them to keep the sum
            if fixed_total > 0:
                for i in fixed_active:
                    weights[i] = priors[i].adjusted_weight / fixed_total
            else:
                for i in fixed_active:
                    weights[i] = 1.0 / len(fixed_active)
            return weights

        for i in fixed_active:
            weights[i] = priors[i].adjusted_weight

        budget = max(0.0, 1.0 - fixed_total)
        targets = allocate_targets(
            {i: float(health_scores[i][0]) for i in active_scored}, budget, config
        )

        delta = config.max_weight_delta
        floor = config.min_weight_floor
        lower, upper = [], []
        for i in active_scored:
            prior = 0.0 if priors[i].is_paused else priors[i].adjusted_weight
            hi = min(1.0, prior + delta)
            lower.append(max(prior - delta, min(floor, hi), 0.0))
            upper.append(hi)

        solved = water_fill([targets[i] for i in active_scored], lower, upper, budget)
        for i, w in zip(active_scored, solved):
            weights[i] = float(w)
        return weights

    def _confidence_multiplier(
        self,
        algorithm_id: str,
        score: int,
        short_window: AlgorithmPerformanceWindow,
        medium_window: Optional[AlgorithmPerformanceWindow],
        prior: ModelWeight,
        config: CalibrationConfig,
        now: datetime,
    ) -> Tuple[float, Optional[Action]]:
        window = medium_window or short_window
        if (
            window.sample_size < config.min_sample_size
            or window.win_rate is None
            or window.avg_confidence <= 0
        ):
            return prior.confidence_multiplier, None

        ratio = window.win_rate / (window.avg_confidence / 100.0)
        target = 1.0 + (ratio - 1.0) * config.calibration_strength
        if target > 1.0 and score < config.boost_health_threshold:
            target = 1.0
        target = max(config.min_confidence_multiplier, min(config.max_confidence_multiplier, target))
        target = round(target, 4)

        change = target - prior.confidence_multiplier
        if abs(change) <= config.confidence_noise_threshold:
            return prior.confidence_multiplier, None

        direction = "overconfident" if ratio < 1.0 else "underconfident"
        action = Action(
            algorithm_id=algorithm_id,
            type=ActionType.CONFIDENCE_ADJUSTED,
            reason=(
                f"{direction} over {window.window_days}d: won {window.win_rate:.1%} "
                f"at {window.avg_confidence:.1f} avg confidence; "
                f"multiplier {prior.confidence_multiplier:.2f} -> {target:.2f}"
            ),
            magnitude=round(abs(change), 6),
            timestamp=now,
        )
        return target, action

    def _min_confidence(
        self,
        score: int,
        window: AlgorithmPerformanceWindow,
        config: CalibrationConfig,
    ) -> float:
        if window.sample_size < config.min_sample_size:
            return config.base_min_confidence
        threshold = config.base_min_confidence + (50 - score) * _MIN_CONFIDENCE_SLOPE
        ceiling = max(MAX_MIN_CONFIDENCE, config.base_min_confidence)
        return round(max(config.min_confidence_floor, min(ceiling, threshold)), 2)

    def _reason(self, score: int, window: AlgorithmPerformanceWindow, config: CalibrationConfig) -> str:
        if window.sample_size == 0:
            return "no settled picks in window"
        if window.sample_size < config.min_sample_size:
            return f"insufficient sample ({window.sample_size}/{config.min_sample_size})"
        if score >= config.boost_health_threshold:
            return f"strong health {score}"
        return f"health {score}"


_DEFAULT_ADJUSTER = WeightAdjuster()


def adjust(
    health_scores: Dict[str, Tuple[int, AlgorithmPerformanceWindow]],
    prior_weights: List[ModelWeight],
    config: CalibrationConfig,
    *,
    calibration_windows: Optional[Dict[str, AlgorithmPerformanceWindow]] = None,
    now: Optional[datetime] = None,
) -> AdjustmentOutcome:
    return _DEFAULT_ADJUSTER.adjust(
        health_scores, prior_weights, config,
        calibration_windows=calibration_windows, now=now,
    )
