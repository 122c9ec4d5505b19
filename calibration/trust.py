"""
Trust Query
===========
Read-only access to the current recalibration state for staking, UI and
ensemble code.

Every call reads exactly one store snapshot, so a caller never sees a mix
of two weight sets. Before any recalibration has completed, every
algorithm gets the neutral default: trusted, equal weight, multiplier 1.0.

Usage:
    from calibration.trust import TrustQuery

    trust = TrustQuery(store, algorithm_ids)
    info = trust.get_trust(algorithm_id)
    if info.trusted:
        calibrated = trust.apply_confidence(algorithm_id, 68.0)
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from core.constants import (
    CALIBRATED_CONFIDENCE_MAX,
    CALIBRATED_CONFIDENCE_MIN,
    NEUTRAL_HEALTH_SCORE,
)
from calibration.bins import apply_bin_calibration
from calibration.types import ModelWeight, RecalibrationResult
from calibration.weight_store import WeightSnapshot, WeightStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 55.0
MULTIPLIER_NOISE = 0.02


@dataclass(frozen=True)
class TrustInfo:
    algorithm_id: str
    trusted: bool
    weight: float
    confidence_multiplier: float
    min_confidence: float
    health_score: int
    is_paused: bool = False
    is_default: bool = False

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'trusted': self.trusted,
            'weight': self.weight,
            'confidence_multiplier': self.confidence_multiplier,
            'min_confidence': self.min_confidence,
            'health_score': self.health_score,
            'is_paused': self.is_paused,
            'is_default': self.is_default,
        }


@dataclass
class CalibratedConfidence:
    algorithm_id: str
    raw_confidence: float
    adjusted_confidence: float
    multiplier: float
    bin_factor: float
    bin_label: Optional[str]
    meets_threshold: bool
    is_paused: bool

    @property
    def bin_adjusted(self) -> bool:
        return self.bin_factor != 1.0


@dataclass
class ConsensusResult:
    recommendation: Optional[str]
    confidence: float
    algorithm_weights: Dict[str, float] = field(default_factory=dict)
    is_high_consensus: bool = False
    excluded: List[str] = field(default_factory=list)


@dataclass
class TrustSummary:
    is_active: bool
    last_update: Optional[datetime]
    is_stale: bool
    adjusted_algorithms: int
    paused_algorithms: int
    average_multiplier: float
    overall_health_score: int
    bins_adjusted: int = 0
    bins_overall_factor: float = 1.0
    bins_calibrated: bool = True

    def to_dict(self) -> dict:
        return {
            'is_active': self.is_active,
            'last_update': self.last_update.isoformat() if self.last_update else None,
            'is_stale': self.is_stale,
            'adjusted_algorithms': self.adjusted_algorithms,
            'paused_algorithms': self.paused_algorithms,
            'average_multiplier': self.average_multiplier,
            'overall_health_score': self.overall_health_score,
            'bins_adjusted': self.bins_adjusted,
            'bins_overall_factor': self.bins_overall_factor,
            'bins_calibrated': self.bins_calibrated,
        }


class TrustQuery:
    """Snapshot-consistent trust lookups over a WeightStore."""

    def __init__(
        self,
        store: WeightStore,
        algorithm_ids: Sequence[str],
        stale_after_minutes: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self.algorithm_ids = sorted(algorithm_ids)
        self.stale_after_minutes = stale_after_minutes
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_latest_recalibration(self) -> Optional[RecalibrationResult]:
        return self._store.snapshot().result

    def get_trust(self, algorithm_id: str) -> TrustInfo:
        return self._trust_from(self._store.snapshot(), algorithm_id)

    def get_all_trust(self) -> Dict[str, TrustInfo]:
        snap = self._store.snapshot()
        ids = sorted(set(self.algorithm_ids) | {w.algorithm_id for w in snap.weights})
        return {algorithm_id: self._trust_from(snap, algorithm_id) for algorithm_id in ids}

    def _trust_from(self, snap: WeightSnapshot, algorithm_id: str) -> TrustInfo:
        weight = snap.weight_for(algorithm_id)
        if weight is None:
            return self._neutral(snap, algorithm_id)
        # All paused: the published equal split stands in for every algorithm
        all_paused = all(w.is_paused for w in snap.weights)
        return TrustInfo(
            algorithm_id=algorithm_id,
            trusted=all_paused or not weight.is_paused,
            weight=weight.adjusted_weight,
            confidence_multiplier=weight.confidence_multiplier,
            min_confidence=weight.min_confidence_threshold,
            health_score=weight.health_score,
            is_paused=weight.is_paused,
        )

    def _neutral(self, snap: WeightSnapshot, algorithm_id: str) -> TrustInfo:
        n = len(set(self.algorithm_ids) | {w.algorithm_id for w in snap.weights} | {algorithm_id})
        return TrustInfo(
            algorithm_id=algorithm_id,
            trusted=True,
            weight=1.0 / n,
            confidence_multiplier=1.0,
            min_confidence=DEFAULT_MIN_CONFIDENCE,
            health_score=NEUTRAL_HEALTH_SCORE,
            is_default=True,
        )

    def apply_confidence(self, algorithm_id: str, raw_confidence: float) -> CalibratedConfidence:
        """
        Calibrate a raw confidence: algorithm multiplier first, then the
        confidence-bin factor, clamped to 35..95.
        """
        snap = self._store.snapshot()
        info = self._trust_from(snap, algorithm_id)
        bins = snap.result.bin_calibration if snap.result else None

        scaled = raw_confidence * info.confidence_multiplier
        binned, factor, label = apply_bin_calibration(scaled, bins)
        adjusted = max(CALIBRATED_CONFIDENCE_MIN, min(CALIBRATED_CONFIDENCE_MAX, round(binned)))

        return CalibratedConfidence(
            algorithm_id=algorithm_id,
            raw_confidence=raw_confidence,
            adjusted_confidence=float(adjusted),
            multiplier=info.confidence_multiplier,
            bin_factor=factor,
            bin_label=label,
            meets_threshold=binned >= info.min_confidence,
            is_paused=info.is_paused,
        )

    def weighted_consensus(self, picks: Sequence[dict]) -> ConsensusResult:
        """
        Blend picks ({'algorithm_id', 'recommendation', 'confidence'}) by weight.

        Paused algorithms are excluded unless every algorithm is paused, in
        which case the equal-split fallback weights are used. The recommendation whose group has
        the highest weighted (multiplier-adjusted) confidence wins; consensus
        is high when at least two active algorithms all agree.
        """
        snap = self._store.snapshot()
        groups: "OrderedDict[str, List[tuple]]" = OrderedDict()
        algorithm_weights: Dict[str, float] = {}
        excluded: List[str] = []

        for pick in picks:
            algorithm_id = pick['algorithm_id']
            info = self._trust_from(snap, algorithm_id)
            if not info.trusted:
                algorithm_weights[algorithm_id] = 0.0
                excluded.append(algorithm_id)
                continue
            algorithm_weights[algorithm_id] = info.weight
            groups.setdefault(pick['recommendation'], []).append(
                (float(pick['confidence']) * info.confidence_multiplier, info.weight)
            )

        best: Optional[str] = None
        best_confidence = 0.0
        for recommendation, members in groups.items():
            total_weight = sum(w for _, w in members)
            if total_weight > 0:
                confidence = sum(c * w for c, w in members) / total_weight
            else:
                confidence = sum(c for c, _ in members) / len(members)
            if confidence > best_confidence:
                best, best_confidence = recommendation, confidence

        active = sum(len(members) for members in groups.values())
        return ConsensusResult(
            recommendation=best,
            confidence=float(round(best_confidence)),
            algorithm_weights=algorithm_weights,
            is_high_consensus=len(groups) == 1 and active >= 2,
            excluded=excluded,
        )

    def summary(self) -> TrustSummary:
        snap = self._store.snapshot()
        now = self._clock()
        last_update = snap.published_at
        is_stale = (
            last_update is None
            or (now - last_update).total_seconds() > self.stale_after_minutes * 60
        )
        if not snap.weights:
            return TrustSummary(
                is_active=False,
                last_update=None,
                is_stale=True,
                adjusted_algorithms=0,
                paused_algorithms=0,
                average_multiplier=1.0,
                overall_health_score=NEUTRAL_HEALTH_SCORE,
            )

        weights: Sequence[ModelWeight] = snap.weights
        bins = snap.result.bin_calibration if snap.result else None
        return TrustSummary(
            is_active=True,
            last_update=last_update,
            is_stale=is_stale,
            adjusted_algorithms=sum(1 for w in weights if abs(w.confidence_multiplier - 1.0) > MULTIPLIER_NOISE),
            paused_algorithms=sum(1 for w in weights if w.is_paused),
            average_multiplier=sum(w.confidence_multiplier for w in weights) / len(weights),
            overall_health_score=snap.result.overall_health_score if snap.result else NEUTRAL_HEALTH_SCORE,
            bins_adjusted=len(bins.adjusted_bins) if bins else 0,
            bins_overall_factor=bins.overall_adjustment if bins else 1.0,
            bins_calibrated=bins.is_calibrated if bins else True,
        )
