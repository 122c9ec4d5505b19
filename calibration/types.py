"""
Recalibration Data Model
========================
Records shared by the analyzer, health scorer, weight adjuster,
orchestrator and trust layer.

- PredictionOutcome: one algorithm's prediction for one match (read-only input)
- AlgorithmPerformanceWindow: derived statistics over a rolling window
- ModelWeight: the persisted control state for one algorithm
- Action: append-only audit entry
- ConfidenceBin / BinCalibrationResult: confidence-bin calibration
- RecalibrationResult: point-in-time snapshot published each tick

All records serialize with to_dict()/from_dict() so a snapshot can be
written to JSON and read back unchanged.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import MalformedRecordError

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Return a tz-aware UTC datetime; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> datetime:
    """Parse a datetime or ISO-8601 string (a trailing Z is accepted)."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"cannot parse timestamp {value!r}")


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class OutcomeStatus(str, Enum):
    PENDING = 'pending'
    WON = 'won'
    LOST = 'lost'
    PUSH = 'push'

    @classmethod
    def parse(cls, value) -> 'OutcomeStatus':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown outcome status {value!r}")


@dataclass(frozen=True)
class PredictionOutcome:
    """A single prediction and, once settled, its result."""
    algorithm_id: str
    match_id: str
    confidence: float  # 0..100
    predicted_at: datetime
    status: OutcomeStatus = OutcomeStatus.PENDING

    REQUIRED_FIELDS = ('algorithm_id', 'match_id', 'confidence', 'predicted_at', 'status')

    @property
    def is_settled(self) -> bool:
        return self.status != OutcomeStatus.PENDING

    @property
    def is_decisive(self) -> bool:
        """True for a win or a loss; pushes and pending rows carry no signal."""
        return self.status in (OutcomeStatus.WON, OutcomeStatus.LOST)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'PredictionOutcome':
        """
        Validate a raw outcome-store row.

        Raises:
            MalformedRecordError: missing field, confidence outside 0..100,
                unparseable timestamp or unknown status
        """
        if not isinstance(row, dict):
            raise MalformedRecordError(row, "row is not a mapping")

        missing = [f for f in cls.REQUIRED_FIELDS if row.get(f) is None or row.get(f) == '']
        if missing:
            raise MalformedRecordError(row, f"missing field(s): {', '.join(missing)}")

        try:
            confidence = float(row['confidence'])
        except (TypeError, ValueError):
            raise MalformedRecordError(row, f"confidence is not numeric: {row['confidence']!r}")
        if not 0 <= confidence <= 100:
            raise MalformedRecordError(row, f"confidence {confidence} outside 0..100")

        try:
            predicted_at = parse_timestamp(row['predicted_at'])
        except (TypeError, ValueError):
            raise MalformedRecordError(row, f"unparseable predicted_at: {row['predicted_at']!r}")

        try:
            status = OutcomeStatus.parse(row['status'])
        except ValueError as e:
            raise MalformedRecordError(row, str(e))

        return cls(
            algorithm_id=str(row['algorithm_id']),
            match_id=str(row['match_id']),
            confidence=confidence,
            predicted_at=predicted_at,
            status=status,
        )

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'match_id': self.match_id,
            'confidence': self.confidence,
            'predicted_at': self.predicted_at.isoformat(),
            'status': self.status.value,
        }


def parse_rows(rows: List[Dict[str, Any]]) -> Tuple[List[PredictionOutcome], int]:
    """
    Validate raw rows.

    Returns:
        (valid outcomes, number of malformed rows skipped)
    """
    outcomes = []
    skipped = 0
    for row in rows:
        try:
            outcomes.append(PredictionOutcome.from_row(row))
        except MalformedRecordError as e:
            skipped += 1
            logger.warning(f"Skipping row: {e}")
    return outcomes, skipped


@dataclass(frozen=True)
class Streak:
    """Current run of identical results, most recent first."""
    type: Optional[str] = None  # 'W', 'L', or None when there are no results
    length: int = 0

    def to_dict(self) -> dict:
        return {'type': self.type, 'length': self.length}

    @classmethod
    def from_dict(cls, data: dict) -> 'Streak':
        return cls(type=data.get('type'), length=int(data.get('length', 0)))


@dataclass
class AlgorithmPerformanceWindow:
    """Statistics for one algorithm over one rolling window."""
    algorithm_id: str
    window_days: int
    sample_size: int
    wins: int
    losses: int
    pushes: int = 0
    win_rate: Optional[float] = None  # None when sample_size == 0
    avg_confidence: float = 0.0
    calibration_error: float = 0.0
    calibration_bias: float = 0.0  # > 0 means overconfident
    streak: Streak = field(default_factory=Streak)
    recent_results: List[str] = field(default_factory=list)
    min_sample_size: int = 10

    @property
    def has_sufficient_sample(self) -> bool:
        return self.sample_size >= self.min_sample_size

    @property
    def quality(self) -> str:
        """Sample quality rating: insufficient_data, low, medium or high."""
        if self.sample_size < self.min_sample_size:
            return 'insufficient_data'
        elif self.sample_size < self.min_sample_size * 2:
            return 'low'
        elif self.sample_size < self.min_sample_size * 4:
            return 'medium'
        else:
            return 'high'

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'window_days': self.window_days,
            'sample_size': self.sample_size,
            'wins': self.wins,
            'losses': self.losses,
            'pushes': self.pushes,
            'win_rate': self.win_rate,
            'avg_confidence': self.avg_confidence,
            'calibration_error': self.calibration_error,
            'calibration_bias': self.calibration_bias,
            'streak': self.streak.to_dict(),
            'recent_results': list(self.recent_results),
            'min_sample_size': self.min_sample_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AlgorithmPerformanceWindow':
        return cls(
            algorithm_id=data['algorithm_id'],
            window_days=int(data['window_days']),
            sample_size=int(data['sample_size']),
            wins=int(data['wins']),
            losses=int(data['losses']),
            pushes=int(data.get('pushes', 0)),
            win_rate=data.get('win_rate'),
            avg_confidence=float(data.get('avg_confidence', 0.0)),
            calibration_error=float(data.get('calibration_error', 0.0)),
            calibration_bias=float(data.get('calibration_bias', 0.0)),
            streak=Streak.from_dict(data.get('streak', {})),
            recent_results=list(data.get('recent_results', [])),
            min_sample_size=int(data.get('min_sample_size', 10)),
        )


@dataclass(frozen=True)
class ModelWeight:
    """
    Control state for one algorithm.

    Replaced as a whole each tick (dataclasses.replace); never patched.
    """
    algorithm_id: str
    base_weight: float
    adjusted_weight: float
    confidence_multiplier: float = 1.0
    min_confidence_threshold: float = 55.0
    is_paused: bool = False
    last_changed_at: Optional[datetime] = None
    health_score: int = 50
    adjustment_reason: str = ''

    @classmethod
    def neutral(cls, algorithm_id: str, n_algorithms: int) -> 'ModelWeight':
        """Equal-split record used before any recalibration has completed."""
        equal = 1.0 / n_algorithms if n_algorithms > 0 else 0.0
        return cls(algorithm_id=algorithm_id, base_weight=equal, adjusted_weight=equal)

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'base_weight': self.base_weight,
            'adjusted_weight': self.adjusted_weight,
            'confidence_multiplier': self.confidence_multiplier,
            'min_confidence_threshold': self.min_confidence_threshold,
            'is_paused': self.is_paused,
            'last_changed_at': _format_timestamp(self.last_changed_at),
            'health_score': self.health_score,
            'adjustment_reason': self.adjustment_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ModelWeight':
        last_changed = data.get('last_changed_at')
        return cls(
            algorithm_id=data['algorithm_id'],
            base_weight=float(data['base_weight']),
            adjusted_weight=float(data['adjusted_weight']),
            confidence_multiplier=float(data.get('confidence_multiplier', 1.0)),
            min_confidence_threshold=float(data.get('min_confidence_threshold', 55.0)),
            is_paused=bool(data.get('is_paused', False)),
            last_changed_at=parse_timestamp(last_changed) if last_changed else None,
            health_score=int(data.get('health_score', 50)),
            adjustment_reason=data.get('adjustment_reason', ''),
        )


class ActionType(str, Enum):
    WEIGHT_INCREASED = 'weight_increased'
    WEIGHT_DECREASED = 'weight_decreased'
    PAUSED = 'paused'
    RESUMED = 'resumed'
    CONFIDENCE_ADJUSTED = 'confidence_adjusted'
    # Operational entries for the audit log
    ALGORITHM_SKIPPED = 'algorithm_skipped'
    RECALIBRATION_FAILED = 'recalibration_failed'


@dataclass(frozen=True)
class Action:
    """Append-only audit trail entry."""
    algorithm_id: str
    type: ActionType
    reason: str
    magnitude: float = 0.0
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'algorithm_id': self.algorithm_id,
            'type': self.type.value,
            'reason': self.reason,
            'magnitude': self.magnitude,
            'timestamp': _format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Action':
        ts = data.get('timestamp')
        return cls(
            algorithm_id=data['algorithm_id'],
            type=ActionType(data['type']),
            reason=data.get('reason', ''),
            magnitude=float(data.get('magnitude', 0.0)),
            timestamp=parse_timestamp(ts) if ts else None,
        )


@dataclass
class ConfidenceBin:
    """Realized vs stated win rate for one 5-point confidence bucket."""
    low: int
    high: int
    sample_size: int
    wins: int
    expected_win_rate: float  # bin midpoint, percent
    actual_win_rate: float  # percent
    calibration_error: float  # actual - expected, percent points
    is_overconfident: bool
    is_underconfident: bool
    adjustment_factor: float = 1.0

    @property
    def label(self) -> str:
        return f"{self.low}-{self.high}%"

    def to_dict(self) -> dict:
        return {
            'low': self.low,
            'high': self.high,
            'sample_size': self.sample_size,
            'wins': self.wins,
            'expected_win_rate': self.expected_win_rate,
            'actual_win_rate': self.actual_win_rate,
            'calibration_error': self.calibration_error,
            'is_overconfident': self.is_overconfident,
            'is_underconfident': self.is_underconfident,
            'adjustment_factor': self.adjustment_factor,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ConfidenceBin':
        return cls(**data)


@dataclass
class BinCalibrationResult:
    """Confidence-bin calibration over all settled predictions in a window."""
    bins: List[ConfidenceBin] = field(default_factory=list)
    overall_adjustment: float = 1.0
    is_calibrated: bool = True
    total_predictions: int = 0
    recommendations: List[str] = field(default_factory=list)

    @property
    def adjusted_bins(self) -> List[ConfidenceBin]:
        return [b for b in self.bins if b.adjustment_factor != 1.0]

    def to_dict(self) -> dict:
        return {
            'bins': [b.to_dict() for b in self.bins],
            'overall_adjustment': self.overall_adjustment,
            'is_calibrated': self.is_calibrated,
            'total_predictions': self.total_predictions,
            'recommendations': list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'BinCalibrationResult':
        return cls(
            bins=[ConfidenceBin.from_dict(b) for b in data.get('bins', [])],
            overall_adjustment=float(data.get('overall_adjustment', 1.0)),
            is_calibrated=bool(data.get('is_calibrated', True)),
            total_predictions=int(data.get('total_predictions', 0)),
            recommendations=list(data.get('recommendations', [])),
        )


@dataclass
class RecalibrationResult:
    """Snapshot published at the end of a successful tick."""
    timestamp: datetime
    window_days: int
    algorithm_performance: List[AlgorithmPerformanceWindow]
    model_weights: List[ModelWeight]
    overall_health_score: int
    recommendations: List[str] = field(default_factory=list)
    actions_taken: List[Action] = field(default_factory=list)
    health_scores: Dict[str, int] = field(default_factory=dict)
    advisory_performance: Dict[int, List[AlgorithmPerformanceWindow]] = field(default_factory=dict)
    bin_calibration: Optional[BinCalibrationResult] = None
    skipped_algorithms: List[str] = field(default_factory=list)

    def weight_for(self, algorithm_id: str) -> Optional[ModelWeight]:
        for w in self.model_weights:
            if w.algorithm_id == algorithm_id:
                return w
        return None

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'window_days': self.window_days,
            'algorithm_performance': [p.to_dict() for p in self.algorithm_performance],
            'model_weights': [w.to_dict() for w in self.model_weights],
            'overall_health_score': self.overall_health_score,
            'recommendations': list(self.recommendations),
            'actions_taken': [a.to_dict() for a in self.actions_taken],
            'health_scores': dict(self.health_scores),
            'advisory_performance': {
                str(days): [p.to_dict() for p in windows]
                for days, windows in self.advisory_performance.items()
            },
            'bin_calibration': self.bin_calibration.to_dict() if self.bin_calibration else None,
            'skipped_algorithms': list(self.skipped_algorithms),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RecalibrationResult':
        bins = data.get('bin_calibration')
        return cls(
            timestamp=parse_timestamp(data['timestamp']),
            window_days=int(data['window_days']),
            algorithm_performance=[
                AlgorithmPerformanceWindow.from_dict(p) for p in data.get('algorithm_performance', [])
            ],
            model_weights=[ModelWeight.from_dict(w) for w in data.get('model_weights', [])],
            overall_health_score=int(data.get('overall_health_score', 50)),
            recommendations=list(data.get('recommendations', [])),
            actions_taken=[Action.from_dict(a) for a in data.get('actions_taken', [])],
            health_scores={k: int(v) for k, v in data.get('health_scores', {}).items()},
            advisory_performance={
                int(days): [AlgorithmPerformanceWindow.from_dict(p) for p in windows]
                for days, windows in data.get('advisory_performance', {}).items()
            },
            bin_calibration=BinCalibrationResult.from_dict(bins) if bins else None,
            skipped_algorithms=list(data.get('skipped_algorithms', [])),
        )
