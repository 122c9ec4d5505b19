"""
Centralized configuration for the ensemble recalibration engine.

Two dataclasses:
- CalibrationConfig: thresholds and curve parameters used by the analyzer,
  health scorer and weight adjuster. Immutable for the lifetime of a tick;
  may be hot-reloaded between ticks.
- ServiceConfig: runtime settings for the orchestrator process (timers,
  timeouts, storage backend, outcome database, synthesis service).

Both load from environment variables, optionally overridden by a .env or
.json file, and are validated on construction. Invalid values raise
ConfigurationError instead of silently falling back to defaults.

Usage:
    from core.config import CalibrationConfig, ServiceConfig

    config = CalibrationConfig.from_env()
    service = ServiceConfig.load("recalibration.env")
    print(config.pause_health_threshold)  # 30
"""

from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple
import json
import os

from core.constants import ALGORITHM_IDS
from core.exceptions import ConfigurationError


# Window lengths (days)
_DEFAULT_SHORT_TERM_DAYS = 7
_DEFAULT_MEDIUM_TERM_DAYS = 30
_DEFAULT_LONG_TERM_DAYS = 90

# Sample and health thresholds
_DEFAULT_MIN_SAMPLE_SIZE = 10
_DEFAULT_PAUSE_HEALTH_THRESHOLD = 30
_DEFAULT_BOOST_HEALTH_THRESHOLD = 70
_DEFAULT_HYSTERESIS_MARGIN = 10
_DEFAULT_INSUFFICIENT_SAMPLE_CAP = 60

# Weight control
_DEFAULT_MAX_WEIGHT_DELTA = 0.10
_DEFAULT_MIN_WEIGHT_FLOOR = 0.05
_DEFAULT_ALLOCATION = "linear"  # linear, softmax
_DEFAULT_SOFTMAX_TEMPERATURE = 15.0
_DEFAULT_WEIGHT_NOISE_THRESHOLD = 0.01

# Health scoring
_DEFAULT_BASELINE_WIN_RATE = 0.50  # moneyline no-edge reference
_DEFAULT_WIN_RATE_SCALE = 200.0
_DEFAULT_HEALTH_WEIGHTS = (0.2, 0.5, 0.3)  # sample, performance, calibration

# Confidence control
_DEFAULT_CALIBRATION_STRENGTH = 0.5
_DEFAULT_MIN_CONFIDENCE_MULTIPLIER = 0.5
_DEFAULT_MAX_CONFIDENCE_MULTIPLIER = 1.5
_DEFAULT_CONFIDENCE_NOISE_THRESHOLD = 0.02
_DEFAULT_BASE_MIN_CONFIDENCE = 55.0
_DEFAULT_MIN_CONFIDENCE_FLOOR = 45.0

# Hard upper bound on any confidence multiplier
MULTIPLIER_CEILING = 1.5

_ALLOCATION_MODES = ("linear", "softmax")
_STORE_BACKENDS = ("memory", "json")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _coerce_float(value: Optional[str], default: float, setting: str) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(setting, f"expected a number, got {value!r}")


def _coerce_int(value: Optional[str], default: int, setting: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(setting, f"expected an integer, got {value!r}")


def _coerce_list(value: Optional[str], default: List[str]) -> List[str]:
    if value is None or value == "":
        return list(default)
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def _coerce_weights(value: Optional[str], default: Tuple[float, ...], setting: str) -> Tuple[float, ...]:
    if value is None or value == "":
        return tuple(default)
    parts = _coerce_list(value, [])
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise ConfigurationError(setting, f"expected comma-separated numbers, got {value!r}")


def _parse_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = _strip_quotes(value.strip())
    return data


def _load_config_data(path: Path) -> Dict[str, str]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    if path.suffix.lower() == ".json":
        payload = json.loads(path.read_text(encoding="utf-8"))
        result = {}
        for key, value in payload.items():
            if isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            result[str(key)] = str(value)
        return result
    return _parse_env_file(path)


def _require(condition: bool, setting: str, message: str) -> None:
    if not condition:
        raise ConfigurationError(setting, message)


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Engine thresholds and curve parameters.

    The first eight fields are the recognised core options; the rest
    expose the allocation curve, hysteresis margin and confidence tuning
    so that none of them are hard-coded.
    """

    short_term_days: int = _DEFAULT_SHORT_TERM_DAYS
    medium_term_days: int = _DEFAULT_MEDIUM_TERM_DAYS
    long_term_days: int = _DEFAULT_LONG_TERM_DAYS
    min_sample_size: int = _DEFAULT_MIN_SAMPLE_SIZE
    pause_health_threshold: float = _DEFAULT_PAUSE_HEALTH_THRESHOLD
    boost_health_threshold: float = _DEFAULT_BOOST_HEALTH_THRESHOLD
    max_weight_delta: float = _DEFAULT_MAX_WEIGHT_DELTA
    baseline_win_rate: float = _DEFAULT_BASELINE_WIN_RATE

    # Anti-oscillation
    hysteresis_margin: float = _DEFAULT_HYSTERESIS_MARGIN

    # Allocation curve
    min_weight_floor: float = _DEFAULT_MIN_WEIGHT_FLOOR
    allocation: str = _DEFAULT_ALLOCATION
    softmax_temperature: float = _DEFAULT_SOFTMAX_TEMPERATURE
    weight_noise_threshold: float = _DEFAULT_WEIGHT_NOISE_THRESHOLD

    # Health score composition
    win_rate_scale: float = _DEFAULT_WIN_RATE_SCALE
    health_weights: Tuple[float, float, float] = _DEFAULT_HEALTH_WEIGHTS
    insufficient_sample_cap: int = _DEFAULT_INSUFFICIENT_SAMPLE_CAP

    # Confidence multiplier and thresholds
    calibration_strength: float = _DEFAULT_CALIBRATION_STRENGTH
    min_confidence_multiplier: float = _DEFAULT_MIN_CONFIDENCE_MULTIPLIER
    max_confidence_multiplier: float = _DEFAULT_MAX_CONFIDENCE_MULTIPLIER
    confidence_noise_threshold: float = _DEFAULT_CONFIDENCE_NOISE_THRESHOLD
    base_min_confidence: float = _DEFAULT_BASE_MIN_CONFIDENCE
    min_confidence_floor: float = _DEFAULT_MIN_CONFIDENCE_FLOOR

    def __post_init__(self) -> None:
        self.validate()

    @property
    def resume_health_threshold(self) -> float:
        """Health a paused algorithm must reach before it is resumed."""
        return self.pause_health_threshold + self.hysteresis_margin

    @property
    def window_lengths(self) -> Tuple[int, int, int]:
        return (self.short_term_days, self.medium_term_days, self.long_term_days)

    def validate(self) -> None:
        """Raise ConfigurationError for any out-of-range value."""
        _require(self.short_term_days > 0, "short_term_days", "must be > 0")
        _require(
            self.medium_term_days > self.short_term_days,
            "medium_term_days", "must be greater than short_term_days",
        )
        _require(
            self.long_term_days > self.medium_term_days,
            "long_term_days", "must be greater than medium_term_days",
        )
        _require(self.min_sample_size >= 1, "min_sample_size", "must be >= 1")
        _require(
            0 <= self.pause_health_threshold <= 100,
            "pause_health_threshold", "must be within 0..100",
        )
        _require(
            0 <= self.boost_health_threshold <= 100,
            "boost_health_threshold", "must be within 0..100",
        )
        _require(
            self.boost_health_threshold >= self.pause_health_threshold,
            "boost_health_threshold", "must not be below pause_health_threshold",
        )
        _require(0 <= self.max_weight_delta <= 1, "max_weight_delta", "must be within 0..1")
        _require(0 <= self.baseline_win_rate <= 1, "baseline_win_rate", "must be within 0..1")
        _require(self.hysteresis_margin >= 0, "hysteresis_margin", "must be >= 0")
        _require(
            self.resume_health_threshold <= 100,
            "hysteresis_margin", "pause threshold plus margin must not exceed 100",
        )
        _require(0 <= self.min_weight_floor < 1, "min_weight_floor", "must be within [0, 1)")
        _require(
            self.allocation in _ALLOCATION_MODES,
            "allocation", f"must be one of {', '.join(_ALLOCATION_MODES)}",
        )
        _require(self.softmax_temperature > 0, "softmax_temperature", "must be > 0")
        _require(self.weight_noise_threshold >= 0, "weight_noise_threshold", "must be >= 0")
        _require(self.win_rate_scale > 0, "win_rate_scale", "must be > 0")
        _require(
            len(self.health_weights) == 3 and all(w >= 0 for w in self.health_weights)
            and sum(self.health_weights) > 0,
            "health_weights", "must be three non-negative numbers with a positive sum",
        )
        _require(
            0 <= self.insufficient_sample_cap <= 100,
            "insufficient_sample_cap", "must be within 0..100",
        )
        _require(
            0 <= self.calibration_strength <= 1,
            "calibration_strength", "must be within 0..1",
        )
        _require(
            0 <= self.min_confidence_multiplier <= 1,
            "min_confidence_multiplier", "must be within 0..1",
        )
        _require(
            1 <= self.max_confidence_multiplier <= MULTIPLIER_CEILING,
            "max_confidence_multiplier", f"must be within 1..{MULTIPLIER_CEILING}",
        )
        _require(
            self.confidence_noise_threshold >= 0,
            "confidence_noise_threshold", "must be >= 0",
        )
        _require(
            0 <= self.min_confidence_floor <= self.base_min_confidence <= 100,
            "min_confidence_floor", "must satisfy 0 <= floor <= base_min_confidence <= 100",
        )

    @classmethod
    def _from_mapping(cls, data: Mapping[str, str], base: "CalibrationConfig") -> "CalibrationConfig":
        return cls(
            short_term_days=_coerce_int(data.get("SHORT_TERM_DAYS"), base.short_term_days, "short_term_days"),
            medium_term_days=_coerce_int(data.get("MEDIUM_TERM_DAYS"), base.medium_term_days, "medium_term_days"),
            long_term_days=_coerce_int(data.get("LONG_TERM_DAYS"), base.long_term_days, "long_term_days"),
            min_sample_size=_coerce_int(data.get("MIN_SAMPLE_SIZE"), base.min_sample_size, "min_sample_size"),
            pause_health_threshold=_coerce_float(
                data.get("PAUSE_HEALTH_THRESHOLD"), base.pause_health_threshold, "pause_health_threshold",
            ),
            boost_health_threshold=_coerce_float(
                data.get("BOOST_HEALTH_THRESHOLD"), base.boost_health_threshold, "boost_health_threshold",
            ),
            max_weight_delta=_coerce_float(data.get("MAX_WEIGHT_DELTA"), base.max_weight_delta, "max_weight_delta"),
            baseline_win_rate=_coerce_float(
                data.get("BASELINE_WIN_RATE"), base.baseline_win_rate, "baseline_win_rate",
            ),
            hysteresis_margin=_coerce_float(
                data.get("HYSTERESIS_MARGIN"), base.hysteresis_margin, "hysteresis_margin",
            ),
            min_weight_floor=_coerce_float(data.get("MIN_WEIGHT_FLOOR"), base.min_weight_floor, "min_weight_floor"),
            allocation=(data.get("WEIGHT_ALLOCATION") or base.allocation).strip().lower(),
            softmax_temperature=_coerce_float(
                data.get("SOFTMAX_TEMPERATURE"), base.softmax_temperature, "softmax_temperature",
            ),
            weight_noise_threshold=_coerce_float(
                data.get("WEIGHT_NOISE_THRESHOLD"), base.weight_noise_threshold, "weight_noise_threshold",
            ),
            win_rate_scale=_coerce_float(data.get("WIN_RATE_SCALE"), base.win_rate_scale, "win_rate_scale"),
            health_weights=_coerce_weights(data.get("HEALTH_WEIGHTS"), base.health_weights, "health_weights"),
            insufficient_sample_cap=_coerce_int(
                data.get("INSUFFICIENT_SAMPLE_CAP"), base.insufficient_sample_cap, "insufficient_sample_cap",
            ),
            calibration_strength=_coerce_float(
                data.get("CALIBRATION_STRENGTH"), base.calibration_strength, "calibration_strength",
            ),
            min_confidence_multiplier=_coerce_float(
                data.get("MIN_CONFIDENCE_MULTIPLIER"), base.min_confidence_multiplier, "min_confidence_multiplier",
            ),
            max_confidence_multiplier=_coerce_float(
                data.get("MAX_CONFIDENCE_MULTIPLIER"), base.max_confidence_multiplier, "max_confidence_multiplier",
            ),
            confidence_noise_threshold=_coerce_float(
                data.get("CONFIDENCE_NOISE_THRESHOLD"), base.confidence_noise_threshold,
                "confidence_noise_threshold",
            ),
            base_min_confidence=_coerce_float(
                data.get("BASE_MIN_CONFIDENCE"), base.base_min_confidence, "base_min_confidence",
            ),
            min_confidence_floor=_coerce_float(
                data.get("MIN_CONFIDENCE_FLOOR"), base.min_confidence_floor, "min_confidence_floor",
            ),
        )

    @classmethod
    def from_env(cls) -> "CalibrationConfig":
        return cls._from_mapping(os.environ, cls())

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "CalibrationConfig":
        env_config = cls.from_env()
        if not config_path:
            return env_config
        return cls._from_mapping(_load_config_data(Path(config_path)), env_config)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["health_weights"] = list(self.health_weights)
        return data


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime settings for the recalibration process."""

    algorithm_ids: Tuple[str, ...] = field(default_factory=lambda: tuple(ALGORITHM_IDS.values()))
    outcome_db_path: str = "data/predictions.db"
    weight_store_backend: str = "json"
    weights_path: str = "data/model_weights.json"
    tick_interval_seconds: float = 900.0  # 15 minutes
    tick_timeout_seconds: float = 30.0
    fetch_timeout_seconds: float = 10.0
    synthesis_url: str = ""
    synthesis_api_key: str = ""
    synthesis_timeout_seconds: float = 20.0
    alert_webhook_url: str = ""
    alert_log_path: str = ""  # JSON lines file; empty disables
    stale_after_minutes: int = 30

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _require(len(self.algorithm_ids) > 0, "algorithm_ids", "at least one algorithm is required")
        _require(
            len(set(self.algorithm_ids)) == len(self.algorithm_ids),
            "algorithm_ids", "duplicate algorithm ids",
        )
        _require(
            self.weight_store_backend in _STORE_BACKENDS,
            "weight_store_backend", f"must be one of {', '.join(_STORE_BACKENDS)}",
        )
        _require(self.tick_interval_seconds > 0, "tick_interval_seconds", "must be > 0")
        _require(self.tick_timeout_seconds > 0, "tick_timeout_seconds", "must be > 0")
        _require(self.fetch_timeout_seconds > 0, "fetch_timeout_seconds", "must be > 0")
        _require(self.synthesis_timeout_seconds > 0, "synthesis_timeout_seconds", "must be > 0")
        _require(self.stale_after_minutes > 0, "stale_after_minutes", "must be > 0")

    @classmethod
    def _from_mapping(cls, data: Mapping[str, str], base: "ServiceConfig") -> "ServiceConfig":
        return cls(
            algorithm_ids=tuple(_coerce_list(data.get("ALGORITHM_IDS"), list(base.algorithm_ids))),
            outcome_db_path=data.get("OUTCOME_DB_PATH", base.outcome_db_path),
            weight_store_backend=(data.get("WEIGHT_STORE_BACKEND") or base.weight_store_backend).strip().lower(),
            weights_path=data.get("WEIGHTS_PATH", base.weights_path),
            tick_interval_seconds=_coerce_float(
                data.get("TICK_INTERVAL_SECONDS"), base.tick_interval_seconds, "tick_interval_seconds",
            ),
            tick_timeout_seconds=_coerce_float(
                data.get("TICK_TIMEOUT_SECONDS"), base.tick_timeout_seconds, "tick_timeout_seconds",
            ),
            fetch_timeout_seconds=_coerce_float(
                data.get("FETCH_TIMEOUT_SECONDS"), base.fetch_timeout_seconds, "fetch_timeout_seconds",
            ),
            synthesis_url=data.get("SYNTHESIS_URL", base.synthesis_url),
            synthesis_api_key=data.get("SYNTHESIS_API_KEY", base.synthesis_api_key),
            synthesis_timeout_seconds=_coerce_float(
                data.get("SYNTHESIS_TIMEOUT_SECONDS"), base.synthesis_timeout_seconds,
                "synthesis_timeout_seconds",
            ),
            alert_webhook_url=data.get("ALERT_WEBHOOK_URL", base.alert_webhook_url),
            alert_log_path=data.get("ALERT_LOG_PATH", base.alert_log_path),
            stale_after_minutes=_coerce_int(
                data.get("STALE_AFTER_MINUTES"), base.stale_after_minutes, "stale_after_minutes",
            ),
        )

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls._from_mapping(os.environ, cls())

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "ServiceConfig":
        env_config = cls.from_env()
        if not config_path:
            return env_config
        return cls._from_mapping(_load_config_data(Path(config_path)), env_config)

    def to_dict(self) -> Dict[str, str]:
        return {k: str(v) for k, v in asdict(self).items() if k != "synthesis_api_key"}
