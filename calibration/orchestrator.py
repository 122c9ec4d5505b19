"""
Recalibration Orchestrator
==========================
The periodic control loop: fetch outcomes, analyze every window, score
health, adjust weights and publish a RecalibrationResult snapshot.

States: IDLE -> FETCHING -> ANALYZING -> ADJUSTING -> PUBLISHING -> IDLE

Guarantees:
- One tick at a time; a tick requested while another runs is skipped
- A tick over its wall-clock budget is cancelled and never publishes
- Fetch failures keep the last-known-good snapshot and are retried on the
  next scheduled tick only
- A bad row or an error analyzing one algorithm never stalls the others
- Publishing swaps the whole weight set at once (compare-and-swap)

Usage:
    from calibration.orchestrator import RecalibrationOrchestrator

    orchestrator = RecalibrationOrchestrator(source, store, config, service)
    result = orchestrator.run_tick()   # on demand
    orchestrator.start()               # every tick_interval_seconds
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.alerts import AlertManager
from core.config import CalibrationConfig, ServiceConfig
from core.constants import ALL_ALGORITHMS, NEUTRAL_HEALTH_SCORE, get_algorithm_name
from core.exceptions import DataUnavailableError, StaleWriteError
from core.metrics import MetricsRecorder, get_metrics_recorder
from calibration.analyzer import PerformanceAnalyzer
from calibration.bins import analyze_bins
from calibration.health import HealthScorer
from calibration.optimizer import WeightAdjuster
from calibration.types import (
    Action,
    ActionType,
    AlgorithmPerformanceWindow,
    ModelWeight,
    PredictionOutcome,
    RecalibrationResult,
    ensure_utc,
    parse_rows,
)
from calibration.weight_store import WeightStore

logger = logging.getLogger(__name__)

# Win-rate gap vs stated confidence (percentage points) worth a recommendation
_EXPECTATION_GAP = 5.0
_STREAK_WATCH_LENGTH = 5


class OrchestratorState(str, Enum):
    IDLE = 'idle'
    FETCHING = 'fetching'
    ANALYZING = 'analyzing'
    ADJUSTING = 'adjusting'
    PUBLISHING = 'publishing'


class TickCancelled(Exception):
    """Raised inside a worker whose tick exceeded its budget."""


@dataclass
class AnalysisBundle:
    """Per-algorithm windows and scores for one tick."""
    windows: Dict[str, Dict[int, AlgorithmPerformanceWindow]] = field(default_factory=dict)
    health_scores: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    skip_actions: List[Action] = field(default_factory=list)


# =============================================================================
# PURE COMPUTE PHASE
# =============================================================================

def analyze_algorithms(
    outcomes_by_algorithm: Dict[str, List[PredictionOutcome]],
    config: CalibrationConfig,
    now: datetime,
    analyzer: Optional[PerformanceAnalyzer] = None,
    scorer: Optional[HealthScorer] = None,
) -> AnalysisBundle:
    """Analyze all windows and score the short-term window of each algorithm."""
    analyzer = analyzer or PerformanceAnalyzer()
    scorer = scorer or HealthScorer()
    bundle = AnalysisBundle()

    for algorithm_id in sorted(outcomes_by_algorithm):
        try:
            windows = analyzer.analyze_windows(algorithm_id, outcomes_by_algorithm[algorithm_id], config, now)
            score = scorer.score(windows[config.short_term_days], config)
        except Exception as e:
            # Isolated: one algorithm's failure must not affect its siblings
            logger.error(f"Analysis failed for {algorithm_id}, skipping: {e}")
            bundle.skipped.append(algorithm_id)
            bundle.skip_actions.append(Action(
                algorithm_id=algorithm_id,
                type=ActionType.ALGORITHM_SKIPPED,
                reason=f"analysis error: {type(e).__name__}: {e}",
                timestamp=now,
            ))
            continue
        bundle.windows[algorithm_id] = windows
        bundle.health_scores[algorithm_id] = score

    return bundle


def assemble_result(
    bundle: AnalysisBundle,
    outcomes_by_algorithm: Dict[str, List[PredictionOutcome]],
    prior_weights: List[ModelWeight],
    config: CalibrationConfig,
    now: datetime,
    adjuster: Optional[WeightAdjuster] = None,
) -> RecalibrationResult:
    """Adjust weights from an analysis bundle and build the snapshot."""
    adjuster = adjuster or WeightAdjuster()
    short, medium, long_ = config.window_lengths

    health_inputs = {
        algorithm_id: (bundle.health_scores[algorithm_id], windows[short])
        for algorithm_id, windows in bundle.windows.items()
    }
    medium_windows = {algorithm_id: windows[medium] for algorithm_id, windows in bundle.windows.items()}
    outcome = adjuster.adjust(
        health_inputs, prior_weights, config,
        calibration_windows=medium_windows, now=now,
    )

    cutoff = now - timedelta(days=long_)
    pooled = [
        o
        for algorithm_id in sorted(outcomes_by_algorithm)
        if algorithm_id not in bundle.skipped
        for o in outcomes_by_algorithm[algorithm_id]
        if o.predicted_at >= cutoff and o.predicted_at <= now
    ]
    bin_calibration = analyze_bins(pooled)

    scores = list(bundle.health_scores.values())
    overall = int(round(sum(scores) / len(scores))) if scores else NEUTRAL_HEALTH_SCORE

    weight_map = outcome.weight_map()
    recommendations: List[str] = []
    for algorithm_id in sorted(bundle.windows):
        recommendations.extend(
            build_recommendations(algorithm_id, bundle.windows[algorithm_id], weight_map.get(algorithm_id), config)
        )
    if not bin_calibration.is_calibrated:
        recommendations.append(
            f"Confidence bins are miscalibrated; overall adjustment {bin_calibration.overall_adjustment:.2f}"
        )

    return RecalibrationResult(
        timestamp=now,
        window_days=short,
        algorithm_performance=[bundle.windows[a][short] for a in sorted(bundle.windows)],
        model_weights=outcome.weights,
        overall_health_score=overall,
        recommendations=recommendations,
        actions_taken=list(bundle.skip_actions) + outcome.actions,
        health_scores=dict(sorted(bundle.health_scores.items())),
        advisory_performance={
            days: [bundle.windows[a][days] for a in sorted(bundle.windows)]
            for days in (medium, long_)
        },
        bin_calibration=bin_calibration,
        skipped_algorithms=list(bundle.skipped),
    )


def compute_recalibration(
    outcomes_by_algorithm: Dict[str, List[PredictionOutcome]],
    prior_weights: List[ModelWeight],
    config: CalibrationConfig,
    now: datetime,
) -> RecalibrationResult:
    """
    Full compute phase for one tick, with no I/O.

    Deterministic: identical outcomes, prior weights, config and `now`
    always produce an identical result.
    """
    now = ensure_utc(now)
    bundle = analyze_algorithms(outcomes_by_algorithm, config, now)
    return assemble_result(bundle, outcomes_by_algorithm, prior_weights, config, now)


def build_recommendations(
    algorithm_id: str,
    windows: Dict[int, AlgorithmPerformanceWindow],
    weight: Optional[ModelWeight],
    config: CalibrationConfig,
) -> List[str]:
    """Advisory text from the medium and long windows (never drives weights)."""
    name = get_algorithm_name(algorithm_id)
    short = windows[config.short_term_days]
    medium = windows[config.medium_term_days]
    long_ = windows[config.long_term_days]
    notes = []

    if weight is not None and weight.is_paused:
        notes.append(f"{name} is paused (health {weight.health_score}); excluded from synthesis until it recovers")

    if medium.has_sufficient_sample and medium.win_rate is not None:
        gap = medium.win_rate * 100 - medium.avg_confidence
        if gap < -_EXPECTATION_GAP:
            notes.append(
                f"{name} is underperforming expectations over {medium.window_days}d: "
                f"{medium.win_rate:.1%} won vs {medium.avg_confidence:.1f}% stated"
            )
        elif gap > _EXPECTATION_GAP:
            notes.append(
                f"{name} is exceeding expectations over {medium.window_days}d: "
                f"{medium.win_rate:.1%} won vs {medium.avg_confidence:.1f}% stated"
            )

    if not long_.has_sufficient_sample:
        notes.append(
            f"{name}: only {long_.sample_size} settled picks in {long_.window_days}d; "
            f"weights rest on limited evidence"
        )
    elif long_.win_rate is not None and long_.win_rate < config.baseline_win_rate:
        notes.append(
            f"{name} is below the {config.baseline_win_rate:.0%} baseline over {long_.window_days}d "
            f"({long_.win_rate:.1%})"
        )

    if short.streak.length >= _STREAK_WATCH_LENGTH:
        kind = "winning" if short.streak.type == 'W' else "losing"
        notes.append(f"{name} is on a {short.streak.length}-pick {kind} streak; expect regression")

    return notes


# =============================================================================
# CONTROL LOOP
# =============================================================================

class RecalibrationOrchestrator:
    """
    Runs recalibration ticks against an outcome source and a weight store.

    `source` is anything with `fetch_outcomes(algorithm_id, since)` returning
    raw row dicts (see data.outcome_store).

    The store is the only shared mutable state: read once per tick
    (snapshot) and written once at the end (compare-and-swap).
    """

    def __init__(
        self,
        source,
        store: WeightStore,
        config: Optional[CalibrationConfig] = None,
        service_config: Optional[ServiceConfig] = None,
        *,
        algorithm_ids: Optional[List[str]] = None,
        alert_manager: Optional[AlertManager] = None,
        metrics: Optional[MetricsRecorder] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._source = source
        self._store = store
        self._config = config or CalibrationConfig()
        self._service = service_config or ServiceConfig()
        self.algorithm_ids = sorted(algorithm_ids or self._service.algorithm_ids)
        self._alerts = alert_manager or AlertManager()
        self._metrics = metrics or get_metrics_recorder()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._analyzer = PerformanceAnalyzer()
        self._scorer = HealthScorer()
        self._adjuster = WeightAdjuster()

        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._config_lock = threading.Lock()
        self._audit_lock = threading.Lock()
        self._state = OrchestratorState.IDLE
        self._pending_config: Optional[CalibrationConfig] = None
        self._audit: List[Action] = []
        self._listeners: List[Callable[[RecalibrationResult], None]] = []
        self.last_failure: Optional[str] = None
        # Worker of the latest tick; a cancelled one may outlive its tick
        self._worker: Optional[threading.Thread] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> OrchestratorState:
        with self._state_lock:
            return self._state

    @property
    def config(self) -> CalibrationConfig:
        with self._config_lock:
            return self._config

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def source_name(self) -> str:
        return getattr(self._source, "name", type(self._source).__name__)

    def _set_state(self, state: OrchestratorState, cancel: Optional[threading.Event] = None) -> None:
        with self._state_lock:
            if cancel is not None and cancel.is_set():
                raise TickCancelled()
            self._state = state

    # ------------------------------------------------------------ public API

    def get_latest_recalibration(self) -> Optional[RecalibrationResult]:
        return self._store.snapshot().result

    def audit_log(self) -> List[Action]:
        """Copy of the append-only audit trail."""
        with self._audit_lock:
            return list(self._audit)

    def add_listener(self, callback: Callable[[RecalibrationResult], None]) -> None:
        """Register a callback invoked with each published result."""
        self._listeners.append(callback)

    def reload_config(self, config: CalibrationConfig) -> None:
        """Validate and stage a config; it takes effect at the next tick."""
        config.validate()
        with self._config_lock:
            self._pending_config = config
        logger.info("Staged new calibration config for next tick")

    def run_tick(self, now: Optional[datetime] = None) -> Optional[RecalibrationResult]:
        """
        Run one tick.

        Returns:
            The published result, or None if the tick was skipped (another
            tick is running) or failed (last-known-good kept)
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Recalibration tick already running; skipping")
            self._metrics.increment("ticks.skipped")
            return None
        if self._worker is not None and self._worker.is_alive():
            self._tick_lock.release()
            logger.warning("Cancelled tick is still running; skipping")
            self._metrics.increment("ticks.skipped")
            return None
        try:
            return self._run_tick(ensure_utc(now) if now is not None else self._clock())
        finally:
            with self._state_lock:
                self._state = OrchestratorState.IDLE
            self._tick_lock.release()

    def start(self) -> None:
        """Start the periodic loop on a daemon thread (first tick runs immediately)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="recalibration-loop", daemon=True)
        self._thread.start()
        logger.info(f"Recalibration loop started (every {self._service.tick_interval_seconds:g}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Recalibration loop stopped")

    # -------------------------------------------------------------- internals

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception as e:
                logger.exception(f"Unexpected error in recalibration loop: {e}")
            if self._stop_event.wait(self._service.tick_interval_seconds):
                break

    def _apply_pending_config(self) -> CalibrationConfig:
        with self._config_lock:
            if self._pending_config is not None:
                self._config = self._pending_config
                self._pending_config = None
                logger.info("Applied reloaded calibration config")
            return self._config

    def _run_tick(self, now: datetime) -> Optional[RecalibrationResult]:
        started = time.monotonic()
        config = self._apply_pending_config()
        snapshot = self._store.snapshot()
        # Unpublished algorithms start from the neutral split so a skip carries a weight
        known = {w.algorithm_id: w for w in snapshot.weights}
        prior_weights = [
            known.get(algorithm_id) or ModelWeight.neutral(algorithm_id, len(self.algorithm_ids))
            for algorithm_id in self.algorithm_ids
        ]

        cancel = threading.Event()
        box: Dict[str, object] = {}
        worker = threading.Thread(
            target=self._work,
            args=(config, prior_weights, now, cancel, box),
            name="recalibration-tick",
            daemon=True,
        )
        self._worker = worker
        worker.start()
        worker.join(self._service.tick_timeout_seconds)

        if worker.is_alive():
            cancel.set()
            self._fail(f"Tick exceeded {self._service.tick_timeout_seconds:g}s budget and was cancelled", now)
            return None

        error = box.get('error')
        if error is not None:
            if isinstance(error, DataUnavailableError):
                self._fail(str(error), now)
            else:
                self._fail(f"Tick failed: {type(error).__name__}: {error}", now)
            return None

        result: RecalibrationResult = box['result']
        self._set_state(OrchestratorState.PUBLISHING)
        try:
            self._store.compare_and_swap(snapshot.version, result.model_weights, result)
        except StaleWriteError as e:
            self._fail(str(e), now)
            return None
        except OSError as e:
            self._fail(f"Could not persist weights: {e}", now)
            return None

        self._publish_side_effects(result)
        elapsed_ms = (time.monotonic() - started) * 1000
        self._metrics.increment("ticks.completed")
        self._metrics.timing("tick.duration_ms", elapsed_ms)
        self.last_failure = None
        logger.info(
            f"Published recalibration: overall health {result.overall_health_score}, "
            f"{len(result.actions_taken)} actions, {elapsed_ms:.0f}ms"
        )
        return result

    def _work(
        self,
        config: CalibrationConfig,
        prior_weights: List[ModelWeight],
        now: datetime,
        cancel: threading.Event,
        box: Dict[str, object],
    ) -> None:
        try:
            self._set_state(OrchestratorState.FETCHING, cancel)
            outcomes = self._fetch(config, now)

            self._set_state(OrchestratorState.ANALYZING, cancel)
            bundle = analyze_algorithms(outcomes, config, now, self._analyzer, self._scorer)

            self._set_state(OrchestratorState.ADJUSTING, cancel)
            result = assemble_result(bundle, outcomes, prior_weights, config, now, self._adjuster)

            if cancel.is_set():
                raise TickCancelled()
            box['result'] = result
        except TickCancelled:
            logger.warning("Cancelled tick finished late; result discarded")
        except Exception as e:
            box['error'] = e

    def _fetch(self, config: CalibrationConfig, now: datetime) -> Dict[str, List[PredictionOutcome]]:
        since = now - timedelta(days=config.long_term_days)
        outcomes: Dict[str, List[PredictionOutcome]] = {}
        malformed = 0
        for algorithm_id in self.algorithm_ids:
            try:
                rows = self._source.fetch_outcomes(algorithm_id, since)
            except DataUnavailableError:
                raise
            except Exception as e:
                raise DataUnavailableError(self.source_name, f"fetch failed for {algorithm_id}", e)
            parsed, skipped = parse_rows(rows or [])
            malformed += skipped
            outcomes[algorithm_id] = [o for o in parsed if o.algorithm_id == algorithm_id]
        if malformed:
            self._metrics.increment("records.malformed", malformed)
        return outcomes

    def _fail(self, reason: str, now: datetime) -> None:
        logger.error(f"Recalibration failed, keeping last-known-good weights: {reason}")
        self.last_failure = reason
        self._append_audit([Action(
            algorithm_id=ALL_ALGORITHMS,
            type=ActionType.RECALIBRATION_FAILED,
            reason=reason,
            timestamp=now,
        )])
        self._metrics.increment("ticks.failed")
        self._alerts.send_recalibration_failed(reason)

    def _append_audit(self, actions: List[Action]) -> None:
        with self._audit_lock:
            self._audit.extend(actions)

    def _publish_side_effects(self, result: RecalibrationResult) -> None:
        self._append_audit(result.actions_taken)
        if result.skipped_algorithms:
            self._metrics.increment("algorithms.skipped", len(result.skipped_algorithms))

        for action in result.actions_taken:
            if action.type == ActionType.PAUSED:
                self._alerts.send_paused(action)
            elif action.type == ActionType.RESUMED:
                self._alerts.send_resumed(action)
        self._alerts.send_published(result)

        for callback in list(self._listeners):
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Recalibration listener failed: {e}")
