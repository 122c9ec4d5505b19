"""
Calibration Module
==================
Adaptive ensemble-weighting engine.

This module provides tools to:
- Summarize each algorithm's settled outcomes over rolling windows
- Reduce a window to a 0-100 health score
- Derive bounded weights, confidence multipliers and pause/resume decisions
- Run the periodic recalibration loop and publish consistent snapshots
- Answer "how much should algorithm X be trusted right now?"

Usage:
    from calibration import RecalibrationOrchestrator, TrustQuery, create_weight_store
    from core.config import CalibrationConfig, ServiceConfig
    from data import SqliteOutcomeStore

    service = ServiceConfig.from_env()
    store = create_weight_store(service.weight_store_backend, service.weights_path)
    orchestrator = RecalibrationOrchestrator(
        SqliteOutcomeStore(service.outcome_db_path), store,
        CalibrationConfig.from_env(), service,
    )
    orchestrator.run_tick()

    trust = TrustQuery(store, service.algorithm_ids)
    print(trust.get_trust(service.algorithm_ids[0]))

CLI:
    # Run one tick
    python recalibrate.py --once

    # Run the periodic loop
    python recalibrate.py --serve

    # Show current weights
    python recalibrate.py --show

    # Reset to neutral defaults
    python recalibrate.py --reset
"""

from calibration.types import (
    Action,
    ActionType,
    AlgorithmPerformanceWindow,
    BinCalibrationResult,
    ConfidenceBin,
    ModelWeight,
    OutcomeStatus,
    PredictionOutcome,
    RecalibrationResult,
    Streak,
)
from calibration.analyzer import PerformanceAnalyzer, analyze
from calibration.health import HealthScorer, HealthBreakdown
from calibration.optimizer import WeightAdjuster, AdjustmentOutcome
from calibration.bins import analyze_bins, apply_bin_calibration
from calibration.weight_store import (
    WeightStore,
    WeightSnapshot,
    MemoryWeightStore,
    JsonWeightStore,
    create_weight_store,
)
from calibration.orchestrator import (
    RecalibrationOrchestrator,
    OrchestratorState,
    compute_recalibration,
)
from calibration.trust import TrustQuery, TrustInfo, CalibratedConfidence, ConsensusResult

__all__ = [
    # Data model
    'Action',
    'ActionType',
    'AlgorithmPerformanceWindow',
    'BinCalibrationResult',
    'ConfidenceBin',
    'ModelWeight',
    'OutcomeStatus',
    'PredictionOutcome',
    'RecalibrationResult',
    'Streak',

    # Analysis
    'PerformanceAnalyzer',
    'analyze',
    'HealthScorer',
    'HealthBreakdown',
    'analyze_bins',
    'apply_bin_calibration',

    # Adjustment
    'WeightAdjuster',
    'AdjustmentOutcome',

    # Weight store
    'WeightStore',
    'WeightSnapshot',
    'MemoryWeightStore',
    'JsonWeightStore',
    'create_weight_store',

    # Orchestration
    'RecalibrationOrchestrator',
    'OrchestratorState',
    'compute_recalibration',

    # Trust
    'TrustQuery',
    'TrustInfo',
    'CalibratedConfidence',
    'ConsensusResult',
]
