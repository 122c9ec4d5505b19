"""
Pytest configuration and shared fixtures for recalibration engine tests.
"""

from datetime import datetime, timezone

import pytest

from core.alerts import AlertManager, CallbackAlert
from core.config import CalibrationConfig, ServiceConfig
from core.metrics import InMemoryMetricsRecorder
from calibration.weight_store import MemoryWeightStore


ALGORITHMS = ['algo-a', 'algo-b', 'algo-c', 'algo-d']


@pytest.fixture
def now():
    """Fixed reference time for deterministic windows."""
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    """Default engine configuration."""
    return CalibrationConfig()


@pytest.fixture
def algorithm_ids():
    return list(ALGORITHMS)


@pytest.fixture
def service(algorithm_ids):
    """Service config with a short tick budget."""
    return ServiceConfig(
        algorithm_ids=tuple(algorithm_ids),
        weight_store_backend="memory",
        tick_interval_seconds=0.05,
        tick_timeout_seconds=2.0,
    )


@pytest.fixture
def store():
    return MemoryWeightStore()


@pytest.fixture
def metrics():
    return InMemoryMetricsRecorder()


@pytest.fixture
def received_alerts():
    return []


@pytest.fixture
def alert_manager(received_alerts):
    """AlertManager that records every alert it sends."""
    manager = AlertManager()
    manager.add_handler(CallbackAlert(lambda alert: received_alerts.append(alert) or True, "recorder"))
    return manager
