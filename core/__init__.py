"""
Core module - Shared foundations for the recalibration engine.

This module provides:
- Centralized configuration (config.py)
- Algorithm registry and fixed bounds (constants.py)
- Custom exceptions (exceptions.py)
- Logging setup (logging_config.py)
- Alert channels (alerts.py)
- Tick metrics (metrics.py)
"""

from .config import CalibrationConfig, ServiceConfig
from .constants import (
    ALGORITHM_IDS,
    ALGORITHM_NAMES,
    get_algorithm_name,
)
from .exceptions import (
    RecalibrationError,
    DataUnavailableError,
    MalformedRecordError,
    StaleWriteError,
    SynthesisError,
    ConfigurationError,
)
from .logging_config import configure_logging
from .alerts import (
    Alert,
    AlertHandler,
    AlertManager,
    CallbackAlert,
    ConsoleAlert,
    FileAlert,
    LoggingAlert,
    WebhookAlert,
    create_default_manager,
)
from .metrics import InMemoryMetricsRecorder, MetricsRecorder, get_metrics_recorder

__all__ = [
    # Config
    'CalibrationConfig',
    'ServiceConfig',
    # Constants
    'ALGORITHM_IDS',
    'ALGORITHM_NAMES',
    'get_algorithm_name',
    # Exceptions
    'RecalibrationError',
    'DataUnavailableError',
    'MalformedRecordError',
    'StaleWriteError',
    'SynthesisError',
    'ConfigurationError',
    # Logging
    'configure_logging',
    # Alerts
    'Alert',
    'AlertHandler',
    'AlertManager',
    'CallbackAlert',
    'ConsoleAlert',
    'FileAlert',
    'LoggingAlert',
    'WebhookAlert',
    'create_default_manager',
    # Metrics
    'InMemoryMetricsRecorder',
    'MetricsRecorder',
    'get_metrics_recorder',
]
