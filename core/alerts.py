"""Alert system for recalibration notifications.

This module provides alert channels for notifying consumers about
significant engine events: an algorithm being paused or resumed, a
recalibration tick failing, and a new weight set being published.

Usage:
    from core.alerts import AlertManager, LoggingAlert, WebhookAlert

    manager = AlertManager()
    manager.add_handler(LoggingAlert())
    manager.add_handler(WebhookAlert("https://hooks.example.com/..."))

    manager.send_paused(action)
    manager.send_recalibration_failed("outcome store timed out")
"""

import logging
import json
import threading
from datetime import datetime, timezone
from typing import Callable, List, Dict, Any, Optional
from dataclasses import dataclass
from abc import ABC, abstractmethod

import requests

from core.constants import get_algorithm_name

logger = logging.getLogger(__name__)


@dataclass
class Alert:
    """Base alert structure."""
    alert_type: str  # 'paused', 'resumed', 'recalibration_failed', 'recalibration_published', 'system'
    title: str
    message: str
    priority: str = "normal"  # 'low', 'normal', 'high', 'urgent'
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alert_type': self.alert_type,
            'title': self.title,
            'message': self.message,
            'priority': self.priority,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
        }


class AlertHandler(ABC):
    """Abstract base class for alert handlers."""

    @abstractmethod
    def send(self, alert: Alert) -> bool:
        """
        Send an alert through this handler.

        Returns:
            True if alert was sent successfully
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Handler name for logging."""
        pass


class ConsoleAlert(AlertHandler):
    """Print alerts to console."""

    PRIORITY_MARKS = {
        'low': '.',
        'normal': '*',
        'high': '!',
        'urgent': '!!',
    }

    def __init__(self, show_data: bool = False):
        """
        Initialize console alert handler.

        Args:
            show_data: Whether to print full alert data
        """
        self.show_data = show_data

    @property
    def name(self) -> str:
        return "console"

    def send(self, alert: Alert) -> bool:
        try:
            mark = self.PRIORITY_MARKS.get(alert.priority, '*')
            timestamp = alert.timestamp.strftime("%H:%M:%S")

            print(f"\n{mark} [{timestamp}] {alert.title}")
            print(f"   {alert.message}")

            if self.show_data and alert.data:
                print(f"   Data: {json.dumps(alert.data, indent=2, default=str)}")

            return True
        except (IOError, OSError) as e:
            logger.error(f"Console alert I/O error: {e}")
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"Console alert formatting error: {e}")
            return False


class LoggingAlert(AlertHandler):
    """Send alerts to Python logging system."""

    PRIORITY_LEVELS = {
        'low': logging.DEBUG,
        'normal': logging.INFO,
        'high': logging.WARNING,
        'urgent': logging.ERROR,
    }

    def __init__(self, logger_name: str = "alerts"):
        self._logger = logging.getLogger(logger_name)

    @property
    def name(self) -> str:
        return "logging"

    def send(self, alert: Alert) -> bool:
        try:
            level = self.PRIORITY_LEVELS.get(alert.priority, logging.INFO)
            self._logger.log(
                level,
                f"[{alert.alert_type}] {alert.title}: {alert.message}",
                extra={'alert_data': alert.data}
            )
            return True
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Logging alert formatting error: {e}")
            return False


class WebhookAlert(AlertHandler):
    """Send alerts to a webhook URL (Slack, Discord, push gateway, etc.)."""

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 10
    ):
        """
        Initialize webhook handler.

        Args:
            url: Webhook URL to POST to
            headers: Optional headers (auth, content-type)
            timeout: Request timeout in seconds
        """
        self.url = url
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout

    @property
    def name(self) -> str:
        return f"webhook:{self.url[:30]}..."

    def send(self, alert: Alert) -> bool:
        try:
            payload = self._format_payload(alert)
            response = requests.post(
                self.url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"Webhook alert network error: {e}")
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"Webhook alert payload formatting error: {e}")
            return False

    def _format_payload(self, alert: Alert) -> Dict[str, Any]:
        """Format alert for generic webhook. Override for specific platforms."""
        return {
            'text': f"*{alert.title}*\n{alert.message}",
            'alert': alert.to_dict()
        }


class FileAlert(AlertHandler):
    """Append alerts to a JSON lines file."""

    def __init__(self, filepath: str):
        self.filepath = filepath

    @property
    def name(self) -> str:
        return f"file:{self.filepath}"

    def send(self, alert: Alert) -> bool:
        try:
            with open(self.filepath, 'a') as f:
                f.write(json.dumps(alert.to_dict(), default=str) + '\n')
            return True
        except (IOError, OSError) as e:
            logger.error(f"File alert I/O error: {e}")
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"File alert serialization error: {e}")
            return False


class CallbackAlert(AlertHandler):
    """Custom callback function for alerts."""

    def __init__(self, callback: Callable[[Alert], bool], handler_name: str = "callback"):
        """
        Initialize callback handler.

        Args:
            callback: Function that takes an Alert and returns bool
            handler_name: Name for this handler
        """
        self.callback = callback
        self._name = handler_name

    @property
    def name(self) -> str:
        return self._name

    def send(self, alert: Alert) -> bool:
        try:
            return bool(self.callback(alert))
        except (TypeError, AttributeError) as e:
            logger.error(f"Callback alert invocation error: {e}")
            return False


class AlertManager:
    """
    Manages multiple alert handlers and provides convenience methods.

    Alerts are sent from the orchestrator's worker thread, so history is
    guarded by a lock.

    Usage:
        manager = AlertManager()
        manager.add_handler(LoggingAlert())

        manager.send_paused(action)
        manager.send_published(result)
    """

    def __init__(self, max_history: int = 500):
        self._handlers: List[AlertHandler] = []
        self._alert_history: List[Alert] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def add_handler(self, handler: AlertHandler) -> None:
        """Add an alert handler."""
        self._handlers.append(handler)
        logger.info(f"Added alert handler: {handler.name}")

    def send(self, alert: Alert) -> Dict[str, bool]:
        """
        Send alert to all handlers.

        A handler raising is logged and reported as a failure; it never
        stops the remaining handlers.

        Returns:
            Dict mapping handler name to success status
        """
        results = {}

        for handler in list(self._handlers):
            try:
                results[handler.name] = handler.send(alert)
            except Exception as e:
                logger.error(f"Handler {handler.name} failed: {e}")
                results[handler.name] = False

        with self._lock:
            self._alert_history.append(alert)
            if len(self._alert_history) > self._max_history:
                self._alert_history = self._alert_history[-self._max_history:]

        return results

    def send_paused(self, action) -> Dict[str, bool]:
        """Send an alert for an algorithm that was paused this tick."""
        name = get_algorithm_name(action.algorithm_id)
        alert = Alert(
            alert_type='paused',
            title=f"Algorithm Paused: {name}",
            message=action.reason,
            priority='high',
            data=action.to_dict() if hasattr(action, 'to_dict') else None
        )
        return self.send(alert)

    def send_resumed(self, action) -> Dict[str, bool]:
        """Send an alert for an algorithm that was resumed this tick."""
        name = get_algorithm_name(action.algorithm_id)
        alert = Alert(
            alert_type='resumed',
            title=f"Algorithm Resumed: {name}",
            message=action.reason,
            priority='normal',
            data=action.to_dict() if hasattr(action, 'to_dict') else None
        )
        return self.send(alert)

    def send_recalibration_failed(
        self,
        reason: str,
        priority: str = "high"
    ) -> Dict[str, bool]:
        """Send an alert for a tick that aborted without publishing."""
        alert = Alert(
            alert_type='recalibration_failed',
            title="Recalibration Failed",
            message=f"{reason}. Last-known-good weights remain in effect.",
            priority=priority,
            data={'reason': reason}
        )
        return self.send(alert)

    def send_published(self, result) -> Dict[str, bool]:
        """Send a low-priority notice that a new weight set is live."""
        paused = [w.algorithm_id for w in result.model_weights if w.is_paused]
        alert = Alert(
            alert_type='recalibration_published',
            title="Recalibration Published",
            message=(
                f"Overall health {result.overall_health_score} | "
                f"{len(result.actions_taken)} actions | {len(paused)} paused"
            ),
            priority='low',
            data={
                'timestamp': result.timestamp.isoformat(),
                'overall_health_score': result.overall_health_score,
                'paused': paused,
            }
        )
        return self.send(alert)

    def get_history(
        self,
        alert_type: Optional[str] = None,
        limit: int = 50
    ) -> List[Alert]:
        """Get recent alert history."""
        with self._lock:
            history = list(self._alert_history)

        if alert_type:
            history = [a for a in history if a.alert_type == alert_type]

        return history[-limit:]

    @property
    def handler_count(self) -> int:
        """Number of active handlers."""
        return len(self._handlers)

    @property
    def handler_names(self) -> List[str]:
        """List of active handler names."""
        return [h.name for h in self._handlers]


def create_default_manager(
    console: bool = False,
    log_alerts: bool = True,
    log_file: Optional[str] = None,
    webhook_url: Optional[str] = None
) -> AlertManager:
    """
    Create an AlertManager with common handlers.

    Args:
        console: Enable console output
        log_alerts: Route alerts through the logging system
        log_file: Path to JSON lines alert file (optional)
        webhook_url: Webhook URL for push delivery (optional)

    Returns:
        Configured AlertManager
    """
    manager = AlertManager()

    if console:
        manager.add_handler(ConsoleAlert())

    if log_alerts:
        manager.add_handler(LoggingAlert())

    if log_file:
        manager.add_handler(FileAlert(log_file))

    if webhook_url:
        manager.add_handler(WebhookAlert(webhook_url))

    return manager
