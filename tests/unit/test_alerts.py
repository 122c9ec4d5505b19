"""Unit tests for alert system functionality."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import requests

from core.alerts import (
    Alert,
    AlertManager,
    CallbackAlert,
    ConsoleAlert,
    FileAlert,
    LoggingAlert,
    WebhookAlert,
    create_default_manager,
)
from calibration.types import Action, ActionType, ModelWeight, RecalibrationResult


def make_action(action_type=ActionType.PAUSED, reason="paused: health 22 < 30 over 20 picks"):
    return Action(
        algorithm_id='f4ce9fdc-c41a-4a5c-9f18-5d732674c5b8',
        type=action_type,
        reason=reason,
        magnitude=0.25,
        timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
    )


class TestAlert:
    """Tests for Alert dataclass."""

    def test_alert_creation(self):
        alert = Alert(alert_type='system', title='Test Alert', message='This is a test message')

        assert alert.priority == 'normal'
        assert alert.timestamp is not None
        assert alert.timestamp.tzinfo is not None

    def test_to_dict(self):
        alert = Alert(alert_type='paused', title='Paused', message='m', priority='high', data={'x': 1})
        data = alert.to_dict()
        assert data['alert_type'] == 'paused'
        assert data['priority'] == 'high'
        assert data['data'] == {'x': 1}
        assert 'timestamp' in data


class TestConsoleAlert:
    """Tests for ConsoleAlert handler."""

    def test_console_alert_send(self, capsys):
        handler = ConsoleAlert()
        alert = Alert(alert_type='paused', title='Algorithm Paused', message='health 22', priority='high')

        assert handler.send(alert) is True
        captured = capsys.readouterr()
        assert 'Algorithm Paused' in captured.out
        assert '!' in captured.out

    def test_console_alert_with_data(self, capsys):
        handler = ConsoleAlert(show_data=True)
        handler.send(Alert(alert_type='system', title='T', message='M', data={'version': 3}))
        assert '"version": 3' in capsys.readouterr().out


class TestLoggingAlert:
    """Tests for LoggingAlert handler."""

    def test_logging_alert_send(self, caplog):
        handler = LoggingAlert()
        alert = Alert(alert_type='resumed', title='Resumed', message='health 41')

        with caplog.at_level('INFO'):
            assert handler.send(alert) is True
        assert '[resumed] Resumed: health 41' in caplog.text

    def test_priority_maps_to_level(self, caplog):
        handler = LoggingAlert()
        with caplog.at_level('INFO'):
            handler.send(Alert(alert_type='recalibration_failed', title='F', message='M', priority='urgent'))
        assert caplog.records[-1].levelname == 'ERROR'


class TestFileAlert:
    """Tests for FileAlert handler."""

    def test_file_alert_appends(self, tmp_path):
        filepath = tmp_path / 'alerts.jsonl'
        handler = FileAlert(str(filepath))

        for i in range(3):
            assert handler.send(Alert(alert_type='system', title=f'Alert {i}', message='Message'))

        lines = filepath.read_text().splitlines()
        assert len(lines) == 3
        assert json.loads(lines[0])['title'] == 'Alert 0'

    def test_unwritable_path(self, tmp_path):
        handler = FileAlert(str(tmp_path / 'missing' / 'alerts.jsonl'))
        assert handler.send(Alert(alert_type='system', title='T', message='M')) is False


class TestCallbackAlert:
    """Tests for CallbackAlert handler."""

    def test_callback_alert_send(self):
        callback = MagicMock(return_value=True)
        handler = CallbackAlert(callback, handler_name="test_callback")
        alert = Alert(alert_type='system', title='T', message='M')

        assert handler.send(alert) is True
        callback.assert_called_once_with(alert)
        assert handler.name == "test_callback"

    def test_callback_alert_returns_callback_result(self):
        handler = CallbackAlert(MagicMock(return_value=False))
        assert handler.send(Alert(alert_type='system', title='T', message='M')) is False


class TestWebhookAlert:
    """Tests for WebhookAlert handler."""

    @patch('requests.post')
    def test_webhook_alert_send(self, mock_post):
        mock_post.return_value.raise_for_status = MagicMock()

        handler = WebhookAlert("https://example.com/webhook", timeout=3)
        result = handler.send(Alert(alert_type='paused', title='Paused', message='health 22'))

        assert result is True
        mock_post.assert_called_once()
        _, kwargs = mock_post.call_args
        assert kwargs['timeout'] == 3
        assert kwargs['json']['alert']['alert_type'] == 'paused'
        assert '*Paused*' in kwargs['json']['text']

    @patch('requests.post')
    def test_webhook_alert_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("Connection failed")

        handler = WebhookAlert("https://example.com/webhook")
        assert handler.send(Alert(alert_type='system', title='T', message='M')) is False

    @patch('requests.post')
    def test_webhook_http_error(self, mock_post):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError("500")

        handler = WebhookAlert("https://example.com/webhook")
        assert handler.send(Alert(alert_type='system', title='T', message='M')) is False


class TestAlertManager:
    """Tests for AlertManager."""

    def test_add_handler(self):
        manager = AlertManager()
        manager.add_handler(LoggingAlert())
        assert manager.handler_count == 1
        assert manager.handler_names == ['logging']

    def test_send_to_all_handlers(self):
        manager = AlertManager()
        first = MagicMock(return_value=True)
        second = MagicMock(return_value=True)
        manager.add_handler(CallbackAlert(first, "first"))
        manager.add_handler(CallbackAlert(second, "second"))

        results = manager.send(Alert(alert_type='system', title='T', message='M'))
        assert results == {'first': True, 'second': True}
        first.assert_called_once()
        second.assert_called_once()

    def test_failing_handler_does_not_stop_others(self):
        manager = AlertManager()
        received = []
        manager.add_handler(CallbackAlert(MagicMock(side_effect=RuntimeError("boom")), "broken"))
        manager.add_handler(CallbackAlert(lambda a: received.append(a) or True, "ok"))

        results = manager.send(Alert(alert_type='system', title='T', message='M'))
        assert results == {'broken': False, 'ok': True}
        assert len(received) == 1

    def test_send_paused(self):
        manager = AlertManager()
        received = []
        manager.add_handler(CallbackAlert(lambda a: received.append(a) or True))

        manager.send_paused(make_action())
        alert = received[0]
        assert alert.alert_type == 'paused'
        assert alert.priority == 'high'
        assert 'ML Power Index' in alert.title
        assert alert.data['type'] == 'paused'

    def test_send_resumed(self):
        manager = AlertManager()
        manager.send_resumed(make_action(ActionType.RESUMED, "resumed: health 41 >= 40"))
        history = manager.get_history('resumed')
        assert len(history) == 1
        assert history[0].message == "resumed: health 41 >= 40"

    def test_send_recalibration_failed(self):
        manager = AlertManager()
        manager.send_recalibration_failed("outcome store timed out")
        alert = manager.get_history()[-1]
        assert alert.alert_type == 'recalibration_failed'
        assert 'Last-known-good' in alert.message
        assert alert.data == {'reason': 'outcome store timed out'}

    def test_send_published(self):
        manager = AlertManager()
        result = RecalibrationResult(
            timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
            window_days=7,
            algorithm_performance=[],
            model_weights=[
                ModelWeight('algo-a', 0.5, 1.0),
                ModelWeight('algo-b', 0.5, 0.0, is_paused=True),
            ],
            overall_health_score=48,
            actions_taken=[make_action()],
        )
        manager.send_published(result)
        alert = manager.get_history('recalibration_published')[0]
        assert alert.priority == 'low'
        assert alert.data['paused'] == ['algo-b']
        assert '1 paused' in alert.message

    def test_history_bounded(self):
        manager = AlertManager(max_history=3)
        for i in range(5):
            manager.send_recalibration_failed(f'reason {i}')
        history = manager.get_history()
        assert [a.data['reason'] for a in history] == ['reason 2', 'reason 3', 'reason 4']

    def test_history_limit(self):
        manager = AlertManager()
        for i in range(5):
            manager.send_recalibration_failed(f'reason {i}')
        assert len(manager.get_history(limit=2)) == 2


class TestCreateDefaultManager:
    """Tests for create_default_manager."""

    def test_defaults(self):
        manager = create_default_manager()
        assert manager.handler_names == ['logging']

    def test_all_handlers(self, tmp_path):
        manager = create_default_manager(
            console=True,
            log_file=str(tmp_path / 'alerts.jsonl'),
            webhook_url="https://example.com/webhook",
        )
        assert manager.handler_count == 4
