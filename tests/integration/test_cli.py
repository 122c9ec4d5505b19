"""
Integration tests for the recalibrate.py command line.

Drive main() against a temporary SQLite outcome database and JSON
weight store.
"""

import json
import sys
from datetime import datetime, timedelta, timezone

import pytest

import recalibrate
from data.outcome_store import SqliteOutcomeStore


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    db_path = tmp_path / 'predictions.db'
    weights_path = tmp_path / 'weights.json'
    monkeypatch.setenv('OUTCOME_DB_PATH', str(db_path))
    monkeypatch.setenv('WEIGHTS_PATH', str(weights_path))
    monkeypatch.setenv('WEIGHT_STORE_BACKEND', 'json')
    monkeypatch.setenv('ALGORITHM_IDS', 'algo-a,algo-b')
    monkeypatch.delenv('ALERT_WEBHOOK_URL', raising=False)
    monkeypatch.delenv('ALERT_LOG_PATH', raising=False)

    outcomes = SqliteOutcomeStore(db_path)
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    for i in range(12):
        outcomes.record_prediction('algo-a', f'm-{i}', 60, yesterday - timedelta(minutes=i),
                                   'won' if i < 8 else 'lost')
        outcomes.record_prediction('algo-b', f'm-{i}', 60, yesterday - timedelta(minutes=i),
                                   'won' if i < 5 else 'lost')
    return weights_path


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, 'argv', ['recalibrate.py', *args])
    with pytest.raises(SystemExit) as exc:
        recalibrate.main()
    return exc.value.code


class TestCommandLine:
    """Tests for the CLI actions."""

    def test_once_then_show(self, cli_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, '--once') == 0
        assert cli_env.exists()
        out = capsys.readouterr().out
        assert 'RECALIBRATION TICK' in out
        assert 'MODEL WEIGHTS' in out

        assert run_cli(monkeypatch, '--show') == 0
        out = capsys.readouterr().out
        assert 'Version:        1' in out
        assert 'CONFIDENCE BINS' in out

    def test_show_before_first_tick(self, cli_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, '--show') == 0
        assert 'No recalibration published yet' in capsys.readouterr().out

    def test_trust_neutral_default(self, cli_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, '--trust', 'algo-a') == 0
        out = capsys.readouterr().out
        assert 'Weight:             0.500' in out
        assert 'neutral default' in out

    def test_reset(self, cli_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, '--once') == 0
        assert run_cli(monkeypatch, '--reset', '--yes') == 0
        assert not cli_env.exists()
        assert 'Weights cleared' in capsys.readouterr().out

    def test_alert_log(self, cli_env, tmp_path, monkeypatch):
        alert_log = tmp_path / 'alerts.jsonl'
        assert run_cli(monkeypatch, '--once', '--alert-log', str(alert_log)) == 0

        lines = [json.loads(line) for line in alert_log.read_text().splitlines()]
        assert lines[-1]['alert_type'] == 'recalibration_published'

    def test_invalid_config(self, cli_env, monkeypatch):
        monkeypatch.setenv('MIN_SAMPLE_SIZE', '0')
        assert run_cli(monkeypatch, '--once') == 2

    def test_action_required(self, monkeypatch):
        assert run_cli(monkeypatch) == 2
