"""Unit tests for the health scorer."""

from calibration.health import HealthScorer, score
from core.config import CalibrationConfig
from tests.mocks import build_outcomes, make_window
from calibration.analyzer import analyze


class TestHealthScore:
    """Tests for the composite 0-100 score."""

    def test_empty_window_is_neutral(self, config):
        assert score(make_window('algo-a', 0, None), config) == 50

    def test_strong_algorithm(self, config):
        """30 picks at 70% with 60 stated confidence."""
        window = make_window('algo-a', 30, 0.7, calibration_error=0.46)
        assert score(window, config) == 81

    def test_weak_algorithm(self, config):
        window = make_window('algo-a', 20, 0.2, avg_confidence=65, calibration_error=0.59)
        assert score(window, config) == 26

    def test_coin_flip(self, config):
        window = make_window('algo-a', 20, 0.5, avg_confidence=55, calibration_error=0.5)
        assert score(window, config) == 53

    def test_insufficient_sample_capped(self, config):
        """Five straight wins never read as excellent."""
        window = make_window('algo-a', 5, 1.0, avg_confidence=90, calibration_error=0.1)
        assert score(window, config) == 60

    def test_all_losses(self, config):
        window = make_window('algo-a', 30, 0.0, avg_confidence=90, calibration_error=0.9)
        assert score(window, config) == 23

    def test_scores_from_analyzed_outcomes(self, config, now):
        outcomes = build_outcomes('algo-a', now, wins=21, losses=9, confidence=60)
        window = analyze('algo-a', outcomes, 7, config, now=now)
        assert score(window, config) == 81

    def test_higher_win_rate_scores_higher(self, config):
        low = make_window('algo-a', 30, 0.45, calibration_error=0.5)
        high = make_window('algo-a', 30, 0.65, calibration_error=0.5)
        assert score(high, config) > score(low, config)

    def test_score_is_bounded(self, config):
        for win_rate in (0.0, 0.25, 0.5, 0.75, 1.0):
            value = score(make_window('algo-a', 40, win_rate, calibration_error=0.0), config)
            assert 0 <= value <= 100


class TestHealthBreakdown:
    """Tests for the sub-scores."""

    def test_sub_scores(self, config):
        window = make_window('algo-a', 15, 0.6, calibration_error=0.3)
        parts = HealthScorer().breakdown(window, config)

        assert round(parts.sample_confidence, 6) == 50.0
        assert round(parts.relative_performance, 6) == 70.0
        assert round(parts.calibration_quality, 6) == 70.0
        assert parts.score == 66

    def test_custom_health_weights(self):
        """Performance-only weighting reduces to the performance sub-score."""
        config = CalibrationConfig(health_weights=(0.0, 1.0, 0.0))
        window = make_window('algo-a', 30, 0.6, calibration_error=0.9)
        assert score(window, config) == 70

    def test_to_dict(self, config):
        data = HealthScorer().breakdown(make_window('algo-a', 0, None), config).to_dict()
        assert data['score'] == 50
        assert set(data) == {'sample_confidence', 'relative_performance', 'calibration_quality', 'score'}
