"""Unit tests for configuration loading and validation."""

import json

import pytest

from core.config import CalibrationConfig, ServiceConfig, MULTIPLIER_CEILING
from core.exceptions import ConfigurationError


class TestCalibrationConfigDefaults:
    """Tests for CalibrationConfig defaults."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = CalibrationConfig()
        assert config.window_lengths == (7, 30, 90)
        assert config.min_sample_size == 10
        assert config.pause_health_threshold == 30
        assert config.boost_health_threshold == 70
        assert config.max_weight_delta == pytest.approx(0.10)
        assert config.baseline_win_rate == pytest.approx(0.50)
        assert config.allocation == "linear"
        assert config.health_weights == (0.2, 0.5, 0.3)

    def test_resume_threshold_includes_margin(self):
        """Resume threshold is the pause threshold plus the hysteresis margin."""
        config = CalibrationConfig(pause_health_threshold=30, hysteresis_margin=10)
        assert config.resume_health_threshold == 40


class TestCalibrationConfigValidation:
    """Tests for CalibrationConfig.validate."""

    def test_windows_must_increase(self):
        with pytest.raises(ConfigurationError) as exc:
            CalibrationConfig(short_term_days=30, medium_term_days=30)
        assert exc.value.setting == "medium_term_days"

    def test_long_window_must_exceed_medium(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(long_term_days=20)

    def test_boost_below_pause_rejected(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(pause_health_threshold=60, boost_health_threshold=50)

    def test_pause_plus_margin_above_100_rejected(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(pause_health_threshold=95, boost_health_threshold=95, hysteresis_margin=10)

    def test_multiplier_ceiling_enforced(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(max_confidence_multiplier=MULTIPLIER_CEILING + 0.1)

    def test_unknown_allocation_rejected(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(allocation="quadratic")

    def test_min_confidence_floor_above_base_rejected(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(min_confidence_floor=60, base_min_confidence=55)

    def test_zero_min_sample_rejected(self):
        with pytest.raises(ConfigurationError):
            CalibrationConfig(min_sample_size=0)


class TestCalibrationConfigLoading:
    """Tests for environment and file loading."""

    def test_from_env(self, monkeypatch):
        """Test recognised environment keys."""
        monkeypatch.setenv("SHORT_TERM_DAYS", "5")
        monkeypatch.setenv("MIN_SAMPLE_SIZE", "15")
        monkeypatch.setenv("PAUSE_HEALTH_THRESHOLD", "25")
        monkeypatch.setenv("WEIGHT_ALLOCATION", "Softmax")
        monkeypatch.setenv("HEALTH_WEIGHTS", "0.25, 0.5, 0.25")

        config = CalibrationConfig.from_env()
        assert config.short_term_days == 5
        assert config.min_sample_size == 15
        assert config.pause_health_threshold == 25
        assert config.allocation == "softmax"
        assert config.health_weights == (0.25, 0.5, 0.25)

    def test_unparseable_env_value_raises(self, monkeypatch):
        """Invalid values raise instead of falling back to defaults."""
        monkeypatch.setenv("MAX_WEIGHT_DELTA", "a lot")
        with pytest.raises(ConfigurationError) as exc:
            CalibrationConfig.from_env()
        assert exc.value.setting == "max_weight_delta"

    def test_load_env_file_overrides_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MIN_SAMPLE_SIZE", "12")
        path = tmp_path / "recal.env"
        path.write_text(
            "# engine settings\n"
            "MIN_SAMPLE_SIZE=20\n"
            "BOOST_HEALTH_THRESHOLD='75'\n"
        )

        config = CalibrationConfig.load(str(path))
        assert config.min_sample_size == 20
        assert config.boost_health_threshold == 75

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "recal.json"
        path.write_text(json.dumps({"LONG_TERM_DAYS": 120, "HEALTH_WEIGHTS": [0.1, 0.6, 0.3]}))

        config = CalibrationConfig.load(str(path))
        assert config.long_term_days == 120
        assert config.health_weights == (0.1, 0.6, 0.3)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CalibrationConfig.load(str(tmp_path / "missing.env"))

    def test_to_dict(self):
        data = CalibrationConfig().to_dict()
        assert data["short_term_days"] == 7
        assert data["health_weights"] == [0.2, 0.5, 0.3]


class TestServiceConfig:
    """Tests for ServiceConfig."""

    def test_defaults(self):
        service = ServiceConfig()
        assert len(service.algorithm_ids) == 4
        assert service.tick_interval_seconds == 900
        assert service.tick_timeout_seconds == 30
        assert service.weight_store_backend == "json"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ALGORITHM_IDS", "a, b ,c")
        monkeypatch.setenv("WEIGHT_STORE_BACKEND", "MEMORY")
        monkeypatch.setenv("TICK_TIMEOUT_SECONDS", "5")

        service = ServiceConfig.from_env()
        assert service.algorithm_ids == ("a", "b", "c")
        assert service.weight_store_backend == "memory"
        assert service.tick_timeout_seconds == 5

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ConfigurationError):
            ServiceConfig(algorithm_ids=("a", "a"))

    def test_unknown_backend_rejected(self):
        with pytest.raises(ConfigurationError):
            ServiceConfig(weight_store_backend="redis")

    def test_to_dict_hides_api_key(self):
        service = ServiceConfig(synthesis_api_key="secret")
        assert "synthesis_api_key" not in service.to_dict()
