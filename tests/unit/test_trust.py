"""Unit tests for the trust query layer."""

from datetime import timedelta

import pytest

from calibration.bins import analyze_bins
from calibration.trust import TrustQuery
from calibration.types import ModelWeight, RecalibrationResult
from calibration.weight_store import MemoryWeightStore
from tests.mocks import build_outcomes


def weight(algorithm_id, adjusted, multiplier=1.0, paused=False, min_confidence=55.0, health=60):
    return ModelWeight(
        algorithm_id=algorithm_id,
        base_weight=0.25,
        adjusted_weight=adjusted,
        confidence_multiplier=multiplier,
        min_confidence_threshold=min_confidence,
        is_paused=paused,
        health_score=health,
    )


def publish(store, weights, now, bin_calibration=None, overall=62):
    result = RecalibrationResult(
        timestamp=now,
        window_days=7,
        algorithm_performance=[],
        model_weights=list(weights),
        overall_health_score=overall,
        bin_calibration=bin_calibration,
    )
    return store.compare_and_swap(store.snapshot().version, weights, result)


class TestGetTrust:
    """Tests for per-algorithm trust lookups."""

    def test_neutral_default_before_first_tick(self, store, algorithm_ids):
        info = TrustQuery(store, algorithm_ids).get_trust('algo-a')
        assert info.trusted
        assert info.is_default
        assert info.weight == pytest.approx(0.25)
        assert info.confidence_multiplier == 1.0
        assert info.min_confidence == 55.0
        assert info.health_score == 50

    def test_unregistered_algorithm_counts_toward_split(self, store, algorithm_ids):
        info = TrustQuery(store, algorithm_ids).get_trust('algo-z')
        assert info.weight == pytest.approx(0.2)

    def test_published_weights(self, store, algorithm_ids, now):
        publish(store, [
            weight('algo-a', 0.4, multiplier=0.9, health=78),
            weight('algo-b', 0.3),
            weight('algo-c', 0.3),
            weight('algo-d', 0.0, paused=True, health=22),
        ], now)
        trust = TrustQuery(store, algorithm_ids)

        a = trust.get_trust('algo-a')
        assert a.trusted and not a.is_default
        assert a.weight == 0.4
        assert a.confidence_multiplier == 0.9
        assert a.health_score == 78

        d = trust.get_trust('algo-d')
        assert not d.trusted
        assert d.is_paused
        assert d.weight == 0.0

    def test_get_all_trust(self, store, algorithm_ids):
        all_trust = TrustQuery(store, algorithm_ids).get_all_trust()
        assert sorted(all_trust) == sorted(algorithm_ids)
        assert all(info.is_default for info in all_trust.values())

    def test_get_latest_recalibration(self, store, algorithm_ids, now):
        trust = TrustQuery(store, algorithm_ids)
        assert trust.get_latest_recalibration() is None
        publish(store, [weight(a, 0.25) for a in algorithm_ids], now)
        assert trust.get_latest_recalibration().overall_health_score == 62

    def test_to_dict(self, store, algorithm_ids):
        data = TrustQuery(store, algorithm_ids).get_trust('algo-a').to_dict()
        assert data['is_default'] is True
        assert data['min_confidence'] == 55.0


class TestApplyConfidence:
    """Tests for multiplier and bin calibration of raw confidences."""

    def test_multiplier_applied(self, store, algorithm_ids, now):
        publish(store, [weight('algo-a', 1.0, multiplier=0.8)], now)
        result = TrustQuery(store, algorithm_ids).apply_confidence('algo-a', 70.0)

        assert result.adjusted_confidence == 56.0
        assert result.multiplier == 0.8
        assert result.meets_threshold
        assert not result.bin_adjusted

    def test_clamped(self, store, algorithm_ids):
        trust = TrustQuery(store, algorithm_ids)
        assert trust.apply_confidence('algo-a', 20.0).adjusted_confidence == 35.0
        assert trust.apply_confidence('algo-a', 99.0).adjusted_confidence == 95.0

    def test_bin_factor_applied_after_multiplier(self, store, algorithm_ids, now):
        bins = analyze_bins(build_outcomes('algo-a', now, wins=4, losses=6, confidence=72))
        publish(store, [weight('algo-a', 1.0)], now, bin_calibration=bins)
        result = TrustQuery(store, algorithm_ids).apply_confidence('algo-a', 72.0)

        assert result.adjusted_confidence == 50.0
        assert result.bin_factor == 0.7
        assert result.bin_label == '70-74%'
        assert result.bin_adjusted
        assert not result.meets_threshold

    def test_threshold_uses_algorithm_minimum(self, store, algorithm_ids, now):
        publish(store, [weight('algo-a', 1.0, min_confidence=62.2)], now)
        trust = TrustQuery(store, algorithm_ids)
        assert not trust.apply_confidence('algo-a', 60.0).meets_threshold
        assert trust.apply_confidence('algo-a', 65.0).meets_threshold

    def test_paused_flag_reported(self, store, algorithm_ids, now):
        publish(store, [weight('algo-a', 0.0, paused=True), weight('algo-b', 1.0)], now)
        assert TrustQuery(store, algorithm_ids).apply_confidence('algo-a', 70.0).is_paused


class TestWeightedConsensus:
    """Tests for weight-blended consensus."""

    def _publish(self, store, now, a_multiplier=1.0):
        publish(store, [
            weight('algo-a', 0.6, multiplier=a_multiplier),
            weight('algo-b', 0.4),
            weight('algo-c', 0.0, paused=True),
        ], now)

    def test_paused_excluded(self, store, algorithm_ids, now):
        self._publish(store, now)
        result = TrustQuery(store, algorithm_ids).weighted_consensus([
            {'algorithm_id': 'algo-a', 'recommendation': 'home', 'confidence': 70},
            {'algorithm_id': 'algo-b', 'recommendation': 'away', 'confidence': 60},
            {'algorithm_id': 'algo-c', 'recommendation': 'away', 'confidence': 90},
        ])

        assert result.recommendation == 'home'
        assert result.confidence == 70.0
        assert result.excluded == ['algo-c']
        assert result.algorithm_weights == {'algo-a': 0.6, 'algo-b': 0.4, 'algo-c': 0.0}
        assert not result.is_high_consensus

    def test_agreement_is_high_consensus(self, store, algorithm_ids, now):
        self._publish(store, now)
        result = TrustQuery(store, algorithm_ids).weighted_consensus([
            {'algorithm_id': 'algo-a', 'recommendation': 'home', 'confidence': 70},
            {'algorithm_id': 'algo-b', 'recommendation': 'home', 'confidence': 60},
        ])
        assert result.recommendation == 'home'
        assert result.confidence == 66.0
        assert result.is_high_consensus

    def test_multiplier_shifts_consensus(self, store, algorithm_ids, now):
        self._publish(store, now, a_multiplier=0.5)
        result = TrustQuery(store, algorithm_ids).weighted_consensus([
            {'algorithm_id': 'algo-a', 'recommendation': 'home', 'confidence': 80},
            {'algorithm_id': 'algo-b', 'recommendation': 'away', 'confidence': 60},
        ])
        assert result.recommendation == 'away'

    def test_no_active_picks(self, store, algorithm_ids, now):
        self._publish(store, now)
        result = TrustQuery(store, algorithm_ids).weighted_consensus([
            {'algorithm_id': 'algo-c', 'recommendation': 'home', 'confidence': 80},
        ])
        assert result.recommendation is None
        assert result.confidence == 0.0

    def test_all_paused_uses_equal_split(self, store, algorithm_ids, now):
        publish(store, [
            weight('algo-a', 0.5, paused=True, health=10),
            weight('algo-b', 0.5, paused=True, health=20),
        ], now)
        trust = TrustQuery(store, algorithm_ids)

        assert trust.get_trust('algo-a').trusted
        assert trust.get_trust('algo-a').is_paused
        result = trust.weighted_consensus([
            {'algorithm_id': 'algo-a', 'recommendation': 'home', 'confidence': 70},
            {'algorithm_id': 'algo-b', 'recommendation': 'home', 'confidence': 64},
        ])
        assert result.recommendation == 'home'
        assert result.confidence == 67.0
        assert result.algorithm_weights == {'algo-a': 0.5, 'algo-b': 0.5}
        assert result.excluded == []


class TestSummary:
    """Tests for the dashboard summary."""

    def test_empty_store_inactive(self, store, algorithm_ids):
        summary = TrustQuery(store, algorithm_ids).summary()
        assert not summary.is_active
        assert summary.is_stale
        assert summary.last_update is None

    def test_active_summary(self, store, algorithm_ids, now):
        snap = publish(store, [
            weight('algo-a', 0.5, multiplier=0.8),
            weight('algo-b', 0.5, multiplier=1.01),
            weight('algo-c', 0.0, paused=True),
        ], now)
        trust = TrustQuery(store, algorithm_ids, clock=lambda: snap.published_at + timedelta(minutes=10))
        summary = trust.summary()

        assert summary.is_active
        assert not summary.is_stale
        assert summary.adjusted_algorithms == 1
        assert summary.paused_algorithms == 1
        assert summary.average_multiplier == pytest.approx((0.8 + 1.01 + 1.0) / 3)
        assert summary.overall_health_score == 62
        assert summary.to_dict()['last_update'] == snap.published_at.isoformat()

    def test_stale_after_configured_minutes(self, store, algorithm_ids, now):
        snap = publish(store, [weight('algo-a', 1.0)], now)
        trust = TrustQuery(
            store, algorithm_ids, stale_after_minutes=30,
            clock=lambda: snap.published_at + timedelta(minutes=31),
        )
        assert trust.summary().is_stale

    def test_bin_summary(self, store, algorithm_ids, now):
        bins = analyze_bins(build_outcomes('algo-a', now, wins=4, losses=6, confidence=72))
        snap = publish(store, [weight('algo-a', 1.0)], now, bin_calibration=bins)
        summary = TrustQuery(store, algorithm_ids, clock=lambda: snap.published_at).summary()
        assert summary.bins_adjusted == 1
        assert summary.bins_overall_factor == 0.7
