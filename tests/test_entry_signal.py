from datetime import datetime, timedelta, timezone

import pytest

from pullback_sniper.core.lifecycle import TokenLifecycle
from pullback_sniper.core.types import Token, TokenStatus
from pullback_sniper.strategies.entry_signal import (
    EntrySignalDetector, is_volume_viable, minimum_volume,
)
from pullback_sniper.utils.config import StrategyConfig

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def feed(detector, lifecycle, points):
    """Run points through observe + evaluate the way the engine does; return the signals."""
    signals = []
    for p in points:
        if lifecycle.observe(p):
            signal = detector.evaluate(lifecycle, p)
            if signal is not None:
                signals.append(signal)
    return signals


def new_lifecycle(config, created_at=T0):
    token = Token(address="tok", name="Token", symbol="TOK", created_at=created_at)
    return TokenLifecycle(token, max_age_minutes=config.max_age_minutes)


class TestVolumeGate:
    @pytest.mark.parametrize("age,expected", [
        (0, 1000), (5, 1000), (5.1, 2000), (15, 2000), (15.5, 1500), (30, 1500), (31, 1000), (240, 1000),
    ])
    def test_minimum_volume_by_age(self, age, expected):
        assert minimum_volume(age) == expected

    def test_viability_is_inclusive(self):
        assert is_volume_viable(2000, 10)
        assert not is_volume_viable(1999.99, 10)
        assert not is_volume_viable(200, 25)


class TestPullbackPattern:
    def test_scenario_entry_at_rebound(self, fast_config, point, curves):
        detector = EntrySignalDetector(fast_config)
        lc = new_lifecycle(fast_config)
        points = [point(*step) for step in curves["take_profit"][:3]]

        assert feed(detector, lc, points[:1]) == []
        assert lc.status is TokenStatus.WATCHING

        assert feed(detector, lc, points[1:2]) == []
        assert lc.status is TokenStatus.BUY_TRIGGER
        assert lc.trigger_market_cap == 5500

        signals = feed(detector, lc, points[2:])
        assert len(signals) == 1
        signal = signals[0]
        assert signal.market_cap == 8200
        assert signal.price == pytest.approx(8.2e-6)
        assert signal.timestamp == T0 + timedelta(seconds=120)
        assert signal.trigger_market_cap == 5500

    def test_low_volume_blocks_every_promotion(self, fast_config, point):
        detector = EntrySignalDetector(fast_config)
        lc = new_lifecycle(fast_config)
        feed(detector, lc, [point(0, 12, 500)])
        assert lc.status is TokenStatus.NEW

        feed(detector, lc, [point(30, 12), point(60, 5.5, 100)])
        assert lc.status is TokenStatus.WATCHING

        assert feed(detector, lc, [point(90, 5.5), point(120, 8.5, 100)]) == []
        assert lc.status is TokenStatus.BUY_TRIGGER
        assert len(feed(detector, lc, [point(150, 8.5)])) == 1

    def test_buy_window_expiry(self, fast_config, point, curves):
        detector = EntrySignalDetector(fast_config)
        lc = new_lifecycle(fast_config)
        signals = feed(detector, lc, [point(*step) for step in curves["expired"]])
        assert signals == []
        assert lc.status is TokenStatus.EXPIRED
        assert lc.is_terminal

    def test_old_token_never_watched(self, fast_config, point):
        detector = EntrySignalDetector(fast_config)
        lc = new_lifecycle(fast_config, created_at=T0 - timedelta(minutes=10))
        feed(detector, lc, [point(s, 20) for s in range(0, 600, 30)])
        assert lc.status is TokenStatus.NEW


class TestSustainedMomentum:
    """Default config: the watch level must still hold 180-300s after the first crossing."""

    def test_single_spike_is_not_enough(self, point):
        config = StrategyConfig()
        detector = EntrySignalDetector(config)
        lc = new_lifecycle(config)
        feed(detector, lc, [point(0, 12), point(60, 12), point(120, 11)])
        assert lc.status is TokenStatus.NEW
        assert lc.watch_crossed_at == T0

    def test_confirmed_inside_window(self, point):
        config = StrategyConfig()
        detector = EntrySignalDetector(config)
        lc = new_lifecycle(config)
        feed(detector, lc, [point(0, 12), point(200, 9)])
        assert lc.status is TokenStatus.NEW
        feed(detector, lc, [point(250, 11)])
        assert lc.status is TokenStatus.WATCHING

    def test_signal_discarded_after_window(self, point):
        config = StrategyConfig()
        detector = EntrySignalDetector(config)
        lc = new_lifecycle(config)
        feed(detector, lc, [point(0, 12), point(60, 9), point(400, 12)])
        # The old crossing lapsed; the 400s point starts a new one
        assert lc.status is TokenStatus.NEW
        assert lc.watch_crossed_at == T0 + timedelta(seconds=400)

        feed(detector, lc, [point(600, 12)])
        assert lc.status is TokenStatus.WATCHING

    def test_lapsed_crossing_below_threshold_resets(self, point):
        config = StrategyConfig()
        detector = EntrySignalDetector(config)
        lc = new_lifecycle(config)
        feed(detector, lc, [point(0, 12), point(350, 9)])
        assert lc.watch_crossed_at is None
        assert lc.status is TokenStatus.NEW
