from datetime import datetime, timedelta, timezone

import pytest

from pullback_sniper.core.types import PricePoint, TokenHistory
from pullback_sniper.utils.config import StrategyConfig
from pullback_sniper.utils.logger import TradingLogger

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
SUPPLY = 1_000_000_000


def make_point(seconds, market_cap_k, volume=5000.0, start=T0):
    """Point `seconds` after start; price follows market cap at a fixed supply."""
    market_cap = market_cap_k * 1000
    return PricePoint(
        timestamp=start + timedelta(seconds=seconds),
        price=market_cap / SUPPLY,
        market_cap=market_cap,
        volume=volume,
    )


def make_history(address, curve, created_at=T0):
    """curve: iterable of (seconds, market_cap_k) or (seconds, market_cap_k, volume)"""
    return TokenHistory(
        address=address,
        name=address.title(),
        symbol=address[:4].upper(),
        created_at=created_at,
        points=[make_point(*step, start=created_at) for step in curve],
    )


# Spike to 12K, pull back to 5.5K, rebound through 8.2K, then double
TAKE_PROFIT_CURVE = [(0, 12), (60, 5.5), (120, 8.2), (180, 16.4)]

# Same entry, flat afterwards, volume collapses at minute 10
VOLUME_DEATH_CURVE = (
    [(0, 12), (60, 5.5), (120, 8.2)]
    + [(s, 8.2) for s in range(150, 600, 30)]
    + [(600, 8.2, 200.0)]
)

# Pullback never recovers to the buy level inside the follow-up window
EXPIRED_CURVE = [(0, 12), (60, 5.5), (200, 7), (400, 8.5)]


@pytest.fixture
def point():
    return make_point


@pytest.fixture
def history():
    return make_history


@pytest.fixture
def fast_config():
    """Scenario thresholds with the watch confirmed on the crossing point itself."""
    return StrategyConfig(
        watch_threshold_k=10,
        buy_trigger_k=6,
        buy_price_k=8,
        take_profit_multiplier=2.0,
        stop_loss_percent=25,
        confirm_window_start_seconds=0,
        confirm_window_end_seconds=0,
    )


@pytest.fixture
def logger():
    return TradingLogger("tests")


@pytest.fixture
def curves():
    return {
        "take_profit": TAKE_PROFIT_CURVE,
        "volume_death": VOLUME_DEATH_CURVE,
        "expired": EXPIRED_CURVE,
    }
