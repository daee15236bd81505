from datetime import datetime, timedelta, timezone
from typing import List
import numpy as np
from pullback_sniper.core.types import PricePoint, TokenHistory
from .price_source import HistoricalPriceSource

TOTAL_SUPPLY = 1_000_000_000

# Drift per step: launch pump, then pullback, then a random continuation
PUMP_SECONDS, PUMP_DRIFT = 60, 0.030
PULLBACK_SECONDS, PULLBACK_DRIFT = 180, -0.012


def generate_token_history(rng: np.random.Generator,
                           index: int,
                           created_at: datetime,
                           duration_seconds: int = 900,
                           interval_seconds: int = 5) -> TokenHistory:
    """One token's launch curve, sampled every interval_seconds from creation"""
    base_price = 2e-6 + rng.random() * 8e-6
    continuation_drift = rng.normal(0.0, 0.01)
    volatility = 0.02 + rng.random() * 0.06
    volume_share = 0.05 + rng.random() * 0.35
    death_at = rng.uniform(120, duration_seconds * 1.5)

    points: List[PricePoint] = []
    price = base_price
    for seconds in range(0, duration_seconds, interval_seconds):
        if seconds < PUMP_SECONDS:
            drift = PUMP_DRIFT
        elif seconds < PULLBACK_SECONDS:
            drift = PULLBACK_DRIFT
        else:
            drift = continuation_drift
        price *= float(np.exp(drift + volatility * rng.standard_normal()))
        market_cap = price * TOTAL_SUPPLY

        volume = market_cap * volume_share * rng.uniform(0.5, 1.5)
        if seconds >= death_at:
            volume *= 0.02

        points.append(PricePoint(
            timestamp=created_at + timedelta(seconds=seconds),
            price=price,
            market_cap=market_cap,
            volume=float(volume),
        ))

    return TokenHistory(
        address=f"synthetic_{index:05d}",
        name=f"SyntheticToken{index}",
        symbol=f"SYN{index}",
        created_at=created_at,
        points=points,
    )


class SyntheticPriceSource(HistoricalPriceSource):
    """Seeded synthetic launch curves; the same seed always yields the same histories"""

    def __init__(self,
                 seed: int,
                 token_count: int = 100,
                 start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc),
                 span_hours: float = 24.0,
                 duration_seconds: int = 900,
                 interval_seconds: int = 5):
        rng = np.random.default_rng(seed)
        offsets = np.sort(rng.uniform(0, span_hours * 3600, size=token_count))
        histories = [
            generate_token_history(
                rng, i, start + timedelta(seconds=float(offset)),
                duration_seconds=duration_seconds,
                interval_seconds=interval_seconds,
            )
            for i, offset in enumerate(offsets)
        ]
        super().__init__(histories)
        self.seed = seed
