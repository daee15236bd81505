from typing import Optional
import logging
from pullback_sniper.core.events import EntrySignal
from pullback_sniper.core.lifecycle import TokenLifecycle
from pullback_sniper.core.types import PricePoint, TokenStatus
from pullback_sniper.utils.config import StrategyConfig

# (max age in minutes, minimum volume); the last bucket covers everything older
VOLUME_BUCKETS = (
    (5, 1000.0),
    (15, 2000.0),
    (30, 1500.0),
)
MATURE_MIN_VOLUME = 1000.0


def minimum_volume(age_minutes: float) -> float:
    """Minimum viable volume for a token of the given age"""
    for max_age, min_volume in VOLUME_BUCKETS:
        if age_minutes <= max_age:
            return min_volume
    return MATURE_MIN_VOLUME


def is_volume_viable(volume: float, age_minutes: float) -> bool:
    return volume >= minimum_volume(age_minutes)


class EntrySignalDetector:
    """
    Spike, pull back, re-enter.

    new -> watching once the market cap holds the watch threshold inside the
    confirmation sub-window after first crossing it; watching -> buy_trigger
    on the pullback; buy_trigger -> open-position request on the rebound
    through the buy level, within the follow-up window. Every promotion also
    needs the age-bucketed volume gate to pass on the same point.
    """

    def __init__(self, config: StrategyConfig, logger: logging.Logger = None):
        self.config = config
        self.logger = logger

    def evaluate(self, lifecycle: TokenLifecycle, point: PricePoint) -> Optional[EntrySignal]:
        status = lifecycle.status
        if status is TokenStatus.NEW:
            self._check_watch(lifecycle, point)
        elif status is TokenStatus.WATCHING:
            self._check_trigger(lifecycle, point)
        elif status is TokenStatus.BUY_TRIGGER:
            return self._check_buy(lifecycle, point)
        return None

    def _viable(self, lifecycle: TokenLifecycle, point: PricePoint) -> bool:
        return is_volume_viable(point.volume, lifecycle.age_minutes(point.timestamp))

    def _check_watch(self, lifecycle: TokenLifecycle, point: PricePoint) -> None:
        if not lifecycle.eligible:
            return

        above = point.market_cap >= self.config.watch_market_cap

        if lifecycle.watch_crossed_at is not None:
            elapsed = (point.timestamp - lifecycle.watch_crossed_at).total_seconds()
            if elapsed > self.config.confirm_window_end_seconds:
                self._log_debug(
                    f"{lifecycle.address}: watch signal discarded, no sustained "
                    f"{self.config.watch_threshold_k}K within {elapsed:.0f}s of crossing"
                )
                lifecycle.watch_crossed_at = None

        if lifecycle.watch_crossed_at is None:
            if not above:
                return
            lifecycle.watch_crossed_at = point.timestamp

        elapsed = (point.timestamp - lifecycle.watch_crossed_at).total_seconds()
        in_window = (self.config.confirm_window_start_seconds
                     <= elapsed <=
                     self.config.confirm_window_end_seconds)

        if in_window and above and self._viable(lifecycle, point):
            lifecycle.transition(TokenStatus.WATCHING)
            self._log_info(
                f"{lifecycle.address}: watching at {point.market_cap:,.0f} MC "
                f"(held {elapsed:.0f}s, volume {point.volume:,.0f})"
            )

    def _check_trigger(self, lifecycle: TokenLifecycle, point: PricePoint) -> None:
        if point.market_cap > self.config.trigger_market_cap:
            return
        if not self._viable(lifecycle, point):
            return
        lifecycle.transition(TokenStatus.BUY_TRIGGER)
        lifecycle.triggered_at = point.timestamp
        lifecycle.trigger_market_cap = point.market_cap
        self._log_info(f"{lifecycle.address}: buy trigger at {point.market_cap:,.0f} MC")

    def _check_buy(self, lifecycle: TokenLifecycle, point: PricePoint) -> Optional[EntrySignal]:
        elapsed = (point.timestamp - lifecycle.triggered_at).total_seconds()
        if elapsed > self.config.buy_window_seconds:
            lifecycle.transition(TokenStatus.EXPIRED)
            self._log_info(
                f"{lifecycle.address}: buy window elapsed after {elapsed:.0f}s, token abandoned"
            )
            return None

        if point.market_cap < self.config.buy_market_cap:
            return None
        if not self._viable(lifecycle, point):
            return None

        return EntrySignal(
            timestamp=point.timestamp,
            token_address=lifecycle.address,
            price=point.price,
            market_cap=point.market_cap,
            volume=point.volume,
            trigger_market_cap=lifecycle.trigger_market_cap,
        )

    def _log_info(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def _log_debug(self, message: str) -> None:
        if self.logger:
            self.logger.debug(message)
