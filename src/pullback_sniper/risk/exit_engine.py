from datetime import datetime
from typing import Dict, Optional
import logging
from pullback_sniper.core.events import EntrySignal, ExitAction, ExitDecision
from pullback_sniper.core.types import ExitReason, MomentumPhase, Position, PricePoint
from pullback_sniper.strategies.entry_signal import is_volume_viable, minimum_volume
from pullback_sniper.utils.config import StrategyConfig

BREAKOUT_MARKET_CAP = 100_000
EXPLOSIVE_MARKET_CAP = 500_000

# Stop distance shrinks and the profit target widens as a position runs
STOP_SCALE: Dict[MomentumPhase, float] = {
    MomentumPhase.INITIAL: 1.0,
    MomentumPhase.BREAKOUT: 0.5,
    MomentumPhase.EXPLOSIVE: 0.3,
}
TARGET_SCALE: Dict[MomentumPhase, float] = {
    MomentumPhase.INITIAL: 1.0,
    MomentumPhase.BREAKOUT: 1.5,
    MomentumPhase.EXPLOSIVE: 3.0,
}

CONFIDENCE = {
    ExitReason.EMERGENCY: 100,
    ExitReason.VOLUME_DEATH: 95,
    ExitReason.TAKE_PROFIT: 90,
    ExitReason.TRAILING_STOP: 85,
    ExitReason.STOP_LOSS: 85,
    ExitReason.TIME_LIMIT: 80,
    ExitReason.END_OF_DATA: 50,
}

# Exits that bank a move vs. exits that cut a failing trade
PROFIT_TAKING_REASONS = frozenset({
    ExitReason.TAKE_PROFIT,
    ExitReason.TRAILING_STOP,
    ExitReason.TIME_LIMIT,
    ExitReason.END_OF_DATA,
})


def phase_for_market_cap(market_cap: float) -> MomentumPhase:
    if market_cap > EXPLOSIVE_MARKET_CAP:
        return MomentumPhase.EXPLOSIVE
    if market_cap > BREAKOUT_MARKET_CAP:
        return MomentumPhase.BREAKOUT
    return MomentumPhase.INITIAL


class RiskExitEngine:
    """Per-tick hold/exit decision for an open position"""

    def __init__(self, config: StrategyConfig, logger: logging.Logger = None):
        self.config = config
        self.logger = logger

    def open_position(self, signal: EntrySignal, quantity: float) -> Position:
        stop_price = signal.price * (1 - self.config.stop_loss_percent / 100)
        return Position(
            token_address=signal.token_address,
            entry_price=signal.price,
            entry_market_cap=signal.market_cap,
            entry_time=signal.timestamp,
            quantity=quantity,
            stop_loss_price=stop_price,
            trailing_stop_price=stop_price,
            peak_price=signal.price,
            momentum_phase=MomentumPhase.INITIAL,
        )

    def take_profit_price(self, position: Position) -> float:
        scale = TARGET_SCALE[position.momentum_phase]
        return position.entry_price * self.config.take_profit_multiplier * scale

    def update_trailing_state(self, position: Position, price: float) -> None:
        """Advance peak, momentum phase and trailing stop. None of them move backwards."""
        if price > position.peak_price:
            position.peak_price = price

        phase = phase_for_market_cap(position.peak_market_cap)
        if phase.rank > position.momentum_phase.rank:
            if self.logger:
                self.logger.info(
                    f"{position.token_address}: momentum {position.momentum_phase.value} -> {phase.value} "
                    f"(peak MC {position.peak_market_cap:,.0f})"
                )
            position.momentum_phase = phase

        if position.momentum_phase is not MomentumPhase.INITIAL:
            stop_pct = self.config.stop_loss_percent * STOP_SCALE[position.momentum_phase]
            trailing = position.peak_price * (1 - stop_pct / 100)
            position.trailing_stop_price = max(position.trailing_stop_price, trailing)

    def evaluate(self, position: Position, point: PricePoint, age_minutes: float) -> ExitDecision:
        """
        Exit priority, first match wins:
        volume death, take profit, trailing/hard stop, max hold time.
        """
        if position.entry_price <= 0:
            return ExitDecision(action=ExitAction.HOLD, price=point.price, reasoning="No valid entry price")

        price = point.price
        self.update_trailing_state(position, price)

        if not is_volume_viable(point.volume, age_minutes):
            return self._exit(
                ExitReason.VOLUME_DEATH, price,
                f"Volume {point.volume:,.0f} below {minimum_volume(age_minutes):,.0f} "
                f"at {age_minutes:.1f} min. Immediate exit required."
            )

        target = self.take_profit_price(position)
        if price >= target:
            return self._exit(
                ExitReason.TAKE_PROFIT, price,
                f"Target {target:.10g} reached in {position.momentum_phase.value} phase"
            )

        if position.momentum_phase is MomentumPhase.INITIAL:
            if price <= position.stop_loss_price:
                return self._exit(
                    ExitReason.STOP_LOSS, price,
                    f"Stop loss hit ({self._drop_pct(position, price):.1f}% below entry)"
                )
        elif price <= position.trailing_stop_price:
            return self._exit(
                ExitReason.TRAILING_STOP, price,
                f"Trailing stop {position.trailing_stop_price:.10g} hit in {position.momentum_phase.value} phase"
            )

        held = self.seconds_held(position, point.timestamp)
        if held >= self.config.max_hold_seconds:
            return self._exit(
                ExitReason.TIME_LIMIT, price,
                f"Max hold time ({self.config.max_hold_seconds:.0f}s) reached"
            )

        return ExitDecision(action=ExitAction.HOLD, price=price)

    @staticmethod
    def seconds_held(position: Position, at: datetime) -> float:
        return (at - position.entry_time).total_seconds()

    @staticmethod
    def is_profit_taking(reason: ExitReason) -> bool:
        return reason in PROFIT_TAKING_REASONS

    @staticmethod
    def _drop_pct(position: Position, price: float) -> float:
        return (position.entry_price - price) / position.entry_price * 100

    @staticmethod
    def _exit(reason: ExitReason, price: float, reasoning: str) -> ExitDecision:
        return ExitDecision(
            action=ExitAction.FULL_EXIT,
            reason=reason,
            confidence=CONFIDENCE[reason],
            price=price,
            reasoning=reasoning,
        )

    @staticmethod
    def emergency_exit(price: Optional[float]) -> ExitDecision:
        return RiskExitEngine._exit(ExitReason.EMERGENCY, price or 0.0, "Emergency stop activated")
