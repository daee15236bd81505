from datetime import datetime
from typing import Dict, List, Optional, Set
from pullback_sniper.risk.exit_engine import RiskExitEngine
from pullback_sniper.risk.risk_manager import RiskManager
from pullback_sniper.strategies.entry_signal import EntrySignalDetector
from pullback_sniper.utils.config import RiskParameters, StrategyConfig
from pullback_sniper.utils.logger import TradingLogger
from .events import Alert, EntrySignal, ExitAction, ExitDecision
from .lifecycle import TokenLifecycle
from .position_tracker import InMemoryPositionStore, PositionStore
from .sinks import MemorySink, TradeSink
from .types import (
    ExitReason, Position, PricePoint, Token, TokenStatus, Trade, trade_key,
)

STATUS_ALERTS = {
    TokenStatus.WATCHING: ("success", "{symbol} meets watch criteria: ${mc:,.0f} MC"),
    TokenStatus.BUY_TRIGGER: ("warning", "{symbol} triggered buy condition at ${mc:,.0f} MC"),
    TokenStatus.EXPIRED: ("info", "{symbol} buy window elapsed without a rebound, abandoned"),
}


class StrategyEngine:
    """
    The one decision path shared by the live scheduler and the backtest
    simulator. Callers feed it PricePoints per token address; it runs the
    lifecycle, the entry detector and the exit engine and emits Trades and
    Alerts to the injected sink. It never reads the wall clock.

    Not safe for concurrent calls on the same address: drivers must keep a
    single writer per token.
    """

    def __init__(self,
                 config: StrategyConfig,
                 risk_params: RiskParameters = None,
                 position_store: PositionStore = None,
                 sink: TradeSink = None,
                 logger: TradingLogger = None,
                 backtest_id: Optional[str] = None):
        self.config = config.validate()
        self.logger = logger or TradingLogger("strategy_engine")
        self.position_store = position_store or InMemoryPositionStore()
        self.sink = sink or MemorySink()
        self.backtest_id = backtest_id

        self.risk_manager = RiskManager(
            position_size_usd=config.position_size_usd,
            risk_params=risk_params,
            logger=self.logger,
        )
        self.detector = EntrySignalDetector(config, self.logger)
        self.exit_engine = RiskExitEngine(config, self.logger)

        self.lifecycles: Dict[str, TokenLifecycle] = {}
        self._emergency_requests: Set[str] = set()

    def reconfigure(self, config: StrategyConfig) -> None:
        """Apply new thresholds to every decision from the next tick on"""
        self.config = config.validate()
        self.risk_manager.position_size_usd = config.position_size_usd
        self.detector = EntrySignalDetector(config, self.logger)
        self.exit_engine = RiskExitEngine(config, self.logger)
        self.logger.info(f"Strategy parameters updated: {config.as_dict()}")

    # Token registry

    def track(self, token: Token) -> TokenLifecycle:
        """
        Start tracking a token. A closed token seen again starts over as a
        fresh record; a live one is returned unchanged. A token that already
        has a stored position (e.g. from before a restart) resumes as bought.
        """
        existing = self.lifecycles.get(token.address)
        if existing is not None and not existing.is_terminal:
            return existing

        if existing is not None:
            self.logger.info(f"{token.address} was closed as {existing.status.value}, tracking as new token")

        status = TokenStatus.NEW
        stored = self.position_store.get_position(token.address)
        if stored is not None:
            status = TokenStatus.BOUGHT
            self.risk_manager.update_capital_after_entry(stored.entry_price * stored.quantity)
            self.logger.info(f"Resuming open position for {token.address}")
        if token.status is not status:
            token = Token(address=token.address, name=token.name, symbol=token.symbol,
                          created_at=token.created_at, status=status)
        lifecycle = TokenLifecycle(token, max_age_minutes=self.config.max_age_minutes)
        self.lifecycles[token.address] = lifecycle
        return lifecycle

    def restore_positions(self) -> List[str]:
        """Track every stored position that has no lifecycle yet. Returns the restored addresses."""
        restored = []
        for address, position in sorted(self.position_store.get_all_positions().items()):
            if address in self.lifecycles and not self.lifecycles[address].is_terminal:
                continue
            # Creation time is not stored; entry time is the closest lower bound
            self.track(Token(address=address, name=address, symbol=address[:6],
                             created_at=position.entry_time))
            restored.append(address)
        return restored

    def get_lifecycle(self, address: str) -> Optional[TokenLifecycle]:
        return self.lifecycles.get(address)

    def active_addresses(self) -> List[str]:
        """Addresses that can still change state, in a stable order"""
        return sorted(a for a, lc in self.lifecycles.items() if not lc.is_terminal)

    def get_open_positions(self) -> Dict[str, Position]:
        return self.position_store.get_all_positions()

    # Decision path

    def on_price(self, address: str, point: Optional[PricePoint]) -> Optional[Trade]:
        """Feed one observation; returns the Trade if this tick closed a position"""
        lifecycle = self.lifecycles.get(address)
        if lifecycle is None:
            self.logger.warning(f"Price for untracked token {address}, ignoring")
            return None
        if lifecycle.is_terminal or point is None:
            return None

        if not lifecycle.observe(point):
            self.logger.warning(
                f"Skipping malformed or out-of-order point for {address}: "
                f"ts={point.timestamp} price={point.price} mc={point.market_cap} vol={point.volume}"
            )
            return None

        if lifecycle.status is TokenStatus.BOUGHT:
            return self._evaluate_exit(lifecycle, point)

        previous = lifecycle.status
        signal = self.detector.evaluate(lifecycle, point)
        if lifecycle.status is not previous:
            self._status_alert(lifecycle, point)

        if signal is not None:
            self._open_position(lifecycle, signal)
        return None

    def _evaluate_exit(self, lifecycle: TokenLifecycle, point: PricePoint) -> Optional[Trade]:
        position = self.position_store.get_position(lifecycle.address)
        if position is None:
            self.logger.error(f"{lifecycle.address} is bought but has no stored position")
            return None

        # Kill switch wins over everything the exit engine would decide
        if lifecycle.address in self._emergency_requests:
            return self._close(lifecycle, position, self.exit_engine.emergency_exit(point.price), point.timestamp)

        decision = self.exit_engine.evaluate(position, point, lifecycle.age_minutes(point.timestamp))
        self.position_store.update_position(position)

        if decision.should_exit:
            self.logger.info(f"{lifecycle.address}: exit {decision.reason.value} - {decision.reasoning}")
            return self._close(lifecycle, position, decision, point.timestamp)
        return None

    def _open_position(self, lifecycle: TokenLifecycle, signal: EntrySignal) -> Optional[Position]:
        address = lifecycle.address
        key = trade_key(address, signal.timestamp)
        # Backtest decisions depend on config and history only, never on what a shared sink holds
        if self.backtest_id is None and self.sink.has_trade(key):
            self.logger.info(f"Trade {key} already recorded, not re-executing entry")
            return None

        open_count = len(self.position_store.get_all_positions())
        can_enter, position_size = self.risk_manager.can_enter_position(address, open_count)
        if not (can_enter and position_size > 0):
            return None

        quantity = self.risk_manager.quantity_for(position_size, signal.price)
        position = self.exit_engine.open_position(signal, quantity)
        self.position_store.add_position(position)
        lifecycle.transition(TokenStatus.BOUGHT)
        self.risk_manager.update_capital_after_entry(position_size)

        self.logger.log_entry(address, signal.price, signal.market_cap, quantity)
        self._alert(
            "success",
            f"Bought {lifecycle.token.symbol} at ${signal.price:.10g} ({signal.market_cap:,.0f} MC)",
            address, signal.timestamp,
        )
        return position

    def _close(self, lifecycle: TokenLifecycle, position: Position,
               decision: ExitDecision, timestamp: datetime) -> Trade:
        reason = decision.reason
        trade = Trade.close(position, decision.price, timestamp, reason)

        self.position_store.remove_position(lifecycle.address)
        if reason is ExitReason.EMERGENCY:
            lifecycle.transition(TokenStatus.EMERGENCY_STOP)
        elif self.exit_engine.is_profit_taking(reason):
            lifecycle.transition(TokenStatus.SOLD)
        else:
            lifecycle.transition(TokenStatus.STOPPED_OUT)
        self._emergency_requests.discard(lifecycle.address)

        self.risk_manager.update_capital_after_exit(position.quantity * decision.price)
        self.sink.record_trade(trade, self.backtest_id)

        self.logger.log_exit(trade)
        self._alert(
            "success" if trade.pnl > 0 else "error",
            f"Sold {lifecycle.token.symbol}: {trade.exit_reason}, PnL ${trade.pnl:.2f} ({trade.pnl_percent:.1f}%)",
            trade.token_address, timestamp,
        )
        return trade

    # Kill switch

    def request_emergency_stop(self, address: str) -> bool:
        """Flag a bought token; its next tick exits before any other evaluation"""
        lifecycle = self.lifecycles.get(address)
        if lifecycle is None or lifecycle.status is not TokenStatus.BOUGHT:
            self.logger.warning(f"Emergency stop ignored for {address}: no open position")
            return False
        self.logger.critical(f"Emergency stop requested for {address}")
        self._emergency_requests.add(address)
        return True

    def emergency_stop(self, address: str) -> Optional[Trade]:
        """Sell now at the last observed price"""
        if not self.request_emergency_stop(address):
            return None
        lifecycle = self.lifecycles[address]
        point = lifecycle.last_point
        if point is None:
            # Restored position with no observation yet: exits on its next tick
            return None
        position = self.position_store.get_position(address)
        decision = self.exit_engine.emergency_exit(point.price)
        return self._close(lifecycle, position, decision, point.timestamp)

    def close_at_last_price(self, address: str, reason: ExitReason = ExitReason.END_OF_DATA) -> Optional[Trade]:
        """Close an open position at its last observed point"""
        lifecycle = self.lifecycles.get(address)
        if lifecycle is None or lifecycle.status is not TokenStatus.BOUGHT or lifecycle.last_point is None:
            return None
        position = self.position_store.get_position(address)
        point = lifecycle.last_point
        decision = ExitDecision(
            action=ExitAction.FULL_EXIT,
            reason=reason,
            price=point.price,
            reasoning=f"Closed at last observed price ({reason.value})",
        )
        return self._close(lifecycle, position, decision, point.timestamp)

    # Alerts

    def _status_alert(self, lifecycle: TokenLifecycle, point: PricePoint) -> None:
        template = STATUS_ALERTS.get(lifecycle.status)
        if template is None:
            return
        alert_type, message = template
        self._alert(
            alert_type,
            message.format(symbol=lifecycle.token.symbol, mc=point.market_cap),
            lifecycle.address, point.timestamp,
        )

    def _alert(self, alert_type: str, message: str, address: Optional[str] = None,
               timestamp: Optional[datetime] = None) -> None:
        self.sink.record_alert(Alert(type=alert_type, message=message, token_address=address, timestamp=timestamp))
