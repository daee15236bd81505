from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Union
import uuid
from pullback_sniper.analysis.metrics import (
    INITIAL_CAPITAL, BacktestMetrics, EquityPoint, MetricsCalculator, build_equity_curve,
)
from pullback_sniper.data.price_source import HistoricalDataUnavailable, PriceSource, normalize_history
from pullback_sniper.utils.config import RiskParameters, StrategyConfig
from pullback_sniper.utils.logger import TradingLogger
from .engine import StrategyEngine
from .sinks import TradeSink
from .types import ExitReason, TokenHistory, Trade

HistoryInput = Union[PriceSource, Mapping[str, TokenHistory], Iterable[TokenHistory]]


@dataclass
class BacktestResult:
    backtest_id: str
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    metrics: BacktestMetrics
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    token_count: int = 0


class Simulator:
    """
    Replays recorded histories through the same StrategyEngine the live
    scheduler uses. Tokens are processed one at a time in address order and
    each token's points strictly in timestamp order, so the same input
    always yields the same trades.
    """

    def __init__(self,
                 config: StrategyConfig,
                 risk_params: RiskParameters = None,
                 sink: TradeSink = None,
                 logger: TradingLogger = None):
        self.config = config
        self.risk_params = risk_params or RiskParameters(initial_capital=INITIAL_CAPITAL)
        self.sink = sink
        self.logger = logger or TradingLogger("simulator")

    def run(self, histories: HistoryInput, close_open_positions: bool = True,
            backtest_id: Optional[str] = None) -> BacktestResult:
        by_address = resolve_histories(histories)
        backtest_id = backtest_id or uuid.uuid4().hex
        self.logger.info(f"Backtest {backtest_id} starting over {len(by_address)} tokens")

        engine = StrategyEngine(
            self.config,
            risk_params=self.risk_params,
            sink=self.sink,
            logger=self.logger,
            backtest_id=backtest_id,
        )

        trades: List[Trade] = []
        for address in sorted(by_address):
            history = by_address[address]
            engine.track(history.to_token())
            for point in history.points:
                trade = engine.on_price(address, point)
                if trade is not None:
                    trades.append(trade)

            if close_open_positions:
                trade = engine.close_at_last_price(address, ExitReason.END_OF_DATA)
                if trade is not None:
                    trades.append(trade)

        trades.sort(key=lambda t: (t.exit_time, t.token_address))
        initial_capital = self.risk_params.initial_capital
        equity_curve = build_equity_curve(trades, initial_capital)
        metrics = MetricsCalculator(initial_capital).calculate(trades, equity_curve)

        self.logger.info(
            f"Backtest {backtest_id} finished: {metrics.total_trades} trades, "
            f"win rate {metrics.win_rate:.1f}%, PnL ${metrics.total_pnl:.2f}, "
            f"max drawdown {metrics.max_drawdown:.2f}%, sharpe {metrics.sharpe_ratio:.3f}"
        )
        return BacktestResult(
            backtest_id=backtest_id,
            trades=trades,
            equity_curve=equity_curve,
            metrics=metrics,
            token_count=len(by_address),
        )


def resolve_histories(histories: HistoryInput) -> Dict[str, TokenHistory]:
    """Accept a PriceSource, an address mapping or a plain iterable of histories"""
    if histories is None:
        raise HistoricalDataUnavailable("No price history supplied")
    if isinstance(histories, PriceSource):
        items = list(histories.histories().values())
    elif isinstance(histories, Mapping):
        items = list(histories.values())
    else:
        items = list(histories)

    by_address = {h.address: normalize_history(h) for h in items}
    if not any(h.points for h in by_address.values()):
        raise HistoricalDataUnavailable("No recorded price history available")
    return by_address


def run_backtest(config: StrategyConfig,
                 price_histories: HistoryInput,
                 risk_params: RiskParameters = None,
                 sink: TradeSink = None,
                 logger: TradingLogger = None,
                 close_open_positions: bool = True) -> BacktestResult:
    simulator = Simulator(config, risk_params=risk_params, sink=sink, logger=logger)
    return simulator.run(price_histories, close_open_positions=close_open_positions)
