from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Dict, List, Sequence
import numpy as np
import pandas as pd
from pullback_sniper.core.types import Trade

INITIAL_CAPITAL = 10_000.0


@dataclass(frozen=True)
class EquityPoint:
    timestamp: datetime
    equity: float


@dataclass(frozen=True)
class BacktestMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float          # percent
    total_pnl: float
    avg_trade: float
    max_drawdown: float      # percent, 0-100
    sharpe_ratio: float      # per trade, sample standard deviation
    profit_factor: float
    largest_win: float
    largest_loss: float
    avg_hold_seconds: float
    exit_reasons: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict:
        return asdict(self)


def build_equity_curve(trades: Sequence[Trade], initial_capital: float = INITIAL_CAPITAL) -> List[EquityPoint]:
    """One sample per closed trade, in exit order, starting from initial_capital"""
    curve = []
    equity = initial_capital
    for trade in sorted(trades, key=lambda t: (t.exit_time, t.token_address)):
        equity += trade.pnl
        curve.append(EquityPoint(timestamp=trade.exit_time, equity=equity))
    return curve


class MetricsCalculator:
    def __init__(self, initial_capital: float = INITIAL_CAPITAL):
        self.initial_capital = initial_capital

    def calculate(self, trades: Sequence[Trade], equity_curve: Sequence[EquityPoint]) -> BacktestMetrics:
        """Reduce a completed trade list and its equity curve to summary statistics"""
        if not trades:
            return BacktestMetrics(
                total_trades=0, winning_trades=0, losing_trades=0, win_rate=0.0,
                total_pnl=0.0, avg_trade=0.0,
                max_drawdown=self.max_drawdown(equity_curve),
                sharpe_ratio=0.0, profit_factor=0.0, largest_win=0.0, largest_loss=0.0,
                avg_hold_seconds=0.0, exit_reasons={},
            )

        df = pd.DataFrame({
            'pnl': [t.pnl for t in trades],
            'pnl_percent': [t.pnl_percent for t in trades],
            'hold_seconds': [t.hold_seconds for t in trades],
            'exit_reason': [t.exit_reason for t in trades],
        })

        total_trades = len(df)
        winners = df[df['pnl'] > 0]
        losers = df[df['pnl'] < 0]
        total_pnl = float(df['pnl'].sum())
        gross_loss = float(losers['pnl'].sum())

        return BacktestMetrics(
            total_trades=total_trades,
            winning_trades=len(winners),
            losing_trades=len(losers),
            win_rate=len(winners) / total_trades * 100,
            total_pnl=total_pnl,
            avg_trade=total_pnl / total_trades,
            max_drawdown=self.max_drawdown(equity_curve),
            sharpe_ratio=self.sharpe_ratio(df['pnl_percent'].to_numpy() / 100),
            profit_factor=abs(float(winners['pnl'].sum()) / gross_loss) if gross_loss else 0.0,
            largest_win=float(df['pnl'].max()),
            largest_loss=float(df['pnl'].min()),
            avg_hold_seconds=float(df['hold_seconds'].mean()),
            exit_reasons={str(k): int(v) for k, v in df['exit_reason'].value_counts().sort_index().items()},
        )

    def max_drawdown(self, equity_curve: Sequence[EquityPoint]) -> float:
        """Largest fall from the running equity peak, in percent of that peak, capped at 100"""
        peak = self.initial_capital
        worst = 0.0
        for point in equity_curve:
            peak = max(peak, point.equity)
            if peak <= 0:
                return 100.0
            drawdown = (peak - point.equity) / peak
            worst = max(worst, drawdown)
        return min(worst, 1.0) * 100

    @staticmethod
    def sharpe_ratio(returns: np.ndarray) -> float:
        """Mean per-trade return over its sample standard deviation (ddof=1), not annualized"""
        if len(returns) < 2:
            return 0.0
        std = float(np.std(returns, ddof=1))
        if std == 0 or not np.isfinite(std):
            return 0.0
        return float(np.mean(returns)) / std
