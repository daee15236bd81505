from pathlib import Path
from typing import List, Optional
import matplotlib.pyplot as plt
import pandas as pd
from pullback_sniper.core.types import TokenHistory, Trade
from .metrics import EquityPoint

class TradeVisualizer:
    def __init__(self, output_dir: str = "trade_plots"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def plot_backtest(self, trades: List[Trade], equity_curve: List[EquityPoint],
                      initial_capital: float, name: str = "backtest") -> Path:
        """Equity curve with drawdown shading above per-trade PnL bars"""
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), height_ratios=[2, 1])
        fig.suptitle(f'{name}: {len(trades)} trades', fontsize=14)

        if equity_curve:
            equity = pd.Series([p.equity for p in equity_curve],
                               index=[p.timestamp for p in equity_curve])
            peak = equity.cummax().clip(lower=initial_capital)
            ax1.plot(equity.index, equity.values, color='b', label='Equity')
            ax1.fill_between(equity.index, equity.values, peak.values, color='r', alpha=0.2, label='Drawdown')
        ax1.axhline(y=initial_capital, color='gray', linestyle='--', alpha=0.5)
        ax1.set_ylabel('Equity ($)')
        ax1.legend(loc='upper left')
        ax1.grid(True, alpha=0.3)

        pnl = [t.pnl for t in trades]
        colors = ['g' if p > 0 else 'r' for p in pnl]
        ax2.bar(range(len(pnl)), pnl, color=colors)
        ax2.axhline(y=0, color='gray', linewidth=0.8)
        ax2.set_xlabel('Trade #')
        ax2.set_ylabel('PnL ($)')
        ax2.grid(True, alpha=0.3)

        plt.tight_layout()
        path = self.output_dir / f"{name}.png"
        plt.savefig(path)
        plt.close(fig)
        return path

    def plot_trade(self, history: TokenHistory, trade: Optional[Trade] = None) -> Path:
        """Market cap and volume of one token, with entry and exit marked"""
        df = pd.DataFrame({
            'timestamp': [p.timestamp for p in history.points],
            'market_cap': [p.market_cap for p in history.points],
            'volume': [p.volume for p in history.points],
        })

        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), height_ratios=[2, 1], sharex=True)
        fig.suptitle(f'{history.symbol} - {history.address}', fontsize=14)

        ax1.plot(df['timestamp'], df['market_cap'], color='b')
        ax1.set_ylabel('Market Cap ($)')
        ax1.grid(True, alpha=0.3)

        if trade is not None:
            supply = df['market_cap'].iloc[0] / history.points[0].price if history.points else 0
            ax1.scatter(trade.entry_time, trade.entry_price * supply, marker='^',
                        color='g', s=100, zorder=5, label='Entry')
            ax1.scatter(trade.exit_time, trade.exit_price * supply, marker='v',
                        color='r', s=100, zorder=5, label=f'Exit ({trade.exit_reason})')
            ax1.legend(loc='upper left')

            summary = (f"Entry: ${trade.entry_price:.8f}\n"
                       f"Exit: ${trade.exit_price:.8f}\n"
                       f"PnL: {trade.pnl_percent:.2f}%\n"
                       f"Hold Time: {trade.hold_seconds / 60:.1f}min\n"
                       f"Exit Reason: {trade.exit_reason}")
            fig.text(0.02, 0.02, summary, fontsize=10,
                     bbox=dict(facecolor='white', alpha=0.8))

        ax2.bar(df['timestamp'], df['volume'], width=0.0005, color='gray')
        ax2.set_ylabel('Volume ($)')
        ax2.grid(True, alpha=0.3)

        plt.tight_layout()
        path = self.output_dir / f"trade_{history.address}.png"
        plt.savefig(path)
        plt.close(fig)
        return path
