import argparse
import sys
from pullback_sniper.analysis.trade_visualizer import TradeVisualizer
from pullback_sniper.core.simulator import run_backtest
from pullback_sniper.core.sinks import CsvTradeSink
from pullback_sniper.data.backtest_data_feed import BacktestDataFeed, save_price_histories
from pullback_sniper.data.price_source import HistoricalDataUnavailable
from pullback_sniper.data.synthetic import SyntheticPriceSource
from pullback_sniper.utils.config import Config, ConfigError
from pullback_sniper.utils.logger import TradingLogger


def print_report(result):
    m = result.metrics
    print(f"\nBacktest {result.backtest_id}: {result.token_count} tokens")
    print("=" * 60)
    print(f"Total trades:     {m.total_trades} ({m.winning_trades} won / {m.losing_trades} lost)")
    print(f"Win rate:         {m.win_rate:.1f}%")
    print(f"Total PnL:        ${m.total_pnl:,.2f}")
    print(f"Avg trade:        ${m.avg_trade:,.2f}")
    print(f"Largest win/loss: ${m.largest_win:,.2f} / ${m.largest_loss:,.2f}")
    print(f"Profit factor:    {m.profit_factor:.2f}")
    print(f"Max drawdown:     {m.max_drawdown:.2f}%")
    print(f"Sharpe (trade):   {m.sharpe_ratio:.3f}")
    print(f"Avg hold:         {m.avg_hold_seconds:.0f}s")
    for reason, count in m.exit_reasons.items():
        print(f"  {reason:<26}{count}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Backtest the pullback entry strategy")
    parser.add_argument("--config", type=str, default="config.yaml", help="YAML config file")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--data", type=str, help="CSV of recorded price histories")
    source.add_argument("--synthetic", type=int, metavar="TOKENS", help="Generate synthetic tokens")
    parser.add_argument("--seed", type=int, default=42, help="Seed for synthetic data")
    parser.add_argument("--save-data", type=str, help="Write the replayed histories to this CSV")
    parser.add_argument("--trades-csv", type=str, help="Append closed trades to this CSV")
    parser.add_argument("--db", action="store_true", help="Persist trades and results to DB_URL")
    parser.add_argument("--keep-open", action="store_true",
                        help="Leave positions open at end of data instead of closing them")
    parser.add_argument("--plot", type=str, metavar="DIR", help="Save equity and per-trade charts here")
    parser.add_argument("--log-dir", type=str, default=None)
    args = parser.parse_args(argv)

    logger = TradingLogger("backtest", log_dir=args.log_dir, console_output=True)

    try:
        config = Config(args.config)
        if args.data:
            price_source = BacktestDataFeed(args.data)
        else:
            price_source = SyntheticPriceSource(seed=args.seed, token_count=args.synthetic)

        if args.save_data:
            rows = save_price_histories(price_source.histories().values(), args.save_data)
            logger.info(f"Saved {rows} price points to {args.save_data}")

        sink = None
        if args.db:
            from pullback_sniper.db.service import DatabaseService
            sink = DatabaseService()
        elif args.trades_csv:
            sink = CsvTradeSink(args.trades_csv, logger=logger)

        result = run_backtest(
            config.strategy,
            price_source,
            risk_params=config.risk,
            sink=sink,
            logger=logger,
            close_open_positions=not args.keep_open,
        )
    except (ConfigError, HistoricalDataUnavailable) as e:
        logger.error(str(e))
        return 1

    if args.db:
        sink.save_backtest_result(result, config.strategy.as_dict())

    print_report(result)

    if args.plot:
        visualizer = TradeVisualizer(args.plot)
        visualizer.plot_backtest(result.trades, result.equity_curve, config.risk.initial_capital,
                                 name=f"backtest_{result.backtest_id}")
        histories = price_source.histories()
        for trade in result.trades:
            visualizer.plot_trade(histories[trade.token_address], trade)
        logger.info(f"Charts written to {args.plot}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
