from dataclasses import replace

import pytest

from pullback_sniper.core.simulator import Simulator, run_backtest
from pullback_sniper.core.sinks import CsvTradeSink, MemorySink
from pullback_sniper.core.types import ExitReason
from pullback_sniper.data.price_source import HistoricalDataUnavailable, HistoricalPriceSource
from pullback_sniper.data.synthetic import SyntheticPriceSource
from pullback_sniper.utils.config import StrategyConfig


def scenario_histories(history, curves):
    return [
        history("alpha", curves["take_profit"]),
        history("beta", curves["volume_death"]),
        history("gamma", curves["expired"]),
    ]


class TestRunBacktest:
    def test_scenario_trades(self, fast_config, history, curves):
        result = run_backtest(fast_config, scenario_histories(history, curves))
        reasons = {t.token_address: t.exit_reason for t in result.trades}
        assert reasons == {"alpha": "take_profit", "beta": "volume_death"}
        assert result.metrics.total_trades == 2
        assert result.token_count == 3
        assert result.backtest_id
        assert result.equity_curve[-1].equity == pytest.approx(10_000 + result.metrics.total_pnl)

    def test_accepts_mapping_and_price_source(self, fast_config, history, curves):
        by_list = run_backtest(fast_config, scenario_histories(history, curves))
        by_map = run_backtest(fast_config, {h.address: h for h in scenario_histories(history, curves)})
        by_source = run_backtest(fast_config, HistoricalPriceSource(scenario_histories(history, curves)))
        assert by_list.trades == by_map.trades == by_source.trades

    def test_trades_sorted_by_exit_time(self, fast_config, history, curves):
        result = run_backtest(fast_config, scenario_histories(history, curves))
        exits = [t.exit_time for t in result.trades]
        assert exits == sorted(exits)

    def test_open_position_closed_at_end_of_data(self, fast_config, history, curves):
        h = history("alpha", curves["take_profit"][:3] + [(150, 9)])
        result = run_backtest(fast_config, [h])
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_DATA.value
        assert trade.exit_price == pytest.approx(9e-6)

        kept_open = run_backtest(fast_config, [history("alpha", curves["take_profit"][:3])],
                                 close_open_positions=False)
        assert kept_open.trades == []

    def test_unsorted_points_are_replayed_in_order(self, fast_config, history, curves):
        h = history("alpha", curves["take_profit"])
        h.points = list(reversed(h.points))
        result = run_backtest(fast_config, [h])
        assert [t.exit_reason for t in result.trades] == ["take_profit"]

    def test_no_history_is_an_error(self, fast_config, history):
        with pytest.raises(HistoricalDataUnavailable):
            run_backtest(fast_config, [])
        with pytest.raises(HistoricalDataUnavailable):
            run_backtest(fast_config, [history("empty", [])])
        with pytest.raises(HistoricalDataUnavailable):
            run_backtest(fast_config, None)

    def test_trades_written_to_sink_with_backtest_id(self, fast_config, history, curves):
        sink = MemorySink()
        result = Simulator(fast_config, sink=sink).run(scenario_histories(history, curves), backtest_id="bt-1")
        assert result.backtest_id == "bt-1"
        assert sink.trades == result.trades


class TestDeterminism:
    def test_same_seed_same_result(self):
        config = StrategyConfig()
        first = run_backtest(config, SyntheticPriceSource(seed=11, token_count=40))
        second = run_backtest(config, SyntheticPriceSource(seed=11, token_count=40))
        assert first.trades == second.trades
        assert first.metrics == second.metrics

    def test_synthetic_histories_are_seeded(self):
        a = SyntheticPriceSource(seed=5, token_count=3).histories()
        b = SyntheticPriceSource(seed=5, token_count=3).histories()
        c = SyntheticPriceSource(seed=6, token_count=3).histories()
        assert [h.points for h in a.values()] == [h.points for h in b.values()]
        assert [h.points for h in a.values()] != [h.points for h in c.values()]


class TestSharedSink:
    def test_reruns_into_one_csv_keep_their_own_entries(self, tmp_path, fast_config, history, curves):
        path = str(tmp_path / "trades.csv")
        alpha = history("alpha", curves["take_profit"])
        rebound = alpha.points[2].timestamp

        first = run_backtest(fast_config, [alpha], sink=CsvTradeSink(path))
        second = run_backtest(replace(fast_config, take_profit_multiplier=1.5), [alpha], sink=CsvTradeSink(path))

        for result in (first, second):
            assert [t.exit_reason for t in result.trades] == ["take_profit"]
            assert result.trades[0].entry_time == rebound

        rows = CsvTradeSink(path).load_trades()
        assert len(rows) == 2
        assert set(rows["backtest_id"]) == {first.backtest_id, second.backtest_id}

    def test_same_run_id_is_not_written_twice(self, tmp_path, fast_config, history, curves):
        path = str(tmp_path / "trades.csv")
        alpha = history("alpha", curves["take_profit"])

        first = run_backtest(fast_config, [alpha], sink=CsvTradeSink(path))
        again = Simulator(fast_config, sink=CsvTradeSink(path)).run([alpha], backtest_id=first.backtest_id)

        assert again.trades == first.trades
        assert len(CsvTradeSink(path).load_trades()) == 1


def test_caller_histories_are_left_untouched(fast_config, history, curves):
    alpha = history("alpha", curves["take_profit"])
    shuffled = [alpha.points[3], alpha.points[0], alpha.points[0], alpha.points[2], alpha.points[1]]
    alpha.points = list(shuffled)

    result = run_backtest(fast_config, [alpha])
    HistoricalPriceSource([alpha])

    assert [t.exit_reason for t in result.trades] == ["take_profit"]
    assert alpha.points == shuffled
