import asyncio

import pytest

from pullback_sniper.core.engine import StrategyEngine
from pullback_sniper.core.position_tracker import InMemoryPositionStore
from pullback_sniper.core.scheduler import LiveScheduler
from pullback_sniper.core.simulator import run_backtest
from pullback_sniper.core.sinks import MemorySink
from pullback_sniper.core.types import TokenStatus
from pullback_sniper.data.price_source import HistoricalPriceSource, PriceSource, PriceSourceError
from pullback_sniper.risk.monitoring import HeartbeatMonitor
from pullback_sniper.utils.config import MonitorSettings


class GatedPriceSource(HistoricalPriceSource):
    """Replay source whose lookups block until the test opens the gate."""

    def __init__(self, histories):
        super().__init__(histories)
        self.gate = asyncio.Event()
        self.calls = 0

    async def fetch_latest(self, address):
        self.calls += 1
        await self.gate.wait()
        return await super().fetch_latest(address)


class FlakyPriceSource(HistoricalPriceSource):
    """One token hangs, one errors, the rest replay normally."""

    async def fetch_latest(self, address):
        if address == "hang":
            await asyncio.sleep(10)
        if address == "boom":
            raise PriceSourceError("rate limited")
        if address == "bug":
            raise KeyError("unexpected payload")
        return await super().fetch_latest(address)


class BrokenDiscovery(PriceSource):
    async def fetch_latest(self, address):
        return None

    async def discover(self):
        raise PriceSourceError("discovery down")


def make_scheduler(config, source, **settings):
    engine = StrategyEngine(config, sink=MemorySink())
    return LiveScheduler(engine, source, settings=MonitorSettings(**settings))


@pytest.mark.asyncio
async def test_live_and_backtest_produce_identical_trades(fast_config, history, curves):
    histories = lambda: [
        history("alpha", curves["take_profit"]),
        history("beta", curves["volume_death"]),
        history("gamma", curves["expired"]),
    ]
    backtest = run_backtest(fast_config, histories(), close_open_positions=False)

    scheduler = make_scheduler(fast_config, HistoricalPriceSource(histories()))
    longest = max(len(h.points) for h in histories())
    for _ in range(longest + 1):
        assert await scheduler.run_cycle()

    live_trades = sorted(scheduler.engine.sink.trades, key=lambda t: (t.exit_time, t.token_address))
    assert live_trades == backtest.trades
    assert len(live_trades) == 2


@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(fast_config, history, curves):
    source = GatedPriceSource([history("alpha", curves["take_profit"])])
    scheduler = make_scheduler(fast_config, source, request_timeout_seconds=5)

    first = asyncio.create_task(scheduler.run_cycle())
    while source.calls == 0:
        await asyncio.sleep(0)

    assert await scheduler.run_cycle() is False
    assert scheduler.cycles_skipped == 1

    source.gate.set()
    assert await first is True
    assert scheduler.cycles_completed == 1
    assert source.calls == 1


@pytest.mark.asyncio
async def test_failing_tokens_do_not_block_others(fast_config, history, curves):
    source = FlakyPriceSource([
        history("alpha", curves["take_profit"]),
        history("hang", curves["take_profit"]),
        history("boom", curves["take_profit"]),
        history("bug", curves["take_profit"]),
    ])
    scheduler = make_scheduler(fast_config, source, request_timeout_seconds=0.05)

    assert await scheduler.run_cycle()
    engine = scheduler.engine
    assert engine.get_lifecycle("alpha").status is TokenStatus.WATCHING
    for address in ("hang", "boom", "bug"):
        assert engine.get_lifecycle(address).last_point is None
        assert engine.get_lifecycle(address).status is TokenStatus.NEW

    errors = [a for a in engine.sink.alerts if a.type == "error"]
    assert [a.token_address for a in errors] == ["bug"]


@pytest.mark.asyncio
async def test_discovery_failure_is_not_fatal(fast_config):
    scheduler = make_scheduler(fast_config, BrokenDiscovery())
    assert await scheduler.run_cycle()
    assert scheduler.engine.active_addresses() == []


@pytest.mark.asyncio
async def test_start_and_stop_monitoring(fast_config, history, curves):
    source = HistoricalPriceSource([history("alpha", curves["take_profit"])])
    scheduler = make_scheduler(fast_config, source, poll_interval_seconds=0.01)

    await scheduler.start_monitoring()
    assert scheduler.is_active()
    for _ in range(200):
        if source.exhausted():
            break
        await asyncio.sleep(0.01)
    await scheduler.stop_monitoring()

    assert not scheduler.is_active()
    assert scheduler.get_open_positions() == {}
    assert [t.exit_reason for t in scheduler.engine.sink.trades] == ["take_profit"]
    messages = [a.message for a in scheduler.engine.sink.alerts]
    assert messages[0] == "Token monitoring started"
    assert messages[-1] == "Token monitoring stopped"


@pytest.mark.asyncio
async def test_start_monitoring_applies_config(fast_config, history, curves):
    source = HistoricalPriceSource([history("alpha", curves["take_profit"])])
    scheduler = make_scheduler(fast_config, source, poll_interval_seconds=0.01)
    new_config = type(fast_config)(**{**fast_config.as_dict(), "position_size_usd": 50})

    await scheduler.start_monitoring(new_config)
    await scheduler.stop_monitoring()
    assert scheduler.engine.config.position_size_usd == 50
    assert scheduler.engine.risk_manager.position_size_usd == 50


@pytest.mark.asyncio
async def test_emergency_stop_through_scheduler(fast_config, history, curves):
    source = HistoricalPriceSource([history("alpha", curves["take_profit"][:3])])
    scheduler = make_scheduler(fast_config, source)
    for _ in range(3):
        await scheduler.run_cycle()
    assert "alpha" in scheduler.get_open_positions()

    trades = await scheduler.emergency_stop_all()
    assert [t.exit_reason for t in trades] == ["Emergency stop activated"]
    assert scheduler.get_open_positions() == {}
    assert scheduler.engine.get_lifecycle("alpha").status is TokenStatus.EMERGENCY_STOP


@pytest.mark.asyncio
async def test_completed_cycles_beat_the_heartbeat(fast_config, history, curves, logger):
    engine = StrategyEngine(fast_config, sink=MemorySink())
    monitor = HeartbeatMonitor(logger)
    scheduler = LiveScheduler(engine, HistoricalPriceSource([history("alpha", curves["take_profit"])]),
                              monitor=monitor)

    await scheduler.run_cycle()
    await scheduler.run_cycle()

    assert monitor.cycles_seen == 2
    assert monitor.last_cycle == {'active_tokens': 1, 'open_positions': 0}


@pytest.mark.asyncio
async def test_start_monitoring_resumes_stored_positions(fast_config, history, curves):
    store = InMemoryPositionStore()
    alpha = history("alpha", curves["take_profit"])
    before = StrategyEngine(fast_config, position_store=store)
    before.track(alpha.to_token())
    for p in alpha.points[:3]:
        before.on_price("alpha", p)

    engine = StrategyEngine(fast_config, position_store=store, sink=MemorySink())
    scheduler = LiveScheduler(engine, HistoricalPriceSource([]), settings=MonitorSettings(poll_interval_seconds=60))
    await scheduler.start_monitoring()
    try:
        assert engine.get_lifecycle("alpha").status is TokenStatus.BOUGHT
        assert "alpha" in engine.active_addresses()
    finally:
        await scheduler.stop_monitoring()
