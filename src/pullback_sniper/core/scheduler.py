from datetime import datetime, timezone
from typing import Dict, List, Optional
import asyncio
import aiohttp
from pullback_sniper.data.price_source import PriceSource, PriceSourceError
from pullback_sniper.risk.monitoring import HeartbeatMonitor
from pullback_sniper.utils.config import MonitorSettings, StrategyConfig
from pullback_sniper.utils.logger import TradingLogger
from .engine import StrategyEngine
from .events import Alert
from .types import Position, Trade

# Failures that skip one token (or the discovery step) for the current cycle only
TRANSIENT_ERRORS = (asyncio.TimeoutError, aiohttp.ClientError, PriceSourceError)


class LiveScheduler:
    """
    Fixed-period live driver. Every poll_interval_seconds it discovers new
    tokens, then pulls the latest point for every active token concurrently
    and feeds it to the engine. A cycle that is still running when the next
    tick comes due is skipped, never queued. Each token is only ever touched
    under its own lock.
    """

    def __init__(self,
                 engine: StrategyEngine,
                 price_source: PriceSource,
                 settings: MonitorSettings = None,
                 logger: TradingLogger = None,
                 monitor: HeartbeatMonitor = None):
        self.engine = engine
        self.price_source = price_source
        self.settings = (settings or MonitorSettings()).validate()
        self.logger = logger or TradingLogger("live_scheduler")
        self.monitor = monitor

        self.position_locks: Dict[str, asyncio.Lock] = {}
        self.is_running = False
        self.cycles_completed = 0
        self.cycles_skipped = 0
        self._cycle_in_progress = False
        self._cycle_task: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    # Lifecycle

    async def start_monitoring(self, config: StrategyConfig = None):
        if self.is_running:
            self.logger.warning("Monitoring already active")
            return
        if config is not None:
            self.engine.reconfigure(config)

        restored = self.engine.restore_positions()
        if restored:
            self.logger.warning(f"Resumed {len(restored)} open positions from the store: {restored}")

        self.is_running = True
        if self.monitor:
            self.monitor.start_monitoring()
        self.logger.critical(
            f"Monitoring started: polling every {self.settings.poll_interval_seconds}s"
        )
        self._record_alert("info", "Token monitoring started")
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop_monitoring(self):
        if not self.is_running:
            return
        self.logger.critical("Initiating monitoring shutdown")
        self.is_running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        # Let an in-flight cycle finish so no token is left mid-tick
        if self._cycle_task and not self._cycle_task.done():
            await self._cycle_task
        self._cycle_task = None

        if self.monitor:
            self.monitor.stop_monitoring()
        await self.price_source.close()

        open_positions = self.get_open_positions()
        if open_positions:
            self.logger.warning(f"Stopped with {len(open_positions)} open positions: {sorted(open_positions)}")
        self._record_alert("info", "Token monitoring stopped")
        self.logger.info("Monitoring stopped successfully")

    def is_active(self) -> bool:
        return self.is_running

    def get_open_positions(self) -> Dict[str, Position]:
        return self.engine.get_open_positions()

    async def _run_loop(self):
        while self.is_running:
            if self._cycle_task and not self._cycle_task.done():
                self.cycles_skipped += 1
                self.logger.warning("Previous monitoring cycle still running, skipping this tick")
            else:
                self._cycle_task = asyncio.create_task(self._guarded_cycle())
            await asyncio.sleep(self.settings.poll_interval_seconds)

    async def _guarded_cycle(self):
        try:
            await self.run_cycle()
        except Exception as e:
            self.logger.error(f"Monitoring cycle failed: {str(e)}")
            self._record_alert("error", f"Monitoring cycle failed: {str(e)}")

    # One cycle

    async def run_cycle(self) -> bool:
        """Run one discovery + evaluation pass. Returns False if a pass was already running."""
        if self._cycle_in_progress:
            self.cycles_skipped += 1
            self.logger.warning("Monitoring cycle already in progress, skipping")
            return False

        self._cycle_in_progress = True
        try:
            await self._discover()

            addresses = self.engine.active_addresses()
            results = await asyncio.gather(
                *(self._process_token(address) for address in addresses),
                return_exceptions=True,
            )
            for address, result in zip(addresses, results):
                if isinstance(result, Exception):
                    self.logger.error(f"Error monitoring {address}: {str(result)}")
                    self._record_alert("error", f"Monitoring error: {str(result)}", address)

            self.cycles_completed += 1
            if self.monitor:
                self.monitor.beat(len(addresses), len(self.get_open_positions()))
            return True
        finally:
            self._cycle_in_progress = False

    async def _discover(self):
        try:
            tokens = await asyncio.wait_for(
                self.price_source.discover(),
                timeout=self.settings.discovery_timeout_seconds,
            )
        except TRANSIENT_ERRORS as e:
            self.logger.warning(f"Token discovery failed, retrying next cycle: {str(e) or type(e).__name__}")
            return

        for token in tokens:
            if self.engine.get_lifecycle(token.address) is None:
                self.engine.track(token)
                self.logger.info(f"Tracking new token {token.symbol} ({token.address})")

    async def _process_token(self, address: str) -> Optional[Trade]:
        async with self._lock_for(address):
            try:
                point = await asyncio.wait_for(
                    self.price_source.fetch_latest(address),
                    timeout=self.settings.request_timeout_seconds,
                )
            except TRANSIENT_ERRORS as e:
                self.logger.warning(f"Price lookup for {address} failed, retrying next cycle: "
                                    f"{str(e) or type(e).__name__}")
                return None
            return self.engine.on_price(address, point)

    def _lock_for(self, address: str) -> asyncio.Lock:
        if address not in self.position_locks:
            self.position_locks[address] = asyncio.Lock()
        return self.position_locks[address]

    # Manual controls

    async def emergency_stop(self, address: str) -> Optional[Trade]:
        """Sell a position immediately at its last observed price"""
        async with self._lock_for(address):
            return self.engine.emergency_stop(address)

    async def emergency_stop_all(self) -> List[Trade]:
        trades = []
        for address in sorted(self.get_open_positions()):
            trade = await self.emergency_stop(address)
            if trade is not None:
                trades.append(trade)
        return trades

    def _record_alert(self, alert_type: str, message: str, address: Optional[str] = None):
        self.engine.sink.record_alert(Alert(
            type=alert_type,
            message=message,
            token_address=address,
            timestamp=datetime.now(timezone.utc),
        ))
