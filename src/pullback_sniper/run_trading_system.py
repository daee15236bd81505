import asyncio
import signal
from pullback_sniper.core.engine import StrategyEngine
from pullback_sniper.core.scheduler import LiveScheduler
from pullback_sniper.core.sinks import CsvTradeSink
from pullback_sniper.data.dex_feed import DexScreenerPriceSource
from pullback_sniper.risk.monitoring import HeartbeatMonitor
from pullback_sniper.utils.config import Config
from pullback_sniper.utils.logger import TradingLogger


class InitTradingSystem:
    def __init__(self, logger: TradingLogger = None):
        self.scheduler = None
        self.logger = logger
        self._shutdown_event = asyncio.Event()

    def handle_shutdown(self, signum):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}. Starting graceful shutdown...")
        self._shutdown_event.set()

    async def run_trading_system(self, config: Config) -> None:
        """Run live monitoring until a shutdown signal arrives"""
        sink = CsvTradeSink("data/trades/live_run.csv", logger=self.logger)
        engine = StrategyEngine(
            config.strategy,
            risk_params=config.risk,
            sink=sink,
            logger=self.logger,
        )
        price_source = DexScreenerPriceSource(
            self.logger,
            request_timeout=config.monitor.request_timeout_seconds,
            discovery_limit=config.monitor.discovery_limit,
            max_age_minutes=config.strategy.max_age_minutes,
        )
        monitor = HeartbeatMonitor(self.logger, heartbeat_interval=config.monitor.heartbeat_interval)
        self.scheduler = LiveScheduler(
            engine,
            price_source,
            settings=config.monitor,
            logger=self.logger,
            monitor=monitor,
        )

        try:
            await self.scheduler.start_monitoring()
            self.logger.info("Trading system started successfully")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Gracefully stop the scheduler"""
        if self.scheduler and self.scheduler.is_active():
            self.logger.info("Shutting down trading system...")
            shutdown_timeout = 30
            try:
                await asyncio.wait_for(self.scheduler.stop_monitoring(), timeout=shutdown_timeout)
            except asyncio.TimeoutError:
                self.logger.error(f"Shutdown timed out after {shutdown_timeout} seconds")


async def main():
    logger = TradingLogger("trading_system", log_dir="logs", console_output=True)
    config = Config("config.yaml")

    init_system = InitTradingSystem(logger)

    # Register signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, init_system.handle_shutdown, sig)

    try:
        logger.info("Starting trading system...")
        await init_system.run_trading_system(config)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        logger.info("Trading system shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
