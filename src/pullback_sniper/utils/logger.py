import logging
from datetime import datetime
from typing import Optional
import os

CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class TradingLogger:
    """
    Thin wrapper over a named stdlib logger. Console output is opt-in and a
    file handler is only attached when log_dir is set, so tests and library
    callers stay quiet. Entries and exits additionally go to a
    '<name>.trades' child logger, which gets its own file when logging to disk.
    """

    def __init__(self, name: str = "pullback_sniper", log_dir: Optional[str] = None, console_output: bool = False):
        self.log_dir = log_dir
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.trade_logger = self.logger.getChild("trades")

        # Loggers are process-wide, only attach handlers once per name
        if not self.logger.handlers:
            self._setup_handlers(console_output)

    def _setup_handlers(self, console_output: bool):
        if console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            self.logger.addHandler(console_handler)

        if self.log_dir:
            stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            self.logger.addHandler(self._file_handler(f'sniper_{stamp}.log', logging.DEBUG))
            self.trade_logger.addHandler(self._file_handler(f'trades_{stamp}.log', logging.INFO))

    def _file_handler(self, filename: str, level: int) -> logging.FileHandler:
        handler = logging.FileHandler(os.path.join(self.log_dir, filename))
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        return handler

    def log_entry(self, address: str, price: float, market_cap: float, quantity: float) -> None:
        self.trade_logger.info(
            f"Bought {address} at {price:.10g} ({market_cap:,.0f} MC), quantity {quantity:,.2f}"
        )

    def log_exit(self, trade) -> None:
        self.trade_logger.info(
            f"Closed {trade.token_address} ({trade.exit_reason}) at {trade.exit_price:.10g}, "
            f"PnL: {trade.pnl:.2f} ({trade.pnl_percent:.2f}%)"
        )

    def critical(self, message: str) -> None:
        self.logger.critical(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)
