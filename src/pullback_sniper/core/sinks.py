from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import List, Optional, Set, Any
import os
import pandas as pd
from .events import Alert
from .types import Trade

TRADE_COLUMNS = [
    'trade_key', 'token_address', 'entry_time', 'entry_price', 'exit_time', 'exit_price',
    'quantity', 'pnl', 'pnl_percent', 'exit_reason', 'hold_seconds', 'backtest_id',
]


class TradeSink(ABC):
    """Persistence boundary: the core writes trades and alerts, and only reads back trade keys"""

    @abstractmethod
    def record_trade(self, trade: Trade, backtest_id: Optional[str] = None) -> bool:
        """Store a closed trade. Returns False when the trade key is already recorded."""
        raise NotImplementedError

    @abstractmethod
    def record_alert(self, alert: Alert) -> None:
        raise NotImplementedError

    @abstractmethod
    def has_trade(self, key: str) -> bool:
        raise NotImplementedError


class MemorySink(TradeSink):
    def __init__(self):
        self.trades: List[Trade] = []
        self.alerts: List[Alert] = []
        self._keys: Set[str] = set()

    def record_trade(self, trade: Trade, backtest_id: Optional[str] = None) -> bool:
        key = trade.key_for(backtest_id)
        if key in self._keys:
            return False
        self._keys.add(key)
        self.trades.append(trade)
        return True

    def record_alert(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def has_trade(self, key: str) -> bool:
        return key in self._keys


class CsvTradeSink(MemorySink):
    """Appends every closed trade to a CSV file, one row per trade"""

    def __init__(self, csv_path: str, logger: Any = None):
        super().__init__()
        self.csv_path = csv_path
        self.logger = logger
        self._initialize_csv()

    def _initialize_csv(self):
        """Create CSV with headers if it doesn't exist, otherwise load recorded keys"""
        if not os.path.exists(self.csv_path):
            directory = os.path.dirname(self.csv_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            pd.DataFrame(columns=TRADE_COLUMNS).to_csv(self.csv_path, index=False)
            return

        existing = pd.read_csv(self.csv_path, usecols=['trade_key'], dtype=str)
        self._keys.update(existing['trade_key'].astype(str))

    def record_trade(self, trade: Trade, backtest_id: Optional[str] = None) -> bool:
        if not super().record_trade(trade, backtest_id):
            if self.logger:
                self.logger.warning(f"Trade {trade.key_for(backtest_id)} already recorded, skipping")
            return False

        row = asdict(trade)
        row['trade_key'] = trade.key_for(backtest_id)
        row['hold_seconds'] = trade.hold_seconds
        row['backtest_id'] = backtest_id
        df = pd.DataFrame([row], columns=TRADE_COLUMNS)
        df.to_csv(self.csv_path, mode='a', header=False, index=False)
        return True

    def load_trades(self) -> pd.DataFrame:
        df = pd.read_csv(self.csv_path, dtype={'trade_key': str, 'backtest_id': str})
        for col in ('entry_time', 'exit_time'):
            df[col] = pd.to_datetime(df[col], utc=True)
        return df


