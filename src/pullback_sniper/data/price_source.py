from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional
from pullback_sniper.core.types import PricePoint, Token, TokenHistory


class PriceSourceError(Exception):
    """Raised when a price collaborator fails (network, rate limit, bad payload)"""
    pass


class HistoricalDataUnavailable(PriceSourceError):
    """Raised when a backtest has no recorded history to replay"""
    pass


class PriceSource(ABC):
    """Ordered price/market cap/volume observations per token, live or recorded"""

    @abstractmethod
    async def fetch_latest(self, address: str) -> Optional[PricePoint]:
        """Latest observation for a token, None when nothing new is available"""
        raise NotImplementedError

    async def discover(self) -> List[Token]:
        """New token candidates, deduplicated by address"""
        return []

    def histories(self) -> Dict[str, TokenHistory]:
        """Full recorded histories, for backtesting"""
        raise HistoricalDataUnavailable(f"{type(self).__name__} has no recorded history")

    async def close(self) -> None:
        pass


def normalize_history(history: TokenHistory) -> TokenHistory:
    """Copy of history with points sorted by timestamp, last observation per timestamp kept"""
    by_time: Dict = {}
    for point in history.points:
        by_time[point.timestamp] = point
    return replace(history, points=[by_time[ts] for ts in sorted(by_time)])


class HistoricalPriceSource(PriceSource):
    """
    Pre-recorded histories. histories() hands out the full curves for the
    simulator; fetch_latest() replays them one point per call so the live
    scheduler can be driven over the same data.
    """

    def __init__(self, histories: Iterable[TokenHistory]):
        self._histories: Dict[str, TokenHistory] = {}
        for history in histories:
            self._histories[history.address] = normalize_history(history)
        self._cursors: Dict[str, int] = {address: 0 for address in self._histories}
        self._announced = False

    def histories(self) -> Dict[str, TokenHistory]:
        if not any(h.points for h in self._histories.values()):
            raise HistoricalDataUnavailable("No recorded price history available")
        return dict(self._histories)

    async def discover(self) -> List[Token]:
        # Every recorded token is announced once, on the first call
        if self._announced:
            return []
        self._announced = True
        return [h.to_token() for h in self._histories.values()]

    async def fetch_latest(self, address: str) -> Optional[PricePoint]:
        history = self._histories.get(address)
        if history is None:
            raise PriceSourceError(f"Unknown token {address}")
        cursor = self._cursors[address]
        if cursor >= len(history.points):
            return None
        self._cursors[address] = cursor + 1
        return history.points[cursor]

    def exhausted(self) -> bool:
        return all(self._cursors[a] >= len(h.points) for a, h in self._histories.items())
