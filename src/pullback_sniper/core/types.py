from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
import math


class TokenStatus(str, Enum):
    NEW = "new"
    WATCHING = "watching"
    BUY_TRIGGER = "buy_trigger"
    BOUGHT = "bought"
    SOLD = "sold"
    STOPPED_OUT = "stopped_out"
    EMERGENCY_STOP = "emergency_stop"
    EXPIRED = "expired"  # buy_trigger whose follow-up window elapsed


TERMINAL_STATUSES = frozenset({
    TokenStatus.SOLD,
    TokenStatus.STOPPED_OUT,
    TokenStatus.EMERGENCY_STOP,
    TokenStatus.EXPIRED,
})


class MomentumPhase(str, Enum):
    INITIAL = "initial"
    BREAKOUT = "breakout"
    EXPLOSIVE = "explosive"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [MomentumPhase.INITIAL, MomentumPhase.BREAKOUT, MomentumPhase.EXPLOSIVE]


class ExitReason(str, Enum):
    VOLUME_DEATH = "volume_death"
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"
    STOP_LOSS = "stop_loss"
    TIME_LIMIT = "time_limit"
    END_OF_DATA = "end_of_data"
    EMERGENCY = "Emergency stop activated"


@dataclass(frozen=True)
class PricePoint:
    timestamp: datetime
    price: float
    market_cap: float
    volume: float

    def __post_init__(self):
        object.__setattr__(self, "timestamp", to_utc(self.timestamp))

    @property
    def is_valid(self) -> bool:
        """Price must be a positive finite number, market cap and volume non-negative"""
        values = (self.price, self.market_cap, self.volume)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            return False
        return self.price > 0 and self.market_cap >= 0 and self.volume >= 0


@dataclass
class Token:
    address: str
    name: str
    symbol: str
    created_at: Optional[datetime] = None
    status: TokenStatus = TokenStatus.NEW

    def __post_init__(self):
        self.created_at = to_utc(self.created_at)


@dataclass
class TokenHistory:
    """Recorded price curve of one token, ordered by timestamp"""
    address: str
    name: str
    symbol: str
    created_at: Optional[datetime]
    points: List[PricePoint] = field(default_factory=list)

    def __post_init__(self):
        self.created_at = to_utc(self.created_at)

    def to_token(self) -> Token:
        return Token(
            address=self.address,
            name=self.name,
            symbol=self.symbol,
            created_at=self.created_at,
        )


@dataclass
class Position:
    """Represents an open position, exists only while a token is bought"""
    token_address: str
    entry_price: float
    entry_market_cap: float
    entry_time: datetime
    quantity: float
    stop_loss_price: float
    trailing_stop_price: float
    peak_price: float
    momentum_phase: MomentumPhase = MomentumPhase.INITIAL

    @property
    def supply(self) -> float:
        """Circulating supply implied by the entry snapshot"""
        return self.entry_market_cap / self.entry_price if self.entry_price > 0 else 0.0

    @property
    def peak_market_cap(self) -> float:
        return self.peak_price * self.supply

    def calculate_pnl(self, current_price: float) -> float:
        """Calculate unrealized PnL"""
        return (current_price - self.entry_price) * self.quantity


@dataclass(frozen=True)
class Trade:
    token_address: str
    entry_price: float
    exit_price: float
    entry_time: datetime
    exit_time: datetime
    quantity: float
    pnl: float
    pnl_percent: float
    exit_reason: str

    @classmethod
    def close(cls, position: Position, exit_price: float, exit_time: datetime, exit_reason: str) -> "Trade":
        pnl = (exit_price - position.entry_price) * position.quantity
        pnl_percent = (exit_price - position.entry_price) / position.entry_price * 100
        return cls(
            token_address=position.token_address,
            entry_price=position.entry_price,
            exit_price=exit_price,
            entry_time=position.entry_time,
            exit_time=exit_time,
            quantity=position.quantity,
            pnl=pnl,
            pnl_percent=pnl_percent,
            exit_reason=str(exit_reason.value if isinstance(exit_reason, ExitReason) else exit_reason),
        )

    @property
    def trade_key(self) -> str:
        return trade_key(self.token_address, self.entry_time)

    def key_for(self, backtest_id: Optional[str] = None) -> str:
        return trade_key(self.token_address, self.entry_time, backtest_id)

    @property
    def hold_seconds(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()


def trade_key(token_address: str, entry_time: datetime, backtest_id: Optional[str] = None) -> str:
    """
    Idempotency key of a trade: one entry per token per timestamp. Backtest
    keys are prefixed with the run id so replays into a shared sink never
    collide with each other or with live trades.
    """
    key = f"{token_address}:{entry_time.isoformat()}"
    return f"{backtest_id}/{key}" if backtest_id else key


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC; aware ones are converted to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
