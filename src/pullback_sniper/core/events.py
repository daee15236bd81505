from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
from .types import ExitReason


@dataclass(frozen=True)
class EntrySignal:
    """Open-position request emitted by the entry detector"""
    timestamp: datetime
    token_address: str
    price: float
    market_cap: float
    volume: float
    trigger_market_cap: float  # Pullback low that armed the entry


class ExitAction(str, Enum):
    HOLD = "hold"
    FULL_EXIT = "full_exit"


@dataclass(frozen=True)
class ExitDecision:
    action: ExitAction
    reason: Optional[ExitReason] = None
    confidence: int = 50
    price: float = 0.0
    reasoning: str = "Monitoring position"

    @property
    def should_exit(self) -> bool:
        return self.action is ExitAction.FULL_EXIT


@dataclass(frozen=True)
class Alert:
    type: str  # info, success, warning, error
    message: str
    token_address: Optional[str] = None
    timestamp: Optional[datetime] = field(default=None)
