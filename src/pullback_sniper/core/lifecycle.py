from datetime import datetime
from typing import Dict, FrozenSet, Optional
from .types import PricePoint, Token, TokenStatus, TERMINAL_STATUSES


class InvalidTransitionError(RuntimeError):
    """Raised when a status change is not an edge of the lifecycle graph"""
    pass


ALLOWED_TRANSITIONS: Dict[TokenStatus, FrozenSet[TokenStatus]] = {
    TokenStatus.NEW: frozenset({TokenStatus.WATCHING}),
    TokenStatus.WATCHING: frozenset({TokenStatus.BUY_TRIGGER}),
    TokenStatus.BUY_TRIGGER: frozenset({TokenStatus.BOUGHT, TokenStatus.EXPIRED}),
    TokenStatus.BOUGHT: frozenset({
        TokenStatus.SOLD,
        TokenStatus.STOPPED_OUT,
        TokenStatus.EMERGENCY_STOP,
    }),
}


class TokenLifecycle:
    """
    Owns one token's status and its market cap/volume observations.

    Status only changes through transition(); terminal states never change
    again. The entry detector keeps its pattern bookkeeping (watch crossing,
    trigger time) here so that everything address-scoped lives in one place.
    """

    def __init__(self, token: Token, max_age_minutes: Optional[float] = None):
        self.token = token
        self.max_age_minutes = max_age_minutes
        self.last_point: Optional[PricePoint] = None
        self.first_seen_at: Optional[datetime] = None
        self.eligible = True

        # Entry pattern bookkeeping
        self.watch_crossed_at: Optional[datetime] = None
        self.triggered_at: Optional[datetime] = None
        self.trigger_market_cap: Optional[float] = None

    @property
    def address(self) -> str:
        return self.token.address

    @property
    def status(self) -> TokenStatus:
        return self.token.status

    @property
    def is_terminal(self) -> bool:
        return self.token.status in TERMINAL_STATUSES

    def observe(self, point: PricePoint) -> bool:
        """
        Record a new observation. Returns False for points that must be
        skipped: malformed values or timestamps not after the last one.
        """
        if not point.is_valid:
            return False
        if self.last_point is not None and point.timestamp <= self.last_point.timestamp:
            return False

        if self.first_seen_at is None:
            self.first_seen_at = point.timestamp
            if self.token.created_at is None:
                self.token.created_at = point.timestamp
            if self.max_age_minutes is not None:
                age_at_discovery = self.age_minutes(point.timestamp)
                self.eligible = age_at_discovery <= self.max_age_minutes

        self.last_point = point
        return True

    def age_minutes(self, at: datetime) -> float:
        """Token age at the given instant, from recorded timestamps only"""
        created = self.token.created_at or self.first_seen_at or at
        return max((at - created).total_seconds(), 0.0) / 60

    def can_transition(self, new_status: TokenStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.token.status, frozenset())

    def transition(self, new_status: TokenStatus) -> TokenStatus:
        if not self.can_transition(new_status):
            raise InvalidTransitionError(
                f"{self.address}: {self.token.status.value} -> {new_status.value} is not allowed"
            )
        previous = self.token.status
        self.token.status = new_status
        return previous
