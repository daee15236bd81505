from abc import ABC, abstractmethod
from typing import Dict, Optional
from .types import Position


class PositionConflictError(RuntimeError):
    """Raised when a second position is opened for an address that already has one"""
    pass


class PositionStore(ABC):
    """Open positions keyed by token address, injected into the engine"""

    @abstractmethod
    def get_position(self, mint: str) -> Optional[Position]:
        raise NotImplementedError

    @abstractmethod
    def add_position(self, position: Position) -> None:
        """Store a new position; raises PositionConflictError if one exists"""
        raise NotImplementedError

    @abstractmethod
    def update_position(self, position: Position) -> None:
        """Persist trailing state changes of an existing position"""
        raise NotImplementedError

    @abstractmethod
    def remove_position(self, mint: str) -> Optional[Position]:
        raise NotImplementedError

    @abstractmethod
    def get_all_positions(self) -> Dict[str, Position]:
        raise NotImplementedError

    def has_position(self, mint: str) -> bool:
        """Check if we have an active position for this token"""
        return self.get_position(mint) is not None


class InMemoryPositionStore(PositionStore):
    def __init__(self):
        self.positions: Dict[str, Position] = {}

    def get_position(self, mint: str) -> Optional[Position]:
        return self.positions.get(mint)

    def add_position(self, position: Position) -> None:
        if position.token_address in self.positions:
            raise PositionConflictError(f"Position already open for {position.token_address}")
        self.positions[position.token_address] = position

    def update_position(self, position: Position) -> None:
        # Positions are held by reference
        pass

    def remove_position(self, mint: str) -> Optional[Position]:
        return self.positions.pop(mint, None)

    def get_all_positions(self) -> Dict[str, Position]:
        return self.positions.copy()
