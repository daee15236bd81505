from typing import Optional, Tuple
from pullback_sniper.utils.config import RiskParameters
from pullback_sniper.utils.logger import TradingLogger

class RiskManager:
    def __init__(self,
                 position_size_usd: float,
                 risk_params: RiskParameters = None,
                 logger: Optional[TradingLogger] = None):

        self.risk_params = risk_params or RiskParameters()
        self.position_size_usd = position_size_usd
        self.initial_capital = self.risk_params.initial_capital
        self.current_capital = self.risk_params.initial_capital
        self.logger = logger or TradingLogger("risk_manager")

    def can_enter_position(self, token: str, open_positions: int) -> Tuple[bool, float]:
        """Check if we can enter a new position based on current positions and risk parameters"""
        # Check max positions limit
        if open_positions >= self.risk_params.max_positions:
            self.logger.debug(f"Max positions reached: {open_positions}, skipping {token}")
            return False, 0.0

        # Use fixed position size
        position_size = self.position_size_usd

        # Check if we have enough capital
        if position_size > self.current_capital:
            self.logger.debug(f"Insufficient capital: {self.current_capital:.2f} USD")
            return False, 0.0

        return True, position_size

    @staticmethod
    def quantity_for(position_size: float, price: float) -> float:
        """Token quantity bought with position_size at price"""
        if price <= 0:
            raise ValueError("Invalid price: must be greater than zero")
        return position_size / price

    def update_capital_after_entry(self, cost: float):
        """Update capital after a position entry"""
        self.current_capital -= cost

    def update_capital_after_exit(self, proceeds: float):
        """Update capital after a position exit"""
        self.current_capital += proceeds
