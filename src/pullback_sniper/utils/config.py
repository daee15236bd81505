from dataclasses import dataclass, asdict
from typing import Dict, Any
import yaml
import os


class ConfigError(ValueError):
    """Raised when a configuration is rejected before a run starts"""
    pass


@dataclass(frozen=True)
class StrategyConfig:
    watch_threshold_k: float = 10.0        # Market cap (K) that puts a token on watch
    buy_trigger_k: float = 6.0             # Pullback level (K) that arms the entry
    buy_price_k: float = 8.0               # Rebound level (K) the entry fills at
    take_profit_multiplier: float = 2.0    # 2.0 = exit at double the entry price
    stop_loss_percent: float = 20.0        # Drop from entry, 0-100
    position_size_usd: float = 25.0
    max_age_minutes: float = 2.0           # Age ceiling at first observation
    max_hold_seconds: float = 600.0
    buy_window_seconds: float = 300.0      # Trigger -> buy follow-up window
    confirm_window_start_seconds: float = 180.0
    confirm_window_end_seconds: float = 300.0

    @property
    def watch_market_cap(self) -> float:
        return self.watch_threshold_k * 1000

    @property
    def trigger_market_cap(self) -> float:
        return self.buy_trigger_k * 1000

    @property
    def buy_market_cap(self) -> float:
        return self.buy_price_k * 1000

    def validate(self) -> "StrategyConfig":
        """Reject inconsistent thresholds. Returns self so calls can be chained."""
        if self.buy_trigger_k >= self.watch_threshold_k:
            raise ConfigError(
                f"buy_trigger_k ({self.buy_trigger_k}) must be below watch_threshold_k ({self.watch_threshold_k})"
            )
        if not (self.buy_trigger_k <= self.buy_price_k <= self.watch_threshold_k):
            raise ConfigError(
                f"buy_price_k ({self.buy_price_k}) must lie between buy_trigger_k and watch_threshold_k"
            )
        if self.buy_trigger_k <= 0:
            raise ConfigError("buy_trigger_k must be positive")
        if self.take_profit_multiplier < 1:
            raise ConfigError("take_profit_multiplier must be >= 1")
        if not (0 < self.stop_loss_percent < 100):
            raise ConfigError("stop_loss_percent must be between 0 and 100")
        for name in ('position_size_usd', 'max_age_minutes', 'max_hold_seconds', 'buy_window_seconds'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.confirm_window_start_seconds < 0:
            raise ConfigError("confirm_window_start_seconds cannot be negative")
        if self.confirm_window_start_seconds > self.confirm_window_end_seconds:
            raise ConfigError("confirm_window_start_seconds must not exceed confirm_window_end_seconds")
        return self

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RiskParameters:
    """Risk management parameters"""
    initial_capital: float = 10000.0   # Starting equity for sizing and the equity curve
    max_positions: int = 100           # Maximum number of concurrent positions

    def validate(self) -> "RiskParameters":
        if self.initial_capital <= 0:
            raise ConfigError("initial_capital must be positive")
        if self.max_positions < 1:
            raise ConfigError("max_positions must be at least 1")
        return self


@dataclass(frozen=True)
class MonitorSettings:
    """Live driver timing"""
    poll_interval_seconds: float = 10.0
    request_timeout_seconds: float = 5.0
    discovery_timeout_seconds: float = 15.0  # whole discovery step, several requests
    discovery_limit: int = 50
    heartbeat_interval: int = 30

    def validate(self) -> "MonitorSettings":
        if min(self.poll_interval_seconds, self.request_timeout_seconds, self.discovery_timeout_seconds) <= 0:
            raise ConfigError("poll interval and timeouts must be positive")
        return self


def _build(cls, section: str, data: Dict[str, Any]):
    try:
        return cls(**(data or {})).validate()
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}") from e


class Config:
    def __init__(self, config_path: str = "config.yaml"):
        self.strategy = StrategyConfig()
        self.risk = RiskParameters()
        self.monitor = MonitorSettings()

        if os.path.exists(config_path):
            self.load_config(config_path)

    def load_config(self, config_path: str):
        """Load configuration from YAML file"""
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

        unknown = set(config_data) - {'strategy', 'risk', 'monitor'}
        if unknown:
            raise ConfigError(f"Unknown config sections: {sorted(unknown)}")

        if 'strategy' in config_data:
            self.strategy = _build(StrategyConfig, 'strategy', config_data['strategy'])
        if 'risk' in config_data:
            self.risk = _build(RiskParameters, 'risk', config_data['risk'])
        if 'monitor' in config_data:
            self.monitor = _build(MonitorSettings, 'monitor', config_data['monitor'])
