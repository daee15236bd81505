import pytest

from pullback_sniper.utils.config import (
    Config, ConfigError, MonitorSettings, RiskParameters, StrategyConfig,
)


class TestStrategyConfig:
    def test_defaults_are_valid(self):
        config = StrategyConfig().validate()
        assert config.watch_market_cap == 10_000
        assert config.trigger_market_cap == 6_000
        assert config.buy_market_cap == 8_000
        assert config.max_hold_seconds == 600

    def test_trigger_above_watch_rejected(self):
        with pytest.raises(ConfigError):
            StrategyConfig(watch_threshold_k=10, buy_trigger_k=12, buy_price_k=11).validate()

    def test_trigger_equal_to_watch_rejected(self):
        with pytest.raises(ConfigError):
            StrategyConfig(watch_threshold_k=10, buy_trigger_k=10, buy_price_k=10).validate()

    def test_buy_price_outside_band_rejected(self):
        with pytest.raises(ConfigError):
            StrategyConfig(buy_price_k=5).validate()
        with pytest.raises(ConfigError):
            StrategyConfig(buy_price_k=11).validate()

    @pytest.mark.parametrize("field,value", [
        ("take_profit_multiplier", 0.5),
        ("stop_loss_percent", 0),
        ("stop_loss_percent", 100),
        ("position_size_usd", 0),
        ("max_hold_seconds", -1),
        ("buy_window_seconds", 0),
        ("confirm_window_start_seconds", -5),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ConfigError):
            StrategyConfig(**{field: value}).validate()

    def test_confirm_window_must_be_ordered(self):
        with pytest.raises(ConfigError):
            StrategyConfig(confirm_window_start_seconds=300, confirm_window_end_seconds=180).validate()

    def test_instant_confirm_window_allowed(self):
        StrategyConfig(confirm_window_start_seconds=0, confirm_window_end_seconds=0).validate()


def test_risk_and_monitor_validation():
    with pytest.raises(ConfigError):
        RiskParameters(initial_capital=0).validate()
    with pytest.raises(ConfigError):
        RiskParameters(max_positions=0).validate()
    with pytest.raises(ConfigError):
        MonitorSettings(request_timeout_seconds=0).validate()


class TestConfigFile:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.yaml"))
        assert config.strategy == StrategyConfig()
        assert config.risk == RiskParameters()
        assert config.monitor == MonitorSettings()

    def test_loads_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "strategy:\n"
            "  stop_loss_percent: 25\n"
            "  take_profit_multiplier: 3\n"
            "risk:\n"
            "  max_positions: 5\n"
            "monitor:\n"
            "  poll_interval_seconds: 2\n"
        )
        config = Config(str(path))
        assert config.strategy.stop_loss_percent == 25
        assert config.strategy.take_profit_multiplier == 3
        assert config.strategy.watch_threshold_k == 10
        assert config.risk.max_positions == 5
        assert config.monitor.poll_interval_seconds == 2

    def test_unknown_section_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("strategies:\n  stop_loss_percent: 25\n")
        with pytest.raises(ConfigError):
            Config(str(path))

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("strategy:\n  stop_loss_pct: 25\n")
        with pytest.raises(ConfigError):
            Config(str(path))

    def test_inconsistent_thresholds_rejected_on_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("strategy:\n  buy_trigger_k: 15\n")
        with pytest.raises(ConfigError):
            Config(str(path))
