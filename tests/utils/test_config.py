"""
Unit tests for ConfigManager and the configuration models
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from futures_core.core.exceptions import ConfigurationError
from futures_core.models.position import PositionMode
from futures_core.utils.config import (
    APIConfig,
    ConfigManager,
    LedgerConfig,
    LoggingConfig,
    RiskParameters,
)

API_KEYS = """
[binance]
use_testnet = true

[binance.testnet]
api_key = testnet_key
api_secret = testnet_secret

[binance.mainnet]
api_key = mainnet_key
api_secret = mainnet_secret
"""

RISK_CONFIG = """
[risk]
max_leverage = 15
volatility_threshold = 0.04
max_position_fraction = 0.2

[ledger]
position_mode = hedge
symbols = btcusdt, ETHUSDT

[logging]
log_level = DEBUG
log_dir = var/logs
audit_dir =
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BINANCE_API_KEY", "BINANCE_API_SECRET", "BINANCE_USE_TESTNET", "FUTURES_CORE_POSITION_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "api_keys.ini").write_text(API_KEYS)
    (tmp_path / "risk_config.ini").write_text(RISK_CONFIG)
    return tmp_path


class TestRiskParameters:

    def test_defaults(self):
        params = RiskParameters()

        assert params.max_leverage == 20
        assert params.max_position_fraction == 0.1
        assert params.settlement_asset == "USDT"

    @pytest.mark.parametrize("field, value", [
        ("max_leverage", 0),
        ("max_leverage", 126),
        ("margin_buffer", 1.5),
        ("max_risk_per_trade", 0),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(PydanticValidationError):
            RiskParameters(**{field: value})


class TestConfigModels:

    def test_api_config_requires_credentials(self):
        with pytest.raises(ConfigurationError, match="API key and secret are required"):
            APIConfig(api_key="", api_secret="secret")

    def test_ledger_config_parses_mode(self):
        assert LedgerConfig(position_mode="hedge").position_mode is PositionMode.HEDGE

    def test_ledger_config_invalid_mode(self):
        with pytest.raises(ConfigurationError, match="Invalid position mode"):
            LedgerConfig(position_mode="portfolio")

    def test_logging_config_invalid_level(self):
        with pytest.raises(ConfigurationError, match="Invalid log level"):
            LoggingConfig(log_level="VERBOSE")


class TestConfigManager:

    def test_loads_ini_files(self, config_dir):
        manager = ConfigManager(config_dir=str(config_dir))

        assert manager.api_config.api_key == "testnet_key"
        assert manager.is_testnet is True
        assert manager.risk_parameters.max_leverage == 15
        assert manager.risk_parameters.volatility_threshold == 0.04
        assert manager.risk_parameters.max_loss_percent == 2.0
        assert manager.ledger_config.position_mode is PositionMode.HEDGE
        assert manager.ledger_config.symbols == ("BTCUSDT", "ETHUSDT")
        assert manager.logging_config.log_level == "DEBUG"
        assert manager.logging_config.audit_dir is None

    def test_mainnet_section(self, config_dir, monkeypatch):
        monkeypatch.setenv("BINANCE_USE_TESTNET", "false")

        manager = ConfigManager(config_dir=str(config_dir))

        assert manager.api_config.api_key == "mainnet_key"
        assert manager.is_testnet is False

    def test_environment_credentials_win(self, config_dir, monkeypatch):
        monkeypatch.setenv("BINANCE_API_KEY", "env_key")
        monkeypatch.setenv("BINANCE_API_SECRET", "env_secret")

        manager = ConfigManager(config_dir=str(config_dir))

        assert manager.api_config.api_key == "env_key"

    def test_environment_position_mode(self, config_dir, monkeypatch):
        monkeypatch.setenv("FUTURES_CORE_POSITION_MODE", "ONE_WAY")

        manager = ConfigManager(config_dir=str(config_dir))

        assert manager.ledger_config.position_mode is PositionMode.ONE_WAY

    def test_missing_api_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="API configuration not found"):
            ConfigManager(config_dir=str(tmp_path))

    def test_placeholder_credentials(self, tmp_path):
        (tmp_path / "api_keys.ini").write_text(
            "[binance]\nuse_testnet = true\n[binance.testnet]\napi_key = your_key\napi_secret = your_secret\n"
        )

        with pytest.raises(ConfigurationError, match="Invalid API key"):
            ConfigManager(config_dir=str(tmp_path))

    def test_paper_trading_without_credentials(self, tmp_path):
        manager = ConfigManager(config_dir=str(tmp_path), require_api=False)

        assert manager.api_config is None
        assert manager.risk_parameters == RiskParameters()
        assert manager.ledger_config.position_mode is PositionMode.ONE_WAY
        assert manager.logging_config.log_dir == "logs"

    def test_invalid_risk_value(self, tmp_path):
        (tmp_path / "risk_config.ini").write_text("[risk]\nmax_leverage = 500\n")

        with pytest.raises(ConfigurationError, match=r"Invalid \[risk\] configuration"):
            ConfigManager(config_dir=str(tmp_path), require_api=False)
