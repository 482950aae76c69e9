"""
INI and environment configuration for credentials, risk thresholds,
ledger mode and logging.
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from futures_core.core.exceptions import ConfigurationError
from futures_core.models.order import MAX_LEVERAGE, MIN_LEVERAGE
from futures_core.models.position import PositionMode


class RiskParameters(BaseModel):
    """Tunable thresholds of the risk gate and position ledger."""
    max_risk_per_trade: float = Field(0.02, gt=0, le=0.1, description="Account fraction risked per trade")
    max_leverage: int = Field(20, ge=MIN_LEVERAGE, le=MAX_LEVERAGE, description="Leverage cap for new orders")
    stop_loss_percentage: float = Field(0.02, gt=0, lt=1, description="Minimum stop distance (0.02 = 2%)")
    take_profit_ratio: float = Field(2.0, gt=0, description="Take profit distance as multiple of stop distance")
    margin_buffer: float = Field(0.5, gt=0, le=1, description="Share of balance usable as margin")
    volatility_threshold: float = Field(0.05, gt=0, description="24h volatility above which orders are rejected")
    max_leverage_multiplier: int = Field(10, ge=MIN_LEVERAGE, le=MAX_LEVERAGE, description="Leverage cap for existing positions")
    max_loss_percent: float = Field(2.0, gt=0, le=100, description="Estimated loss cap per order (percent)")
    max_position_fraction: float = Field(0.1, gt=0, le=1, description="Risk factor for max tradable size")
    default_leverage: int = Field(10, ge=MIN_LEVERAGE, le=MAX_LEVERAGE, description="Leverage for new positions")
    settlement_asset: str = Field("USDT", min_length=1, description="Margin asset")


@dataclass
class APIConfig:
    """Exchange credentials. Never log these values."""
    api_key: str
    api_secret: str
    is_testnet: bool = True

    def __post_init__(self):
        if not (self.api_key and self.api_secret):
            raise ConfigurationError("API key and secret are required")


@dataclass
class LedgerConfig:
    position_mode: PositionMode = PositionMode.ONE_WAY
    symbols: tuple = ()

    def __post_init__(self):
        if isinstance(self.position_mode, PositionMode):
            return
        try:
            self.position_mode = PositionMode(str(self.position_mode).strip().upper())
        except ValueError:
            raise ConfigurationError(
                f"Invalid position mode: {self.position_mode}. Must be ONE_WAY or HEDGE"
            )


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class LoggingConfig:
    """Arguments for TradingLogger plus the audit directory (None disables auditing)."""
    log_level: str = "INFO"
    log_dir: str = "logs"
    audit_dir: Optional[str] = "logs/audit"

    def __post_init__(self):
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level}. Must be one of {list(LOG_LEVELS)}")


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    return None if value is None else value.strip().lower() == "true"


def _is_placeholder(value: Optional[str]) -> bool:
    return not value or value.startswith("your_")


class ConfigManager:
    """
    Reads ``api_keys.ini`` and ``risk_config.ini`` from ``config_dir``.

    api_keys.ini holds ``[binance] use_testnet`` and one credentials section
    per environment (``[binance.testnet]``, ``[binance.mainnet]``). The
    BINANCE_API_KEY / BINANCE_API_SECRET / BINANCE_USE_TESTNET variables take
    precedence over the file. risk_config.ini is optional; its ``[risk]``,
    ``[ledger]`` and ``[logging]`` sections override the model defaults and
    FUTURES_CORE_POSITION_MODE overrides ``[ledger] position_mode``.

    Pass ``require_api=False`` to run against MockExchange without credentials.
    """

    API_FILE = "api_keys.ini"
    RISK_FILE = "risk_config.ini"

    def __init__(self, config_dir: str = "configs", require_api: bool = True):
        self.config_dir = Path(config_dir)
        self.require_api = require_api

        self._api_config = self._load_api_config() if require_api else None
        settings = self._read_ini(self.RISK_FILE)
        self._risk_parameters = self._load_risk_parameters(settings)
        self._ledger_config = self._load_ledger_config(settings)
        self._logging_config = self._load_logging_config(settings)

    def _read_ini(self, name: str) -> ConfigParser:
        parser = ConfigParser()
        parser.read(self.config_dir / name)
        return parser

    def _load_api_config(self) -> APIConfig:
        testnet_override = _env_flag("BINANCE_USE_TESTNET")
        env_key, env_secret = os.getenv("BINANCE_API_KEY"), os.getenv("BINANCE_API_SECRET")
        if env_key and env_secret:
            return APIConfig(
                api_key=env_key,
                api_secret=env_secret,
                is_testnet=True if testnet_override is None else testnet_override,
            )

        path = self.config_dir / self.API_FILE
        if not path.exists():
            raise ConfigurationError(
                "API configuration not found. Set BINANCE_API_KEY and BINANCE_API_SECRET "
                f"or create {path} from {self.API_FILE}.example"
            )
        parser = self._read_ini(self.API_FILE)
        if "binance" not in parser:
            raise ConfigurationError(f"Invalid {self.API_FILE}: [binance] section not found")

        is_testnet = parser["binance"].getboolean("use_testnet", True)
        if testnet_override is not None:
            is_testnet = testnet_override
        section_name = f"binance.{'testnet' if is_testnet else 'mainnet'}"
        if section_name not in parser:
            raise ConfigurationError(f"Invalid {self.API_FILE}: [{section_name}] section not found")

        credentials = parser[section_name]
        for field in ("api_key", "api_secret"):
            if _is_placeholder(credentials.get(field)):
                label = field.replace("api_", "API ")
                raise ConfigurationError(f"Invalid {label} in [{section_name}]; replace the example value")

        return APIConfig(
            api_key=credentials["api_key"],
            api_secret=credentials["api_secret"],
            is_testnet=is_testnet,
        )

    @staticmethod
    def _section(parser: ConfigParser, name: str) -> dict:
        return dict(parser[name]) if parser.has_section(name) else {}

    def _load_risk_parameters(self, parser: ConfigParser) -> RiskParameters:
        try:
            return RiskParameters(**self._section(parser, "risk"))
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid [risk] configuration: {e}") from e

    def _load_ledger_config(self, parser: ConfigParser) -> LedgerConfig:
        section = self._section(parser, "ledger")
        symbols = [s.strip().upper() for s in section.get("symbols", "").split(",")]
        return LedgerConfig(
            position_mode=os.getenv("FUTURES_CORE_POSITION_MODE") or section.get("position_mode", "ONE_WAY"),
            symbols=tuple(s for s in symbols if s),
        )

    def _load_logging_config(self, parser: ConfigParser) -> LoggingConfig:
        section = self._section(parser, "logging")
        return LoggingConfig(
            log_level=section.get("log_level", "INFO"),
            log_dir=section.get("log_dir", "logs"),
            audit_dir=section.get("audit_dir", "logs/audit") or None,
        )

    @property
    def is_testnet(self) -> bool:
        return self._api_config.is_testnet if self._api_config else True

    @property
    def api_config(self) -> Optional[APIConfig]:
        return self._api_config

    @property
    def risk_parameters(self) -> RiskParameters:
        return self._risk_parameters

    @property
    def ledger_config(self) -> LedgerConfig:
        return self._ledger_config

    @property
    def logging_config(self) -> LoggingConfig:
        return self._logging_config
