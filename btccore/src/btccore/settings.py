"""
Settings management for the wallet engine.

This module provides a configuration system using pydantic-settings that
supports:
1. TOML configuration file (~/.btcwallet/config.toml)
2. Environment variables
3. Explicit overrides passed by the caller (CLI options, tests)

Priority (highest to lowest):
1. Overrides
2. Environment variables
3. Config file
4. Default values

Usage:
    from btccore.settings import get_settings

    settings = get_settings()
    print(settings.policy.dust_limit)

Environment Variable Naming:
    - Prefix BTCWALLET_, double underscore for nested settings
    - Examples: BTCWALLET_NETWORK, BTCWALLET_POLICY__DUST_LIMIT
    - Maps to TOML sections: BTCWALLET_POLICY__DUST_LIMIT -> [policy] dust_limit
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from btccore.bitcoin import NetworkType
from btccore.constants import (
    CPFP_CHILD_SEQUENCE,
    DEFAULT_FEE_RATE,
    DEFAULT_SEQUENCE,
    DEFAULT_TX_VERSION,
    DUST_THRESHOLD,
    FALLBACK_FEE_RATE_FAST,
    FALLBACK_FEE_RATE_FASTEST,
    FALLBACK_FEE_RATE_NORMAL,
    FALLBACK_FEE_RATE_SLOW,
)
from btccore.errors import ValidationError

CONFIG_FILE_ENV = "BTCWALLET_CONFIG_FILE"
DATA_DIR_ENV = "BTCWALLET_DATA_DIR"


class PolicySettings(BaseModel):
    """Transaction construction policy."""

    dust_limit: int = Field(
        default=DUST_THRESHOLD,
        ge=0,
        description="Outputs below this many sats are rejected or dropped",
    )
    default_sequence: int = Field(
        default=DEFAULT_SEQUENCE,
        ge=0,
        le=0xFFFFFFFF,
        description="nSequence for inputs of newly built transactions",
    )
    cpfp_sequence: int = Field(
        default=CPFP_CHILD_SEQUENCE,
        ge=0,
        le=0xFFFFFFFF,
        description="nSequence for CPFP child inputs (keeps the child replaceable)",
    )
    default_fee_rate: float = Field(
        default=DEFAULT_FEE_RATE,
        gt=0,
        description="Fee rate in sat/vB used when the caller gives none",
    )
    tx_version: int = Field(
        default=DEFAULT_TX_VERSION,
        ge=1,
        description="Version field of newly built transactions",
    )


class FeeSettings(BaseModel):
    """Fallback fee rates (sat/vB) used when no fee source is available."""

    slow: float = Field(default=FALLBACK_FEE_RATE_SLOW, gt=0)
    normal: float = Field(default=FALLBACK_FEE_RATE_NORMAL, gt=0)
    fast: float = Field(default=FALLBACK_FEE_RATE_FAST, gt=0)
    fastest: float = Field(default=FALLBACK_FEE_RATE_FASTEST, gt=0)


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level: TRACE, DEBUG, INFO, WARNING, ERROR",
    )
    sensitive: bool = Field(
        default=False,
        description="Log key fingerprints and derived addresses",
    )


class EngineSettings(BaseSettings):
    """
    Wallet engine settings.

    Loads configuration from multiple sources with the following priority:
    1. Overrides passed to the constructor
    2. Environment variables
    3. TOML config file (~/.btcwallet/config.toml)
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="BTCWALLET_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    network: NetworkType = Field(
        default=NetworkType.MAINNET,
        description="Bitcoin network: mainnet, testnet or regtest",
    )
    policy: PolicySettings = Field(default_factory=PolicySettings)
    fees: FeeSettings = Field(default_factory=FeeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize settings sources and their priority.

        Priority (highest to lowest):
        1. init_settings (overrides passed to constructor)
        2. env_settings (environment variables with __ delimiter)
        3. toml_settings (config.toml file)
        4. defaults (in field definitions)
        """
        toml_source = TomlConfigSettingsSource(settings_cls)
        return (
            init_settings,
            env_settings,
            toml_source,
        )


def get_config_path() -> Path:
    """Get the path to the config file."""
    env_path = os.environ.get(CONFIG_FILE_ENV)
    if env_path:
        return Path(env_path)
    data_dir_env = os.environ.get(DATA_DIR_ENV)
    data_dir = Path(data_dir_env) if data_dir_env else Path.home() / ".btcwallet"
    return data_dir / "config.toml"


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    Custom settings source that reads from a TOML config file.

    The config file is expected at ~/.btcwallet/config.toml, or at
    $BTCWALLET_CONFIG_FILE if that environment variable is set.
    """

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()

        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML syntax in config file {config_path}")
            raise ValidationError(f"Invalid config file {config_path}: {e}") from e

        logger.debug(f"Loaded config from {config_path}")

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Get field value from TOML config."""
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        """Return all config values as a dict for pydantic-settings."""
        return self._config


# Global settings instance (lazy-loaded)
_settings: EngineSettings | None = None


def get_settings(**overrides: Any) -> EngineSettings:
    """
    Get the engine settings instance.

    On first call, loads settings from all sources. Subsequent calls
    return the cached instance unless reset_settings() is called.

    Args:
        **overrides: Optional settings overrides (highest priority)

    Returns:
        EngineSettings instance
    """
    global _settings
    if _settings is None or overrides:
        _settings = EngineSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None


__all__ = [
    "EngineSettings",
    "FeeSettings",
    "LoggingSettings",
    "PolicySettings",
    "TomlConfigSettingsSource",
    "get_config_path",
    "get_settings",
    "reset_settings",
]
