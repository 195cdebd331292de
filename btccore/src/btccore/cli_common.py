"""
Common CLI components for the wallet engine.

Setup helpers shared by every command: logging configuration and settings
resolution (CLI option > environment/config file > default). Kept free of
typer so the core package does not depend on the CLI framework.
"""

from __future__ import annotations

import sys

from loguru import logger

from btccore.bitcoin import NetworkType
from btccore.settings import EngineSettings, get_settings, reset_settings


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None) -> EngineSettings:
    """
    Common CLI setup: reset settings cache, configure logging, return settings.

    Log level priority: CLI argument > settings (env/config) > default "INFO"

    Args:
        log_level: Log level override from CLI (None means use settings)

    Returns:
        EngineSettings instance with all sources loaded
    """
    reset_settings()
    settings = get_settings()

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    return settings


def resolve_network(settings: EngineSettings, network: NetworkType | str | None = None) -> NetworkType:
    """Resolve the network with priority: CLI > settings (env + config) > default."""
    if network is None:
        return settings.network
    return NetworkType(network)


__all__ = ["resolve_network", "setup_cli", "setup_logging"]
