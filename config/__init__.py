"""
Configuration package

Exports the configuration models and loader helpers.
"""

from .config import (
    Config,
    ConfigManager,
    TracerConfig,
    AlertConfig,
    BudgetConfig,
    StorageConfig,
    LoggingConfig,
    APIConfig,
    get_config,
    get_config_manager,
    reload_config,
)

__all__ = [
    "Config",
    "ConfigManager",
    "TracerConfig",
    "AlertConfig",
    "BudgetConfig",
    "StorageConfig",
    "LoggingConfig",
    "APIConfig",
    "get_config",
    "get_config_manager",
    "reload_config",
]
