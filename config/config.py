"""
Configuration management

Loads configuration from a YAML file with environment variable overrides
(``TRACER_<SECTION>__<KEY>``). A ``.env`` file is honoured via python-dotenv.
"""

import os
import yaml
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from dotenv import load_dotenv

# Load .env before any environment lookups
load_dotenv()

ENV_PREFIX = "TRACER_"


class TracerConfig(BaseModel):
    """Trace aggregation settings"""

    loop_threshold: int = Field(
        default=3,
        ge=2,
        description="Consecutive identical tool calls that count as a suspected loop"
    )
    history_size: int = Field(
        default=3,
        ge=1,
        description="Recent tool names kept per session for loop detection"
    )
    estimate_missing_cost: bool = Field(
        default=True,
        description="Estimate generation cost from the pricing table when the engine omits it"
    )

    @model_validator(mode="after")
    def check_history_covers_threshold(self) -> "TracerConfig":
        if self.history_size < self.loop_threshold - 1:
            raise ValueError(
                f"history_size ({self.history_size}) must be at least "
                f"loop_threshold - 1 ({self.loop_threshold - 1})"
            )
        return self


class AlertConfig(BaseModel):
    """Thresholds for the standard alert rules"""

    max_cost_usd: float = Field(default=1.00, ge=0.0, description="high_cost fires above this total cost")
    max_generation_spans: int = Field(default=15, ge=0, description="high_turn_count fires above this many generations")
    max_tool_error_rate: float = Field(default=0.30, ge=0.0, le=1.0, description="tool_error_rate fires above this ratio")
    max_duration_ms: float = Field(default=120_000, ge=0.0, description="slow_execution fires above this duration")


class BudgetConfig(BaseModel):
    """Per-session cost budget"""

    enabled: bool = Field(default=False, description="Whether the budget guard is attached to new sessions")
    max_cost_per_request: float = Field(default=1.00, gt=0.0, description="Hard cap in USD")
    warn_at_percent: float = Field(default=80.0, gt=0.0, le=100.0, description="Warn threshold as a percentage of the cap")


class StorageConfig(BaseModel):
    """Trace persistence settings"""

    trace_dir: str = Field(default="./data/traces", description="Directory for trace bundles and the index")
    ttl_days: int = Field(default=7, ge=1, description="Days to keep indexed traces")


class LoggingConfig(BaseModel):
    """Logging settings"""

    level: str = Field(default="INFO", description="Log level")
    file: Optional[str] = Field(default="./logs/session_tracer.log", description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Rotated log files to keep")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class APIConfig(BaseModel):
    """Monitoring API settings"""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, description="Bind port")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"], description="Allowed CORS origins")


class Config(BaseModel):
    """Top-level session-tracer configuration"""

    environment: str = Field(default="development", description="Runtime environment (development, production, test)")
    debug: bool = Field(default=False, description="Debug mode")

    tracer: TracerConfig = Field(default_factory=TracerConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["development", "production", "test"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v


class ConfigManager:
    """
    Configuration manager

    Loads a YAML file and applies environment overrides on top of it.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: YAML file path, defaults to the first existing
                candidate from ``_find_config_file``
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None

    @staticmethod
    def _find_config_file() -> str:
        """
        Locate the configuration file

        Search order:
        1. ./config/settings.yaml
        2. ./settings.yaml
        3. ~/.config/session_tracer/settings.yaml
        """
        possible_paths = [
            "./config/settings.yaml",
            "./settings.yaml",
            os.path.expanduser("~/.config/session_tracer/settings.yaml"),
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return "./config/settings.yaml"

    def load_yaml(self) -> Dict[str, Any]:
        """Read the YAML file, returning an empty dict when it is missing"""
        if not os.path.exists(self.config_path):
            return {}

        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _override_from_env(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment overrides

        Nested keys are separated by ``__``, for example:
        TRACER_ALERTS__MAX_COST_USD=2.5
        TRACER_BUDGET__ENABLED=true
        """
        result = {key: (dict(value) if isinstance(value, dict) else value) for key, value in config_dict.items()}

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue
            key = env_key[len(ENV_PREFIX):].replace("__", ".").lower()
            parts = key.split(".")

            current = result
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = self._parse_env_value(env_value)

        return result

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Coerce an environment string into bool, int, float or str"""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def load(self) -> Config:
        """Load (and cache) the configuration"""
        if self._config is not None:
            return self._config

        yaml_config = self.load_yaml()
        merged_config = self._override_from_env(yaml_config)

        self._config = Config(**merged_config)
        return self._config

    def reload(self) -> Config:
        """Drop the cached configuration and load again"""
        self._config = None
        return self.load()

    def save(self, path: Optional[str] = None) -> None:
        """
        Write the current configuration to YAML

        Args:
            path: Target path, defaults to the loaded config path
        """
        save_path = path or self.config_path

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        config_dict = self.load().model_dump(exclude_none=True)

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_dict, f, allow_unicode=True, default_flow_style=False)


_config_manager: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Return the process-wide configuration"""
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager(config_path)

    return _config_manager.load()


def get_config_manager() -> ConfigManager:
    """Return the process-wide configuration manager"""
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager()

    return _config_manager


def reload_config() -> Config:
    """Reload the process-wide configuration"""
    global _config_manager

    if _config_manager is not None:
        return _config_manager.reload()

    return get_config()
