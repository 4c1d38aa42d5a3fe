"""Configuration management for the property matcher."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config
from .models import (
    AdvancedConfig,
    AppConfig,
    CriteriaWeights,
    DispatchThresholds,
    DraftingConfig,
    EmailConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    PoliciesConfig,
    RunPolicy,
    SchedulerConfig,
    ScoringConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "parse_config",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "CriteriaWeights",
    "ScoringConfig",
    "DispatchThresholds",
    "RunPolicy",
    "PoliciesConfig",
    "SchedulerConfig",
    "DraftingConfig",
    "EmailConfig",
    "LoggingConfig",
    "AdvancedConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
