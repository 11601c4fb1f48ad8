"""Configuration package for the practice core."""

from drillcoach.config.app_config import (
    AppConfig,
    GenerationConfig,
    PracticeConfig,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GenerationConfig",
    "PracticeConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
