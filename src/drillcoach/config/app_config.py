"""Application configuration loader.

Reads data/config/app_config_v1.yaml when it exists. Every section is
optional: keys the file leaves out keep the dataclass defaults below, and
unknown keys are logged and ignored.

Usage:
    from drillcoach.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    budget = config.practice.daily_minutes
    provider = get_provider_config("lmstudio")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeVar

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

DEFAULT_DB_PATH = "db/practice.db"

_Section = TypeVar("_Section")


@dataclass
class ProviderConfig:
    """Endpoint and default model of one OpenAI-compatible provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Read the provider's API key from its environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class PracticeConfig:
    """Scheduling and progression settings."""

    daily_minutes: int = 30
    warmup_minutes: int = 5
    stretch_minutes: int = 5
    max_retry_attempts: int = 3
    practice_days_per_week: int = 5
    milestone_mastery_percent: int = 75
    on_track_tolerance_days: int = 2


@dataclass
class GenerationConfig:
    """Settings for the optional capability-stage generator."""

    enabled: bool = False
    provider: str = "lmstudio"
    model: str | None = None
    cache_ttl_seconds: int = 3600


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "lmstudio": ProviderConfig(
            base_url="http://localhost:1234/v1",
            default_model="llama-3.2-3b-instruct",
        ),
        "openai": ProviderConfig(
            base_url=None,
            default_model="gpt-4o-mini",
            api_key_env="OPENAI_API_KEY",
        ),
    }


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=_default_providers)
    practice: PracticeConfig = field(default_factory=PracticeConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    paths: dict[str, str] = field(default_factory=lambda: {"db_path": DEFAULT_DB_PATH})

    @property
    def db_path(self) -> Path:
        return Path(self.paths.get("db_path", DEFAULT_DB_PATH))


# Module-level cache
_cached_config: AppConfig | None = None


# =============================================================================
# PARSING
# =============================================================================


def _build_section(cls: type[_Section], data: dict[str, Any] | None, section: str) -> _Section:
    """Build a settings dataclass from a YAML mapping.

    Values are coerced to the type of the field's default, so ``"45"``
    becomes ``45`` for an int field. Fields without a default (or with a
    None default) take the value as written.
    """
    data = data or {}
    known = {f.name: f for f in fields(cls)}

    unknown = sorted(set(data) - set(known))
    if unknown:
        logger.warning("unknown_config_keys", section=section, keys=unknown)

    values: dict[str, Any] = {}
    for name, value in data.items():
        known_field = known.get(name)
        if known_field is None:
            continue
        default = known_field.default
        if value is not None and isinstance(default, (bool, int, float, str)):
            value = type(default)(value)
        values[name] = value
    return cls(**values)


def _parse_providers(data: dict[str, Any] | None) -> dict[str, ProviderConfig]:
    """Layer configured providers over the built-in ones."""
    providers = _default_providers()
    for name, settings in (data or {}).items():
        settings = settings or {}
        base = providers.get(name)
        providers[name] = ProviderConfig(
            base_url=settings.get("base_url", base.base_url if base else None),
            default_model=settings.get("default_model", base.default_model if base else "default"),
            api_key_env=settings.get("api_key_env", base.api_key_env if base else None),
        )
    return providers


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Turn the raw YAML mapping into an AppConfig."""
    paths = {"db_path": DEFAULT_DB_PATH}
    paths.update({key: str(value) for key, value in (data.get("paths") or {}).items()})

    return AppConfig(
        providers=_parse_providers(data.get("providers")),
        practice=_build_section(PracticeConfig, data.get("practice"), "practice"),
        generation=_build_section(GenerationConfig, data.get("generation"), "generation"),
        paths=paths,
    )


# =============================================================================
# PUBLIC API
# =============================================================================


def load_app_config(force_reload: bool = False, config_file: Path | None = None) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Explicit YAML file (defaults to CONFIG_FILE).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    path = config_file or CONFIG_FILE
    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config", missing=str(path))
        data = {}

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Look up one provider ("lmstudio", "openai") in the loaded config."""
    return load_app_config().providers.get(provider)


def clear_config_cache() -> None:
    """Forget the loaded config so the next call reads the file again."""
    global _cached_config
    _cached_config = None
