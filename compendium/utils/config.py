"""
Configuration management for Compendium.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class VariantTemplatesConfig(BaseModel):
    """Query templates for the aggregated search variants.

    Each template receives the topic through the ``{topic}`` placeholder.
    """

    model_config = ConfigDict(extra="forbid")

    tutorial: str = "{topic} tutorials"
    blog: str = "{topic} blogs and articles"
    datasheet: str = "{topic} official datasheet"


class SearchConfig(BaseModel):
    """Search session configuration."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://www.google.com/search"
    query_param: str = "q"
    # Parameters regenerated by the engine on every search (never carried over)
    ephemeral_params: list[str] = Field(default_factory=lambda: ["ei"])

    # Warm searches served before a forced cold reload
    max_reuse: int = Field(default=5, ge=0)

    # Fixed backoff after programmatic page interaction
    settle_delay_ms: int = Field(default=100, ge=0)

    # Lightweight extraction (mutation snapshots, warm path, current page)
    fast_min_results: int = Field(default=1, ge=1)
    fast_max_results: int = Field(default=4, ge=1)
    fast_result_timeout_ms: int = Field(default=2000, ge=0)

    # Full extraction once a cold navigation settles
    full_result_count: int = Field(default=6, ge=1)
    full_result_timeout_ms: int = Field(default=10000, ge=0)

    variant_templates: VariantTemplatesConfig = Field(default_factory=VariantTemplatesConfig)

    # Reverse image search
    image_search_url: str = "https://www.google.com/?olud"
    image_upload_selector: str = "input[type=file]"


class BrowserConfig(BaseModel):
    """Browser configuration."""

    headless: bool = True
    navigation_timeout_ms: int = 30000
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str | None = None
    block_resources: bool = True


class LLMConfig(BaseModel):
    """LLM configuration for the link ranker."""

    host: str = "http://localhost:11434"
    model: str = "qwen2.5:3b"
    temperature: float = 0.2
    timeout_seconds: float = 120.0


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "compendium"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict for missing files."""
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides (settings section).

    Example local.yaml:
        settings:
          search:
            max_reuse: 3

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _load_yaml_file(config_dir / "settings.yaml")
    local_overrides = _load_yaml_file(config_dir / "local.yaml")

    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with COMPENDIUM_ and use
    double underscores for nested keys.

    Example:
        COMPENDIUM_SEARCH__MAX_REUSE=3

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "COMPENDIUM_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "COMPENDIUM_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        # Set the value (attempt to parse as appropriate type)
        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("COMPENDIUM_CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)

    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # Assuming this file is at compendium/utils/config.py
    return Path(__file__).parent.parent.parent
