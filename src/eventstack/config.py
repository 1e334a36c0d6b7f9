"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
A config.yaml provides defaults; environment variables override it.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.exceptions import ConfigurationError
from .models.policy import Policy, load_policy, normalize_exclusions, normalize_name_list


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("EVENTSTACK_CONFIG_FILE")

    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/eventstack
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class SinkSettings(BaseSettings):
    """Elasticsearch bulk sink configuration."""

    base_url: str = Field(default="http://localhost:9200", description="Elasticsearch base URL")
    index: str = Field(default="logs", min_length=1, description="Index every record is written to")
    timeout_seconds: int = Field(default=30, gt=0, description="Bulk request timeout")

    @property
    def bulk_url(self) -> str:
        """Full Elasticsearch bulk URL."""
        return f"{self.base_url.rstrip('/')}/_bulk"

    model_config = SettingsConfigDict(env_prefix="EVENTSTACK_SINK_")


class BufferSettings(BaseSettings):
    """Flush buffer configuration."""

    flush_interval_millis: int = Field(
        default=1000,
        ge=0,
        description="Minimum interval between buffer drains"
    )
    idle_flush_multiplier: int = Field(
        default=5,
        ge=1,
        description="Idle drain fires this many flush intervals after the last drain"
    )

    model_config = SettingsConfigDict(env_prefix="EVENTSTACK_BUFFER_")


class PolicySettings(BaseSettings):
    """Admission and exclusion filters."""

    allow_all: Optional[bool] = Field(default=None, description="Global admission override")
    allowed_kinds: Optional[List[str]] = Field(default=None, description="Kinds to retain, or ['all']")
    allowed_tags: Optional[List[str]] = Field(default=None, description="Tags to retain, or ['all']")
    exclusions: Optional[Dict[str, Any]] = Field(default=None, description="Per-kind exclusion rules")

    @field_validator("allowed_kinds", "allowed_tags", mode="before")
    def parse_allow_list(cls, v: Any) -> Optional[List[str]]:
        """Accept a single name or a list of names."""
        return normalize_name_list(v)

    @field_validator("exclusions", mode="before")
    def parse_exclusions(cls, v: Any) -> Optional[Dict[str, Any]]:
        """Validate the exclusion rule shape."""
        return normalize_exclusions(v)

    def to_policy(self) -> Policy:
        """Freeze these settings into the policy used for the process run."""
        return load_policy(self.model_dump())

    model_config = SettingsConfigDict(env_prefix="EVENTSTACK_POLICY_")


class CaptureSettings(BaseSettings):
    """Capture of the service's own HTTP requests."""

    enabled: bool = Field(default=False, description="Log this service's own requests")
    exclude_paths: List[str] = Field(
        default=["/v1/events", "/metrics", "/healthz", "/readyz"],
        description="Path prefixes that are never captured"
    )

    model_config = SettingsConfigDict(env_prefix="EVENTSTACK_CAPTURE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    sink: SinkSettings = Field(default_factory=SinkSettings)
    buffer: BufferSettings = Field(default_factory=BufferSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)

    model_config = SettingsConfigDict(env_prefix="EVENTSTACK_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance with config file and env support.

    Raises:
        ConfigurationError: if any setting has an invalid value
    """

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid EventStack configuration",
            details={"errors": [
                {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]},
        ) from e


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    server = config_data.get("server") or {}
    for key, value in server.items():
        _set_default_env(f"EVENTSTACK_{key.upper()}", value)

    for section in ("sink", "buffer", "policy", "capture"):
        for key, value in (config_data.get(section) or {}).items():
            _set_default_env(f"EVENTSTACK_{section.upper()}_{key.upper()}", value)


def _set_default_env(env_var: str, value: Any) -> None:
    if env_var in os.environ or value is None:
        return
    # Complex values are JSON-decoded by pydantic-settings
    if isinstance(value, (dict, list)):
        os.environ[env_var] = json.dumps(value)
    elif isinstance(value, bool):
        os.environ[env_var] = "true" if value else "false"
    else:
        os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
