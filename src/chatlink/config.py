"""Chatlink configuration: loads from chatlink.yaml + .env."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load chatlink.yaml from CHATLINK_CONFIG_PATH or default locations."""
    config_path = os.getenv("CHATLINK_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("/etc/chatlink/chatlink.yaml"),
            Path("chatlink.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


def _parse_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


class ValidationConfig(BaseSettings):
    """Bounds and endpoints for connect validation and health probes."""

    validation_timeout_s: float = Field(
        default=5.0,
        gt=0,
        description="Max seconds a validator may take before the attempt fails",
    )
    test_timeout_s: float = Field(default=5.0, gt=0, description="Max seconds for a health probe")
    graph_api_base: str = "https://graph.facebook.com/v21.0"
    telegram_api_base: str = "https://api.telegram.org"
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    model_config = SettingsConfigDict(env_prefix="CHATLINK_VALIDATION_")


class EmbedConfig(BaseSettings):
    """Widget snippet settings shared by every chatbot."""

    widget_src: str = "https://cdn.aiorchestrator.com/widget.js"
    auto_open: bool = False
    show_branding: bool = True

    model_config = SettingsConfigDict(env_prefix="CHATLINK_EMBED_")


class BrandingConfig(BaseModel):
    """Chatbot branding substituted into embed snippets."""

    name: str = "AI Assistant"
    primary_color: str = "#4F46E5"
    welcome_message: str = "Hi! How can I help you today?"
    position: Literal["bottom-right", "bottom-left", "top-right", "top-left"] = "bottom-right"


class HooksConfig(BaseSettings):
    """Targets notified after every committed channel change."""

    channel_changed_targets: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="'log', 'webhook:<url>' or a bare http(s) URL",
    )
    webhook_timeout_s: int = Field(default=10, ge=1, le=120)

    @field_validator("channel_changed_targets", mode="before")
    @classmethod
    def _parse_targets(cls, value: Any) -> list[str]:
        return _parse_str_list(value)

    model_config = SettingsConfigDict(env_prefix="CHATLINK_HOOKS_")


class ChatlinkConfig(BaseSettings):
    """Root Chatlink configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")
    public_base_url: str = Field(
        default="",
        description="Externally reachable base URL, used for channel webhook addresses",
    )

    # Auth
    api_key: str = Field(default="", description="API key for authentication. Empty = no auth")

    # Sub-configs
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    embed: EmbedConfig = Field(default_factory=EmbedConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    branding: BrandingConfig = Field(default_factory=BrandingConfig)
    chatbots: dict[str, BrandingConfig] = Field(
        default_factory=dict,
        description="Per-chatbot branding overrides keyed by chatbot id",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="CHATLINK_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> ChatlinkConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        validation_data = yaml_cfg.pop("validation", {})
        embed_data = yaml_cfg.pop("embed", {})
        hooks_data = yaml_cfg.pop("hooks", {})

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if validation_data:
            kwargs["validation"] = ValidationConfig(**validation_data)
        if embed_data:
            kwargs["embed"] = EmbedConfig(**embed_data)
        if hooks_data:
            kwargs["hooks"] = HooksConfig(**hooks_data)

        return cls(**kwargs)


# Singleton
_config: ChatlinkConfig | None = None


def get_config() -> ChatlinkConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = ChatlinkConfig.load()
    return _config
