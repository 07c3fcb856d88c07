"""
Configuration management for the job escrow service.

Loads configuration from YAML with ZERO defaults for required sections.
Every required value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REDACTION_MARKER = "***REDACTED***"


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class PlatformConfig(BaseModel):
    """Platform identity used to sign processor calls, plus the flat fee."""

    model_config = ConfigDict(extra="forbid")
    agent_id: str
    private_key_path: str | None = None
    fee_bps: int = Field(ge=0, le=10000)


class PaymentProcessorConfig(BaseModel):
    """External payment processor connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    authorize_path: str
    capture_path: str
    release_path: str
    refund_path: str
    void_path: str
    timeout_seconds: int


class MatchingConfig(BaseModel):
    """Matching index configuration."""

    model_config = ConfigDict(extra="forbid")
    default_service_radius_miles: float = Field(gt=0)


class EventsConfig(BaseModel):
    """Event feed streaming configuration."""

    model_config = ConfigDict(extra="forbid")
    batch_size: int = Field(gt=0)
    poll_interval_seconds: float = Field(gt=0)
    keepalive_interval_seconds: float = Field(gt=0)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All sections are REQUIRED. Missing sections cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    platform: PlatformConfig
    payment_processor: PaymentProcessorConfig
    matching: MatchingConfig
    events: EventsConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Determine configuration file path (CONFIG_PATH env var or ./config.yaml)."""
    configured = os.environ.get("CONFIG_PATH")
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Parse and validate a YAML configuration file."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    data = get_settings().model_dump()
    if data["platform"].get("private_key_path"):
        data["platform"]["private_key_path"] = REDACTION_MARKER
    return data
