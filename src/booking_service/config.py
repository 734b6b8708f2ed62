"""
Configuration management for the booking service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from service_commons.config import (
    REDACTION_MARKER,
    create_settings_loader,
    get_safe_model_config,
)
from service_commons.config import (
    get_config_path as resolve_config_path,
)

if TYPE_CHECKING:
    from pathlib import Path


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int = Field(gt=0, lt=65536)
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


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_jws_path: str
    timeout_seconds: int = Field(gt=0)


class PaymentGatewayConfig(BaseModel):
    """Payment gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    checkout_path: str
    agent_id: str
    currency: str
    timeout_seconds: int = Field(gt=0)


class DocumentRendererConfig(BaseModel):
    """Agreement document renderer configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    render_path: str
    timeout_seconds: int = Field(gt=0)


class ObjectStorageConfig(BaseModel):
    """Object storage configuration for archived agreements."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    agreement_prefix: str
    timeout_seconds: int = Field(gt=0)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int = Field(gt=0)


class LimitsConfig(BaseModel):
    """Input size limits."""

    model_config = ConfigDict(extra="forbid")
    max_notes_length: int = Field(gt=0)
    max_message_length: int = Field(gt=0)
    max_comment_length: int = Field(gt=0)
    max_notifications: int = Field(gt=0)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    payment_gateway: PaymentGatewayConfig
    document_renderer: DocumentRendererConfig
    object_storage: ObjectStorageConfig
    request: RequestConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="CONFIG_PATH",
        default_filename="config.yaml",
    )


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)  # nosemgrep


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return get_safe_model_config(get_settings(), REDACTION_MARKER)
