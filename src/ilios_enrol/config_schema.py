"""Unified configuration schema for ilios_enrol.

Pydantic models for the YAML config structure: an ``ilios`` connection
section, a ``logging`` section and the list of sync ``targets``.

Usage:
    from ilios_enrol.config_loader import load_hierarchical_config
    from ilios_enrol.config_schema import build_config

    unified = build_config(load_hierarchical_config())
    config = load_config(
        yaml_fallbacks=unified.ilios.model_dump(exclude_none=True)
    )
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from .sync.models import SyncTarget


class IliosConfig(BaseModel):
    """Ilios API connection settings.

    All fields are optional so env vars can supply them at runtime.
    """

    host_url: str | None = Field(
        default=None, description="Ilios instance URL"
    )
    api_key: str | None = Field(
        default=None, description="Ilios API access token"
    )
    api_version: str = Field(default="v3", description="API version")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    timeout: int = Field(
        default=60, ge=1, le=600, description="Read timeout in seconds"
    )
    max_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum ids per batch lookup (1-1000)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level configuration; ``UnifiedConfig()`` is always valid."""

    ilios: IliosConfig = Field(default_factory=IliosConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    targets: list[SyncTarget] = Field(default_factory=list)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
