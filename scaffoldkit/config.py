"""scaffoldkit configuration.

Centralised, typed configuration for the plugin registry, the quality
validator and logging. All settings use Pydantic v2 models so they can be
validated at construction time and serialised to/from JSON or environment
variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from scaffoldkit import __version__

LogLevel = Literal["debug", "info", "warn", "error"]

KIT_VERSION = __version__

_TRUTHY = {"1", "true", "yes", "on"}


class RegistryConfig(BaseModel):
    """Tuning knobs for the plugin registry."""

    plugin_dir: Path = Field(default=Path("./plugins"))
    auto_load: bool = Field(default=True, description="Scan plugin_dir on initialize()")
    max_plugins: int = Field(default=50, ge=1)
    timeout: float = Field(
        default=30.0, gt=0, description="Per-call timeout for plugin code in seconds"
    )
    health_check_timeout: float = Field(
        default=5.0, gt=0, description="Timeout for plugin health checks in seconds"
    )
    enable_validation: bool = Field(default=True, description="Run the quality validator on load")
    strict_validation: bool = Field(
        default=False, description="Refuse to load plugins that fail quality validation"
    )
    enable_monitoring: bool = Field(default=True, description="Record per-operation metrics")


class ValidationConfig(BaseModel):
    """Settings for the plugin quality validator."""

    min_score: int = Field(default=70, ge=0, le=100)
    require_documentation: bool = Field(default=True)
    require_tests: bool = Field(default=False)
    security_checks: bool = Field(default=True)


class Config(BaseModel):
    """Global scaffoldkit configuration.

    Instances are typically created once by the CLI entry point and then
    passed to the registry and the plugin context.
    """

    kit_version: str = Field(default=KIT_VERSION)
    log_level: LogLevel = Field(default="info")
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            SCAFFOLD_PLUGIN_DIR, SCAFFOLD_MAX_PLUGINS, SCAFFOLD_PLUGIN_TIMEOUT,
            SCAFFOLD_HEALTH_TIMEOUT, SCAFFOLD_STRICT_VALIDATION,
            SCAFFOLD_LOG_LEVEL.
        """
        registry_kwargs: dict[str, Any] = {}
        if os.environ.get("SCAFFOLD_PLUGIN_DIR"):
            registry_kwargs["plugin_dir"] = Path(os.environ["SCAFFOLD_PLUGIN_DIR"])
        if os.environ.get("SCAFFOLD_MAX_PLUGINS"):
            registry_kwargs["max_plugins"] = int(os.environ["SCAFFOLD_MAX_PLUGINS"])
        if os.environ.get("SCAFFOLD_PLUGIN_TIMEOUT"):
            registry_kwargs["timeout"] = float(os.environ["SCAFFOLD_PLUGIN_TIMEOUT"])
        if os.environ.get("SCAFFOLD_HEALTH_TIMEOUT"):
            registry_kwargs["health_check_timeout"] = float(os.environ["SCAFFOLD_HEALTH_TIMEOUT"])
        if os.environ.get("SCAFFOLD_STRICT_VALIDATION"):
            registry_kwargs["strict_validation"] = (
                os.environ["SCAFFOLD_STRICT_VALIDATION"].strip().lower() in _TRUTHY
            )

        kwargs: dict[str, Any] = {"registry": RegistryConfig(**registry_kwargs)}
        if os.environ.get("SCAFFOLD_LOG_LEVEL"):
            kwargs["log_level"] = os.environ["SCAFFOLD_LOG_LEVEL"].strip().lower()

        return cls(**kwargs)
