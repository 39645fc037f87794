"""Pydantic v2 models for the plugin system.

Defines plugin metadata, the project templates a plugin exposes, their
configuration options, and the request/response records of a generation
call.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .base import Plugin
    from .validator import ValidationResult


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class TemplateCategory(str, Enum):
    """Broad project family a template belongs to."""
    CLI = "cli"
    WEB = "web"
    API = "api"
    MOBILE = "mobile"
    DESKTOP = "desktop"
    MCP_SERVER = "mcp-server"
    LIBRARY = "library"
    TOOL = "tool"
    OTHER = "other"


class OptionType(str, Enum):
    """Value type of a template configuration option."""
    STRING = "string"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTISELECT = "multiselect"
    NUMBER = "number"


class RequirementType(str, Enum):
    RUNTIME = "runtime"
    TOOL = "tool"
    DEPENDENCY = "dependency"


# ---------------------------------------------------------------------------
# Plugin metadata
# ---------------------------------------------------------------------------

class PluginMetadata(BaseModel):
    """Identity and description of a plugin.  Immutable once loaded."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique kebab-case identifier")
    name: str = Field(..., description="Human-readable plugin name")
    version: str = Field(..., description="Semantic version, e.g. '1.2.0'")
    description: str = Field(default="")
    author: str = Field(default="")
    license: Optional[str] = Field(default=None)
    tags: frozenset[str] = Field(default_factory=frozenset)
    minimum_kit_version: Optional[str] = Field(default=None)


# ---------------------------------------------------------------------------
# Template configuration options
# ---------------------------------------------------------------------------

class ConfigChoice(BaseModel):
    """One selectable value of a ``select``/``multiselect`` option."""
    value: str
    label: str
    description: str = ""


class ValidationRule(BaseModel):
    """Constraints on an option value.

    ``min``/``max`` bound numbers by value and strings by length.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    custom_validator: Optional[Callable[[Any], bool | str]] = Field(default=None, exclude=True)


class ConfigOption(BaseModel):
    """A configurable knob of a template, used to build prompts and validate input."""
    name: str = Field(..., description="Option key inside ScaffoldOptions.options")
    type: OptionType = Field(default=OptionType.STRING)
    description: str = Field(default="")
    default_value: Any = Field(default=None)
    required: bool = Field(default=False)
    choices: Optional[list[ConfigChoice]] = Field(default=None)
    validation: Optional[ValidationRule] = Field(default=None)

    def validate_value(self, value: Any) -> str | None:
        """Check *value* against this option.

        Returns:
            An error message, or ``None`` when the value is acceptable.
        """
        if value is None or value == "":
            return f"'{self.name}' is required" if self.required else None

        if self.type is OptionType.BOOLEAN and not isinstance(value, bool):
            return f"'{self.name}' must be a boolean"
        if self.type is OptionType.NUMBER and (
            isinstance(value, bool) or not isinstance(value, (int, float))
        ):
            return f"'{self.name}' must be a number"

        allowed = {c.value for c in self.choices or []}
        if self.type is OptionType.SELECT and allowed and value not in allowed:
            return f"'{self.name}' must be one of: {', '.join(sorted(allowed))}"
        if self.type is OptionType.MULTISELECT:
            if not isinstance(value, (list, tuple, set)):
                return f"'{self.name}' must be a list"
            unknown = [v for v in value if allowed and v not in allowed]
            if unknown:
                return f"'{self.name}' has unknown choices: {', '.join(map(str, unknown))}"

        rule = self.validation
        if rule is None:
            return None

        if rule.pattern and isinstance(value, str) and not re.search(rule.pattern, value):
            return f"'{self.name}' does not match pattern {rule.pattern}"

        measured = len(value) if isinstance(value, str) else value
        if isinstance(measured, (int, float)) and not isinstance(measured, bool):
            if rule.min is not None and measured < rule.min:
                return f"'{self.name}' is below the minimum of {rule.min:g}"
            if rule.max is not None and measured > rule.max:
                return f"'{self.name}' is above the maximum of {rule.max:g}"

        if rule.custom_validator is not None:
            outcome = rule.custom_validator(value)
            if isinstance(outcome, str):
                return outcome
            if not outcome:
                return f"'{self.name}' failed validation"

        return None


class TemplateRequirement(BaseModel):
    """Something that must be installed to use a generated project."""
    type: RequirementType
    name: str
    version_range: Optional[str] = None
    required: bool = True
    install_instructions: Optional[str] = None


# ---------------------------------------------------------------------------
# Project template
# ---------------------------------------------------------------------------

class ProjectTemplate(BaseModel):
    """A scaffold definition owned by exactly one plugin."""
    id: str = Field(..., description="Unique across all loaded plugins")
    name: str
    description: str = ""
    category: TemplateCategory = TemplateCategory.OTHER
    template_path: Path
    requirements: list[TemplateRequirement] = Field(default_factory=list)
    config_options: list[ConfigOption] = Field(default_factory=list)

    def validate_options(self, options: dict[str, Any]) -> list[str]:
        """Return one message per option value that is missing or invalid."""
        errors: list[str] = []
        for option in self.config_options:
            message = option.validate_value(options.get(option.name, option.default_value))
            if message:
                errors.append(message)
        return errors


# ---------------------------------------------------------------------------
# Generation request / response
# ---------------------------------------------------------------------------

class ScaffoldOptions(BaseModel):
    """Input to a single generation call; immutable for its duration."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    target_path: Path
    project_name: str
    project_type: str = Field(..., alias="template_id")
    options: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)

    @property
    def template_id(self) -> str:
        return self.project_type


class NextStep(BaseModel):
    """A follow-up action suggested to the user after generation."""
    title: str
    description: str = ""
    command: Optional[str] = None
    required: bool = False


class ScaffoldResult(BaseModel):
    """Output of a generation call.  Only ``success`` is authoritative."""
    success: bool
    generated_files: list[str] = Field(default_factory=list)
    next_steps: Optional[list[NextStep]] = None
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class HealthCheckResult(BaseModel):
    healthy: bool
    message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Registry bookkeeping
# ---------------------------------------------------------------------------

@dataclass
class PluginRegistration:
    """Registry record for one loaded (or failed) plugin."""

    plugin: Plugin
    file_path: Path
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    active: bool = False
    last_error: BaseException | None = None
    validation: ValidationResult | None = None

    @property
    def plugin_id(self) -> str:
        return self.plugin.metadata.id
