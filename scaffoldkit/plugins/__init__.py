"""Plugin system: contract, data model, registry and supporting services."""

from .base import Plugin
from .context import PluginConfigStore, PluginContext, PluginFileSystem, PluginLogger, TemplateProcessor
from .errors import PluginError, PluginExecutionError, PluginLoadError, PluginTimeoutError
from .guard import TimeoutGuard
from .models import (
    ConfigChoice,
    ConfigOption,
    HealthCheckResult,
    NextStep,
    OptionType,
    PluginMetadata,
    PluginRegistration,
    ProjectTemplate,
    RequirementType,
    ScaffoldOptions,
    ScaffoldResult,
    TemplateCategory,
    TemplateRequirement,
    ValidationRule,
)
from .monitor import OperationType, PluginMonitor
from .registry import PluginRegistry, RegistryEvent, RegistryEventKind
from .validator import PluginValidator, ValidationIssue, ValidationResult

__all__ = [
    "ConfigChoice",
    "ConfigOption",
    "HealthCheckResult",
    "NextStep",
    "OperationType",
    "OptionType",
    "Plugin",
    "PluginConfigStore",
    "PluginContext",
    "PluginError",
    "PluginExecutionError",
    "PluginFileSystem",
    "PluginLoadError",
    "PluginLogger",
    "PluginMetadata",
    "PluginMonitor",
    "PluginRegistration",
    "PluginRegistry",
    "PluginTimeoutError",
    "PluginValidator",
    "ProjectTemplate",
    "RegistryEvent",
    "RegistryEventKind",
    "RequirementType",
    "ScaffoldOptions",
    "ScaffoldResult",
    "TemplateCategory",
    "TemplateProcessor",
    "TemplateRequirement",
    "TimeoutGuard",
    "ValidationIssue",
    "ValidationResult",
    "ValidationRule",
]
