"""The plugin contract.

A plugin is any object exposing ``metadata`` plus ``initialize``,
``get_project_templates`` and ``generate_scaffold``.  Subclassing
:class:`Plugin` is the convenient way to satisfy it, but the registry only
checks the capabilities, so duck-typed modules load as well.  Each method may
be a coroutine function or a plain function.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .models import HealthCheckResult, PluginMetadata, ProjectTemplate, ScaffoldOptions, ScaffoldResult

if TYPE_CHECKING:
    from .context import PluginContext

REQUIRED_METHODS = ("initialize", "get_project_templates", "generate_scaffold")
OPTIONAL_METHODS = ("cleanup", "health_check")


class Plugin(ABC):
    """Base class for project generator plugins."""

    metadata: PluginMetadata

    @abstractmethod
    async def initialize(self, context: PluginContext) -> None:
        """Prepare the plugin.  Called once, before any template is listed."""

    @abstractmethod
    def get_project_templates(self) -> list[ProjectTemplate]:
        """Return the templates this plugin can generate."""

    @abstractmethod
    async def generate_scaffold(
        self,
        template: ProjectTemplate,
        options: ScaffoldOptions,
        context: PluginContext,
    ) -> ScaffoldResult:
        """Materialise *template* at ``options.target_path``."""

    async def cleanup(self) -> None:
        """Release resources before the plugin is unloaded.  Optional."""

    async def health_check(self, context: PluginContext) -> HealthCheckResult:
        """Report plugin health.  Optional: without an override the registry
        reports a plugin healthy exactly when it is active."""
        return HealthCheckResult(healthy=True)


def missing_capabilities(candidate: object) -> list[str]:
    """Return the names of required capabilities *candidate* lacks.

    ``metadata`` must carry a non-empty ``id``, ``name`` and ``version``; the
    required methods must be callable.
    """
    missing: list[str] = []
    metadata = getattr(candidate, "metadata", None)
    if not isinstance(metadata, PluginMetadata):
        missing.append("metadata")
    else:
        missing.extend(
            f"metadata.{name}" for name in ("id", "name", "version") if not getattr(metadata, name)
        )
    missing.extend(name for name in REQUIRED_METHODS if not callable(getattr(candidate, name, None)))
    return missing


def provides(candidate: object, name: str) -> bool:
    """True when *candidate* really implements the optional hook *name*.

    The no-op defaults inherited from :class:`Plugin` do not count.
    """
    if not callable(getattr(candidate, name, None)):
        return False
    return getattr(type(candidate), name, None) is not getattr(Plugin, name, None)
