"""Plugin registry.

Discovers plugin modules on disk, checks their capabilities, initializes
them under a timeout and indexes the project templates they expose.  Every
call into plugin code goes through a :class:`TimeoutGuard`, so one broken
plugin cannot hang the process or leave a half-registered entry behind.

Index mutation is not locked: callers serialize ``load_one``/``unload``.
"""

from __future__ import annotations

import asyncio
import hashlib
import importlib.util
import inspect
import itertools
import re
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any

from scaffoldkit.config import Config, RegistryConfig

from .base import missing_capabilities, provides
from .context import PluginContext, PluginLogger
from .errors import PluginError, PluginExecutionError, PluginLoadError, PluginTimeoutError
from .guard import TimeoutGuard
from .models import (
    HealthCheckResult,
    PluginMetadata,
    PluginRegistration,
    ProjectTemplate,
    ScaffoldOptions,
    ScaffoldResult,
)
from .monitor import OperationType, PluginMonitor
from .validator import PluginValidator

ENTRY_FILES = ("plugin.py", "__init__.py")
MODULE_PREFIX = "scaffoldkit_plugin"

_load_sequence = itertools.count(1)


class RegistryEventKind(str, Enum):
    LOADED = "loaded"
    UNLOADED = "unloaded"
    SCAFFOLD_STARTED = "scaffold_started"
    SCAFFOLD_COMPLETED = "scaffold_completed"
    SCAFFOLD_FAILED = "scaffold_failed"


@dataclass
class RegistryEvent:
    kind: RegistryEventKind
    plugin_id: str
    template_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


RegistryListener = Callable[[RegistryEvent], Any]


@dataclass
class _TemplateEntry:
    plugin_id: str
    template: ProjectTemplate


class PluginRegistry:
    """Owns the loaded plugins and the template index.

    Usage::

        registry = PluginRegistry(RegistryConfig(plugin_dir=Path("plugins")))
        await registry.initialize()
        result = await registry.generate("api-fastapi", options)
        await registry.shutdown()
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        context: PluginContext | None = None,
        *,
        validator: PluginValidator | None = None,
    ) -> None:
        self.config = config or RegistryConfig()
        self.context = context or PluginContext.create()
        self._plugins: dict[str, PluginRegistration] = {}
        self._templates: dict[str, _TemplateEntry] = {}
        self._modules: dict[str, str] = {}
        self._listeners: list[RegistryListener] = []
        self._initialized = False

        self._guard = TimeoutGuard(self.config.timeout)
        self._health_guard = TimeoutGuard(self.config.health_check_timeout)
        self.validator: PluginValidator | None = None
        if self.config.enable_validation:
            self.validator = validator or PluginValidator(context=self.context)
        self.monitor = PluginMonitor(self.context.logger, enabled=self.config.enable_monitoring)

    @classmethod
    def from_config(cls, config: Config, context: PluginContext | None = None) -> PluginRegistry:
        context = context or PluginContext.create(config)
        validator = PluginValidator(config.validation, context)
        return cls(config.registry, context, validator=validator)

    @property
    def logger(self) -> PluginLogger:
        return self.context.logger

    # -- Lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        """Prepare the plugin directory and, with ``auto_load``, load it.  Idempotent."""
        if self._initialized:
            return
        self.logger.info("Initializing plugin registry", plugin_dir=str(self.config.plugin_dir))
        await asyncio.to_thread(self.config.plugin_dir.mkdir, parents=True, exist_ok=True)
        if self.config.auto_load:
            await self.load_all()
        self._initialized = True

    async def shutdown(self) -> None:
        """Unload every plugin, logging failures instead of raising."""
        self.logger.info("Shutting down plugin registry", plugins=len(self._plugins))
        for plugin_id in list(self._plugins):
            try:
                await self.unload(plugin_id)
            except PluginError as exc:
                self.logger.error("Plugin shutdown failed", plugin_id=plugin_id, error=str(exc))
        self._plugins.clear()
        self._templates.clear()
        self._initialized = False

    # -- Listeners ---------------------------------------------------------

    def add_listener(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RegistryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, event: RegistryEvent) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                self.logger.warn(
                    "Registry listener failed", event=event.kind.value, error=str(exc)
                )

    # -- Loading -----------------------------------------------------------

    @staticmethod
    def discover(plugin_dir: str | Path) -> list[Path]:
        """Return candidate plugin entry points under *plugin_dir*, sorted.

        A candidate is a ``*.py`` file or a directory holding ``plugin.py``
        (or ``__init__.py``).  Names starting with ``_`` or ``.`` are skipped.
        """
        root = Path(plugin_dir)
        if not root.is_dir():
            return []

        candidates: list[Path] = []
        for entry in sorted(root.iterdir()):
            if entry.name.startswith(("_", ".")):
                continue
            if entry.is_file() and entry.suffix == ".py":
                candidates.append(entry)
            elif entry.is_dir() and any((entry / name).is_file() for name in ENTRY_FILES):
                candidates.append(entry)
        return candidates

    async def load_all(self, plugin_dir: str | Path | None = None) -> list[str]:
        """Load every candidate under *plugin_dir*; returns the ids activated.

        A failing candidate is logged and the scan moves on.
        """
        root = Path(plugin_dir) if plugin_dir is not None else self.config.plugin_dir
        candidates = self.discover(root)
        self.logger.info("Found plugin candidates", count=len(candidates), plugin_dir=str(root))

        loaded: list[str] = []
        for candidate in candidates:
            try:
                metadata = await self.load_one(candidate)
            except PluginError as exc:
                self.logger.error(
                    "Plugin load failed", path=str(candidate), plugin_id=exc.plugin_id, error=str(exc)
                )
                continue
            loaded.append(metadata.id)
        return loaded

    async def load_one(self, path: str | Path) -> PluginMetadata:
        """Load, check, initialize and index one plugin.

        Templates are listed once, after ``initialize``; validation (when
        enabled) runs on that listing and never calls into the plugin
        unguarded.

        Raises:
            PluginLoadError: For an unreadable or malformed module, a missing
                capability, a duplicate id, a full registry, a failed strict
                validation, or an ``initialize``/template listing that failed
                or timed out.  In the last case the plugin stays registered
                with ``active=False``.
        """
        plugin_path = Path(path)
        fallback_id = plugin_path.stem
        self.logger.debug("Loading plugin", path=str(plugin_path))

        if len(self._plugins) >= self.config.max_plugins:
            raise PluginLoadError(
                f"Maximum number of plugins reached ({self.config.max_plugins})", fallback_id
            )

        entry_file = self._entry_file(plugin_path)
        module_name = _module_name(entry_file)
        module = self._import(entry_file, module_name, fallback_id)

        try:
            plugin = self._instantiate(module, fallback_id)
            plugin_id = plugin.metadata.id

            if plugin_id in self._plugins:
                raise PluginLoadError(f"Plugin id '{plugin_id}' is already registered", plugin_id)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        registration = PluginRegistration(plugin=plugin, file_path=plugin_path)
        self._plugins[plugin_id] = registration
        self._modules[plugin_id] = module_name

        try:
            await self._call(plugin, "initialize", OperationType.INITIALIZE, self.context)
            started = time.monotonic()
            templates = await self._fetch_templates(plugin)
            listing_seconds = time.monotonic() - started
        except Exception as exc:
            registration.active = False
            registration.last_error = exc
            raise PluginLoadError(
                f"Plugin '{plugin_id}' failed to initialize: {exc}", plugin_id, exc
            ) from exc

        try:
            registration.validation = await self._validate(
                plugin, plugin_path, templates, listing_seconds
            )
        except PluginLoadError:
            try:
                await self.unload(plugin_id)
            except PluginError as exc:
                self.logger.error("Plugin cleanup failed", plugin_id=plugin_id, error=str(exc))
            raise

        for template in templates:
            self._register_template(plugin_id, template)
        registration.active = True

        self.logger.info(
            f"Plugin loaded: {plugin.metadata.name} v{plugin.metadata.version}",
            plugin_id=plugin_id,
            templates=len(templates),
        )
        await self._notify(
            RegistryEvent(RegistryEventKind.LOADED, plugin_id, payload={"path": str(plugin_path)})
        )
        return plugin.metadata

    async def unload(self, plugin_id: str) -> None:
        """Run the plugin's ``cleanup``, drop its templates and its record.

        Raises:
            PluginError: For an unknown id, or when ``cleanup`` failed.  The
                plugin is removed in both cases of a known id.
        """
        registration = self._plugins.get(plugin_id)
        if registration is None:
            raise PluginError(f"Plugin not found: {plugin_id}", plugin_id)

        failure: Exception | None = None
        if provides(registration.plugin, "cleanup"):
            try:
                await self._call(registration.plugin, "cleanup", OperationType.CLEANUP)
            except Exception as exc:
                failure = exc

        for template_id in [t for t, e in self._templates.items() if e.plugin_id == plugin_id]:
            del self._templates[template_id]
            self.logger.debug("Template unregistered", template_id=template_id)
        del self._plugins[plugin_id]
        sys.modules.pop(self._modules.pop(plugin_id, ""), None)

        if failure is not None:
            self.logger.error("Plugin cleanup failed", plugin_id=plugin_id, error=str(failure))
            raise PluginError(
                f"Plugin '{plugin_id}' failed to unload: {failure}", plugin_id, failure
            ) from failure

        self.logger.info("Plugin unloaded", plugin_id=plugin_id)
        await self._notify(RegistryEvent(RegistryEventKind.UNLOADED, plugin_id))

    # -- Lookups -----------------------------------------------------------

    def get_available_templates(self) -> list[ProjectTemplate]:
        return [entry.template for entry in self._templates.values()]

    def get_template(self, template_id: str) -> ProjectTemplate | None:
        entry = self._templates.get(template_id)
        return entry.template if entry else None

    def get_template_owner(self, template_id: str) -> str | None:
        entry = self._templates.get(template_id)
        return entry.plugin_id if entry else None

    def get_loaded_plugins(self) -> list[PluginMetadata]:
        return [registration.plugin.metadata for registration in self._plugins.values()]

    def get_plugin_info(self, plugin_id: str) -> PluginRegistration | None:
        return self._plugins.get(plugin_id)

    # -- Generation --------------------------------------------------------

    async def generate(self, template_id: str, options: ScaffoldOptions) -> ScaffoldResult:
        """Run the owning plugin's ``generate_scaffold`` and return its result.

        Raises:
            PluginExecutionError: Unknown template, inactive plugin, or any
                error/timeout raised by the plugin call.
        """
        entry = self._templates.get(template_id)
        if entry is None:
            raise PluginExecutionError(f"Template not found: {template_id}", "unknown")

        registration = self._plugins.get(entry.plugin_id)
        if registration is None or not registration.active:
            raise PluginExecutionError(f"Plugin is not active: {entry.plugin_id}", entry.plugin_id)

        plugin_id = entry.plugin_id
        self.logger.info("Scaffold generation started", template_id=template_id, plugin_id=plugin_id)
        await self._notify(
            RegistryEvent(
                RegistryEventKind.SCAFFOLD_STARTED,
                plugin_id,
                template_id,
                {"project_name": options.project_name, "target_path": str(options.target_path)},
            )
        )

        try:
            raw = await self._call(
                registration.plugin,
                "generate_scaffold",
                OperationType.GENERATE_SCAFFOLD,
                entry.template,
                options,
                self.context,
                template_id=template_id,
            )
            result = raw if isinstance(raw, ScaffoldResult) else ScaffoldResult.model_validate(raw)
        except Exception as exc:
            self.logger.error(
                "Scaffold generation failed", template_id=template_id, plugin_id=plugin_id, error=str(exc)
            )
            await self._notify(
                RegistryEvent(
                    RegistryEventKind.SCAFFOLD_FAILED, plugin_id, template_id, {"error": str(exc)}
                )
            )
            raise PluginExecutionError(
                f"Scaffold generation failed for '{template_id}': {exc}", plugin_id, exc
            ) from exc

        self.logger.info(
            "Scaffold generation finished",
            template_id=template_id,
            success=result.success,
            files=len(result.generated_files),
        )
        await self._notify(
            RegistryEvent(
                RegistryEventKind.SCAFFOLD_COMPLETED,
                plugin_id,
                template_id,
                {"success": result.success},
            )
        )
        return result

    async def health_check(self, plugin_id: str | None = None) -> dict[str, HealthCheckResult]:
        """Probe one or every plugin under the short health timeout.  Never raises."""
        if plugin_id is not None and plugin_id not in self._plugins:
            return {plugin_id: HealthCheckResult(healthy=False, message="Plugin not found")}

        selected = [plugin_id] if plugin_id is not None else list(self._plugins)
        results: dict[str, HealthCheckResult] = {}
        for pid in selected:
            registration = self._plugins[pid]
            if not registration.active:
                error = registration.last_error
                results[pid] = HealthCheckResult(
                    healthy=False,
                    message="Plugin is inactive",
                    details={"error": str(error)} if error is not None else {},
                )
                continue
            if not provides(registration.plugin, "health_check"):
                results[pid] = HealthCheckResult(healthy=True, message="Plugin is active")
                continue
            check = registration.plugin.health_check
            try:
                async with self.monitor.track(pid, OperationType.HEALTH_CHECK) as handle:
                    raw = await self._health_guard.run(
                        check, self.context, plugin_id=pid, operation="health_check"
                    )
                    outcome = (
                        raw if isinstance(raw, HealthCheckResult) else HealthCheckResult.model_validate(raw)
                    )
                    handle.success = outcome.healthy
                results[pid] = outcome
            except Exception as exc:
                results[pid] = HealthCheckResult(
                    healthy=False,
                    message=f"Health check failed: {exc}",
                    details={"error": str(exc), "timed_out": isinstance(exc, PluginTimeoutError)},
                )
        return results

    # -- Internals ---------------------------------------------------------

    @staticmethod
    def _entry_file(path: Path) -> Path:
        if path.is_file():
            return path
        if path.is_dir():
            for name in ENTRY_FILES:
                if (path / name).is_file():
                    return path / name
        raise PluginLoadError(f"No plugin entry point found at {path}", path.stem)

    @staticmethod
    def _import(entry_file: Path, module_name: str, fallback_id: str) -> ModuleType:
        spec = importlib.util.spec_from_file_location(module_name, entry_file)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"Cannot import plugin module {entry_file}", fallback_id)

        module = importlib.util.module_from_spec(spec)
        # Registered before execution so dataclasses and pydantic models defined
        # in the plugin can resolve their own module.
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(
                f"Error importing plugin module {entry_file}: {exc}", fallback_id, exc
            ) from exc
        return module

    @staticmethod
    def _instantiate(module: ModuleType, fallback_id: str) -> Any:
        plugin = getattr(module, "plugin", None)
        if plugin is None:
            factory = getattr(module, "create_plugin", None)
            if not callable(factory):
                raise PluginLoadError(
                    "Plugin module must define 'plugin' or 'create_plugin()'", fallback_id
                )
            try:
                plugin = factory()
            except Exception as exc:
                raise PluginLoadError(
                    f"create_plugin() failed: {exc}", fallback_id, exc
                ) from exc

        missing = missing_capabilities(plugin)
        if missing:
            plugin_id = getattr(getattr(plugin, "metadata", None), "id", None) or fallback_id
            raise PluginLoadError(
                f"Plugin is missing required capabilities: {', '.join(missing)}", plugin_id
            )
        return plugin

    async def _validate(
        self,
        plugin: Any,
        plugin_path: Path,
        templates: list[ProjectTemplate],
        listing_seconds: float,
    ):
        if self.validator is None:
            return None

        plugin_id = plugin.metadata.id
        result = await self.validator.validate(
            plugin,
            plugin_path,
            templates=templates,
            listing_seconds=listing_seconds,
            guard=self._health_guard,
        )
        if not result.valid:
            message = f"Plugin '{plugin_id}' scored {result.score}/100 ({result.level.value})"
            if self.config.strict_validation:
                raise PluginLoadError(f"{message}, below the required quality", plugin_id)
            self.logger.warn(f"{message}; loading anyway", plugin_id=plugin_id)
        return result

    async def _call(
        self,
        plugin: Any,
        method: str,
        operation: OperationType,
        *args: Any,
        **metadata: Any,
    ) -> Any:
        plugin_id = plugin.metadata.id
        async with self.monitor.track(plugin_id, operation, **metadata) as handle:
            result = await self._guard.run(
                getattr(plugin, method), *args, plugin_id=plugin_id, operation=method
            )
            if isinstance(result, ScaffoldResult):
                handle.success = result.success
                handle.error = result.error
            return result

    async def _fetch_templates(self, plugin: Any) -> list[ProjectTemplate]:
        raw = await self._call(plugin, "get_project_templates", OperationType.GET_TEMPLATES)
        if not isinstance(raw, (list, tuple)):
            raise TypeError("get_project_templates() must return a list")
        return [
            item if isinstance(item, ProjectTemplate) else ProjectTemplate.model_validate(item)
            for item in raw
        ]

    def _register_template(self, plugin_id: str, template: ProjectTemplate) -> None:
        existing = self._templates.get(template.id)
        if existing is not None:
            self.logger.warn(
                f"Template id '{template.id}' is already registered; skipped",
                plugin_id=plugin_id,
                owner=existing.plugin_id,
            )
            return
        self._templates[template.id] = _TemplateEntry(plugin_id, template)
        self.logger.debug("Template registered", template_id=template.id, plugin_id=plugin_id)


def _module_name(entry_file: Path) -> str:
    """A unique, import-safe module name for a plugin entry file."""
    resolved = entry_file.resolve()
    stem = resolved.parent.name if resolved.name in ENTRY_FILES else resolved.stem
    slug = re.sub(r"\W", "_", stem)
    digest = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:8]
    return f"{MODULE_PREFIX}_{slug}_{digest}_{next(_load_sequence)}"
