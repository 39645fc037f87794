"""Capabilities handed to every plugin call.

A ``PluginContext`` bundles a logger, a filesystem facade, a persisted
key/value config store and a template helper.  Plugins should use these
instead of reaching for their own so that output, permissions and
placeholder handling stay consistent across plugins.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape

from scaffoldkit.config import KIT_VERSION, Config, LogLevel
from scaffoldkit.scaffolder.substitution import VariableSubstitutor
from scaffoldkit.scaffolder.templates import TemplateRenderer
from scaffoldkit.utils import console as default_console
from scaffoldkit.utils import ensure_dir, load_json, save_json

CONFIG_FILE_ENV = "SCAFFOLD_PLUGIN_CONFIG_FILE"
DEFAULT_CONFIG_FILE = ".scaffoldkit-config.json"

_LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warn": 30, "error": 40}
_LEVEL_STYLES: dict[str, str] = {
    "debug": "dim",
    "info": "blue",
    "warn": "yellow",
    "error": "red",
}


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------


@dataclass
class LogRecord:
    level: str
    message: str
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def format(self) -> str:
        meta = f" {json.dumps(self.meta, default=str)}" if self.meta else ""
        return f"[{self.timestamp.isoformat()}] [{self.level.upper()}] {self.message}{meta}"


class PluginLogger:
    """Leveled logger printing to a Rich console.

    The last ``max_records`` records are kept in ``records`` whatever the
    threshold, so callers can inspect what a plugin reported.
    """

    def __init__(
        self,
        level: LogLevel = "info",
        console: Console | None = None,
        max_records: int = 500,
    ) -> None:
        self.level = level
        self.console = console or default_console
        self.max_records = max_records
        self.records: list[LogRecord] = []

    def debug(self, message: str, **meta: Any) -> None:
        self._log("debug", message, meta)

    def info(self, message: str, **meta: Any) -> None:
        self._log("info", message, meta)

    def warn(self, message: str, **meta: Any) -> None:
        self._log("warn", message, meta)

    def error(self, message: str, **meta: Any) -> None:
        self._log("error", message, meta)

    def _log(self, level: str, message: str, meta: dict[str, Any]) -> None:
        record = LogRecord(level=level, message=message, meta=meta)
        self.records.append(record)
        if len(self.records) > self.max_records:
            del self.records[: len(self.records) - self.max_records]

        if _LEVELS[level] >= _LEVELS[self.level]:
            style = _LEVEL_STYLES[level]
            self.console.print(f"[{style}]{escape(record.format())}[/{style}]")


# ---------------------------------------------------------------------------
# Filesystem facade
# ---------------------------------------------------------------------------


class PluginFileSystem:
    """Async filesystem operations, optionally confined to ``allowed_roots``."""

    def __init__(self, allowed_roots: Iterable[str | Path] | None = None) -> None:
        self.allowed_roots = (
            [Path(root).resolve() for root in allowed_roots] if allowed_roots is not None else None
        )

    def _check(self, path: str | Path) -> Path:
        target = Path(path)
        if self.allowed_roots is None:
            return target
        resolved = target.resolve()
        if not any(resolved == root or root in resolved.parents for root in self.allowed_roots):
            raise PermissionError(f"Access outside allowed roots: {target}")
        return target

    def allow(self, root: str | Path) -> None:
        """Add *root* to the allowed roots. No-op on an unconfined file system."""
        if self.allowed_roots is None:
            return
        resolved = Path(root).resolve()
        if resolved not in self.allowed_roots:
            self.allowed_roots.append(resolved)

    async def exists(self, path: str | Path) -> bool:
        return await asyncio.to_thread(self._check(path).exists)

    async def read_file(self, path: str | Path, encoding: str = "utf-8") -> str:
        return await asyncio.to_thread(self._check(path).read_text, encoding=encoding)

    async def write_file(self, path: str | Path, content: str, encoding: str = "utf-8") -> None:
        target = self._check(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding=encoding)

        await asyncio.to_thread(_write)

    async def ensure_dir(self, path: str | Path) -> None:
        await asyncio.to_thread(ensure_dir, self._check(path))

    async def copy(self, source: str | Path, destination: str | Path) -> None:
        src, dest = self._check(source), self._check(destination)

        def _copy() -> None:
            if src.is_dir():
                shutil.copytree(src, dest, dirs_exist_ok=True)
            else:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dest)

        await asyncio.to_thread(_copy)

    async def remove(self, path: str | Path) -> None:
        target = self._check(path)

        def _remove() -> None:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()

        await asyncio.to_thread(_remove)

    async def read_dir(self, path: str | Path) -> list[str]:
        target = self._check(path)
        return await asyncio.to_thread(lambda: sorted(p.name for p in target.iterdir()))


# ---------------------------------------------------------------------------
# Persisted plugin settings
# ---------------------------------------------------------------------------


class PluginConfigStore:
    """Key/value settings shared by plugins, persisted as a JSON object.

    The file is read once on construction.  A missing or unreadable file
    starts an empty store; every ``set``/``delete`` rewrites it.
    """

    def __init__(self, path: str | Path | None = None, logger: PluginLogger | None = None) -> None:
        self.path = Path(path or os.environ.get(CONFIG_FILE_ENV) or Path.cwd() / DEFAULT_CONFIG_FILE)
        self._values: dict[str, Any] = {}
        if self.path.is_file():
            try:
                self._values = load_json(self.path)
            except (OSError, ValueError) as exc:
                if logger is not None:
                    logger.warn("Could not read plugin config file", path=str(self.path), error=str(exc))

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        await save_json(self._values, self.path)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        await save_json(self._values, self.path)

    def all(self) -> dict[str, Any]:
        return dict(self._values)


# ---------------------------------------------------------------------------
# Template helper
# ---------------------------------------------------------------------------


class TemplateProcessor:
    """Placeholder helpers backed by the shared renderer."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    def replace_placeholders(self, content: str, variables: Mapping[str, Any]) -> str:
        return self.renderer.render_string(content, variables)

    async def process_template_file(
        self, source: str | Path, target: str | Path, variables: Mapping[str, Any]
    ) -> Path:
        return await self.renderer.render_file(source, target, variables)

    async def process_template_directory(
        self, source: str | Path, target: str | Path, variables: Mapping[str, Any]
    ) -> list[Path]:
        return await self.renderer.render_directory(source, target, variables)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass
class PluginContext:
    kit_version: str
    logger: PluginLogger
    file_system: PluginFileSystem
    config: PluginConfigStore
    template_processor: TemplateProcessor

    @classmethod
    def create(
        cls,
        config: Config | None = None,
        *,
        console: Console | None = None,
        allowed_roots: Iterable[str | Path] | None = None,
        config_file: str | Path | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> PluginContext:
        """Build a context with the standard implementations."""
        cfg = config or Config()
        logger = PluginLogger(level=cfg.log_level, console=console)
        return cls(
            kit_version=cfg.kit_version or KIT_VERSION,
            logger=logger,
            file_system=PluginFileSystem(allowed_roots),
            config=PluginConfigStore(config_file, logger=logger),
            template_processor=TemplateProcessor(TemplateRenderer(VariableSubstitutor(defaults))),
        )
