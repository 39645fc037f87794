"""Shared pytest fixtures for the scaffoldkit test suite.

Provides reusable fixtures for:
- A quiet Rich console and a plugin context writing to it
- Template directory factories
- Writing plugin modules (single file or directory) to a plugin dir
- A registry with validation disabled and a short timeout
"""

from __future__ import annotations

import io
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from scaffoldkit.config import RegistryConfig
from scaffoldkit.plugins import PluginContext, PluginRegistry


# ---------------------------------------------------------------------------
# Console & context
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_console() -> Console:
    """Console that writes into a buffer instead of the terminal."""
    return Console(file=io.StringIO(), width=120, force_terminal=False)


@pytest.fixture
def plugin_context(tmp_path: Path, quiet_console: Console) -> PluginContext:
    return PluginContext.create(
        console=quiet_console,
        config_file=tmp_path / "plugin-config.json",
    )


# ---------------------------------------------------------------------------
# Template directories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_template(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``make_template({"README.md.template": "# {{PROJECT_NAME}}"})``.

    Keys are paths relative to the template root; returns the root.
    """
    counter = {"n": 0}

    def factory(files: dict[str, str | bytes], name: str | None = None) -> Path:
        counter["n"] += 1
        root = tmp_path / "templates" / (name or f"template-{counter['n']}")
        root.mkdir(parents=True, exist_ok=True)
        for relative, content in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return factory


@pytest.fixture
def readme_template(make_template: Callable[..., Path]) -> Path:
    return make_template({"README.md.template": "# {{PROJECT_NAME}}\n"}, name="readme")


# ---------------------------------------------------------------------------
# Plugin sources
# ---------------------------------------------------------------------------

PLUGIN_SOURCE = '''\
"""Plugin used by the scaffoldkit test suite."""

import asyncio
import time
from pathlib import Path

from scaffoldkit.plugins import HealthCheckResult, Plugin, PluginMetadata, ProjectTemplate, ScaffoldResult


class SamplePlugin(Plugin):
    metadata = PluginMetadata(
        id="{plugin_id}",
        name="Sample plugin",
        version="{version}",
        description="Plugin generated for a test case",
        author="tests",
    )

    async def initialize(self, context):
        {initialize}

    def get_project_templates(self):
        return [
            ProjectTemplate(
                id=template_id,
                name="Sample template",
                description="Writes a README",
                template_path=Path(__file__).parent,
            )
            for template_id in {template_ids!r}
        ]

    async def generate_scaffold(self, template, options, context):
        {generate}

    async def cleanup(self):
        {cleanup}

    async def health_check(self, context):
        {health}


plugin = SamplePlugin()
'''

DEFAULT_BODIES = {
    "initialize": "context.logger.debug('sample ready')",
    "generate": (
        "target = Path(options.target_path)\n"
        "target.mkdir(parents=True, exist_ok=True)\n"
        "(target / 'README.md').write_text('# ' + options.project_name, encoding='utf-8')\n"
        "return ScaffoldResult(success=True, generated_files=['README.md'])"
    ),
    "cleanup": "return None",
    "health": "return HealthCheckResult(healthy=True, message='ok')",
}


def plugin_source(
    plugin_id: str = "sample",
    template_ids: tuple[str, ...] = ("sample-template",),
    *,
    version: str = "1.0.0",
    **bodies: str,
) -> str:
    """Source of a plugin module; ``bodies`` override method bodies by name."""
    merged = {**DEFAULT_BODIES, **bodies}
    indented = {
        key: textwrap.indent(value, " " * 8).lstrip() for key, value in merged.items()
    }
    return PLUGIN_SOURCE.format(
        plugin_id=plugin_id,
        version=version,
        template_ids=list(template_ids),
        **indented,
    )


@pytest.fixture
def plugin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def write_plugin(plugin_dir: Path) -> Callable[..., Path]:
    """Factory writing a plugin and returning the path to load.

    ``write_plugin("name", source)`` writes ``plugins/name.py``;
    ``directory=True`` writes ``plugins/name/plugin.py`` (plus ``readme``
    when given) and returns the directory.
    """

    def factory(
        name: str,
        source: str | None = None,
        *,
        directory: bool = False,
        readme: str | None = None,
    ) -> Path:
        content = source if source is not None else plugin_source(name)
        if not directory:
            path = plugin_dir / f"{name}.py"
            path.write_text(content, encoding="utf-8")
            return path
        root = plugin_dir / name
        root.mkdir(parents=True, exist_ok=True)
        (root / "plugin.py").write_text(content, encoding="utf-8")
        if readme is not None:
            (root / "README.md").write_text(readme, encoding="utf-8")
        return root

    return factory


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@pytest.fixture
def registry_config(plugin_dir: Path) -> RegistryConfig:
    return RegistryConfig(
        plugin_dir=plugin_dir,
        auto_load=False,
        timeout=2.0,
        health_check_timeout=1.0,
        enable_validation=False,
    )


@pytest.fixture
async def registry(registry_config: RegistryConfig, plugin_context: PluginContext):
    reg = PluginRegistry(registry_config, plugin_context)
    yield reg
    await reg.shutdown()


@pytest.fixture
def make_plugin_source() -> Callable[..., str]:
    """Returns :func:`plugin_source` for tests that need custom plugin bodies."""
    return plugin_source
