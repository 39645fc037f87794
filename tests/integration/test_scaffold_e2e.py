"""Integration tests for generating real projects from the bundled plugins.

These tests load the built-in plugins through the registry (with quality
validation on), generate projects into temporary directories and verify the
output with ``ProjectVerifier``.  No network access is required.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from scaffoldkit.builtin_plugins import BUILTIN_PLUGIN_DIR
from scaffoldkit.config import RegistryConfig
from scaffoldkit.plugins import PluginRegistry, ScaffoldOptions
from scaffoldkit.scaffolder import GenerationRequest, ProjectVerifier, ScaffoldEngine, TemplateRenderer

pytestmark = pytest.mark.integration


@pytest.fixture
async def builtin_registry(tmp_path, plugin_context):
    registry = PluginRegistry(RegistryConfig(plugin_dir=tmp_path / "plugins"), plugin_context)
    await registry.load_all(BUILTIN_PLUGIN_DIR)
    yield registry
    await registry.shutdown()


def _leftovers(root: Path) -> list[str]:
    return [
        p.relative_to(root).as_posix()
        for p in root.rglob("*")
        if p.is_file() and "{{" in p.read_text(encoding="utf-8", errors="replace")
    ]


class TestBuiltinPlugins:
    async def test_both_plugins_load_and_pass_validation(self, builtin_registry):
        ids = sorted(m.id for m in builtin_registry.get_loaded_plugins())
        assert ids == ["api-fastapi", "cli-python"]
        for plugin_id in ids:
            info = builtin_registry.get_plugin_info(plugin_id)
            assert info.active
            assert info.validation.valid, info.validation.issues

    async def test_health(self, builtin_registry):
        results = await builtin_registry.health_check()
        assert all(r.healthy for r in results.values())

    async def test_fastapi_project(self, builtin_registry, tmp_path, quiet_console):
        target = tmp_path / "shop-api"
        options = ScaffoldOptions(
            target_path=target,
            project_name="shop-api",
            template_id="api-fastapi",
            options={"database": "postgres", "include_docker": True, "port": 9000},
        )
        result = await builtin_registry.generate("api-fastapi", options)

        assert result.success, result.error
        assert "main.py" in result.generated_files
        assert "Dockerfile" in result.generated_files
        requirements = (target / "requirements.txt").read_text(encoding="utf-8")
        assert "asyncpg" in requirements
        assert "9000" in (target / "Dockerfile").read_text(encoding="utf-8")
        assert _leftovers(target) == []

        report = await ProjectVerifier(target, "api-fastapi", console=quiet_console).verify()
        assert report.valid, report.errors

    async def test_fastapi_without_optional_parts(self, builtin_registry, tmp_path):
        target = tmp_path / "plain"
        options = ScaffoldOptions(target_path=target, project_name="plain", template_id="api-fastapi")
        result = await builtin_registry.generate("api-fastapi", options)

        assert result.success
        assert not (target / "Dockerfile").exists()
        requirements = (target / "requirements.txt").read_text(encoding="utf-8")
        assert "asyncpg" not in requirements
        assert "aiosqlite" not in requirements

    async def test_fastapi_rejects_bad_option(self, builtin_registry, tmp_path):
        options = ScaffoldOptions(
            target_path=tmp_path / "bad",
            project_name="bad",
            template_id="api-fastapi",
            options={"database": "oracle"},
        )
        result = await builtin_registry.generate("api-fastapi", options)
        assert result.success is False
        assert "database" in result.error
        assert not (tmp_path / "bad").exists()

    async def test_cli_python_project(self, builtin_registry, tmp_path, quiet_console):
        target = tmp_path / "my-tool"
        options = ScaffoldOptions(
            target_path=target,
            project_name="My Tool",
            template_id="cli-python",
            options={"python_version": "3.11"},
        )
        result = await builtin_registry.generate("cli-python", options)

        assert result.success
        assert "src/my_tool/cli.py" in result.generated_files
        pyproject = (target / "pyproject.toml").read_text(encoding="utf-8")
        assert 'my-tool = "my_tool.cli:main"' in pyproject
        assert 'requires-python = ">=3.11"' in pyproject
        cli_source = (target / "src" / "my_tool" / "cli.py").read_text(encoding="utf-8")
        assert 'prog="my-tool"' in cli_source
        assert "from my_tool import __version__" in cli_source
        assert result.warnings == ["Package name normalised to 'my_tool'"]
        assert _leftovers(target) == []

        report = await ProjectVerifier(target, "cli-python", console=quiet_console).verify()
        assert report.valid, report.errors


class TestEngineEndToEnd:
    async def test_readme_rendered(self, tmp_path, readme_template):
        target = tmp_path / "out"
        request = GenerationRequest(target_path=target, project_name="Foo")
        await ScaffoldEngine(tmp_path).generate_project(readme_template, request)
        assert (target / "README.md").read_text(encoding="utf-8") == "# Foo\n"

    async def test_renderer_only(self, tmp_path, readme_template):
        await TemplateRenderer().render_directory(readme_template, tmp_path / "out", {"PROJECT_NAME": "Foo"})
        assert (tmp_path / "out" / "README.md").read_text(encoding="utf-8") == "# Foo\n"
