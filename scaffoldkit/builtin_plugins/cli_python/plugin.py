"""Python command-line tool generator.

Scaffolds an installable ``src/`` layout package with an argparse entry
point, a console script declared in ``pyproject.toml`` and a pytest suite.
The package name is derived from the project name; the ``command`` option
overrides the console script name and ``python_version`` sets the minimum
interpreter.
"""

from __future__ import annotations

import re
from pathlib import Path

from scaffoldkit.plugins import (
    ConfigChoice,
    ConfigOption,
    NextStep,
    OptionType,
    Plugin,
    PluginContext,
    PluginMetadata,
    ProjectTemplate,
    RequirementType,
    ScaffoldOptions,
    ScaffoldResult,
    TemplateCategory,
    TemplateRequirement,
    ValidationRule,
)
from scaffoldkit.utils import sanitize_name

TEMPLATE_ROOT = Path(__file__).resolve().parent / "templates"


def package_name(project_name: str) -> str:
    """Import-safe package name: ``"My Tool"`` -> ``"my_tool"``."""
    name = sanitize_name(project_name).replace("-", "_")
    name = re.sub(r"^[0-9_]+", "", name)
    return name or "app"


class PythonCLIPlugin(Plugin):
    metadata = PluginMetadata(
        id="cli-python",
        name="Python CLI",
        version="1.0.0",
        description="Generates an installable Python command-line tool with tests",
        author="scaffoldkit",
        license="MIT",
        tags=frozenset({"cli", "python", "tool"}),
        minimum_kit_version="1.0.0",
    )

    # Plain (non-async) hooks are run in a worker thread by the registry.
    def initialize(self, context: PluginContext) -> None:
        context.logger.debug("Python CLI plugin ready")

    def get_project_templates(self) -> list[ProjectTemplate]:
        return [
            ProjectTemplate(
                id="cli-python",
                name="Python CLI tool",
                description="argparse command-line tool packaged with pyproject.toml",
                category=TemplateCategory.CLI,
                template_path=TEMPLATE_ROOT / "cli-python",
                requirements=[
                    TemplateRequirement(
                        type=RequirementType.RUNTIME, name="python", version_range=">=3.10"
                    ),
                    TemplateRequirement(type=RequirementType.TOOL, name="pip", required=False),
                ],
                config_options=[
                    ConfigOption(
                        name="command",
                        description="Console script name (defaults to the project name)",
                        validation=ValidationRule(pattern=r"^[a-z][a-z0-9-]*$", max=40),
                    ),
                    ConfigOption(
                        name="python_version",
                        type=OptionType.SELECT,
                        description="Minimum supported Python version",
                        default_value="3.10",
                        choices=[
                            ConfigChoice(value="3.10", label="Python 3.10"),
                            ConfigChoice(value="3.11", label="Python 3.11"),
                            ConfigChoice(value="3.12", label="Python 3.12"),
                        ],
                    ),
                ],
            )
        ]

    async def generate_scaffold(
        self,
        template: ProjectTemplate,
        options: ScaffoldOptions,
        context: PluginContext,
    ) -> ScaffoldResult:
        errors = template.validate_options(options.options)
        if errors:
            return ScaffoldResult(success=False, error="; ".join(errors))

        package = package_name(options.project_name)
        command = options.options.get("command") or sanitize_name(options.project_name)
        variables = {
            "PROJECT_NAME": options.project_name,
            "PACKAGE_NAME": package,
            "COMMAND_NAME": command,
            "PYTHON_VERSION": options.options.get("python_version", "3.10"),
        }

        target = Path(options.target_path)
        written = await context.template_processor.process_template_directory(
            template.template_path, target, variables
        )
        context.logger.info("Python CLI project generated", files=len(written), package=package)

        warnings = []
        if package != options.project_name:
            warnings.append(f"Package name normalised to '{package}'")

        return ScaffoldResult(
            success=True,
            generated_files=sorted(p.relative_to(target).as_posix() for p in written),
            warnings=warnings,
            next_steps=[
                NextStep(title="Install in editable mode", command="pip install -e .[test]", required=True),
                NextStep(title="Run the tests", command="pytest"),
                NextStep(title="Try the command", command=f"{command} --help"),
            ],
        )


def create_plugin() -> PythonCLIPlugin:
    return PythonCLIPlugin()
