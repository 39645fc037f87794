"""FastAPI service generator.

Scaffolds a small FastAPI application: an ``app`` package with a health
router, a ``main.py`` entry point, pinned requirements and a pytest suite
using FastAPI's test client.  An optional Dockerfile is added when the
``include_docker`` option is set, and the ``database`` option selects the
driver listed in ``requirements.txt``.
"""

from __future__ import annotations

from pathlib import Path

from scaffoldkit.plugins import (
    ConfigChoice,
    ConfigOption,
    HealthCheckResult,
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

TEMPLATE_ROOT = Path(__file__).resolve().parent / "templates"

DATABASE_DRIVERS = {
    "none": "",
    "sqlite": "aiosqlite>=0.20",
    "postgres": "asyncpg>=0.29",
}


class FastAPIPlugin(Plugin):
    metadata = PluginMetadata(
        id="api-fastapi",
        name="FastAPI service",
        version="1.0.0",
        description="Generates a FastAPI REST service with tests and optional Docker support",
        author="scaffoldkit",
        license="MIT",
        tags=frozenset({"api", "python", "framework"}),
        minimum_kit_version="1.0.0",
    )

    def __init__(self) -> None:
        self._context: PluginContext | None = None

    async def initialize(self, context: PluginContext) -> None:
        self._context = context
        context.logger.debug("FastAPI plugin ready", templates=str(TEMPLATE_ROOT))

    def get_project_templates(self) -> list[ProjectTemplate]:
        return [
            ProjectTemplate(
                id="api-fastapi",
                name="FastAPI REST API",
                description="Async REST API built on FastAPI and uvicorn",
                category=TemplateCategory.API,
                template_path=TEMPLATE_ROOT / "api-fastapi",
                requirements=[
                    TemplateRequirement(
                        type=RequirementType.RUNTIME,
                        name="python",
                        version_range=">=3.10",
                        install_instructions="Install CPython 3.10 or newer",
                    ),
                ],
                config_options=[
                    ConfigOption(
                        name="database",
                        type=OptionType.SELECT,
                        description="Database driver to include",
                        default_value="none",
                        choices=[
                            ConfigChoice(value="none", label="No database"),
                            ConfigChoice(value="sqlite", label="SQLite (aiosqlite)"),
                            ConfigChoice(value="postgres", label="PostgreSQL (asyncpg)"),
                        ],
                    ),
                    ConfigOption(
                        name="include_docker",
                        type=OptionType.BOOLEAN,
                        description="Add a Dockerfile",
                        default_value=False,
                    ),
                    ConfigOption(
                        name="port",
                        type=OptionType.NUMBER,
                        description="Port uvicorn listens on",
                        default_value=8000,
                        validation=ValidationRule(min=1, max=65535),
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

        database = options.options.get("database", "none")
        port = options.options.get("port", 8000)
        variables = {
            "PROJECT_NAME": options.project_name,
            "DATABASE": database,
            "DATABASE_DRIVER": DATABASE_DRIVERS.get(database, ""),
            "PORT": port,
        }

        target = Path(options.target_path)
        processor = context.template_processor
        written = await processor.process_template_directory(template.template_path, target, variables)
        if options.options.get("include_docker"):
            written += await processor.process_template_directory(
                TEMPLATE_ROOT / "docker", target, variables
            )

        context.logger.info("FastAPI project generated", files=len(written), target=str(target))
        return ScaffoldResult(
            success=True,
            generated_files=sorted(p.relative_to(target).as_posix() for p in written),
            next_steps=[
                NextStep(
                    title="Install dependencies",
                    command="pip install -r requirements.txt",
                    required=True,
                ),
                NextStep(title="Run the tests", command="pytest"),
                NextStep(title="Start the server", command=f"uvicorn main:app --reload --port {port}"),
            ],
        )

    async def health_check(self, context: PluginContext) -> HealthCheckResult:
        template_dir = TEMPLATE_ROOT / "api-fastapi"
        healthy = template_dir.is_dir()
        return HealthCheckResult(
            healthy=healthy,
            message=None if healthy else f"Template directory missing: {template_dir}",
            details={"template_dir": str(template_dir)},
        )


plugin = FastAPIPlugin()
