"""scaffoldkit command-line front end.

Loads the bundled plugins plus any user plugins, then generates a project
from the chosen template inside a :class:`ScaffoldTransaction`: create the
target directory, run the plugin, verify the output.  A failure in any of
the three steps rolls the target back.

``--no-plugins`` skips the registry entirely and renders ``--template-path``
with the plugin-free :class:`ScaffoldEngine`.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from scaffoldkit import __version__
from scaffoldkit.builtin_plugins import BUILTIN_PLUGIN_DIR
from scaffoldkit.config import Config
from scaffoldkit.plugins import (
    OptionType,
    PluginContext,
    PluginError,
    PluginExecutionError,
    PluginRegistry,
    ProjectTemplate,
    ScaffoldOptions,
    ScaffoldResult,
)
from scaffoldkit.scaffolder import (
    CommonSteps,
    GenerationRequest,
    ProjectVerifier,
    ScaffoldEngine,
    ScaffoldTransaction,
    TemplateRenderError,
    TransactionStep,
    TransactionStepError,
)
from scaffoldkit.scaffolder.transaction import GenerationState, remove_path
from scaffoldkit.utils import (
    console,
    is_empty_dir,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
    sanitize_name,
)

_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n"}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scaffoldkit",
        description="scaffoldkit -- generate projects from plugin-provided templates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  scaffoldkit --list-templates\n"
            "  scaffoldkit --project-name my-api --project-type api-fastapi --option port=9000\n"
            "  scaffoldkit --project-name tool --template-id cli-python --target-path ./tool --force\n"
            "  scaffoldkit --no-plugins --template-path ./my-template --project-name demo\n"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project-name", default=None, help="Name of the project to generate")
    parser.add_argument(
        "--project-type",
        "--template-id",
        dest="project_type",
        default=None,
        help="Template id to generate from (see --list-templates)",
    )
    parser.add_argument(
        "--target-path",
        default=None,
        help="Output directory (default: ./<project-name>)",
    )
    parser.add_argument("--description", default=None, help="Project description")
    parser.add_argument("--author", default=None, help="Project author")
    parser.add_argument(
        "--option",
        dest="options",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Template option (repeatable)",
    )
    parser.add_argument(
        "--skip-optional",
        action="store_true",
        help="Skip optional add-ons (project management, architecture, tools, rules)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Remove an existing target directory before generating",
    )
    parser.add_argument(
        "--plugin-dir",
        default=None,
        help="Directory with additional plugins (default: $SCAFFOLD_PLUGIN_DIR or ./plugins)",
    )
    parser.add_argument("--list-templates", action="store_true", help="List available templates and exit")
    parser.add_argument("--health", action="store_true", help="Run plugin health checks and exit")
    parser.add_argument(
        "--no-plugins",
        action="store_true",
        help="Render --template-path directly without loading plugins",
    )
    parser.add_argument("--template-path", default=None, help="Template directory for --no-plugins")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose step output")
    return parser


def parse_option_pairs(pairs: list[str]) -> dict[str, str]:
    """``["a=1", "b=x=y"]`` -> ``{"a": "1", "b": "x=y"}``.

    Raises:
        ValueError: For an entry without ``=`` or with an empty key.
    """
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid --option '{pair}', expected KEY=VALUE")
        parsed[key.strip()] = value
    return parsed


def coerce_options(template: ProjectTemplate, raw: dict[str, str]) -> dict[str, Any]:
    """Convert string option values to the types the template declares.

    Values that cannot be converted are passed through unchanged so that
    ``validate_options`` reports them.  Unknown keys are kept as strings.
    """
    declared = {option.name: option for option in template.config_options}
    coerced: dict[str, Any] = {}
    for key, value in raw.items():
        option = declared.get(key)
        if option is None:
            coerced[key] = value
        elif option.type is OptionType.BOOLEAN:
            lowered = value.strip().lower()
            coerced[key] = True if lowered in _TRUE else False if lowered in _FALSE else value
        elif option.type is OptionType.NUMBER:
            coerced[key] = _to_number(value)
        elif option.type is OptionType.MULTISELECT:
            coerced[key] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            coerced[key] = value
    return coerced


def _to_number(value: str) -> int | float | str:
    for kind in (int, float):
        try:
            return kind(value)
        except ValueError:
            continue
    return value


# ---------------------------------------------------------------------------
# Target handling
# ---------------------------------------------------------------------------


async def prepare_target(target: Path, force: bool) -> None:
    """Make sure *target* can be generated into.

    Raises:
        FileExistsError: When *target* is a file, or a non-empty directory
            and *force* is not set.
        OSError: When ``--force`` could not remove the existing target.
    """
    if not target.exists():
        return
    if force:
        print_warning(f"Removing existing target: {target}")
        if not await remove_path(target):
            raise OSError(f"Could not remove existing target {target}")
        return
    if not target.is_dir():
        raise FileExistsError(f"Target path exists and is not a directory: {target}")
    if not await asyncio.to_thread(is_empty_dir, target):
        raise FileExistsError(f"Target directory is not empty: {target} (use --force to replace it)")


def _top_level_entries(target: Path) -> set[Path]:
    if not target.is_dir():
        return set()
    return set(target.iterdir())


# ---------------------------------------------------------------------------
# Registry commands
# ---------------------------------------------------------------------------


async def open_registry(config: Config) -> PluginRegistry:
    """Registry with the bundled plugins and, when present, the user plugin dir.

    Plugin file access is confined to the plugin directories and the
    template roots; the generation target is allowed once it is known.
    """
    context = PluginContext.create(
        config,
        console=console,
        allowed_roots=[BUILTIN_PLUGIN_DIR, config.registry.plugin_dir],
    )
    registry = PluginRegistry.from_config(config, context)
    await registry.load_all(BUILTIN_PLUGIN_DIR)
    if config.registry.plugin_dir.is_dir():
        await registry.initialize()
    for template in registry.get_available_templates():
        context.file_system.allow(template.template_path)
    return registry


def show_templates(registry: PluginRegistry) -> None:
    templates = sorted(registry.get_available_templates(), key=lambda t: t.id)
    if not templates:
        print_warning("No templates available")
        return
    rows = [
        (t.id, registry.get_template_owner(t.id) or "-", t.category.value, t.description)
        for t in templates
    ]
    print_summary_table(rows, ["Template", "Plugin", "Category", "Description"], title="Templates")


async def show_health(registry: PluginRegistry) -> bool:
    results = await registry.health_check()
    if not results:
        print_warning("No plugins loaded")
        return True
    rows = [
        (pid, "[green]yes[/green]" if r.healthy else "[red]no[/red]", r.message or "")
        for pid, r in sorted(results.items())
    ]
    print_summary_table(rows, ["Plugin", "Healthy", "Message"], title="Plugin health")
    return all(r.healthy for r in results.values())


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def verification_step(target: Path, project_type: str | None) -> TransactionStep:
    """Final transaction step: fail (and so roll back) when verification fails."""

    async def verify() -> None:
        report = await ProjectVerifier(target, project_type).check()
        for warning in report.warnings:
            print_warning(warning)

    return TransactionStep(
        name="Verify output",
        description="Check required files and placeholders",
        execute=verify,
    )


async def scaffold_with_plugin(
    registry: PluginRegistry,
    template: ProjectTemplate,
    options: ScaffoldOptions,
    *,
    verbose: bool = False,
) -> ScaffoldResult:
    """Run the three-step plugin transaction and return the plugin's result.

    Raises:
        TransactionStepError: After rollback, wrapping the step failure.
    """
    target = Path(options.target_path)
    transaction = ScaffoldTransaction(target, verbose=verbose)
    state = transaction.state
    outcome: dict[str, ScaffoldResult] = {}

    async def generate() -> None:
        before = await asyncio.to_thread(_top_level_entries, target)
        try:
            result = await registry.generate(template.id, options)
        finally:
            await asyncio.to_thread(_record_new_entries, target, before, state)
        if not result.success:
            raise PluginExecutionError(
                result.error or "Plugin reported an unsuccessful result",
                registry.get_template_owner(template.id) or "unknown",
            )
        outcome["result"] = result

    transaction.add_step(CommonSteps.create_directory(target, state))
    transaction.add_step(
        TransactionStep(
            name="Generate scaffold",
            description=f"Run template '{template.id}'",
            execute=generate,
        )
    )
    transaction.add_step(verification_step(target, template.id))
    await transaction.execute()
    return outcome["result"]


def _record_new_entries(target: Path, before: set[Path], state: GenerationState) -> None:
    for path in sorted(_top_level_entries(target) - before):
        if path.is_dir() and not path.is_symlink():
            state.add_generated_directory(path)
        else:
            state.add_generated_file(path)


def report_result(result: ScaffoldResult, target: Path) -> None:
    for warning in result.warnings:
        print_warning(warning)
    print_success(f"Generated {len(result.generated_files)} file(s) in {target}")
    if result.next_steps:
        rows = [
            (str(index), step.title, step.command or "", "yes" if step.required else "")
            for index, step in enumerate(result.next_steps, start=1)
        ]
        print_summary_table(rows, ["#", "Next step", "Command", "Required"], title="Next steps")


async def run_plugins(args: argparse.Namespace, config: Config) -> int:
    registry = await open_registry(config)
    try:
        if args.list_templates:
            show_templates(registry)
            return 0
        if args.health:
            return 0 if await show_health(registry) else 1

        if not args.project_name or not args.project_type:
            print_error("--project-name and --project-type are required to generate a project")
            return 1

        template = registry.get_template(args.project_type)
        if template is None:
            print_error(f"Unknown template: {args.project_type}")
            show_templates(registry)
            return 1

        values = coerce_options(template, parse_option_pairs(args.options))
        problems = template.validate_options(values)
        if problems:
            for problem in problems:
                print_error(problem)
            return 1

        target = Path(args.target_path or sanitize_name(args.project_name)).resolve()
        await prepare_target(target, args.force)
        registry.context.file_system.allow(target)

        options = ScaffoldOptions(
            target_path=target,
            project_name=args.project_name,
            template_id=template.id,
            options=values,
        )
        result = await scaffold_with_plugin(registry, template, options, verbose=args.verbose)
        report_result(result, target)
        return 0
    finally:
        await registry.shutdown()


async def run_engine(args: argparse.Namespace) -> int:
    if not args.template_path or not args.project_name:
        print_error("--no-plugins needs --template-path and --project-name")
        return 1

    target = Path(args.target_path or sanitize_name(args.project_name)).resolve()
    await prepare_target(target, args.force)

    include = not args.skip_optional
    request = GenerationRequest(
        target_path=target,
        project_name=args.project_name,
        project_type=args.project_type or "custom",
        description=args.description,
        author=args.author,
        include_project_management=include,
        include_architecture=include,
        include_tools=include,
        custom_rules=include,
        skip_optional=args.skip_optional,
        variables=parse_option_pairs(args.options),
    )
    engine = ScaffoldEngine(Path.cwd(), verbose=args.verbose)
    await engine.generate_project(
        Path(args.template_path),
        request,
        extra_steps=[verification_step(target, request.project_type)],
    )
    return 0


async def run(args: argparse.Namespace) -> int:
    config = Config.from_env()
    if args.plugin_dir:
        config.registry.plugin_dir = Path(args.plugin_dir)
    if args.verbose:
        config.log_level = "debug"

    try:
        if args.no_plugins:
            return await run_engine(args)
        return await run_plugins(args, config)
    except TransactionStepError as exc:
        print_error(f"Generation failed at step {exc.step_index} ({exc.step_name}): {exc.cause}")
        if not exc.rollback.clean:
            for warning in exc.rollback.warnings:
                print_warning(warning)
        return 1
    except (PluginError, TemplateRenderError, ValidationError, ValueError, OSError) as exc:
        print_error(f"Error: {exc}")
        return 1


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for ``scaffoldkit`` and ``python -m scaffoldkit.cli``."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
