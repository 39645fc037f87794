"""Template-directory project generation without plugins.

Takes a template directory and a ``GenerationRequest`` and renders a project
into the request's target path.  Optional add-ons (project-management
documents, architecture notes, tool scripts, an editor rules file) are
pulled from ``<source_dir>/templates``.  By default all work runs inside a
``ScaffoldTransaction`` so a failure leaves nothing behind.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from scaffoldkit.utils import print_success, print_warning

from .substitution import VariableSubstitutor, canonical_variables
from .templates import TemplateRenderer
from .transaction import (
    CommonSteps,
    GenerationState,
    ScaffoldTransaction,
    TransactionStep,
    remove_path,
)

PROJECT_MANAGEMENT_FILES = ("PROGRESS.md", "ROADMAP.md", "CHANGELOG.md")
POST_PROCESS_REMOVALS = (".git", "node_modules")

# ---------------------------------------------------------------------------
# Per-project-type defaults
# ---------------------------------------------------------------------------

PROJECT_TYPE_DEFAULTS: dict[str, dict[str, str]] = {
    "api-fastapi": {"LANGUAGE": "Python", "FRAMEWORK": "FastAPI", "BUILD_TOOL": "pip"},
    "cli-python": {"LANGUAGE": "Python", "FRAMEWORK": "argparse", "BUILD_TOOL": "pip"},
    "cli-rust": {"LANGUAGE": "Rust", "FRAMEWORK": "Clap", "BUILD_TOOL": "Cargo"},
    "web-nextjs": {"LANGUAGE": "TypeScript", "FRAMEWORK": "Next.js", "BUILD_TOOL": "npm"},
    "mcp-server": {"LANGUAGE": "TypeScript", "FRAMEWORK": "Node.js", "BUILD_TOOL": "npm"},
}


# ---------------------------------------------------------------------------
# Request / result models
# ---------------------------------------------------------------------------


class GenerationRequest(BaseModel):
    """Pydantic model describing the project to generate."""

    target_path: Path
    project_name: str = Field(..., min_length=1)
    project_type: str = Field(default="custom")
    description: str | None = Field(default=None)
    author: str | None = Field(default=None)
    include_project_management: bool = Field(default=False)
    include_architecture: bool = Field(default=False)
    include_tools: bool = Field(default=False)
    custom_rules: bool = Field(default=False, description="Write a .cursorrules file")
    skip_optional: bool = Field(default=False, description="Disable every optional add-on")
    variables: dict[str, Any] = Field(default_factory=dict)


@dataclass
class GenerationResult:
    generated_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    transaction: ScaffoldTransaction | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ScaffoldEngine:
    """Renders one template directory into a new project.

    The work is expressed as a list of ``TransactionStep``s: create the
    target, render the template, the enabled add-ons, then post-processing.
    With ``use_transaction`` the steps run in a ``ScaffoldTransaction``;
    otherwise they run one after the other with no rollback.
    """

    def __init__(
        self,
        source_dir: str | Path | None = None,
        *,
        use_transaction: bool = True,
        verbose: bool = False,
    ) -> None:
        self.source_dir = Path(source_dir) if source_dir is not None else Path.cwd()
        self.use_transaction = use_transaction
        self.verbose = verbose
        self.renderer = TemplateRenderer(VariableSubstitutor())

    # -- Public API --------------------------------------------------------

    async def generate_project(
        self,
        template_path: str | Path,
        request: GenerationRequest,
        *,
        extra_steps: Iterable[TransactionStep] = (),
    ) -> GenerationResult:
        """Generate a project from *template_path*.

        *extra_steps* run after post-processing, inside the same transaction,
        so a failing check there (e.g. verification) rolls the project back.

        Returns:
            The result with paths relative to the target.

        Raises:
            TransactionStepError: With ``use_transaction``, after rollback.
            TemplateRenderError, OSError: Without it, straight from the
                failing step; partial output is left in place.
        """
        target = Path(request.target_path).resolve()
        result = GenerationResult()
        if self.use_transaction:
            result.transaction = ScaffoldTransaction(target, verbose=self.verbose)
            state = result.transaction.state
        else:
            state = GenerationState()
        steps = self.build_steps(Path(template_path), target, request, result, state)
        steps.extend(extra_steps)

        if result.transaction is not None:
            for step in steps:
                result.transaction.add_step(step)
            try:
                await result.transaction.execute()
            except Exception as exc:
                result.errors.append(str(exc))
                raise
        else:
            for step in steps:
                try:
                    await step.execute()
                except Exception as exc:
                    result.errors.append(f"{step.name}: {exc}")
                    raise

        result.generated_files = await asyncio.to_thread(_existing_relative, state, target)
        for warning in result.warnings:
            print_warning(warning)
        print_success(f"Generated {len(result.generated_files)} file(s) in {target}")
        return result

    def build_context(self, request: GenerationRequest) -> dict[str, Any]:
        """Variables for this request: canonical keys, type defaults, then caller values."""
        context: dict[str, Any] = {"PROJECT_TYPE": request.project_type}
        context.update(PROJECT_TYPE_DEFAULTS.get(request.project_type, {}))
        context.update(
            canonical_variables(
                request.project_name,
                description=request.description,
                author=request.author,
            )
        )
        context.update(request.variables)
        return context

    def build_steps(
        self,
        template_path: Path,
        target: Path,
        request: GenerationRequest,
        result: GenerationResult,
        state: GenerationState,
    ) -> list[TransactionStep]:
        context = self.build_context(request)
        steps = [
            CommonSteps.create_directory(target, state),
            CommonSteps.render_template(self.renderer, template_path, target, context, state),
        ]

        if not request.skip_optional:
            if request.include_project_management:
                steps.append(
                    TransactionStep(
                        name="Add project management files",
                        description=", ".join(PROJECT_MANAGEMENT_FILES),
                        execute=lambda: self._add_project_management(target, context, result, state),
                    )
                )
            if request.include_architecture:
                steps.append(
                    TransactionStep(
                        name="Add architecture documents",
                        description="docs/architecture/",
                        execute=lambda: self._add_tree(
                            "architectures", target / "docs" / "architecture", context, result, state
                        ),
                    )
                )
            if request.include_tools:
                steps.append(
                    TransactionStep(
                        name="Add tool scripts",
                        description="tools/",
                        execute=lambda: self._add_tree("tools", target / "tools", context, result, state),
                    )
                )
            if request.custom_rules:
                steps.append(
                    CommonSteps.create_file(target / ".cursorrules", render_rules(context), state)
                )

        steps.append(
            TransactionStep(
                name="Post-process",
                description="Remove " + ", ".join(POST_PROCESS_REMOVALS),
                execute=lambda: self._post_process(target),
            )
        )
        return steps

    # -- Add-ons -----------------------------------------------------------

    async def _add_project_management(
        self,
        target: Path,
        context: dict[str, Any],
        result: GenerationResult,
        state: GenerationState,
    ) -> None:
        source = self.source_dir / "templates" / "project-management"
        for name in PROJECT_MANAGEMENT_FILES:
            candidates = [source / name, source / f"{name}.template", source / f"{name}.j2"]
            template = next((c for c in candidates if c.is_file()), None)
            if template is None:
                result.warnings.append(f"Project management template not found: {name}")
                continue
            state.add_generated_file(target / name)
            await self.renderer.render_file(template, target / name, context)

    async def _add_tree(
        self,
        name: str,
        destination: Path,
        context: dict[str, Any],
        result: GenerationResult,
        state: GenerationState,
    ) -> None:
        source = self.source_dir / "templates" / name
        if not source.is_dir():
            result.warnings.append(f"Optional template directory not found: {source}")
            return
        await self.renderer.render_directory(source, destination, context, state=state)

    @staticmethod
    async def _post_process(target: Path) -> None:
        for name in POST_PROCESS_REMOVALS:
            path = target / name
            if path.exists() and not await remove_path(path):
                raise OSError(f"Could not remove {path}")


def render_rules(context: dict[str, Any]) -> str:
    """Text of the generated ``.cursorrules`` file."""
    return (
        f"# Cursor Rules - {context['PROJECT_NAME']}\n"
        "\n"
        "## Project\n"
        f"- Name: {context['PROJECT_NAME']}\n"
        f"- Type: {context.get('PROJECT_TYPE', 'custom')}\n"
        f"- Language: {context.get('LANGUAGE', 'N/A')}\n"
        f"- Framework: {context.get('FRAMEWORK', 'N/A')}\n"
        "\n"
        "## Guidelines\n"
        "- Write a failing test before the implementation\n"
        "- Keep documentation in step with the code\n"
        "- Every change goes through review\n"
        "\n"
        "## Before marking work done\n"
        "- [ ] The build succeeds\n"
        "- [ ] All tests pass\n"
        "- [ ] Linting passes\n"
        "- [ ] Documentation is updated\n"
    )


def _existing_relative(state: GenerationState, target: Path) -> list[str]:
    files = []
    for path in state.generated_files:
        if path.is_file():
            try:
                files.append(path.relative_to(target).as_posix())
            except ValueError:
                files.append(str(path))
    return sorted(set(files))
