"""Post-generation checks on a rendered project.

Confirms that the files a project type needs exist and that no
``{{KEY}}`` placeholders survived rendering.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, Field
from rich.console import Console

from scaffoldkit.utils import console as default_console

from .substitution import TOKEN_PATTERN

# Jinja expressions that rendered back verbatim, e.g. ``{{ name }}``.
SPACED_TOKEN_PATTERN = re.compile(r"\{\{\s+[A-Za-z_][A-Za-z0-9_.]*\s+\}\}")
# Placeholders meant for the user to fill in by hand.
USER_PLACEHOLDER_PATTERN = re.compile(r"\[YOUR_[A-Z0-9_]+\]")

IGNORED_DIRS = frozenset(
    {".git", "node_modules", "dist", "target", "__pycache__", ".venv", "venv", ".mypy_cache"}
)


class FileRequirement(BaseModel):
    path: str
    required: bool = True
    description: str = ""


class VerificationResult(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    checked_files: int = 0
    missing_files: list[str] = Field(default_factory=list)
    leftover_tokens: list[str] = Field(default_factory=list)


class VerificationError(Exception):
    """Raised by :meth:`ProjectVerifier.check` when a project fails verification."""

    def __init__(self, result: VerificationResult) -> None:
        self.result = result
        super().__init__("Generated project failed verification: " + "; ".join(result.errors))


COMMON_REQUIREMENTS = [FileRequirement(path="README.md", description="Project overview")]

PROJECT_REQUIREMENTS: dict[str, list[FileRequirement]] = {
    "api-fastapi": [
        FileRequirement(path="requirements.txt", description="Python dependencies"),
        FileRequirement(path="main.py", description="FastAPI entry point"),
        FileRequirement(path="app/__init__.py", required=False, description="Application package"),
    ],
    "cli-python": [
        FileRequirement(path="pyproject.toml", description="Packaging metadata"),
        FileRequirement(path=".gitignore", required=False, description="Git ignore rules"),
    ],
    "cli-rust": [
        FileRequirement(path="Cargo.toml", description="Rust package manifest"),
        FileRequirement(path="src/main.rs", description="Rust entry point"),
    ],
    "web-nextjs": [
        FileRequirement(path="package.json", description="Node.js package manifest"),
        FileRequirement(path="tsconfig.json", description="TypeScript settings"),
    ],
    "mcp-server": [
        FileRequirement(path="package.json", description="Node.js package manifest"),
        FileRequirement(path="src/index.ts", description="MCP server entry point"),
    ],
}

# (relative file, text that must appear, message when missing)
CONTENT_CHECKS: dict[str, list[tuple[str, str, str]]] = {
    "api-fastapi": [("main.py", "FastAPI", "main.py does not import FastAPI")],
    "cli-python": [("pyproject.toml", "[project]", "pyproject.toml has no [project] table")],
    "cli-rust": [("src/main.rs", "fn main()", "src/main.rs has no main function")],
}


def requirements_for(project_type: str | None) -> list[FileRequirement]:
    return COMMON_REQUIREMENTS + PROJECT_REQUIREMENTS.get(project_type or "", [])


class ProjectVerifier:
    """Checks one generated project directory."""

    def __init__(
        self,
        target_path: str | Path,
        project_type: str | None = None,
        *,
        requirements: Iterable[FileRequirement] | None = None,
        console: Console | None = None,
    ) -> None:
        self.target_path = Path(target_path)
        self.project_type = project_type
        self.requirements = (
            list(requirements) if requirements is not None else requirements_for(project_type)
        )
        self.console = console or default_console

    async def verify(self) -> VerificationResult:
        result = VerificationResult()
        self.console.print(f"[dim]Verifying {self.target_path}...[/dim]")

        if not self.target_path.is_dir():
            result.errors.append(f"Target directory does not exist: {self.target_path}")
            result.valid = False
            return result

        await asyncio.to_thread(self._check_required_files, result)
        await asyncio.to_thread(self._check_contents, result)
        await asyncio.to_thread(self._check_leftover_tokens, result)

        result.valid = not result.errors
        style = "green" if result.valid else "red"
        self.console.print(
            f"[{style}]Verification {'passed' if result.valid else 'failed'} "
            f"({len(result.errors)} error(s), {len(result.warnings)} warning(s))[/{style}]"
        )
        return result

    def _check_required_files(self, result: VerificationResult) -> None:
        for requirement in self.requirements:
            result.checked_files += 1
            if (self.target_path / requirement.path).exists():
                continue
            label = f"{requirement.path} ({requirement.description})" if requirement.description else requirement.path
            if requirement.required:
                result.errors.append(f"Required file missing: {label}")
                result.missing_files.append(requirement.path)
            else:
                result.warnings.append(f"Recommended file missing: {label}")

    def _check_contents(self, result: VerificationResult) -> None:
        for relative, needle, message in CONTENT_CHECKS.get(self.project_type or "", []):
            path = self.target_path / relative
            if not path.is_file():
                continue
            if needle not in path.read_text(encoding="utf-8", errors="replace"):
                result.warnings.append(message)

    def _check_leftover_tokens(self, result: VerificationResult) -> None:
        for path in sorted(self._text_files()):
            try:
                content = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            relative = path.relative_to(self.target_path).as_posix()

            for token in dict.fromkeys(m.group(0) for m in TOKEN_PATTERN.finditer(content)):
                result.leftover_tokens.append(f"{relative}: {token}")
                result.errors.append(f"Unreplaced template variable: {relative}: {token}")
            for token in dict.fromkeys(SPACED_TOKEN_PATTERN.findall(content)):
                result.leftover_tokens.append(f"{relative}: {token}")
                result.warnings.append(f"Possible unrendered expression: {relative}: {token}")
            for token in dict.fromkeys(USER_PLACEHOLDER_PATTERN.findall(content)):
                result.warnings.append(f"Placeholder left for the user to fill in: {relative}: {token}")

    def _text_files(self) -> Iterable[Path]:
        for path in self.target_path.rglob("*"):
            relative_parts = path.relative_to(self.target_path).parts
            if any(part in IGNORED_DIRS for part in relative_parts):
                continue
            if path.is_file():
                yield path

    async def check(self) -> VerificationResult:
        """Like :meth:`verify`, but raise :class:`VerificationError` when invalid."""
        result = await self.verify()
        if not result.valid:
            raise VerificationError(result)
        return result
