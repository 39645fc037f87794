"""Template directory rendering for project scaffolding.

Provides the TemplateRenderer class which materialises one template
directory into a target directory.  File names and file contents go through
``{{KEY}}`` substitution; files ending in ``.j2`` are rendered with Jinja2
instead, with the same variables as context.  Marker suffixes (``.template``
and ``.j2``) are stripped from output names.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, TemplateError, Undefined, select_autoescape

from scaffoldkit.utils import make_dirs

from .substitution import VariableSubstitutor

if TYPE_CHECKING:
    from .transaction import GenerationState

TEMPLATE_SUFFIX = ".template"
JINJA_SUFFIX = ".j2"
MARKER_SUFFIXES = (TEMPLATE_SUFFIX, JINJA_SUFFIX)


class TemplateRenderError(Exception):
    """Raised when a template entry cannot be read, rendered or written."""

    def __init__(self, path: str | Path, message: str) -> None:
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class _VerbatimUndefined(Undefined):
    """Renders an unknown name back as ``{{ name }}`` instead of ``""``."""

    def __str__(self) -> str:
        return "{{ %s }}" % (self._undefined_name or "")


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders template directories for project scaffolding.

    Entries are processed in sorted order so two renders with the same
    variables produce byte-identical trees.  Files that are not valid UTF-8
    are copied unchanged.
    """

    def __init__(self, substitutor: VariableSubstitutor | None = None) -> None:
        self.substitutor = substitutor or VariableSubstitutor()
        self.env = Environment(
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=_VerbatimUndefined,
        )
        # Register custom filters
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter
        self.env.filters["snake_case"] = _snake_case_filter
        self.env.filters["camel_case"] = _camel_case_filter

    # -- String rendering --------------------------------------------------

    def render_string(self, content: str, variables: Mapping[str, Any]) -> str:
        """Apply ``{{KEY}}`` substitution to *content*."""
        return self.substitutor.substitute(content, variables)

    def render_jinja(self, content: str, variables: Mapping[str, Any]) -> str:
        """Render *content* as a Jinja2 template with *variables* as context."""
        template = self.env.from_string(content)
        return template.render(**self.substitutor.resolve(variables))

    @staticmethod
    def output_name(name: str) -> str:
        """Strip a marker suffix from a file name."""
        for suffix in MARKER_SUFFIXES:
            if name.endswith(suffix) and len(name) > len(suffix):
                return name[: -len(suffix)]
        return name

    # -- File-based rendering (async) --------------------------------------

    async def render_file(
        self,
        source: str | Path,
        target: str | Path,
        variables: Mapping[str, Any],
    ) -> Path:
        """Render one template file to *target* and return the written path."""
        src, out = Path(source), Path(target)
        resolved = self.substitutor.resolve(variables)

        try:
            raw = await asyncio.to_thread(src.read_bytes)
        except OSError as exc:
            raise TemplateRenderError(src, f"Cannot read template file ({exc.strerror or exc})") from exc

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            await self._write(out, raw)
            return out

        try:
            if src.name.endswith(JINJA_SUFFIX):
                rendered = self.env.from_string(text).render(**resolved)
            else:
                rendered = self.substitutor.substitute(text, resolved)
        except TemplateError as exc:
            raise TemplateRenderError(src, f"Cannot render template ({exc})") from exc

        await self._write(out, rendered.encode("utf-8"))
        return out

    async def render_directory(
        self,
        source_dir: str | Path,
        target_dir: str | Path,
        variables: Mapping[str, Any],
        *,
        state: GenerationState | None = None,
    ) -> list[Path]:
        """Render every entry under *source_dir* into *target_dir*.

        Directories are created before recursing into them.  When *state*
        is given, every written file and every directory this call creates
        is recorded in it.

        Returns:
            List of written file paths.

        Raises:
            TemplateRenderError: On any read, render, write or permission
                error, with the offending path.
        """
        src_root, out_root = Path(source_dir), Path(target_dir)
        if not src_root.is_dir():
            raise TemplateRenderError(src_root, "Template directory not found")

        resolved = self.substitutor.resolve(variables)
        await self._make_dir(out_root, state)

        written: list[Path] = []
        await self._render_tree(src_root, out_root, resolved, state, written)
        return written

    async def _render_tree(
        self,
        src_dir: Path,
        out_dir: Path,
        variables: dict[str, Any],
        state: GenerationState | None,
        written: list[Path],
    ) -> None:
        try:
            entries = await asyncio.to_thread(lambda: sorted(src_dir.iterdir()))
        except OSError as exc:
            raise TemplateRenderError(src_dir, f"Cannot read directory ({exc.strerror or exc})") from exc

        for entry in entries:
            name = self.substitutor.substitute(self.output_name(entry.name), variables)
            target = out_dir / name

            if entry.is_dir():
                await self._make_dir(target, state)
                await self._render_tree(entry, target, variables, state, written)
            elif entry.is_file():
                # Recorded before writing so a half-written file is swept too.
                if state is not None:
                    state.add_generated_file(target)
                written.append(await self.render_file(entry, target, variables))

    # -- Utility -----------------------------------------------------------

    def list_templates(self, source_dir: str | Path) -> list[str]:
        """Return a sorted list of every file path under *source_dir*.

        Paths are relative to *source_dir*.
        """
        root = Path(source_dir)
        if not root.is_dir():
            return []
        return sorted(str(p.relative_to(root)) for p in root.rglob("*") if p.is_file())

    @staticmethod
    async def _make_dir(path: Path, state: GenerationState | None) -> None:
        try:
            created = await asyncio.to_thread(make_dirs, path)
        except OSError as exc:
            raise TemplateRenderError(path, f"Cannot create directory ({exc.strerror or exc})") from exc
        if state is not None:
            for directory in created:
                state.add_generated_directory(directory)

    @staticmethod
    async def _write(path: Path, content: bytes) -> None:
        try:
            await asyncio.to_thread(_write_file, path, content)
        except OSError as exc:
            raise TemplateRenderError(path, f"Cannot write file ({exc.strerror or exc})") from exc


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", value)
    return "".join(word.capitalize() for word in parts if word)


def _snake_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def _camel_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _write_file(path: Path, content: bytes) -> None:
    """Synchronous helper: create parent dirs and write content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
