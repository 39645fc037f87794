"""Transactional step execution with rollback.

A ``ScaffoldTransaction`` runs an ordered list of ``TransactionStep``s
against a target path.  Steps run strictly in declaration order; when one
fails, every completed step is rolled back in reverse order, then a sweep
over the ``GenerationState`` ledger removes whatever the steps recorded, and
finally the target directory itself is removed if (and only if) it is empty.

Rollback problems never replace the original failure: they are printed as
warnings and returned in the ``RollbackReport`` attached to the raised
``TransactionStepError``.
"""

from __future__ import annotations

import asyncio
import inspect
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

from scaffoldkit.utils import console as default_console
from scaffoldkit.utils import format_duration, is_empty_dir, make_dirs

if TYPE_CHECKING:
    from scaffoldkit.scaffolder.templates import TemplateRenderer

StepCallable = Callable[[], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class GenerationState:
    """Append-only ledger of artifacts created during one transaction.

    Steps record every file and directory they create; rollback consumes the
    ledger, nothing else reads it.  A small key/value area lets steps hand
    data to later steps.
    """

    def __init__(self) -> None:
        self._files: list[Path] = []
        self._directories: list[Path] = []
        self._values: dict[str, Any] = {}

    def add_generated_file(self, path: str | Path) -> None:
        self._files.append(Path(path))

    def add_generated_directory(self, path: str | Path) -> None:
        self._directories.append(Path(path))

    @property
    def generated_files(self) -> list[Path]:
        return list(self._files)

    @property
    def generated_directories(self) -> list[Path]:
        return list(self._directories)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def clear(self) -> None:
        self._files.clear()
        self._directories.clear()
        self._values.clear()


# ---------------------------------------------------------------------------
# Steps, status, errors
# ---------------------------------------------------------------------------


@dataclass
class TransactionStep:
    """A named unit of work with an optional undo."""

    name: str
    execute: StepCallable
    rollback: StepCallable | None = None
    description: str | None = None


class TransactionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


@dataclass
class RollbackReport:
    """What happened while undoing a failed transaction."""

    step_errors: list[str] = field(default_factory=list)
    remaining_paths: list[Path] = field(default_factory=list)
    target_removed: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """``True`` when every rollback ran and no tracked artifact remains."""
        return not self.step_errors and not self.remaining_paths


class TransactionStepError(Exception):
    """Raised when a step's ``execute()`` fails; rollback has already run."""

    def __init__(
        self,
        step_name: str,
        step_index: int,
        cause: BaseException,
        rollback: RollbackReport | None = None,
    ) -> None:
        self.step_name = step_name
        self.step_index = step_index
        self.cause = cause
        self.rollback = rollback or RollbackReport()
        super().__init__(f"Step '{step_name}' failed: {cause}")


async def _call(fn: StepCallable) -> None:
    result = fn()
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


class ScaffoldTransaction:
    """All-or-nothing execution of filesystem-mutating steps.

    State machine: ``pending -> running -> completed | rolled_back``.  A
    transaction runs at most once; the ledger lives as long as the
    transaction and is never shared with another one.
    """

    def __init__(
        self,
        target_path: str | Path,
        *,
        verbose: bool = False,
        console: Console | None = None,
    ) -> None:
        self.target_path = Path(target_path)
        self.verbose = verbose
        self.console = console or default_console
        self.state = GenerationState()
        self.status = TransactionStatus.PENDING
        self._steps: list[TransactionStep] = []
        self._completed: list[TransactionStep] = []
        self._started_at: float | None = None

    # -- Building ----------------------------------------------------------

    def add_step(self, step: TransactionStep) -> None:
        if self.status is not TransactionStatus.PENDING:
            raise RuntimeError("Cannot add steps to a transaction that already ran")
        self._steps.append(step)
        if self.verbose:
            self.console.print(f"[dim]Step added: {step.name}[/dim]")

    @property
    def steps(self) -> list[TransactionStep]:
        return list(self._steps)

    @property
    def completed_steps(self) -> list[TransactionStep]:
        return list(self._completed)

    # -- Execution ---------------------------------------------------------

    async def execute(self) -> None:
        """Run every step in order.

        Raises:
            TransactionStepError: The first step that failed, after rollback.
            RuntimeError: If the transaction was already executed.
        """
        if self.status is not TransactionStatus.PENDING:
            raise RuntimeError(f"Transaction already {self.status.value}")

        self.status = TransactionStatus.RUNNING
        self._started_at = time.monotonic()
        total = len(self._steps)

        self.console.print(f"[bold blue]Running {total} step(s)...[/bold blue]")
        if self.verbose:
            self.console.print(f"[dim]Target: {self.target_path}[/dim]")

        for index, step in enumerate(self._steps, start=1):
            step_start = time.monotonic()
            self.console.print(f"  [dim]{index}/{total} ▶ {step.name}...[/dim]")
            if self.verbose and step.description:
                self.console.print(f"      [dim]{step.description}[/dim]")

            try:
                await _call(step.execute)
            except Exception as exc:
                self.console.print(f"  [red]{index}/{total} ✗ {step.name}: {exc}[/red]")
                report = await self._rollback()
                self.status = TransactionStatus.ROLLED_BACK
                self.console.print(f"[yellow]Elapsed: {format_duration(self.elapsed)}[/yellow]")
                raise TransactionStepError(step.name, index, exc, report) from exc

            self._completed.append(step)
            step_time = format_duration(time.monotonic() - step_start)
            self.console.print(f"  [green]{index}/{total} ✓ {step.name} ({step_time})[/green]")

        self.status = TransactionStatus.COMPLETED
        self.console.print(
            f"[bold green]All {total} step(s) completed ({format_duration(self.elapsed)})[/bold green]"
        )

    # -- Rollback ----------------------------------------------------------

    async def _rollback(self) -> RollbackReport:
        report = RollbackReport()

        if self._completed:
            self.console.print(
                f"\n[bold yellow]Rolling back {len(self._completed)} step(s)...[/bold yellow]"
            )
        else:
            self.console.print("[yellow]No completed steps to roll back[/yellow]")

        for step in reversed(self._completed):
            if step.rollback is None:
                self.console.print(f"  [dim]⚠ {step.name}: no rollback defined[/dim]")
                continue
            try:
                self.console.print(f"  [dim]↩ Rolling back {step.name}...[/dim]")
                await _call(step.rollback)
            except Exception as exc:
                report.step_errors.append(f"{step.name}: {exc}")
                self.console.print(f"  [red]✗ Rollback failed: {step.name} - {exc}[/red]")

        await self._sweep_ledger(report)

        if report.step_errors:
            report.warnings.append(
                "Some rollback handlers failed: " + "; ".join(report.step_errors)
            )
        if report.remaining_paths:
            report.warnings.append(
                "These artifacts may remain on disk: "
                + ", ".join(str(p) for p in report.remaining_paths)
            )

        if report.warnings:
            self.console.print("[bold red]⚠ Rollback finished with problems:[/bold red]")
            for warning in report.warnings:
                self.console.print(f"  [red]- {warning}[/red]")
        else:
            self.console.print("[bold yellow]Rollback complete[/bold yellow]")

        return report

    async def _sweep_ledger(self, report: RollbackReport) -> None:
        """Delete every tracked artifact, then the target if it is empty."""
        files = self.state.generated_files
        directories = self.state.generated_directories

        if files or directories:
            self.console.print("  [dim]Removing generated files and directories...[/dim]")

        for path in files:
            if not await remove_path(path):
                report.remaining_paths.append(path)
            elif self.verbose:
                self.console.print(f"    [dim]- {path}[/dim]")

        for path in reversed(directories):
            if not await remove_path(path):
                report.remaining_paths.append(path)
            elif self.verbose:
                self.console.print(f"    [dim]- {path}/[/dim]")

        if self.target_path.exists():
            if await asyncio.to_thread(is_empty_dir, self.target_path):
                if await remove_path(self.target_path):
                    report.target_removed = True
                    self.console.print("  [yellow]Removed empty target directory[/yellow]")
                else:
                    report.remaining_paths.append(self.target_path)
            else:
                message = (
                    f"Target directory {self.target_path} contains other files; left in place"
                )
                report.warnings.append(message)
                self.console.print(f"  [yellow]⚠ {message}[/yellow]")

        self.state.clear()

    # -- Introspection -----------------------------------------------------

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def progress(self) -> dict[str, int]:
        completed = len(self._completed)
        total = len(self._steps)
        percentage = round(completed / total * 100) if total else 0
        return {"completed": completed, "total": total, "percentage": percentage}

    def details(self) -> dict[str, Any]:
        return {
            "steps": [s.name for s in self._steps],
            "completed_steps": [s.name for s in self._completed],
            "target_path": str(self.target_path),
            "status": self.status.value,
            "elapsed": self.elapsed,
        }


async def remove_path(path: Path) -> bool:
    """Remove a file or directory tree; return ``False`` if it is still there."""

    def _remove() -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()

    try:
        await asyncio.to_thread(_remove)
    except OSError:
        pass
    return not (path.exists() or path.is_symlink())


# ---------------------------------------------------------------------------
# Predefined steps
# ---------------------------------------------------------------------------


class CommonSteps:
    """Factories for frequently used steps.  Each one records into the ledger."""

    @staticmethod
    def create_directory(path: str | Path, state: GenerationState) -> TransactionStep:
        target = Path(path)
        created = False

        async def execute() -> None:
            nonlocal created
            made = await asyncio.to_thread(make_dirs, target)
            for directory in made:
                state.add_generated_directory(directory)
            created = bool(made)

        async def rollback() -> None:
            # A directory that existed before the run belongs to the user.
            if created and target.exists() and await asyncio.to_thread(is_empty_dir, target):
                await asyncio.to_thread(target.rmdir)

        return TransactionStep(
            name="Create directory",
            description=f"Create target directory: {target}",
            execute=execute,
            rollback=rollback,
        )

    @staticmethod
    def copy_file(
        source: str | Path, destination: str | Path, state: GenerationState
    ) -> TransactionStep:
        src, dest = Path(source), Path(destination)

        async def execute() -> None:
            for directory in await asyncio.to_thread(make_dirs, dest.parent):
                state.add_generated_directory(directory)
            await asyncio.to_thread(shutil.copy2, src, dest)
            state.add_generated_file(dest)

        async def rollback() -> None:
            await remove_path(dest)

        return TransactionStep(
            name="Copy file",
            description=f"{src} -> {dest}",
            execute=execute,
            rollback=rollback,
        )

    @staticmethod
    def create_file(path: str | Path, content: str, state: GenerationState) -> TransactionStep:
        target = Path(path)

        async def execute() -> None:
            for directory in await asyncio.to_thread(make_dirs, target.parent):
                state.add_generated_directory(directory)
            await asyncio.to_thread(target.write_text, content, encoding="utf-8")
            state.add_generated_file(target)

        async def rollback() -> None:
            await remove_path(target)

        return TransactionStep(
            name="Create file",
            description=f"Create file: {target}",
            execute=execute,
            rollback=rollback,
        )

    @staticmethod
    def render_template(
        renderer: TemplateRenderer,
        source_dir: str | Path,
        target_dir: str | Path,
        variables: dict[str, Any],
        state: GenerationState,
    ) -> TransactionStep:
        async def execute() -> None:
            await renderer.render_directory(source_dir, target_dir, variables, state=state)

        return TransactionStep(
            name="Render template",
            description=f"Render {source_dir} into {target_dir}",
            execute=execute,
        )
