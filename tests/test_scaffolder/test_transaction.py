"""Tests for the transactional step engine.

Covers:
- In-order execution and the pending/running/completed state machine
- Reverse-order rollback of completed steps
- Ledger sweep independent of per-step rollbacks
- Conservative handling of a pre-existing, non-empty target
- Rollback failures reported without masking the original error
- CommonSteps factories
"""

from __future__ import annotations

from pathlib import Path

import pytest

from scaffoldkit.scaffolder.templates import TemplateRenderer
from scaffoldkit.scaffolder.transaction import (
    CommonSteps,
    GenerationState,
    ScaffoldTransaction,
    TransactionStatus,
    TransactionStep,
    TransactionStepError,
    remove_path,
)

pytestmark = pytest.mark.unit


def _fail() -> None:
    raise RuntimeError("forced failure")


@pytest.fixture
def transaction(tmp_path: Path, quiet_console) -> ScaffoldTransaction:
    return ScaffoldTransaction(tmp_path / "target", console=quiet_console)


class TestGenerationState:
    def test_records_in_order(self, tmp_path):
        state = GenerationState()
        state.add_generated_file(tmp_path / "a")
        state.add_generated_file(str(tmp_path / "b"))
        state.add_generated_directory(tmp_path / "d")
        assert state.generated_files == [tmp_path / "a", tmp_path / "b"]
        assert state.generated_directories == [tmp_path / "d"]

    def test_values_and_clear(self):
        state = GenerationState()
        state.set("key", 1)
        assert state.get("key") == 1
        assert state.get("other", "default") == "default"
        state.clear()
        assert state.get("key") is None


class TestExecute:
    async def test_steps_run_in_order(self, transaction):
        log: list[str] = []
        for name in ("one", "two", "three"):
            transaction.add_step(TransactionStep(name=name, execute=lambda n=name: log.append(n)))

        await transaction.execute()

        assert log == ["one", "two", "three"]
        assert transaction.status is TransactionStatus.COMPLETED
        assert transaction.progress() == {"completed": 3, "total": 3, "percentage": 100}

    async def test_async_and_sync_steps(self, transaction):
        log: list[str] = []

        async def async_step() -> None:
            log.append("async")

        transaction.add_step(TransactionStep(name="a", execute=async_step))
        transaction.add_step(TransactionStep(name="s", execute=lambda: log.append("sync")))
        await transaction.execute()
        assert log == ["async", "sync"]

    async def test_runs_only_once(self, transaction):
        await transaction.execute()
        with pytest.raises(RuntimeError):
            await transaction.execute()

    async def test_cannot_add_after_run(self, transaction):
        await transaction.execute()
        with pytest.raises(RuntimeError):
            transaction.add_step(TransactionStep(name="late", execute=lambda: None))

    async def test_details(self, transaction):
        transaction.add_step(TransactionStep(name="only", execute=lambda: None))
        await transaction.execute()
        details = transaction.details()
        assert details["steps"] == ["only"]
        assert details["completed_steps"] == ["only"]
        assert details["status"] == "completed"


class TestRollback:
    async def test_rollback_reverse_order(self, transaction):
        log: list[str] = []

        def make(n: str) -> TransactionStep:
            return TransactionStep(
                name=n,
                execute=lambda: log.append(f"exec {n}"),
                rollback=lambda: log.append(f"undo {n}"),
            )

        for n in ("1", "2", "3"):
            transaction.add_step(make(n))
        transaction.add_step(TransactionStep(name="4", execute=_fail))

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        undo = [entry.split()[1] for entry in log if entry.startswith("undo")]
        assert undo == ["3", "2", "1"]
        assert exc_info.value.step_name == "4"
        assert exc_info.value.step_index == 4
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert transaction.status is TransactionStatus.ROLLED_BACK

    async def test_failed_step_is_not_rolled_back(self, transaction):
        log: list[str] = []
        transaction.add_step(
            TransactionStep(name="bad", execute=_fail, rollback=lambda: log.append("undo bad"))
        )
        with pytest.raises(TransactionStepError):
            await transaction.execute()
        assert log == []

    async def test_later_steps_never_run(self, transaction):
        log: list[str] = []
        transaction.add_step(TransactionStep(name="bad", execute=_fail))
        transaction.add_step(TransactionStep(name="never", execute=lambda: log.append("ran")))
        with pytest.raises(TransactionStepError):
            await transaction.execute()
        assert log == []

    @pytest.mark.parametrize("position", [0, 1, 2, 3, 4])
    async def test_ledger_sweep_removes_recorded_artifacts(self, tmp_path, quiet_console, position):
        target = tmp_path / "target"
        transaction = ScaffoldTransaction(target, console=quiet_console)
        state = transaction.state
        created: list[Path] = []

        def writer(index: int):
            def execute() -> None:
                nested = target / f"dir{index}"
                nested.mkdir(parents=True)
                state.add_generated_directory(nested)
                path = nested / f"file{index}.txt"
                state.add_generated_file(path)
                path.write_text(str(index), encoding="utf-8")
                created.extend([nested, path])

            return execute

        steps = [CommonSteps.create_directory(target, state)]
        steps += [TransactionStep(name=f"write {i}", execute=writer(i)) for i in range(1, 4)]
        steps.insert(position, TransactionStep(name="boom", execute=_fail))
        for step in steps:
            transaction.add_step(step)

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        assert exc_info.value.step_name == "boom"
        assert not any(path.exists() for path in created)
        assert not target.exists()

    async def test_rollback_error_does_not_mask_original(self, transaction):
        def bad_rollback() -> None:
            raise OSError("cannot undo")

        transaction.add_step(TransactionStep(name="first", execute=lambda: None, rollback=bad_rollback))
        transaction.add_step(TransactionStep(name="second", execute=_fail))

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        error = exc_info.value
        assert error.step_name == "second"
        assert "forced failure" in str(error)
        assert error.rollback.step_errors == ["first: cannot undo"]
        assert not error.rollback.clean
        assert any("rollback handlers failed" in w for w in error.rollback.warnings)

    async def test_existing_nonempty_target_left_in_place(self, tmp_path, quiet_console):
        target = tmp_path / "target"
        target.mkdir()
        (target / "keep.txt").write_text("user data", encoding="utf-8")
        transaction = ScaffoldTransaction(target, console=quiet_console)
        state = transaction.state

        def write() -> None:
            path = target / "generated.txt"
            state.add_generated_file(path)
            path.write_text("generated", encoding="utf-8")

        transaction.add_step(CommonSteps.create_directory(target, state))
        transaction.add_step(TransactionStep(name="write", execute=write))
        transaction.add_step(TransactionStep(name="boom", execute=_fail))

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        assert (target / "keep.txt").read_text(encoding="utf-8") == "user data"
        assert not (target / "generated.txt").exists()
        assert exc_info.value.rollback.target_removed is False
        assert any("left in place" in w for w in exc_info.value.rollback.warnings)

    async def test_empty_target_removed(self, tmp_path, quiet_console):
        target = tmp_path / "target"
        transaction = ScaffoldTransaction(target, console=quiet_console)
        transaction.add_step(
            TransactionStep(name="mkdir", execute=lambda: target.mkdir())
        )
        transaction.add_step(TransactionStep(name="boom", execute=_fail))

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        assert not target.exists()
        assert exc_info.value.rollback.target_removed is True


class TestThreeStepScenario:
    async def test_failure_in_third_step_leaves_nothing(self, tmp_path, quiet_console, readme_template):
        target = tmp_path / "out"
        transaction = ScaffoldTransaction(target, console=quiet_console)
        state = transaction.state
        renderer = TemplateRenderer()

        transaction.add_step(CommonSteps.create_directory(target, state))
        transaction.add_step(
            CommonSteps.render_template(renderer, readme_template, target, {"PROJECT_NAME": "Foo"}, state)
        )
        transaction.add_step(TransactionStep(name="Forced failure", execute=_fail))

        with pytest.raises(TransactionStepError) as exc_info:
            await transaction.execute()

        assert not target.exists()
        assert exc_info.value.step_name == "Forced failure"
        assert exc_info.value.step_index == 3
        assert "Forced failure" in str(exc_info.value)

    async def test_success_writes_readme(self, tmp_path, quiet_console, readme_template):
        target = tmp_path / "out"
        transaction = ScaffoldTransaction(target, console=quiet_console)
        state = transaction.state
        transaction.add_step(CommonSteps.create_directory(target, state))
        transaction.add_step(
            CommonSteps.render_template(
                TemplateRenderer(), readme_template, target, {"PROJECT_NAME": "Foo"}, state
            )
        )
        await transaction.execute()
        assert (target / "README.md").read_text(encoding="utf-8") == "# Foo\n"


class TestCommonSteps:
    async def test_create_directory_rollback_only_if_created(self, tmp_path):
        existing = tmp_path / "existing"
        existing.mkdir()
        state = GenerationState()
        step = CommonSteps.create_directory(existing, state)
        await step.execute()
        await step.rollback()
        assert existing.is_dir()
        assert state.generated_directories == []

    async def test_create_directory_records_new(self, tmp_path):
        target = tmp_path / "new" / "nested"
        state = GenerationState()
        step = CommonSteps.create_directory(target, state)
        await step.execute()
        assert target.is_dir()
        assert state.generated_directories == [tmp_path / "new", target]
        await step.rollback()
        assert not target.exists()

    async def test_copy_file(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("hello", encoding="utf-8")
        dest = tmp_path / "a" / "dest.txt"
        state = GenerationState()
        step = CommonSteps.copy_file(src, dest, state)
        await step.execute()
        assert dest.read_text(encoding="utf-8") == "hello"
        assert state.generated_files == [dest]
        await step.rollback()
        assert not dest.exists()

    async def test_create_file(self, tmp_path):
        path = tmp_path / "x" / "notes.md"
        state = GenerationState()
        step = CommonSteps.create_file(path, "content", state)
        await step.execute()
        assert path.read_text(encoding="utf-8") == "content"
        await step.rollback()
        assert not path.exists()

    async def test_nested_file_directories_swept_on_rollback(self, tmp_path, quiet_console):
        target = tmp_path / "target"
        target.mkdir()
        (target / "keep.txt").write_text("mine", encoding="utf-8")
        transaction = ScaffoldTransaction(target, console=quiet_console)
        nested = target / "docs" / "guides" / "intro.md"
        transaction.add_step(CommonSteps.create_file(nested, "hello", transaction.state))
        transaction.add_step(TransactionStep(name="Fail", execute=_fail))

        with pytest.raises(TransactionStepError):
            await transaction.execute()
        assert sorted(p.name for p in target.iterdir()) == ["keep.txt"]

    async def test_copy_file_records_created_parents(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("hello", encoding="utf-8")
        state = GenerationState()
        dest = tmp_path / "a" / "b" / "dest.txt"
        await CommonSteps.copy_file(src, dest, state).execute()
        assert state.generated_directories == [tmp_path / "a", tmp_path / "a" / "b"]


class TestRemovePath:
    async def test_removes_tree(self, tmp_path):
        tree = tmp_path / "tree"
        (tree / "a").mkdir(parents=True)
        (tree / "a" / "f").write_text("x", encoding="utf-8")
        assert await remove_path(tree) is True
        assert not tree.exists()

    async def test_missing_path_counts_as_removed(self, tmp_path):
        assert await remove_path(tmp_path / "missing") is True
