"""Tests for template directory rendering."""

from __future__ import annotations

from pathlib import Path

import pytest

from scaffoldkit.scaffolder.templates import TemplateRenderer, TemplateRenderError
from scaffoldkit.scaffolder.transaction import GenerationState

pytestmark = pytest.mark.unit


def _tree(root: Path) -> dict[str, bytes]:
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


class TestOutputName:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("README.md.template", "README.md"),
            ("requirements.txt.j2", "requirements.txt"),
            ("main.py", "main.py"),
            (".template", ".template"),
        ],
    )
    def test_marker_suffix_stripped(self, name, expected):
        assert TemplateRenderer.output_name(name) == expected


class TestRenderDirectory:
    async def test_readme_template_renders(self, renderer, readme_template, tmp_path):
        out = tmp_path / "out"
        written = await renderer.render_directory(readme_template, out, {"PROJECT_NAME": "Foo"})

        assert written == [out / "README.md"]
        assert (out / "README.md").read_text(encoding="utf-8") == "# Foo\n"
        assert not (out / "README.md.template").exists()

    async def test_file_and_directory_names_substituted(self, renderer, make_template, tmp_path):
        template = make_template({"src/{{PACKAGE}}/{{PACKAGE}}.py": "name = '{{PACKAGE}}'\n"})
        out = tmp_path / "out"
        await renderer.render_directory(template, out, {"PACKAGE": "demo"})

        assert (out / "src" / "demo" / "demo.py").read_text(encoding="utf-8") == "name = 'demo'\n"

    async def test_jinja_files(self, renderer, make_template, tmp_path):
        template = make_template(
            {
                "deps.txt.j2": (
                    "fastapi\n"
                    "{% if DRIVER %}\n"
                    "{{ DRIVER }}\n"
                    "{% endif %}\n"
                    "{{ PROJECT_NAME | snake_case }}\n"
                )
            }
        )
        out = tmp_path / "out"
        await renderer.render_directory(
            template, out, {"PROJECT_NAME": "MyApp", "DRIVER": "asyncpg"}
        )
        assert (out / "deps.txt").read_text(encoding="utf-8") == "fastapi\nasyncpg\nmy_app\n"

    async def test_jinja_unknown_name_rendered_verbatim(self, renderer, make_template, tmp_path):
        template = make_template({"a.txt.j2": "value: {{ unknown_thing }}\n"})
        out = tmp_path / "out"
        await renderer.render_directory(template, out, {})
        assert (out / "a.txt").read_text(encoding="utf-8") == "value: {{ unknown_thing }}\n"

    async def test_binary_files_copied_unchanged(self, renderer, make_template, tmp_path):
        payload = b"\x89PNG\r\n\x1a\n\xff{{PROJECT_NAME}}"
        template = make_template({"logo.png": payload})
        out = tmp_path / "out"
        await renderer.render_directory(template, out, {"PROJECT_NAME": "x"})
        assert (out / "logo.png").read_bytes() == payload

    async def test_unknown_tokens_preserved(self, renderer, make_template, tmp_path):
        template = make_template({"notes.md": "{{TODO_LATER}}\n"})
        out = tmp_path / "out"
        await renderer.render_directory(template, out, {})
        assert (out / "notes.md").read_text(encoding="utf-8") == "{{TODO_LATER}}\n"

    async def test_render_twice_is_byte_identical(self, renderer, make_template, tmp_path):
        template = make_template(
            {
                "README.md.template": "# {{PROJECT_NAME}}\n{{AUTHOR}}\n",
                "pkg/{{PROJECT_NAME}}.txt": "{{PROJECT_DESCRIPTION}}",
                "cfg.toml.j2": "name = \"{{ PROJECT_NAME }}\"\n",
                "bin.dat": b"\x00\x01\xfe",
            }
        )
        variables = {"PROJECT_NAME": "twice", "AUTHOR": "Ada", "DATE": "2024-05-01"}

        first, second = tmp_path / "first", tmp_path / "second"
        await renderer.render_directory(template, first, variables)
        await renderer.render_directory(template, second, variables)

        assert _tree(first) == _tree(second)
        assert len(_tree(first)) == 4

    async def test_records_into_state(self, renderer, make_template, tmp_path):
        template = make_template({"a/b.txt": "x", "c.txt": "y"})
        out = tmp_path / "out"
        state = GenerationState()
        await renderer.render_directory(template, out, {}, state=state)

        assert set(state.generated_files) == {out / "a" / "b.txt", out / "c.txt"}
        assert state.generated_directories == [out, out / "a"]

    async def test_existing_directories_not_recorded(self, renderer, make_template, tmp_path):
        template = make_template({"c.txt": "y"})
        out = tmp_path / "out"
        out.mkdir()
        state = GenerationState()
        await renderer.render_directory(template, out, {}, state=state)
        assert state.generated_directories == []

    async def test_missing_parents_recorded_outermost_first(self, renderer, make_template, tmp_path):
        template = make_template({"c.txt": "y"})
        out = tmp_path / "deep" / "out"
        state = GenerationState()
        await renderer.render_directory(template, out, {}, state=state)
        assert state.generated_directories == [tmp_path / "deep", out]

    async def test_missing_template_dir(self, renderer, tmp_path):
        with pytest.raises(TemplateRenderError) as exc_info:
            await renderer.render_directory(tmp_path / "nope", tmp_path / "out", {})
        assert exc_info.value.path == tmp_path / "nope"

    async def test_invalid_jinja_names_path(self, renderer, make_template, tmp_path):
        template = make_template({"broken.txt.j2": "{% if %}"})
        with pytest.raises(TemplateRenderError) as exc_info:
            await renderer.render_directory(template, tmp_path / "out", {})
        assert exc_info.value.path.name == "broken.txt.j2"


class TestRenderHelpers:
    def test_render_string(self, renderer):
        assert renderer.render_string("{{PROJECT_NAME}}!", {"PROJECT_NAME": "hi"}) == "hi!"

    def test_render_jinja_filters(self, renderer):
        out = renderer.render_jinja(
            "{{ name | slugify }} {{ name | pascal_case }} {{ name | camel_case }}",
            {"name": "my cool-app"},
        )
        assert out == "my-cool-app MyCoolApp myCoolApp"

    def test_list_templates(self, renderer, make_template, tmp_path):
        template = make_template({"b.txt": "", "a/c.txt": ""})
        assert renderer.list_templates(template) == ["a/c.txt", "b.txt"]
        assert renderer.list_templates(tmp_path / "missing") == []
