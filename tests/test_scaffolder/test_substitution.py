"""Tests for ``{{KEY}}`` placeholder substitution."""

from __future__ import annotations

import re

import pytest

from scaffoldkit.scaffolder.substitution import (
    DEFAULT_AUTHOR,
    VariableSubstitutor,
    canonical_variables,
    find_tokens,
    substitute,
)

pytestmark = pytest.mark.unit


class TestSubstitute:
    def test_replaces_known_key(self):
        assert substitute("# {{PROJECT_NAME}}", {"PROJECT_NAME": "Foo"}) == "# Foo"

    def test_replaces_every_occurrence(self):
        text = "{{A}}-{{A}}-{{B}}"
        assert substitute(text, {"A": "x", "B": "y"}) == "x-x-y"

    def test_unknown_key_left_verbatim(self):
        assert substitute("{{MISSING}} stays", {}) == "{{MISSING}} stays"

    def test_spaced_expression_is_not_a_token(self):
        text = "{{ PROJECT_NAME }}"
        assert substitute(text, {"PROJECT_NAME": "Foo"}) == text

    def test_keys_are_case_sensitive(self):
        assert substitute("{{project_name}}", {"PROJECT_NAME": "Foo"}) == "{{project_name}}"

    def test_values_converted_with_str(self):
        assert substitute("port={{PORT}}", {"PORT": 8000}) == "port=8000"

    def test_replacement_is_not_rescanned(self):
        assert substitute("{{A}}", {"A": "{{B}}", "B": "no"}) == "{{B}}"


class TestFindTokens:
    def test_distinct_in_order(self):
        assert find_tokens("{{B}} {{A}} {{B}}") == ["B", "A"]

    def test_no_tokens(self):
        assert find_tokens("plain text") == []


class TestCanonicalVariables:
    def test_keys(self):
        variables = canonical_variables("my-api", description="An API", author="Ada")
        assert variables["PROJECT_NAME"] == "my-api"
        assert variables["PROJECT_CLASS_NAME"] == "MyApi"
        assert variables["PROJECT_DESCRIPTION"] == "An API"
        assert variables["AUTHOR"] == "Ada"
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", variables["DATE"])

    def test_defaults(self):
        variables = canonical_variables("demo")
        assert "demo" in variables["PROJECT_DESCRIPTION"]
        assert variables["AUTHOR"] == DEFAULT_AUTHOR

    def test_explicit_date(self):
        assert canonical_variables("demo", current_date="2024-01-02")["DATE"] == "2024-01-02"


class TestVariableSubstitutor:
    def test_caller_values_win(self):
        sub = VariableSubstitutor({"AUTHOR": "Default"})
        resolved = sub.resolve({"PROJECT_NAME": "x", "AUTHOR": "Caller"})
        assert resolved["AUTHOR"] == "Caller"

    def test_defaults_used_when_missing(self):
        sub = VariableSubstitutor({"LICENSE": "MIT"})
        assert sub.substitute("{{LICENSE}}", {}) == "MIT"

    def test_author_and_date_always_present(self):
        resolved = VariableSubstitutor().resolve({})
        assert resolved["AUTHOR"] == DEFAULT_AUTHOR
        assert "DATE" in resolved
        assert "PROJECT_NAME" not in resolved

    def test_name_derived_keys(self):
        text = "{{PROJECT_CLASS_NAME}}: {{PROJECT_DESCRIPTION}}"
        out = VariableSubstitutor().substitute(text, {"PROJECT_NAME": "cool-tool"})
        assert out.startswith("CoolTool: ")
        assert "cool-tool" in out
