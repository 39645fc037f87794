"""``{{KEY}}`` placeholder substitution.

The substitutor is a pure text transform: every ``{{KEY}}`` token whose key
is present in the supplied mapping is replaced by its value, everything else
is left verbatim so a later validation pass can report leftovers.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from scaffoldkit.utils import to_class_name, today_iso

# Keys are matched case-sensitively. Whitespace inside the braces is not allowed
# so that ``{{ expr }}`` Jinja-style expressions never collide with placeholders.
TOKEN_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")

DEFAULT_AUTHOR = "Your Name"


def substitute(text: str, variables: Mapping[str, Any]) -> str:
    """Replace every known ``{{KEY}}`` token in *text*.

    Values are converted with ``str()``. Unknown tokens are kept as-is.

    Examples::

        substitute("# {{PROJECT_NAME}}", {"PROJECT_NAME": "Foo"}) -> "# Foo"
        substitute("{{MISSING}}", {}) -> "{{MISSING}}"
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return TOKEN_PATTERN.sub(_replace, text)


def find_tokens(text: str) -> list[str]:
    """Return the distinct placeholder keys in *text*, in order of appearance."""
    seen: dict[str, None] = {}
    for match in TOKEN_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def canonical_variables(
    project_name: str,
    *,
    description: str | None = None,
    author: str | None = None,
    current_date: str | None = None,
) -> dict[str, str]:
    """Build the variables every template can rely on.

    ``PROJECT_NAME``, ``PROJECT_CLASS_NAME``, ``PROJECT_DESCRIPTION``,
    ``AUTHOR`` and ``DATE``.
    """
    return {
        "PROJECT_NAME": project_name,
        "PROJECT_CLASS_NAME": to_class_name(project_name),
        "PROJECT_DESCRIPTION": description or f"{project_name} - generated by scaffoldkit",
        "AUTHOR": author or DEFAULT_AUTHOR,
        "DATE": current_date or today_iso(),
    }


class VariableSubstitutor:
    """Substitutes ``{{KEY}}`` tokens with canonical variables merged in.

    Caller-supplied values always win over the canonical defaults. The
    name-derived keys need ``PROJECT_NAME``; ``AUTHOR`` and ``DATE`` are
    always present.
    """

    def __init__(self, defaults: Mapping[str, Any] | None = None) -> None:
        self.defaults: dict[str, Any] = dict(defaults or {})

    def resolve(self, variables: Mapping[str, Any]) -> dict[str, Any]:
        """Return the effective variable map for *variables*."""
        merged: dict[str, Any] = {"AUTHOR": DEFAULT_AUTHOR, "DATE": today_iso()}
        merged.update(self.defaults)
        project_name = variables.get("PROJECT_NAME", merged.get("PROJECT_NAME"))
        if project_name:
            merged.update(
                canonical_variables(
                    str(project_name),
                    description=variables.get(
                        "PROJECT_DESCRIPTION", merged.get("PROJECT_DESCRIPTION")
                    ),
                    author=variables.get("AUTHOR", merged["AUTHOR"]),
                    current_date=variables.get("DATE", merged["DATE"]),
                )
            )
        merged.update(variables)
        return merged

    def substitute(self, text: str, variables: Mapping[str, Any]) -> str:
        return substitute(text, self.resolve(variables))
