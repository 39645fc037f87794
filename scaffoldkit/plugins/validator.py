"""Plugin quality validation.

Inspects a loaded plugin and its source for metadata, interface, security,
performance, code-quality, documentation and test issues, then condenses
the findings into a 0-100 score and a quality level.  Findings never make a
plugin fail to load unless the registry runs in strict mode.
"""

from __future__ import annotations

import ast
import asyncio
import re
import time
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from scaffoldkit.config import ValidationConfig

from .base import REQUIRED_METHODS, provides
from .guard import TimeoutGuard

if TYPE_CHECKING:
    from .context import PluginContext, PluginLogger


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    METADATA = "metadata"
    INTERFACE = "interface"
    SECURITY = "security"
    PERFORMANCE = "performance"
    CODE_QUALITY = "code-quality"
    DOCUMENTATION = "documentation"
    TESTING = "testing"


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    UNACCEPTABLE = "unacceptable"


class ValidationIssue(BaseModel):
    severity: Severity
    category: IssueCategory
    message: str
    details: Optional[str] = None
    location: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    score: int = Field(..., ge=0, le=100)
    level: QualityLevel
    issues: list[ValidationIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity is severity)


KNOWN_TAGS = frozenset(
    {"web", "mobile", "api", "cli", "tool", "framework", "library", "python", "mcp-server"}
)
PLUGIN_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[A-Za-z0-9.]+)?$")

DANGEROUS_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\beval\s*\("), "Use of eval() is dangerous"),
    (re.compile(r"\bexec\s*\("), "Use of exec() is dangerous"),
    (re.compile(r"\bos\.system\s*\("), "Shell execution via os.system needs security review"),
    (re.compile(r"\bsubprocess\b"), "Subprocess execution needs security review"),
    (re.compile(r"\bsys\.exit\s*\("), "Direct sys.exit calls should be avoided"),
    (
        re.compile(r"\bshutil\.rmtree\b|\bos\.(?:remove|unlink)\s*\("),
        "File deletion operations need security review",
    ),
    (re.compile(r"https?://[^\"'\s]+"), "External URLs should be reviewed for security"),
]

SCORE_PENALTIES = {Severity.ERROR: 15, Severity.WARNING: 5, Severity.INFO: 1}

MIN_DESCRIPTION_LENGTH = 10
MIN_README_LENGTH = 200
MAX_SOURCE_CHARS = 50_000
MAX_TEMPLATES = 10
MAX_TEMPLATE_LISTING_SECONDS = 1.0
DEFAULT_CALL_TIMEOUT = 5.0
RECOMMENDED_DOCS = ("docs/configuration.md", "docs/examples.md")
TEST_DIRS = ("tests", "test")


def calculate_score(issues: list[ValidationIssue]) -> int:
    score = 100 - sum(SCORE_PENALTIES[issue.severity] for issue in issues)
    return max(0, score)


def quality_level(score: int) -> QualityLevel:
    if score >= 90:
        return QualityLevel.EXCELLENT
    if score >= 80:
        return QualityLevel.GOOD
    if score >= 70:
        return QualityLevel.ACCEPTABLE
    if score >= 50:
        return QualityLevel.POOR
    return QualityLevel.UNACCEPTABLE


def plugin_source_file(plugin_path: Path) -> Path | None:
    """Return the Python file that holds a plugin's code, if any."""
    if plugin_path.is_file():
        return plugin_path
    for name in ("plugin.py", "__init__.py"):
        candidate = plugin_path / name
        if candidate.is_file():
            return candidate
    return None


class PluginValidator:
    """Scores a plugin against the configured quality bar."""

    def __init__(
        self,
        config: ValidationConfig | None = None,
        context: PluginContext | None = None,
        *,
        timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self.config = config or ValidationConfig()
        self.context = context
        self.guard = TimeoutGuard(timeout)

    @property
    def _logger(self) -> PluginLogger | None:
        return self.context.logger if self.context is not None else None

    async def validate(
        self,
        plugin: Any,
        plugin_path: str | Path,
        *,
        templates: list[Any] | None = None,
        listing_seconds: float | None = None,
        guard: TimeoutGuard | None = None,
    ) -> ValidationResult:
        """Run every enabled check; never raises.

        The registry passes the *templates* it already fetched (and how long
        that took) so the plugin is not called again.  Any call the
        validator still makes into the plugin goes through *guard*.
        """
        path = Path(plugin_path)
        plugin_id = getattr(getattr(plugin, "metadata", None), "id", "unknown")
        guard = guard or self.guard
        started = time.monotonic()

        try:
            source = await self._read_source(path)
            listing_error: Exception | None = None
            if templates is None:
                templates, listing_seconds, listing_error = await self._list_templates(
                    plugin, plugin_id, guard
                )
            issues: list[ValidationIssue] = []
            issues += self.check_metadata(plugin)
            issues += self.check_interface(plugin, templates, listing_error)
            issues += await self.check_health(plugin, guard)
            if self.config.security_checks and source is not None:
                issues += self.check_security(source, path)
            issues += self.check_performance(templates, listing_seconds)
            if source is not None:
                issues += self.check_code_quality(source, path)
            if self.config.require_documentation:
                issues += self.check_documentation(path, source)
            if self.config.require_tests:
                issues += self.check_tests(path)
        except Exception as exc:
            if self._logger:
                self._logger.error("Plugin validation failed", plugin_id=plugin_id, error=str(exc))
            return ValidationResult(
                valid=False,
                score=0,
                level=QualityLevel.UNACCEPTABLE,
                issues=[
                    ValidationIssue(
                        severity=Severity.ERROR,
                        category=IssueCategory.INTERFACE,
                        message="Validation process failed",
                        details=str(exc),
                    )
                ],
                recommendations=["Fix validation errors and retry"],
            )

        score = calculate_score(issues)
        result = ValidationResult(
            valid=score >= self.config.min_score,
            score=score,
            level=quality_level(score),
            issues=issues,
            recommendations=self.recommendations(issues, score),
        )
        if self._logger:
            self._logger.info(
                "Plugin validation completed",
                plugin_id=plugin_id,
                score=score,
                level=result.level.value,
                issues=len(issues),
                duration_ms=round((time.monotonic() - started) * 1000),
            )
        return result

    # -- Checks ------------------------------------------------------------

    def check_metadata(self, plugin: Any) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        metadata = getattr(plugin, "metadata", None)
        for name in ("id", "name", "version", "description", "author"):
            if not getattr(metadata, name, None):
                issues.append(
                    _issue(
                        Severity.ERROR,
                        IssueCategory.METADATA,
                        f"Required field '{name}' is missing",
                        location="metadata",
                    )
                )
        if metadata is None:
            return issues

        if metadata.id and not PLUGIN_ID_PATTERN.match(metadata.id):
            issues.append(
                _issue(
                    Severity.ERROR,
                    IssueCategory.METADATA,
                    "Plugin ID must follow kebab-case format",
                    "Use lowercase letters, numbers, and hyphens only",
                    "metadata.id",
                )
            )
        if metadata.version and not SEMVER_PATTERN.match(metadata.version):
            issues.append(
                _issue(
                    Severity.ERROR,
                    IssueCategory.METADATA,
                    "Version must follow semantic versioning",
                    "Format: MAJOR.MINOR.PATCH(-PRERELEASE)",
                    "metadata.version",
                )
            )
        if metadata.description and len(metadata.description) < MIN_DESCRIPTION_LENGTH:
            issues.append(
                _issue(
                    Severity.WARNING,
                    IssueCategory.METADATA,
                    "Description is too short",
                    f"Provide at least {MIN_DESCRIPTION_LENGTH} characters",
                    "metadata.description",
                )
            )
        unknown_tags = sorted(set(metadata.tags) - KNOWN_TAGS)
        if unknown_tags:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.METADATA,
                    "Some tags are not recognized",
                    f"Unknown tags: {', '.join(unknown_tags)}",
                    "metadata.tags",
                )
            )
        return issues

    def check_interface(
        self,
        plugin: Any,
        templates: Any = None,
        listing_error: Exception | None = None,
    ) -> list[ValidationIssue]:
        issues = [
            _issue(
                Severity.ERROR,
                IssueCategory.INTERFACE,
                f"Required method '{name}' is not implemented",
                location=f"plugin.{name}",
            )
            for name in REQUIRED_METHODS
            if not callable(getattr(plugin, name, None))
        ]

        if listing_error is not None:
            issues.append(
                _issue(
                    Severity.ERROR,
                    IssueCategory.INTERFACE,
                    "get_project_templates failed",
                    str(listing_error),
                    "plugin.get_project_templates",
                )
            )
        elif templates is not None and not isinstance(templates, (list, tuple)):
            issues.append(
                _issue(
                    Severity.ERROR,
                    IssueCategory.INTERFACE,
                    "get_project_templates must return a list",
                    location="plugin.get_project_templates",
                )
            )
        elif templates is not None:
            for index, template in enumerate(templates):
                if not all(getattr(template, name, None) for name in ("id", "name", "description")):
                    issues.append(
                        _issue(
                            Severity.ERROR,
                            IssueCategory.INTERFACE,
                            f"Template {index} is missing required fields",
                            "Templates must have id, name, and description",
                            f"templates[{index}]",
                        )
                    )
        return issues

    async def check_health(self, plugin: Any, guard: TimeoutGuard | None = None) -> list[ValidationIssue]:
        if self.context is None or not provides(plugin, "health_check"):
            return []
        guard = guard or self.guard
        plugin_id = getattr(plugin.metadata, "id", "unknown")
        try:
            health = await guard.run(
                plugin.health_check, self.context, plugin_id=plugin_id, operation="health_check"
            )
        except Exception as exc:
            return [
                _issue(
                    Severity.WARNING,
                    IssueCategory.INTERFACE,
                    "Health check method failed",
                    str(exc),
                    "plugin.health_check",
                )
            ]
        if getattr(health, "healthy", False):
            return []
        return [
            _issue(
                Severity.WARNING,
                IssueCategory.INTERFACE,
                "Plugin health check failed",
                getattr(health, "message", None) or "Reported unhealthy status",
                "plugin.health_check",
            )
        ]

    def check_security(self, source: str, path: Path) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for pattern, message in DANGEROUS_PATTERNS:
            matches = pattern.findall(source)
            if matches:
                issues.append(
                    _issue(
                        Severity.WARNING,
                        IssueCategory.SECURITY,
                        message,
                        f"Found {len(matches)} occurrence(s)",
                        str(path),
                    )
                )
        if "valid" not in source:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.SECURITY,
                    "No input validation patterns detected",
                    "Consider validating user-supplied options",
                    str(path),
                )
            )
        return issues

    def check_performance(
        self, templates: Any, listing_seconds: float | None
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if listing_seconds is not None and listing_seconds > MAX_TEMPLATE_LISTING_SECONDS:
            issues.append(
                _issue(
                    Severity.WARNING,
                    IssueCategory.PERFORMANCE,
                    "Template retrieval is slow",
                    f"Took {listing_seconds * 1000:.0f}ms (recommended: <{MAX_TEMPLATE_LISTING_SECONDS * 1000:.0f}ms)",
                    "plugin.get_project_templates",
                )
            )
        if isinstance(templates, (list, tuple)) and len(templates) > MAX_TEMPLATES:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.PERFORMANCE,
                    "Large number of templates",
                    f"Plugin provides {len(templates)} templates (consider splitting it)",
                    "plugin.get_project_templates",
                )
            )
        return issues

    def check_code_quality(self, source: str, path: Path) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        lines = source.splitlines() or [""]
        comment_lines = sum(
            1 for line in lines if line.strip().startswith(("#", '"""', "'''"))
        )
        ratio = comment_lines / len(lines)
        if ratio < 0.1:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.CODE_QUALITY,
                    "Low comment density",
                    f"Comment ratio: {ratio * 100:.1f}% (recommended: >10%)",
                    str(path),
                )
            )
        if len(source) > MAX_SOURCE_CHARS:
            issues.append(
                _issue(
                    Severity.WARNING,
                    IssueCategory.CODE_QUALITY,
                    "Large plugin file",
                    f"File size: {len(source)} characters (consider splitting)",
                    str(path),
                )
            )
        prints = re.findall(r"\bprint\s*\(", source)
        if len(prints) > 5:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.CODE_QUALITY,
                    "Excessive print usage",
                    f"Found {len(prints)} print calls (use the context logger instead)",
                    str(path),
                )
            )
        todos = re.findall(r"\b(?:TODO|FIXME|XXX)\b", source)
        if todos:
            issues.append(
                _issue(
                    Severity.INFO,
                    IssueCategory.CODE_QUALITY,
                    "Unresolved TODO/FIXME items",
                    f"Found {len(todos)} unresolved item(s)",
                    str(path),
                )
            )
        return issues

    def check_documentation(self, path: Path, source: str | None) -> list[ValidationIssue]:
        """Directory plugins need a README.md; single-file plugins a module docstring."""
        issues: list[ValidationIssue] = []
        if path.is_dir():
            readme = path / "README.md"
            if not readme.is_file():
                issues.append(
                    _issue(
                        Severity.ERROR,
                        IssueCategory.DOCUMENTATION,
                        "Required documentation file missing: README.md",
                        location=str(readme),
                    )
                )
            elif len(readme.read_text(encoding="utf-8")) < MIN_README_LENGTH:
                issues.append(
                    _issue(
                        Severity.WARNING,
                        IssueCategory.DOCUMENTATION,
                        "README.md is too short",
                        f"Provide at least {MIN_README_LENGTH} characters",
                        str(readme),
                    )
                )
            for doc in RECOMMENDED_DOCS:
                if not (path / doc).is_file():
                    issues.append(
                        _issue(
                            Severity.INFO,
                            IssueCategory.DOCUMENTATION,
                            f"Recommended documentation file missing: {doc}",
                            location=str(path / doc),
                        )
                    )
            return issues

        docstring = _module_docstring(source or "")
        if not docstring:
            issues.append(
                _issue(
                    Severity.ERROR,
                    IssueCategory.DOCUMENTATION,
                    "Plugin module has no docstring",
                    location=str(path),
                )
            )
        elif len(docstring) < MIN_README_LENGTH:
            issues.append(
                _issue(
                    Severity.WARNING,
                    IssueCategory.DOCUMENTATION,
                    "Plugin module docstring is too short",
                    f"Provide at least {MIN_README_LENGTH} characters",
                    str(path),
                )
            )
        return issues

    def check_tests(self, path: Path) -> list[ValidationIssue]:
        root = path if path.is_dir() else path.parent
        if any((root / name).is_dir() for name in TEST_DIRS):
            return []
        return [
            _issue(
                Severity.WARNING,
                IssueCategory.TESTING,
                "No test directory found",
                "Add tests to ensure plugin reliability",
                str(root),
            )
        ]

    # -- Summary -----------------------------------------------------------

    def recommendations(self, issues: list[ValidationIssue], score: int) -> list[str]:
        counts = Counter(issue.severity for issue in issues)
        categories = {issue.category for issue in issues}
        out: list[str] = []
        if counts[Severity.ERROR]:
            out.append(f"Fix {counts[Severity.ERROR]} critical error(s) to improve plugin reliability")
        if counts[Severity.WARNING]:
            out.append(f"Address {counts[Severity.WARNING]} warning(s) to enhance plugin quality")
        if score < self.config.min_score:
            out.append("Improve overall plugin quality to meet minimum standards")
        if IssueCategory.DOCUMENTATION in categories:
            out.append("Improve documentation to help users understand the plugin")
        if IssueCategory.TESTING in categories:
            out.append("Add tests to ensure plugin stability")
        if IssueCategory.SECURITY in categories:
            out.append("Review and address security concerns")
        if IssueCategory.PERFORMANCE in categories:
            out.append("Optimize plugin performance")
        return out

    @staticmethod
    async def _list_templates(
        plugin: Any, plugin_id: str, guard: TimeoutGuard
    ) -> tuple[Any, float | None, Exception | None]:
        if not callable(getattr(plugin, "get_project_templates", None)):
            return None, None, None
        started = time.monotonic()
        try:
            templates = await guard.run(
                plugin.get_project_templates, plugin_id=plugin_id, operation="get_project_templates"
            )
        except Exception as exc:
            return None, None, exc
        return templates, time.monotonic() - started, None

    @staticmethod
    async def _read_source(path: Path) -> str | None:
        source_file = plugin_source_file(path)
        if source_file is None:
            return None
        return await asyncio.to_thread(source_file.read_text, encoding="utf-8")


def _issue(
    severity: Severity,
    category: IssueCategory,
    message: str,
    details: str | None = None,
    location: str | None = None,
) -> ValidationIssue:
    return ValidationIssue(
        severity=severity, category=category, message=message, details=details, location=location
    )


def _module_docstring(source: str) -> str | None:
    try:
        return ast.get_docstring(ast.parse(source))
    except SyntaxError:
        return None
