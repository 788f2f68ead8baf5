"""
Quality gates.

Five gates run in a fixed order, cheapest and most fundamental first:

    syntax -> format -> semantic -> integration -> security

A gate inspects each file in the context (check_artifact) and the sprint as
a whole (check_sprint). Gates that know how to repair one of their findings
mark it auto_fixable and implement fix().
"""

import ast
import logging
import re
import shutil
import tomllib
from pathlib import PurePosixPath
from typing import Any

from sprintflow.data.models import PIPELINE, Phase, Priority
from sprintflow.lib.validate import collect_errors
from sprintflow.quality import fixers
from sprintflow.quality.context import GateContext
from sprintflow.quality.issues import GateResult, Issue, Severity

logger = logging.getLogger(__name__)

CODE_SUFFIXES = {".py", ".js", ".jsx", ".ts", ".tsx", ".go", ".rs", ".java", ".rb", ".sh"}
LONG_LINE = 200


def _suffix(rel_path: str) -> str:
    return PurePosixPath(rel_path).suffix.lower()


def _is_code(rel_path: str) -> bool:
    return _suffix(rel_path) in CODE_SUFFIXES


class QualityGate:
    """Base class for a gate: a name, a check, and optionally fixes."""

    name = "gate"

    def check(self, ctx: GateContext) -> GateResult:
        issues: list[Issue] = []
        for rel in ctx.paths:
            text = ctx.read(rel)
            if text is None:
                continue
            issues.extend(self.check_artifact(rel, text, ctx))
        issues.extend(self.check_sprint(ctx))
        return GateResult.from_issues(self.name, issues)

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        return []

    def check_sprint(self, ctx: GateContext) -> list[Issue]:
        return []

    def fix(self, ctx: GateContext, issue: Issue) -> bool:
        """Apply the fix for issue. Returns False if nothing could be changed safely."""
        return False


# ---------------------------------------------------------------------------
# Syntax
# ---------------------------------------------------------------------------

def _parse_error(rel_path: str, text: str) -> tuple[str, int | None] | None:
    """Return (message, line) if text does not parse as its file type."""
    suffix = _suffix(rel_path)
    try:
        if suffix in (".json", ".yaml", ".yml"):
            fixers.load_data(rel_path, text)
        elif suffix == ".toml":
            tomllib.loads(text)
        elif suffix == ".py":
            ast.parse(text, filename=rel_path)
    except SyntaxError as e:
        return f"Python syntax error: {e.msg}", e.lineno
    except tomllib.TOMLDecodeError as e:
        return f"invalid TOML: {e}", None
    except ValueError as e:
        return f"invalid {suffix.lstrip('.').upper()}: {str(e).splitlines()[0]}", None
    return None


class SyntaxGate(QualityGate):
    """Artifacts parse, and data files match the schema for their role."""

    name = "syntax"

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        error = _parse_error(rel_path, text)
        if error is not None:
            message, line = error
            fence_fixable = False
            if fixers.is_data_file(rel_path) and fixers.fence_lines(text):
                stripped = fixers.strip_markdown_fence(text)
                fence_fixable = stripped is not None and _parse_error(rel_path, stripped) is None
                if fence_fixable:
                    message = f"{message} (content is wrapped in a markdown code fence)"
            return [Issue(
                severity=Severity.CRITICAL,
                category=f"syntax.{_suffix(rel_path).lstrip('.') or 'text'}",
                message=message,
                file=rel_path,
                line=line,
                auto_fixable=fence_fixable,
            )]

        return self._schema_issues(rel_path, text, ctx)

    def _schema_issues(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        found = ctx.schemas.schema_for(rel_path)
        if found is None or _suffix(rel_path) == ".toml":
            return []
        role, schema = found
        data = fixers.load_data(rel_path, text)

        issues = []
        for violation in collect_errors(data, schema):
            fixable = violation.allowed is not None and fixers.normalize_enum(violation.value, violation.allowed) is not None
            issues.append(Issue(
                severity=Severity.CRITICAL,
                category="schema.enum_case" if fixable else "schema.violation",
                message=f"[{role}] {violation.message} at {violation.path}",
                file=rel_path,
                auto_fixable=fixable,
            ))
        return issues

    def fix(self, ctx: GateContext, issue: Issue) -> bool:
        text = ctx.read(issue.file) if issue.file else None
        if text is None:
            return False

        if issue.category.startswith("syntax."):
            stripped = fixers.strip_markdown_fence(text)
            if stripped is None or _parse_error(issue.file, stripped) is not None:
                return False
            ctx.write(issue.file, stripped)
            return True

        if issue.category == "schema.enum_case":
            found = ctx.schemas.schema_for(issue.file)
            if found is None:
                return False
            data = fixers.load_data(issue.file, text)
            changed = False
            for violation in collect_errors(data, found[1]):
                if violation.allowed is None or not violation.absolute_path:
                    continue
                replacement = fixers.normalize_enum(violation.value, violation.allowed)
                if replacement is not None:
                    fixers.set_path(data, violation.absolute_path, replacement)
                    changed = True
            rendered = fixers.dump_data(issue.file, data) if changed else None
            if rendered is None:
                return False
            ctx.write(issue.file, rendered)
            return True

        return False


# ---------------------------------------------------------------------------
# Format
# ---------------------------------------------------------------------------

CONFLICT_MARKER = re.compile(r"^(<{7}|>{7}) ", re.MULTILINE)

# field -> (key that marks the owning object as a sprint or task, vocabulary)
ENUM_FIELDS = {
    "status": ("goal", [p.value for p in Phase]),
    "priority": ("title", [p.value for p in Priority]),
}


def _enum_near_misses(data: Any, path: tuple = ()) -> list[tuple[tuple, str, str]]:
    """(path, found, expected) for status/priority values with the wrong spelling."""
    found = []
    if isinstance(data, dict):
        for key, value in data.items():
            if key in ENUM_FIELDS and ENUM_FIELDS[key][0] in data:
                expected = fixers.normalize_enum(value, ENUM_FIELDS[key][1])
                if expected is not None:
                    found.append((path + (key,), value, expected))
            found.extend(_enum_near_misses(value, path + (key,)))
    elif isinstance(data, list):
        for index, item in enumerate(data):
            found.extend(_enum_near_misses(item, path + (index,)))
    return found


def path_problem(path: str) -> str | None:
    if path != path.strip():
        return "has surrounding whitespace"
    if not path:
        return "is empty"
    if "\\" in path:
        return "uses backslashes"
    if path.startswith("/"):
        return "is absolute"
    if ".." in PurePosixPath(path).parts:
        return "escapes the workspace with '..'"
    return None


class FormatGate(QualityGate):
    """Output shape: no fences in data, no conflict markers, exact vocabulary."""

    name = "format"

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        issues = []

        marker = CONFLICT_MARKER.search(text)
        if marker:
            issues.append(Issue(
                severity=Severity.CRITICAL,
                category="format.conflict_marker",
                message="unresolved merge conflict marker",
                file=rel_path,
                line=text.count("\n", 0, marker.start()) + 1,
            ))

        if not fixers.is_data_file(rel_path):
            return issues

        fences = fixers.fence_lines(text)
        if fences:
            fixable = fixers.strip_markdown_fence(text) is not None
            issues.append(Issue(
                severity=Severity.CRITICAL,
                category="format.markdown_fence",
                message="data file contains markdown code fences" + ("" if fixable else " (ambiguous block boundaries)"),
                file=rel_path,
                line=fences[0] + 1,
                auto_fixable=fixable,
            ))

        for lineno, line in enumerate(text.splitlines(), 1):
            if line != line.rstrip():
                issues.append(Issue(
                    severity=Severity.LOW,
                    category="format.trailing_whitespace",
                    message="trailing whitespace",
                    file=rel_path,
                    line=lineno,
                    auto_fixable=True,
                ))
                break

        # Files governed by a schema get their enum checks from the syntax gate
        if not fences and ctx.schemas.role_for(rel_path) is None and _suffix(rel_path) != ".toml":
            try:
                data = fixers.load_data(rel_path, text)
            except ValueError:
                data = None
            for path, value, expected in _enum_near_misses(data):
                where = ".".join(str(p) for p in path)
                issues.append(Issue(
                    severity=Severity.HIGH,
                    category="format.enum_case",
                    message=f"{where} is {value!r}, expected {expected!r}",
                    file=rel_path,
                    auto_fixable=True,
                ))

        return issues

    def check_sprint(self, ctx: GateContext) -> list[Issue]:
        issues = []
        points = ctx.sprint.integration_points
        for field_name in ("modifies", "creates", "tests_existing", "patterns"):
            for path in getattr(points, field_name):
                problem = path_problem(path)
                if problem:
                    issues.append(Issue(
                        severity=Severity.MEDIUM,
                        category="format.path",
                        message=f"integration_points.{field_name} entry {path!r} {problem}",
                    ))
        return issues

    def fix(self, ctx: GateContext, issue: Issue) -> bool:
        text = ctx.read(issue.file) if issue.file else None
        if text is None:
            return False

        if issue.category == "format.markdown_fence":
            stripped = fixers.strip_markdown_fence(text)
            if stripped is None:
                return False
            ctx.write(issue.file, stripped)
            return True

        if issue.category == "format.trailing_whitespace":
            ctx.write(issue.file, fixers.strip_trailing_whitespace(text))
            return True

        if issue.category == "format.enum_case":
            try:
                data = fixers.load_data(issue.file, text)
            except ValueError:
                return False
            misses = _enum_near_misses(data)
            if not misses:
                return False
            for path, _value, expected in misses:
                fixers.set_path(data, path, expected)
            rendered = fixers.dump_data(issue.file, data)
            if rendered is None:
                return False
            ctx.write(issue.file, rendered)
            return True

        return False


# ---------------------------------------------------------------------------
# Semantic
# ---------------------------------------------------------------------------

PLACEHOLDER = re.compile(r'raise\s+NotImplementedError|TODO:?\s*implement|\bunimplemented!\(|\btodo!\(', re.IGNORECASE)
TEST_FILE = re.compile(r'(^|/)(tests?|__tests__|e2e|spec)/|(^|/)test_[^/]+$|_test\.\w+$|\.(test|spec)\.\w+$')
E2E_FILE = re.compile(r'(^|/)(e2e|end[-_]to[-_]end|integration)[^/]*(/|$)|\.e2e\.\w+$|_e2e[^/]*$')


def _past(sprint_phase: Phase, phase: Phase) -> bool:
    if sprint_phase is Phase.BLOCKED:
        return False
    return PIPELINE.index(sprint_phase) > PIPELINE.index(phase)


class SemanticGate(QualityGate):
    """The work matches what the sprint asked for."""

    name = "semantic"

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        if not _is_code(rel_path) or TEST_FILE.search(rel_path):
            return []
        issues = []
        for lineno, line in enumerate(text.splitlines(), 1):
            if PLACEHOLDER.search(line):
                issues.append(Issue(
                    severity=Severity.MEDIUM,
                    category="semantic.placeholder",
                    message="placeholder implementation",
                    file=rel_path,
                    line=lineno,
                ))
        long_lines = [n for n, line in enumerate(text.splitlines(), 1) if len(line) > LONG_LINE]
        if long_lines:
            issues.append(Issue(
                severity=Severity.LOW,
                category="semantic.long_line",
                message=f"{len(long_lines)} line(s) longer than {LONG_LINE} characters",
                file=rel_path,
                line=long_lines[0],
            ))
        return issues

    def check_sprint(self, ctx: GateContext) -> list[Issue]:
        sprint = ctx.sprint
        issues = []
        if not sprint.tasks:
            issues.append(Issue(
                severity=Severity.HIGH,
                category="semantic.no_tasks",
                message=f"sprint {sprint.id} has no tasks",
            ))

        for task in sprint.tasks:
            if not task.business_rules:
                issues.append(Issue(
                    severity=Severity.MEDIUM,
                    category="semantic.missing_business_rules",
                    message=f"task {task.id} has no business rules",
                ))

        files = ctx.all_files()
        test_files = [f for f in files if TEST_FILE.search(f)]
        if _past(sprint.phase, Phase.WRITE_UNIT_TESTS) and not test_files:
            needing = [t.id for t in sprint.tasks if t.testing.needs_unit]
            if needing:
                issues.append(Issue(
                    severity=Severity.HIGH,
                    category="semantic.missing_tests",
                    message=f"tasks {', '.join(needing)} require unit tests but the workspace has none",
                ))
        if _past(sprint.phase, Phase.WRITE_E2E_TESTS) and not any(E2E_FILE.search(f) for f in test_files):
            needing = [t.id for t in sprint.tasks if t.testing.needs_e2e]
            if needing:
                issues.append(Issue(
                    severity=Severity.HIGH,
                    category="semantic.missing_e2e_tests",
                    message=f"tasks {', '.join(needing)} require e2e tests but the workspace has none",
                ))
        return issues


# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------

COMPOSE_NAMES = {"docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml"}


def _relative_import_targets(rel_path: str, text: str) -> list[tuple[int, str, list[str]]]:
    """(line, dotted name, candidate files) for each relative import with a module."""
    try:
        tree = ast.parse(text)
    except SyntaxError:
        return []
    package = PurePosixPath(rel_path).parent.parts
    targets = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.ImportFrom) or node.level == 0 or not node.module:
            continue
        up = node.level - 1
        dotted = "." * node.level + node.module
        if up > len(package):
            targets.append((node.lineno, dotted, []))
            continue
        base = package[:len(package) - up]
        module = "/".join(base + tuple(node.module.split(".")))
        targets.append((node.lineno, dotted, [f"{module}.py", f"{module}/__init__.py", module]))
    return targets


class IntegrationGate(QualityGate):
    """The work fits the codebase and the other sprints around it."""

    name = "integration"

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        issues = []
        if _suffix(rel_path) == ".py":
            for line, dotted, candidates in _relative_import_targets(rel_path, text):
                if not any(ctx.exists(c) for c in candidates):
                    issues.append(Issue(
                        severity=Severity.HIGH,
                        category="integration.unresolved_import",
                        message=f"relative import {dotted} does not resolve to a workspace module",
                        file=rel_path,
                        line=line,
                    ))

        if PurePosixPath(rel_path).name in COMPOSE_NAMES and shutil.which("docker") is None:
            issues.append(Issue(
                severity=Severity.MEDIUM,
                category="integration.docker_missing",
                message="compose file present but docker is not installed",
                file=rel_path,
            ))
        return issues

    def check_sprint(self, ctx: GateContext) -> list[Issue]:
        sprint = ctx.sprint
        issues = []
        for path in sprint.integration_points.modifies:
            if path_problem(path) is None and not ctx.exists(path):
                issues.append(Issue(
                    severity=Severity.HIGH,
                    category="integration.missing_modifies",
                    message=f"declared file to modify does not exist: {path}",
                ))

        if ctx.sprint_phases is not None:
            for dep in sprint.dependencies:
                phase = ctx.sprint_phases.get(dep)
                if phase is None:
                    issues.append(Issue(
                        severity=Severity.HIGH,
                        category="integration.unknown_dependency",
                        message=f"sprint {sprint.id} depends on unknown sprint {dep}",
                    ))
                elif phase is Phase.BLOCKED:
                    issues.append(Issue(
                        severity=Severity.HIGH,
                        category="integration.blocked_dependency",
                        message=f"sprint {sprint.id} depends on blocked sprint {dep}",
                    ))
        return issues


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

SECRET_PATTERNS = [
    (re.compile(r'-----BEGIN (?:RSA |EC |DSA |OPENSSH |PGP |ENCRYPTED )?PRIVATE KEY-----'), "private key"),
    (re.compile(r'\bAKIA[0-9A-Z]{16}\b'), "AWS access key id"),
    (re.compile(r'\bgh[pousr]_[A-Za-z0-9]{36,}\b'), "GitHub token"),
    (re.compile(r'\bxox[abprs]-[A-Za-z0-9-]{10,}'), "Slack token"),
    (re.compile(r'\bsk-[A-Za-z0-9_-]{32,}'), "API secret key"),
]

CREDENTIAL_ASSIGNMENT = re.compile(
    r'''(?i)\b(password|passwd|secret|secret_key|api_key|apikey|access_token|auth_token)\b["']?\s*[:=]\s*["']([^"'\s]{8,})["']'''
)
PLACEHOLDER_VALUE = re.compile(r'(?i)^(\$\{.*\}|<.*>|x+|\*+|changeme|example.*|dummy.*|test.*|your[-_].*)$')

UNSAFE_PATTERNS = [
    (re.compile(r'(?<![\w.])eval\s*\('), "eval() on dynamic input"),
    (re.compile(r'(?<![\w.])exec\s*\('), "exec() on dynamic input"),
    (re.compile(r'shell\s*=\s*True'), "subprocess with shell=True"),
    (re.compile(r'\bpickle\.loads?\s*\('), "pickle deserialization"),
    (re.compile(r'\byaml\.load\s*\((?![^)]*Loader)'), "yaml.load without an explicit Loader"),
    (re.compile(r'\bverify\s*=\s*False\b'), "TLS verification disabled"),
    (re.compile(r'\bos\.system\s*\('), "os.system call"),
]


class SecurityGate(QualityGate):
    """No credentials in the tree and no known-dangerous calls."""

    name = "security"

    def check_artifact(self, rel_path: str, text: str, ctx: GateContext) -> list[Issue]:
        issues = []
        is_python = _suffix(rel_path) == ".py"
        for lineno, line in enumerate(text.splitlines(), 1):
            for pattern, label in SECRET_PATTERNS:
                if pattern.search(line):
                    issues.append(Issue(
                        severity=Severity.CRITICAL,
                        category="security.secret",
                        message=f"embedded {label}",
                        file=rel_path,
                        line=lineno,
                    ))
            match = CREDENTIAL_ASSIGNMENT.search(line)
            if match and not PLACEHOLDER_VALUE.match(match.group(2)):
                issues.append(Issue(
                    severity=Severity.CRITICAL,
                    category="security.secret",
                    message=f"hard-coded {match.group(1).lower()}",
                    file=rel_path,
                    line=lineno,
                ))

            if is_python and not line.lstrip().startswith("#"):
                for pattern, label in UNSAFE_PATTERNS:
                    if pattern.search(line):
                        issues.append(Issue(
                            severity=Severity.HIGH,
                            category="security.unsafe_call",
                            message=label,
                            file=rel_path,
                            line=lineno,
                        ))
        return issues


def default_gates() -> list[QualityGate]:
    return [SyntaxGate(), FormatGate(), SemanticGate(), IntegrationGate(), SecurityGate()]
