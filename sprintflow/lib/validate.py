"""
Schema validation for sprintflow.

Enforces JSON Schema validation at every data boundary: the persisted sprint
state is validated before each write, and agent-produced data files are
validated by the syntax gate.

Schemas are JSON Schema documents named <role>.schema.json. Built-in schemas
ship inside the package; a project can add its own under .sprintflow/schemas/
together with an artifacts.yaml that maps file globs to roles:

    artifacts:
      "config/*.json": service_config
      "**/openapi.yaml": openapi
"""

import fnmatch
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

logger = logging.getLogger(__name__)

# fnmatch's "*" crosses "/", so "**/X" needs a bare "X" twin for top-level files
BUILTIN_ARTIFACTS = {
    "SPRINTS.yml": "sprints",
    "**/SPRINTS.yml": "sprints",
}

ARTIFACTS_FILE = "artifacts.yaml"


class ValidationError(Exception):
    """Schema validation failed."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


@dataclass
class SchemaViolation:
    """One schema error, with the allowed values when it is an enum error."""
    path: str
    message: str
    value: Any = None
    allowed: list[Any] | None = None
    absolute_path: tuple = ()


# Cache loaded schemas, keyed by file path
_schema_cache: dict[Path, dict] = {}


def _get_schemas_dir() -> Path:
    """Get path to the packaged schemas directory."""
    return Path(__file__).parent.parent / "schemas"


def _find_schema(schema_name: str, search_dirs: list[Path]) -> Path | None:
    for directory in [*search_dirs, _get_schemas_dir()]:
        candidate = directory / f"{schema_name}.schema.json"
        if candidate.exists():
            return candidate
    return None


def load_schema(schema_name: str, search_dirs: list[Path] | None = None) -> dict:
    """Load schema by name, with caching. Project dirs win over built-ins."""
    schema_path = _find_schema(schema_name, search_dirs or [])
    if schema_path is None:
        raise ValidationError(schema_name, "Schema file not found")
    if schema_path not in _schema_cache:
        try:
            _schema_cache[schema_path] = json.loads(schema_path.read_text())
        except json.JSONDecodeError as e:
            raise ValidationError(schema_name, f"Schema is not valid JSON: {e}") from None
    return _schema_cache[schema_path]


def _format_path(parts) -> str:
    return ".".join(str(p) for p in parts) if parts else "(root)"


def collect_errors(data: Any, schema: dict) -> list[SchemaViolation]:
    """Return every violation of schema, ordered by location."""
    validator = jsonschema.Draft7Validator(schema)
    violations = []
    for error in validator.iter_errors(data):
        allowed = list(error.validator_value) if error.validator == "enum" else None
        violations.append(SchemaViolation(
            path=_format_path(error.absolute_path),
            message=error.message,
            value=error.instance,
            allowed=allowed,
            absolute_path=tuple(error.absolute_path),
        ))
    violations.sort(key=lambda v: (v.path, v.message))
    return violations


def validate(data: Any, schema_name: str, search_dirs: list[Path] | None = None) -> None:
    """
    Validate data against named schema.

    Raises:
        ValidationError: for the first violation (by location)
    """
    schema = load_schema(schema_name, search_dirs)
    errors = collect_errors(data, schema)
    if errors:
        first = errors[0]
        extra = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
        raise ValidationError(schema_name, first.message + extra, first.path)


def validate_before_write(data: Any, schema_name: str, filepath: Path) -> None:
    """
    Validate data before writing to file. Ensures we never write invalid data.

    Raises:
        ValidationError: If data doesn't match schema
    """
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e}"
        ) from None


@dataclass
class SchemaRegistry:
    """Maps workspace artifacts to the schema role that governs them."""
    patterns: dict[str, str] = field(default_factory=lambda: dict(BUILTIN_ARTIFACTS))
    search_dirs: list[Path] = field(default_factory=list)

    def role_for(self, rel_path: str) -> str | None:
        """Return the schema role for a workspace-relative path, if any."""
        for pattern in sorted(self.patterns):
            if fnmatch.fnmatch(rel_path, pattern):
                return self.patterns[pattern]
        return None

    def schema_for(self, rel_path: str) -> tuple[str, dict] | None:
        role = self.role_for(rel_path)
        if role is None:
            return None
        try:
            return role, load_schema(role, self.search_dirs)
        except ValidationError as e:
            logger.warning(f"[SCHEMA] {rel_path}: {e}")
            return None


def load_schema_registry(schemas_dir: Path | None) -> SchemaRegistry:
    """Load artifacts.yaml from a project schemas dir, merged over built-ins."""
    if schemas_dir is None or not schemas_dir.is_dir():
        return SchemaRegistry()

    patterns = dict(BUILTIN_ARTIFACTS)
    mapping_path = schemas_dir / ARTIFACTS_FILE
    if mapping_path.exists():
        try:
            data = yaml.safe_load(mapping_path.read_text()) or {}
            patterns.update({str(k): str(v) for k, v in (data.get("artifacts") or {}).items()})
        except (yaml.YAMLError, AttributeError) as e:
            logger.warning(f"Failed to parse {mapping_path}: {e}")

    return SchemaRegistry(patterns=patterns, search_dirs=[schemas_dir])
