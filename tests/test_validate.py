"""Tests for sprintflow.lib.validate module."""

import json

import pytest

from sprintflow.lib.validate import (
    SchemaRegistry,
    ValidationError,
    collect_errors,
    load_schema,
    load_schema_registry,
    validate,
    validate_before_write,
)


def _state(**sprint_overrides):
    sprint = {"id": 1, "goal": "Setup", "status": "PENDING"}
    sprint.update(sprint_overrides)
    return {"project": {"name": "demo"}, "sprints": [sprint]}


class TestSprintsSchema:
    """Tests for the packaged sprints schema."""

    def test_valid_state(self):
        validate(_state(), "sprints")

    def test_unknown_status(self):
        with pytest.raises(ValidationError) as exc:
            validate(_state(status="WAITING"), "sprints")
        assert exc.value.schema_name == "sprints"
        assert exc.value.path == "sprints.0.status"

    def test_id_must_be_integer(self):
        with pytest.raises(ValidationError):
            validate(_state(id="one"), "sprints")

    def test_extra_count_in_message(self):
        with pytest.raises(ValidationError, match=r"\(\+1 more\)"):
            validate(_state(status="WAITING", blocked_count=-1), "sprints")

    def test_task_priority_enum(self):
        with pytest.raises(ValidationError):
            validate(_state(tasks=[{"id": "1.1", "title": "x", "priority": "high"}]), "sprints")

    def test_validate_before_write_names_file(self, tmp_path):
        with pytest.raises(ValidationError, match="Refusing to write"):
            validate_before_write({"sprints": []}, "sprints", tmp_path / "SPRINTS.yml")


class TestCollectErrors:
    """Tests for collect_errors."""

    def test_enum_violation_lists_allowed_values(self):
        schema = {"type": "object", "properties": {"mode": {"enum": ["fast", "slow"]}}}
        [violation] = collect_errors({"mode": "FAST"}, schema)
        assert violation.path == "mode"
        assert violation.value == "FAST"
        assert violation.allowed == ["fast", "slow"]
        assert violation.absolute_path == ("mode",)

    def test_no_errors(self):
        assert collect_errors({}, {"type": "object"}) == []


class TestLoadSchema:
    """Tests for schema lookup."""

    def test_missing_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            load_schema("does_not_exist")

    def test_project_dir_wins(self, tmp_path):
        (tmp_path / "sprints.schema.json").write_text(json.dumps({"type": "array"}))
        assert load_schema("sprints", [tmp_path]) == {"type": "array"}


class TestSchemaRegistry:
    """Tests for artifact-to-schema mapping."""

    def test_builtin_sprints_pattern(self):
        registry = SchemaRegistry()
        assert registry.role_for("SPRINTS.yml") == "sprints"
        assert registry.role_for("plans/SPRINTS.yml") == "sprints"
        assert registry.role_for("src/app.py") is None

    def test_schema_for_unknown_role_is_none(self, caplog):
        registry = SchemaRegistry(patterns={"*.json": "missing_role"})
        assert registry.schema_for("a.json") is None
        assert "Schema file not found" in caplog.text

    def test_load_registry_merges_artifacts(self, tmp_path):
        (tmp_path / "artifacts.yaml").write_text('artifacts:\n  "config/*.json": service\n')
        (tmp_path / "service.schema.json").write_text(json.dumps({"type": "object", "required": ["port"]}))
        registry = load_schema_registry(tmp_path)

        assert registry.role_for("config/api.json") == "service"
        assert registry.role_for("SPRINTS.yml") == "sprints"
        role, schema = registry.schema_for("config/api.json")
        assert role == "service"
        assert schema["required"] == ["port"]

    def test_load_registry_without_dir(self, tmp_path):
        registry = load_schema_registry(tmp_path / "absent")
        assert registry.patterns == SchemaRegistry().patterns

    def test_load_registry_bad_yaml(self, tmp_path, caplog):
        (tmp_path / "artifacts.yaml").write_text("artifacts: [unclosed")
        registry = load_schema_registry(tmp_path)
        assert registry.role_for("SPRINTS.yml") == "sprints"
        assert "Failed to parse" in caplog.text
