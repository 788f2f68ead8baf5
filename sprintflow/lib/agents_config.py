"""
Agent command configuration.

Loads .sprintflow/agents.yaml to decide which CLI command runs each agent
role. If no config file exists, every role uses DEFAULT_COMMAND.

    command: "claude-code --agent {role} --max-turns {max_turns}"
    roles:
      reviewer: "claude-code --agent reviewer --max-turns {max_turns} --model {model}"
    models:
      reviewer: claude-opus

ROLE COMMAND TEMPLATES
======================

Templates support {variable} substitution:
- {role}: The agent role id (e.g. "code-implementer").
- {max_turns}: Tool-use budget for the invocation.
- {workspace}: Path to the sprint's worktree.
- {model}: Model chosen for the role (see resolve_model).

The context bundle always travels over stdin, so templates never carry the
prompt.
"""

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "claude-code --agent {role} --max-turns {max_turns} --output-format stream-json"

MODEL_ENV_VAR = "SPRINTFLOW_MODEL"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    command: str = DEFAULT_COMMAND
    roles: dict[str, str] = field(default_factory=dict)
    models: dict[str, str] = field(default_factory=dict)
    default_model: str = ""


def load_agents_config(state_dir: Path | None, default_model: str = "") -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If state_dir is None or the file doesn't exist, returns defaults.
    """
    if state_dir is None:
        return AgentsConfig(default_model=default_model)

    config_path = state_dir / "agents.yaml"
    if not config_path.exists():
        return AgentsConfig(default_model=default_model)

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
        return AgentsConfig(
            command=data.get("command", DEFAULT_COMMAND),
            roles={str(k): str(v) for k, v in (data.get("roles") or {}).items()},
            models={str(k): str(v) for k, v in (data.get("models") or {}).items()},
            default_model=str(data.get("model", default_model) or default_model),
        )
    except (yaml.YAMLError, AttributeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig(default_model=default_model)


def resolve_model(config: AgentsConfig, role: str) -> str:
    """Pick the model for a role: env var, then per-role override, then default."""
    env_model = os.environ.get(MODEL_ENV_VAR, "").strip()
    if env_model:
        return env_model
    return config.models.get(role) or config.default_model


def get_role_command(
    config: AgentsConfig,
    role: str,
    context: dict[str, str] | None = None,
) -> list[str]:
    """Build the argv for a role with variable substitution.

    Raises:
        ValueError: if the template still has unsubstituted variables, or is empty

    Example:
        >>> cmd = get_role_command(AgentsConfig(command="agent {role} -n {max_turns}"),
        ...                        "reviewer", {"max_turns": "5"})
        >>> cmd
        ['agent', 'reviewer', '-n', '5']
    """
    template = config.roles.get(role, config.command)
    values = {"role": role, "model": resolve_model(config, role)}
    values.update(context or {})

    # Substitute after splitting so values containing spaces stay one argument
    parts = shlex.split(template)
    cmd = []
    for part in parts:
        for key, value in values.items():
            part = part.replace(f"{{{key}}}", str(value))
        cmd.append(part)

    remaining = [v for part in cmd for v in re.findall(r'\{(\w+)\}', part)]
    if remaining:
        raise ValueError(f"Role '{role}' has unsubstituted variables: {remaining}. Template: {template}")
    if not cmd:
        raise ValueError(f"Role '{role}' has an empty command template")

    # An empty --model value means "backend default"; drop the flag
    cleaned = []
    skip = False
    for i, part in enumerate(cmd):
        if skip:
            skip = False
            continue
        if part == "--model" and i + 1 < len(cmd) and cmd[i + 1] == "":
            skip = True
            continue
        cleaned.append(part)
    return cleaned

