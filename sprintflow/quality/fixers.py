"""
Mechanical rewrites used by auto-fix.

Each helper either returns the rewritten text or None when the rewrite would
be a guess; callers leave the artifact untouched on None.
"""

import json
import re
from pathlib import PurePosixPath
from typing import Any

import yaml

FENCE_LINE = re.compile(r'^```')  # column 0 only; indented fences are content
DATA_SUFFIXES = {".json", ".yaml", ".yml", ".toml"}


def is_data_file(rel_path: str) -> bool:
    return PurePosixPath(rel_path).suffix.lower() in DATA_SUFFIXES


def fence_lines(text: str) -> list[int]:
    return [i for i, line in enumerate(text.splitlines()) if FENCE_LINE.match(line)]


def strip_markdown_fence(text: str) -> str | None:
    """Extract the body of the single fenced block in text.

    Returns None when there is no fence, more than one block, or an
    unbalanced fence, since the data boundary is then ambiguous.
    """
    fences = fence_lines(text)
    if len(fences) != 2:
        return None
    lines = text.splitlines()
    body = lines[fences[0] + 1:fences[1]]
    return "\n".join(body).strip("\n") + "\n"


def strip_trailing_whitespace(text: str) -> str:
    stripped = "\n".join(line.rstrip() for line in text.splitlines())
    return stripped + "\n" if text.endswith("\n") else stripped


def _squash(value: str) -> str:
    return re.sub(r'[^a-z0-9]', '', value.lower())


def normalize_enum(value: Any, allowed: list[Any]) -> str | None:
    """Map a near-miss like 'Done' or 'WriteCode' onto 'DONE' / 'WRITE_CODE'.

    Returns None if value is not a string or matches zero or several entries.
    """
    if not isinstance(value, str):
        return None
    wanted = _squash(value)
    matches = [a for a in allowed if isinstance(a, str) and _squash(a) == wanted]
    if len(matches) != 1 or matches[0] == value:
        return None
    return matches[0]


def set_path(data: Any, path: tuple, value: Any) -> None:
    target = data
    for part in path[:-1]:
        target = target[part]
    target[path[-1]] = value


def load_data(rel_path: str, text: str) -> Any:
    """Parse a JSON or YAML artifact. Raises ValueError on any parse error."""
    suffix = PurePosixPath(rel_path).suffix.lower()
    try:
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(str(e)) from None


def dump_data(rel_path: str, data: Any) -> str | None:
    """Serialize data back in the artifact's own format. TOML is not rewritten."""
    suffix = PurePosixPath(rel_path).suffix.lower()
    if suffix == ".json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if suffix in (".yaml", ".yml"):
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return None
