"""
sf init - Create .sprintflow/ and import a sprint plan.
"""

from pathlib import Path

import yaml

from sprintflow.data.models import Sprint, iso_dates
from sprintflow.data.store import SprintStore, StoreError
from sprintflow.lib.config import init_state_dir, load_project_config
from sprintflow.lib.constants import EXIT_CONFIG, EXIT_ERROR, EXIT_NOT_FOUND, EXIT_SUCCESS


def cmd_init(args, repo_path: Path) -> int:
    """Set up the state directory, optionally importing a SPRINTS.yml plan."""
    if not (repo_path / ".git").exists():
        print(f"ERROR: {repo_path} is not a git repository")
        return EXIT_CONFIG

    state_dir = init_state_dir(repo_path, args.mainline)
    config = load_project_config(repo_path)
    store = SprintStore(config.sprints_file)

    if args.plan:
        plan_path = Path(args.plan)
        if not plan_path.exists():
            print(f"ERROR: Plan file not found: {plan_path}")
            return EXIT_NOT_FOUND
        if store.exists() and not args.force:
            print(f"ERROR: {config.sprints_file} already exists (use --force to replace it)")
            return EXIT_ERROR
        try:
            data = iso_dates(yaml.safe_load(plan_path.read_text()) or {})
            sprints = [Sprint.from_dict(entry) for entry in data.get("sprints") or []]
            project = dict(data.get("project") or {})
        except (yaml.YAMLError, KeyError, ValueError, TypeError) as e:
            print(f"ERROR: Could not read plan {plan_path}: {e}")
            return EXIT_CONFIG
        project.setdefault("name", config.name)
        try:
            store.initialize(project, sprints)
        except StoreError as e:
            print(f"ERROR: {e}")
            return EXIT_CONFIG
        print(f"Imported {len(sprints)} sprint(s) into {config.sprints_file}")
    elif not store.exists():
        store.initialize({"name": config.name}, [])

    print(f"Initialized {state_dir}")
    print()
    print("Next steps:")
    print(f"  Edit {state_dir / 'project.env'} (test commands, retries)")
    print("  sf status")
    print("  sf run")
    return EXIT_SUCCESS
