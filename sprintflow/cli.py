#!/usr/bin/env python3
"""sprintflow CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from sprintflow.lib.config import find_repo_root, load_project_config
from sprintflow.lib.constants import EXIT_CONFIG
from sprintflow.commands import init as cmd_init_module
from sprintflow.commands import status as cmd_status_module
from sprintflow.commands import run as cmd_run_module
from sprintflow.commands import merge as cmd_merge_module
from sprintflow.commands import rollback as cmd_rollback_module
from sprintflow.commands import gates as cmd_gates_module


def get_repo_path(args) -> Path:
    """Repository to operate on: --repo, or the nearest parent holding .sprintflow/."""
    if args.repo:
        return Path(args.repo).resolve()
    root = find_repo_root(Path.cwd())
    if root is None:
        print("ERROR: Not inside a sprintflow project. Run 'sf init' in the repository root.")
        sys.exit(EXIT_CONFIG)
    return root


def get_project_config(args):
    try:
        return load_project_config(get_repo_path(args))
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(EXIT_CONFIG)


def cmd_init(args):
    repo_path = Path(args.repo).resolve() if args.repo else Path.cwd().resolve()
    return cmd_init_module.cmd_init(args, repo_path)


def cmd_status(args):
    return cmd_status_module.cmd_status(args, get_project_config(args))


def cmd_run(args):
    return cmd_run_module.cmd_run(args, get_project_config(args))


def cmd_merge(args):
    return cmd_merge_module.cmd_merge(args, get_project_config(args))


def cmd_rollback(args):
    return cmd_rollback_module.cmd_rollback(args, get_project_config(args))


def cmd_gates(args):
    return cmd_gates_module.cmd_gates(args, get_project_config(args))


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(prog='sf', description='Sprint orchestrator')
    parser.add_argument('--repo', '-C', help='Repository root (default: nearest parent with .sprintflow/)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # sf init
    p_init = subparsers.add_parser('init', help='Create .sprintflow/ in the repository')
    p_init.add_argument('--plan', help='SPRINTS.yml plan to import')
    p_init.add_argument('--mainline', default='main', help='Mainline branch (default: main)')
    p_init.add_argument('--force', action='store_true', help='Replace an existing sprint state file')
    p_init.set_defaults(func=cmd_init)

    # sf status
    p_status = subparsers.add_parser('status', help='Show sprint phases and workspaces')
    p_status.set_defaults(func=cmd_status)

    # sf run
    p_run = subparsers.add_parser('run', help='Run sprints until DONE or BLOCKED')
    p_run.add_argument('--sprint', '-s', type=int, action='append', help='Sprint ID (repeatable; default: all runnable)')
    p_run.add_argument('--parallel', '-j', type=int, help='Worker count (default: PARALLEL_WORKERS)')
    p_run.add_argument('--prefect', action='store_true', help='Run as a Prefect flow')
    p_run.set_defaults(func=cmd_run)

    # sf merge
    p_merge = subparsers.add_parser('merge', help='Retry the merge of a DONE sprint')
    p_merge.add_argument('id', type=int, help='Sprint ID')
    p_merge.set_defaults(func=cmd_merge)

    # sf rollback
    p_rollback = subparsers.add_parser('rollback', help='Discard a sprint workspace without merging')
    p_rollback.add_argument('id', type=int, help='Sprint ID')
    p_rollback.add_argument('--reset', action='store_true', help='Also reset the sprint to PENDING')
    p_rollback.set_defaults(func=cmd_rollback)

    # sf gates
    p_gates = subparsers.add_parser('gates', help='Run quality gates over a sprint workspace')
    p_gates.add_argument('id', type=int, help='Sprint ID')
    p_gates.add_argument('--fix', action='store_true', help='Apply auto-fixes')
    p_gates.set_defaults(func=cmd_gates)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
