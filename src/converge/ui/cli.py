# ruff: noqa: T201

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from converge.app import (
    apply_document,
    dependency_graph,
    destroy_document,
    force_unlock,
    forget_resource,
    list_state,
    open_state_store,
    plan_document,
    refresh_document,
    show_state,
)
from converge.config import ConfigurationError, DriftMode, configure_logging, get_run_config
from converge.domain.errors import ParseError, ReferenceResolutionError
from converge.ui.render import (
    join,
    render_apply,
    render_plan,
    render_record,
    render_refresh,
    render_state_list,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from converge.config import RunConfig

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--workspace", type=str, help="State workspace (default: config)")
    common.add_argument(
        "--lock-timeout",
        type=float,
        help="Seconds to wait for the state lock before giving up (default: config)",
    )
    common.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")

    run = argparse.ArgumentParser(add_help=False, parents=[common])
    run.add_argument("path", type=Path, help="Declaration file or directory")
    run.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a declared variable (repeatable)",
    )
    run.add_argument(
        "--parallelism",
        type=int,
        help="Maximum number of concurrent provider calls (default: config)",
    )
    run.add_argument(
        "--drift-mode",
        choices=[mode.value for mode in DriftMode],
        help="How to treat live resources that no longer match state (default: config)",
    )

    detaching = argparse.ArgumentParser(add_help=False)
    detaching.add_argument(
        "--detach",
        action="append",
        default=[],
        metavar="ADDRESS",
        help="Drop ADDRESS from state instead of destroying it (repeatable)",
    )

    parser = argparse.ArgumentParser(
        prog="converge", description="Reconcile declared infrastructure with recorded state"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "plan", parents=[run, detaching], help="Show the changes an apply would make"
    )
    subparsers.add_parser("apply", parents=[run, detaching], help="Apply the declaration")
    subparsers.add_parser(
        "destroy", parents=[run, detaching], help="Delete every resource recorded in state"
    )
    subparsers.add_parser("refresh", parents=[run], help="Reconcile state with live resources")

    graph = subparsers.add_parser("graph", parents=[common], help="Print the dependency graph")
    graph.add_argument("path", type=Path, help="Declaration file or directory")

    state = subparsers.add_parser("state", help="Inspect and edit recorded state")
    state_sub = state.add_subparsers(dest="state_command", required=True)
    state_sub.add_parser("list", parents=[common], help="List recorded resources")
    state_show = state_sub.add_parser("show", parents=[common], help="Show one State Record")
    state_show.add_argument("address", type=str)
    state_rm = state_sub.add_parser(
        "rm", parents=[common], help="Forget a resource without destroying it"
    )
    state_rm.add_argument("address", type=str)

    unlock = subparsers.add_parser(
        "force-unlock", parents=[common], help="Release a stale state lock"
    )
    unlock.add_argument("lock_id", type=str)

    return parser.parse_args(list(argv))


def _parse_variables(pairs: Sequence[str]) -> dict[str, object]:
    variables: dict[str, object] = {}
    for pair in pairs:
        name, separator, value = pair.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Invalid --var {pair!r}; expected NAME=VALUE")
        variables[name.strip()] = value
    return variables


def _run_config(args: argparse.Namespace) -> RunConfig:
    overrides: dict[str, object] = {}
    if args.workspace:
        overrides["workspace"] = args.workspace
    if args.lock_timeout is not None:
        overrides["lock_timeout_seconds"] = args.lock_timeout
    if getattr(args, "parallelism", None) is not None:
        overrides["parallelism"] = args.parallelism
    if getattr(args, "drift_mode", None):
        overrides["drift_mode"] = DriftMode(args.drift_mode)
    return dataclasses.replace(get_run_config(), **overrides)  # pyright: ignore[reportArgumentType]


def _execute(args: argparse.Namespace, config: RunConfig) -> int:
    command = args.command
    if command == "graph":
        print(dependency_graph(args.path).to_dot())
        return 0

    store = open_state_store(config)
    if command in {"plan", "apply", "destroy", "refresh"}:
        variables = _parse_variables(args.var)
        if command == "refresh":
            result = refresh_document(
                args.path, variables=variables, config=config, state_store=store
            )
            print(join(render_refresh(result)))
            return 0
        if command == "plan":
            plan_report = plan_document(
                args.path, variables=variables, detach=args.detach, config=config, state_store=store
            )
            print(join(render_plan(plan_report.plan)))
            return 0
        run = apply_document if command == "apply" else destroy_document
        report = run(
            args.path, variables=variables, detach=args.detach, config=config, state_store=store
        )
        print(join(render_plan(report.plan)))
        print(join(render_apply(report.result)))
        return report.exit_code

    if command == "state":
        if args.state_command == "list":
            print(join(render_state_list(list_state(state_store=store))))
            return 0
        if args.state_command == "show":
            record = show_state(args.address, state_store=store)
            if record is None:
                log.error("%s is not in state", args.address)
                return 1
            print(join(render_record(record)))
            return 0
        if args.state_command == "rm":
            return 0 if forget_resource(args.address, config=config, state_store=store) else 1

    if command == "force-unlock":
        force_unlock(args.lock_id, state_store=store)
        return 0

    raise ValueError(f"Unsupported command: {command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        config = _run_config(parsed_args)
        exit_code = _execute(parsed_args, config)
    except (ValueError, ConfigurationError, ParseError, ReferenceResolutionError):
        log.exception("Invalid declaration or arguments")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
