"""
jobenv CLI: Command-line interface for running programs and managing jobs.

Provides commands for:
- run: Run a program inside a context environment
- cancel: Cancel a submitted cluster job
- status: Reconnect to a submitted SLURM job through its job directory
- envs: List environment profiles from .jobenv.toml
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from jobenv.config import (
    ATTACHED,
    DEFAULT_PARALLELISM,
    SHUTDOWN_IF_ATTACHED,
    TARGET,
    Configuration,
    ProjectConfig,
)
from jobenv.errors import JobEnvError

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="jobenv",
        description="jobenv: Run programs that submit jobs to local or cluster targets",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_parser = subparsers.add_parser(
        "run",
        help="Run a program inside a context environment",
    )
    run_parser.add_argument(
        "entrypoint",
        help="Program to run, as 'module:function'",
    )
    run_parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Arguments passed to the program",
    )
    run_parser.add_argument(
        "--env", "-e",
        help="Environment profile from .jobenv.toml (default: project default_env)",
    )
    run_parser.add_argument(
        "--target", "-t",
        help="Submission target, e.g. local or slurm (overrides the profile)",
    )
    run_parser.add_argument(
        "--detached", "-d",
        action="store_true",
        help="Return right after submission instead of waiting for the result",
    )
    run_parser.add_argument(
        "--shutdown-on-attached-exit",
        action="store_true",
        help="Cancel attached jobs when this process exits",
    )
    run_parser.add_argument(
        "--parallelism", "-p",
        type=int,
        help="Default parallelism for submitted jobs",
    )
    run_parser.add_argument(
        "-D",
        action="append",
        default=[],
        dest="defines",
        metavar="KEY=VALUE",
        help="Set a configuration value (repeatable), e.g. -D client.partition=gpu",
    )

    # cancel
    cancel_parser = subparsers.add_parser(
        "cancel",
        help="Cancel a submitted job",
    )
    cancel_parser.add_argument(
        "job_id",
        help="Job ID to cancel",
    )
    cancel_parser.add_argument(
        "--target", "-t",
        default="slurm",
        choices=["slurm"],
        help="Target the job was submitted to (default: slurm)",
    )

    # status
    status_parser = subparsers.add_parser(
        "status",
        help="Show the outcome of a submitted SLURM job",
    )
    status_parser.add_argument(
        "job_dir",
        help="Job directory written at submission (contains manifest.json)",
    )
    status_parser.add_argument(
        "--wait", "-w",
        action="store_true",
        help="Block until the job has finished",
    )
    status_parser.add_argument(
        "--poll-interval",
        type=float,
        default=10.0,
        help="Seconds between scheduler queries while waiting (default: 10)",
    )

    # envs
    subparsers.add_parser(
        "envs",
        help="List environment profiles",
    )

    args = parser.parse_args(argv)

    # Setup logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "run":
        return handle_run(args)
    elif args.command == "cancel":
        return handle_cancel(args)
    elif args.command == "status":
        return handle_status(args)
    elif args.command == "envs":
        return handle_envs(args)
    else:
        parser.print_help()
        return 0


def parse_defines(defines: list[str]) -> dict[str, str]:
    """
    Parse ``KEY=VALUE`` pairs.

    Raises:
        ValueError: If an entry has no ``=``.
    """
    parsed: dict[str, str] = {}
    for define in defines:
        key, sep, value = define.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid -D value {define!r}: expected KEY=VALUE")
        parsed[key.strip()] = value.strip()
    return parsed


def build_configuration(args: argparse.Namespace) -> Configuration:
    """
    Resolve the run configuration.

    The project profile (when a .jobenv.toml exists) is applied first, then
    command-line flags, then ``-D`` values.
    """
    try:
        project = ProjectConfig.load()
    except FileNotFoundError:
        if args.env:
            raise
        configuration = Configuration()
    else:
        configuration = project.resolve(args.env).to_configuration()

    if args.target:
        configuration.set(TARGET, args.target)
    if args.detached:
        configuration.set(ATTACHED, False)
    if args.shutdown_on_attached_exit:
        configuration.set(SHUTDOWN_IF_ATTACHED, True)
    if args.parallelism is not None:
        configuration.set(DEFAULT_PARALLELISM, args.parallelism)
    for key, value in parse_defines(args.defines).items():
        configuration.set_raw(key, value)
    return configuration


def handle_run(args: argparse.Namespace) -> int:
    """Handle the run command."""
    from jobenv.program import run_program

    try:
        configuration = build_configuration(args)
    except (FileNotFoundError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    logger.debug("Resolved configuration: %r", configuration)

    try:
        result = run_program(args.entrypoint, configuration, args=args.args)
    except (JobEnvError, ValueError, ImportError, AttributeError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    if result is None:
        console.print("Program finished without executing a job")
        return 0

    if result.is_detached:
        console.print(f"Job [bold]{result.job_id}[/bold] submitted (detached)")
        return 0

    console.print(_result_table(result.to_dict()))
    return 0


def _result_table(data: dict[str, Any]) -> Table:
    table = Table(title=f"Job {data['job_id']}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("status", str(data["status"]))
    table.add_row("net runtime", f"{data['net_runtime_ms']} ms")
    for name, value in sorted(data.get("metrics", {}).items()):
        table.add_row(name, str(value))
    return table


def handle_cancel(args: argparse.Namespace) -> int:
    """Handle the cancel command."""
    from jobenv.client.slurm import cancel_job

    try:
        cancel_job(args.job_id)
    except RuntimeError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    console.print(f"Cancellation requested for job {args.job_id}")
    return 0


def handle_status(args: argparse.Namespace) -> int:
    """Handle the status command."""
    from jobenv.client.slurm import SlurmSubmissionHandle

    try:
        handle = SlurmSubmissionHandle.from_job_dir(
            args.job_dir, poll_interval=args.poll_interval
        )
    except FileNotFoundError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    if not args.wait and not handle.poll():
        console.print(f"Job [bold]{handle.job_id}[/bold] has not finished yet")
        return 0

    try:
        result = handle.get_execution_result().result()
    except JobEnvError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    console.print(_result_table(result.to_dict()))
    return 0


def handle_envs(args: argparse.Namespace) -> int:
    """Handle the envs command."""
    try:
        project = ProjectConfig.load()
    except FileNotFoundError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    table = Table(title=project.project.name or "environments")
    table.add_column("Environment")
    table.add_column("Target")
    table.add_column("Default")
    for name in project.list_environments():
        settings = project.environments[name].settings
        is_default = "yes" if name == project.project.default_env else ""
        table.add_row(name, str(settings.get(TARGET.key, TARGET.default)), is_default)
    console.print(table)
    return 0


if __name__ == "__main__":
    sys.exit(main())
