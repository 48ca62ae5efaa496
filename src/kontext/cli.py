"""
Command-line interface for kontext.

Provides commands to list, select, inspect, refresh, remove and deduplicate
kubeconfig contexts.

Uses Python's argparse module (no external CLI libraries).

Exit codes:
    0    success
    1    user error (unknown context, credential cannot be refreshed)
    2    system error (missing/invalid kubeconfig, write failure,
         settings error, refresh failure)
    130  interrupted
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

from kontext import __version__
from kontext.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)
from kontext.errors import KontextError
from kontext.kubeconfig.store import resolve_kubeconfig_path
from kontext.registry import Registry

# Set up logging
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2
EXIT_INTERRUPTED = 130

# Global verbosity settings (set during run() based on args)
_quiet_mode = False


def set_output_mode(quiet: bool = False) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
    """
    global _quiet_mode
    _quiet_mode = quiet


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like
            listings and JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def format_table(headers: list[str], rows: list[list[Any]]) -> str:
    """
    Format rows as a left-aligned text table.

    Args:
        headers: Column headers.
        rows: Row values; None renders as empty.

    Returns:
        The table, one line per row, without trailing whitespace.
    """
    cells = [headers] + [["" if v is None else str(v) for v in row] for row in rows]
    widths = [max(len(row[i]) for row in cells) for i in range(len(headers))]
    lines = [
        "   ".join(value.ljust(width) for value, width in zip(row, widths)).rstrip()
        for row in cells
    ]
    return "\n".join(lines)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the kontext CLI."""
    parser = argparse.ArgumentParser(
        prog="kontext",
        description="Keep a kubeconfig minimal and its credentials fresh",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"kontext {__version__}",
    )

    parser.add_argument(
        "--kubeconfig",
        metavar="PATH",
        help="Kubeconfig to manage (default: $KUBECONFIG or ~/.kube/config)",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override settings file location (default: ~/.kontext/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(dest="command", title="commands")

    # list
    list_parser = subparsers.add_parser("list", help="List contexts")
    list_parser.add_argument(
        "--output", "-o",
        choices=["table", "json", "name"],
        default="table",
        help="Output format (default: table)",
    )
    list_parser.set_defaults(func=cmd_list)

    # current
    current_parser = subparsers.add_parser("current", help="Show the current context")
    current_parser.set_defaults(func=cmd_current)

    # select
    select_parser = subparsers.add_parser(
        "select", aliases=["use"], help="Make a context current"
    )
    select_parser.add_argument("name", help="Context name")
    select_parser.set_defaults(func=cmd_select)

    # status
    status_parser = subparsers.add_parser(
        "status", help="Show whether a context's credential is fresh"
    )
    status_parser.add_argument("name", help="Context name")
    status_parser.set_defaults(func=cmd_status)

    # refresh
    refresh_parser = subparsers.add_parser(
        "refresh", help="Refresh the credential of a context"
    )
    refresh_parser.add_argument("name", help="Context name")
    refresh_parser.add_argument(
        "--force",
        action="store_true",
        help="Refresh even if the credential is still fresh",
    )
    refresh_parser.set_defaults(func=cmd_refresh)

    # remove
    remove_parser = subparsers.add_parser(
        "remove", aliases=["rm"], help="Remove contexts and their unused entries"
    )
    remove_parser.add_argument("names", nargs="+", metavar="NAME", help="Context names")
    remove_parser.set_defaults(func=cmd_remove)

    # dedupe
    dedupe_parser = subparsers.add_parser(
        "dedupe", help="Merge contexts that use the same cluster and user"
    )
    dedupe_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show duplicate groups without changing the kubeconfig",
    )
    dedupe_parser.set_defaults(func=cmd_dedupe)

    # info
    info_parser = subparsers.add_parser("info", help="Show resolved paths and settings")
    info_parser.set_defaults(func=cmd_info)

    return parser


def setup_logging(verbose: int, quiet: bool, default_level: str = "WARNING") -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.ERROR
    elif verbose == 0:
        level = getattr(logging, default_level, logging.WARNING)
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_registry(args: argparse.Namespace) -> Registry:
    """Build the registry for the kubeconfig selected by args and settings."""
    return Registry.from_settings(args.settings, kubeconfig=args.kubeconfig)


def cmd_list(args: argparse.Namespace) -> int:
    """List contexts."""
    summaries = get_registry(args).list_contexts()

    if args.output == "json":
        output(json.dumps([s.to_dict() for s in summaries], indent=2), force=True)
        return EXIT_OK

    if args.output == "name":
        for summary in summaries:
            output(summary.name, force=True)
        return EXIT_OK

    if not summaries:
        output("No contexts found.")
        return EXIT_OK

    rows = [
        ["*" if s.current else "", s.name, s.cluster, s.user, s.namespace]
        for s in summaries
    ]
    output(format_table(["CURRENT", "NAME", "CLUSTER", "USER", "NAMESPACE"], rows), force=True)
    return EXIT_OK


def cmd_current(args: argparse.Namespace) -> int:
    """Show the current context."""
    summary = get_registry(args).current()
    if summary is None:
        output_error("No current context is set.")
        return EXIT_USER_ERROR
    output(summary.name, force=True)
    return EXIT_OK


def cmd_select(args: argparse.Namespace) -> int:
    """Make a context current."""
    get_registry(args).select(args.name)
    output(f"Switched to context '{args.name}'.")
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    """Show the staleness of a context's credential."""
    status = get_registry(args).status(args.name)
    output(f"Context:     {status.context}", force=True)
    output(f"User:        {status.user}", force=True)
    output(f"Credential:  {status.kind}", force=True)
    output(f"Staleness:   {status.staleness.value}", force=True)
    if status.expiry is not None:
        output(f"Expires:     {status.expiry.isoformat()}", force=True)
    output(f"Refreshable: {'yes' if status.refreshable else 'no'}", force=True)
    return EXIT_OK


def cmd_refresh(args: argparse.Namespace) -> int:
    """Refresh the credential behind a context."""
    result = get_registry(args).refresh(args.name, force=args.force)
    if not result.refreshed:
        output(f"Credential for user '{result.user}' is still fresh; nothing to do.")
        output("Use --force to refresh anyway.")
        return EXIT_OK

    message = f"Refreshed credential for user '{result.user}'"
    if result.new_expiry is not None:
        message += f" (expires {result.new_expiry.isoformat()})"
    output(message + ".")
    return EXIT_OK


def cmd_remove(args: argparse.Namespace) -> int:
    """Remove contexts."""
    result = get_registry(args).remove(args.names)
    for name in result.contexts:
        output(f"Removed context '{name}'.")
    for name in result.clusters:
        output(f"Removed unused cluster '{name}'.")
    for name in result.users:
        output(f"Removed unused user '{name}'.")
    if result.cleared_current:
        output("The current context was removed; no context is selected now.")
    return EXIT_OK


def cmd_dedupe(args: argparse.Namespace) -> int:
    """Merge duplicate contexts."""
    registry = get_registry(args)
    groups = registry.find_duplicates() if args.dry_run else registry.dedupe()

    if not groups:
        output("No duplicate contexts found.")
        return EXIT_OK

    verb = "Would merge" if args.dry_run else "Merged"
    for group in groups:
        output(f"{verb} {', '.join(group.duplicates)} into '{group.canonical}'.", force=True)
    return EXIT_OK


def cmd_info(args: argparse.Namespace) -> int:
    """Show resolved paths and settings."""
    settings: Settings = args.settings
    kubeconfig = resolve_kubeconfig_path(args.kubeconfig, settings)
    config_path = Path(args.config) if args.config else get_config_path()

    output(f"kontext {__version__}", force=True)
    output(f"Settings file:     {config_path}{'' if config_path.exists() else ' (not found)'}", force=True)
    output(f"Kubeconfig:        {kubeconfig}{'' if kubeconfig.exists() else ' (not found)'}", force=True)
    output(f"Refresh timeout:   {settings.refresh.timeout_seconds:g}s", force=True)
    output(f"Probe timeout:     {settings.refresh.probe_timeout_seconds:g}s", force=True)
    output(f"Expiry margin:     {settings.refresh.expiry_margin_seconds:g}s", force=True)
    return EXIT_OK


def run(argv: list[str] | None = None) -> int:
    """
    Parse arguments, run the selected command and map errors to exit codes.

    Returns:
        Process exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    set_output_mode(args.quiet)

    try:
        args.settings = load_config(Path(args.config) if args.config else None)
    except ConfigurationError as e:
        setup_logging(args.verbose, args.quiet)
        output_error(f"Configuration error: {e}")
        return EXIT_SYSTEM_ERROR

    setup_logging(args.verbose, args.quiet, args.settings.log_level)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        return EXIT_INTERRUPTED
    except KontextError as e:
        output_error(f"Error: {e}")
        if e.__cause__ is not None and args.verbose > 0:
            output_error(f"Caused by: {e.__cause__}")
        return EXIT_USER_ERROR if e.user_error else EXIT_SYSTEM_ERROR
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        logger.debug("Unhandled error", exc_info=True)
        return EXIT_SYSTEM_ERROR


def main() -> NoReturn:
    """Main entry point for the kontext CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()
