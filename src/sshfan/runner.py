#!/usr/bin/env python3
"""Main entry point for sshfan."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import Settings, load_settings
from .dispatcher import Dispatcher
from .hosts import HostDirectory
from .log import setup_logger
from .session import SessionStatus

# ANSI colors for different hosts
COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshfan",
        description="Run shell commands on many SSH hosts at once",
        epilog=(
            "Tokens after the options are appended to the last command. "
            "Command tokens that look like sshfan options (such as -v) must "
            "follow --, e.g. sshfan -H web -c grep -- -v foo /var/log/syslog"
        ),
        allow_abbrev=False,
    )
    parser.add_argument(
        "-H",
        "--hosts",
        action="append",
        default=[],
        metavar="HOSTS",
        help="Comma-separated host aliases, group names or hostnames (repeatable)",
    )
    parser.add_argument(
        "-c",
        "--command",
        action="append",
        dest="commands",
        default=[],
        metavar="COMMAND",
        help="Command to run on every host (repeatable)",
    )
    parser.add_argument("--config", type=Path, help="Path to YAML settings file")
    parser.add_argument("--ssh-config", type=Path, help="Override the host alias file")
    parser.add_argument("--log-dir", type=Path, help="Write per-host transcripts under this directory")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log diagnostics to stderr (repeat for debug output)",
    )
    parser.add_argument("--color", action="store_true", help="Color the host prefixes")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the host/command pairs without connecting",
    )
    parser.add_argument(
        "--list-hosts",
        action="store_true",
        help="Print the known host aliases and their users",
    )
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse arguments, folding stray tokens into the last command.

    Everything after the first ``--`` is taken verbatim as command tokens.
    """
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    trailing: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, trailing = argv[:split], argv[split + 1 :]
    args, extra = parser.parse_known_args(argv)
    extra += trailing

    args.hosts = [host.strip() for value in args.hosts for host in value.split(",") if host.strip()]

    if extra:
        if args.commands:
            args.commands[-1] = " ".join([args.commands[-1], *extra])
        else:
            args.commands = [" ".join(extra)]

    if not args.list_hosts:
        if not args.hosts:
            parser.error("at least one host is required (-H)")
        if not args.commands:
            parser.error("at least one command is required (-c)")
    return args


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Load settings
    try:
        settings = load_settings(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (ValueError, TypeError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Command line overrides
    if args.ssh_config:
        settings.ssh_config = args.ssh_config.expanduser()
    if args.log_dir:
        settings.log_dir = args.log_dir.expanduser()

    level = settings.log_level
    if args.verbose:
        level = "DEBUG" if args.verbose > 1 else "INFO"
    try:
        setup_logger(level)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    directory = HostDirectory.load(settings.ssh_config)

    if args.list_hosts:
        for alias, user in directory.items():
            print(f"{alias} {user}")
        return 0

    if args.dry_run:
        dispatcher = Dispatcher(directory, settings)
        for command, host in dispatcher.plan(args.hosts, args.commands):
            user = directory.user_for(host)
            target = f"{user}@{host}" if user else host
            print(f"{target}: {command}")
        return 0

    if args.dashboard:
        return _run_dashboard(directory, settings, args.hosts, args.commands)

    return _run_headless(directory, settings, args.hosts, args.commands, args.color)


def _run_headless(
    directory: HostDirectory,
    settings: Settings,
    hosts: list[str],
    commands: list[str],
    color: bool,
) -> int:
    """Run the dispatcher printing prefixed lines."""
    host_colors: dict[str, str] = {}

    def prefix(host: str) -> str:
        if not color:
            return host
        if host not in host_colors:
            host_colors[host] = COLORS[len(host_colors) % len(COLORS)]
        return f"{host_colors[host]}{host}{RESET}"

    def on_output(host: str, text: str) -> None:
        print(f"{prefix(host)}: {text}", flush=True)

    def on_error(host: str, text: str) -> None:
        print(f"{prefix(host)}: {text}", file=sys.stderr, flush=True)

    dispatcher = Dispatcher(directory, settings, on_output=on_output, on_error=on_error)
    sessions = dispatcher.run(hosts, commands)
    return _exit_status(sessions)


def _run_dashboard(
    directory: HostDirectory,
    settings: Settings,
    hosts: list[str],
    commands: list[str],
) -> int:
    """Run the dispatcher inside the TUI dashboard."""
    from .dashboard import Dashboard

    app = Dashboard(directory, settings, hosts, commands)
    app.run()

    failed_hosts = sorted({s.host for s in app.dispatcher.sessions if s.status is SessionStatus.FAILED})
    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)
        return 1
    return 0


def _exit_status(sessions) -> int:
    failed = [s for s in sessions if s.status is SessionStatus.FAILED]
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
