#!/usr/bin/env python3
"""Command line interface for pbx-sync.

Usage:
    pbx-sync status
    pbx-sync push 101 | --all
    pbx-sync pull 101 | --all
    pbx-sync auto
    pbx-sync enable 101 | disable 101 | delete 101
    pbx-sync history [--extension 101] [--limit 20]

Environment variables:
    PBX_SYNC_CONFIG         Settings file (default: search path)
    PBX_SYNC_PJSIP_CONFIG   Override the managed pjsip.conf
    PBX_SYNC_LOG_LEVEL      Console log level
"""
import argparse
import getpass
import logging
import sys
from typing import Optional

from .config import Settings, load_settings
from .config_store import ConfigSectionStore
from .declared import YamlDeclaredStore
from .errors import NotFoundError, PbxSyncError
from .pjsip import AsteriskCLI, PjsipProbe, PjsipRenderer
from .sync import SyncPolicy, SyncStatus, run_startup_sync, summarize_sync
from .sync.schema import BulkSyncResult, SyncActionResult
from .utils import ChangeTracker, get_recent_changes, setup_audit_logging, setup_logging

logger = logging.getLogger(__name__)

CONFIG_HEADER = [
    "; PJSIP configuration",
    "; Sections between BEGIN/END MANAGED markers are maintained by pbx-sync",
]

_STATUS_MARKERS = {
    SyncStatus.MATCH: "ok",
    SyncStatus.DECLARED_ONLY: "declared only",
    SyncStatus.RUNTIME_ONLY: "runtime only",
    SyncStatus.MISMATCH: "MISMATCH",
}


def build_policy(settings: Settings, user: str = "system") -> SyncPolicy:
    """Wire the production collaborators from settings."""
    cli = AsteriskCLI(
        binary=settings.asterisk_binary,
        timeout=settings.cli_timeout,
        reload_command=settings.reload_command,
    )
    sections = ConfigSectionStore(
        settings.pjsip_config,
        backup_dir=settings.backup_dir,
        max_backups=settings.max_backups,
        git_enabled=settings.git_enabled,
    )
    return SyncPolicy(
        declared=YamlDeclaredStore(settings.declared_dir),
        probe=PjsipProbe(settings.pjsip_config, cli=cli),
        sections=sections,
        renderer=PjsipRenderer(),
        reloader=cli,
        tracker=ChangeTracker(user=user),
    )


def prepare_config(policy: SyncPolicy) -> None:
    """Create the managed config with transports if it does not exist yet."""
    if policy.sections.ensure_file(CONFIG_HEADER):
        policy.ensure_transports()


def _print_action(result: SyncActionResult) -> None:
    print(f"Extension {result.number}: {result.action} {'done' if result.success else 'skipped'}")
    if result.warning:
        print(f"WARNING: {result.warning}")


def _print_bulk(result: BulkSyncResult) -> int:
    print(f"{result.direction.value}: {result.success_count} synced, {len(result.errors)} failed")
    for error in result.errors:
        print(f"  - {error}")
    if result.reload_error:
        print(f"WARNING: config written but reload failed: {result.reload_error}")
    return 1 if result.errors else 0


def cmd_status(policy: SyncPolicy, args: argparse.Namespace) -> int:
    infos = policy.compare()
    if args.verbose_table:
        for info in infos:
            registered = ""
            if info.runtime is not None:
                registered = "registered" if info.runtime.registered else "offline"
            print(f"{info.number:>8}  {_STATUS_MARKERS[info.status]:<14} {registered}")
        print()
    print(summarize_sync(infos))
    summary = policy.engine.summarize(infos)
    return 0 if not summary.needs_action else 2


def cmd_push(policy: SyncPolicy, args: argparse.Namespace) -> int:
    prepare_config(policy)
    if args.all:
        return _print_bulk(policy.sync_all_declared_to_runtime())
    _print_action(policy.sync_declared_to_runtime(args.number))
    return 0


def cmd_pull(policy: SyncPolicy, args: argparse.Namespace) -> int:
    if args.all:
        return _print_bulk(policy.sync_all_runtime_to_declared())
    _print_action(policy.sync_runtime_to_declared(args.number))
    return 0


def cmd_auto(policy: SyncPolicy, args: argparse.Namespace) -> int:
    prepare_config(policy)
    result = run_startup_sync(policy)
    if result is None:
        print("Auto-sync failed, see log for details")
        return 1
    print(result.summary())
    return 1 if result.errors else 0


def cmd_enable(policy: SyncPolicy, args: argparse.Namespace) -> int:
    prepare_config(policy)
    _print_action(policy.set_enabled(args.number, args.command == "enable"))
    return 0


def cmd_delete(policy: SyncPolicy, args: argparse.Namespace) -> int:
    _print_action(policy.delete_extension(args.number))
    return 0


def cmd_history(audit_file, args: argparse.Namespace) -> int:
    records = get_recent_changes(audit_file, extension=args.extension, limit=args.limit)
    if not records:
        print("No recorded changes")
        return 0
    for r in records:
        status = "ok" if r.success else f"FAILED: {r.error}"
        line = f"{r.timestamp}  {r.extension:>8}  {r.operation:<15} {r.user:<10} {status}"
        if r.reload_error:
            line += f" (reload: {r.reload_error})"
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pbx-sync",
        description="Reconcile declared extensions with the Asterisk PJSIP configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show drift between declared records and pjsip.conf
    pbx-sync status

    # Push one extension, or every declared-only/mismatched one
    pbx-sync push 101
    pbx-sync push --all

    # Startup pass: heal one-sided drift, report conflicts
    pbx-sync auto
""",
    )
    parser.add_argument("--config", help="Settings file (default: search path)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Compare declared and runtime state")
    status.add_argument(
        "-l", "--list", dest="verbose_table", action="store_true",
        help="List every extension, not only drift",
    )

    for name, help_text in (
        ("push", "Write declared records into the runtime config"),
        ("pull", "Import runtime extensions into the declared store"),
    ):
        p = sub.add_parser(name, help=help_text)
        target = p.add_mutually_exclusive_group(required=True)
        target.add_argument("number", nargs="?", help="Extension number")
        target.add_argument("--all", action="store_true", help="All eligible extensions")

    auto = sub.add_parser("auto", help="Run the automatic sync pass")
    auto.add_argument(
        "--force", action="store_true",
        help="Run even when auto_sync is disabled in settings",
    )

    for name in ("enable", "disable", "delete"):
        p = sub.add_parser(name, help=f"{name.capitalize()} an extension")
        p.add_argument("number", help="Extension number")

    history = sub.add_parser("history", help="Show recent sync changes")
    history.add_argument("--extension", help="Only this extension")
    history.add_argument("--limit", type=int, default=20, help="Max entries (default: 20)")

    return parser


COMMANDS = {
    "status": cmd_status,
    "push": cmd_push,
    "pull": cmd_pull,
    "auto": cmd_auto,
    "enable": cmd_enable,
    "disable": cmd_enable,
    "delete": cmd_delete,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the pbx-sync CLI."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except PbxSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_dir, verbose=args.verbose)
    audit_file = setup_audit_logging(settings.log_dir)

    if args.command == "history":
        return cmd_history(audit_file, args)

    if args.command == "auto" and not settings.auto_sync and not args.force:
        logger.info("Auto-sync disabled by settings, skipping")
        print("Auto-sync disabled by settings (use --force to run anyway)")
        return 0

    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "cli"
    policy = build_policy(settings, user=user)

    try:
        return COMMANDS[args.command](policy, args)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except PbxSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
