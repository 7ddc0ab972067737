"""CLI entry point for zfs-sync-manager."""
from __future__ import annotations

import argparse
import sys

from zsm import __version__
from zsm.config import ConfigError, load_settings
from zsm.errors import BackendUnavailable
from zsm.executor import ExecutorError, LocalExecutor
from zsm.output import Console, color_enabled, enable_syslog


def _setup(args, tool: str):
    """Load settings and build the console; apply command-line overrides."""
    settings = load_settings(args.config)
    if getattr(args, "strict", False):
        settings.strict = True
    if getattr(args, "no_progress", False) or not sys.stderr.isatty():
        settings.progress = False
    if args.no_color:
        settings.color = False
    if settings.syslog:
        enable_syslog(tool)
    console = Console(color=color_enabled(settings.color), verbose=args.verbose)
    return settings, console


def cmd_replicate(args, executor) -> int:
    from zsm.sync import run_replication
    settings, console = _setup(args, "zsm-replicate")
    return run_replication(settings, executor, console, dry_run=args.dry_run)


def cmd_upload(args, executor) -> int:
    from zsm.s3 import S3Store
    from zsm.sync import run_upload
    settings, console = _setup(args, "zsm-upload")
    store = S3Store.connect(settings.s3)
    return run_upload(settings, executor, store, console, dry_run=args.dry_run)


def cmd_status(args, executor) -> int:
    """Show each pair's checkpoint and what the next run would transfer."""
    from zsm import zfs
    from zsm.models import REPLICATION, S3
    from zsm.s3 import S3Store
    from zsm.sync import describe_pairs
    from zsm.tracker import ObjectStoreTracker, ReplicationTracker
    settings, console = _setup(args, "zsm-status")

    zfs.check_tools(["zfs"], executor)
    rc = 0
    repl_pairs = zfs.discover_pairs(settings.properties.replication_target, REPLICATION, executor)
    if repl_pairs:
        console.info("Replication:")
        rc |= describe_pairs(repl_pairs, executor, ReplicationTracker(executor), console)

    s3_pairs = zfs.discover_pairs(settings.properties.aws_bucket, S3, executor)
    if s3_pairs:
        console.info("S3 backup:")
        try:
            store = S3Store.connect(settings.s3)
        except BackendUnavailable as e:
            console.warn(f"Cannot inspect S3 backups: {e}")
            return 1
        tracker = ObjectStoreTracker(
            store, console, settings.s3.tag_key, settings.s3.incremental_base_suffix
        )
        rc |= describe_pairs(s3_pairs, executor, tracker, console)

    if not repl_pairs and not s3_pairs:
        console.warn("No datasets are configured for replication or S3 backup.")
    return rc


def cmd_snapshot(args, executor) -> int:
    from zsm.snapshot import run_snapshot
    settings, console = _setup(args, "zsm-snapshot")
    return run_snapshot(settings, executor, console, dry_run=args.dry_run)


def cmd_cleanup(args, executor) -> int:
    from zsm.cleanup import run_cleanup
    settings, console = _setup(args, "zsm-cleanup")
    return run_cleanup(
        settings,
        args.patterns,
        executor,
        console,
        dry_run=args.dry_run,
        no_confirm=args.yes,
    )


def cmd_info(args, executor) -> int:
    """Print the sync-related properties of every dataset."""
    from zsm import zfs
    settings, console = _setup(args, "zsm-info")
    zfs.check_tools(["zfs"], executor)
    props = settings.properties
    columns = [props.auto_snapshot, props.replication_target, props.aws_bucket]
    table = zfs.get_properties(columns, executor)

    print(f"{'Dataset':<30} {'Auto-Snap':<10} {'Replication Target':<30} {'AWS Bucket':<30}")
    print("-" * 103)
    for dataset in sorted(table):
        values = [table[dataset].get(c, "-") or "-" for c in columns]
        print(f"{dataset:<30} {values[0]:<10} {values[1]:<30} {values[2]:<30}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zsm",
        description="ZFS Sync Manager: replicate snapshots to pools and S3 buckets",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # Shared options
    def add_common(p):
        p.add_argument("-c", "--config", help="Path to YAML settings file")
        p.add_argument("--verbose", "-v", action="store_true",
                       help="Show the zfs commands being run")
        p.add_argument("--no-color", action="store_true",
                       help="Disable colored output")

    def add_transfer(p):
        add_common(p)
        p.add_argument("--dry-run", "-n", action="store_true",
                       help="Show what would happen without making changes")
        p.add_argument("--strict", action="store_true",
                       help="Stop at the first failed dataset")
        p.add_argument("--no-progress", action="store_true",
                       help="Do not show a progress bar")

    p_repl = sub.add_parser("replicate",
        help="Replicate datasets to their zfs-utils:replication-target")
    add_transfer(p_repl)
    p_repl.set_defaults(func=cmd_replicate)

    p_upload = sub.add_parser("upload",
        help="Upload datasets to their zfs-utils:aws-bucket")
    add_transfer(p_upload)
    p_upload.set_defaults(func=cmd_upload)

    p_status = sub.add_parser("status", help="Show sync state for each configured dataset")
    add_common(p_status)
    p_status.set_defaults(func=cmd_status)

    p_snap = sub.add_parser("snapshot",
        help="Create date-labelled snapshots for zfs-utils:auto-snap datasets")
    add_common(p_snap)
    p_snap.add_argument("--dry-run", "-n", action="store_true",
                        help="Show what would happen without making changes")
    p_snap.set_defaults(func=cmd_snapshot)

    p_clean = sub.add_parser("cleanup",
        help="Destroy snapshots matching filters (recent and latest are kept)")
    add_common(p_clean)
    p_clean.add_argument("patterns", nargs="+", metavar="PATTERN",
                         help="Regex filter; snapshots matching any filter are candidates")
    p_clean.add_argument("--dry-run", "-n", action="store_true",
                         help="Show what would happen without making changes")
    p_clean.add_argument("--yes", "-y", action="store_true",
                         help="Skip the confirmation prompt")
    p_clean.set_defaults(func=cmd_cleanup)

    p_info = sub.add_parser("info", help="Show sync properties of all datasets")
    add_common(p_info)
    p_info.set_defaults(func=cmd_info)

    return parser


def main(argv=None, executor=None) -> None:
    args = build_parser().parse_args(argv)
    executor = executor or LocalExecutor()
    try:
        rc = args.func(args, executor)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        rc = 1
    except (BackendUnavailable, ExecutorError) as e:
        print(f"Error: {e}", file=sys.stderr)
        rc = 1
    sys.exit(rc)


if __name__ == "__main__":
    main()
