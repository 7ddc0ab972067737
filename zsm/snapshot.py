"""Create date-labelled snapshots for datasets marked for auto-snapshot."""
from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

from zsm import zfs
from zsm.executor import ExecutorError
from zsm.models import Snapshot

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import Settings
    from zsm.output import Console


def make_label(label_format: str, now: datetime.datetime | None = None) -> str:
    """Render the snapshot label in UTC, e.g. '2024-10-21' for '%Y-%m-%d'."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.strftime(label_format)


def run_snapshot(
    settings: "Settings",
    executor: "Executor",
    console: "Console",
    dry_run: bool = False,
    now: datetime.datetime | None = None,
) -> int:
    """Snapshot every auto-snapshot dataset. Returns exit code (0=success, 1=any failure)."""
    zfs.check_tools(["zfs"], executor)
    prop = settings.properties.auto_snapshot
    datasets = zfs.auto_snapshot_datasets(prop, executor)
    if not datasets:
        console.warn(f"No datasets with '{prop}=true'. Nothing to snapshot.")
        return 0

    label = make_label(settings.snapshot_label_format, now)
    any_error = False
    created = 0
    for dataset in datasets:
        snapshot = Snapshot(dataset=dataset, name=label)
        try:
            if zfs.snapshot_exists(snapshot, executor):
                console.warn(f"Snapshot '{snapshot.full_name}' already exists. Snapshot creation skipped.")
                continue
            zfs.create_snapshot(snapshot, executor, console, dry_run=dry_run)
        except ExecutorError as e:
            console.error(f"Failed to create snapshot '{label}' for dataset '{dataset}': {e}")
            any_error = True
            continue
        created += 1
        console.ok(f"Snapshot '{snapshot.full_name}' created.")

    prefix = "[dry-run] " if dry_run else ""
    console.info(f"{prefix}{created} snapshot(s) created.")
    return 1 if any_error else 0
