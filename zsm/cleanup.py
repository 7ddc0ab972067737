"""Cleanup: remove snapshots matching name filters, protecting recent and latest ones."""
from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING

from zsm import zfs
from zsm.executor import ExecutorError
from zsm.planner import latest_snapshot

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import Settings, Snapshot
    from zsm.output import Console

SECONDS_PER_DAY = 86400


class FilterError(ValueError):
    pass


def _confirm(prompt: str) -> bool:
    """Ask the user yes/no. Return True if yes."""
    try:
        answer = input(f"{prompt} [y/N] ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer in ("y", "yes")


def compile_filters(patterns: list[str]) -> re.Pattern:
    """Join filters into one regex; a snapshot matches if any filter matches."""
    if not patterns:
        raise FilterError("No snapshot filter provided. Specify at least one pattern.")
    for pattern in patterns:
        if not pattern or not pattern.strip():
            raise FilterError("Snapshot filter cannot be an empty string.")
        try:
            re.compile(pattern)
        except re.error as e:
            raise FilterError(f"Invalid regex in filter {pattern!r}: {e}") from e
    return re.compile("|".join(f"(?:{p})" for p in patterns))


def select_removals(
    snapshots: list["Snapshot"],
    matcher: re.Pattern,
    now: float,
    skip_days: int,
) -> tuple[list["Snapshot"], list[tuple["Snapshot", str]]]:
    """
    Split snapshots matching `matcher` into (removals, kept-with-reason).

    Matching snapshots survive if younger than `skip_days` days or if they
    are the newest snapshot of their dataset, since that one is the base
    of the next incremental transfer.
    """
    newest: dict[str, str] = {}
    by_dataset: dict[str, list["Snapshot"]] = {}
    for snap in snapshots:
        by_dataset.setdefault(snap.dataset, []).append(snap)
    for dataset, snaps in by_dataset.items():
        newest[dataset] = latest_snapshot(snaps).name

    removals: list["Snapshot"] = []
    kept: list[tuple["Snapshot", str]] = []
    for snap in snapshots:
        if not matcher.search(snap.full_name):
            continue
        age_days = (now - snap.creation) // SECONDS_PER_DAY
        if age_days <= skip_days:
            kept.append((snap, f"created within the last {skip_days} days"))
        elif newest[snap.dataset] == snap.name:
            kept.append((snap, "not permitted to destroy the latest snapshot"))
        else:
            removals.append(snap)
    return removals, kept


def run_cleanup(
    settings: "Settings",
    patterns: list[str],
    executor: "Executor",
    console: "Console",
    dry_run: bool = False,
    no_confirm: bool = False,
    now: float | None = None,
) -> int:
    """
    Destroy snapshots matching any of `patterns`.
    Returns exit code (0=success, 1=nothing to do, aborted or partial failure).

    Two-pass approach: collect all deletions, prompt once, then execute.
    """
    try:
        matcher = compile_filters(patterns)
    except FilterError as e:
        console.error(str(e))
        return 1

    zfs.check_tools(["zfs"], executor)
    snapshots = zfs.list_all_snapshots(executor)
    removals, kept = select_removals(
        snapshots, matcher, now if now is not None else time.time(), settings.cleanup.skip_days
    )

    if not removals and not kept:
        console.warn("No matching snapshots found for the specified patterns.")
        return 1

    # --- Phase 1: Show plan ---
    if kept:
        console.info("The following snapshots match, but are excluded from deletion:")
        width = max(len(s.full_name) for s, _ in kept) + 4
        for snap, reason in kept:
            console.ok(f"  {snap.full_name:<{width}} ({reason})")

    if not removals:
        console.warn("No snapshots meet the criteria for deletion.")
        return 1

    label = "Would delete" if dry_run else "Will delete"
    console.rule()
    console.info(f"{label} {len(removals)} snapshot(s):")
    for snap in removals:
        console.info(f"  {snap.full_name}")

    if dry_run:
        return 0

    # --- Phase 2: Prompt ---
    if not no_confirm and not _confirm(f"\nDelete {len(removals)} snapshot(s)?"):
        console.info("Operation cancelled. No changes made.")
        return 1

    # --- Phase 3: Execute ---
    any_error = False
    deleted = 0
    for snap in removals:
        try:
            zfs.destroy_snapshot(snap, executor, console)
            deleted += 1
        except ExecutorError as e:
            console.error(f"Failed to destroy {snap.full_name}: {e}")
            any_error = True

    console.info(f"Deleted {deleted} of {len(removals)} snapshot(s).")
    return 1 if any_error else 0
