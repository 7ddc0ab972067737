"""Sync driver: plan, transfer and commit every configured pair."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from botocore.exceptions import BotoCoreError, ClientError

from zsm import planner, transfer, zfs
from zsm.errors import SyncError
from zsm.executor import ExecutorError
from zsm.models import INCREMENTAL, REPLICATION, S3, UP_TO_DATE
from zsm.output import bytes_to_human
from zsm.tracker import ObjectStoreTracker, ReplicationTracker

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import Settings, SyncPair, TransferPlan, TransferResult
    from zsm.output import Console
    from zsm.s3 import S3Store

# Per-pair outcomes
TRANSFERRED = "transferred"
SKIPPED = "up_to_date"
PLANNED = "planned"  # dry run
FAILED = "failed"

# Errors confined to a single pair; anything else aborts the run
PAIR_ERRORS = (SyncError, ExecutorError, ClientError, BotoCoreError)


@dataclass
class PairOutcome:
    pair: "SyncPair"
    status: str
    plan: "TransferPlan | None" = None
    result: "TransferResult | None" = None
    message: str = ""


def sync_pair(
    pair: "SyncPair",
    executor: "Executor",
    tracker,
    send: Callable[["SyncPair", "TransferPlan"], "TransferResult"],
    console: "Console",
    dry_run: bool = False,
) -> PairOutcome:
    """
    Bring one destination up to date with its source.

    Discover -> Plan -> Transfer -> Commit. Commit runs only after the
    transfer has returned normally, so an interrupted or failed transfer
    never becomes a checkpoint.
    """
    source_snaps = zfs.list_snapshots(pair.source, executor)
    checkpoint = tracker.checkpoint(pair)
    plan = planner.plan(source_snaps, checkpoint, dataset=pair.source)

    if plan.kind == UP_TO_DATE:
        console.ok(f"Skipped: '{pair.source}' is already synchronized at '@{plan.target.name}'.")
        return PairOutcome(pair=pair, status=SKIPPED, plan=plan)

    if plan.kind == INCREMENTAL:
        console.info(f"  Base snapshot: '{plan.base.full_name}'.")

    result = send(pair, plan)
    if dry_run:
        return PairOutcome(pair=pair, status=PLANNED, plan=plan, result=result)

    tracker.commit(pair, plan)
    rate = f", {bytes_to_human(int(result.rate))}/s" if result.rate else ""
    console.ok(
        f"Synchronized: '{pair.source}' -> '{pair.destination}' "
        f"({bytes_to_human(result.bytes_transferred)}{rate})."
    )
    return PairOutcome(pair=pair, status=TRANSFERRED, plan=plan, result=result)


def _run_pairs(
    pairs: list["SyncPair"],
    sync_one: Callable[["SyncPair"], PairOutcome],
    console: "Console",
    strict: bool,
) -> list[PairOutcome]:
    outcomes: list[PairOutcome] = []
    for pair in pairs:
        console.rule()
        console.info(f"Synchronize '{pair.source}' -> '{pair.destination}'.")
        try:
            outcomes.append(sync_one(pair))
        except PAIR_ERRORS as e:
            console.error(f"Failed: '{pair.source}': {e}")
            outcomes.append(PairOutcome(pair=pair, status=FAILED, message=str(e)))
            if strict:
                console.error("Strict mode: stopping at the first failure.")
                break
    return outcomes


def _summarize(outcomes: list[PairOutcome], console: "Console", dry_run: bool) -> int:
    """Print a one-line summary. Returns exit code (0=success, 1=any failure)."""
    counts = {status: 0 for status in (TRANSFERRED, PLANNED, SKIPPED, FAILED)}
    total_bytes = 0
    for outcome in outcomes:
        counts[outcome.status] += 1
        if outcome.result is not None:
            total_bytes += outcome.result.bytes_transferred

    console.rule()
    prefix = "[dry-run] " if dry_run else ""
    console.info(f"{prefix}Synchronization complete.")
    parts = []
    if counts[TRANSFERRED]:
        parts.append(f"{counts[TRANSFERRED]} transferred ({bytes_to_human(total_bytes)})")
    if counts[PLANNED]:
        parts.append(f"{counts[PLANNED]} would transfer")
    if counts[SKIPPED]:
        parts.append(f"{counts[SKIPPED]} already up to date")
    if counts[FAILED]:
        parts.append(f"{counts[FAILED]} failed")
    if parts:
        console.info(f"  {', '.join(parts)}")
    return 1 if counts[FAILED] else 0


def run_replication(
    settings: "Settings",
    executor: "Executor",
    console: "Console",
    dry_run: bool = False,
) -> int:
    """Replicate every dataset carrying the replication-target property."""
    zfs.check_tools(["zfs"], executor)
    prop = settings.properties.replication_target
    pairs = zfs.discover_pairs(prop, REPLICATION, executor)
    if not pairs:
        console.warn(f"No datasets with '{prop}' set. Nothing to replicate.")
        return 0

    tracker = ReplicationTracker(executor)

    def send(pair: "SyncPair", plan: "TransferPlan") -> "TransferResult":
        return transfer.replicate(
            plan, pair.destination, executor, console, settings.send,
            progress=settings.progress, dry_run=dry_run,
        )

    def sync_one(pair: "SyncPair") -> PairOutcome:
        return sync_pair(pair, executor, tracker, send, console, dry_run=dry_run)

    outcomes = _run_pairs(pairs, sync_one, console, settings.strict)
    return _summarize(outcomes, console, dry_run)


def run_upload(
    settings: "Settings",
    executor: "Executor",
    store: "S3Store",
    console: "Console",
    dry_run: bool = False,
) -> int:
    """Upload every dataset carrying the bucket property to S3."""
    zfs.check_tools(["zfs"], executor)
    prop = settings.properties.aws_bucket
    pairs = zfs.discover_pairs(prop, S3, executor)
    if not pairs:
        console.warn(f"No datasets with '{prop}' set. Nothing to upload.")
        return 0

    tracker = ObjectStoreTracker(
        store,
        console,
        tag_key=settings.s3.tag_key,
        incremental_base_suffix=settings.s3.incremental_base_suffix,
    )

    def send(pair: "SyncPair", plan: "TransferPlan") -> "TransferResult":
        return transfer.upload(
            plan, store, pair.destination, tracker.object_key(pair, plan),
            tracker.metadata(plan), executor, console, settings.send,
            progress=settings.progress, dry_run=dry_run,
        )

    def sync_one(pair: "SyncPair") -> PairOutcome:
        store.check_access(pair.destination)
        if store.has_incomplete_uploads(pair.destination):
            console.warn(f"Found incomplete multipart uploads in '{pair.destination}' bucket.")
        return sync_pair(pair, executor, tracker, send, console, dry_run=dry_run)

    outcomes = _run_pairs(pairs, sync_one, console, settings.strict)
    return _summarize(outcomes, console, dry_run)


def describe_pairs(
    pairs: list["SyncPair"],
    executor: "Executor",
    tracker,
    console: "Console",
) -> int:
    """Print each pair's checkpoint and pending plan without transferring."""
    any_error = False
    for pair in pairs:
        try:
            checkpoint = tracker.checkpoint(pair)
            plan = planner.plan(
                zfs.list_snapshots(pair.source, executor), checkpoint, dataset=pair.source
            )
        except PAIR_ERRORS as e:
            console.error(f"{pair.source} -> {pair.destination}: {e}")
            any_error = True
            continue
        state = f"@{checkpoint}" if checkpoint else "never synced"
        line = f"{pair.source} -> {pair.destination} [{state}]: {plan.describe()}"
        if plan.kind == UP_TO_DATE:
            console.ok(line)
        else:
            console.info(line)
    return 1 if any_error else 0
