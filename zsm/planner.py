"""Sync planning: decide between no-op, full and incremental transfers."""
from __future__ import annotations

from zsm.errors import DesyncError, NoSourceSnapshot
from zsm.models import FULL, INCREMENTAL, UP_TO_DATE, Snapshot, TransferPlan


def latest_snapshot(snapshots: list[Snapshot]) -> Snapshot | None:
    """Return the snapshot with the greatest creation time.

    Ties go to whichever the catalog listed last.
    """
    if not snapshots:
        return None
    return sorted(snapshots, key=lambda s: s.creation)[-1]


def plan(
    source_snapshots: list[Snapshot],
    checkpoint: str | None,
    dataset: str = "",
) -> TransferPlan:
    """
    Compute the transfer needed to bring a destination up to the source.

    `checkpoint` is the label of the newest source snapshot known to be fully
    present at the destination, or None if the destination has never been
    synced (or its latest state cannot be trusted).

    A checkpoint that no longer exists on the source raises DesyncError;
    a full transfer is never substituted for it.
    """
    latest = latest_snapshot(source_snapshots)
    if latest is None:
        raise NoSourceSnapshot(dataset)

    if checkpoint is None:
        return TransferPlan(kind=FULL, target=latest)

    matched = next((s for s in source_snapshots if s.name == checkpoint), None)
    if matched is None:
        raise DesyncError(dataset or latest.dataset, checkpoint)

    if matched.name == latest.name:
        return TransferPlan(kind=UP_TO_DATE, target=latest)

    return TransferPlan(kind=INCREMENTAL, target=latest, base=matched)
