"""Destination-side sync state: which source snapshot a destination reflects."""
from __future__ import annotations

from typing import TYPE_CHECKING

from botocore.exceptions import ClientError

from zsm import zfs
from zsm.errors import StreamFailed
from zsm.models import FULL, INCREMENTAL
from zsm.planner import latest_snapshot

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import SyncPair, TransferPlan
    from zsm.output import Console
    from zsm.s3 import S3Store

STATUS_SUCCESS = "success"

META_SNAPSHOT_NAME = "snapshot-name"
META_SNAPSHOT_BASE = "snapshot-base"
META_SNAPSHOT_KIND = "snapshot-kind"


class ReplicationTracker:
    """The target dataset's own snapshot list is its sync ledger.

    zfs recv creates the received snapshot atomically, so there is nothing
    to write on commit; commit only confirms the snapshot landed.
    """

    def __init__(self, executor: "Executor"):
        self.executor = executor

    def checkpoint(self, pair: "SyncPair") -> str | None:
        if not zfs.dataset_exists(pair.destination, self.executor):
            return None
        latest = latest_snapshot(zfs.list_snapshots(pair.destination, self.executor))
        return latest.name if latest else None

    def commit(self, pair: "SyncPair", plan: "TransferPlan") -> None:
        received = self.checkpoint(pair)
        if received != plan.target.name:
            raise StreamFailed(
                f"'{pair.destination}@{plan.target.name}' is not the latest snapshot "
                f"on the target after receive (found {received!r})"
            )


class ObjectStoreTracker:
    """Sync state kept on the uploaded objects themselves.

    Each object carries metadata naming the snapshot it encodes (and its
    base, for incrementals); a tag marks the upload complete. Only a
    tagged object counts as a checkpoint.
    """

    def __init__(
        self,
        store: "S3Store",
        console: "Console",
        tag_key: str = "zfs-utils.upload-status",
        incremental_base_suffix: bool = False,
    ):
        self.store = store
        self.console = console
        self.tag_key = tag_key
        self.incremental_base_suffix = incremental_base_suffix

    def object_name(self, plan: "TransferPlan") -> str:
        if plan.kind == FULL:
            return f"{plan.target.name}_full"
        if self.incremental_base_suffix:
            return f"{plan.target.name}_incr-{plan.base.name}"
        return f"{plan.target.name}_incr"

    def object_key(self, pair: "SyncPair", plan: "TransferPlan") -> str:
        return f"{pair.directory}/{self.object_name(plan)}"

    def metadata(self, plan: "TransferPlan") -> dict[str, str]:
        meta = {
            META_SNAPSHOT_NAME: plan.target.full_name,
            META_SNAPSHOT_KIND: plan.kind,
        }
        if plan.kind == INCREMENTAL:
            meta[META_SNAPSHOT_BASE] = plan.base.full_name
        return meta

    def latest_object(self, pair: "SyncPair") -> str | None:
        """Return the key of the most recently uploaded object for the pair.

        Names only break ties: a recovery `<label>_full` must win over an
        earlier, untagged `<label>_incr` of the same label.
        """
        objects = self.store.list_objects(pair.destination, f"{pair.directory}/")
        if not objects:
            return None
        name, _ = max(objects, key=lambda obj: (obj[1], obj[0]))
        return f"{pair.directory}/{name}"

    def checkpoint(self, pair: "SyncPair") -> str | None:
        key = self.latest_object(pair)
        if key is None:
            return None

        try:
            status = self.store.get_tag(pair.destination, key, self.tag_key)
            metadata = self.store.get_metadata(pair.destination, key)
        except ClientError as e:
            self.console.warn(f"Cannot read state of '{key}': {e}")
            return None

        if status != STATUS_SUCCESS:
            self.console.warn(f"Incremental upload cannot proceed: '{key}' is incomplete.")
            return None

        snapshot_name = metadata.get(META_SNAPSHOT_NAME)
        if not snapshot_name:
            self.console.warn(f"Incremental upload cannot proceed: '{key}' has no snapshot metadata.")
            return None

        # Stored as dataset@label; the label is what the planner matches on
        return snapshot_name.rpartition("@")[2]

    def commit(self, pair: "SyncPair", plan: "TransferPlan") -> None:
        self.store.put_tag(
            pair.destination, self.object_key(pair, plan), self.tag_key, STATUS_SUCCESS
        )
