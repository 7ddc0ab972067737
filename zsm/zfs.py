"""ZFS catalog and send/receive operations using an Executor for dependency injection."""
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from zsm.errors import BackendUnavailable, EstimationFailed
from zsm.executor import ExecutorError
from zsm.models import INCREMENTAL, Snapshot, SyncPair

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import SendOptions, TransferPlan
    from zsm.output import Console


def check_tools(names: list[str], executor: "Executor") -> None:
    """Raise BackendUnavailable if any required binary is missing."""
    missing = [name for name in names if executor.which(name) is None]
    if missing:
        raise BackendUnavailable(f"Missing required binaries: {', '.join(missing)}")


def _parse_snapshot_lines(output: str) -> list[Snapshot]:
    results = []
    for line in output.splitlines():
        if not line.strip():
            continue
        name, _, creation = line.partition("\t")
        if "@" not in name:
            continue
        try:
            created = int(creation.strip())
        except ValueError:
            created = 0
        results.append(Snapshot.parse(name.strip(), creation=created))
    # sorted() is stable: equal timestamps keep the order zfs listed them in
    return sorted(results, key=lambda s: s.creation)


def list_snapshots(dataset: str, executor: "Executor") -> list[Snapshot]:
    """Return snapshots for a dataset, oldest first by creation time."""
    output = executor.run([
        "zfs", "list", "-H", "-p", "-o", "name,creation", "-t", "snapshot", "-r", dataset,
    ])
    # Only include snapshots directly on this dataset (not children)
    return [s for s in _parse_snapshot_lines(output) if s.dataset == dataset]


def list_all_snapshots(executor: "Executor") -> list[Snapshot]:
    """Return every snapshot on the system, oldest first by creation time."""
    output = executor.run([
        "zfs", "list", "-H", "-p", "-o", "name,creation", "-t", "snapshot",
    ])
    return _parse_snapshot_lines(output)


def _exists(cmd: list[str], executor: "Executor") -> bool:
    # Only "does not exist" means absent; permission and pool errors propagate
    try:
        executor.run(cmd)
        return True
    except ExecutorError as e:
        if "does not exist" in e.stderr:
            return False
        raise


def dataset_exists(dataset: str, executor: "Executor") -> bool:
    """Return True if the dataset exists."""
    return _exists(["zfs", "list", "-H", "-o", "name", dataset], executor)


def snapshot_exists(snapshot: Snapshot, executor: "Executor") -> bool:
    return _exists(
        ["zfs", "list", "-H", "-o", "name", "-t", "snapshot", snapshot.full_name], executor
    )


def discover_pairs(prop: str, kind: str, executor: "Executor") -> list[SyncPair]:
    """Return sync pairs for datasets with a locally set `prop`.

    Inherited values are ignored, otherwise every child of a marked dataset
    would be paired with its parent's destination.
    """
    output = executor.run([
        "zfs", "get", "-H", "-s", "local", "-o", "name,value",
        "-t", "filesystem,volume", prop,
    ])
    pairs = []
    for line in output.splitlines():
        name, _, value = line.partition("\t")
        name, value = name.strip(), value.strip()
        if not name or not value or value == "-" or name == value:
            continue
        pairs.append(SyncPair(source=name, destination=value, kind=kind))
    return pairs


def auto_snapshot_datasets(prop: str, executor: "Executor") -> list[str]:
    """Return datasets where `prop` is effectively 'true' (inheritance counts)."""
    output = executor.run(["zfs", "list", "-H", "-o", f"name,{prop}"])
    results = []
    for line in output.splitlines():
        name, _, value = line.partition("\t")
        if value.strip() == "true":
            results.append(name.strip())
    return results


def get_properties(props: list[str], executor: "Executor") -> dict[str, dict[str, str]]:
    """Return {dataset: {prop: value}} for filesystems and volumes."""
    output = executor.run([
        "zfs", "get", "-H", "-o", "name,property,value",
        "-t", "filesystem,volume", ",".join(props),
    ])
    table: dict[str, dict[str, str]] = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        name, prop, value = parts
        table.setdefault(name, {})[prop] = value
    return table


def send_command(plan: "TransferPlan", options: "SendOptions") -> list[str]:
    """Build `zfs send` for a full or incremental plan."""
    cmd = ["zfs", "send", *options.flags()]
    if plan.kind == INCREMENTAL:
        cmd += ["-i", plan.base.full_name]
    cmd.append(plan.target.full_name)
    return cmd


def receive_command(target_dataset: str) -> list[str]:
    return ["zfs", "recv", target_dataset]


def estimate_send_size(
    plan: "TransferPlan",
    executor: "Executor",
    options: "SendOptions",
) -> int:
    """Ask zfs for the stream size with a dry-run send (-n -P).

    The parsable output ends with a line "size\t<bytes>".
    """
    cmd = send_command(plan, options)
    cmd[2:2] = ["-n", "-P"]
    try:
        output = executor.run(cmd)
    except ExecutorError as e:
        raise EstimationFailed(f"Cannot estimate size of {plan.target.full_name}: {e}") from e
    for line in output.splitlines():
        fields = line.split()
        if len(fields) == 2 and fields[0] == "size":
            try:
                return int(fields[1])
            except ValueError:
                break
    raise EstimationFailed(
        f"Cannot estimate size of {plan.target.full_name}: no size in zfs output"
    )


def create_snapshot(
    snapshot: Snapshot,
    executor: "Executor",
    console: "Console",
    dry_run: bool = False,
) -> None:
    cmd = ["zfs", "snapshot", snapshot.full_name]
    console.command("snapshot", shlex.join(cmd), force=dry_run)
    if dry_run:
        return
    executor.run(cmd)


def destroy_snapshot(
    snapshot: Snapshot,
    executor: "Executor",
    console: "Console",
    dry_run: bool = False,
) -> None:
    """Destroy a single snapshot."""
    cmd = ["zfs", "destroy", snapshot.full_name]
    console.command("destroy", shlex.join(cmd), force=dry_run)
    if dry_run:
        return
    executor.run(cmd)
