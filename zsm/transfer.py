"""Streaming transfers: zfs send -> meter -> zfs recv / S3 upload."""
from __future__ import annotations

import contextlib
import shlex
import subprocess
import time
from typing import TYPE_CHECKING

from tqdm import tqdm

from zsm import zfs
from zsm.errors import SizeMismatch, StreamFailed, TransferError
from zsm.models import TransferResult
from zsm.output import bytes_to_human

if TYPE_CHECKING:
    from zsm.executor import Executor
    from zsm.models import SendOptions, TransferPlan
    from zsm.output import Console
    from zsm.s3 import S3Store

CHUNK_SIZE = 1024 * 1024


class MeteredReader:
    """File-like wrapper that counts bytes read and advances a progress bar."""

    def __init__(self, raw, bar: tqdm):
        self.raw = raw
        self.bar = bar
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self.raw.read(size)
        self.bytes_read += len(chunk)
        self.bar.update(len(chunk))
        return chunk


def _progress_bar(total: int, description: str, enabled: bool) -> tqdm:
    return tqdm(
        total=total or None,
        desc=description,
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        leave=False,
        disable=not enabled,
    )


def _stderr_of(proc) -> str:
    stream = getattr(proc, "stderr", None)
    if stream is None:
        return ""
    try:
        data = stream.read()
    except (OSError, ValueError):
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace").strip()
    if isinstance(data, str):
        return data.strip()
    return ""


def _start(executor: "Executor", cmd: list[str], **kwargs):
    try:
        return executor.popen(cmd, **kwargs)
    except OSError as e:
        raise StreamFailed(f"Cannot start {shlex.join(cmd)!r}: {e}") from e


def _stop(proc) -> None:
    if proc.poll() is None:
        proc.kill()
    proc.wait()


def _check_send(send_proc, send_cmd: list[str]) -> None:
    send_rc = send_proc.wait()
    if send_rc != 0:
        raise StreamFailed(
            f"{shlex.join(send_cmd)!r} exited {send_rc}: {_stderr_of(send_proc)}"
        )


def replicate(
    plan: "TransferPlan",
    target_dataset: str,
    executor: "Executor",
    console: "Console",
    options: "SendOptions",
    progress: bool = True,
    dry_run: bool = False,
) -> TransferResult:
    """
    Stream a snapshot (or the delta between two) into another dataset.

    Pipeline: zfs send | meter | zfs recv. The transfer succeeds only when
    both processes exit 0; the received snapshot is created by zfs recv
    atomically, so a failed run leaves no new snapshot on the target.
    """
    estimated = zfs.estimate_send_size(plan, executor, options)
    send_cmd = zfs.send_command(plan, options)
    recv_cmd = zfs.receive_command(target_dataset)

    console.info(f"  {plan.describe()} ({bytes_to_human(estimated)})")
    console.command("send", shlex.join(send_cmd), force=dry_run)
    console.command("recv", shlex.join(recv_cmd), force=dry_run)
    if dry_run:
        return TransferResult(bytes_transferred=0, estimated=estimated)

    started = time.monotonic()
    send_proc = _start(executor, send_cmd, stdout=subprocess.PIPE)
    try:
        recv_proc = _start(executor, recv_cmd, stdin=subprocess.PIPE)
    except StreamFailed:
        _stop(send_proc)
        raise

    transferred = 0
    broken = None
    with _progress_bar(estimated, plan.target.name, progress) as bar:
        try:
            while True:
                chunk = send_proc.stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                recv_proc.stdin.write(chunk)
                transferred += len(chunk)
                bar.update(len(chunk))
        except OSError as e:
            # recv died mid-stream; stop the sender instead of letting it block
            broken = e
            _stop(send_proc)
        finally:
            with contextlib.suppress(BrokenPipeError):
                recv_proc.stdin.close()

    # Single join point: both ends must have finished cleanly
    recv_rc = recv_proc.wait()
    send_rc = send_proc.wait()
    if broken is not None or send_rc != 0 or recv_rc != 0:
        details = "; ".join(
            msg for msg in (_stderr_of(send_proc), _stderr_of(recv_proc)) if msg
        )
        raise StreamFailed(
            f"send exited {send_rc}, recv exited {recv_rc}"
            + (f": {details}" if details else "")
            + (f" (pipe: {broken})" if broken else "")
        )

    return TransferResult(
        bytes_transferred=transferred,
        estimated=estimated,
        elapsed=time.monotonic() - started,
    )


def upload(
    plan: "TransferPlan",
    store: "S3Store",
    bucket: str,
    key: str,
    metadata: dict[str, str],
    executor: "Executor",
    console: "Console",
    options: "SendOptions",
    progress: bool = True,
    dry_run: bool = False,
) -> TransferResult:
    """
    Stream a snapshot (or delta) into an S3 object.

    Pipeline: zfs send | meter | multipart upload. The object is only a
    candidate checkpoint: it becomes valid once the caller tags it, which
    must not happen unless this function returns normally.
    """
    estimated = zfs.estimate_send_size(plan, executor, options)
    send_cmd = zfs.send_command(plan, options)
    url = f"s3://{bucket}/{key}"

    console.info(f"  {plan.describe()} to '{url}' ({bytes_to_human(estimated)})")
    console.command("send", shlex.join(send_cmd), force=dry_run)
    console.command("upload", url, force=dry_run)
    if dry_run:
        return TransferResult(bytes_transferred=0, estimated=estimated)

    started = time.monotonic()
    send_proc = _start(executor, send_cmd, stdout=subprocess.PIPE)
    with _progress_bar(estimated, plan.target.name, progress) as bar:
        reader = MeteredReader(send_proc.stdout, bar)
        try:
            store.upload_stream(reader, bucket, key, estimated, metadata)
        except TransferError:
            _stop(send_proc)
            raise

    _check_send(send_proc, send_cmd)

    stored = store.object_size(bucket, key)
    if stored != reader.bytes_read:
        raise SizeMismatch(key, reader.bytes_read, stored)

    return TransferResult(
        bytes_transferred=reader.bytes_read,
        estimated=estimated,
        elapsed=time.monotonic() - started,
    )
