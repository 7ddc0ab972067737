"""Tests for zsm.snapshot module."""
from __future__ import annotations

import datetime

from zsm.executor import ExecutorError
from zsm.snapshot import make_label, run_snapshot
from tests.conftest import MockExecutor

NOW = datetime.datetime(2024, 10, 21, 23, 30, tzinfo=datetime.timezone.utc)
LABEL = "2024-10-21"
AUTO_SNAP = ("zfs", "list", "-H", "-o", "name,zfs-utils:auto-snap")


def _exists(full_name):
    return ("zfs", "list", "-H", "-o", "name", "-t", "snapshot", full_name)


def _missing(full_name):
    return ExecutorError(["zfs", "list"], 1, f"cannot open '{full_name}': dataset does not exist")


def test_make_label():
    assert make_label("%Y-%m-%d", NOW) == LABEL
    assert make_label("auto-%Y%m%d-%H%M", NOW) == "auto-20241021-2330"


def test_run_snapshot_creates_and_skips_existing(capsys, settings, console):
    exec_ = MockExecutor({
        AUTO_SNAP: "odin\t-\nodin/home\ttrue\nodin/vm\ttrue\n",
        _exists(f"odin/home@{LABEL}"): _missing(f"odin/home@{LABEL}"),
        _exists(f"odin/vm@{LABEL}"): f"odin/vm@{LABEL}\n",
        ("zfs", "snapshot", f"odin/home@{LABEL}"): "",
    })
    rc = run_snapshot(settings, exec_, console, now=NOW)
    assert rc == 0
    captured = capsys.readouterr()
    assert f"'odin/vm@{LABEL}' already exists" in captured.err
    assert "1 snapshot(s) created." in captured.out
    assert ["zfs", "snapshot", f"odin/vm@{LABEL}"] not in exec_.calls


def test_run_snapshot_dry_run(capsys, settings, console):
    exec_ = MockExecutor({
        AUTO_SNAP: "odin/home\ttrue\n",
        _exists(f"odin/home@{LABEL}"): _missing(f"odin/home@{LABEL}"),
    })
    assert run_snapshot(settings, exec_, console, dry_run=True, now=NOW) == 0
    out = capsys.readouterr().out
    assert f"zfs snapshot odin/home@{LABEL}" in out
    assert "[dry-run] 1 snapshot(s) created." in out


def test_run_snapshot_failure_continues(capsys, settings, console):
    exec_ = MockExecutor({
        AUTO_SNAP: "odin/home\ttrue\nodin/vm\ttrue\n",
        _exists(f"odin/home@{LABEL}"): _missing(f"odin/home@{LABEL}"),
        _exists(f"odin/vm@{LABEL}"): _missing(f"odin/vm@{LABEL}"),
        ("zfs", "snapshot", f"odin/home@{LABEL}"): ExecutorError(["zfs"], 1, "out of space"),
        ("zfs", "snapshot", f"odin/vm@{LABEL}"): "",
    })
    assert run_snapshot(settings, exec_, console, now=NOW) == 1
    captured = capsys.readouterr()
    assert "Failed to create snapshot" in captured.err
    assert "1 snapshot(s) created." in captured.out


def test_run_snapshot_nothing_marked(capsys, settings, console):
    exec_ = MockExecutor({AUTO_SNAP: "odin\t-\n"})
    assert run_snapshot(settings, exec_, console, now=NOW) == 0
    assert "Nothing to snapshot" in capsys.readouterr().err
