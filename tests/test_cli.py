"""Tests for zsm.cli entry point."""
from __future__ import annotations

import pytest

from zsm.cli import main
from zsm.executor import ExecutorError
from tests.conftest import (
    DST,
    FEB,
    SRC,
    SRC_SNAPS,
    MockExecutor,
    discover_cmd,
    exists_cmd,
    list_cmd,
    snap_list_output,
)

PROPS = ("zfs-utils:auto-snap", "zfs-utils:replication-target", "zfs-utils:aws-bucket")
INFO_CMD = (
    "zfs", "get", "-H", "-o", "name,property,value", "-t", "filesystem,volume", ",".join(PROPS),
)


def _exit_code(argv, executor):
    with pytest.raises(SystemExit) as excinfo:
        main(argv, executor=executor)
    return excinfo.value.code


def test_info_table(capsys):
    output = (
        f"{SRC}\tzfs-utils:auto-snap\ttrue\n"
        f"{SRC}\tzfs-utils:replication-target\t{DST}\n"
        f"{SRC}\tzfs-utils:aws-bucket\t-\n"
        f"{DST}\tzfs-utils:auto-snap\t-\n"
    )
    assert _exit_code(["info"], MockExecutor({INFO_CMD: output})) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("Dataset")
    assert lines[2].split() == [SRC, "true", DST, "-"]
    assert lines[3].split() == [DST, "-", "-", "-"]


def test_status(capsys):
    exec_ = MockExecutor({
        discover_cmd("zfs-utils:replication-target"): f"{SRC}\t{DST}\n",
        discover_cmd("zfs-utils:aws-bucket"): "",
        list_cmd(SRC): snap_list_output(SRC_SNAPS),
        exists_cmd(DST): DST + "\n",
        list_cmd(DST): snap_list_output([(f"{DST}@2024-02-01", FEB)]),
    })
    assert _exit_code(["status", "--no-color"], exec_) == 0
    out = capsys.readouterr().out
    assert "Replication:" in out
    assert "up to date at @2024-02-01" in out
    assert exec_.popen_calls == []


def test_replicate_nothing_configured(capsys):
    exec_ = MockExecutor({discover_cmd("zfs-utils:replication-target"): ""})
    assert _exit_code(["replicate", "--dry-run"], exec_) == 0
    assert "Nothing to replicate" in capsys.readouterr().err


def test_missing_zfs_binary(capsys):
    assert _exit_code(["replicate"], MockExecutor(missing=("zfs",))) == 1
    assert "Missing required binaries: zfs" in capsys.readouterr().err


def test_config_error(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("bogus: 1\n")
    assert _exit_code(["info", "-c", str(path)], MockExecutor()) == 1
    assert "Config error" in capsys.readouterr().err


def test_cleanup_requires_pattern():
    assert _exit_code(["cleanup"], MockExecutor()) == 2


def test_zfs_failure_is_reported_without_traceback(capsys):
    exec_ = MockExecutor({
        discover_cmd("zfs-utils:replication-target"):
            ExecutorError(["zfs", "get"], 1, "permission denied"),
    })
    assert _exit_code(["replicate"], exec_) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: ")
    assert "permission denied" in err
