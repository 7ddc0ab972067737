"""MockExecutor, FakeS3Client and shared fixtures for testing."""
from __future__ import annotations

import datetime
import io

import pytest
from botocore.exceptions import ClientError

from zsm.models import Settings
from zsm.output import Console


class FakeSink(io.BytesIO):
    """stdin of a fake receiving process; can simulate the reader dying."""

    def __init__(self, broken_after: int | None = None):
        super().__init__()
        self.broken_after = broken_after
        self.received = b""

    def write(self, data):
        if self.broken_after is not None and len(self.received) >= self.broken_after:
            raise BrokenPipeError(32, "Broken pipe")
        self.received += bytes(data)
        return len(data)


class FakeProc:
    """Stands in for subprocess.Popen in send/recv pipelines."""

    def __init__(self, stdout: bytes = b"", returncode: int = 0, stderr: bytes = b"",
                 broken_after: int | None = None):
        self.stdout = io.BytesIO(stdout)
        self.stdin = FakeSink(broken_after)
        self.stderr = io.BytesIO(stderr)
        self.returncode = returncode
        self.killed = False

    def poll(self):
        return None if not self.killed else self.returncode

    def wait(self):
        return self.returncode

    def kill(self):
        self.killed = True


class MockExecutor:
    """
    Executor that returns pre-scripted responses for commands.

    responses: dict mapping tuple(cmd) -> stdout string, an Exception to raise,
    or a list of those consumed one per call (the last one repeats).
    processes: dict mapping tuple(cmd) -> FakeProc for popen().
    If a command isn't found, raises KeyError (to catch unexpected calls in tests).
    """

    def __init__(self, responses: dict | None = None, processes: dict | None = None,
                 missing: tuple[str, ...] = (), label: str = "mock"):
        self.responses: dict = responses or {}
        self.processes: dict = processes or {}
        self.missing = missing
        self._label = label
        self.calls: list[list[str]] = []  # record of all commands run
        self.popen_calls: list[list[str]] = []

    @property
    def label(self) -> str:
        return self._label

    def run(self, cmd: list[str]) -> str:
        self.calls.append(cmd)
        key = tuple(cmd)
        if key not in self.responses:
            raise KeyError(f"MockExecutor: unexpected command: {cmd}")
        result = self.responses[key]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    def popen(self, cmd: list[str], **_kwargs):
        self.popen_calls.append(cmd)
        proc = self.processes.get(tuple(cmd))
        if proc is None:
            raise KeyError(f"MockExecutor: unexpected pipeline command: {cmd}")
        if isinstance(proc, Exception):
            raise proc
        return proc

    def which(self, name: str) -> str | None:
        return None if name in self.missing else f"/usr/sbin/{name}"


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Paginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, Bucket, Prefix="", Delimiter=None, **_kw):
        contents = []
        objects = self.client.objects.get(Bucket, {})
        for key in sorted(objects):
            if not key.startswith(Prefix):
                continue
            rest = key[len(Prefix):]
            if Delimiter and Delimiter in rest:
                continue
            contents.append({"Key": key, "LastModified": objects[key]["last_modified"]})
        # Two pages to exercise pagination
        half = len(contents) // 2
        yield {"Contents": contents[:half]} if half else {}
        yield {"Contents": contents[half:]}


class FakeS3Client:
    """In-memory stand-in for the subset of the boto3 S3 client zsm uses."""

    def __init__(self, buckets=("backup.bucket",)):
        self.objects: dict[str, dict[str, dict]] = {b: {} for b in buckets}
        self.denied: set[str] = set()
        self.multipart_uploads: dict[str, list] = {}
        self.fail_upload = False
        self.fail_tagging = False
        self.drop_bytes = 0  # simulate a stored object shorter than what was sent
        self.upload_configs = []
        self.clock = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

    def _bucket(self, bucket, operation):
        if bucket in self.denied:
            raise client_error("403", operation)
        if bucket not in self.objects:
            raise client_error("404", operation)
        return self.objects[bucket]

    def _object(self, bucket, key, operation):
        objects = self._bucket(bucket, operation)
        if key not in objects:
            raise client_error("NoSuchKey", operation)
        return objects[key]

    def put(self, bucket, key, body=b"", metadata=None, tags=None):
        # Each write is one minute after the previous one
        self.clock += datetime.timedelta(minutes=1)
        self.objects[bucket][key] = {
            "body": body, "metadata": dict(metadata or {}), "tags": dict(tags or {}),
            "last_modified": self.clock,
        }

    def head_bucket(self, Bucket):
        self._bucket(Bucket, "HeadBucket")
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return _Paginator(self)

    def get_object_tagging(self, Bucket, Key):
        obj = self._object(Bucket, Key, "GetObjectTagging")
        return {"TagSet": [{"Key": k, "Value": v} for k, v in obj["tags"].items()]}

    def put_object_tagging(self, Bucket, Key, Tagging):
        if self.fail_tagging:
            raise client_error("InternalError", "PutObjectTagging")
        obj = self._object(Bucket, Key, "PutObjectTagging")
        obj["tags"] = {t["Key"]: t["Value"] for t in Tagging["TagSet"]}

    def head_object(self, Bucket, Key):
        obj = self._object(Bucket, Key, "HeadObject")
        return {"ContentLength": len(obj["body"]), "Metadata": dict(obj["metadata"])}

    def list_multipart_uploads(self, Bucket):
        self._bucket(Bucket, "ListMultipartUploads")
        return {"Uploads": self.multipart_uploads.get(Bucket, [])}

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None, Config=None, Callback=None):
        self._bucket(Bucket, "PutObject")
        self.upload_configs.append(Config)
        body = b""
        while True:
            chunk = Fileobj.read(64 * 1024)
            if not chunk:
                break
            body += chunk
        if self.fail_upload:
            raise client_error("SlowDown", "UploadPart")
        if self.drop_bytes:
            body = body[:-self.drop_bytes]
        self.put(Bucket, Key, body, (ExtraArgs or {}).get("Metadata"))


# ---------------------------------------------------------------------------
# Command builders matching what zsm.zfs runs
# ---------------------------------------------------------------------------

SEND_FLAGS = ("--raw", "-c", "-p")


def list_cmd(dataset: str) -> tuple:
    return ("zfs", "list", "-H", "-p", "-o", "name,creation", "-t", "snapshot", "-r", dataset)


def exists_cmd(dataset: str) -> tuple:
    return ("zfs", "list", "-H", "-o", "name", dataset)


def discover_cmd(prop: str) -> tuple:
    return ("zfs", "get", "-H", "-s", "local", "-o", "name,value", "-t", "filesystem,volume", prop)


def send_cmd(target: str, base: str | None = None) -> tuple:
    incr = ("-i", base) if base else ()
    return ("zfs", "send", *SEND_FLAGS, *incr, target)


def estimate_cmd(target: str, base: str | None = None) -> tuple:
    incr = ("-i", base) if base else ()
    return ("zfs", "send", "-n", "-P", *SEND_FLAGS, *incr, target)


def estimate_output(size: int) -> str:
    return f"full\tpool@snap\t{size}\nsize\t{size}\n"


def snap_list_output(entries: list[tuple[str, int]]) -> str:
    return "".join(f"{name}\t{created}\n" for name, created in entries)


# Snapshot history drawn from the date-labelled scheme the snapshot tool creates
SRC = "odin/services/cloud"
DST = "thor/services/cloud"
BUCKET = "backup.bucket"

JAN = 1704067200  # 2024-01-01
FEB = 1706745600  # 2024-02-01
MAR = 1709251200  # 2024-03-01

SRC_SNAPS = [
    (f"{SRC}@2024-01-01", JAN),
    (f"{SRC}@2024-02-01", FEB),
]


@pytest.fixture
def settings():
    s = Settings()
    s.progress = False
    return s


@pytest.fixture
def console():
    return Console(color=False, verbose=True)
