"""Data models for zfs-sync-manager."""
from __future__ import annotations

from dataclasses import dataclass, field

REPLICATION = "replication"
S3 = "s3"

UP_TO_DATE = "up_to_date"
FULL = "full"
INCREMENTAL = "incremental"


@dataclass(frozen=True)
class Snapshot:
    """A ZFS snapshot: pool/dataset@name."""
    dataset: str
    name: str  # the label after '@'
    creation: int = 0  # seconds since epoch, ordering only

    @property
    def full_name(self) -> str:
        return f"{self.dataset}@{self.name}"

    @classmethod
    def parse(cls, full_name: str, creation: int = 0) -> "Snapshot":
        dataset, _, name = full_name.partition("@")
        if not name:
            raise ValueError(f"Not a snapshot: {full_name!r}")
        return cls(dataset=dataset, name=name, creation=creation)


@dataclass(frozen=True)
class SyncPair:
    """A source dataset bound to a destination dataset or bucket."""
    source: str
    destination: str
    kind: str = REPLICATION

    def __post_init__(self):
        if self.source == self.destination:
            raise ValueError(f"Source and destination are the same: {self.source!r}")

    @property
    def directory(self) -> str:
        """Flat object-store directory for the source dataset.

        Example: odin/services/cloud -> odin.services.cloud
        """
        return self.source.replace("/", ".")


@dataclass(frozen=True)
class TransferPlan:
    kind: str
    target: Snapshot
    base: Snapshot | None = None

    def describe(self) -> str:
        if self.kind == UP_TO_DATE:
            return f"up to date at @{self.target.name}"
        if self.kind == FULL:
            return f"full transfer of @{self.target.name}"
        return f"incremental transfer @{self.base.name} -> @{self.target.name}"


@dataclass
class TransferResult:
    bytes_transferred: int
    estimated: int
    elapsed: float = 0.0

    @property
    def rate(self) -> float:
        """Bytes per second."""
        if self.elapsed <= 0:
            return 0.0
        return self.bytes_transferred / self.elapsed


@dataclass
class SendOptions:
    raw: bool = True
    compressed: bool = True
    properties: bool = True

    def flags(self) -> list[str]:
        flags = []
        if self.raw:
            flags.append("--raw")
        if self.compressed:
            flags.append("-c")
        if self.properties:
            flags.append("-p")
        return flags


@dataclass
class S3Options:
    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    storage_class: str | None = None
    tag_key: str = "zfs-utils.upload-status"
    # Name incrementals <label>_incr-<base> instead of <label>_incr
    incremental_base_suffix: bool = False


@dataclass
class PropertyNames:
    replication_target: str = "zfs-utils:replication-target"
    aws_bucket: str = "zfs-utils:aws-bucket"
    auto_snapshot: str = "zfs-utils:auto-snap"


@dataclass
class CleanupOptions:
    skip_days: int = 7


@dataclass
class Settings:
    strict: bool = False
    progress: bool = True
    color: bool = True
    syslog: bool = False
    snapshot_label_format: str = "%Y-%m-%d"
    properties: PropertyNames = field(default_factory=PropertyNames)
    send: SendOptions = field(default_factory=SendOptions)
    s3: S3Options = field(default_factory=S3Options)
    cleanup: CleanupOptions = field(default_factory=CleanupOptions)
