"""Error taxonomy for synchronization runs."""
from __future__ import annotations


class SyncError(Exception):
    """A failure confined to one sync pair."""


class NoSourceSnapshot(SyncError):
    def __init__(self, dataset: str):
        self.dataset = dataset
        super().__init__(f"No snapshots for '{dataset}', nothing to synchronize")


class DesyncError(SyncError):
    """The destination checkpoint no longer exists on the source."""

    def __init__(self, dataset: str, checkpoint: str):
        self.dataset = dataset
        self.checkpoint = checkpoint
        super().__init__(
            f"Destination checkpoint '@{checkpoint}' has no matching snapshot on "
            f"'{dataset}', indicating possible dataset desynchronization. "
            "Manual intervention is required to restore continuity."
        )


class TransferError(SyncError):
    pass


class EstimationFailed(TransferError):
    pass


class StreamFailed(TransferError):
    pass


class SizeMismatch(TransferError):
    def __init__(self, key: str, expected: int, actual: int):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Size mismatch for '{key}': streamed {expected} bytes, stored {actual}"
        )


class DestinationUnavailable(SyncError):
    """Bucket missing or not accessible."""


class BackendUnavailable(Exception):
    """Required tools or credentials are missing; fatal for the whole run."""
