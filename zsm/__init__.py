"""ZFS Sync Manager: replicate dataset snapshots to pools and S3 buckets."""

__version__ = "0.4.0"
