"""S3 object-store backend built on boto3."""
from __future__ import annotations

import datetime
import math
from typing import TYPE_CHECKING, BinaryIO

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from zsm.errors import BackendUnavailable, DestinationUnavailable, StreamFailed

if TYPE_CHECKING:
    from zsm.models import S3Options

# S3 refuses multipart uploads with more parts than this
MAX_PARTS = 10000
MIN_CHUNK_SIZE = 8 * 1024 * 1024


def chunk_size_for(expected_size: int) -> int:
    """Pick a multipart chunk size so `expected_size` fits within MAX_PARTS.

    A little headroom is kept because send-size estimates are not exact.
    """
    needed = math.ceil(expected_size * 1.1 / MAX_PARTS) if expected_size > 0 else 0
    return max(MIN_CHUNK_SIZE, needed)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class S3Store:
    """Thin wrapper over an S3 client exposing what the sync engine needs."""

    def __init__(self, client, storage_class: str | None = None):
        self.client = client
        self.storage_class = storage_class

    @classmethod
    def connect(cls, options: "S3Options") -> "S3Store":
        """Build a client from the default credential chain (or a named profile)."""
        session_kw = {}
        if options.profile:
            session_kw["profile_name"] = options.profile
        try:
            session = boto3.session.Session(**session_kw)
        except BotoCoreError as e:
            raise BackendUnavailable(f"Cannot create AWS session: {e}") from e
        if session.get_credentials() is None:
            raise BackendUnavailable("No AWS credentials found")
        client = session.client(
            "s3",
            region_name=options.region or None,
            endpoint_url=options.endpoint_url or None,
        )
        return cls(client, storage_class=options.storage_class)

    def check_access(self, bucket: str) -> None:
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError as e:
            code = _error_code(e)
            if code in ("403", "AccessDenied"):
                raise DestinationUnavailable(f"Access denied to '{bucket}' bucket") from e
            if code in ("404", "NoSuchBucket"):
                raise DestinationUnavailable(f"'{bucket}' bucket does not exist") from e
            raise DestinationUnavailable(f"Cannot access '{bucket}' bucket: {e}") from e

    def list_objects(self, bucket: str, prefix: str) -> list[tuple[str, datetime.datetime]]:
        """Return (name, last_modified) for objects directly under `prefix`."""
        objects = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter="/"):
            for obj in page.get("Contents", []):
                name = obj["Key"][len(prefix):]
                if name and not name.endswith("/"):
                    objects.append((name, obj["LastModified"]))
        return objects

    def get_tag(self, bucket: str, key: str, tag_key: str) -> str | None:
        response = self.client.get_object_tagging(Bucket=bucket, Key=key)
        for tag in response.get("TagSet", []):
            if tag.get("Key") == tag_key:
                return tag.get("Value")
        return None

    def put_tag(self, bucket: str, key: str, tag_key: str, value: str) -> None:
        self.client.put_object_tagging(
            Bucket=bucket,
            Key=key,
            Tagging={"TagSet": [{"Key": tag_key, "Value": value}]},
        )

    def get_metadata(self, bucket: str, key: str) -> dict[str, str]:
        return self.client.head_object(Bucket=bucket, Key=key).get("Metadata", {})

    def object_size(self, bucket: str, key: str) -> int:
        return int(self.client.head_object(Bucket=bucket, Key=key)["ContentLength"])

    def has_incomplete_uploads(self, bucket: str) -> bool:
        response = self.client.list_multipart_uploads(Bucket=bucket)
        return len(response.get("Uploads", [])) > 0

    def upload_stream(
        self,
        stream: BinaryIO,
        bucket: str,
        key: str,
        expected_size: int,
        metadata: dict[str, str],
    ) -> None:
        """Upload a non-seekable byte stream as a multipart object."""
        extra = {"Metadata": metadata}
        if self.storage_class:
            extra["StorageClass"] = self.storage_class
        config = TransferConfig(multipart_chunksize=chunk_size_for(expected_size))
        try:
            self.client.upload_fileobj(
                stream, bucket, key, ExtraArgs=extra, Config=config,
            )
        except (BotoCoreError, ClientError) as e:
            raise StreamFailed(f"Upload to s3://{bucket}/{key} failed: {e}") from e
