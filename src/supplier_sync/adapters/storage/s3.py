from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import boto3

PROCESSED_PREFIX = "processed"


@dataclass
class S3Location:
    bucket: str
    key: str
    etag: Optional[str] = None
    size: Optional[int] = None
    last_modified: Optional[datetime] = None

    @property
    def file_name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


class S3CatalogStore:
    """Uploaded supplier catalogs, one prefix per supplier."""

    def __init__(self, bucket: str, *, client=None) -> None:
        self.bucket = bucket
        self.client = client or boto3.client("s3")

    def list_latest(self, prefix: str, pattern: Optional[str] = None) -> Optional[S3Location]:
        paginator = self.client.get_paginator("list_objects_v2")
        candidates = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                key = item["Key"]
                if key.endswith("/"):
                    continue
                name = key.rsplit("/", 1)[-1]
                if pattern and not fnmatch.fnmatch(name.lower(), pattern.lower()):
                    continue
                candidates.append(item)
        if not candidates:
            return None
        latest = max(candidates, key=lambda item: item["LastModified"])
        return S3Location(
            bucket=self.bucket,
            key=latest["Key"],
            etag=latest.get("ETag"),
            size=latest.get("Size"),
            last_modified=latest.get("LastModified"),
        )

    def download_bytes(self, key: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def upload_bytes(self, key: str, body: bytes) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=body)

    def archive(self, location: S3Location, batch_id: str) -> str:
        archive_key = f"{PROCESSED_PREFIX}/{batch_id}/{location.file_name}"
        self.client.copy_object(
            Bucket=self.bucket,
            Key=archive_key,
            CopySource={"Bucket": location.bucket, "Key": location.key},
        )
        return archive_key
