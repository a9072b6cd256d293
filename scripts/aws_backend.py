"""S3 object storage and Auto Scaling control for a spot node."""

from __future__ import annotations

import pathlib
from typing import Any
from urllib.parse import urlparse


class BlobStoreError(RuntimeError):
    """Raised when an object cannot be fetched from or stored to S3."""


class ClusterControlError(RuntimeError):
    """Raised when the Auto Scaling control call fails."""


def parse_s3_url(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    if parsed.scheme != "s3":
        raise ValueError(f"scheme must be 's3': {url}")
    bucket = parsed.netloc
    key = parsed.path.lstrip("/")
    if not bucket or not key:
        raise ValueError(f"invalid s3 url: {url}")
    return bucket, key


def _client(service: str, *, region: str, endpoint_url: str = "") -> Any:
    # boto3 import is deferred so the core can be imported and tested without it.
    import boto3

    return boto3.client(
        service,
        region_name=region,
        endpoint_url=endpoint_url or None,
    )


def _aws_errors() -> tuple[type[BaseException], ...]:
    from boto3.exceptions import Boto3Error
    from botocore.exceptions import BotoCoreError, ClientError

    return (Boto3Error, BotoCoreError, ClientError, OSError)


class S3BlobStore:
    def __init__(self, *, region: str, endpoint_url: str = "") -> None:
        self.region = region
        self.endpoint_url = endpoint_url

    def fetch(self, url: str, destination: pathlib.Path) -> pathlib.Path:
        try:
            bucket, key = parse_s3_url(url)
        except ValueError as exc:
            raise BlobStoreError(str(exc)) from exc
        try:
            client = _client("s3", region=self.region, endpoint_url=self.endpoint_url)
            client.download_file(bucket, key, str(destination))
        except _aws_errors() as exc:
            raise BlobStoreError(f"s3 get failed for {url}: {exc}") from exc
        return destination

    def store(self, url: str, local_path: pathlib.Path) -> None:
        try:
            bucket, key = parse_s3_url(url)
        except ValueError as exc:
            raise BlobStoreError(str(exc)) from exc
        try:
            client = _client("s3", region=self.region, endpoint_url=self.endpoint_url)
            client.upload_file(str(local_path), bucket, key)
        except _aws_errors() as exc:
            raise BlobStoreError(f"s3 put failed for {url}: {exc}") from exc


class AutoScalingControl:
    def __init__(self, *, region: str) -> None:
        self.region = region

    def set_desired_capacity(self, group_id: str, capacity: int) -> None:
        try:
            client = _client("autoscaling", region=self.region)
            client.set_desired_capacity(
                AutoScalingGroupName=group_id,
                DesiredCapacity=capacity,
                HonorCooldown=True,
            )
        except _aws_errors() as exc:
            raise ClusterControlError(
                f"set_desired_capacity({group_id}, {capacity}) failed: {exc}"
            ) from exc
