"""
File Storage Service
Stores uploaded answer sheets on local disk or in S3.

Locators returned by ``store`` are opaque strings; only the store that
produced one knows how to read or delete it.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", os.path.basename(filename or "")).strip("._")
    return name or "upload"


class FileStore(ABC):
    """File collaborator: store / read / delete by locator."""

    @abstractmethod
    def store(self, buffer: bytes, filename: str, content_type: str) -> str:
        ...

    @abstractmethod
    def read(self, locator: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, locator: str) -> None:
        ...


class LocalFileStore(FileStore):
    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        path = (self.root / locator).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"locator outside upload directory: {locator!r}")
        return path

    def store(self, buffer: bytes, filename: str, content_type: str) -> str:
        locator = safe_filename(filename)
        with open(self._path(locator), "wb") as f:
            f.write(buffer)
        logger.info(f"Stored {len(buffer)} bytes as {locator}")
        return locator

    def read(self, locator: str) -> bytes:
        with open(self._path(locator), "rb") as f:
            return f.read()

    def delete(self, locator: str) -> None:
        path = self._path(locator)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted {locator}")


class S3FileStore(FileStore):
    """Objects under ``s3://<bucket>/<prefix><filename>``."""

    def __init__(
        self,
        bucket: str,
        *,
        prefix: str = "submissions/",
        region_name: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.client = client or boto3.client(
            "s3",
            region_name=region_name,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
        )

    def _key(self, locator: str) -> str:
        head = f"s3://{self.bucket}/"
        if not locator.startswith(head):
            raise ValueError(f"locator is not in bucket {self.bucket}: {locator!r}")
        return locator[len(head):]

    def store(self, buffer: bytes, filename: str, content_type: str) -> str:
        key = self.prefix + safe_filename(filename)
        self.client.put_object(
            Bucket=self.bucket, Key=key, Body=buffer, ContentType=content_type
        )
        logger.info(f"Uploaded {len(buffer)} bytes to s3://{self.bucket}/{key}")
        return f"s3://{self.bucket}/{key}"

    def read(self, locator: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=self._key(locator))
        return response["Body"].read()

    def delete(self, locator: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(locator))
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete {locator}: {e}")
            raise
