import mimetypes
import os
import posixpath
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from config import AWS_REGION, S3_BUCKET, Settings, logger, s3_client


@dataclass(frozen=True)
class StoredFile:
    path:     str
    size:     int
    modified: float


class LocalStorage:
    """Cache files on the local filesystem under ``root``."""

    def __init__(self, root: str, url_prefix: str = ""):
        self.root       = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _full(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def public_url(self, path: str) -> str:
        return f"{self.url_prefix}/{path.lstrip('/')}"

    def exists(self, path: str) -> bool:
        return self._full(path).is_file()

    def read(self, path: str) -> Optional[bytes]:
        full = self._full(path)
        if not full.is_file():
            return None
        return full.read_bytes()

    def write(self, path: str, data: bytes) -> bool:
        full = self._full(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            # write-then-rename so readers never see a half-written file
            fd, tmp = tempfile.mkstemp(dir=full.parent, prefix=".tmp_")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, full)
        except OSError as e:
            logger.error("Failed writing %s: %s", full, e)
            return False
        logger.debug("Wrote %s (%d bytes)", full, len(data))
        return True

    def delete(self, path: str) -> bool:
        try:
            self._full(path).unlink()
        except FileNotFoundError:
            return False
        logger.info("Deleted %s", path)
        return True

    def modified(self, path: str) -> Optional[float]:
        full = self._full(path)
        return full.stat().st_mtime if full.is_file() else None

    def list(self, prefix: str = "") -> List[StoredFile]:
        base = self._full(prefix) if prefix else self.root
        if not base.is_dir():
            return []
        files: List[StoredFile] = []
        for item in base.rglob("*"):
            if item.is_file() and not item.name.startswith(".tmp_"):
                stat = item.stat()
                files.append(StoredFile(item.relative_to(self.root).as_posix(), stat.st_size, stat.st_mtime))
        return sorted(files, key=lambda f: f.path)


class S3Storage:
    def __init__(self, bucket: str = S3_BUCKET, region: str = AWS_REGION, client=None, url_prefix: str = ""):
        self.bucket     = bucket
        self.region     = region
        self.client     = client or s3_client
        self.url_prefix = url_prefix.rstrip("/")

    def public_url(self, key: str) -> str:
        if self.url_prefix:
            return f"{self.url_prefix}/{key.lstrip('/')}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key.lstrip('/')}"

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError:
            return False
        return True

    def read(self, key: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.debug("S3 read miss for %s: %s", key, e)
            return None
        return obj["Body"].read()

    def write(self, key: str, data: bytes) -> bool:
        mimetype, _ = mimetypes.guess_type(posixpath.basename(key))
        logger.info("Uploading %s (%d bytes)", key, len(data))
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mimetype or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed uploading %s: %s", key, e)
            return False
        return True

    def delete(self, key: str) -> bool:
        logger.info("Deleting key=%s from S3", key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.warning("Failed deleting %s: %s", key, e)
            return False
        return True

    def modified(self, key: str) -> Optional[float]:
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError:
            return None
        return head["LastModified"].timestamp()

    def list(self, prefix: str = "") -> List[StoredFile]:
        files: List[StoredFile] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                files.append(StoredFile(obj["Key"], obj["Size"], obj["LastModified"].timestamp()))
        return files


def get_storage(settings: Settings, root: str = "."):
    if settings.storage_backend == "s3":
        return S3Storage(url_prefix=settings.path_prefix)
    return LocalStorage(root, settings.path_prefix)
