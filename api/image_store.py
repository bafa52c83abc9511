"""
Object storage for the original upload bytes.

Production keeps images in S3; development writes them under a local
directory that the Flask app serves back at ``/uploads/<key>``.
"""

from __future__ import annotations

import io
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

KEY_PREFIX = "classifications"


class ImageStoreError(RuntimeError):
  """Raised when an image cannot be written to (or located in) the store."""


def build_object_key(extension: str, now: Optional[datetime] = None) -> str:
  """Return ``classifications/YYYY/MM/DD/<hex><ext>`` for a new upload."""
  now = now or datetime.now(timezone.utc)
  ext = extension if extension.startswith(".") else f".{extension}"
  return f"{KEY_PREFIX}/{now:%Y/%m/%d}/{uuid.uuid4().hex}{ext.lower()}"


def build_s3_client(region: str | None = None):
  """Create an S3 client; credentials come from the default boto3 chain."""
  kwargs: Dict[str, Any] = {"service_name": "s3"}
  if region:
    kwargs["region_name"] = region
  return boto3.client(**kwargs)


class S3ImageStore:
  def __init__(self, client, bucket: str, url_expires: int = 3600) -> None:
    self.client = client
    self.bucket = bucket
    self.url_expires = url_expires

  def save(self, image_bytes: bytes, key: str, content_type: str) -> str:
    try:
      self.client.upload_fileobj(
        io.BytesIO(image_bytes),
        self.bucket,
        key,
        ExtraArgs={"ContentType": content_type},
      )
    except (BotoCoreError, ClientError) as exc:
      raise ImageStoreError(f"S3 upload failed: {exc}") from exc
    logger.info("Uploaded %d bytes to s3://%s/%s", len(image_bytes), self.bucket, key)
    return key

  def url_for(self, key: str) -> Optional[str]:
    """Return a presigned GET URL, or None when signing fails."""
    try:
      return self.client.generate_presigned_url(
        "get_object",
        Params={"Bucket": self.bucket, "Key": key},
        ExpiresIn=self.url_expires,
      )
    except (BotoCoreError, ClientError) as exc:
      logger.warning("Could not presign s3://%s/%s: %s", self.bucket, key, exc)
      return None


class LocalImageStore:
  def __init__(self, directory: Path, url_prefix: str = "/uploads") -> None:
    self.directory = Path(directory)
    self.url_prefix = url_prefix.rstrip("/")

  def path_for(self, key: str) -> Path:
    path = (self.directory / key).resolve()
    if self.directory.resolve() not in path.parents:
      raise ImageStoreError(f"Key escapes the uploads directory: {key}")
    return path

  def save(self, image_bytes: bytes, key: str, content_type: str) -> str:
    path = self.path_for(key)
    try:
      path.parent.mkdir(parents=True, exist_ok=True)
      with open(path, "wb") as destination:
        destination.write(image_bytes)
    except OSError as exc:
      raise ImageStoreError(f"Local upload failed: {exc}") from exc
    logger.debug("Stored %s (%s) at %s", key, content_type, path)
    return key

  def url_for(self, key: str) -> Optional[str]:
    return f"{self.url_prefix}/{key}"


__all__ = [
  "ImageStoreError",
  "LocalImageStore",
  "S3ImageStore",
  "build_object_key",
  "build_s3_client",
]
