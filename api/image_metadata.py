"""
Helpers for sniffing and describing uploaded images.

The detected format decides whether an upload is accepted and which MIME type
is forwarded to the classifier. A small, JSON-serialisable summary of the
image (dimensions plus a curated EXIF subset) is stored with each history row.
"""

from __future__ import annotations

import io
import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from PIL import ExifTags, Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Pillow format name -> (MIME type, file extension).
SUPPORTED_FORMATS = {
  "JPEG": ("image/jpeg", ".jpg"),
  "PNG": ("image/png", ".png"),
  "GIF": ("image/gif", ".gif"),
  "WEBP": ("image/webp", ".webp"),
}

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"})

EXIF_IFD_TAG = 0x8769

ORIENTATION_TO_DEGREES = {
  1: 0,
  3: 180,
  6: 90,
  8: 270,
}


class UnsupportedImageError(ValueError):
  """Raised when the uploaded bytes are not an accepted image format."""


@dataclass
class ImageInfo:
  format: str
  mime_type: str
  extension: str
  width: int
  height: int
  exif: Dict[str, Any] = field(default_factory=dict)

  def as_metadata(self) -> Dict[str, Any]:
    data: Dict[str, Any] = {
      "format": self.format,
      "detected_content_type": self.mime_type,
      "width": self.width,
      "height": self.height,
    }
    if self.exif:
      data["exif"] = self.exif
    return data


def _ratio_to_float(value: Any) -> Optional[float]:
  """Convert EXIF rationals (``IFDRational``, ``Fraction`` or ``(num, den)``) to floats."""
  if isinstance(value, numbers.Rational):
    try:
      result = float(value)
    except (TypeError, ZeroDivisionError):
      return None
    return None if math.isnan(result) else result

  if isinstance(value, tuple) and len(value) == 2 and value[1]:
    try:
      return float(value[0]) / float(value[1])
    except (TypeError, ZeroDivisionError):
      return None

  if isinstance(value, float):
    return None if math.isnan(value) else value

  return None


def _summarise_exif(image: Image.Image) -> Dict[str, Any]:
  try:
    exif_data = image.getexif()
    exif_ifd = exif_data.get_ifd(EXIF_IFD_TAG) if exif_data else {}
  except Exception as exc:
    logger.debug("Failed to read EXIF block: %s", exc)
    return {}
  if not exif_data:
    return {}

  # DateTimeOriginal and friends live in the Exif sub-IFD, not IFD0.
  merged = dict(exif_data.items())
  merged.update(exif_ifd or {})
  tags = {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in merged.items()}
  result: Dict[str, Any] = {}

  for key in ("Make", "Model"):
    value = tags.get(key)
    if isinstance(value, str) and value.strip():
      result[key.lower()] = value.strip().strip("\x00")

  orientation = tags.get("Orientation")
  if isinstance(orientation, int):
    result["rotationDegrees"] = ORIENTATION_TO_DEGREES.get(orientation, 0)

  capture_time = tags.get("DateTimeOriginal") or tags.get("DateTime")
  if capture_time:
    result["capturedAt"] = str(capture_time)

  x_resolution = _ratio_to_float(tags.get("XResolution"))
  if x_resolution is not None:
    result["dpi"] = round(x_resolution, 2)

  return result


def inspect_image(image_bytes: bytes) -> ImageInfo:
  """
  Identify ``image_bytes`` with Pillow and summarise them.

  Raises :class:`UnsupportedImageError` when the bytes are not a readable
  JPEG, PNG, GIF or WebP image.
  """
  try:
    # verify() must run directly after open and leaves the image unusable.
    with Image.open(io.BytesIO(image_bytes)) as checked:
      image_format = (checked.format or "").upper()
      checked.verify()
    with Image.open(io.BytesIO(image_bytes)) as image:
      width, height = image.size
      exif = _summarise_exif(image)
  except Image.DecompressionBombError as exc:
    logger.info("Rejected oversized image: %s", exc)
    raise UnsupportedImageError("Image dimensions are too large.") from exc
  except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
    logger.debug("Rejected unreadable upload: %s", exc)
    raise UnsupportedImageError("Uploaded file is not a readable image.") from exc

  if image_format not in SUPPORTED_FORMATS:
    raise UnsupportedImageError(f"Image format {image_format or 'unknown'} is not supported.")

  mime_type, extension = SUPPORTED_FORMATS[image_format]
  return ImageInfo(
    format=image_format,
    mime_type=mime_type,
    extension=extension,
    width=width,
    height=height,
    exif=exif,
  )


def is_allowed_content_type(content_type: str | None) -> bool:
  """Return True for declared types the upload form accepts (or none at all)."""
  if not content_type or content_type == "application/octet-stream":
    return True
  return content_type.split(";", 1)[0].strip().lower() in ALLOWED_CONTENT_TYPES


__all__ = [
  "ALLOWED_CONTENT_TYPES",
  "ImageInfo",
  "SUPPORTED_FORMATS",
  "UnsupportedImageError",
  "inspect_image",
  "is_allowed_content_type",
]
