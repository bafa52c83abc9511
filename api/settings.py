"""
Runtime configuration for the hot dog classifier.

Values come from environment variables (optionally seeded from a ``.env``
file next to ``app.py``) and are parsed once into a :class:`Settings`
instance that the application factory hands to the helpers it builds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
STORAGE_BACKENDS = ("sqlite", "aws", "none")


def _safe_int(value: Optional[str], default: int) -> int:
  try:
    return int(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _first(env: Mapping[str, str], *keys: str, default: str = "") -> str:
  for key in keys:
    value = env.get(key)
    if value and value.strip():
      return value.strip()
  return default


@dataclass
class Settings:
  openai_api_key: str = ""
  openai_base_url: str = DEFAULT_OPENAI_BASE_URL
  openai_model: str = DEFAULT_MODEL
  openai_timeout: int = 30
  chat_max_tokens: int = 500

  max_upload_mb: int = 10

  storage_backend: str = "sqlite"
  sqlite_db_path: Path = BASE_DIR / "classification_history.db"
  uploads_dir: Path = BASE_DIR / "uploads"

  db_host: str = ""
  db_port: int = 5432
  db_name: str = ""
  db_user: str = ""
  db_password: str = ""
  db_sslmode: str = "require"

  s3_bucket: str = ""
  aws_region: str = ""
  s3_url_expires: int = 3600

  cors_origins: List[str] = field(default_factory=lambda: ["*"])
  log_level: str = "INFO"
  port: int = 5000

  @property
  def max_upload_bytes(self) -> int:
    return self.max_upload_mb * 1024 * 1024

  @property
  def persistence_enabled(self) -> bool:
    return self.storage_backend != "none"

  def validate(self) -> None:
    """Raise ``RuntimeError`` for settings the service cannot start with."""
    if self.storage_backend not in STORAGE_BACKENDS:
      raise RuntimeError(
        f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}; got {self.storage_backend!r}."
      )
    if self.storage_backend == "aws":
      missing = [
        name
        for name, value in (
          ("DB_HOST", self.db_host),
          ("DB_NAME", self.db_name),
          ("DB_USER", self.db_user),
          ("DB_PASSWORD", self.db_password),
        )
        if not value
      ]
      if missing:
        raise RuntimeError(f"{', '.join(missing)} must be set when STORAGE_BACKEND=aws.")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
  """Build :class:`Settings` from ``env`` (defaults to ``os.environ``)."""
  if env is None:
    load_dotenv(BASE_DIR / ".env")
    env = os.environ

  origins = _first(env, "CORS_ORIGINS", default="*")
  return Settings(
    openai_api_key=_first(env, "OPENAI_KEY", "OPENAI_API_KEY"),
    openai_base_url=_first(env, "OPENAI_BASE_URL", default=DEFAULT_OPENAI_BASE_URL).rstrip("/"),
    openai_model=_first(env, "OPENAI_MODEL", default=DEFAULT_MODEL),
    openai_timeout=_safe_int(env.get("OPENAI_TIMEOUT"), 30),
    chat_max_tokens=_safe_int(env.get("CHAT_MAX_TOKENS"), 500),
    max_upload_mb=_safe_int(env.get("MAX_UPLOAD_MB"), 10),
    storage_backend=_first(env, "STORAGE_BACKEND", default="sqlite").lower(),
    sqlite_db_path=Path(
      _first(env, "SQLITE_DB_PATH", default=str(BASE_DIR / "classification_history.db"))
    ).resolve(),
    uploads_dir=Path(_first(env, "UPLOADS_DIR", default=str(BASE_DIR / "uploads"))).resolve(),
    db_host=_first(env, "DB_HOST"),
    db_port=_safe_int(env.get("DB_PORT"), 5432),
    db_name=_first(env, "DB_NAME"),
    db_user=_first(env, "DB_USER"),
    db_password=env.get("DB_PASSWORD", ""),
    db_sslmode=_first(env, "DB_SSLMODE", default="require"),
    s3_bucket=_first(env, "S3_BUCKET_NAME", "AWS_BUCKET_NAME"),
    aws_region=_first(env, "AWS_REGION", "AWS_DEFAULT_REGION"),
    s3_url_expires=_safe_int(env.get("S3_URL_EXPIRES"), 3600),
    cors_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
    log_level=_first(env, "LOG_LEVEL", default="INFO").upper(),
    port=_safe_int(env.get("PORT"), 5000),
  )


__all__ = ["Settings", "load_settings", "STORAGE_BACKENDS"]
