"""
Flask backend for the Hot Dog / Not Hot Dog classifier.

The service accepts an uploaded photo, checks that it is a real JPEG, PNG,
GIF or WebP image, asks a hosted vision model whether it shows a hot dog and
normalises the reply to one of two labels. When persistence is enabled the
original bytes go to object storage (S3 in production, a local directory in
development) and a row is written to the classification history table
(PostgreSQL or SQLite). Persistence failures are logged and never fail the
request.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

from flask import Flask, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from api.history_store import (
  HistoryStore,
  HistoryStoreError,
  PostgresHistoryStore,
  SQLiteHistoryStore,
)
from api.image_metadata import ImageInfo, UnsupportedImageError, inspect_image, is_allowed_content_type
from api.image_store import (
  ImageStoreError,
  LocalImageStore,
  S3ImageStore,
  build_object_key,
  build_s3_client,
)
from api.settings import Settings, load_settings
from api.vision_classifier import ClassifierError, classify_image, create_chat_completion

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
INVALID_TYPE_MESSAGE = "Please select a valid image file (JPEG, PNG, GIF, or WebP)"
MISSING_KEY_MESSAGE = "OpenAI API key is not configured"
HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 200

ImageStore = Union[S3ImageStore, LocalImageStore]
logger = logging.getLogger(__name__)


def _build_history_store(settings: Settings) -> Optional[HistoryStore]:
  if settings.storage_backend == "aws":
    logger.info(
      "Using PostgreSQL history store host=%s port=%s db=%s user=%s",
      settings.db_host,
      settings.db_port,
      settings.db_name,
      settings.db_user,
    )
    return PostgresHistoryStore(
      host=settings.db_host,
      port=settings.db_port,
      dbname=settings.db_name,
      user=settings.db_user,
      password=settings.db_password,
      sslmode=settings.db_sslmode,
    )
  if settings.storage_backend == "sqlite":
    logger.info("Using SQLite history store at %s", settings.sqlite_db_path)
    return SQLiteHistoryStore(settings.sqlite_db_path)
  return None


def _build_image_store(settings: Settings) -> Optional[ImageStore]:
  if settings.storage_backend == "aws":
    if not settings.s3_bucket:
      logger.warning("S3_BUCKET_NAME is not set; uploaded images will not be stored.")
      return None
    return S3ImageStore(
      build_s3_client(settings.aws_region or None),
      settings.s3_bucket,
      url_expires=settings.s3_url_expires,
    )
  if settings.storage_backend == "sqlite":
    return LocalImageStore(settings.uploads_dir)
  return None


def _parse_non_negative_int(raw: Optional[str], default: int, name: str) -> int:
  if raw is None or raw.strip() == "":
    return default
  try:
    value = int(raw)
  except ValueError:
    raise ValueError(f"{name} must be an integer.") from None
  if value < 0:
    raise ValueError(f"{name} must not be negative.")
  return value


def _parse_result_filter(raw: Optional[str]) -> Optional[bool]:
  if raw is None or raw.strip() == "":
    return None
  value = raw.strip().lower().replace("-", "_").replace(" ", "_")
  if value in {"hot_dog", "hotdog", "true", "1"}:
    return True
  if value in {"not_hot_dog", "not_hotdog", "false", "0"}:
    return False
  raise ValueError("result must be 'hot_dog' or 'not_hot_dog'.")


def create_app(
  settings: Optional[Settings] = None,
  *,
  history_store: Optional[HistoryStore] = None,
  image_store: Optional[ImageStore] = None,
) -> Flask:
  """Instantiate the Flask application and register routes."""
  settings = settings or load_settings()
  settings.validate()
  logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

  app = Flask(__name__)
  app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes + 1024 * 1024
  app.config["SETTINGS"] = settings
  CORS(app, resources={r"/api/*": {"origins": settings.cors_origins}})

  if settings.persistence_enabled:
    history_store = history_store or _build_history_store(settings)
    image_store = image_store or _build_image_store(settings)
  else:
    history_store = None
    image_store = None

  if history_store is not None:
    try:
      history_store.initialise()
      app.logger.info("Database connection successful (%s)", history_store.describe())
    except HistoryStoreError as exc:
      app.logger.error("Database connection failed: %s", exc)

  size_error = f"File size must be less than {settings.max_upload_mb}MB"

  def _store_image(binary_content: bytes, info: ImageInfo) -> Optional[str]:
    if image_store is None:
      return None
    try:
      return image_store.save(binary_content, build_object_key(info.extension), info.mime_type)
    except ImageStoreError as exc:
      app.logger.warning("Image storage failed; continuing without it: %s", exc)
      return None

  def _record_classification(
    image_key: Optional[str],
    is_hot_dog: bool,
    model: str,
    classified_at: datetime,
    request_metadata: Dict[str, Any],
  ) -> Optional[int]:
    if history_store is None:
      return None
    try:
      return history_store.insert(
        s3_key=image_key,
        is_hot_dog=is_hot_dog,
        model=model,
        timestamp=classified_at,
        request_metadata=request_metadata,
      )
    except HistoryStoreError as exc:
      app.logger.warning("Failed to record classification; continuing: %s", exc)
      return None

  @app.errorhandler(RequestEntityTooLarge)
  def too_large(_exc: RequestEntityTooLarge) -> Tuple[Dict[str, str], int]:
    return {"error": size_error}, 413

  @app.errorhandler(HTTPException)
  def http_error(exc: HTTPException):
    if not request.path.startswith("/api/"):
      return exc
    return {"error": exc.description or exc.name}, exc.code or 500

  @app.route("/api/classify", methods=["POST"])
  def classify() -> Tuple[Dict[str, Any], int]:
    """Validate an uploaded image, classify it and optionally record the result."""
    uploaded_file = request.files.get("image")
    if uploaded_file is None or uploaded_file.filename == "":
      return {"error": "No image provided"}, 400

    binary_content = uploaded_file.read()
    if not binary_content:
      return {"error": "Empty file received"}, 400
    if len(binary_content) > settings.max_upload_bytes:
      return {"error": size_error}, 413

    if not is_allowed_content_type(uploaded_file.mimetype):
      return {"error": INVALID_TYPE_MESSAGE}, 400
    try:
      info = inspect_image(binary_content)
    except UnsupportedImageError as exc:
      return {"error": INVALID_TYPE_MESSAGE, "details": str(exc)}, 400

    if not settings.openai_api_key:
      return {"error": MISSING_KEY_MESSAGE}, 500

    try:
      classification = classify_image(
        binary_content,
        info.mime_type,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
      )
    except ClassifierError as exc:
      app.logger.warning("Classification failed: %s", exc)
      return {"error": "Classification failed", "details": str(exc)}, 502

    classified_at = datetime.now(timezone.utc)
    request_metadata: Dict[str, Any] = {
      "filename": uploaded_file.filename,
      "declared_content_type": uploaded_file.mimetype or None,
      "size_bytes": len(binary_content),
      **info.as_metadata(),
      "classifier": {
        "raw_reply": classification.raw_reply,
        "usage": classification.usage,
      },
      "user_agent": request.user_agent.string or None,
    }

    image_key = _store_image(binary_content, info)
    record_id = _record_classification(
      image_key,
      classification.is_hot_dog,
      classification.model,
      classified_at,
      request_metadata,
    )

    return {
      "result": classification.label,
      "is_hot_dog": classification.is_hot_dog,
      "model": classification.model,
      "timestamp": classified_at.isoformat(),
      "id": record_id,
      "image_key": image_key,
      "stored": record_id is not None,
    }, 200

  @app.route("/api/history", methods=["GET"])
  def history() -> Tuple[Dict[str, Any], int]:
    """Return recorded classifications ordered from newest to oldest."""
    try:
      limit = _parse_non_negative_int(request.args.get("limit"), HISTORY_DEFAULT_LIMIT, "limit")
      offset = _parse_non_negative_int(request.args.get("offset"), 0, "offset")
      result_filter = _parse_result_filter(request.args.get("result"))
    except ValueError as exc:
      return {"error": str(exc)}, 400
    limit = min(max(limit, 1), HISTORY_MAX_LIMIT)

    if history_store is None:
      return {"items": [], "message": "history disabled", "limit": limit, "offset": offset}, 200

    try:
      items = history_store.fetch(limit=limit, offset=offset, is_hot_dog=result_filter)
    except HistoryStoreError as exc:
      app.logger.exception("Failed to read history: %s", exc)
      return {"error": "History fetch failed", "details": str(exc)}, 502

    for item in items:
      key = item.get("image_key")
      item["image_url"] = image_store.url_for(key) if image_store is not None and key else None

    payload: Dict[str, Any] = {"items": items, "limit": limit, "offset": offset}
    if not items:
      payload["message"] = "history empty"
    return payload, 200

  @app.route("/api/health", methods=["GET"])
  def health() -> Tuple[Dict[str, str], int]:
    """Simple health-check endpoint."""
    return {
      "status": "ok",
      "message": "Server is running",
      "timestamp": datetime.now(timezone.utc).isoformat(),
    }, 200

  @app.route("/api/db-status", methods=["GET"])
  def db_status() -> Tuple[Dict[str, Any], int]:
    now = datetime.now(timezone.utc).isoformat()
    if history_store is None:
      return {"connected": False, "message": "Database is not configured", "timestamp": now}, 503
    try:
      history_store.ping()
    except HistoryStoreError as exc:
      app.logger.error("Database status check failed: %s", exc)
      return {"connected": False, "message": str(exc), "timestamp": now}, 500
    return {"connected": True, "message": "Database connection successful", "timestamp": now}, 200

  @app.route("/api/chat", methods=["POST"])
  def chat() -> Tuple[Dict[str, Any], int]:
    """Forward a plain text prompt to the chat model."""
    payload = request.get_json(silent=True) or {}
    prompt = payload.get("prompt") if isinstance(payload, dict) else None
    if not prompt or not isinstance(prompt, str):
      return {"error": "Prompt is required and must be a string"}, 400

    if not settings.openai_api_key:
      return {"error": MISSING_KEY_MESSAGE}, 500

    try:
      completion = create_chat_completion(
        [{"role": "user", "content": prompt}],
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        max_tokens=settings.chat_max_tokens,
        timeout=settings.openai_timeout,
      )
    except ClassifierError as exc:
      app.logger.error("OpenAI API error: %s", exc)
      return {"error": str(exc)}, 500

    return {
      "response": completion.content or "No response generated",
      "model": completion.model,
      "usage": completion.usage,
    }, 200

  if isinstance(image_store, LocalImageStore):
    local_store = image_store

    @app.route("/uploads/<path:filename>", methods=["GET"])
    def serve_upload(filename: str):
      """Serve locally stored uploads during development."""
      return send_from_directory(local_store.directory, filename)

  return app


if __name__ == "__main__":
  app_settings = load_settings()
  flask_app = create_app(app_settings)
  flask_app.run(host="0.0.0.0", port=app_settings.port, debug=os.environ.get("FLASK_DEBUG") == "1")
