"""
Shared fixtures for the classifier test-suite.

Provides:
- Small in-memory images produced with Pillow
- Settings bound to a temporary SQLite database and uploads directory
- A Flask test client
- A patched ``requests.post`` standing in for the vision API
"""

import io
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from api.settings import Settings
from app import create_app


def make_image_bytes(fmt="PNG", size=(8, 8), color=(200, 40, 40)):
  buffer = io.BytesIO()
  Image.new("RGB", size, color).save(buffer, format=fmt)
  return buffer.getvalue()


def completion_response(content="Hot Dog", model="gpt-4o-mini-2024-07-18", status_code=200):
  """Build a fake ``requests.Response`` carrying a chat completion."""
  response = MagicMock()
  response.ok = 200 <= status_code < 300
  response.status_code = status_code
  response.reason = "OK" if response.ok else "Error"
  response.text = "" if response.ok else '{"error": {"message": "boom"}}'
  response.json.return_value = {
    "id": "chatcmpl-test",
    "model": model,
    "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    "usage": {"prompt_tokens": 90, "completion_tokens": 3, "total_tokens": 93},
  }
  return response


@pytest.fixture
def png_bytes():
  return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes():
  return make_image_bytes("JPEG")


@pytest.fixture
def settings(tmp_path):
  return Settings(
    openai_api_key="test-key",
    storage_backend="sqlite",
    sqlite_db_path=tmp_path / "history.db",
    uploads_dir=tmp_path / "uploads",
    max_upload_mb=1,
  )


@pytest.fixture
def app(settings):
  flask_app = create_app(settings)
  flask_app.config["TESTING"] = True
  return flask_app


@pytest.fixture
def client(app):
  return app.test_client()


@pytest.fixture
def mock_post():
  """Patch the vision API call; defaults to a "Hot Dog" reply."""
  with patch("api.vision_classifier.requests.post") as post:
    post.return_value = completion_response("Hot Dog")
    yield post
