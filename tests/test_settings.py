"""Tests for environment-driven configuration."""

import pytest

from api.settings import Settings, load_settings


def test_defaults_from_empty_environment():
  settings = load_settings({})
  assert settings.openai_api_key == ""
  assert settings.openai_model == "gpt-4o-mini"
  assert settings.openai_base_url == "https://api.openai.com/v1"
  assert settings.storage_backend == "sqlite"
  assert settings.max_upload_bytes == 10 * 1024 * 1024
  assert settings.db_port == 5432
  assert settings.cors_origins == ["*"]


def test_aliases_and_parsing():
  settings = load_settings(
    {
      "OPENAI_API_KEY": "sk-alias",
      "OPENAI_BASE_URL": "https://proxy.example/v1/",
      "MAX_UPLOAD_MB": "4",
      "DB_PORT": "not-a-number",
      "STORAGE_BACKEND": " AWS ",
      "AWS_BUCKET_NAME": "bucket",
      "CORS_ORIGINS": "https://a.example, https://b.example",
      "LOG_LEVEL": "debug",
    }
  )
  assert settings.openai_api_key == "sk-alias"
  assert settings.openai_base_url == "https://proxy.example/v1"
  assert settings.max_upload_mb == 4
  assert settings.db_port == 5432
  assert settings.storage_backend == "aws"
  assert settings.s3_bucket == "bucket"
  assert settings.cors_origins == ["https://a.example", "https://b.example"]
  assert settings.log_level == "DEBUG"


def test_primary_key_name_wins_over_alias():
  settings = load_settings({"OPENAI_KEY": "primary", "OPENAI_API_KEY": "alias"})
  assert settings.openai_api_key == "primary"


def test_unknown_backend_is_rejected():
  with pytest.raises(RuntimeError, match="STORAGE_BACKEND"):
    Settings(storage_backend="mongo").validate()


def test_aws_backend_requires_database_settings():
  with pytest.raises(RuntimeError, match="DB_HOST, DB_NAME, DB_USER, DB_PASSWORD"):
    Settings(storage_backend="aws").validate()


def test_aws_backend_with_database_settings_is_valid():
  Settings(storage_backend="aws", db_host="h", db_name="d", db_user="u", db_password="p").validate()


def test_persistence_can_be_disabled():
  assert Settings(storage_backend="none").persistence_enabled is False
  assert Settings().persistence_enabled is True
