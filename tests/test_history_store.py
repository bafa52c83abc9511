"""Tests for the classification history store (SQLite backend)."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from api.history_store import (
  TABLE_NAME,
  HistoryStoreError,
  PostgresHistoryStore,
  SQLiteHistoryStore,
)

BASE_TIME = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
  history = SQLiteHistoryStore(tmp_path / "nested" / "history.db")
  history.initialise()
  return history


def _insert(store, minutes, is_hot_dog=True, key=None, **metadata):
  return store.insert(
    s3_key=key,
    is_hot_dog=is_hot_dog,
    model="gpt-4o-mini",
    timestamp=BASE_TIME + timedelta(minutes=minutes),
    request_metadata=metadata or None,
  )


def test_initialise_is_idempotent(store):
  store.initialise()
  with sqlite3.connect(store.db_path) as conn:
    indexes = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
  assert f"idx_{TABLE_NAME}_timestamp" in indexes
  assert f"idx_{TABLE_NAME}_is_hot_dog" in indexes
  assert f"idx_{TABLE_NAME}_s3_key" in indexes


def test_insert_returns_increasing_ids(store):
  first = _insert(store, 0)
  second = _insert(store, 1)
  assert second > first


def test_fetch_returns_items_newest_first(store):
  _insert(store, 0, key="a.png", filename="a.png")
  _insert(store, 10, is_hot_dog=False, key="b.png")
  _insert(store, 5)

  items = store.fetch()

  assert [item["timestamp"] for item in items] == [
    (BASE_TIME + timedelta(minutes=10)).isoformat(),
    (BASE_TIME + timedelta(minutes=5)).isoformat(),
    BASE_TIME.isoformat(),
  ]
  newest = items[0]
  assert newest["result"] == "Not Hot Dog"
  assert newest["is_hot_dog"] is False
  assert newest["image_key"] == "b.png"
  assert items[2]["request_metadata"] == {"filename": "a.png"}
  assert items[1]["image_key"] is None


def test_same_timestamp_orders_by_id(store):
  first = _insert(store, 0)
  second = _insert(store, 0)
  assert [item["id"] for item in store.fetch()] == [second, first]


def test_fetch_filters_by_label(store):
  _insert(store, 0, is_hot_dog=True)
  _insert(store, 1, is_hot_dog=False)
  _insert(store, 2, is_hot_dog=True)

  assert [item["result"] for item in store.fetch(is_hot_dog=True)] == ["Hot Dog", "Hot Dog"]
  assert [item["result"] for item in store.fetch(is_hot_dog=False)] == ["Not Hot Dog"]


def test_fetch_paginates(store):
  ids = [_insert(store, minute) for minute in range(5)]
  page = store.fetch(limit=2, offset=1)
  assert [item["id"] for item in page] == [ids[3], ids[2]]


def test_naive_timestamps_are_treated_as_utc(store):
  store.insert(s3_key=None, is_hot_dog=True, model="m", timestamp=datetime(2026, 1, 1, 8, 0))
  assert store.fetch()[0]["timestamp"] == "2026-01-01T08:00:00+00:00"


def test_ping_succeeds(store):
  store.ping()


def test_driver_errors_are_wrapped(tmp_path):
  broken = SQLiteHistoryStore(tmp_path / "history.db")
  # Table was never created.
  with pytest.raises(HistoryStoreError, match="read classification history"):
    broken.fetch()


def test_postgres_store_describes_without_password():
  store = PostgresHistoryStore(host="db.internal", port=5432, dbname="hotdog", user="app", password="secret")
  assert store.describe() == "postgresql://app@db.internal:5432/hotdog"
  assert "secret" not in store.describe()
  assert store.conninfo["sslmode"] == "require"


def test_postgres_insert_uses_jsonb_and_returning():
  store = PostgresHistoryStore(host="h", port=1, dbname="d", user="u", password="p")
  sql = store._insert_sql()
  assert "%s::jsonb" in sql
  assert sql.endswith("RETURNING id")


def test_unusable_database_directory_is_wrapped(tmp_path):
  blocker = tmp_path / "blocker"
  blocker.write_text("not a directory")
  store = SQLiteHistoryStore(blocker / "history.db")

  with pytest.raises(HistoryStoreError, match="initialise history table"):
    store.initialise()
