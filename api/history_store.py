"""
Relational persistence for classification history.

One row is written per classified upload. Development uses a local SQLite
file; production talks to PostgreSQL (RDS) with the same table layout, JSONB
for the request metadata and timezone-aware timestamps.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg
from psycopg.rows import dict_row

from api.labels import label_for

logger = logging.getLogger(__name__)

TABLE_NAME = "classification_history"

_INDEXES = (
  f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_timestamp ON {TABLE_NAME}(timestamp DESC)",
  f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_is_hot_dog ON {TABLE_NAME}(is_hot_dog)",
  f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_s3_key ON {TABLE_NAME}(s3_key)",
)


class HistoryStoreError(RuntimeError):
  """Raised when the history database cannot be reached or queried."""


class HistoryStore:
  """Shared SQL for both backends; subclasses provide connections and dialect bits."""

  placeholder = "?"
  driver_errors: Tuple[type, ...] = ()
  table_ddl = ""
  metadata_cast = ""

  def describe(self) -> str:
    return type(self).__name__

  @contextmanager
  def _connection(self) -> Iterator[Any]:
    raise NotImplementedError

  @contextmanager
  def _session(self, action: str) -> Iterator[Any]:
    try:
      with self._connection() as conn:
        yield conn
    except self.driver_errors as exc:
      raise HistoryStoreError(f"Failed to {action}: {exc}") from exc

  def _inserted_id(self, cursor: Any) -> int:
    raise NotImplementedError

  def _insert_sql(self) -> str:
    p = self.placeholder
    return (
      f"INSERT INTO {TABLE_NAME} (s3_key, is_hot_dog, model, timestamp, request_metadata) "
      f"VALUES ({p}, {p}, {p}, {p}, {p}{self.metadata_cast})"
    )

  def initialise(self) -> None:
    """Create the history table and its indexes when missing."""
    with self._session("initialise history table") as conn:
      conn.execute(self.table_ddl)
      for statement in _INDEXES:
        conn.execute(statement)

  def ping(self) -> None:
    with self._session("reach the database") as conn:
      conn.execute("SELECT 1").fetchone()

  def insert(
    self,
    *,
    s3_key: Optional[str],
    is_hot_dog: bool,
    model: str,
    timestamp: datetime,
    request_metadata: Optional[Dict[str, Any]] = None,
  ) -> int:
    """Insert one classification and return its primary key."""
    params = (
      s3_key,
      is_hot_dog,
      model,
      self._timestamp_param(timestamp),
      json.dumps(request_metadata or {}, default=str),
    )
    with self._session("persist classification") as conn:
      cursor = conn.execute(self._insert_sql(), params)
      return self._inserted_id(cursor)

  def fetch(self, *, limit: int = 50, offset: int = 0, is_hot_dog: Optional[bool] = None) -> List[Dict[str, Any]]:
    """Return history rows newest first."""
    p = self.placeholder
    sql = f"SELECT id, s3_key, is_hot_dog, model, timestamp, request_metadata FROM {TABLE_NAME}"
    params: List[Any] = []
    if is_hot_dog is not None:
      sql += f" WHERE is_hot_dog = {p}"
      params.append(is_hot_dog)
    sql += f" ORDER BY timestamp DESC, id DESC LIMIT {p} OFFSET {p}"
    params.extend([limit, offset])

    with self._session("read classification history") as conn:
      rows = conn.execute(sql, tuple(params)).fetchall()
    return [self._row_to_item(row) for row in rows]

  def _timestamp_param(self, value: datetime) -> Any:
    return value

  @staticmethod
  def _row_to_item(row: Any) -> Dict[str, Any]:
    timestamp = row["timestamp"]
    if isinstance(timestamp, datetime):
      timestamp = timestamp.isoformat()

    metadata = row["request_metadata"]
    if isinstance(metadata, (str, bytes)):
      try:
        metadata = json.loads(metadata)
      except ValueError:
        logger.warning("Discarding unreadable request_metadata for row %s", row["id"])
        metadata = {}

    is_hot_dog = bool(row["is_hot_dog"])
    return {
      "id": row["id"],
      "result": label_for(is_hot_dog),
      "is_hot_dog": is_hot_dog,
      "model": row["model"],
      "timestamp": timestamp,
      "image_key": row["s3_key"],
      "request_metadata": metadata or {},
    }


class SQLiteHistoryStore(HistoryStore):
  placeholder = "?"
  driver_errors = (sqlite3.Error, OSError)
  table_ddl = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      s3_key TEXT,
      is_hot_dog INTEGER NOT NULL,
      model TEXT NOT NULL,
      timestamp TEXT NOT NULL,
      request_metadata TEXT,
      created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
  """

  def __init__(self, db_path: Path) -> None:
    self.db_path = Path(db_path)

  def describe(self) -> str:
    return f"sqlite:{self.db_path}"

  @contextmanager
  def _connection(self) -> Iterator[sqlite3.Connection]:
    self.db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(self.db_path)
    conn.row_factory = sqlite3.Row
    try:
      with conn:
        yield conn
    finally:
      conn.close()

  def _inserted_id(self, cursor: sqlite3.Cursor) -> int:
    return int(cursor.lastrowid)

  def _timestamp_param(self, value: datetime) -> str:
    # Stored as UTC ISO-8601 so text ordering matches time ordering.
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class PostgresHistoryStore(HistoryStore):
  placeholder = "%s"
  driver_errors = (psycopg.Error,)
  metadata_cast = "::jsonb"
  table_ddl = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
      id SERIAL PRIMARY KEY,
      s3_key VARCHAR(500),
      is_hot_dog BOOLEAN NOT NULL,
      model VARCHAR(100) NOT NULL,
      timestamp TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
      request_metadata JSONB,
      created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    )
  """

  def __init__(
    self,
    *,
    host: str,
    port: int,
    dbname: str,
    user: str,
    password: str,
    sslmode: str = "require",
    connect_timeout: int = 5,
  ) -> None:
    self.conninfo = {
      "host": host,
      "port": port,
      "dbname": dbname,
      "user": user,
      "password": password,
      "sslmode": sslmode,
      "connect_timeout": connect_timeout,
    }

  def describe(self) -> str:
    info = self.conninfo
    return f"postgresql://{info['user']}@{info['host']}:{info['port']}/{info['dbname']}"

  @contextmanager
  def _connection(self) -> Iterator[psycopg.Connection]:
    with psycopg.connect(row_factory=dict_row, **self.conninfo) as conn:
      yield conn

  def _insert_sql(self) -> str:
    return super()._insert_sql() + " RETURNING id"

  def _inserted_id(self, cursor: psycopg.Cursor) -> int:
    row = cursor.fetchone()
    return int(row["id"])


__all__ = [
  "HistoryStore",
  "HistoryStoreError",
  "PostgresHistoryStore",
  "SQLiteHistoryStore",
  "TABLE_NAME",
]
