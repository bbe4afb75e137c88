"""Key-value persistence for canonical series, keyed by (data_type, area, date).

Payloads are opaque JSON documents; nothing in the core inspects them once
stored. `area` is optional because some artefacts (reserve) cover every area.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

Payload = Dict[str, Any]

# sqlite treats NULLs as distinct in UNIQUE constraints, so area-less rows store ''.
_NO_AREA = ""


class DataStore(Protocol):
    def put(self, data_type: str, area: Optional[str], date: str, payload: Payload) -> None: ...

    def get(self, data_type: str, area: Optional[str], date: str) -> Optional[Payload]: ...


class MemoryStore:
    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str, str], str] = {}

    def put(self, data_type: str, area: Optional[str], date: str, payload: Payload) -> None:
        self._items[(data_type, area or _NO_AREA, date)] = json.dumps(payload, ensure_ascii=False)

    def get(self, data_type: str, area: Optional[str], date: str) -> Optional[Payload]:
        raw = self._items.get((data_type, area or _NO_AREA, date))
        return None if raw is None else json.loads(raw)


class SqliteStore:
    """SQLite-backed store; `put` upserts so re-running a job supersedes the old row."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._create_schema()

    def _create_schema(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS series_data (
                data_type TEXT NOT NULL,
                area TEXT NOT NULL DEFAULT '',
                date TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (data_type, area, date)
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_series_date ON series_data(date)")
        self._conn.commit()

    def put(self, data_type: str, area: Optional[str], date: str, payload: Payload) -> None:
        document = json.dumps(payload, ensure_ascii=False)
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO series_data (data_type, area, date, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(data_type, area, date)
                DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                """,
                (data_type, area or _NO_AREA, date, document, stamp),
            )
            self._conn.commit()

    def get(self, data_type: str, area: Optional[str], date: str) -> Optional[Payload]:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM series_data WHERE data_type = ? AND area = ? AND date = ?",
                (data_type, area or _NO_AREA, date),
            ).fetchone()
        return None if row is None else json.loads(row[0])

    def keys(self, data_type: Optional[str] = None) -> List[Tuple[str, Optional[str], str]]:
        query = "SELECT data_type, area, date FROM series_data"
        params: Tuple[str, ...] = ()
        if data_type:
            query += " WHERE data_type = ?"
            params = (data_type,)
        query += " ORDER BY date, data_type, area"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [(kind, area or None, date) for kind, area, date in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
