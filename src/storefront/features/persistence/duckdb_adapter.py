from __future__ import annotations

import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import duckdb

from .schema import EVENTS_TABLE_NAME, PREFERENCES_TABLE_NAME, create_schema


@dataclass(frozen=True)
class DuckDBWriteResult:
    num_events: int
    duration_ms: float


class DuckDBAdapter:
    """
    DuckDB persistence adapter. Owns the connection and schema.
    """

    def __init__(self, path: str, *, clean_slate: bool) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        if self.clean_slate and os.path.exists(self.path):
            os.remove(self.path)

        # Ensure parent dir exists
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter not opened. Call open() first.")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ----- events -----
    def write_events(self, rows: Sequence[tuple]) -> DuckDBWriteResult:
        """
        Writes a batch of rows matching the events schema.
        Returns count and duration.
        """
        if not rows:
            return DuckDBWriteResult(num_events=0, duration_ms=0.0)

        t0 = time.perf_counter()

        self.conn.executemany(
            f"""
            INSERT INTO {EVENTS_TABLE_NAME} (
                run_id, event_id,
                ts_utc, sim_time_s,
                visitor_id,
                event_type,
                page, epoch,
                value_str,
                payload_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

        dt_ms = (time.perf_counter() - t0) * 1000.0
        return DuckDBWriteResult(num_events=len(rows), duration_ms=dt_ms)

    def count_events(self, run_id: str, event_type: str | None = None) -> int:
        """
        Convenience method for sanity checks/tests.
        """
        if event_type is None:
            res = self.conn.execute(
                f"SELECT COUNT(*) FROM {EVENTS_TABLE_NAME} WHERE run_id = ?",
                [run_id],
            ).fetchone()
        else:
            res = self.conn.execute(
                f"SELECT COUNT(*) FROM {EVENTS_TABLE_NAME} WHERE run_id = ? AND event_type = ?",
                [run_id, event_type],
            ).fetchone()
        return int(res[0]) if res else 0

    # ----- preferences -----
    def get_preference(self, key: str) -> str | None:
        row = self.conn.execute(
            f"SELECT value_json FROM {PREFERENCES_TABLE_NAME} WHERE pref_key = ?",
            [key],
        ).fetchone()
        return None if row is None else str(row[0])

    def put_preference(self, key: str, value_json: str, *, updated_at: datetime) -> None:
        conn = self.conn
        conn.execute("BEGIN TRANSACTION")
        try:
            conn.execute(f"DELETE FROM {PREFERENCES_TABLE_NAME} WHERE pref_key = ?", [key])
            conn.execute(
                f"INSERT INTO {PREFERENCES_TABLE_NAME} (pref_key, value_json, updated_at) "
                "VALUES (?, ?, ?)",
                [key, value_json, updated_at],
            )
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def delete_preference(self, key: str) -> None:
        self.conn.execute(f"DELETE FROM {PREFERENCES_TABLE_NAME} WHERE pref_key = ?", [key])
