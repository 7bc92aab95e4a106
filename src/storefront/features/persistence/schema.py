from __future__ import annotations

EVENTS_TABLE_NAME = "events"
PREFERENCES_TABLE_NAME = "preferences"

EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE_NAME} (
    run_id TEXT NOT NULL,
    event_id TEXT NOT NULL,

    ts_utc TIMESTAMP NOT NULL,
    sim_time_s DOUBLE NOT NULL,

    visitor_id TEXT,

    event_type TEXT NOT NULL,

    page TEXT,
    epoch INTEGER,

    value_str TEXT,
    payload_json TEXT
);
"""

# One row per key; survives across runs when clean_slate is off
PREFERENCES_DDL = f"""
CREATE TABLE IF NOT EXISTS {PREFERENCES_TABLE_NAME} (
    pref_key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
"""

EVENTS_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_events_run_id ON {EVENTS_TABLE_NAME}(run_id);",
    f"CREATE INDEX IF NOT EXISTS idx_events_event_type ON {EVENTS_TABLE_NAME}(event_type);",
    f"CREATE INDEX IF NOT EXISTS idx_events_visitor_id ON {EVENTS_TABLE_NAME}(visitor_id);",
]


def create_schema(conn) -> None:
    """
    Create tables/indexes. No migrations. Safe to call per run.
    """
    conn.execute(EVENTS_DDL)
    conn.execute(PREFERENCES_DDL)
    for ddl in EVENTS_INDEXES:
        conn.execute(ddl)
