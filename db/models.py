SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    id                      TEXT PRIMARY KEY,
    owner_id                TEXT NOT NULL,
    name                    TEXT NOT NULL,
    status                  TEXT NOT NULL DEFAULT 'recording',
    transcript              TEXT,
    summary_json            TEXT,
    error_message           TEXT,
    created_at              TEXT NOT NULL,
    processing_started_at   TEXT,
    processing_completed_at TEXT,
    processing_duration_ms  INTEGER
);

CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions (owner_id, created_at);

CREATE TABLE IF NOT EXISTS status_events (
    id            TEXT PRIMARY KEY,
    session_id    TEXT NOT NULL,
    seq           INTEGER NOT NULL,
    step          TEXT NOT NULL,
    status        TEXT NOT NULL,
    error_message TEXT,
    duration_ms   INTEGER,
    timestamp     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_status_events_session ON status_events (session_id, timestamp, seq);
"""
