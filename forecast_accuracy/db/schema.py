SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS attestation (
    id INTEGER PRIMARY KEY,
    uid TEXT,
    attester TEXT NOT NULL,
    condition_id TEXT,
    resolver TEXT,
    prediction TEXT NOT NULL,
    time INTEGER NOT NULL,
    comment TEXT
);

CREATE TABLE IF NOT EXISTS condition (
    id TEXT PRIMARY KEY,
    question TEXT,
    end_time INTEGER,
    settled INTEGER NOT NULL DEFAULT 0,
    resolved_to_yes INTEGER NOT NULL DEFAULT 0,
    resolver TEXT
);

CREATE TABLE IF NOT EXISTS attestation_score (
    attestation_id INTEGER PRIMARY KEY,
    attester TEXT NOT NULL,
    market_address TEXT,
    market_id TEXT,
    question_id TEXT,
    resolver TEXT,
    made_at INTEGER NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    probability_d18 TEXT,
    probability_float REAL,
    outcome INTEGER,
    error_squared REAL,
    scored_at TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_attestation_score_market
    ON attestation_score (market_address, market_id);
CREATE INDEX IF NOT EXISTS idx_attestation_score_attester_market_made_at
    ON attestation_score (attester, market_address, market_id, made_at);

CREATE TABLE IF NOT EXISTS attester_market_tw_error (
    attester TEXT NOT NULL,
    market_address TEXT NOT NULL DEFAULT '',
    market_id TEXT NOT NULL,
    tw_error REAL NOT NULL,
    computed_at TEXT,
    PRIMARY KEY (attester, market_address, market_id)
);

CREATE INDEX IF NOT EXISTS idx_attester_market_tw_error_market
    ON attester_market_tw_error (market_address, market_id);

CREATE TABLE IF NOT EXISTS job_status (
    job TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    processed INTEGER,
    skipped INTEGER,
    error_message TEXT
);
"""
