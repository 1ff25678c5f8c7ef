from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable

from forecast_accuracy.db.schema import SCHEMA_SQL
from forecast_accuracy.utils.time import utc_now_iso

_ATTESTATION_SELECT = """
    SELECT a.id, a.uid, a.attester, a.condition_id, a.resolver, a.prediction, a.time, a.comment,
           c.id AS joined_condition_id, c.resolver AS condition_resolver
    FROM attestation a
    LEFT JOIN condition c ON c.id = a.condition_id
"""

_SCORE_COLUMNS = """
    attestation_id, attester, market_address, market_id, question_id, resolver, made_at, used,
    probability_d18, probability_float, outcome, error_squared, scored_at
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    _ensure_column(conn, "attestation", "comment", "TEXT")
    _ensure_column(conn, "attestation_score", "question_id", "TEXT")
    _ensure_column(conn, "attestation_score", "resolver", "TEXT")
    _ensure_column(conn, "attestation_score", "created_at", "TEXT")
    _ensure_column(conn, "attester_market_tw_error", "computed_at", "TEXT")
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    except sqlite3.OperationalError:
        return


# Source tables. The ingestion subsystem owns these; the writers exist for imports and tests.


def upsert_attestations(
    conn: sqlite3.Connection,
    attestations: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for attestation in attestations:
        rows.append(
            (
                attestation.get("id"),
                attestation.get("uid"),
                attestation.get("attester"),
                attestation.get("condition_id"),
                attestation.get("resolver"),
                attestation.get("prediction"),
                attestation.get("time"),
                attestation.get("comment"),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO attestation
        (id, uid, attester, condition_id, resolver, prediction, time, comment)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def upsert_conditions(
    conn: sqlite3.Connection,
    conditions: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for condition in conditions:
        rows.append(
            (
                condition.get("id"),
                condition.get("question"),
                condition.get("end_time"),
                1 if condition.get("settled") else 0,
                1 if condition.get("resolved_to_yes") else 0,
                condition.get("resolver"),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO condition
        (id, question, end_time, settled, resolved_to_yes, resolver)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def fetch_attestation(conn: sqlite3.Connection, attestation_id: int) -> dict[str, Any] | None:
    row = conn.execute(f"{_ATTESTATION_SELECT} WHERE a.id = ?", (attestation_id,)).fetchone()
    if row is None:
        return None
    return _attestation_from_row(row)


def fetch_attestations_page(
    conn: sqlite3.Connection,
    after_id: int | None,
    limit: int,
    condition_id: str | None = None,
) -> list[dict[str, Any]]:
    clauses = ["a.id > ?"]
    params: list[Any] = [after_id if after_id is not None else -1]
    if condition_id is not None:
        clauses.append("a.condition_id = ?")
        params.append(condition_id)
    params.append(limit)
    rows = conn.execute(
        f"{_ATTESTATION_SELECT} WHERE {' AND '.join(clauses)} ORDER BY a.id ASC LIMIT ?",
        params,
    ).fetchall()
    return [_attestation_from_row(row) for row in rows]


def _attestation_from_row(row: sqlite3.Row) -> dict[str, Any]:
    condition = None
    if row["joined_condition_id"] is not None:
        condition = {"id": row["joined_condition_id"], "resolver": row["condition_resolver"]}
    return {
        "id": row["id"],
        "uid": row["uid"],
        "attester": row["attester"],
        "condition_id": row["condition_id"],
        "resolver": row["resolver"],
        "prediction": row["prediction"],
        "time": row["time"],
        "comment": row["comment"],
        "condition": condition,
    }


def fetch_condition(conn: sqlite3.Connection, condition_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, question, end_time, settled, resolved_to_yes, resolver FROM condition WHERE id = ?",
        (condition_id,),
    ).fetchone()
    if row is None:
        return None
    return _condition_from_row(row)


def fetch_settled_conditions_page(
    conn: sqlite3.Connection,
    after_id: str | None,
    limit: int,
) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, question, end_time, settled, resolved_to_yes, resolver
        FROM condition
        WHERE settled = 1 AND id > ?
        ORDER BY id ASC
        LIMIT ?
        """,
        (after_id if after_id is not None else "", limit),
    ).fetchall()
    return [_condition_from_row(row) for row in rows]


def _condition_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "question": row["question"],
        "end_time": row["end_time"],
        "settled": bool(row["settled"]),
        "resolved_to_yes": bool(row["resolved_to_yes"]),
        "resolver": row["resolver"],
    }


# Derived tables.


def upsert_attestation_scores(
    conn: sqlite3.Connection,
    scores: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    """Create-or-refresh score rows keyed by attestation_id.

    The update branch only refreshes market identity and the normalized
    probability; error_squared, outcome, scored_at and used keep whatever the
    last rescore or selection pass wrote.
    """
    now = utc_now_iso()
    rows = []
    for score in scores:
        rows.append(
            (
                score.get("attestation_id"),
                score.get("attester"),
                score.get("market_address"),
                score.get("market_id"),
                score.get("question_id"),
                score.get("resolver"),
                score.get("made_at"),
                score.get("probability_d18"),
                score.get("probability_float"),
                now,
            )
        )
    conn.executemany(
        """
        INSERT INTO attestation_score
        (attestation_id, attester, market_address, market_id, question_id, resolver, made_at,
         used, probability_d18, probability_float, outcome, error_squared, scored_at, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, NULL, NULL, NULL, ?)
        ON CONFLICT(attestation_id) DO UPDATE SET
            market_address = excluded.market_address,
            market_id = excluded.market_id,
            question_id = excluded.question_id,
            resolver = excluded.resolver,
            probability_d18 = excluded.probability_d18,
            probability_float = excluded.probability_float
        """,
        rows,
    )
    if commit:
        conn.commit()


def fetch_attestation_score(conn: sqlite3.Connection, attestation_id: int) -> dict[str, Any] | None:
    row = conn.execute(
        f"SELECT {_SCORE_COLUMNS} FROM attestation_score WHERE attestation_id = ?",
        (attestation_id,),
    ).fetchone()
    if row is None:
        return None
    return _score_from_row(row)


def fetch_market_scores(
    conn: sqlite3.Connection,
    market_address: str | None,
    market_id: str,
    attester: str | None = None,
    made_before: int | None = None,
    require_probability: bool = False,
) -> list[dict[str, Any]]:
    clauses = ["market_address IS ?", "market_id = ?"]
    params: list[Any] = [market_address, market_id]
    if attester is not None:
        clauses.append("attester = ?")
        params.append(attester)
    if made_before is not None:
        clauses.append("made_at <= ?")
        params.append(made_before)
    if require_probability:
        clauses.append("probability_float IS NOT NULL")
    rows = conn.execute(
        f"""
        SELECT {_SCORE_COLUMNS}
        FROM attestation_score
        WHERE {' AND '.join(clauses)}
        ORDER BY made_at ASC, attestation_id ASC
        """,
        params,
    ).fetchall()
    return [_score_from_row(row) for row in rows]


def fetch_attester_scores(
    conn: sqlite3.Connection,
    attester: str,
    require_probability: bool = True,
) -> list[dict[str, Any]]:
    clause = " AND probability_float IS NOT NULL" if require_probability else ""
    rows = conn.execute(
        f"""
        SELECT {_SCORE_COLUMNS}
        FROM attestation_score
        WHERE attester = ?{clause}
        ORDER BY made_at ASC, attestation_id ASC
        """,
        (attester,),
    ).fetchall()
    return [_score_from_row(row) for row in rows]


def fetch_market_attesters(
    conn: sqlite3.Connection,
    market_address: str | None,
    market_id: str,
    made_before: int | None = None,
    require_probability: bool = True,
) -> list[str]:
    clauses = ["market_address IS ?", "market_id = ?"]
    params: list[Any] = [market_address, market_id]
    if made_before is not None:
        clauses.append("made_at <= ?")
        params.append(made_before)
    if require_probability:
        clauses.append("probability_float IS NOT NULL")
    rows = conn.execute(
        f"""
        SELECT DISTINCT attester
        FROM attestation_score
        WHERE {' AND '.join(clauses)}
        ORDER BY attester ASC
        """,
        params,
    ).fetchall()
    return [row["attester"] for row in rows]


def fetch_market_ids_for_address(conn: sqlite3.Connection, market_address: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT DISTINCT market_id
        FROM attestation_score
        WHERE market_address = ? AND market_id IS NOT NULL
        ORDER BY market_id ASC
        """,
        (market_address,),
    ).fetchall()
    return [row["market_id"] for row in rows]


def clear_market_scores(
    conn: sqlite3.Connection,
    market_address: str | None,
    market_id: str,
    commit: bool = True,
) -> int:
    cursor = conn.execute(
        """
        UPDATE attestation_score
        SET error_squared = NULL, outcome = NULL, scored_at = NULL
        WHERE market_address IS ? AND market_id = ?
        """,
        (market_address, market_id),
    )
    if commit:
        conn.commit()
    return cursor.rowcount


def update_score_errors(
    conn: sqlite3.Connection,
    updates: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = [
        (update["error_squared"], update["outcome"], update["scored_at"], update["attestation_id"])
        for update in updates
    ]
    conn.executemany(
        """
        UPDATE attestation_score
        SET error_squared = ?, outcome = ?, scored_at = ?
        WHERE attestation_id = ?
        """,
        rows,
    )
    if commit:
        conn.commit()


def mark_used(
    conn: sqlite3.Connection,
    market_address: str | None,
    market_id: str,
    attester: str,
    attestation_id: int,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        UPDATE attestation_score
        SET used = CASE WHEN attestation_id = ? THEN 1 ELSE 0 END
        WHERE market_address IS ? AND market_id = ? AND attester = ?
        """,
        (attestation_id, market_address, market_id, attester),
    )
    if commit:
        conn.commit()


def _score_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "attestation_id": row["attestation_id"],
        "attester": row["attester"],
        "market_address": row["market_address"],
        "market_id": row["market_id"],
        "question_id": row["question_id"],
        "resolver": row["resolver"],
        "made_at": row["made_at"],
        "used": bool(row["used"]),
        "probability_d18": row["probability_d18"],
        "probability_float": row["probability_float"],
        "outcome": row["outcome"],
        "error_squared": row["error_squared"],
        "scored_at": row["scored_at"],
    }


def upsert_attester_market_tw_error(
    conn: sqlite3.Connection,
    attester: str,
    market_address: str,
    market_id: str,
    tw_error: float,
    computed_at: str,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        INSERT INTO attester_market_tw_error (attester, market_address, market_id, tw_error, computed_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(attester, market_address, market_id) DO UPDATE SET
            tw_error = excluded.tw_error,
            computed_at = excluded.computed_at
        """,
        (attester, market_address, market_id, tw_error, computed_at),
    )
    if commit:
        conn.commit()


def delete_market_tw_errors(
    conn: sqlite3.Connection,
    market_address: str,
    market_id: str,
    keep_attesters: Iterable[str] = (),
    commit: bool = True,
) -> int:
    keep = [attester for attester in keep_attesters if attester]
    params: list[Any] = [market_address, market_id]
    clause = ""
    if keep:
        placeholders = ",".join("?" for _ in keep)
        clause = f" AND attester NOT IN ({placeholders})"
        params.extend(keep)
    cursor = conn.execute(
        f"DELETE FROM attester_market_tw_error WHERE market_address = ? AND market_id = ?{clause}",
        params,
    )
    if commit:
        conn.commit()
    return cursor.rowcount


def fetch_market_tw_errors(
    conn: sqlite3.Connection,
    market_address: str,
    market_id: str,
) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT attester, market_address, market_id, tw_error, computed_at
        FROM attester_market_tw_error
        WHERE market_address = ? AND market_id = ?
        ORDER BY attester ASC
        """,
        (market_address, market_id),
    ).fetchall()
    return [dict(row) for row in rows]


def fetch_attester_tw_errors(conn: sqlite3.Connection, attester: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT attester, market_address, market_id, tw_error, computed_at
        FROM attester_market_tw_error
        WHERE attester = ?
        ORDER BY market_address ASC, market_id ASC
        """,
        (attester,),
    ).fetchall()
    return [dict(row) for row in rows]


def fetch_tw_error_averages(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT attester, AVG(tw_error) AS mean_tw_error, COUNT(*) AS markets
        FROM attester_market_tw_error
        GROUP BY attester
        """
    ).fetchall()
    return [
        {
            "attester": row["attester"],
            "mean_tw_error": row["mean_tw_error"],
            "markets": row["markets"],
        }
        for row in rows
    ]


# Job status side channel.


def set_job_status(
    conn: sqlite3.Connection,
    job: str,
    status: str,
    processed: int | None = None,
    skipped: int | None = None,
    error_message: str | None = None,
) -> None:
    now = utc_now_iso()
    if status == "processing":
        conn.execute(
            """
            INSERT INTO job_status (job, status, started_at, finished_at, processed, skipped, error_message)
            VALUES (?, ?, ?, NULL, 0, 0, NULL)
            ON CONFLICT(job) DO UPDATE SET
                status = excluded.status,
                started_at = excluded.started_at,
                finished_at = NULL,
                processed = 0,
                skipped = 0,
                error_message = NULL
            """,
            (job, status, now),
        )
    else:
        conn.execute(
            """
            INSERT INTO job_status (job, status, started_at, finished_at, processed, skipped, error_message)
            VALUES (?, ?, NULL, ?, ?, ?, ?)
            ON CONFLICT(job) DO UPDATE SET
                status = excluded.status,
                finished_at = excluded.finished_at,
                processed = excluded.processed,
                skipped = excluded.skipped,
                error_message = excluded.error_message
            """,
            (job, status, now, processed, skipped, error_message),
        )
    conn.commit()


def fetch_job_status(conn: sqlite3.Connection, job: str) -> dict[str, Any]:
    row = conn.execute(
        """
        SELECT job, status, started_at, finished_at, processed, skipped, error_message
        FROM job_status WHERE job = ?
        """,
        (job,),
    ).fetchone()
    if row is None:
        return {"job": job, "status": "idle"}
    return dict(row)
