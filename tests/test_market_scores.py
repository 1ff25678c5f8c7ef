from __future__ import annotations

import sqlite3

import pytest

from forecast_accuracy.config import AppConfig
from forecast_accuracy.db import store
from forecast_accuracy.pipeline.attestation_scores import upsert_from_attestation
from forecast_accuracy.pipeline.market_scores import (
    attester_summary,
    compute_tw_error,
    rescore_market,
    upsert_attester_market_tw_error,
)

NOW = "2026-01-07T00:00:00+00:00"
MARKET = "0xmarket"


def _setup_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    store.init_db(conn)
    return conn


def _set_condition(conn: sqlite3.Connection, settled: bool = True, end_time: int | None = 100) -> None:
    store.upsert_conditions(
        conn,
        [{"id": "c1", "end_time": end_time, "settled": settled, "resolved_to_yes": True, "resolver": "0xMarket"}],
    )


def _seed(conn: sqlite3.Connection) -> None:
    _set_condition(conn)
    attestations = [
        {"id": 1, "attester": "0xAlice", "prediction": "0.9", "time": 0},
        {"id": 2, "attester": "0xAlice", "prediction": "0.95", "time": 50},
        {"id": 3, "attester": "0xAlice", "prediction": "0.1", "time": 150},
        {"id": 4, "attester": "0xBob", "prediction": "0.2", "time": 0},
        {"id": 5, "attester": "0xCarol", "prediction": "0.5", "time": 60},
        {"id": 6, "attester": "0xDave", "prediction": "n/a", "time": 10},
    ]
    store.upsert_attestations(conn, [{**item, "condition_id": "c1", "resolver": "0xRes"} for item in attestations])
    for item in attestations:
        upsert_from_attestation(conn, item["id"])


def _tw_errors(conn: sqlite3.Connection) -> dict[str, float]:
    return {row["attester"]: row["tw_error"] for row in store.fetch_market_tw_errors(conn, MARKET, "c1")}


def test_rescore_scores_every_pre_end_forecast() -> None:
    conn = _setup_conn()
    _seed(conn)

    summary = rescore_market(conn, "0xMarket", "c1", AppConfig(), now=NOW)

    assert summary["outcome"] == 1
    assert summary["scored"] == 4
    rows = {row["attestation_id"]: row for row in store.fetch_market_scores(conn, MARKET, "c1")}
    assert rows[1]["error_squared"] == pytest.approx(0.01)
    assert rows[2]["error_squared"] == pytest.approx(0.0025)
    assert rows[4]["error_squared"] == pytest.approx(0.64)
    assert rows[1]["outcome"] == 1
    assert rows[1]["scored_at"] == NOW
    # Post-end and unparseable forecasts stay unscored.
    assert rows[3]["error_squared"] is None
    assert rows[6]["error_squared"] is None


def test_rescore_writes_tw_errors_per_attester() -> None:
    conn = _setup_conn()
    _seed(conn)

    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    tw_errors = _tw_errors(conn)
    assert set(tw_errors) == {"0xalice", "0xbob", "0xcarol"}
    assert tw_errors["0xalice"] == pytest.approx(0.00925)
    assert tw_errors["0xbob"] == pytest.approx(0.64)
    assert tw_errors["0xcarol"] == pytest.approx(0.25)


def test_rescore_is_idempotent() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)
    first_scores = store.fetch_market_scores(conn, MARKET, "c1")
    first_errors = store.fetch_market_tw_errors(conn, MARKET, "c1")

    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    assert store.fetch_market_scores(conn, MARKET, "c1") == first_scores
    assert store.fetch_market_tw_errors(conn, MARKET, "c1") == first_errors


def test_unsettled_market_clears_scores() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    _set_condition(conn, settled=False)
    summary = rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    assert summary["outcome"] is None
    for row in store.fetch_market_scores(conn, MARKET, "c1"):
        assert row["error_squared"] is None
        assert row["outcome"] is None
        assert row["scored_at"] is None
    assert _tw_errors(conn) == {}


def test_missing_end_time_clears_scores() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    _set_condition(conn, end_time=None)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    assert all(row["error_squared"] is None for row in store.fetch_market_scores(conn, MARKET, "c1"))


def test_degenerate_history_removes_stale_tw_error() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)
    assert "0xcarol" in _tw_errors(conn)

    # Carol's only forecast now lands exactly on the end time: zero-length history.
    _set_condition(conn, end_time=60)
    summary = rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    tw_errors = _tw_errors(conn)
    assert "0xcarol" not in tw_errors
    assert "0xalice" in tw_errors
    assert summary["tw_errors_removed"] == 1
    carol_row = store.fetch_attestation_score(conn, 5)
    assert carol_row["error_squared"] == pytest.approx(0.25)


def test_missing_condition_is_skipped() -> None:
    conn = _setup_conn()
    summary = rescore_market(conn, MARKET, "nope", AppConfig(), now=NOW)
    assert summary["scored"] == 0
    assert summary["outcome"] is None


def test_alpha_comes_from_config() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(scoring={"alpha": 1}), now=NOW)
    assert _tw_errors(conn)["0xalice"] == pytest.approx(0.008125)


def test_compute_tw_error_reads_condition() -> None:
    conn = _setup_conn()
    _seed(conn)
    config = AppConfig()

    assert compute_tw_error(conn, "c1", "0xALICE", config) == pytest.approx(0.00925)
    assert compute_tw_error(conn, "c1", "0xdave", config) is None

    _set_condition(conn, settled=False)
    assert compute_tw_error(conn, "c1", "0xalice", config) is None


def test_attester_summary_matches_stored_aggregate() -> None:
    conn = _setup_conn()
    _seed(conn)
    rescore_market(conn, MARKET, "c1", AppConfig(), now=NOW)

    summary = attester_summary(conn, "0xAlice", AppConfig())

    assert summary["num_time_weighted"] == 1
    assert summary["sum_time_weighted_error"] == pytest.approx(_tw_errors(conn)["0xalice"])


def test_upsert_tw_error_overwrites_by_composite_key() -> None:
    conn = _setup_conn()
    upsert_attester_market_tw_error(conn, "0xMarket", "c1", "0xAlice", 0.3, now=NOW)
    upsert_attester_market_tw_error(conn, "0xmarket", "c1", "0xalice", 0.1, now=NOW)

    rows = store.fetch_market_tw_errors(conn, MARKET, "c1")
    assert len(rows) == 1
    assert rows[0]["attester"] == "0xalice"
    assert rows[0]["tw_error"] == pytest.approx(0.1)
