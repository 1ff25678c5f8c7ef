from __future__ import annotations

import logging
import sqlite3
from typing import Any

from forecast_accuracy.config import AppConfig
from forecast_accuracy.db import store
from forecast_accuracy.pipeline.attestation_scores import build_attestation_score, select_latest_pre_end
from forecast_accuracy.pipeline.market_scores import market_address_for, rescore_market
from forecast_accuracy.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

BACKFILL_JOB = "backfill_accuracy"
REINDEX_JOB = "reindex_accuracy"

STATUS_IDLE = "idle"
STATUS_PROCESSING = "processing"


def backfill_accuracy(conn, config: AppConfig, now: str | None = None) -> dict[str, Any]:
    return _run_job(conn, BACKFILL_JOB, lambda stats: _backfill(conn, config, now or utc_now_iso(), stats))


def reindex_accuracy(
    conn,
    config: AppConfig,
    address: str | None = None,
    market_id: str | None = None,
    now: str | None = None,
) -> dict[str, Any]:
    if not address and not market_id:
        return backfill_accuracy(conn, config, now=now)
    return _run_job(
        conn,
        REINDEX_JOB,
        lambda stats: _reindex(conn, config, address, market_id, now or utc_now_iso(), stats),
    )


def job_status(conn, job: str) -> dict[str, Any]:
    return store.fetch_job_status(conn, job)


def _run_job(conn, job: str, body) -> dict[str, Any]:
    stats = {
        "attestations_processed": 0,
        "attestations_skipped": 0,
        "markets_processed": 0,
        "markets_skipped": 0,
    }
    store.set_job_status(conn, job, STATUS_PROCESSING)
    try:
        body(stats)
    except Exception as exc:  # noqa: BLE001
        conn.rollback()
        store.set_job_status(
            conn,
            job,
            STATUS_IDLE,
            processed=stats["attestations_processed"] + stats["markets_processed"],
            skipped=stats["attestations_skipped"] + stats["markets_skipped"],
            error_message=str(exc),
        )
        raise
    store.set_job_status(
        conn,
        job,
        STATUS_IDLE,
        processed=stats["attestations_processed"] + stats["markets_processed"],
        skipped=stats["attestations_skipped"] + stats["markets_skipped"],
    )
    logger.info(
        "%s summary attestations=%d attestations_skipped=%d markets=%d markets_skipped=%d",
        job,
        stats["attestations_processed"],
        stats["attestations_skipped"],
        stats["markets_processed"],
        stats["markets_skipped"],
    )
    return stats


def _backfill(conn, config: AppConfig, now: str, stats: dict[str, Any]) -> None:
    _upsert_attestation_pages(conn, config, None, stats)

    cursor: str | None = None
    while True:
        conditions = store.fetch_settled_conditions_page(conn, cursor, config.backfill.batch_size)
        if not conditions:
            break
        for condition in conditions:
            _process_market(conn, config, market_address_for(condition), condition["id"], now, stats)
        cursor = conditions[-1]["id"]
        if len(conditions) < config.backfill.batch_size:
            break


def _reindex(
    conn,
    config: AppConfig,
    address: str | None,
    market_id: str | None,
    now: str,
    stats: dict[str, Any],
) -> None:
    if market_id:
        market_ids = [market_id]
    else:
        market_ids = store.fetch_market_ids_for_address(conn, address.lower())
    logger.info("Reindexing %d markets for address=%s", len(market_ids), address)

    for target_id in market_ids:
        _upsert_attestation_pages(conn, config, target_id, stats)
        market_address = address.lower() if address else None
        if market_address is None:
            market_address = market_address_for(store.fetch_condition(conn, target_id))
        _process_market(conn, config, market_address, target_id, now, stats)


def _upsert_attestation_pages(
    conn,
    config: AppConfig,
    condition_id: str | None,
    stats: dict[str, Any],
) -> None:
    batch_size = config.backfill.batch_size
    cursor: int | None = None
    while True:
        attestations = store.fetch_attestations_page(conn, cursor, batch_size, condition_id=condition_id)
        if not attestations:
            break
        rows = []
        for attestation in attestations:
            row = _safe_build(attestation)
            if row is None:
                stats["attestations_skipped"] += 1
                continue
            rows.append(row)
        store.upsert_attestation_scores(conn, rows, commit=True)
        stats["attestations_processed"] += len(rows)
        cursor = attestations[-1]["id"]
        logger.info("Upserted %d attestation scores through id=%s", len(rows), cursor)
        if len(attestations) < batch_size:
            break


def _safe_build(attestation: dict[str, Any]) -> dict[str, Any] | None:
    try:
        return build_attestation_score(attestation)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Skipping attestation %s: %s", attestation.get("id"), exc)
        return None


def _process_market(
    conn,
    config: AppConfig,
    market_address: str | None,
    market_id: str,
    now: str,
    stats: dict[str, Any],
) -> None:
    try:
        select_latest_pre_end(conn, market_address, market_id, commit=False)
        rescore_market(conn, market_address, market_id, config, now=now, commit=False)
        conn.commit()
    except sqlite3.Error:
        raise
    except Exception as exc:  # noqa: BLE001
        conn.rollback()
        logger.warning("Skipping market %s/%s: %s", market_address, market_id, exc)
        stats["markets_skipped"] += 1
        return
    stats["markets_processed"] += 1
