from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from forecast_accuracy.config import AppConfig
from forecast_accuracy.db import store
from forecast_accuracy.scoring.horizon import horizon_weighted_error
from forecast_accuracy.scoring.outcome import outcome_from_condition
from forecast_accuracy.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


def market_address_for(condition: dict[str, Any] | None) -> str | None:
    if not condition:
        return None
    resolver = condition.get("resolver")
    return resolver.lower() if resolver else None


def compute_tw_error(
    conn,
    condition_id: str,
    attester: str,
    config: AppConfig,
    market_address: str | None = None,
) -> float | None:
    condition = store.fetch_condition(conn, condition_id)
    if condition is None or condition.get("end_time") is None:
        return None
    outcome = outcome_from_condition(condition)
    if outcome is None:
        return None
    if market_address is None:
        market_address = market_address_for(condition)
    else:
        market_address = market_address.lower()

    end = condition["end_time"]
    rows = store.fetch_market_scores(
        conn,
        market_address,
        condition_id,
        attester=attester.lower(),
        made_before=end,
        require_probability=True,
    )
    forecasts = [(row["made_at"], row["probability_float"]) for row in rows]
    return horizon_weighted_error(forecasts, end, outcome, config.scoring.alpha)


def upsert_attester_market_tw_error(
    conn,
    market_address: str | None,
    market_id: str,
    attester: str,
    value: float,
    now: str | None = None,
    commit: bool = True,
) -> None:
    store.upsert_attester_market_tw_error(
        conn,
        attester.lower(),
        (market_address or "").lower(),
        market_id,
        value,
        now or utc_now_iso(),
        commit=commit,
    )


def rescore_market(
    conn,
    market_address: str | None,
    market_id: str,
    config: AppConfig,
    now: str | None = None,
    commit: bool = True,
) -> dict[str, Any]:
    """Score every pre-end forecast on a market and refresh per-attester TW errors.

    A market that is not settled (or has no end time) gets its scores cleared
    and its aggregate rows removed. Aggregate rows of attesters whose history
    no longer yields a TW error are removed as well.
    """
    market_address = market_address.lower() if market_address else None
    aggregate_address = market_address or ""
    scored_at = now or utc_now_iso()
    summary = {
        "market_address": market_address,
        "market_id": market_id,
        "outcome": None,
        "scored": 0,
        "cleared": 0,
        "tw_errors": 0,
        "tw_errors_removed": 0,
    }

    condition = store.fetch_condition(conn, market_id)
    if condition is None:
        logger.warning("Condition %s not found; skipping rescore", market_id)
        return summary

    outcome = outcome_from_condition(condition)
    end = condition.get("end_time")
    if outcome is None or end is None:
        summary["cleared"] = store.clear_market_scores(conn, market_address, market_id, commit=False)
        summary["tw_errors_removed"] = store.delete_market_tw_errors(
            conn, aggregate_address, market_id, commit=False
        )
        if commit:
            conn.commit()
        logger.info(
            "Market %s/%s not settled; cleared %d scores",
            market_address,
            market_id,
            summary["cleared"],
        )
        return summary

    summary["outcome"] = outcome
    rows = store.fetch_market_scores(conn, market_address, market_id, made_before=end, require_probability=True)
    updates = []
    by_attester: dict[str, list[tuple[int, float]]] = defaultdict(list)
    for row in rows:
        probability = row["probability_float"]
        updates.append(
            {
                "attestation_id": row["attestation_id"],
                "error_squared": (probability - outcome) ** 2,
                "outcome": outcome,
                "scored_at": scored_at,
            }
        )
        by_attester[row["attester"]].append((row["made_at"], probability))
    store.update_score_errors(conn, updates, commit=False)
    summary["scored"] = len(updates)

    written: list[str] = []
    for attester in sorted(by_attester):
        value = horizon_weighted_error(by_attester[attester], end, outcome, config.scoring.alpha)
        if value is None:
            logger.debug("No positive-duration history for %s on %s; skipping", attester, market_id)
            continue
        upsert_attester_market_tw_error(
            conn, aggregate_address, market_id, attester, value, now=scored_at, commit=False
        )
        written.append(attester)
    summary["tw_errors"] = len(written)
    if written:
        summary["tw_errors_removed"] = store.delete_market_tw_errors(
            conn, aggregate_address, market_id, keep_attesters=written, commit=False
        )
    else:
        summary["tw_errors_removed"] = store.delete_market_tw_errors(
            conn, aggregate_address, market_id, commit=False
        )

    if commit:
        conn.commit()
    logger.info(
        "Rescored market %s/%s outcome=%s scored=%d tw_errors=%d removed=%d",
        market_address,
        market_id,
        outcome,
        summary["scored"],
        summary["tw_errors"],
        summary["tw_errors_removed"],
    )
    return summary


def attester_summary(conn, attester: str, config: AppConfig) -> dict[str, Any]:
    """Per-market TW errors for one attester computed straight from score rows."""
    rows = store.fetch_attester_scores(conn, attester.lower(), require_probability=True)

    markets: dict[tuple[str | None, str], list[tuple[int, float]]] = defaultdict(list)
    for row in rows:
        if not row["market_id"]:
            continue
        markets[(row["market_address"], row["market_id"])].append((row["made_at"], row["probability_float"]))

    conditions: dict[str, dict[str, Any] | None] = {}
    total = 0.0
    count = 0
    for (_, market_id), forecasts in markets.items():
        if market_id not in conditions:
            conditions[market_id] = store.fetch_condition(conn, market_id)
        condition = conditions[market_id]
        if condition is None or condition.get("end_time") is None:
            continue
        end = condition["end_time"]
        pre_end = [item for item in forecasts if item[0] <= end]
        value = horizon_weighted_error(pre_end, end, outcome_from_condition(condition), config.scoring.alpha)
        if value is None:
            continue
        total += value
        count += 1

    return {
        "attester": attester.lower(),
        "sum_time_weighted_error": total,
        "num_time_weighted": count,
    }
