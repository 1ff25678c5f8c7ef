from __future__ import annotations

import logging
from typing import Any

from forecast_accuracy.db import store
from forecast_accuracy.scoring.normalize import normalize_prediction

logger = logging.getLogger(__name__)


def build_attestation_score(attestation: dict[str, Any]) -> dict[str, Any]:
    condition = attestation.get("condition") or {}
    resolver = condition.get("resolver")
    market_address = resolver.lower() if resolver else None
    condition_id = attestation.get("condition_id")
    normalized = normalize_prediction(attestation.get("prediction"))
    return {
        "attestation_id": attestation["id"],
        "attester": str(attestation["attester"]).lower(),
        "market_address": market_address,
        "market_id": condition_id,
        "question_id": condition_id,
        "resolver": attestation.get("resolver"),
        "made_at": int(attestation["time"]),
        "probability_float": normalized["probability_float"],
        "probability_d18": normalized["probability_d18"],
    }


def upsert_from_attestation(conn, attestation_id: int, commit: bool = True) -> bool:
    attestation = store.fetch_attestation(conn, attestation_id)
    if attestation is None:
        logger.debug("Attestation %s not found; skipping score upsert", attestation_id)
        return False
    row = build_attestation_score(attestation)
    store.upsert_attestation_scores(conn, [row], commit=commit)
    return True


def select_latest_pre_end(
    conn,
    market_address: str | None,
    market_id: str,
    commit: bool = True,
) -> int:
    """Flag each attester's latest pre-end forecast as ``used``.

    Kept for parity with the legacy selection state. Scoring reads every
    pre-end forecast and ignores this flag.
    """
    condition = store.fetch_condition(conn, market_id)
    if condition is None or condition.get("end_time") is None:
        return 0
    end = condition["end_time"]

    selected = 0
    for attester in store.fetch_market_attesters(
        conn, market_address, market_id, made_before=end, require_probability=False
    ):
        rows = store.fetch_market_scores(conn, market_address, market_id, attester=attester, made_before=end)
        if not rows:
            continue
        latest = rows[-1]
        store.mark_used(conn, market_address, market_id, attester, latest["attestation_id"], commit=False)
        selected += 1
    if commit:
        conn.commit()
    return selected
