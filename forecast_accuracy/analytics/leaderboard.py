from __future__ import annotations

import logging
from typing import Any

from forecast_accuracy.config import LeaderboardConfig, ScoringConfig
from forecast_accuracy.db import store
from forecast_accuracy.scoring.ranking import DEFAULT_EPSILON, accuracy_from_mean, clamp_limit, stable_sorted
from forecast_accuracy.utils.cache import TtlCache

logger = logging.getLogger(__name__)


def forecaster_score(conn, attester: str, epsilon: float = DEFAULT_EPSILON) -> dict[str, Any] | None:
    address = attester.lower()
    rows = store.fetch_attester_tw_errors(conn, address)
    if not rows:
        return None
    total = sum(row["tw_error"] or 0.0 for row in rows)
    count = len(rows)
    return {
        "attester": address,
        "num_time_weighted": count,
        "sum_time_weighted_error": total,
        "accuracy_score": accuracy_from_mean(total / count, epsilon),
    }


def ranked_forecasters(conn, epsilon: float = DEFAULT_EPSILON) -> list[dict[str, Any]]:
    scores = []
    for row in store.fetch_tw_error_averages(conn):
        scores.append(
            {
                "attester": str(row["attester"]).lower(),
                "mean_tw_error": row["mean_tw_error"],
                "num_time_weighted": row["markets"],
                "accuracy_score": accuracy_from_mean(row["mean_tw_error"], epsilon),
            }
        )
    # Ties fall back to attester address; callers should not depend on it.
    return stable_sorted(scores, key=lambda item: item["accuracy_score"], reverse=True)


def top_forecasters(
    conn,
    limit: int | None = 10,
    epsilon: float = DEFAULT_EPSILON,
    max_limit: int = 100,
) -> list[dict[str, Any]]:
    capped = clamp_limit(limit, maximum=max_limit)
    return ranked_forecasters(conn, epsilon)[:capped]


def accuracy_rank_by_address(conn, attester: str, epsilon: float = DEFAULT_EPSILON) -> dict[str, Any]:
    target = attester.lower()
    scores = ranked_forecasters(conn, epsilon)
    rank = None
    accuracy_score = 0.0
    for index, entry in enumerate(scores):
        if entry["attester"] == target:
            rank = index + 1
            accuracy_score = entry["accuracy_score"]
            break
    return {
        "attester": target,
        "accuracy_score": accuracy_score,
        "rank": rank,
        "total_forecasters": len(scores),
    }


class Leaderboard:
    """Cached read side over ``attester_market_tw_error``."""

    def __init__(
        self,
        conn,
        config: LeaderboardConfig | None = None,
        scoring: ScoringConfig | None = None,
        cache: TtlCache | None = None,
    ) -> None:
        self.conn = conn
        self.config = config or LeaderboardConfig()
        self.epsilon = (scoring or ScoringConfig()).epsilon
        if cache is None:
            cache = TtlCache(ttl_s=self.config.cache_ttl_s, max_size=self.config.cache_max_size)
        self.cache = cache

    def forecaster_score(self, attester: str) -> dict[str, Any] | None:
        address = attester.lower()
        return self.cache.get_or_compute(
            ("forecaster_score", address),
            lambda: forecaster_score(self.conn, address, self.epsilon),
        )

    def top_forecasters(self, limit: int | None = None) -> list[dict[str, Any]]:
        capped = clamp_limit(limit, default=self.config.default_limit, maximum=self.config.max_limit)
        return self.cache.get_or_compute(
            ("top_forecasters", capped),
            lambda: top_forecasters(self.conn, capped, self.epsilon, self.config.max_limit),
        )

    def accuracy_rank_by_address(self, attester: str) -> dict[str, Any]:
        address = attester.lower()
        return self.cache.get_or_compute(
            ("accuracy_rank_by_address", address),
            lambda: accuracy_rank_by_address(self.conn, address, self.epsilon),
        )

    def invalidate(self) -> None:
        logger.debug("Clearing %d cached leaderboard entries", len(self.cache))
        self.cache.clear()
