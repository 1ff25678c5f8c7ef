"""Horizon-weighted error of a forecaster's probability history on one market.

The stated probability is a step function over ``[first forecast, end]``:
each forecast holds until the next one supersedes it. Every interval
contributes its squared error weighted by

    duration * (end - midpoint) ** alpha

so probability held for longer counts more, and the decay term lets the
interval nearest to market end dominate as alpha grows.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from forecast_accuracy.config import DEFAULT_ALPHA, coerce_alpha


def resolve_alpha(value: object, default: float = DEFAULT_ALPHA) -> float:
    return coerce_alpha(value, default)


def build_intervals(
    forecasts: Sequence[tuple[int, float]],
    end: int,
) -> list[tuple[int, int, float]]:
    """Split ``[first.made_at, end]`` into ``(t0, t1, probability)`` steps.

    ``forecasts`` must already be sorted by ``made_at``. Zero-length steps are
    kept so callers can see which forecasts were superseded immediately.
    """
    if not forecasts:
        return []
    start = forecasts[0][0]
    intervals: list[tuple[int, int, float]] = []
    last = len(forecasts) - 1
    for index, (made_at, probability) in enumerate(forecasts):
        t0 = start if index == 0 else max(made_at, start)
        t1 = min(forecasts[index + 1][0], end) if index < last else end
        intervals.append((t0, t1, probability))
    return intervals


def horizon_weighted_error(
    forecasts: Iterable[tuple[int, float]],
    end: int | None,
    outcome: int | None,
    alpha: float = DEFAULT_ALPHA,
) -> float | None:
    if end is None or outcome is None:
        return None
    ordered = sorted(
        ((made_at, probability) for made_at, probability in forecasts if probability is not None),
        key=lambda item: item[0],
    )
    if not ordered:
        return None
    if end <= ordered[0][0]:
        return None

    alpha = resolve_alpha(alpha)
    # Times are measured as fractions of the history span; the scale cancels in the ratio.
    span = end - ordered[0][0]
    weighted_sum = 0.0
    total_weight = 0.0
    for t0, t1, probability in build_intervals(ordered, end):
        duration = max(0, t1 - t0)
        if duration <= 0:
            continue
        error = (probability - outcome) ** 2
        midpoint = (t0 + t1) / 2
        tau = max(0.0, end - midpoint) / span
        try:
            weight = (duration / span) * math.pow(tau, alpha)
        except OverflowError:
            return None
        weighted_sum += error * weight
        total_weight += weight

    if total_weight <= 0 or not math.isfinite(total_weight):
        return None
    value = weighted_sum / total_weight
    if not math.isfinite(value):
        return None
    return value
