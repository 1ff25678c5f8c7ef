from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")

DEFAULT_EPSILON = 0.0001


def accuracy_from_mean(mean_error: float | None, epsilon: float = DEFAULT_EPSILON) -> float:
    """Inverse mean error, floored at epsilon so near-perfect forecasters stay finite."""
    mean = mean_error if mean_error is not None else 0.0
    return 1.0 / max(mean, epsilon)


def clamp_limit(limit: int | None, default: int = 10, maximum: int = 100) -> int:
    if limit is None:
        limit = default
    return max(1, min(int(limit), maximum))


def stable_sorted(
    items: Iterable[T],
    key: Callable[[T], Any],
    reverse: bool = False,
    tie_breaker: Callable[[T], Any] | None = None,
) -> list[T]:
    if tie_breaker is None:
        tie_breaker = _default_tie_breaker
    items_list = list(items)
    if reverse:
        items_list = sorted(items_list, key=tie_breaker)
        return sorted(items_list, key=key, reverse=True)

    def sort_key(item: T) -> tuple[Any, Any]:
        return (key(item), tie_breaker(item))

    return sorted(items_list, key=sort_key)


def _default_tie_breaker(item: Any) -> Any:
    if isinstance(item, dict):
        for key in ("attester", "market_id", "attestation_id"):
            if key in item and item[key] is not None:
                return str(item[key])
    return str(item)
