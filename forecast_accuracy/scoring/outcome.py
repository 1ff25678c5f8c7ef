from __future__ import annotations

from typing import Any


def outcome_from_condition(condition: dict[str, Any] | None) -> int | None:
    """Ground-truth bit for a settled binary condition, None while unknown."""
    if not condition:
        return None
    if condition.get("settled") is not True:
        return None
    return 1 if condition.get("resolved_to_yes") else 0
