"""Normalization of raw prediction strings into a canonical probability.

Attestations carry the forecast as free text. Supported encodings:

* ``yes``/``true``/``1`` and ``no``/``false``/``0`` (case-insensitive)
* a decimal in ``[0, 1]`` such as ``0.73`` or ``.5``
* an integer already scaled by 1e18 (``730000000000000000``)
* an integer scaled by 1e18 and expressed as a percentage, i.e. in
  ``(1e18, 100e18]`` (``50000000000000000000`` is 50%)

Anything else normalizes to ``None`` for both fields.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

D18_SCALE = 10**18
PERCENT_D18_SCALE = 100 * D18_SCALE
# Anything longer is above the percentage band.
_MAX_SCALED_DIGITS = len(str(PERCENT_D18_SCALE))

_DECIMAL_PATTERN = re.compile(r"^(?:0?(?:\.\d+)?|1(?:\.0+)?)$")
_YES = {"yes", "true", "1"}
_NO = {"no", "false", "0"}

_EMPTY = {"probability_float": None, "probability_d18": None}


def normalize_prediction(raw: Any) -> dict[str, Any]:
    if not raw:
        return dict(_EMPTY)
    text = str(raw).strip()
    if not text:
        return dict(_EMPTY)

    lowered = text.lower()
    if lowered in _YES:
        return {"probability_float": 1.0, "probability_d18": str(D18_SCALE)}
    if lowered in _NO:
        return {"probability_float": 0.0, "probability_d18": "0"}

    if _DECIMAL_PATTERN.match(text):
        try:
            value = float(text)
        except ValueError:
            return dict(_EMPTY)
        return _from_float(min(max(value, 0.0), 1.0))

    if text.isascii() and text.isdigit():
        digits = text.lstrip("0") or "0"
        if len(digits) > _MAX_SCALED_DIGITS:
            return dict(_EMPTY)
        return _from_scaled_integer(int(digits))

    return dict(_EMPTY)


def _from_scaled_integer(value: int) -> dict[str, Any]:
    if value <= D18_SCALE:
        probability = value / D18_SCALE
        if not math.isfinite(probability):
            return dict(_EMPTY)
        return {"probability_float": probability, "probability_d18": str(value)}
    if value <= PERCENT_D18_SCALE:
        return _from_float(value / PERCENT_D18_SCALE)
    return dict(_EMPTY)


def _from_float(probability: float) -> dict[str, Any]:
    if not math.isfinite(probability):
        return dict(_EMPTY)
    d18 = to_d18(probability)
    if d18 is None:
        return dict(_EMPTY)
    return {"probability_float": probability, "probability_d18": d18}


def to_d18(probability: float) -> str | None:
    """round(probability * 1e18) as an integer string, exact for the float's shortest repr."""
    if not math.isfinite(probability):
        return None
    scaled = (Decimal(repr(probability)) * D18_SCALE).to_integral_value(rounding=ROUND_HALF_UP)
    return str(int(scaled))
