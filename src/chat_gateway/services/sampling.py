"""Sampling parameter normalization shared by the chat pipeline and agent presets."""
from __future__ import annotations

import math
from typing import Any, Optional

MIN_TEMPERATURE: float = 0.0
MAX_TEMPERATURE: float = 2.0

# Used when neither the request nor a preset/catalog entry supplies one.
DEFAULT_TEMPERATURE: float = 0.3

# Default for user-created agent presets.
DEFAULT_AGENT_TEMPERATURE: float = 0.7


def normalize_temperature(value: Any) -> Optional[float]:
    """Clamp *value* to [0, 2].

    Non-numeric input (including booleans, strings and NaN) is treated as
    "not provided" and yields ``None`` so callers fall through to a default.

    Example:
        >>> normalize_temperature(-5)
        0.0
        >>> normalize_temperature("0.5") is None
        True
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, int):
        # Compare before converting: JSON integers can exceed the float range.
        return float(max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, value)))
    if math.isnan(value):
        return None
    return max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, value))
