"""Utility functions and helpers."""

import math
from typing import Any, Mapping, Optional


def format_cost(cost: Optional[float], precision: int = 4) -> str:
    """Format cost as currency string.

    Args:
        cost: Cost value (None is shown as "n/a", e.g. shared-ledger mode)
        precision: Decimal places

    Returns:
        Formatted cost string (e.g., "$0.0034")
    """
    if cost is None:
        return "n/a"
    if math.isinf(cost):
        return "unlimited"
    return f"${cost:.{precision}f}"


def format_percentage(percent: float) -> str:
    """Format percentage value (e.g., "83.3%")."""
    return f"{percent:.1f}%"


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length

    Returns:
        Truncated text with ellipsis if needed
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def get_path(data: Any, *keys: Any) -> Any:
    """Walk nested mappings/sequences, returning None on the first missing step.

    Example:
        get_path(payload, "choices", 0, "message", "content")
    """
    current = data
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, (list, tuple)) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current
