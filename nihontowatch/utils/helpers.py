"""Small shared helpers for rounding and timestamps."""

import math
from datetime import datetime, timezone


def round_to(value: float, decimals: int = 2) -> float:
    """Round half up, the way browsers round: 12.5 becomes 13, not 12.

    Args:
        value: Number to round
        decimals: Decimal places to keep

    Returns:
        Rounded value, an int when decimals is 0
    """
    factor = 10**decimals
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if decimals == 0 else result


def utc_now() -> datetime:
    """Current UTC time without tzinfo, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
