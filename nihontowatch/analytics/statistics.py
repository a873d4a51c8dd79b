"""Descriptive statistics for market intelligence.

All functions are pure and return neutral values (0, empty lists) for empty
input instead of raising.
"""

import math
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from ..utils.helpers import round_to

T = TypeVar("T")

CURRENCY_SYMBOLS = {"JPY": "¥", "USD": "$", "EUR": "€"}


class InvalidPercentileError(ValueError):
    """Raised when a requested percentile is outside 0-100."""


# ============================================================================
# Descriptive statistics
# ============================================================================


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def median(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.median(values))


def mode(values: Sequence[float]) -> Optional[float]:
    """Most frequent value.

    Returns None for empty input and when every distinct value occurs equally
    often. Ties between several modes resolve to the smallest.
    """
    if len(values) == 0:
        return None

    counts = Counter(values)
    top = max(counts.values())
    modes = [value for value, count in counts.items() if count == top]

    if len(modes) == len(counts):
        return None
    return min(modes)


def variance(values: Sequence[float]) -> float:
    """Population variance. 0 for fewer than two values."""
    if len(values) <= 1:
        return 0.0
    return float(np.var(values))


def standard_deviation(values: Sequence[float]) -> float:
    return math.sqrt(variance(values))


def _check_percentile(p: float) -> None:
    if p < 0 or p > 100:
        raise InvalidPercentileError(f"Percentile {p} must be between 0 and 100")


def percentile(values: Sequence[float], p: float) -> float:
    """Percentile with linear interpolation between closest ranks.

    Args:
        values: Sample values
        p: Percentile in 0-100

    Returns:
        Interpolated value, or 0 for empty input

    Raises:
        InvalidPercentileError: If p is outside 0-100
    """
    if len(values) == 0:
        return 0.0
    _check_percentile(p)
    return float(np.percentile(values, p))


def percentiles(values: Sequence[float], ps: Iterable[float]) -> Dict[float, float]:
    """Several percentiles of the same sample, sorted once."""
    ps = list(ps)
    if len(values) == 0:
        return {p: 0.0 for p in ps}

    for p in ps:
        _check_percentile(p)

    computed = np.percentile(np.sort(np.asarray(values, dtype=float)), ps)
    return {p: float(v) for p, v in zip(ps, computed)}


def skewness(values: Sequence[float]) -> float:
    """Adjusted Fisher moment coefficient of skewness."""
    n = len(values)
    if n <= 2:
        return 0.0

    sd = standard_deviation(values)
    if sd == 0:
        return 0.0

    z = (np.asarray(values, dtype=float) - mean(values)) / sd
    return float(n / ((n - 1) * (n - 2)) * np.sum(z**3))


def coefficient_of_variation(values: Sequence[float]) -> float:
    avg = mean(values)
    if avg == 0:
        return 0.0
    return standard_deviation(values) / abs(avg)


# ============================================================================
# Distribution analysis
# ============================================================================


def nice_number(value: float, round_: bool) -> float:
    """Closest 1, 2, 5 or 10 multiple of a power of ten."""
    if value == 0:
        return 0.0

    exp = math.floor(math.log10(abs(value)))
    fraction = value / 10**exp

    if round_:
        if fraction < 1.5:
            nice = 1
        elif fraction < 3:
            nice = 2
        elif fraction < 7:
            nice = 5
        else:
            nice = 10
    else:
        if fraction <= 1:
            nice = 1
        elif fraction <= 2:
            nice = 2
        elif fraction <= 5:
            nice = 5
        else:
            nice = 10

    return nice * 10**exp


def create_histogram_buckets(
    values: Sequence[float],
    bucket_count: int,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    use_nice_numbers: bool = False,
) -> List[Dict]:
    """Bucket values into a histogram.

    Args:
        values: Sample values
        bucket_count: Requested number of buckets
        min_value: Lower bound of the range (defaults to the sample minimum)
        max_value: Upper bound of the range (defaults to the sample maximum)
        use_nice_numbers: Round the bucket width and bounds to nice numbers

    Returns:
        Buckets with rangeStart, rangeEnd, count, percentage and
        cumulativePercentage
    """
    if len(values) == 0 or bucket_count <= 0:
        return []

    low = min(values) if min_value is None else min_value
    high = max(values) if max_value is None else max_value

    if low == high:
        return [
            {
                "rangeStart": low,
                "rangeEnd": high,
                "count": len(values),
                "percentage": 100.0,
                "cumulativePercentage": 100.0,
            }
        ]

    if use_nice_numbers:
        width = nice_number((high - low) / bucket_count, True)
        low = math.floor(low / width) * width
        high = math.ceil(high / width) * width
        actual_count = math.ceil((high - low) / width)
    else:
        width = (high - low) / bucket_count
        actual_count = bucket_count

    buckets = [
        {
            "rangeStart": low + i * width,
            "rangeEnd": low + (i + 1) * width,
            "count": 0,
            "percentage": 0.0,
            "cumulativePercentage": 0.0,
        }
        for i in range(actual_count)
    ]

    for value in values:
        # Values at the upper bound (or outside an explicit range) land in the edge buckets
        index = math.floor((value - low) / width)
        index = min(max(0, index), len(buckets) - 1)
        buckets[index]["count"] += 1

    cumulative = 0.0
    for bucket in buckets:
        bucket["percentage"] = bucket["count"] / len(values) * 100
        cumulative += bucket["percentage"]
        bucket["cumulativePercentage"] = cumulative

    return buckets


def _compact(value: float) -> str:
    for threshold, suffix in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if value >= threshold:
            scaled = value / threshold
            if scaled % 1 == 0:
                return f"{int(scaled)}{suffix}"
            return f"{scaled:.1f}{suffix}"
    return _plain(value)


def _plain(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_price_range_label(start: float, end: float) -> str:
    """Label such as "500K-1M"."""
    return f"{_compact(start)}-{_compact(end)}"


# ============================================================================
# Trend analysis
# ============================================================================


def linear_regression(points: Sequence[Dict[str, float]]) -> Dict[str, float]:
    """Least-squares fit of y on x.

    Args:
        points: Dicts with x and y

    Returns:
        Dictionary with slope, intercept and rSquared (clamped to 0-1)
    """
    if not points:
        return {"slope": 0.0, "intercept": 0.0, "rSquared": 0.0}
    if len(points) == 1:
        return {"slope": 0.0, "intercept": points[0]["y"], "rSquared": 1.0}

    x = np.array([p["x"] for p in points], dtype=float)
    y = np.array([p["y"] for p in points], dtype=float)
    n = len(points)

    denominator = np.sum(x * x) - np.sum(x) ** 2 / n
    if denominator == 0:
        return {"slope": 0.0, "intercept": float(y.mean()), "rSquared": 0.0}

    slope = (np.sum(x * y) - np.sum(x) * np.sum(y) / n) / denominator
    intercept = y.mean() - slope * x.mean()

    predicted = slope * x + intercept
    ss_total = np.sum((y - y.mean()) ** 2)
    ss_residual = np.sum((y - predicted) ** 2)
    r_squared = 1.0 if ss_total == 0 else 1 - ss_residual / ss_total

    return {
        "slope": float(slope),
        "intercept": float(intercept),
        "rSquared": float(max(0.0, min(1.0, r_squared))),
    }


def percent_change(old_value: float, new_value: float) -> float:
    """Percent change; infinite when growing from zero."""
    if old_value == 0:
        if new_value == 0:
            return 0.0
        return math.inf if new_value > 0 else -math.inf
    return (new_value - old_value) / abs(old_value) * 100


def determine_trend(slope: float, std_dev: float, mean_value: float) -> str:
    """Classify a slope as up, down or stable.

    The significance threshold is the smaller of 5% of the mean and a tenth
    of a standard deviation.
    """
    if mean_value == 0:
        if slope > 0:
            return "up"
        if slope < 0:
            return "down"
        return "stable"

    threshold = min(abs(mean_value) * 0.05, std_dev * 0.1)
    if slope > threshold:
        return "up"
    if slope < -threshold:
        return "down"
    return "stable"


# ============================================================================
# Aggregation helpers
# ============================================================================


def total(values: Iterable[float]) -> float:
    return sum(values, 0)


def count_by(items: Iterable[T], key: Callable[[T], str]) -> Dict[str, int]:
    return dict(Counter(key(item) for item in items))


def sum_by(
    items: Iterable[T], key: Callable[[T], str], value: Callable[[T], float]
) -> Dict[str, float]:
    result: Dict[str, float] = {}
    for item in items:
        k = key(item)
        result[k] = result.get(k, 0) + value(item)
    return result


def calculate_shares(values: Dict[str, float]) -> Dict[str, float]:
    """Percentage share of each key; all zeros when the total is 0."""
    grand_total = sum(values.values())
    if grand_total == 0:
        return {key: 0.0 for key in values}
    return {key: value / grand_total * 100 for key, value in values.items()}


# ============================================================================
# Price utilities
# ============================================================================


def normalize_to_jpy(value: float, currency: str, rates: Dict[str, float]) -> Optional[float]:
    """Convert a price to JPY. Rates are JPY per unit of foreign currency.

    Returns None when no rate is known for the currency.
    """
    if not currency or currency == "JPY":
        return value
    rate = rates.get(currency)
    if rate is None:
        return None
    return value * rate


def format_compact_number(value: float) -> str:
    """1500000 -> "1.5M"."""
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    if magnitude >= 1000:
        return sign + _compact(magnitude)
    return _plain(value)


def format_currency(
    value: float, currency: str, compact: bool = False, decimals: Optional[int] = None
) -> str:
    """Format a price with its currency symbol.

    JPY defaults to no decimals, other currencies to two.
    """
    symbol = CURRENCY_SYMBOLS[currency]
    if compact:
        return symbol + format_compact_number(round_to(value, 0))

    if decimals is None:
        decimals = 0 if currency == "JPY" else 2
    return f"{symbol}{value:,.{decimals}f}"
