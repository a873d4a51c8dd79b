"""Elite factor estimator and percentile ranking for artisans.

The elite factor is the share of an artisan's designated works that hold an
elite designation (everything above Juyo), shrunk toward zero with a
Bayesian prior so that artisans with a handful of works do not outrank
prolific masters:

    elite_factor = (elite_count + 1) / (total_items + 10)
"""

from typing import Dict, Iterable, List, Mapping, Optional

from ..utils.helpers import round_to

PRIOR_ELITE = 1
PRIOR_TOTAL = 10

ELITE_DESIGNATIONS = ("kokuho", "jubun", "jubi", "gyobutsu", "tokuju")
ALL_DESIGNATIONS = ELITE_DESIGNATIONS + ("juyo",)


def designation_totals(counts: Mapping[str, Optional[int]]) -> Dict[str, int]:
    """Derive total_items and elite_count from per-designation counts.

    Args:
        counts: Mapping with ``<designation>_count`` keys

    Returns:
        Dictionary with total_items and elite_count
    """
    elite = sum(counts.get(f"{d}_count") or 0 for d in ELITE_DESIGNATIONS)
    total = elite + (counts.get("juyo_count") or 0)
    return {"total_items": total, "elite_count": elite}


def compute_elite_factor(elite_count: int, total_items: int) -> float:
    """Shrunk elite ratio, rounded to 4 decimals. 0 for artisans without works."""
    if not total_items:
        return 0.0
    return round_to((elite_count + PRIOR_ELITE) / (total_items + PRIOR_TOTAL), 4)


def percentile_rank(below: int, total: int) -> int:
    """Share of the population strictly below a value, as 0-100. Halves round up."""
    if not total:
        return 0
    return round_to(below / total * 100, 0)


def percentile_in(value: float, population: Iterable[float]) -> int:
    """Percentile rank of ``value`` within ``population``."""
    population = list(population)
    below = sum(1 for p in population if p < value)
    return percentile_rank(below, len(population))


def bulk_elite_percentiles(
    artisans: List[Dict], populations: Mapping[str, List[float]]
) -> Dict[str, int]:
    """Elite percentiles for many artisans at once.

    Smiths and tosogu makers are ranked in separate pools. Each distinct
    factor value is ranked once per pool.

    Args:
        artisans: Dicts with code, elite_factor and entity_type
        populations: Elite factors of ranked entities per entity type

    Returns:
        Mapping of artisan code to percentile
    """
    result: Dict[str, int] = {}
    cache: Dict[tuple, int] = {}

    for artisan in artisans:
        entity_type = artisan["entity_type"]
        factor = artisan["elite_factor"] or 0
        key = (entity_type, factor)
        if key not in cache:
            cache[key] = percentile_in(factor, populations.get(entity_type, []))
        result[artisan["code"]] = cache[key]

    return result
