"""Scoring engine for listing ranking and artisan statistics"""

from .featured import (
    HeatCounts,
    ScoreBreakdown,
    compute_featured_score,
    compute_freshness,
    compute_heat,
    compute_quality,
    compute_score_breakdown,
    heat_items,
)
from .elite import compute_elite_factor, designation_totals, percentile_rank
from .provenance import compute_provenance_analysis

__all__ = [
    "HeatCounts",
    "ScoreBreakdown",
    "compute_featured_score",
    "compute_freshness",
    "compute_heat",
    "compute_quality",
    "compute_score_breakdown",
    "heat_items",
    "compute_elite_factor",
    "designation_totals",
    "percentile_rank",
    "compute_provenance_analysis",
]
