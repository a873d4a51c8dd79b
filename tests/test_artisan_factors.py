from types import SimpleNamespace

from nihontowatch.scoring.elite import (
    bulk_elite_percentiles,
    compute_elite_factor,
    designation_totals,
    percentile_in,
    percentile_rank,
)
from nihontowatch.scoring.provenance import (
    compute_provenance_analysis,
    get_prestige,
    group_provenance_rows,
    score_to_tier,
)


def test_designation_totals_split_elite_from_juyo():
    totals = designation_totals({"kokuho_count": 1, "tokuju_count": 3, "juyo_count": 6, "jubi_count": None})

    assert totals == {"total_items": 10, "elite_count": 4}


def test_elite_factor_is_shrunk_toward_zero():
    assert compute_elite_factor(0, 0) == 0.0
    assert compute_elite_factor(1, 1) == round(2 / 11, 4)
    # Many works with the same ratio rank higher than a single work
    assert compute_elite_factor(50, 100) > compute_elite_factor(1, 2)


def test_percentile_rank():
    assert percentile_rank(0, 0) == 0
    assert percentile_rank(3, 4) == 75
    assert percentile_in(0.5, [0.1, 0.2, 0.5, 0.9]) == 50


def test_percentile_rank_rounds_halves_up():
    assert percentile_rank(1, 8) == 13
    assert percentile_rank(5, 8) == 63
    assert percentile_in(0.2, [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8]) == 13

    populations = {"smith": [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8]}
    result = bulk_elite_percentiles([{"code": "A", "entity_type": "smith", "elite_factor": 0.2}], populations)
    assert result == {"A": 13}


def test_bulk_percentiles_rank_each_type_separately():
    populations = {"smith": [0.1, 0.2, 0.3, 0.4], "tosogu": [0.05, 0.3]}
    artisans = [
        {"code": "A", "entity_type": "smith", "elite_factor": 0.3},
        {"code": "B", "entity_type": "tosogu", "elite_factor": 0.3},
        {"code": "C", "entity_type": "smith", "elite_factor": None},
    ]

    result = bulk_elite_percentiles(artisans, populations)

    assert result == {"A": 50, "B": 50, "C": 0}


def test_prestige_falls_back_to_family_entry():
    assert get_prestige("Tokugawa Iemitsu").score == 10
    assert get_prestige("Maeda Family").koku == 1025000
    assert get_prestige("Some Collector").score == 2


def test_score_to_tier():
    assert [score_to_tier(s) for s in (10, 8, 6, 4, 2)] == [
        "imperial",
        "premier",
        "major",
        "mid",
        "minor",
    ]


def test_provenance_analysis_uses_bayesian_prior():
    rows = [
        SimpleNamespace(parent="Tokugawa Family", owner="Tokugawa Iemitsu", count=2),
        SimpleNamespace(parent="Tokugawa Family", owner="Tokugawa Ieyasu", count=1),
        SimpleNamespace(parent="Tanaka Ichiro", owner="Tanaka Ichiro", count=1),
    ]

    groups = group_provenance_rows(rows)
    analysis = compute_provenance_analysis(groups)

    assert [g["isGroup"] for g in groups] == [True, False]
    # (5*2 + 10*3 + 2*1) / (5 + 4)
    assert analysis["factor"] == round(42 / 9, 2)
    assert analysis["count"] == 4
    assert analysis["apex"] == 10
    assert analysis["tierCounts"]["imperial"] == 3
    imperial = analysis["tiers"][0]
    assert imperial["collectors"][0]["children"] == [
        {"name": "Tokugawa Iemitsu", "works": 2},
        {"name": "Tokugawa Ieyasu", "works": 1},
    ]


def test_no_provenance_returns_none():
    assert compute_provenance_analysis([]) is None
