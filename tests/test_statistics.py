import math

import pytest

from nihontowatch.analytics import statistics as stats


def test_descriptive_statistics():
    values = [1, 2, 2, 3, 4]

    assert stats.mean(values) == pytest.approx(2.4)
    assert stats.median(values) == 2
    assert stats.mode(values) == 2
    assert stats.variance(values) == pytest.approx(1.04)
    assert stats.standard_deviation(values) == pytest.approx(math.sqrt(1.04))


def test_empty_input_is_neutral():
    assert stats.mean([]) == 0
    assert stats.median([]) == 0
    assert stats.mode([]) is None
    assert stats.variance([]) == 0
    assert stats.percentile([], 50) == 0
    assert stats.skewness([]) == 0
    assert stats.create_histogram_buckets([], 5) == []


def test_mode_is_none_when_all_values_tie():
    assert stats.mode([1, 2, 3]) is None
    assert stats.mode([5, 5, 1, 1, 3]) == 1


def test_percentile_interpolates():
    values = [10, 20, 30, 40]

    assert stats.percentile(values, 0) == 10
    assert stats.percentile(values, 100) == 40
    assert stats.percentile(values, 50) == 25
    assert stats.percentiles(values, [25, 75]) == {25: 17.5, 75: 32.5}


def test_percentile_out_of_range_raises():
    with pytest.raises(stats.InvalidPercentileError):
        stats.percentile([1, 2], 101)
    with pytest.raises(ValueError):
        stats.percentiles([1, 2], [50, -1])


def test_skewness_sign():
    assert stats.skewness([1, 1, 1, 10]) > 0
    assert stats.skewness([5, 5, 5]) == 0


def test_coefficient_of_variation():
    assert stats.coefficient_of_variation([0, 0]) == 0
    assert stats.coefficient_of_variation([2, 4]) == pytest.approx(1 / 3)


def test_nice_number():
    assert stats.nice_number(0, True) == 0
    assert stats.nice_number(1.2, True) == 1
    assert stats.nice_number(2.5, True) == 2
    assert stats.nice_number(640, True) == 500
    assert stats.nice_number(7200, True) == 10000
    assert stats.nice_number(1.2, False) == 2


def test_histogram_counts_upper_bound_in_last_bucket():
    buckets = stats.create_histogram_buckets([0, 1, 2, 3, 4, 5, 6, 7, 8, 10], 5)

    assert [b["count"] for b in buckets] == [2, 2, 2, 2, 2]
    assert buckets[0]["rangeStart"] == 0
    assert buckets[-1]["rangeEnd"] == 10
    assert buckets[-1]["cumulativePercentage"] == pytest.approx(100)


def test_histogram_single_value():
    buckets = stats.create_histogram_buckets([3, 3, 3], 4)

    assert buckets == [
        {
            "rangeStart": 3,
            "rangeEnd": 3,
            "count": 3,
            "percentage": 100.0,
            "cumulativePercentage": 100.0,
        }
    ]


def test_histogram_nice_bounds():
    buckets = stats.create_histogram_buckets([130, 870], 4, use_nice_numbers=True)

    assert buckets[0]["rangeStart"] == 0
    assert buckets[-1]["rangeEnd"] == 1000
    assert sum(b["count"] for b in buckets) == 2


def test_linear_regression():
    fit = stats.linear_regression([{"x": 0, "y": 1}, {"x": 1, "y": 3}, {"x": 2, "y": 5}])

    assert fit["slope"] == pytest.approx(2)
    assert fit["intercept"] == pytest.approx(1)
    assert fit["rSquared"] == pytest.approx(1)

    assert stats.linear_regression([]) == {"slope": 0.0, "intercept": 0.0, "rSquared": 0.0}
    assert stats.linear_regression([{"x": 4, "y": 7}]) == {"slope": 0.0, "intercept": 7, "rSquared": 1.0}


def test_percent_change_from_zero():
    assert stats.percent_change(0, 0) == 0
    assert stats.percent_change(0, 5) == math.inf
    assert stats.percent_change(0, -5) == -math.inf
    assert stats.percent_change(200, 150) == -25


def test_determine_trend():
    assert stats.determine_trend(10, 50, 100) == "up"
    assert stats.determine_trend(-10, 50, 100) == "down"
    assert stats.determine_trend(1, 50, 100) == "stable"
    assert stats.determine_trend(0.1, 0, 0) == "up"


def test_aggregation_helpers():
    items = [("katana", 10), ("tsuba", 5), ("katana", 20)]

    assert stats.total([1, 2, 3]) == 6
    assert stats.count_by(items, lambda i: i[0]) == {"katana": 2, "tsuba": 1}
    assert stats.sum_by(items, lambda i: i[0], lambda i: i[1]) == {"katana": 30, "tsuba": 5}
    assert stats.calculate_shares({"a": 1, "b": 3}) == {"a": 25.0, "b": 75.0}
    assert stats.calculate_shares({"a": 0}) == {"a": 0.0}


def test_price_formatting():
    assert stats.normalize_to_jpy(100, "USD", {"USD": 150}) == 15000
    assert stats.normalize_to_jpy(100, "JPY", {}) == 100
    assert stats.normalize_to_jpy(100, "CHF", {"USD": 150}) is None
    assert stats.format_compact_number(1_500_000) == "1.5M"
    assert stats.format_compact_number(2000) == "2K"
    assert stats.format_compact_number(950) == "950"
    assert stats.format_currency(1234567, "JPY") == "¥1,234,567"
    assert stats.format_currency(12.5, "USD") == "$12.50"
    assert stats.format_currency(1_500_000, "JPY", compact=True) == "¥1.5M"
    assert stats.format_price_range_label(500_000, 1_000_000) == "500K-1M"
