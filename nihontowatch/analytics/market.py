"""Market overview, trends, breakdowns and price distribution computed from listing rows."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..storage.models import Dealer, Listing, PriceHistory
from ..utils.constants import cert_display_name, expand_cert_variants, item_type_label
from ..utils.helpers import round_to, utc_now
from . import statistics as stats

PERIOD_DAYS: Dict[str, Optional[int]] = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "180d": 180,
    "1y": 365,
    "all": None,
}
GRANULARITIES = ("daily", "weekly", "monthly")
TREND_METRICS = ("total_value", "median_price", "listing_count", "available_count")

# Names used in the trends response
METRIC_NAMES = {
    "total_value": "total_value",
    "median_price": "median_price",
    "listing_count": "total_listings",
    "available_count": "available_listings",
}

# Scanning more rows than this for one chart is not useful
MAX_ROWS = 100000


def calculate_percent_change(old_value: float, new_value: float) -> float:
    """Percent change with a finite result: growing from zero counts as 100%."""
    if old_value == 0 and new_value == 0:
        return 0
    if old_value == 0:
        return 100
    return (new_value - old_value) / abs(old_value) * 100


def parse_period(raw: Optional[str], default: str = "90d") -> str:
    return raw if raw in PERIOD_DAYS else default


def parse_granularity(raw: Optional[str], default: str = "daily") -> str:
    return raw if raw in GRANULARITIES else default


def parse_date_range(period: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start of day N days ago (2000-01-01 for "all") through the end of today."""
    now = now or utc_now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999000)

    days = PERIOD_DAYS.get(period)
    if days is None:
        start = datetime(2000, 1, 1)
    else:
        start = midnight - timedelta(days=days)
    return start, end


def comparison_date(now: Optional[datetime] = None) -> datetime:
    """Midnight seven days ago, the baseline for week-over-week changes."""
    now = now or utc_now()
    return (now - timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)


def date_key(when: datetime, granularity: str) -> str:
    """Bucket key: the day, the Monday of the week, or the first of the month."""
    day = when.date() if isinstance(when, datetime) else when
    if granularity == "weekly":
        return (day - timedelta(days=day.weekday())).isoformat()
    if granularity == "monthly":
        return f"{day.year}-{day.month:02d}-01"
    return day.isoformat()


def _advance(current: datetime, granularity: str) -> datetime:
    if granularity == "weekly":
        return current + timedelta(days=7)
    if granularity == "monthly":
        year, month = (current.year + 1, 1) if current.month == 12 else (current.year, current.month + 1)
        return current.replace(year=year, month=month, day=min(current.day, 28))
    return current + timedelta(days=1)


def to_jpy(price_value: float, currency: Optional[str], rates: Dict[str, float]) -> Optional[float]:
    """Convert one listing price, logging and skipping currencies without a rate."""
    price = stats.normalize_to_jpy(price_value, currency or "JPY", rates)
    if price is None:
        logger.warning(f"No JPY rate for currency {currency}, skipping price {price_value}")
    return price


def _prices_jpy(rows, rates: Dict[str, float]) -> List[float]:
    prices = []
    for price_value, currency in rows:
        if price_value is None:
            continue
        price = to_jpy(price_value, currency, rates)
        if price is not None:
            prices.append(price)
    return prices


def _change(old: float, new: float, amount_decimals: int = 0) -> Dict:
    return {
        "amount": round_to(new - old, amount_decimals),
        "percent": round_to(calculate_percent_change(old, new), 2),
        "period": "7d",
    }


def market_overview(
    session: Session,
    rates: Dict[str, float],
    now: Optional[datetime] = None,
    currency: str = "JPY",
) -> Dict:
    """Snapshot of the market with 24h activity and week-over-week changes.

    Args:
        session: Database session
        rates: JPY per unit of foreign currency
        now: Reference time
        currency: Currency label echoed in the response

    Returns:
        Overview dictionary
    """
    now = now or utc_now()
    day_ago = now - timedelta(hours=24)
    week_ago = comparison_date(now)

    def count(*criteria) -> int:
        return session.query(func.count(Listing.id)).filter(*criteria).scalar() or 0

    available_prices = _prices_jpy(
        session.query(Listing.price_value, Listing.price_currency)
        .filter(Listing.is_available.is_(True), Listing.price_value.isnot(None))
        .limit(MAX_ROWS)
        .all(),
        rates,
    )
    prices_week_ago = _prices_jpy(
        session.query(Listing.price_value, Listing.price_currency)
        .filter(
            Listing.is_available.is_(True),
            Listing.price_value.isnot(None),
            Listing.first_seen_at <= week_ago,
        )
        .limit(MAX_ROWS)
        .all(),
        rates,
    )

    total_value = sum(available_prices)
    median_price = stats.median(available_prices)
    pcts = stats.percentiles(available_prices, [10, 25, 75, 90])

    available_count = count(Listing.is_available.is_(True))
    available_week_ago = count(Listing.is_available.is_(True), Listing.first_seen_at <= week_ago)
    price_changes = (
        session.query(func.count(PriceHistory.id))
        .filter(PriceHistory.detected_at >= day_ago)
        .scalar()
        or 0
    )

    return {
        "asOf": now.isoformat(),
        "totalListings": count(),
        "availableListings": available_count,
        "soldListings": count(Listing.is_sold.is_(True)),
        "totalMarketValue": round_to(total_value, 0),
        "currency": currency,
        "medianPrice": round_to(median_price, 0),
        "averagePrice": round_to(stats.mean(available_prices), 0),
        "priceRange": {
            "min": round_to(min(available_prices), 0) if available_prices else 0,
            "max": round_to(max(available_prices), 0) if available_prices else 0,
        },
        "percentiles": {f"p{p}": round_to(pcts[p], 0) for p in (10, 25, 75, 90)},
        "activity24h": {
            "newListings": count(Listing.first_seen_at >= day_ago),
            "soldListings": count(Listing.is_sold.is_(True), Listing.last_scraped_at >= day_ago),
            "priceChanges": price_changes,
        },
        "changes": {
            "totalValue": _change(sum(prices_week_ago), total_value),
            "medianPrice": _change(stats.median(prices_week_ago), median_price),
            "listingCount": _change(available_week_ago, available_count),
        },
    }


def cumulative_points(rows, metric: str, granularity: str, rates: Dict[str, float]) -> List[Dict]:
    """Running totals per date bucket.

    Args:
        rows: (first_seen_at, price_value, price_currency, is_available) tuples
        metric: One of TREND_METRICS
        granularity: daily, weekly or monthly
        rates: JPY conversion rates

    Returns:
        Points with date, value, change and changePercent
    """
    groups: Dict[str, list] = {}
    for row in rows:
        groups.setdefault(date_key(row[0], granularity), []).append(row)

    count = 0
    available = 0
    value_total = 0.0
    prices: List[float] = []
    prev = 0.0
    points = []

    for key in sorted(groups):
        for _, price_value, currency, is_available in groups[key]:
            count += 1
            if is_available:
                available += 1
                price = to_jpy(price_value, currency, rates) if price_value else None
                if price is not None and price > 0:
                    value_total += price
                    prices.append(price)

        if metric == "total_value":
            value = value_total
        elif metric == "median_price":
            value = stats.median(prices)
        elif metric == "listing_count":
            value = count
        else:
            value = available

        change_pct = calculate_percent_change(prev, value) if prev > 0 else 0
        points.append(
            {
                "date": key,
                "value": round_to(value, 0),
                "change": round_to(value - prev, 0),
                "changePercent": round_to(change_pct, 2),
            }
        )
        prev = value

    return points


def fill_missing_dates(
    points: List[Dict], start: datetime, end: datetime, granularity: str
) -> List[Dict]:
    """One point per bucket between start and end, carrying the last value forward."""
    by_date = {p["date"]: p for p in points}
    last_value = points[0]["value"] if points else 0
    filled = []
    seen = set()

    current = start
    while current <= end:
        key = date_key(current, granularity)
        if key not in seen:
            seen.add(key)
            if key in by_date:
                filled.append(by_date[key])
                last_value = by_date[key]["value"]
            else:
                filled.append({"date": key, "value": last_value, "change": 0, "changePercent": 0})
        current = _advance(current, granularity)

    return filled


def trend_summary(points: List[Dict]) -> Dict:
    if not points:
        return {
            "startValue": 0,
            "endValue": 0,
            "minValue": 0,
            "maxValue": 0,
            "totalChange": 0,
            "totalChangePercent": 0,
            "trend": "stable",
            "volatility": 0,
        }

    values = [p["value"] for p in points]
    start_value = values[0]
    end_value = values[-1]
    regression = stats.linear_regression([{"x": i, "y": v} for i, v in enumerate(values)])
    total_pct = calculate_percent_change(start_value, end_value) if start_value > 0 else 0

    return {
        "startValue": round_to(start_value, 0),
        "endValue": round_to(end_value, 0),
        "minValue": round_to(min(values), 0),
        "maxValue": round_to(max(values), 0),
        "totalChange": round_to(end_value - start_value, 0),
        "totalChangePercent": round_to(total_pct, 2),
        "trend": stats.determine_trend(
            regression["slope"], stats.standard_deviation(values), stats.mean(values)
        ),
        "volatility": round_to(stats.coefficient_of_variation(values), 4),
    }


def trend_line(points: List[Dict]) -> Dict:
    if len(points) < 2:
        return {
            "slope": 0,
            "intercept": points[0]["value"] if points else 0,
            "rSquared": 1,
        }

    result = stats.linear_regression([{"x": i, "y": p["value"]} for i, p in enumerate(points)])
    return {
        "slope": round_to(result["slope"], 4),
        "intercept": round_to(result["intercept"], 0),
        "rSquared": round_to(result["rSquared"], 4),
    }


def market_trends(
    session: Session,
    metric: str,
    rates: Dict[str, float],
    period: str = "90d",
    granularity: str = "daily",
    item_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """Time series for one market metric over a period.

    Raises:
        ValueError: If metric is not one of TREND_METRICS
    """
    if metric not in TREND_METRICS:
        raise ValueError(f"Unknown trend metric: {metric}")

    start, end = parse_date_range(period, now)
    query = session.query(
        Listing.first_seen_at, Listing.price_value, Listing.price_currency, Listing.is_available
    ).filter(Listing.first_seen_at >= start, Listing.first_seen_at <= end)
    if item_type:
        query = query.filter(Listing.item_type == item_type)
    rows = query.order_by(Listing.first_seen_at.asc()).limit(MAX_ROWS).all()

    points = fill_missing_dates(
        cumulative_points(rows, metric, granularity, rates), start, end, granularity
    )

    return {
        "metric": METRIC_NAMES[metric],
        "period": period,
        "granularity": granularity,
        "dataPoints": points,
        "summary": trend_summary(points),
        "trendLine": trend_line(points),
    }


# ============================================================================
# Breakdowns, price changes and distribution
# ============================================================================

BREAKDOWN_DIMENSIONS = ("category", "dealer", "certification")
PRICE_CHANGE_PERIODS: Dict[str, Optional[int]] = {"24h": 1, "7d": 7, "30d": 30, "all": None}


def _price_entries(rows, rates: Dict[str, float]) -> List[Tuple]:
    """(key, price_value, currency) rows to (key, JPY price or None)."""
    entries = []
    for key, price_value, currency in rows:
        price = to_jpy(price_value, currency, rates) if price_value else None
        entries.append((key, price if price is not None and price > 0 else None))
    return entries


def _group_prices(entries: List[Tuple]) -> Dict:
    groups: Dict = {}
    for key, price in entries:
        prices = groups.setdefault(key, [])
        if price is not None:
            prices.append(price)
    return groups


def _shares(entries: List[Tuple]) -> Tuple[Dict, Dict]:
    """Count and value shares of the priced entries, in percent."""
    priced = [(key, price) for key, price in entries if price is not None]
    count_shares = stats.calculate_shares(stats.count_by(priced, lambda e: e[0]))
    value_shares = stats.calculate_shares(stats.sum_by(priced, lambda e: e[0], lambda e: e[1]))
    return count_shares, value_shares


def _fraction(shares: Dict, key) -> float:
    return round_to(shares.get(key, 0) / 100, 4)


def _price_metrics(prices: List[float]) -> Dict:
    return {
        "totalValueJPY": round_to(stats.total(prices), 0),
        "medianPriceJPY": round_to(stats.median(prices), 0),
        "avgPriceJPY": round_to(stats.mean(prices), 0),
    }


def _priced(entries: List[Tuple]) -> List[float]:
    return [price for _, price in entries if price is not None]


def _category_breakdown(session: Session, rates: Dict[str, float], limit: int) -> Dict:
    rows = (
        session.query(
            Listing.item_type,
            Listing.price_value,
            Listing.price_currency,
            Listing.is_available,
            Listing.is_sold,
        )
        .limit(MAX_ROWS)
        .all()
    )

    def type_of(row) -> str:
        return row.item_type or "unknown"

    available = _price_entries(
        [(type_of(r), r.price_value, r.price_currency) for r in rows if r.is_available], rates
    )
    groups = _group_prices(available)
    total_counts = stats.count_by(rows, type_of)
    sold_counts = stats.count_by([r for r in rows if r.is_sold], type_of)
    available_counts = stats.count_by(available, lambda e: e[0])
    count_shares, value_shares = _shares(available)

    all_prices = _priced(available)
    market_median = stats.median(all_prices)

    categories = []
    for item_type, total_count in total_counts.items():
        prices = groups.get(item_type, [])
        category_median = stats.median(prices)
        categories.append(
            {
                "itemType": item_type,
                "displayName": item_type_label(item_type),
                "totalCount": total_count,
                "availableCount": available_counts.get(item_type, 0),
                "soldCount": sold_counts.get(item_type, 0),
                **_price_metrics(prices),
                "priceRange": {
                    "min": min(prices) if prices else 0,
                    "max": max(prices) if prices else 0,
                },
                "countShare": _fraction(count_shares, item_type),
                "valueShare": _fraction(value_shares, item_type),
                "priceVsMarket": (
                    round_to((category_median - market_median) / market_median, 4)
                    if market_median > 0
                    else 0
                ),
            }
        )

    categories.sort(key=lambda c: c["availableCount"], reverse=True)
    return {
        "categories": categories[:limit],
        "totals": {
            "totalCount": len(all_prices),
            "totalValueJPY": round_to(stats.total(all_prices), 0),
            "medianPriceJPY": round_to(market_median, 0),
        },
    }


def _segment_rows(entries: List[Tuple]) -> List[Tuple]:
    """(key, count, prices, count share, value share) per segment."""
    groups = _group_prices(entries)
    count_shares, value_shares = _shares(entries)
    return [
        (key, count, groups[key], _fraction(count_shares, key), _fraction(value_shares, key))
        for key, count in stats.count_by(entries, lambda e: e[0]).items()
    ]


def _dealer_breakdown(session: Session, rates: Dict[str, float], limit: int) -> Dict:
    names = dict(session.query(Dealer.id, Dealer.name).filter(Dealer.is_active.is_(True)).all())
    rows = (
        session.query(Listing.dealer_id, Listing.price_value, Listing.price_currency)
        .filter(Listing.is_available.is_(True), Listing.price_value.isnot(None))
        .limit(MAX_ROWS)
        .all()
    )
    entries = _price_entries(rows, rates)

    dealers = [
        {
            "dealerId": dealer_id,
            "dealerName": names.get(dealer_id) or f"Dealer #{dealer_id}",
            "totalCount": count,
            "availableCount": count,
            **_price_metrics(prices),
            "countShare": count_share,
            "valueShare": value_share,
        }
        for dealer_id, count, prices, count_share, value_share in _segment_rows(entries)
    ]
    dealers.sort(key=lambda d: d["availableCount"], reverse=True)

    priced = _priced(entries)
    return {
        "dealers": dealers[:limit],
        "totals": {"totalCount": len(priced), "totalValueJPY": round_to(stats.total(priced), 0)},
    }


def _certification_breakdown(session: Session, rates: Dict[str, float], limit: int) -> Dict:
    rows = (
        session.query(Listing.cert_type, Listing.price_value, Listing.price_currency)
        .filter(Listing.is_available.is_(True), Listing.cert_type.isnot(None))
        .limit(MAX_ROWS)
        .all()
    )
    entries = _price_entries(rows, rates)

    certifications = [
        {
            "certType": cert_type,
            "displayName": cert_display_name(cert_type),
            "totalCount": count,
            "availableCount": count,
            **_price_metrics(prices),
            "countShare": count_share,
            "valueShare": value_share,
        }
        for cert_type, count, prices, count_share, value_share in _segment_rows(entries)
    ]
    certifications.sort(key=lambda c: c["totalCount"], reverse=True)

    priced = _priced(entries)
    return {
        "certifications": certifications[:limit],
        "totals": {"totalCount": len(priced), "totalValueJPY": round_to(stats.total(priced), 0)},
    }


def market_breakdown(session: Session, by: str, rates: Dict[str, float], limit: int = 20) -> Dict:
    """Market split by item type, dealer or certification.

    Shares are fractions (0-1) of the priced available listings.

    Args:
        session: Database session
        by: One of BREAKDOWN_DIMENSIONS
        rates: JPY per unit of foreign currency
        limit: Maximum segments returned

    Returns:
        Segments under categories, dealers or certifications, plus totals

    Raises:
        ValueError: If by is not a known dimension
    """
    if by == "category":
        return _category_breakdown(session, rates, limit)
    if by == "dealer":
        return _dealer_breakdown(session, rates, limit)
    if by == "certification":
        return _certification_breakdown(session, rates, limit)
    raise ValueError(f"Unknown breakdown dimension: {by}")


def price_changes(
    session: Session,
    limit: int = 50,
    min_change_percent: Optional[float] = None,
    period: str = "7d",
    now: Optional[datetime] = None,
) -> Dict:
    """Most recent price increases and decreases with listing and dealer names.

    Args:
        session: Database session
        limit: Maximum changes returned
        min_change_percent: Drop changes smaller than this (absolute percent)
        period: 24h, 7d, 30d or all
        now: Reference time

    Returns:
        Dictionary with changes, totalCount and period
    """
    now = now or utc_now()
    if period not in PRICE_CHANGE_PERIODS:
        period = "7d"

    criteria = [PriceHistory.change_type.in_(("increase", "decrease"))]
    days = PRICE_CHANGE_PERIODS[period]
    if days is not None:
        criteria.append(PriceHistory.detected_at >= now - timedelta(days=days))

    fetch = limit * 3 if min_change_percent is not None else limit
    rows = (
        session.query(PriceHistory, Listing, Dealer)
        .outerjoin(Listing, PriceHistory.listing_id == Listing.id)
        .outerjoin(Dealer, Listing.dealer_id == Dealer.id)
        .filter(*criteria)
        .order_by(PriceHistory.detected_at.desc())
        .limit(fetch)
        .all()
    )

    changes = []
    for change, listing, dealer in rows:
        old_price, new_price = change.old_price, change.new_price
        if not old_price or not new_price or old_price <= 0:
            continue

        change_pct = (new_price - old_price) / old_price * 100
        if min_change_percent is not None and abs(change_pct) < min_change_percent:
            continue

        changes.append(
            {
                "listingId": change.listing_id,
                "title": (listing.title if listing else None) or f"Listing #{change.listing_id}",
                "dealerName": (dealer.name if dealer else None) or "Unknown Dealer",
                "itemType": (listing.item_type if listing else None) or "unknown",
                "oldPrice": round_to(old_price, 0),
                "newPrice": round_to(new_price, 0),
                "changeAmount": round_to(new_price - old_price, 0),
                "changePercent": round_to(change_pct, 2),
                "detectedAt": change.detected_at.isoformat() if change.detected_at else None,
            }
        )
        if len(changes) >= limit:
            break

    total = session.query(func.count(PriceHistory.id)).filter(*criteria).scalar() or 0

    return {
        "changes": changes,
        "totalCount": total or len(changes),
        # 24h has no analytics period of its own
        "period": "7d" if period == "24h" else period,
    }


def price_distribution(
    session: Session,
    rates: Dict[str, float],
    buckets: int = 20,
    item_type: Optional[str] = None,
    certification: Optional[str] = None,
    dealer_id: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> Dict:
    """Histogram and summary statistics of available listing prices in JPY.

    Price bounds apply to the converted JPY price.
    """
    query = session.query(Listing.price_value, Listing.price_currency).filter(
        Listing.is_available.is_(True), Listing.price_value.isnot(None), Listing.price_value > 0
    )
    if item_type:
        query = query.filter(Listing.item_type == item_type)
    if certification:
        query = query.filter(Listing.cert_type.in_(expand_cert_variants([certification])))
    if dealer_id is not None:
        query = query.filter(Listing.dealer_id == dealer_id)

    prices = [
        price
        for price in _prices_jpy(query.limit(MAX_ROWS).all(), rates)
        if (min_price is None or price >= min_price) and (max_price is None or price <= max_price)
    ]

    histogram = []
    for bucket in stats.create_histogram_buckets(prices, buckets, use_nice_numbers=True):
        start, end = round_to(bucket["rangeStart"], 0), round_to(bucket["rangeEnd"], 0)
        histogram.append(
            {
                "rangeStart": start,
                "rangeEnd": end,
                "label": stats.format_price_range_label(start, end),
                "count": bucket["count"],
                "percentage": round_to(bucket["percentage"], 2),
                "cumulativePercentage": round_to(bucket["cumulativePercentage"], 2),
            }
        )
    pcts = stats.percentiles(prices, [10, 25, 75, 90])

    return {
        "buckets": histogram,
        "statistics": {
            "count": len(prices),
            "mean": round_to(stats.mean(prices), 0),
            "median": round_to(stats.median(prices), 0),
            "stdDev": round_to(stats.standard_deviation(prices), 0),
            "skewness": round_to(stats.skewness(prices), 4),
            "percentiles": {f"p{p}": round_to(pcts[p], 0) for p in (10, 25, 75, 90)},
        },
        "filters": {
            "itemType": item_type,
            "certification": certification,
            "dealer": dealer_id,
            "minPrice": min_price,
            "maxPrice": max_price,
        },
    }
