"""Featured score engine for ranking listings in the browse feed."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from ..storage.models import Listing
from ..utils.helpers import round_to, utc_now

CERT_POINTS: Dict[str, int] = {
    "Tokuju": 40,
    "Tokubetsu Juyo": 40,
    "tokubetsu_juyo": 40,
    "Juyo": 28,
    "juyo": 28,
    "Juyo Tosogu": 28,
    "TokuHozon": 14,
    "Tokubetsu Hozon": 14,
    "tokubetsu_hozon": 14,
    "Tokubetsu Hozon Tosogu": 14,
    "Hozon": 7,
    "hozon": 7,
    "Hozon Tosogu": 7,
    "Juyo Bijutsuhin": 35,
    "JuBi": 35,
    "TokuKicho": 10,
    "Tokubetsu Kicho": 10,
}

# Catch-all buckets, not real artisan matches
IGNORE_ARTISAN_IDS = {"UNKNOWN", "unknown"}

# (metric, attribute, weight, cap)
HEAT_WEIGHTS = [
    ("Favorites", "favorites", 15, 60),
    ("Clicks", "clicks", 10, 40),
    ("QuickViews", "quickviews", 3, 24),
    ("Views", "views", 1, 20),
    ("Pinch Zooms", "pinch_zooms", 8, 16),
]
HEAT_MAX = sum(cap for _, _, _, cap in HEAT_WEIGHTS)


@dataclass
class HeatCounts:
    """Behavioral event counts for a listing inside the heat window."""

    favorites: int = 0
    clicks: int = 0
    quickviews: int = 0
    views: int = 0
    pinch_zooms: int = 0


@dataclass
class ScoreBreakdown:
    """Quality and freshness components of a featured score."""

    artisan: Dict
    cert: Dict
    completeness: Dict
    quality_total: float
    freshness: Dict
    has_images: bool

    def to_dict(self) -> Dict:
        return {
            "quality": {
                "artisan": self.artisan,
                "cert": self.cert,
                "completeness": self.completeness,
                "total": self.quality_total,
            },
            "freshness": self.freshness,
            "hasImages": self.has_images,
        }


def image_count(listing: Listing) -> int:
    """Number of images on a listing; non-list values count as none."""
    if isinstance(listing.images, list):
        return len(listing.images)
    return 0


def _has_real_artisan(listing: Listing) -> bool:
    return bool(listing.artisan_id) and listing.artisan_id not in IGNORE_ARTISAN_IDS


def _artisan_stature(listing: Listing) -> Dict:
    if _has_real_artisan(listing):
        elite_factor = listing.artisan_elite_factor or 0
        elite_count = listing.artisan_elite_count or 0
    else:
        elite_factor = 0
        elite_count = 0

    factor_points = elite_factor * 200
    count_points = min(math.sqrt(elite_count) * 18, 100)
    return {
        "artisanId": listing.artisan_id,
        "eliteFactor": elite_factor,
        "eliteCount": elite_count,
        "factorPoints": factor_points,
        "countPoints": count_points,
        "total": factor_points + count_points,
    }


def _completeness(listing: Listing) -> Dict:
    items = {
        "images": min(image_count(listing) * 3, 15),
        "price": 10 if listing.price_value else 0,
        "attribution": 8 if (listing.smith or listing.tosogu_maker) else 0,
        "measurements": 5 if (listing.nagasa_cm or listing.height_cm) else 0,
        "description": 5 if (listing.description and len(listing.description) > 100) else 0,
        "era": 4 if listing.era else 0,
        "school": 3 if (listing.school or listing.tosogu_school) else 0,
        "confidence": 5 if listing.artisan_confidence == "HIGH" else 0,
    }
    return {"items": items, "total": sum(items.values())}


def compute_quality(listing: Listing) -> float:
    """Quality = artisan stature + certification points + completeness (0-395)."""
    cert_points = CERT_POINTS.get(listing.cert_type, 0) if listing.cert_type else 0
    return _artisan_stature(listing)["total"] + cert_points + _completeness(listing)["total"]


def listing_age_days(listing: Listing, now: Optional[datetime] = None) -> Optional[float]:
    if not listing.first_seen_at:
        return None
    now = now or utc_now()
    return (now - listing.first_seen_at).total_seconds() / 86400


def compute_freshness(listing: Listing, now: Optional[datetime] = None) -> float:
    """Age-based multiplier between 0.3 and 1.4.

    Bulk-imported listings and listings without a first-seen date are
    treated as neutral (1.0) so that a backfill does not look "new".
    """
    if listing.is_initial_import:
        return 1.0
    age_days = listing_age_days(listing, now)
    if age_days is None:
        return 1.0

    if age_days < 3:
        return 1.4
    if age_days < 7:
        return 1.2
    if age_days < 30:
        return 1.0
    if age_days < 90:
        return 0.85
    if age_days < 180:
        return 0.5
    return 0.3


def heat_items(counts: HeatCounts) -> List[Dict]:
    """Per-metric heat contributions, each capped."""
    items = []
    for metric, attr, weight, cap in HEAT_WEIGHTS:
        raw = getattr(counts, attr)
        items.append(
            {
                "metric": metric,
                "raw": raw,
                "weight": weight,
                "contribution": min(raw * weight, cap),
                "cap": cap,
            }
        )
    return items


def compute_heat(counts: HeatCounts) -> float:
    """Total heat (0-160)."""
    return sum(item["contribution"] for item in heat_items(counts))


def compute_featured_score(
    listing: Listing, heat: float, now: Optional[datetime] = None
) -> float:
    """(quality + heat) x freshness, rounded to 2 decimals. 0 without images."""
    if image_count(listing) == 0:
        return 0
    quality = compute_quality(listing)
    freshness = compute_freshness(listing, now)
    return round_to((quality + heat) * freshness, 2)


def compute_score_breakdown(listing: Listing, now: Optional[datetime] = None) -> ScoreBreakdown:
    """Break the quality and freshness terms down into their parts."""
    artisan = _artisan_stature(listing)
    cert_points = CERT_POINTS.get(listing.cert_type, 0) if listing.cert_type else 0
    completeness = _completeness(listing)
    age_days = listing_age_days(listing, now)

    return ScoreBreakdown(
        artisan=artisan,
        cert={"type": listing.cert_type, "points": cert_points},
        completeness=completeness,
        quality_total=artisan["total"] + cert_points + completeness["total"],
        freshness={
            "ageDays": round_to(age_days, 1) if age_days is not None else None,
            "isInitialImport": bool(listing.is_initial_import),
            "multiplier": compute_freshness(listing, now),
        },
        has_images=image_count(listing) > 0,
    )
