"""Shared listing constants: statuses, item type groups and certification variants."""

from typing import Dict, Iterable, List, Optional

# Listings priced below this (in JPY) are hidden from feeds; price-on-request listings are kept.
MIN_PRICE_JPY = 100000

STATUS_AVAILABLE = "available"
STATUS_SOLD = "sold"
STATUS_PRESUMED_SOLD = "presumed_sold"
LISTING_STATUSES = (
    "available",
    "sold",
    "presumed_sold",
    "withdrawn",
    "expired",
    "error",
    "unknown",
)
SOLD_STATUSES = (STATUS_SOLD, STATUS_PRESUMED_SOLD)

NIHONTO_TYPES = [
    "katana", "wakizashi", "tanto", "tachi", "kodachi",
    "naginata", "naginata naoshi", "naginata-naoshi",
    "yari", "ken", "daisho",
]

TOSOGU_TYPES = [
    "tsuba", "fuchi-kashira", "fuchi_kashira", "fuchi", "kashira",
    "kozuka", "kogatana", "kogai", "menuki",
    "futatokoro", "mitokoromono", "koshirae", "tosogu",
]

ARMOR_TYPES = [
    "armor", "yoroi", "gusoku", "helmet", "kabuto",
    "menpo", "mengu", "kote", "suneate", "do",
    "tanegashima", "hinawaju",
]

EXCLUDED_ITEM_TYPES = ["stand", "book", "other"]

CATEGORY_TYPES: Dict[str, List[str]] = {
    "nihonto": NIHONTO_TYPES,
    "tosogu": TOSOGU_TYPES,
    "armor": ARMOR_TYPES,
}

CERT_VARIANTS: Dict[str, List[str]] = {
    "Juyo Bijutsuhin": ["Juyo Bijutsuhin", "JuBi", "jubi"],
    "Juyo": ["Juyo", "juyo"],
    "Tokuju": ["Tokuju", "tokuju", "Tokubetsu Juyo", "tokubetsu_juyo"],
    "TokuHozon": ["TokuHozon", "Tokubetsu Hozon", "tokubetsu_hozon"],
    "Hozon": ["Hozon", "hozon"],
    "TokuKicho": ["TokuKicho", "Tokubetsu Kicho", "tokubetsu_kicho"],
}


def types_for_category(category: Optional[str]) -> Optional[List[str]]:
    """Item types belonging to a browse category, or None for unknown/"all"."""
    if not category:
        return None
    return CATEGORY_TYPES.get(category)


def expand_cert_variants(certifications: Iterable[str]) -> List[str]:
    """Expand canonical certification keys to every stored spelling."""
    variants: List[str] = []
    for cert in certifications:
        variants.extend(CERT_VARIANTS.get(cert, [cert]))
    return variants

ITEM_TYPE_LABELS: Dict[str, str] = {
    "katana": "Katana",
    "wakizashi": "Wakizashi",
    "tanto": "Tantō",
    "tachi": "Tachi",
    "naginata": "Naginata",
    "yari": "Yari",
    "ken": "Ken",
    "tsuba": "Tsuba",
    "menuki": "Menuki",
    "kozuka": "Kōzuka",
    "kogai": "Kōgai",
    "fuchi": "Fuchi",
    "kashira": "Kashira",
    "fuchi_kashira": "Fuchi-Kashira",
    "armor": "Armor",
    "helmet": "Helmet",
    "koshirae": "Koshirae",
    "unknown": "Unknown",
}

# Display names for stored certification values in market reports
CERT_DISPLAY_NAMES: Dict[str, str] = {
    "Juyo": "Juyo Token",
    "Tokubetsu Juyo": "Tokubetsu Juyo Token",
    "Tokuju": "Tokubetsu Juyo Token",
    "Hozon": "Hozon Token",
    "Tokubetsu Hozon": "Tokubetsu Hozon Token",
    "TokuHozon": "Tokubetsu Hozon Token",
}


def item_type_label(item_type: str) -> str:
    return ITEM_TYPE_LABELS.get(item_type, item_type)


def cert_display_name(cert_type: str) -> str:
    return CERT_DISPLAY_NAMES.get(cert_type, cert_type)
