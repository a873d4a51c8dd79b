"""Provenance factor: how prestigious the documented owners of an artisan's works are."""

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..utils.helpers import round_to


@dataclass
class CollectorMeta:
    score: int
    koku: Optional[int] = None
    domain: Optional[str] = None
    type: Optional[str] = None


def _meta(score: int, type_: str, koku: Optional[int] = None, domain: Optional[str] = None):
    return CollectorMeta(score=score, koku=koku, domain=domain, type=type_)


# Keys are canonical owner names. Order matters for the family-prefix fallback.
PRESTIGE: Dict[str, CollectorMeta] = {
    # Imperial & shogunal
    "Imperial Family": _meta(10, "imperial"),
    "Tokugawa Family": _meta(10, "shogunal"),
    "Tokugawa Shogun Family": _meta(10, "shogunal"),
    "Ashikaga Family": _meta(10, "shogunal"),
    "Toyotomi Family": _meta(10, "shogunal"),
    # Premier daimyo (500K+ koku or gosanke/gosankyo)
    "Maeda Family": _meta(8, "tozama", 1025000, "Kaga"),
    "Shimazu Family": _meta(8, "tozama", 770000, "Satsuma"),
    "Echizen Matsudaira Family": _meta(8, "shinpan", 680000, "Echizen"),
    "Date Family": _meta(8, "tozama", 625000, "Sendai"),
    "Owari Tokugawa Family": _meta(8, "gosanke", 619500, "Owari"),
    "Kishu Tokugawa Family": _meta(8, "gosanke", 555000, "Kishū"),
    "Hosokawa Family": _meta(8, "tozama", 540000, "Kumamoto"),
    "Mito Tokugawa Family": _meta(8, "gosanke", 350000, "Mito"),
    "Tayasu Tokugawa Family": _meta(8, "gosankyo"),
    "Hitotsubashi Tokugawa Family": _meta(8, "gosankyo"),
    # Major daimyo (200K-499K koku)
    "Kuroda Family": _meta(6, "tozama", 473000, "Fukuoka"),
    "Asano Family": _meta(6, "tozama", 426500, "Hiroshima"),
    "Mori Family": _meta(6, "tozama", 369000, "Chōshū"),
    "Nabeshima Family": _meta(6, "tozama", 357000, "Saga"),
    "Ii Family": _meta(6, "fudai", 350000, "Hikone"),
    "Ikeda Family": _meta(6, "tozama", 325000, "Okayama"),
    "Hachisuka Family": _meta(6, "tozama", 257000, "Tokushima"),
    "Yamauchi Family": _meta(6, "tozama", 242000, "Tosa"),
    "Aizu Matsudaira Family": _meta(6, "shinpan", 230000, "Aizu"),
    "Uesugi Family": _meta(6, "tozama", 300000, "Yonezawa"),
    "Satake Family": _meta(6, "tozama", 200000, "Akita"),
    "Todo Family": _meta(6, "tozama", 323000, "Tsu"),
    "Oda Family": _meta(6, "tozama"),
    # Mid daimyo
    "Sakai Family": _meta(4, "fudai", 140000, "Shōnai"),
    "Ogasawara Family": _meta(4, "fudai", 150000, "Kokura"),
    "Matsudaira Family": _meta(4, "shinpan", 186000, "various"),
    "Arima Family": _meta(4, "tozama", 210000, "Kurume"),
    "Matsue Matsudaira Family": _meta(4, "shinpan", 186000, "Matsue"),
    "Saijo Matsudaira Family": _meta(4, "shinpan", 30000, "Saijō"),
    "Takasu Matsudaira Family": _meta(4, "shinpan", 30000, "Takasu"),
    "Hisamatsu Matsudaira Family": _meta(4, "shinpan"),
    "Honda Family": _meta(4, "fudai", 100000, "various"),
    "Inaba Family": _meta(4, "fudai"),
    "Makino Family": _meta(4, "fudai"),
    "Yanagisawa Family": _meta(4, "fudai"),
    "Naito Family": _meta(4, "fudai"),
    "Okudaira Family": _meta(4, "fudai"),
    "Okubo Family": _meta(4, "fudai"),
    "Tsuchiya Family": _meta(4, "fudai"),
    "Mizuno Family": _meta(4, "fudai"),
    "Naruse Family": _meta(4, "fudai", 35000, "Inuyama"),
    "Tachibana Family": _meta(4, "tozama", 120000, "Yanagawa"),
    "Nanbu Family": _meta(4, "tozama", 200000, "Morioka"),
    "Tsugaru Family": _meta(4, "tozama", 100000, "Hirosaki"),
    "Sanada Family": _meta(4, "tozama", 100000, "Matsushiro"),
    "Hojo Family": _meta(4, "tozama"),
    "Kyogoku Family": _meta(4, "tozama"),
    "Akimoto Family": _meta(4, "fudai"),
    "Kamei Family": _meta(4, "tozama"),
    "Takeda Family": _meta(4, "tozama"),
    "Konoe Family": _meta(4, "court"),
    # Institutions
    "Seikado Bunko": _meta(4, "institution"),
    "Eisei Bunko": _meta(4, "institution"),
    "Nezu Museum": _meta(4, "institution"),
    "Sano Art Museum": _meta(4, "institution"),
    "Kurokawa Institute": _meta(4, "institution"),
    "Tokugawa Reimeikai Foundation": _meta(4, "institution"),
    "Iwasaki Family": _meta(4, "merchant"),
    "Mitsui Family": _meta(4, "merchant"),
    "Konoike Family": _meta(4, "merchant"),
    # Shrines
    "Kasuga Taisha": _meta(4, "shrine"),
    "Atsuta Shrine": _meta(4, "shrine"),
    "Tanzan Shrine": _meta(4, "shrine"),
    "Yasukuni Shrine": _meta(4, "shrine"),
}

DEFAULT_META = CollectorMeta(score=2, type="person")

PRIOR_STRENGTH = 5  # phantom observations
PRIOR_MEAN = 2  # "minor documented owner" baseline

PROVENANCE_TIERS = [
    ("imperial", "Imperial & Shogunal", 10),
    ("premier", "Premier Daimyō", 8),
    ("major", "Major Daimyō", 6),
    ("mid", "Institutions & Daimyō", 4),
    ("minor", "Named Collectors", 2),
]


def get_prestige(owner: str) -> CollectorMeta:
    """Prestige of an owner, falling back to the owner's family entry.

    "Tokugawa Iemitsu" is scored as "Tokugawa Family".
    """
    if owner in PRESTIGE:
        return PRESTIGE[owner]

    for key, meta in PRESTIGE.items():
        if key.endswith(" Family"):
            family = key[: -len(" Family")]
            if owner == family or owner.startswith(family + " "):
                return meta

    return DEFAULT_META


def score_to_tier(score: int) -> str:
    if score >= 10:
        return "imperial"
    if score >= 8:
        return "premier"
    if score >= 6:
        return "major"
    if score >= 4:
        return "mid"
    return "minor"


def compute_provenance_analysis(groups: List[Dict]) -> Optional[Dict]:
    """Compute the provenance factor and tier breakdown.

    Groups are scored by their parent name: a family group uses the family
    entry, a single owner uses that owner's entry.

    Args:
        groups: Dicts with parent, totalCount, children (owner, count) and isGroup

    Returns:
        Dictionary with factor, count, apex, tierCounts and tiers, or None
        when there is no documented provenance
    """
    if not groups:
        return None

    tier_map: Dict[str, List[Dict]] = {key: [] for key, _, _ in PROVENANCE_TIERS}
    tier_counts: Dict[str, int] = {key: 0 for key, _, _ in PROVENANCE_TIERS}
    total_works = 0
    score_sum = 0
    apex = 0

    for group in groups:
        meta = get_prestige(group["parent"])
        tier = score_to_tier(meta.score)
        works = group["totalCount"]

        tier_map[tier].append(
            {
                "name": group["parent"],
                "works": works,
                "score": meta.score,
                "type": meta.type,
                "koku": meta.koku,
                "domain": meta.domain,
                "children": (
                    [{"name": c["owner"], "works": c["count"]} for c in group.get("children", [])]
                    if group.get("isGroup")
                    else None
                ),
                "isGroup": bool(group.get("isGroup")),
            }
        )
        tier_counts[tier] += works
        total_works += works
        score_sum += meta.score * works
        apex = max(apex, meta.score)

    if total_works == 0:
        return None

    factor = (PRIOR_STRENGTH * PRIOR_MEAN + score_sum) / (PRIOR_STRENGTH + total_works)

    tiers = [
        {
            "key": key,
            "label": label,
            "score": score,
            "totalWorks": tier_counts[key],
            "collectors": sorted(tier_map[key], key=lambda c: c["works"], reverse=True),
        }
        for key, label, score in PROVENANCE_TIERS
    ]

    return {
        "factor": round_to(factor, 2),
        "count": total_works,
        "apex": apex,
        "tierCounts": tier_counts,
        "tiers": tiers,
    }


def group_provenance_rows(rows: List) -> List[Dict]:
    """Group owner rows (parent, owner, count) into provenance groups.

    A parent with a single owner of the same name is a singleton; anything
    else is a family group.
    """
    grouped: Dict[str, Dict] = {}
    for row in rows:
        group = grouped.setdefault(
            row.parent, {"parent": row.parent, "totalCount": 0, "children": []}
        )
        group["totalCount"] += row.count or 0
        group["children"].append({"owner": row.owner, "count": row.count or 0})

    for group in grouped.values():
        children = group["children"]
        group["isGroup"] = not (len(children) == 1 and children[0]["owner"] == group["parent"])

    return sorted(grouped.values(), key=lambda g: g["totalCount"], reverse=True)
