"""Turn free-text search terms into exact filters.

"tanto juyo goto" should filter on item_type and cert_type and only text
search for "goto", otherwise "juyo" would match any listing that merely
mentions a Juyo item in its description.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..utils.constants import ARMOR_TYPES, NIHONTO_TYPES, TOSOGU_TYPES

MACRONS = str.maketrans("āĀēĒīĪōŌūŪ", "aAeEiIoOuU")

CERTIFICATION_TERMS: Dict[str, str] = {
    "juyo": "Juyo",
    "juuyou": "Juyo",
    "juyou": "Juyo",
    "重要": "Juyo",
    "tokuju": "Tokuju",
    "tokubetsu juyo": "Tokuju",
    "tokubetsujuyo": "Tokuju",
    "toku juyo": "Tokuju",
    "特別重要": "Tokuju",
    "hozon": "Hozon",
    "保存": "Hozon",
    "tokuho": "TokuHozon",
    "tokubetsu hozon": "TokuHozon",
    "tokubetsuhozon": "TokuHozon",
    "toku hozon": "TokuHozon",
    "特別保存": "TokuHozon",
    "kicho": "Kicho",
    "貴重": "Kicho",
    "tokukicho": "TokuKicho",
    "tokubetsu kicho": "TokuKicho",
    "tokubetsukicho": "TokuKicho",
    "toku kicho": "TokuKicho",
    "特別貴重": "TokuKicho",
    "nthk": "NTHK",
    "nthk kanteisho": "NTHK",
}

# Longest phrases first so "tokubetsu juyo" is not read as "juyo"
MULTI_WORD_CERT_PHRASES = [
    "特別重要",
    "特別保存",
    "特別貴重",
    "tokubetsu juyo",
    "tokubetsu hozon",
    "tokubetsu kicho",
    "toku juyo",
    "toku hozon",
    "toku kicho",
    "nthk kanteisho",
]

ITEM_TYPE_TERMS: Dict[str, str] = {
    "katana": "katana",
    "wakizashi": "wakizashi",
    "waki": "wakizashi",
    "tanto": "tanto",
    "tantou": "tanto",
    "tachi": "tachi",
    "naginata": "naginata",
    "nagi": "naginata",
    "yari": "yari",
    "ken": "ken",
    "kodachi": "kodachi",
    "刀": "katana",
    "脇差": "wakizashi",
    "短刀": "tanto",
    "太刀": "tachi",
    "薙刀": "naginata",
    "槍": "yari",
    "tsuba": "tsuba",
    "tuba": "tsuba",
    "fuchi": "fuchi",
    "kashira": "kashira",
    "fuchi-kashira": "fuchi-kashira",
    "fuchikashira": "fuchi-kashira",
    "fuchi kashira": "fuchi-kashira",
    "menuki": "menuki",
    "kozuka": "kozuka",
    "kogatana": "kogatana",
    "kogai": "kogai",
    "koshirae": "koshirae",
    "mitokoromono": "mitokoromono",
    "鍔": "tsuba",
    "小柄": "kozuka",
    "目貫": "menuki",
    "縁頭": "fuchi-kashira",
    "拵": "koshirae",
    "kabuto": "kabuto",
    "helmet": "helmet",
    "menpo": "menpo",
    "mengu": "mengu",
    "kote": "kote",
    "suneate": "suneate",
    "do": "do",
    "兜": "kabuto",
    "甲冑": "armor",
}

MULTI_WORD_TYPE_PHRASES = ["縁頭", "小柄", "目貫", "甲冑", "fuchi kashira", "fuchi-kashira"]

CATEGORY_TERMS: Dict[str, List[str]] = {
    "nihonto": NIHONTO_TYPES,
    "sword": NIHONTO_TYPES,
    "swords": NIHONTO_TYPES,
    "blade": NIHONTO_TYPES,
    "blades": NIHONTO_TYPES,
    "japanese sword": NIHONTO_TYPES,
    "japanese swords": NIHONTO_TYPES,
    "tosogu": TOSOGU_TYPES,
    "fitting": TOSOGU_TYPES,
    "fittings": TOSOGU_TYPES,
    "sword fittings": TOSOGU_TYPES,
    "sword fitting": TOSOGU_TYPES,
    "kodogu": TOSOGU_TYPES,
    "armor": ARMOR_TYPES,
    "armour": ARMOR_TYPES,
    "yoroi": ARMOR_TYPES,
    "gusoku": ARMOR_TYPES,
    "samurai armor": ARMOR_TYPES,
    "japanese armor": ARMOR_TYPES,
    "kacchu": ARMOR_TYPES,
}

MULTI_WORD_CATEGORY_PHRASES = [
    "japanese swords",
    "japanese sword",
    "sword fittings",
    "sword fitting",
    "samurai armor",
    "japanese armor",
]

SIGNATURE_STATUS_TERMS: Dict[str, str] = {
    "signed": "signed",
    "mei": "signed",
    "unsigned": "unsigned",
    "mumei": "unsigned",
    "在銘": "signed",
    "無銘": "unsigned",
}

PROVINCE_TERMS: Dict[str, str] = {
    "soshu": "Soshu",
    "sagami": "Soshu",
    "bizen": "Bizen",
    "bishu": "Bizen",
    "yamashiro": "Yamashiro",
    "yamato": "Yamato",
    "mino": "Mino",
    "noshu": "Mino",
    "hizen": "Hizen",
    "satsuma": "Satsuma",
    "echizen": "Echizen",
    "kaga": "Kaga",
    "owari": "Owari",
    "settsu": "Settsu",
    "chikuzen": "Chikuzen",
    "tosa": "Tosa",
    "omi": "Omi",
    "mutsu": "Mutsu",
    "oshu": "Mutsu",
    "awa": "Awa",
    "bungo": "Bungo",
    "iwami": "Iwami",
    "seki": "Seki",
}

PROVINCE_VARIANTS: Dict[str, List[str]] = {
    "Soshu": ["Soshu", "Sagami"],
    "Bizen": ["Bizen", "Bishu"],
    "Mino": ["Mino", "Noshu"],
    "Mutsu": ["Mutsu", "Oshu"],
    "Seki": ["Seki", "Mino"],
}

# "price>=500000", "nagasa < 70", "cm>=60"
NUMERIC_FILTER = re.compile(
    r"\b(price|jpy|yen|nagasa|cm|length)\s*(>=|<=|>|<)\s*(\d+(?:\.\d+)?)", re.IGNORECASE
)
NUMERIC_FIELDS = {
    "price": "price_value",
    "jpy": "price_value",
    "yen": "price_value",
    "nagasa": "nagasa_cm",
    "cm": "nagasa_cm",
    "length": "nagasa_cm",
}
OPERATORS = {">=": "gte", "<=": "lte", ">": "gt", "<": "lt"}
_OPERATOR_SPACING = re.compile(r"\s*(>=|<=|>|<)\s*")

_CJK = re.compile(r"[\u3000-\u9fff\uf900-\ufaff]")


@dataclass
class SemanticFilters:
    certifications: List[str] = field(default_factory=list)
    item_types: List[str] = field(default_factory=list)
    signature_statuses: List[str] = field(default_factory=list)
    provinces: List[str] = field(default_factory=list)


@dataclass
class ParsedQuery:
    filters: SemanticFilters
    remaining_terms: List[str]


def normalize_search_text(text: str) -> str:
    return " ".join(text.translate(MACRONS).lower().split())


def _add(target: List[str], values) -> None:
    for value in values:
        if value not in target:
            target.append(value)


def _take_phrase(query: str, phrase: str) -> str:
    return " ".join(query.replace(phrase, " ", 1).split())


def parse_semantic_query(query: str) -> ParsedQuery:
    """Split a query into exact filters and leftover text terms.

    Multi-word phrases are extracted before the query is split into words.
    Comparisons such as "nagasa < 70" are joined into one term. Single
    latin words shorter than two characters are dropped.
    """
    filters = SemanticFilters()
    remaining: List[str] = []

    if not query or not query.strip():
        return ParsedQuery(filters, remaining)

    working = normalize_search_text(query)
    working = _OPERATOR_SPACING.sub(r"\1", working)

    for phrase in MULTI_WORD_CERT_PHRASES:
        if phrase in working:
            _add(filters.certifications, [CERTIFICATION_TERMS[phrase]])
            working = _take_phrase(working, phrase)

    for phrase in MULTI_WORD_CATEGORY_PHRASES:
        if phrase in working:
            _add(filters.item_types, CATEGORY_TERMS[phrase])
            working = _take_phrase(working, phrase)

    for phrase in MULTI_WORD_TYPE_PHRASES:
        if phrase in working:
            _add(filters.item_types, [ITEM_TYPE_TERMS[phrase]])
            working = _take_phrase(working, phrase)

    for word in working.split():
        if len(word) < 2 and not _CJK.search(word):
            continue
        if word in CERTIFICATION_TERMS:
            _add(filters.certifications, [CERTIFICATION_TERMS[word]])
        elif word in CATEGORY_TERMS:
            _add(filters.item_types, CATEGORY_TERMS[word])
        elif word in ITEM_TYPE_TERMS:
            _add(filters.item_types, [ITEM_TYPE_TERMS[word]])
        elif word in SIGNATURE_STATUS_TERMS:
            _add(filters.signature_statuses, [SIGNATURE_STATUS_TERMS[word]])
        elif word in PROVINCE_TERMS:
            _add(filters.provinces, [PROVINCE_TERMS[word]])
        else:
            remaining.append(word)

    return ParsedQuery(filters, remaining)


def parse_numeric_filters(text: str) -> Tuple[List[Tuple[str, str, float]], List[str]]:
    """Pull comparison filters out of text.

    Returns:
        (filters as (column, op, value), remaining text words)
    """
    filters = [
        (NUMERIC_FIELDS[name.lower()], OPERATORS[op], float(value))
        for name, op, value in NUMERIC_FILTER.findall(text)
    ]
    words = NUMERIC_FILTER.sub(" ", text).split()
    return filters, [w for w in words if len(w) >= 2 or _CJK.search(w)]


def province_variants(province: str) -> List[str]:
    return PROVINCE_VARIANTS.get(province, [province])
