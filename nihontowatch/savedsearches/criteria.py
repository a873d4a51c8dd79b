"""Saved search criteria and their mapping to and from browse URLs."""

import re
from typing import Dict, List, Literal, Mapping, Optional
from urllib.parse import urlencode

from pydantic import BaseModel

CATEGORIES = ("nihonto", "tosogu", "armor")

CATEGORY_LABELS = {
    "nihonto": "Nihonto (blades)",
    "tosogu": "Tosogu (fittings)",
    "armor": "Armor & Military",
}
CATEGORY_NAMES = {"nihonto": "All Nihonto", "tosogu": "All Tosogu", "armor": "All Armor"}

# Numeric comparisons are stored in the query but are not shown as text
_NUMERIC_TERMS = re.compile(r"(?:price|jpy|yen|nagasa|cm|length)\s*[<>]=?\s*\d+", re.IGNORECASE)
_PRICE_IN_QUERY = re.compile(r"(?:price|jpy|yen)\s*[<>]=?\s*\d+", re.IGNORECASE)
_MIN_PRICE = re.compile(r"price\s*>=?\s*(\d+)", re.IGNORECASE)
_MAX_PRICE = re.compile(r"price\s*<=?\s*(\d+)", re.IGNORECASE)


class SearchCriteria(BaseModel):
    """Browse filters captured by a saved search. Stored as JSON."""

    tab: Optional[Literal["available", "sold"]] = None
    category: Optional[str] = None
    itemTypes: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    dealers: Optional[List[int]] = None
    schools: Optional[List[str]] = None
    signatureStatuses: Optional[List[str]] = None
    askOnly: Optional[bool] = None
    minPrice: Optional[float] = None
    maxPrice: Optional[float] = None
    query: Optional[str] = None
    sort: Optional[str] = None

    def to_json(self) -> Dict:
        return self.model_dump(exclude_none=True)


def _split(value: Optional[str]) -> List[str]:
    return [part for part in (value or "").split(",") if part]


def _number(value: str) -> Optional[float]:
    try:
        number = float(value)
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def url_params_to_criteria(params: Mapping[str, str]) -> SearchCriteria:
    """Build criteria from browse page query parameters."""
    criteria = SearchCriteria(tab="sold" if params.get("tab") == "sold" else "available")

    if params.get("cat") in CATEGORIES:
        criteria.category = params["cat"]
    if params.get("type"):
        criteria.itemTypes = _split(params["type"])
    if params.get("cert"):
        criteria.certifications = _split(params["cert"])
    if params.get("dealer"):
        dealers = []
        for part in _split(params["dealer"]):
            number = _number(part)
            if number is not None and number > 0:
                dealers.append(int(number))
        criteria.dealers = dealers
    if params.get("school"):
        criteria.schools = _split(params["school"])
    if params.get("ask") == "true":
        criteria.askOnly = True
    if params.get("priceMin"):
        criteria.minPrice = _number(params["priceMin"])
    if params.get("priceMax"):
        criteria.maxPrice = _number(params["priceMax"])

    query = params.get("q")
    if query:
        criteria.query = query
        # Price comparisons typed into the search box override the price fields
        if _PRICE_IN_QUERY.search(query):
            min_match = _MIN_PRICE.search(query)
            max_match = _MAX_PRICE.search(query)
            if min_match:
                criteria.minPrice = int(min_match.group(1))
            if max_match:
                criteria.maxPrice = int(max_match.group(1))

    if params.get("sort"):
        criteria.sort = params["sort"]

    return criteria


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def criteria_to_url_params(criteria: SearchCriteria) -> str:
    """Query string for criteria, omitting browse defaults."""
    params = []
    if criteria.tab and criteria.tab != "available":
        params.append(("tab", criteria.tab))
    if criteria.category and criteria.category != "nihonto":
        params.append(("cat", criteria.category))
    if criteria.itemTypes:
        params.append(("type", ",".join(criteria.itemTypes)))
    if criteria.certifications:
        params.append(("cert", ",".join(criteria.certifications)))
    if criteria.dealers:
        params.append(("dealer", ",".join(str(d) for d in criteria.dealers)))
    if criteria.schools:
        params.append(("school", ",".join(criteria.schools)))
    if criteria.askOnly:
        params.append(("ask", "true"))
    if criteria.minPrice is not None:
        params.append(("priceMin", _format_number(criteria.minPrice)))
    if criteria.maxPrice is not None:
        params.append(("priceMax", _format_number(criteria.maxPrice)))
    if criteria.query:
        params.append(("q", criteria.query))
    if criteria.sort and criteria.sort != "recent":
        params.append(("sort", criteria.sort))
    return urlencode(params)


def criteria_to_url(criteria: SearchCriteria) -> str:
    params = criteria_to_url_params(criteria)
    return f"/?{params}" if params else "/"


def _clean_query(query: Optional[str]) -> str:
    return _NUMERIC_TERMS.sub("", query or "").strip()


def _yen(value: float) -> str:
    return f"¥{value:,.0f}" if float(value).is_integer() else f"¥{value:,}"


def criteria_to_human_readable(
    criteria: SearchCriteria, dealer_names: Optional[Mapping[int, str]] = None
) -> str:
    """One-line description such as "Katana · Juyo · ¥1,000,000+"."""
    parts = []

    if criteria.category:
        parts.append(CATEGORY_LABELS.get(criteria.category, criteria.category))
    if criteria.itemTypes:
        parts.append(", ".join(t[:1].upper() + t[1:] for t in criteria.itemTypes))
    if criteria.certifications:
        parts.append(", ".join(criteria.certifications))
    if criteria.dealers:
        if dealer_names is not None:
            names = ", ".join(dealer_names.get(d, f"Dealer #{d}") for d in criteria.dealers)
            parts.append(f"from {names}")
        else:
            parts.append(f"{len(criteria.dealers)} dealer(s)")
    if criteria.schools:
        parts.append(f"{', '.join(criteria.schools)} school")

    if criteria.minPrice and criteria.maxPrice:
        parts.append(f"{_yen(criteria.minPrice)} - {_yen(criteria.maxPrice)}")
    elif criteria.minPrice:
        parts.append(f"{_yen(criteria.minPrice)}+")
    elif criteria.maxPrice:
        parts.append(f"under {_yen(criteria.maxPrice)}")

    if criteria.askOnly:
        parts.append("Price on request")

    query = _clean_query(criteria.query)
    if query:
        parts.append(f'"{query}"')

    if criteria.tab == "sold":
        parts.append("(sold items)")

    return " · ".join(parts) if parts else "All items"


def generate_search_name(criteria: SearchCriteria) -> str:
    """Short default name for a new saved search."""
    if criteria.itemTypes:
        name = ", ".join(t[:1].upper() + t[1:] for t in criteria.itemTypes[:2])
        extra = len(criteria.itemTypes) - 2
        return f"{name} +{extra} more" if extra > 0 else name

    if criteria.certifications:
        return ", ".join(criteria.certifications[:2])

    query = _clean_query(criteria.query)
    if query:
        return query[:27] + "..." if len(query) > 30 else query

    if criteria.category:
        return CATEGORY_NAMES.get(criteria.category, "Custom search")

    return "Custom search"


def _same_items(a: Optional[list], b: Optional[list]) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return sorted(map(str, a)) == sorted(map(str, b))


def criteria_equal(a: SearchCriteria, b: SearchCriteria) -> bool:
    """Equality that ignores the order of list filters."""
    return (
        a.tab == b.tab
        and a.category == b.category
        and _same_items(a.itemTypes, b.itemTypes)
        and _same_items(a.certifications, b.certifications)
        and _same_items(a.dealers, b.dealers)
        and _same_items(a.schools, b.schools)
        and a.askOnly == b.askOnly
        and a.query == b.query
        and a.sort == b.sort
        and a.minPrice == b.minPrice
        and a.maxPrice == b.maxPrice
    )
