"""Find listings that match saved search criteria."""

import re
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Query, Session, joinedload

from ..storage.models import Artisan, Listing
from ..utils.constants import (
    EXCLUDED_ITEM_TYPES,
    MIN_PRICE_JPY,
    SOLD_STATUSES,
    STATUS_AVAILABLE,
    expand_cert_variants,
    types_for_category,
)
from .criteria import SearchCriteria
from .semantic import parse_numeric_filters, parse_semantic_query, province_variants

TEXT_SEARCH_FIELDS = (
    "title",
    "title_en",
    "description",
    "description_en",
    "smith",
    "tosogu_maker",
    "school",
    "tosogu_school",
    "province",
    "era",
    "mei_type",
)

# Artisan codes such as MAS590 or NS-Ko-Bizen
ARTISAN_CODE_PATTERN = re.compile(
    r"^[A-Z]{1,4}\d{1,5}(?:[.\-]\d)?[A-Za-z]?$|^NS-[A-Za-z]+(?:-[A-Za-z]+)*$"
    r"|^NC-[A-Z]+\d+[A-Za-z]?$|^tmp[A-Z]{1,4}\d+[A-Za-z]?$|^[A-Z]+(?:_[A-Z]+)+\d+$",
    re.IGNORECASE,
)

_OPS = {
    "gte": lambda column, value: column >= value,
    "lte": lambda column, value: column <= value,
    "gt": lambda column, value: column > value,
    "lt": lambda column, value: column < value,
}


def status_filter(tab: Optional[str]):
    if tab == "sold":
        return or_(Listing.status.in_(SOLD_STATUSES), Listing.is_sold.is_(True))
    return or_(Listing.status == STATUS_AVAILABLE, Listing.is_available.is_(True))


def item_type_filter(item_types: List[str]):
    return or_(*[Listing.item_type.ilike(t) for t in item_types])


def excluded_type_filter():
    return and_(*[~Listing.item_type.ilike(t) for t in EXCLUDED_ITEM_TYPES])


def price_floor_filter(min_price_jpy: int):
    """Priced listings must clear the floor; ask-price listings always pass."""
    return or_(Listing.price_value.is_(None), Listing.price_jpy >= min_price_jpy)


def _artisan_codes_for(session: Session, words: List[str]) -> List[str]:
    """Codes of artisans whose name contains any of the words."""
    words = [w for w in words if len(w) >= 2]
    if not words:
        return []
    rows = (
        session.query(Artisan.code)
        .filter(or_(*[Artisan.name.ilike(f"%{w}%") for w in words]))
        .limit(50)
        .all()
    )
    return [code for (code,) in rows]


def apply_criteria(
    session: Session,
    query: Query,
    criteria: SearchCriteria,
    since: Optional[datetime] = None,
    min_price_jpy: int = MIN_PRICE_JPY,
) -> Query:
    """Apply every criteria filter to a listing query."""
    query = query.filter(status_filter(criteria.tab))
    query = query.filter(excluded_type_filter())

    # Users who want every price pass a floor of 0
    if min_price_jpy > 0:
        query = query.filter(price_floor_filter(min_price_jpy))

    if since is not None:
        query = query.filter(Listing.first_seen_at >= since)

    item_types = criteria.itemTypes or types_for_category(criteria.category)
    if item_types:
        query = query.filter(item_type_filter(item_types))

    if criteria.askOnly:
        query = query.filter(Listing.price_value.is_(None))

    if criteria.certifications:
        query = query.filter(Listing.cert_type.in_(expand_cert_variants(criteria.certifications)))

    if criteria.schools:
        query = query.filter(
            or_(
                *[Listing.school.ilike(f"%{s}%") for s in criteria.schools],
                *[Listing.tosogu_school.ilike(f"%{s}%") for s in criteria.schools],
            )
        )

    if criteria.dealers:
        query = query.filter(Listing.dealer_id.in_(criteria.dealers))

    if criteria.minPrice is not None:
        query = query.filter(Listing.price_value >= criteria.minPrice)
    if criteria.maxPrice is not None:
        query = query.filter(Listing.price_value <= criteria.maxPrice)

    if criteria.query and len(criteria.query.strip()) >= 2:
        query = _apply_text_query(session, query, criteria)

    return query


def _apply_text_query(session: Session, query: Query, criteria: SearchCriteria) -> Query:
    parsed = parse_semantic_query(criteria.query)
    extracted = parsed.filters

    # Explicit filters win over terms typed into the search box
    if extracted.certifications and not criteria.certifications:
        query = query.filter(Listing.cert_type.in_(expand_cert_variants(extracted.certifications)))

    if (
        extracted.item_types
        and not criteria.itemTypes
        and (not criteria.category or criteria.category == "all")
    ):
        query = query.filter(item_type_filter(extracted.item_types))

    if extracted.signature_statuses and not criteria.signatureStatuses:
        query = query.filter(Listing.signature_status.in_(extracted.signature_statuses))

    for province in extracted.provinces:
        variants = province_variants(province)
        query = query.filter(
            or_(
                *[
                    column.ilike(f"%{v}%")
                    for v in variants
                    for column in (Listing.province, Listing.school, Listing.tosogu_school)
                ]
            )
        )

    filters, words = parse_numeric_filters(" ".join(parsed.remaining_terms))
    for column, op, value in filters:
        query = query.filter(_OPS[op](getattr(Listing, column), value))

    if not words:
        return query

    code = next((w for w in words if ARTISAN_CODE_PATTERN.match(w)), None)
    if code:
        query = query.filter(Listing.artisan_id.ilike(f"%{code}%"))
        words = [w for w in words if w != code]

    if words:
        artisan_codes = _artisan_codes_for(session, words)
        for word in words:
            conditions = [getattr(Listing, f).ilike(f"%{word}%") for f in TEXT_SEARCH_FIELDS]
            if artisan_codes:
                conditions.append(Listing.artisan_id.in_(artisan_codes))
            query = query.filter(or_(*conditions))

    return query


def find_matching_listings(
    session: Session,
    criteria: SearchCriteria,
    since: Optional[datetime] = None,
    limit: int = 50,
    min_price_jpy: int = MIN_PRICE_JPY,
) -> List[Listing]:
    """Newest listings matching the criteria, dealers loaded."""
    query = session.query(Listing).options(joinedload(Listing.dealer))
    query = apply_criteria(session, query, criteria, since, min_price_jpy)
    return query.order_by(Listing.first_seen_at.desc()).limit(limit).all()


def count_matching_listings(
    session: Session,
    criteria: SearchCriteria,
    since: Optional[datetime] = None,
    min_price_jpy: int = MIN_PRICE_JPY,
) -> int:
    query = apply_criteria(
        session, session.query(func.count(Listing.id)), criteria, since, min_price_jpy
    )
    return query.scalar() or 0
