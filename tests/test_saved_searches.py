from datetime import timedelta

from nihontowatch.savedsearches.criteria import (
    SearchCriteria,
    criteria_equal,
    criteria_to_human_readable,
    criteria_to_url,
    criteria_to_url_params,
    generate_search_name,
    url_params_to_criteria,
)
from nihontowatch.savedsearches.matcher import count_matching_listings, find_matching_listings
from nihontowatch.savedsearches.semantic import parse_numeric_filters, parse_semantic_query
from nihontowatch.utils.constants import TOSOGU_TYPES

from conftest import NOW, add_listing


def test_url_params_to_criteria():
    criteria = url_params_to_criteria(
        {
            "cat": "nihonto",
            "type": "katana,tanto",
            "cert": "Juyo",
            "dealer": "3,x,0",
            "priceMin": "500000",
            "q": "goto price<=900000",
        }
    )

    assert criteria.tab == "available"
    assert criteria.category == "nihonto"
    assert criteria.itemTypes == ["katana", "tanto"]
    assert criteria.dealers == [3]
    assert criteria.minPrice == 500000
    assert criteria.maxPrice == 900000


def test_criteria_to_url_omits_defaults():
    criteria = SearchCriteria(tab="available", category="nihonto", itemTypes=["katana"], minPrice=500000.0)

    assert criteria_to_url_params(criteria) == "type=katana&priceMin=500000"
    assert criteria_to_url(SearchCriteria(tab="available")) == "/"
    assert criteria_to_url(SearchCriteria(tab="sold", query="goto")) == "/?tab=sold&q=goto"


def test_human_readable_summary():
    criteria = SearchCriteria(
        category="nihonto", itemTypes=["katana"], certifications=["Juyo"], minPrice=1000000
    )

    assert criteria_to_human_readable(criteria) == "Nihonto (blades) · Katana · Juyo · ¥1,000,000+"
    assert criteria_to_human_readable(SearchCriteria()) == "All items"
    assert (
        criteria_to_human_readable(SearchCriteria(dealers=[1, 2]), {1: "Aoi Art"})
        == "from Aoi Art, Dealer #2"
    )
    assert criteria_to_human_readable(SearchCriteria(query="goto price>=100", tab="sold")) == '"goto" · (sold items)'


def test_generate_search_name():
    assert generate_search_name(SearchCriteria(itemTypes=["katana", "tanto", "tachi"])) == "Katana, Tanto +1 more"
    assert generate_search_name(SearchCriteria(certifications=["Juyo", "Tokuju", "Hozon"])) == "Juyo, Tokuju"
    assert generate_search_name(SearchCriteria(category="tosogu")) == "All Tosogu"
    assert generate_search_name(SearchCriteria()) == "Custom search"


def test_criteria_equal_ignores_list_order():
    a = SearchCriteria(itemTypes=["katana", "tanto"], dealers=[1, 2])
    b = SearchCriteria(itemTypes=["tanto", "katana"], dealers=[2, 1])

    assert criteria_equal(a, b)
    assert not criteria_equal(a, SearchCriteria(itemTypes=["katana"]))


def test_semantic_query_extracts_filters():
    parsed = parse_semantic_query("Tanto Juyo Goto")

    assert parsed.filters.certifications == ["Juyo"]
    assert parsed.filters.item_types == ["tanto"]
    assert parsed.remaining_terms == ["goto"]


def test_multi_word_certification_wins_over_single_word():
    parsed = parse_semantic_query("tokubetsu juyo katana")

    assert parsed.filters.certifications == ["Tokuju"]
    assert parsed.filters.item_types == ["katana"]


def test_signature_province_and_category_terms():
    parsed = parse_semantic_query("mumei Sōshu fittings")

    assert parsed.filters.signature_statuses == ["unsigned"]
    assert parsed.filters.provinces == ["Soshu"]
    assert parsed.filters.item_types == TOSOGU_TYPES
    assert parsed.remaining_terms == []


def test_numeric_filters():
    filters, words = parse_numeric_filters("price>=500000 nagasa<70 masamune")

    assert filters == [("price_value", "gte", 500000.0), ("nagasa_cm", "lt", 70.0)]
    assert words == ["masamune"]


def test_spaced_comparisons_survive_query_parsing():
    parsed = parse_semantic_query("juyo nagasa < 70")

    assert parsed.filters.certifications == ["Juyo"]
    assert parsed.remaining_terms == ["nagasa<70"]
    filters, words = parse_numeric_filters(" ".join(parsed.remaining_terms))
    assert filters == [("nagasa_cm", "lt", 70.0)]
    assert words == []


def seed_listings(db):
    return {
        "juyo": add_listing(
            db, cert_type="Juyo", school="Osafune", province="Bizen", price_value=2_000_000, price_jpy=2_000_000
        ),
        "tsuba": add_listing(
            db,
            item_type="tsuba",
            cert_type="Hozon",
            price_value=200_000,
            price_jpy=200_000,
            first_seen_at=NOW - timedelta(hours=1),
        ),
        "cheap": add_listing(db, price_value=50_000, price_jpy=50_000),
        "sold": add_listing(db, status="sold", is_available=False, is_sold=True),
        "stand": add_listing(db, item_type="stand"),
        "ask": add_listing(
            db, title="Wakizashi, price on request", price_value=None, price_jpy=None,
            first_seen_at=NOW - timedelta(days=2),
        ),
    }


def matching_ids(db, criteria, **kwargs):
    with db.session() as session:
        return {listing.id for listing in find_matching_listings(session, criteria, **kwargs)}


def test_matcher_applies_status_category_and_price_floor(db):
    ids = seed_listings(db)

    assert matching_ids(db, SearchCriteria(tab="available", category="nihonto")) == {ids["juyo"], ids["ask"]}
    assert matching_ids(db, SearchCriteria(tab="sold", category="nihonto")) == {ids["sold"]}
    assert ids["cheap"] in matching_ids(db, SearchCriteria(tab="available"), min_price_jpy=0)
    assert ids["stand"] not in matching_ids(db, SearchCriteria(tab="available"), min_price_jpy=0)


def test_matcher_filters(db):
    ids = seed_listings(db)

    assert matching_ids(db, SearchCriteria(askOnly=True)) == {ids["ask"]}
    assert matching_ids(db, SearchCriteria(certifications=["Hozon"])) == {ids["tsuba"]}
    assert matching_ids(db, SearchCriteria(minPrice=1_000_000)) == {ids["juyo"]}
    assert matching_ids(db, SearchCriteria(schools=["osafune"])) == {ids["juyo"]}
    assert matching_ids(db, SearchCriteria(), since=NOW - timedelta(hours=3)) == {ids["juyo"], ids["tsuba"]}


def test_matcher_query_terms(db):
    ids = seed_listings(db)

    assert matching_ids(db, SearchCriteria(query="juyo bizen")) == {ids["juyo"]}
    assert matching_ids(db, SearchCriteria(query="osafune")) == {ids["juyo"]}
    assert matching_ids(db, SearchCriteria(query="price>=1000000")) == {ids["juyo"]}
    assert matching_ids(db, SearchCriteria(query="tsuba")) == {ids["tsuba"]}


def test_count_matches_find(db):
    seed_listings(db)
    criteria = SearchCriteria(tab="available")

    with db.session() as session:
        assert count_matching_listings(session, criteria) == len(find_matching_listings(session, criteria))
