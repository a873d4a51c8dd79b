from datetime import datetime

import pytest

from nihontowatch.storage import Database
from nihontowatch.storage.models import Dealer, Listing, Profile

NOW = datetime(2025, 6, 1, 12, 0, 0)


@pytest.fixture
def db():
    return Database("sqlite:///:memory:")


def add_listing(db, **fields):
    """Insert a listing with sensible defaults and return its id."""
    values = {
        "url": "https://dealer.test/item",
        "title": "Katana by Masamune",
        "item_type": "katana",
        "status": "available",
        "is_available": True,
        "is_sold": False,
        "admin_hidden": False,
        "is_initial_import": False,
        "price_value": 1_000_000,
        "price_currency": "JPY",
        "price_jpy": 1_000_000,
        "images": ["a.jpg", "b.jpg"],
        "first_seen_at": NOW,
    }
    values.update(fields)
    with db.session() as session:
        listing = Listing(**values)
        session.add(listing)
        session.flush()
        return listing.id


def add_dealer(db, name="Aoi Art"):
    with db.session() as session:
        dealer = Dealer(name=name, domain="aoijapan.test")
        session.add(dealer)
        session.flush()
        return dealer.id


def add_profile(db, user_id="user-1", email="collector@example.com", **fields):
    with db.session() as session:
        session.add(Profile(id=user_id, email=email, **fields))
    return user_id
