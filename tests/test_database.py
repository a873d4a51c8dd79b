from datetime import datetime, timedelta

import pytest

from nihontowatch.storage import Database
from nihontowatch.storage.models import (
    ActivityEvent,
    DealerClick,
    Listing,
    ListingView,
    Profile,
    UserFavorite,
)


def test_session_rolls_back_on_error():
    db = Database("sqlite:///:memory:")

    with pytest.raises(RuntimeError):
        with db.session() as session:
            session.add(Profile(id="user-1", email="a@b.test"))
            session.flush()
            raise RuntimeError("boom")

    assert db.get_profile("user-1") is None


def test_get_profile_is_usable_after_the_session_closes():
    db = Database("sqlite:///:memory:")
    with db.session() as session:
        session.add(Profile(id="admin-1", email="admin@b.test", role="admin"))

    profile = db.get_profile("admin-1")

    assert profile.role == "admin"


def test_heat_counts_group_events_per_listing():
    db = Database("sqlite:///:memory:")
    now = datetime(2025, 1, 1, 10, 0, 0)
    recent = now - timedelta(days=1)

    with db.session() as session:
        session.add_all(
            [
                UserFavorite(user_id="u", listing_id=1, created_at=recent),
                UserFavorite(user_id="u", listing_id=1, created_at=now - timedelta(days=45)),
                DealerClick(listing_id=1, created_at=recent),
                ListingView(listing_id=2, created_at=recent),
                ActivityEvent(session_id="sess_1", event_type="quickview_open", listing_id=1, created_at=recent),
                ActivityEvent(session_id="sess_1", event_type="image_pinch_zoom", listing_id=2, created_at=recent),
                ActivityEvent(session_id="sess_1", event_type="page_view", listing_id=2, created_at=recent),
            ]
        )

    with db.session() as session:
        counts = db.heat_counts(session, now - timedelta(days=30))
        only_two = db.heat_counts(session, now - timedelta(days=30), [2])

    assert counts[1] == {"favorites": 1, "clicks": 1, "quickviews": 1}
    assert counts[2] == {"views": 1, "pinch_zooms": 1}
    assert set(only_two) == {2}


def test_score_updates_and_zeroing():
    db = Database("sqlite:///:memory:")
    with db.session() as session:
        session.add_all(
            [
                Listing(id=1, url="https://dealer.test/1", is_available=True),
                Listing(id=2, url="https://dealer.test/2", is_available=False, featured_score=80),
            ]
        )

    assert db.update_featured_scores([(1, 42.5)]) == 1
    assert db.update_featured_scores([]) == 0
    assert db.zero_unavailable_scores() == 1
    # Running again finds nothing left to zero
    assert db.zero_unavailable_scores() == 0

    with db.session() as session:
        assert session.get(Listing, 1).featured_score == 42.5
        assert session.get(Listing, 2).featured_score == 0
