from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from nihontowatch.storage.models import ActivityEvent, UserActivity, UserSession
from nihontowatch.tracking.events import (
    filter_valid_events,
    map_event_type_to_action_type,
    parse_timestamp,
    validate_event,
    validate_payload,
)
from nihontowatch.tracking.rate_limiter import RateLimiter
from nihontowatch.tracking.store import (
    end_session,
    record_events,
    start_session,
    validate_session_payload,
)

from conftest import NOW

SESSION = "sess_abc123"


def event(type_, **fields):
    values = {"type": type_, "timestamp": NOW.isoformat(), "sessionId": SESSION}
    values.update(fields)
    return values


def test_rate_limiter_fixed_window():
    limiter = RateLimiter(max_requests=2, window_seconds=60)

    assert limiter.check("a", now=0)
    assert limiter.check("a", now=1)
    assert not limiter.check("a", now=2)
    assert limiter.check("b", now=2)
    # Window resets once it has expired
    assert limiter.check("a", now=61)


def test_rate_limiter_cleanup():
    limiter = RateLimiter(max_requests=5, window_seconds=10)
    limiter.check("a", now=0)
    limiter.check("b", now=8)

    assert limiter.cleanup(now=12) == 1
    assert len(limiter) == 1


def test_payload_validation():
    assert validate_payload({"sessionId": SESSION, "events": []})
    assert not validate_payload({"sessionId": "abc", "events": []})
    assert not validate_payload({"sessionId": SESSION, "events": "nope"})
    assert not validate_payload({"sessionId": SESSION, "events": [{}] * 101})
    assert not validate_payload(["not", "a", "dict"])


def test_event_validation_by_type():
    assert validate_event(event("page_view", path="/browse"), now=NOW)
    assert not validate_event(event("page_view"), now=NOW)
    assert validate_event(event("listing_view", listingId=5, durationMs=0), now=NOW)
    assert not validate_event(event("listing_view", listingId=5), now=NOW)
    assert validate_event(event("search", query=""), now=NOW)
    assert validate_event(event("viewport_dwell", listingId=5, dwellMs=1200), now=NOW)
    assert validate_event(event("image_pinch_zoom", listingId=5), now=NOW)
    assert not validate_event(event("quickview_open", listingId=0), now=NOW)
    assert not validate_event(event("mystery"), now=NOW)


def test_listing_ids_must_be_finite_integers():
    assert validate_event(event("favorite_add", listingId=3.0), now=NOW)
    assert not validate_event(event("favorite_add", listingId=float("nan")), now=NOW)
    assert not validate_event(event("favorite_add", listingId=float("inf")), now=NOW)
    assert not validate_event(event("favorite_add", listingId=3.5), now=NOW)
    assert not validate_event(event("favorite_add", listingId=True), now=NOW)
    assert not validate_event(event("listing_view", listingId=5, durationMs=float("nan")), now=NOW)


def test_event_timestamp_window():
    stale = event("page_view", path="/", timestamp=(NOW - timedelta(hours=25)).isoformat())
    future = event("page_view", path="/", timestamp=(NOW + timedelta(minutes=5)).isoformat())
    skewed = event("page_view", path="/", timestamp=(NOW + timedelta(seconds=30)).isoformat())

    assert not validate_event(stale, now=NOW)
    assert not validate_event(future, now=NOW)
    assert validate_event(skewed, now=NOW)


def test_parse_timestamp_formats():
    assert parse_timestamp("2025-06-01T12:00:00Z") == NOW
    assert parse_timestamp("2025-06-01T21:00:00+09:00") == NOW
    assert parse_timestamp(int((NOW - datetime(1970, 1, 1)).total_seconds() * 1000)) == NOW
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_filter_drops_invalid_events():
    events = [event("page_view", path="/"), event("page_view"), "junk"]

    assert len(filter_valid_events(events, now=NOW)) == 1


def test_action_type_mapping():
    assert map_event_type_to_action_type("favorite_add") == "favorite"
    assert map_event_type_to_action_type("viewport_dwell") == "view"


def test_record_events_for_signed_in_user(db):
    events = [
        event("listing_view", listingId=7, durationMs=2600),
        event("search", query="juyo katana"),
    ]

    assert record_events(db, events, SESSION, "user-1")

    with db.session() as session:
        rows = session.query(ActivityEvent).order_by(ActivityEvent.id).all()
        assert [r.event_type for r in rows] == ["listing_view", "search"]
        assert rows[0].listing_id == 7
        assert rows[0].event_data == {"listingId": 7, "durationMs": 2600}
        assert rows[1].listing_id is None

        activity = session.query(UserActivity).order_by(UserActivity.id).all()
        assert [a.action_type for a in activity] == ["view", "search"]
        assert activity[0].duration_seconds == 3
        assert activity[1].search_query == "juyo katana"


def test_record_events_for_anonymous_user(db):
    assert record_events(db, [event("page_view", path="/")], SESSION, None)

    with db.session() as session:
        assert session.query(ActivityEvent).count() == 1
        assert session.query(UserActivity).count() == 0


def test_record_events_drops_unusable_listing_ids(db):
    assert record_events(db, [event("quickview_open", listingId=float("nan"))], SESSION, None)

    with db.session() as session:
        assert session.query(ActivityEvent).one().listing_id is None


def test_record_events_logs_storage_failures(db, monkeypatch):
    def unavailable():
        raise OperationalError("INSERT INTO activity_events", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "session", unavailable)

    assert record_events(db, [event("page_view", path="/")], SESSION, "user-1") is False


def test_session_ignores_non_finite_dimensions(db):
    body = {"action": "create", "sessionId": SESSION, "screenWidth": float("nan"), "screenHeight": 900}
    start_session(db, body)

    with db.session() as session:
        row = session.query(UserSession).one()
        assert row.screen_width is None
        assert row.screen_height == 900


def test_session_lifecycle(db):
    assert validate_session_payload({"action": "create", "sessionId": SESSION})
    assert not validate_session_payload({"action": "pause", "sessionId": SESSION})
    assert not validate_session_payload({"action": "create", "sessionId": ""})

    body = {"action": "create", "sessionId": SESSION, "screenWidth": 1440, "language": "ja"}
    assert start_session(db, body) == {"success": True, "sessionId": SESSION}
    assert start_session(db, body) == {"success": True, "sessionId": SESSION, "existing": True}

    end_session(
        db,
        {
            "action": "end",
            "sessionId": SESSION,
            "endedAt": "2025-06-01T12:30:00Z",
            "totalDurationMs": 1800000,
            "pageViews": 12,
        },
    )

    with db.session() as session:
        row = session.query(UserSession).one()
        assert row.screen_width == 1440
        assert row.ended_at == datetime(2025, 6, 1, 12, 30)
        assert row.total_duration_ms == 1800000
        assert row.page_views == 12
