import pytest

from nihontowatch.privacy.account import (
    DeletionRejected,
    apply_unsubscribe,
    delete_account,
    pending_deletion,
    unsubscribe_email,
)
from nihontowatch.privacy.consent import (
    client_ip,
    get_consent,
    hash_ip,
    hash_string,
    revoke_consent,
    save_consent,
)
from nihontowatch.privacy.export import export_user_data
from nihontowatch.storage.models import (
    Alert,
    AlertHistory,
    ConsentHistory,
    ConsentPreferences,
    ConsentRecord,
    DataDeletionRequest,
    DeleteAccountRequest,
    Profile,
    SavedSearch,
    SavedSearchNotification,
    UserActivity,
    UserFavorite,
    UserSession,
)

from conftest import NOW, add_listing, add_profile


def test_hash_string_matches_rolling_hash():
    assert hash_string("") == "0"
    assert hash_string("a") == "61"
    assert hash_string("hello") == "5e918d2"
    assert hash_ip(None) is None
    assert hash_ip("1.2.3.4") == hash_string("nihontowatch_salt_1.2.3.4")


def test_client_ip_header_precedence():
    assert client_ip({"x-forwarded-for": "9.9.9.9, 10.0.0.1", "x-real-ip": "8.8.8.8"}) == "9.9.9.9"
    assert client_ip({"x-real-ip": "8.8.8.8"}) == "8.8.8.8"
    assert client_ip({"x-vercel-forwarded-for": "7.7.7.7"}) == "7.7.7.7"
    assert client_ip({}) is None


def test_consent_preferences_require_booleans():
    with pytest.raises(ValueError):
        ConsentPreferences(essential=True, functional="yes", analytics=False, marketing=False)
    with pytest.raises(ValueError):
        ConsentRecord(
            preferences={"essential": True, "functional": True, "analytics": True, "marketing": True},
            method="carrier-pigeon",
        )


def test_save_and_revoke_consent(db):
    add_profile(db)
    record = ConsentRecord(
        preferences={"essential": True, "functional": True, "analytics": True, "marketing": False},
        method="preferences",
    )

    with db.session() as session:
        saved = save_consent(session, session.get(Profile, "user-1"), record, "1.2.3.4")

    assert saved["version"] == "1.0"
    with db.session() as session:
        consent = get_consent(session, "user-1")
        assert consent["consent"]["analytics"] is True
        assert consent["marketingOptOut"] is True
        history = session.query(ConsentHistory).one()
        assert history.method == "preferences"
        assert history.ip_hash == hash_ip("1.2.3.4")

        revoke_consent(session, session.get(Profile, "user-1"))

    with db.session() as session:
        consent = get_consent(session, "user-1")
        assert consent["consent"] == {
            "essential": True,
            "functional": False,
            "analytics": False,
            "marketing": False,
        }
        methods = [h.method for h in session.query(ConsentHistory).order_by(ConsentHistory.id)]
        assert methods == ["preferences", "api"]
        assert get_consent(session, "nobody") is None


def seed_user_data(db):
    add_profile(db)
    listing_id = add_listing(db)
    with db.session() as session:
        alert = Alert(user_id="user-1", listing_id=listing_id, alert_type="price_drop")
        search = SavedSearch(id="search-1", user_id="user-1", name="Juyo", search_criteria={"certifications": ["Juyo"]})
        session.add_all([alert, search])
        session.flush()
        session.add_all(
            [
                AlertHistory(alert_id=alert.id, delivery_status="sent"),
                SavedSearchNotification(saved_search_id="search-1", status="sent"),
                UserFavorite(user_id="user-1", listing_id=listing_id),
                UserActivity(user_id="user-1", action_type="view", page_path="/"),
                UserSession(session_id="sess_1", user_id="user-1"),
                ConsentHistory(user_id="user-1", method="banner"),
            ]
        )
    return listing_id


def test_export_user_data(db):
    listing_id = seed_user_data(db)

    with db.session() as session:
        data = export_user_data(session, "user-1", now=NOW)

    assert data["exportVersion"] == "1.0"
    assert data["exportedAt"] == NOW.isoformat()
    assert data["profile"]["email"] == "collector@example.com"
    assert data["favorites"][0]["listing_id"] == listing_id
    assert data["alerts"][0]["alert_type"] == "price_drop"
    assert data["savedSearches"][0]["search_criteria"] == {"certifications": ["Juyo"]}
    assert data["consentHistory"][0]["method"] == "banner"
    assert data["activity"][0]["page_path"] == "/"
    assert isinstance(data["profile"]["created_at"], str)


def test_delete_account_erases_user_rows(db):
    seed_user_data(db)

    assert delete_account(db, "user-1", DeleteAccountRequest(confirmEmail="Collector@Example.com"))

    with db.session() as session:
        assert session.get(Profile, "user-1") is None
        assert session.query(Alert).count() == 0
        assert session.query(AlertHistory).count() == 0
        assert session.query(SavedSearch).count() == 0
        assert session.query(SavedSearchNotification).count() == 0
        assert session.query(UserFavorite).count() == 0
        assert session.query(UserActivity).one().user_id is None
        assert session.query(UserSession).one().user_id is None
        assert session.query(ConsentHistory).count() == 1

        request = session.query(DataDeletionRequest).one()
        assert request.status == "completed"
        assert request.processed_by == "system"
        assert pending_deletion(session, "user-1") is None


def test_delete_account_rejections(db):
    add_profile(db, stripe_subscription_id="sub_1", subscription_status="active")

    with pytest.raises(DeletionRejected) as missing:
        delete_account(db, "user-1", DeleteAccountRequest())
    assert missing.value.error == "Email confirmation required"

    with pytest.raises(DeletionRejected) as mismatch:
        delete_account(db, "user-1", DeleteAccountRequest(confirmEmail="other@example.com"))
    assert mismatch.value.error == "Email does not match account email"

    with pytest.raises(DeletionRejected) as subscribed:
        delete_account(db, "user-1", DeleteAccountRequest(confirmEmail="collector@example.com"))
    assert subscribed.value.error == "Active subscription detected"
    assert "cancel your subscription" in subscribed.value.message

    with pytest.raises(LookupError):
        delete_account(db, "ghost", DeleteAccountRequest(confirmEmail="x@y.z"))


def test_pending_deletion(db):
    with db.session() as session:
        session.add(DataDeletionRequest(user_id="user-1", email="a@b.test", status="processing"))

    with db.session() as session:
        pending = pending_deletion(session, "user-1")

    assert pending["status"] == "processing"


def test_apply_unsubscribe_types(db):
    seed_user_data(db)

    with db.session() as session:
        apply_unsubscribe(session, "user-1", "saved_search", "search-1")
    with db.session() as session:
        assert session.get(SavedSearch, "search-1").notification_frequency == "none"
        assert session.get(Profile, "user-1").marketing_opt_out is False

        apply_unsubscribe(session, "user-1", "marketing")
    with db.session() as session:
        assert session.get(Profile, "user-1").marketing_opt_out is True

        with pytest.raises(ValueError, match="Missing saved search ID"):
            apply_unsubscribe(session, "user-1", "saved_search")
        with pytest.raises(ValueError, match="Invalid unsubscribe type"):
            apply_unsubscribe(session, "user-1", "everything")


def test_unsubscribe_by_email(db):
    seed_user_data(db)

    with db.session() as session:
        assert not unsubscribe_email(session, "nobody@example.com")
        assert unsubscribe_email(session, "COLLECTOR@example.com")

    with db.session() as session:
        assert session.get(Profile, "user-1").marketing_opt_out is True
        assert session.get(SavedSearch, "search-1").notification_frequency == "none"
