import asyncio
from datetime import timedelta

import pytest

from nihontowatch.alerts.notifier import DeliveryResult
from nihontowatch.orchestrator import JobCoordinator
from nihontowatch.storage.models import (
    Alert,
    AlertHistory,
    Artisan,
    Listing,
    PriceHistory,
    SavedSearch,
    SavedSearchNotification,
    UserFavorite,
)
from nihontowatch.utils.config import Config

from conftest import NOW, add_listing, add_profile


class FakeNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send(self, notification):
        self.sent.append(notification)
        if self.fail:
            return DeliveryResult(success=False, error="smtp down")
        return DeliveryResult(success=True)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def coordinator(db, notifier):
    return JobCoordinator(Config().model_dump(), db=db, notifier=notifier, unsubscribe_secret="secret")


def run(coro):
    return asyncio.run(coro)


def test_compute_featured_scores(db, coordinator):
    add_profile(db)
    hot = add_listing(db)
    bare = add_listing(db, images=[])
    gone = add_listing(db, is_available=False, status="sold", featured_score=50)
    with db.session() as session:
        session.add(UserFavorite(user_id="user-1", listing_id=hot, created_at=NOW - timedelta(days=1)))
        # Outside the 30 day heat window
        session.add(UserFavorite(user_id="user-1", listing_id=hot, created_at=NOW - timedelta(days=40)))

    result = run(coordinator.compute_featured_scores(now=NOW))

    assert result["totalProcessed"] == 2
    assert result["totalUpdated"] == 2
    assert result["totalZeroed"] == 1
    with db.session() as session:
        # images 6 + price 10, one favorite 15, fresh x1.4
        assert session.get(Listing, hot).featured_score == pytest.approx((16 + 15) * 1.4)
        assert session.get(Listing, bare).featured_score == 0
        assert session.get(Listing, gone).featured_score == 0


def seed_artisan(db, code="MAS590", **fields):
    values = {"entity_type": "smith", "name": "Masamune", "elite_factor": 0.2, "elite_count": 4}
    values.update(fields)
    with db.session() as session:
        session.add(Artisan(code=code, **values))


def test_recompute_listing_score_with_elite_sync(db, coordinator):
    seed_artisan(db)
    listing_id = add_listing(db, artisan_id="MAS590")

    score = coordinator.recompute_listing_score(listing_id, sync_elite=True, now=NOW)

    # 16 completeness + 0.2*200 + sqrt(4)*18
    assert score == pytest.approx(92 * 1.4)
    with db.session() as session:
        listing = session.get(Listing, listing_id)
        assert listing.artisan_elite_factor == 0.2
        assert listing.artisan_elite_count == 4
        assert listing.featured_score == pytest.approx(128.8)

    assert coordinator.recompute_listing_score(9999) is None


def test_score_breakdown(db, coordinator):
    seed_artisan(db)
    listing_id = add_listing(db, artisan_id="MAS590")
    add_listing(db, featured_score=10)
    coordinator.recompute_listing_score(listing_id, sync_elite=True, now=NOW)

    breakdown = coordinator.score_breakdown(listing_id, now=NOW)

    assert breakdown["score"]["computed"] == pytest.approx(128.8)
    assert breakdown["score"]["stale"] is False
    assert breakdown["score"]["hasImages"] is True
    assert breakdown["heat"]["total"] == 0
    assert breakdown["rank"]["position"] == 1
    assert breakdown["rank"]["total"] == 2
    assert breakdown["formula"]["expression"] == "(92 + 0) × 1.4"
    assert coordinator.score_breakdown(9999) is None


def seed_price_drop(db, detected_at):
    add_profile(db)
    listing_id = add_listing(db)
    with db.session() as session:
        session.add(
            PriceHistory(
                listing_id=listing_id,
                old_price=1_200_000,
                new_price=1_000_000,
                change_type="decrease",
                detected_at=detected_at,
            )
        )
        session.add(Alert(user_id="user-1", listing_id=listing_id, alert_type="price_drop"))
    return listing_id


def test_price_drop_alert_is_sent_then_cooled_down(db, coordinator, notifier):
    seed_price_drop(db, NOW - timedelta(minutes=5))

    result = run(coordinator.process_price_alerts(now=NOW))

    assert result["notificationsSent"] == 1
    assert result["errors"] == 0
    assert notifier.sent[0].to == "collector@example.com"
    assert notifier.sent[0].subject == "Price drop: Katana by Masamune (-17%)"
    assert "/api/unsubscribe?token=" in notifier.sent[0].text
    with db.session() as session:
        assert session.query(Alert).one().last_triggered_at == NOW
        assert session.query(AlertHistory).one().delivery_status == "sent"

    again = run(coordinator.process_price_alerts(now=NOW + timedelta(minutes=10)))

    assert again["message"] == "All alerts are within cooldown period"
    assert len(notifier.sent) == 1


def test_price_drop_outside_lookback_is_ignored(db, coordinator, notifier):
    seed_price_drop(db, NOW - timedelta(hours=1))

    result = run(coordinator.process_price_alerts(now=NOW))

    assert result["message"] == "No recent price decreases found"
    assert notifier.sent == []


def test_failed_delivery_is_recorded(db):
    failing = FakeNotifier(fail=True)
    coordinator = JobCoordinator(Config().model_dump(), db=db, notifier=failing, unsubscribe_secret="s")
    seed_price_drop(db, NOW - timedelta(minutes=5))

    result = run(coordinator.process_price_alerts(now=NOW))

    assert result["notificationsSent"] == 0
    assert result["errors"] == 1
    with db.session() as session:
        assert session.query(Alert).one().last_triggered_at is None
        history = session.query(AlertHistory).one()
        assert history.delivery_status == "failed"
        assert history.error_message == "smtp down"


def test_back_in_stock_alerts(db, coordinator, notifier):
    add_profile(db)
    back = add_listing(db)
    sold = add_listing(db, status="sold", is_available=False, is_sold=True)
    with db.session() as session:
        for listing_id in (back, sold):
            session.add(
                PriceHistory(listing_id=listing_id, change_type="status_change", detected_at=NOW - timedelta(minutes=1))
            )
            session.add(Alert(user_id="user-1", listing_id=listing_id, alert_type="back_in_stock"))

    result = run(coordinator.process_stock_alerts(now=NOW))

    assert result["statusChangesFound"] == 2
    assert result["listingsNowAvailable"] == 1
    assert result["notificationsSent"] == 1
    assert notifier.sent[0].subject == "Back in stock: Katana by Masamune"


def test_stock_changes_to_sold_send_nothing(db, coordinator, notifier):
    sold = add_listing(db, status="sold", is_available=False, is_sold=True)
    with db.session() as session:
        session.add(PriceHistory(listing_id=sold, change_type="status_change", detected_at=NOW))

    result = run(coordinator.process_stock_alerts(now=NOW))

    assert result["message"].startswith("No listings became available")
    assert notifier.sent == []


def test_instant_saved_searches(db, coordinator, notifier):
    add_profile(db)
    juyo = add_listing(db, cert_type="Juyo", first_seen_at=NOW - timedelta(minutes=5))
    add_listing(db, cert_type="Hozon", first_seen_at=NOW - timedelta(minutes=5))
    add_listing(db, cert_type="Juyo", first_seen_at=NOW - timedelta(days=2))
    with db.session() as session:
        session.add_all(
            [
                SavedSearch(
                    id="juyo",
                    user_id="user-1",
                    name="Juyo blades",
                    search_criteria={"certifications": ["Juyo"]},
                    notification_frequency="instant",
                ),
                SavedSearch(
                    id="tokuju",
                    user_id="user-1",
                    name="Tokuju",
                    search_criteria={"certifications": ["Tokuju"]},
                    notification_frequency="instant",
                ),
            ]
        )

    result = run(coordinator.process_saved_searches("instant", now=NOW))

    assert result["processed"] == 2
    assert result["notificationsSent"] == 1
    assert notifier.sent[0].subject == "1 new match for Juyo blades"
    with db.session() as session:
        juyo_search = session.get(SavedSearch, "juyo")
        assert juyo_search.last_notified_at == NOW
        assert juyo_search.last_match_count == 1
        empty_search = session.get(SavedSearch, "tokuju")
        assert empty_search.last_notified_at == NOW
        assert empty_search.last_match_count == 0
        notification = session.query(SavedSearchNotification).one()
        assert notification.status == "sent"
        assert notification.matched_listing_ids == [juyo]


def test_saved_search_frequency_validation(coordinator):
    with pytest.raises(ValueError):
        run(coordinator.process_saved_searches("weekly"))

    result = run(coordinator.process_saved_searches("daily", now=NOW))
    assert result["message"] == "No active saved searches with daily notifications"


def test_sync_elite_factors(db, coordinator):
    seed_artisan(db)
    synced = add_listing(db, artisan_id="MAS590")
    add_listing(db, artisan_id="GHOST1")

    result = run(coordinator.sync_elite_factors(sync_all=True))

    assert result["updated"] == 1
    assert result["notFound"] == 1
    with db.session() as session:
        assert session.get(Listing, synced).artisan_elite_factor == 0.2

    by_code = run(coordinator.sync_elite_factors(["MAS590", "MAS590"]))
    assert by_code["updated"] == 1
    assert by_code["notFound"] == 0

    with pytest.raises(ValueError):
        run(coordinator.sync_elite_factors())


def test_artisan_profile(db, coordinator):
    seed_artisan(
        db,
        kokuho_count=1,
        tokuju_count=2,
        juyo_count=10,
        total_items=13,
        elite_count=3,
        elite_factor=0.1739,
        toko_taikan=3000,
    )
    seed_artisan(db, code="SUK1", name="Sukehiro", total_items=5, elite_factor=0.05, toko_taikan=2000)

    profile = coordinator.artisan_profile("MAS590")

    assert profile["eliteCount"] == 3
    assert profile["totalItems"] == 13
    assert profile["eliteFactor"] == 0.1739
    assert profile["elitePercentile"] == 50
    assert profile["tokoTaikanPercentile"] == 50
    assert profile["provenance"] is None
    assert profile["provenanceFactor"] is None
    assert coordinator.artisan_profile("NOPE") is None
