"""Job coordination for NihontoWatch."""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..alerts.notifier import DeliveryResult, Notification, Notifier, build_notifier
from ..alerts.templates import (
    back_in_stock_email,
    price_drop_email,
    saved_search_email,
    search_results_url,
)
from ..alerts.unsubscribe import get_unsubscribe_url
from ..analytics.market import calculate_percent_change
from ..savedsearches.criteria import (
    SearchCriteria,
    criteria_to_human_readable,
    criteria_to_url,
)
from ..savedsearches.matcher import (
    excluded_type_filter,
    find_matching_listings,
    item_type_filter,
    price_floor_filter,
    status_filter,
)
from ..scoring.elite import (
    ALL_DESIGNATIONS,
    compute_elite_factor,
    designation_totals,
    percentile_rank,
)
from ..scoring.featured import (
    HEAT_MAX,
    IGNORE_ARTISAN_IDS,
    HeatCounts,
    compute_featured_score,
    compute_heat,
    compute_score_breakdown,
    heat_items,
    image_count,
)
from ..scoring.provenance import compute_provenance_analysis, group_provenance_rows
from ..storage.database import Database
from ..storage.models import (
    Alert,
    AlertHistory,
    Artisan,
    ArtisanProvenance,
    Dealer,
    Listing,
    PriceHistory,
    Profile,
    SavedSearch,
    SavedSearchNotification,
)
from ..utils.config import get_config, get_settings
from ..utils.constants import MIN_PRICE_JPY, expand_cert_variants, types_for_category
from ..utils.helpers import round_to, utc_now

SAVED_SEARCH_FREQUENCIES = ("instant", "daily")
SYNC_CHUNK = 500


def _chunks(items: List, size: int) -> Iterable[List]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _number(value: float) -> str:
    """Render 157.0 as "157" in formula strings."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class JobCoordinator:
    """Coordinates scoring, alerting, and artisan sync jobs."""

    def __init__(
        self,
        config: Optional[Dict] = None,
        db: Optional[Database] = None,
        notifier: Optional[Notifier] = None,
        unsubscribe_secret: Optional[str] = None,
    ):
        """Initialize job coordinator.

        Args:
            config: Optional configuration dictionary
            db: Database to use instead of the configured one
            notifier: Delivery channel to use instead of the configured one
            unsubscribe_secret: Secret for unsubscribe links in emails
        """
        if config is None:
            config = get_config().model_dump()

        self.config = config
        self.settings = get_settings()

        if db is None:
            db_url = config.get("database", {}).get("url", "sqlite:///data/db/nihontowatch.db")
            db = Database(db_url)
        self.db = db

        if notifier is None:
            notifier = build_notifier(config.get("alerts", {}), self.settings)
        self.notifier = notifier

        if unsubscribe_secret is None:
            unsubscribe_secret = self.settings.unsubscribe_secret or self.settings.cron_secret
        self.unsubscribe_secret = unsubscribe_secret

        self.scoring = config.get("scoring", {})
        self.alerts = config.get("alerts", {})
        self.site_url = config.get("site", {}).get("base_url", "https://nihontowatch.com").rstrip("/")

    # ------------------------------------------------------------------
    # Featured scores
    # ------------------------------------------------------------------

    def _heat_since(self, now: datetime) -> datetime:
        return now - timedelta(days=self.scoring.get("heat_window_days", 30))

    async def compute_featured_scores(self, now: Optional[datetime] = None) -> Dict:
        """Recompute featured scores for every available listing.

        Heat counts are loaded once for the whole run. Listings are paged by
        id and written back in update batches. Listings without images score 0.

        Returns:
            Dictionary with totalProcessed, totalUpdated, totalZeroed and durationMs
        """
        started = time.monotonic()
        now = now or utc_now()
        page_size = self.scoring.get("page_size", 1000)
        update_batch = self.scoring.get("update_batch", 500)

        with self.db.session() as session:
            heat = self.db.heat_counts(session, self._heat_since(now))
        logger.info(f"Loaded heat counts for {len(heat)} listings")

        total_processed = 0
        total_updated = 0
        total_zeroed = 0
        offset = 0

        while True:
            updates: List[Tuple[int, float]] = []
            with self.db.session() as session:
                listings = (
                    session.query(Listing)
                    .filter(Listing.is_available.is_(True))
                    .order_by(Listing.id)
                    .offset(offset)
                    .limit(page_size)
                    .all()
                )
                for listing in listings:
                    if image_count(listing) == 0:
                        updates.append((listing.id, 0))
                        total_zeroed += 1
                        continue
                    counts = HeatCounts(**heat.get(listing.id, {}))
                    updates.append(
                        (listing.id, compute_featured_score(listing, compute_heat(counts), now))
                    )

            if not listings:
                break

            for batch in _chunks(updates, update_batch):
                total_updated += self.db.update_featured_scores(batch)

            total_processed += len(listings)
            if len(listings) < page_size:
                break
            offset += page_size

        try:
            self.db.zero_unavailable_scores()
        except Exception as e:
            logger.error(f"Error zeroing non-available listings: {e}")

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Featured scores complete: {total_processed} processed, "
            f"{total_updated} updated, {total_zeroed} zeroed in {duration_ms}ms"
        )
        return {
            "totalProcessed": total_processed,
            "totalUpdated": total_updated,
            "totalZeroed": total_zeroed,
            "durationMs": duration_ms,
        }

    def _listing_heat(self, session: Session, listing_id: int, now: datetime) -> HeatCounts:
        counts = self.db.heat_counts(session, self._heat_since(now), [listing_id])
        return HeatCounts(**counts.get(listing_id, {}))

    def recompute_listing_score(
        self,
        listing_id: int,
        sync_elite: bool = False,
        artisan_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """Recompute and store one listing's featured score.

        Args:
            listing_id: Listing to score
            sync_elite: Copy elite stats from the artisan table first
            artisan_id: Artisan to sync from (defaults to the listing's own)
            now: Reference time for freshness and the heat window

        Returns:
            New score, or None if the listing does not exist
        """
        now = now or utc_now()
        with self.db.session() as session:
            listing = session.get(Listing, listing_id)
            if listing is None:
                return None

            if sync_elite:
                code = artisan_id or listing.artisan_id
                artisan = (
                    session.get(Artisan, code) if code and code not in IGNORE_ARTISAN_IDS else None
                )
                listing.artisan_elite_factor = artisan.elite_factor if artisan else 0
                listing.artisan_elite_count = artisan.elite_count if artisan else 0

            counts = self._listing_heat(session, listing_id, now)
            score = compute_featured_score(listing, compute_heat(counts), now)
            listing.featured_score = score

        logger.debug(f"Recomputed featured score for listing {listing_id}: {score}")
        return score

    def _feed_rank(
        self,
        session: Session,
        stored_score: float,
        tab: str,
        category: str,
        cert: Optional[str],
        dealer: Optional[str],
    ) -> Tuple[int, int]:
        """Position of a score in the browse feed under the given filters."""
        filters = [Listing.admin_hidden.is_(False), excluded_type_filter()]
        if tab in ("available", "sold"):
            filters.append(status_filter(tab))
        item_types = types_for_category(category)
        if item_types:
            filters.append(item_type_filter(item_types))
        if cert:
            filters.append(Listing.cert_type.in_(expand_cert_variants(cert.split(","))))
        if dealer:
            dealer_ids = [int(d) for d in dealer.split(",") if d.strip().isdigit()]
            filters.append(Listing.dealer_id.in_(dealer_ids))
        if MIN_PRICE_JPY > 0:
            filters.append(price_floor_filter(MIN_PRICE_JPY))

        above = (
            session.query(func.count(Listing.id))
            .filter(Listing.featured_score > stored_score, *filters)
            .scalar()
        )
        total = (
            session.query(func.count(Listing.id))
            .filter(Listing.featured_score.isnot(None), *filters)
            .scalar()
        )
        return (above or 0) + 1, total or 0

    def score_breakdown(
        self,
        listing_id: int,
        tab: str = "available",
        category: str = "nihonto",
        cert: Optional[str] = None,
        dealer: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Dict]:
        """Diagnostic breakdown of a listing's featured score.

        Returns:
            Dictionary with breakdown, heat, score, rank and formula, or None
            if the listing does not exist
        """
        now = now or utc_now()
        with self.db.session() as session:
            listing = session.get(Listing, listing_id)
            if listing is None:
                return None

            breakdown = compute_score_breakdown(listing, now)
            counts = self._listing_heat(session, listing_id, now)
            items = heat_items(counts)
            heat_total = sum(item["contribution"] for item in items)

            multiplier = breakdown.freshness["multiplier"]
            computed = (
                round_to((breakdown.quality_total + heat_total) * multiplier, 2)
                if breakdown.has_images
                else 0
            )
            stored = listing.featured_score

            rank = None
            if stored is not None:
                try:
                    position, total = self._feed_rank(session, stored, tab, category, cert, dealer)
                    rank = {
                        "position": position,
                        "total": total,
                        "filters": {"tab": tab, "category": category, "cert": cert, "dealer": dealer},
                    }
                except Exception as e:
                    logger.error(f"Rank query failed for listing {listing_id}: {e}")

        return {
            "listingId": listing_id,
            "breakdown": breakdown.to_dict(),
            "heat": {"total": heat_total, "max": HEAT_MAX, "items": items},
            "score": {
                "computed": computed,
                "stored": stored,
                "stale": stored is not None and abs(computed - stored) > 0.01,
                "hasImages": breakdown.has_images,
            },
            "rank": rank,
            "formula": {
                "expression": f"({_number(breakdown.quality_total)} + {_number(heat_total)}) × {_number(multiplier)}",
                "result": computed,
            },
        }

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _in_cooldown(self, last_triggered_at: Optional[datetime], now: datetime) -> bool:
        if last_triggered_at is None:
            return False
        return now < last_triggered_at + timedelta(hours=self.alerts.get("cooldown_hours", 24))

    @staticmethod
    def _user_emails(session: Session, user_ids: Iterable[str]) -> Dict[str, str]:
        profiles = session.query(Profile.id, Profile.email).filter(Profile.id.in_(list(user_ids)))
        return {user_id: email for user_id, email in profiles if email}

    def _unsubscribe_url(
        self, user_id: str, email: str, type: str, saved_search_id: Optional[str] = None
    ) -> Optional[str]:
        if not self.unsubscribe_secret:
            return None
        return get_unsubscribe_url(
            self.site_url, self.unsubscribe_secret, user_id, email, type, saved_search_id
        )

    async def _send_batch(self, notifications: List[Notification]) -> List[DeliveryResult]:
        """Send a batch concurrently. Exceptions become failed results."""
        results = await asyncio.gather(
            *[self.notifier.send(n) for n in notifications], return_exceptions=True
        )
        delivered = []
        for result in results:
            if isinstance(result, Exception):
                delivered.append(DeliveryResult(success=False, error=str(result)))
            else:
                delivered.append(result)
        return delivered

    async def _deliver_alerts(
        self,
        session: Session,
        prepared: List[Tuple[Alert, Notification]],
        now: datetime,
    ) -> Tuple[int, int]:
        """Send alert emails in batches and record each delivery.

        Returns:
            (notifications sent, errors)
        """
        sent = 0
        errors = 0
        for batch in _chunks(prepared, self.alerts.get("batch_size", 20)):
            results = await self._send_batch([notification for _, notification in batch])
            for (alert, notification), result in zip(batch, results):
                history = AlertHistory(
                    alert_id=alert.id,
                    triggered_at=now,
                    delivery_method="email",
                )
                if result.success:
                    sent += 1
                    alert.last_triggered_at = now
                    history.delivery_status = "sent"
                    logger.info(f"Sent {alert.alert_type} notification for alert {alert.id} to {notification.to}")
                else:
                    errors += 1
                    history.delivery_status = "failed"
                    history.error_message = result.error
                    logger.error(f"Failed to send notification for alert {alert.id}: {result.error}")
                session.add(history)
        return sent, errors

    def _lookback(self, now: datetime) -> datetime:
        return now - timedelta(minutes=self.alerts.get("lookback_minutes", 20))

    def _eligible_alerts(
        self, session: Session, alert_type: str, listing_ids: Iterable[int], now: datetime
    ) -> Tuple[List[Alert], List[Alert]]:
        alerts = (
            session.query(Alert)
            .filter(
                Alert.alert_type == alert_type,
                Alert.is_active.is_(True),
                Alert.listing_id.in_(list(listing_ids)),
            )
            .all()
        )
        eligible = [a for a in alerts if not self._in_cooldown(a.last_triggered_at, now)]
        return alerts, eligible

    async def process_price_alerts(self, now: Optional[datetime] = None) -> Dict:
        """Notify users whose watched listings dropped in price.

        Uses price_history decreases inside the lookback window, the latest
        change per listing, and active price_drop alerts outside cooldown.
        """
        now = now or utc_now()
        since = self._lookback(now)
        logger.info(f"Processing price drop alerts since {since.isoformat()}")

        with self.db.session() as session:
            changes = (
                session.query(PriceHistory)
                .filter(PriceHistory.change_type == "decrease", PriceHistory.detected_at >= since)
                .all()
            )
            if not changes:
                return {"message": "No recent price decreases found", "processed": 0, "notificationsSent": 0}

            latest: Dict[int, PriceHistory] = {}
            for change in changes:
                current = latest.get(change.listing_id)
                if current is None or change.detected_at > current.detected_at:
                    latest[change.listing_id] = change

            alerts, eligible = self._eligible_alerts(session, "price_drop", latest, now)
            if not alerts:
                return {
                    "message": "No active price_drop alerts for changed listings",
                    "priceChangesFound": len(changes),
                    "processed": 0,
                    "notificationsSent": 0,
                }
            if not eligible:
                return {
                    "message": "All alerts are within cooldown period",
                    "totalAlerts": len(alerts),
                    "processed": 0,
                    "notificationsSent": 0,
                }

            emails = self._user_emails(session, {a.user_id for a in eligible})
            listings = {
                listing.id: listing
                for listing in session.query(Listing)
                .options(joinedload(Listing.dealer))
                .filter(Listing.id.in_(list({a.listing_id for a in eligible})))
            }

            prepared = []
            for alert in eligible:
                email = emails.get(alert.user_id)
                if not email:
                    logger.warning(f"No email for user {alert.user_id}")
                    continue
                listing = listings.get(alert.listing_id)
                if listing is None:
                    logger.warning(f"No listing found for alert {alert.id}")
                    continue

                change = latest[alert.listing_id]
                old_price = change.old_price or 0
                new_price = change.new_price or 0
                prepared.append(
                    (
                        alert,
                        price_drop_email(
                            email,
                            listing,
                            old_price,
                            new_price,
                            calculate_percent_change(old_price, new_price),
                            self.site_url,
                            self._unsubscribe_url(alert.user_id, email, "all"),
                        ),
                    )
                )

            sent, errors = await self._deliver_alerts(session, prepared, now)

        return {
            "message": f"Processed {len(prepared)} price drop alerts",
            "priceChangesFound": len(changes),
            "alertsFound": len(alerts),
            "eligibleAfterCooldown": len(eligible),
            "processed": len(prepared),
            "notificationsSent": sent,
            "errors": errors,
        }

    async def process_stock_alerts(self, now: Optional[datetime] = None) -> Dict:
        """Notify users whose watched listings are available again."""
        now = now or utc_now()
        since = self._lookback(now)
        logger.info(f"Processing back-in-stock alerts since {since.isoformat()}")

        with self.db.session() as session:
            changed_ids = {
                listing_id
                for (listing_id,) in session.query(PriceHistory.listing_id).filter(
                    PriceHistory.change_type == "status_change", PriceHistory.detected_at >= since
                )
            }
            if not changed_ids:
                return {"message": "No recent status changes found", "processed": 0, "notificationsSent": 0}

            available = {
                listing.id: listing
                for listing in session.query(Listing)
                .options(joinedload(Listing.dealer))
                .filter(Listing.id.in_(list(changed_ids)), status_filter("available"))
            }
            if not available:
                return {
                    "message": "No listings became available (status changes were to sold/unavailable)",
                    "statusChangesFound": len(changed_ids),
                    "processed": 0,
                    "notificationsSent": 0,
                }

            alerts, eligible = self._eligible_alerts(session, "back_in_stock", available, now)
            if not alerts:
                return {
                    "message": "No active back_in_stock alerts for available listings",
                    "listingsNowAvailable": len(available),
                    "processed": 0,
                    "notificationsSent": 0,
                }
            if not eligible:
                return {
                    "message": "All alerts are within cooldown period",
                    "totalAlerts": len(alerts),
                    "processed": 0,
                    "notificationsSent": 0,
                }

            emails = self._user_emails(session, {a.user_id for a in eligible})
            prepared = []
            for alert in eligible:
                email = emails.get(alert.user_id)
                if not email:
                    logger.warning(f"No email for user {alert.user_id}")
                    continue
                prepared.append(
                    (
                        alert,
                        back_in_stock_email(
                            email,
                            available[alert.listing_id],
                            self.site_url,
                            self._unsubscribe_url(alert.user_id, email, "all"),
                        ),
                    )
                )

            sent, errors = await self._deliver_alerts(session, prepared, now)

        return {
            "message": f"Processed {len(prepared)} back-in-stock alerts",
            "statusChangesFound": len(changed_ids),
            "listingsNowAvailable": len(available),
            "alertsFound": len(alerts),
            "eligibleAfterCooldown": len(eligible),
            "processed": len(prepared),
            "notificationsSent": sent,
            "errors": errors,
        }

    # ------------------------------------------------------------------
    # Saved searches
    # ------------------------------------------------------------------

    def _saved_search_lookback(self, frequency: str, now: datetime) -> datetime:
        if frequency == "instant":
            return self._lookback(now)
        return now - timedelta(hours=self.alerts.get("daily_lookback_hours", 25))

    async def process_saved_searches(self, frequency: str, now: Optional[datetime] = None) -> Dict:
        """Send new-match notifications for saved searches.

        Each search looks for listings first seen since its last notification
        (or the lookback window for new searches). Searches without matches
        still have last_notified_at advanced.

        Args:
            frequency: "instant" or "daily"
            now: Reference time

        Raises:
            ValueError: If the frequency is not instant or daily
        """
        if frequency not in SAVED_SEARCH_FREQUENCIES:
            raise ValueError('Invalid frequency. Must be "instant" or "daily".')

        now = now or utc_now()
        lookback = self._saved_search_lookback(frequency, now)
        max_matches = self.alerts.get("max_saved_search_matches", 50)

        with self.db.session() as session:
            searches = (
                session.query(SavedSearch)
                .filter(
                    SavedSearch.notification_frequency == frequency,
                    SavedSearch.is_active.is_(True),
                )
                .all()
            )
            if not searches:
                return {
                    "message": f"No active saved searches with {frequency} notifications",
                    "processed": 0,
                    "notificationsSent": 0,
                }

            logger.info(f"Processing {len(searches)} saved searches for {frequency} notifications")
            emails = self._user_emails(session, {s.user_id for s in searches})
            dealer_names = dict(session.query(Dealer.id, Dealer.name))

            processed = 0
            sent = 0
            errors = 0

            for batch in _chunks(searches, self.alerts.get("batch_size", 20)):
                prepared = []
                for search in batch:
                    try:
                        email = emails.get(search.user_id)
                        if not email:
                            logger.warning(f"No email for user {search.user_id}")
                            continue

                        criteria = SearchCriteria.model_validate(search.search_criteria or {})
                        matches = find_matching_listings(
                            session,
                            criteria,
                            since=search.last_notified_at or lookback,
                            limit=max_matches,
                        )
                        processed += 1

                        if not matches:
                            search.last_notified_at = now
                            search.last_match_count = 0
                            continue

                        notification = saved_search_email(
                            email,
                            search.name,
                            matches,
                            frequency,
                            criteria_to_human_readable(criteria, dealer_names),
                            search_results_url(
                                self.site_url, criteria_to_url(criteria), [m.id for m in matches]
                            ),
                            self.site_url,
                            self._unsubscribe_url(search.user_id, email, "saved_search", search.id),
                            self._unsubscribe_url(search.user_id, email, "all"),
                        )
                        prepared.append((search, matches, notification))
                    except Exception as e:
                        errors += 1
                        logger.error(f"Error processing saved search {search.id}: {e}")

                results = await self._send_batch([n for _, _, n in prepared])
                for (search, matches, _), result in zip(prepared, results):
                    matched_ids = [m.id for m in matches]
                    if result.success:
                        sent += 1
                        search.last_notified_at = now
                        search.last_match_count = len(matches)
                        session.add(
                            SavedSearchNotification(
                                saved_search_id=search.id,
                                matched_listing_ids=matched_ids,
                                status="sent",
                                sent_at=now,
                            )
                        )
                    else:
                        errors += 1
                        logger.error(f"Failed to send notification for search {search.id}: {result.error}")
                        session.add(
                            SavedSearchNotification(
                                saved_search_id=search.id,
                                matched_listing_ids=matched_ids,
                                status="failed",
                                error_message=result.error,
                            )
                        )

        return {
            "message": f"Processed {processed} saved searches",
            "frequency": frequency,
            "processed": processed,
            "notificationsSent": sent,
            "errors": errors,
        }

    # ------------------------------------------------------------------
    # Artisans
    # ------------------------------------------------------------------

    async def sync_elite_factors(
        self, artisan_codes: Optional[List[str]] = None, sync_all: bool = False
    ) -> Dict:
        """Copy artisan elite stats onto listings.

        Args:
            artisan_codes: Codes to sync
            sync_all: Sync every artisan referenced by a listing

        Returns:
            Dictionary with updated, notFound, errors and duration_ms

        Raises:
            ValueError: If neither codes nor sync_all are given
        """
        started = time.monotonic()

        if sync_all:
            with self.db.session() as session:
                codes = [
                    code
                    for (code,) in session.query(Listing.artisan_id)
                    .filter(Listing.artisan_id.isnot(None))
                    .distinct()
                ]
            logger.info(f"Syncing elite factors for {len(codes)} unique artisans")
        elif artisan_codes:
            codes = list(dict.fromkeys(artisan_codes))
            logger.info(f"Syncing elite factors for {len(codes)} artisans")
        else:
            raise ValueError("Must provide artisan_codes array or all: true")

        stats: Dict[str, Tuple[float, int]] = {}
        for chunk in _chunks(codes, SYNC_CHUNK):
            with self.db.session() as session:
                rows = session.query(Artisan.code, Artisan.elite_factor, Artisan.elite_count).filter(
                    Artisan.code.in_(chunk)
                )
                stats.update({code: (factor, count) for code, factor, count in rows})

        updated = 0
        errors = 0
        for code in codes:
            if code not in stats:
                continue
            factor, count = stats[code]
            try:
                with self.db.session() as session:
                    session.query(Listing).filter(Listing.artisan_id == code).update(
                        {
                            Listing.artisan_elite_factor: factor,
                            Listing.artisan_elite_count: count,
                        },
                        synchronize_session=False,
                    )
                updated += 1
            except Exception as e:
                errors += 1
                logger.error(f"Error updating elite factor for {code}: {e}")

        result = {
            "updated": updated,
            "notFound": len(codes) - len(stats),
            "errors": errors,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        logger.info(f"Elite factor sync complete: {result}")
        return result

    def artisan_profile(self, code: str) -> Optional[Dict]:
        """Artisan ranking statistics.

        Elite percentiles rank against artisans of the same entity type with
        at least one designated work. Toko Taikan percentiles apply to smiths
        only. Provenance percentiles rank against artisans with a factor.

        Returns:
            Profile dictionary, or None if the artisan is unknown
        """
        with self.db.session() as session:
            artisan = session.get(Artisan, code)
            if artisan is None:
                return None

            designations = {f"{d}_count": getattr(artisan, f"{d}_count") or 0 for d in ALL_DESIGNATIONS}
            totals = designation_totals(designations)
            elite_factor = compute_elite_factor(totals["elite_count"], totals["total_items"])

            peers = session.query(func.count(Artisan.code)).filter(
                Artisan.entity_type == artisan.entity_type, Artisan.total_items > 0
            )
            elite_percentile = percentile_rank(
                peers.filter(Artisan.elite_factor < elite_factor).scalar() or 0,
                peers.scalar() or 0,
            )

            toko_percentile = None
            if artisan.entity_type == "smith" and artisan.toko_taikan is not None:
                rated = session.query(func.count(Artisan.code)).filter(
                    Artisan.entity_type == "smith", Artisan.toko_taikan.isnot(None)
                )
                toko_percentile = percentile_rank(
                    rated.filter(Artisan.toko_taikan < artisan.toko_taikan).scalar() or 0,
                    rated.scalar() or 0,
                )

            rows = (
                session.query(ArtisanProvenance)
                .filter(ArtisanProvenance.artisan_code == code)
                .all()
            )
            provenance = compute_provenance_analysis(group_provenance_rows(rows))
            provenance_factor = artisan.provenance_factor
            if provenance_factor is None and provenance is not None:
                provenance_factor = provenance["factor"]

            provenance_percentile = None
            if provenance_factor is not None:
                scored = session.query(func.count(Artisan.code)).filter(
                    Artisan.entity_type == artisan.entity_type,
                    Artisan.provenance_factor.isnot(None),
                )
                provenance_percentile = percentile_rank(
                    scored.filter(Artisan.provenance_factor < provenance_factor).scalar() or 0,
                    scored.scalar() or 0,
                )

            return {
                "code": artisan.code,
                "name": artisan.name,
                "entityType": artisan.entity_type,
                "school": artisan.school,
                "province": artisan.province,
                "era": artisan.era,
                "designations": designations,
                "totalItems": totals["total_items"],
                "eliteCount": totals["elite_count"],
                "eliteFactor": elite_factor,
                "elitePercentile": elite_percentile,
                "tokoTaikan": artisan.toko_taikan,
                "tokoTaikanPercentile": toko_percentile,
                "provenanceFactor": provenance_factor,
                "provenancePercentile": provenance_percentile,
                "provenance": provenance,
            }
