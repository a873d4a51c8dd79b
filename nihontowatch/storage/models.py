"""Database models for NihontoWatch."""

import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field, StrictBool
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..utils.helpers import utc_now

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Pydantic Models (for data transfer)
# ============================================================================


class ConsentPreferences(BaseModel):
    """Cookie consent choices per category."""

    essential: StrictBool
    functional: StrictBool
    analytics: StrictBool
    marketing: StrictBool


class ConsentRecord(BaseModel):
    """Consent preferences with the metadata the client submits."""

    preferences: ConsentPreferences
    timestamp: Optional[str] = None
    version: str = "1.0"
    method: Literal["banner", "preferences", "api", "implicit"] = "banner"


class DeleteAccountRequest(BaseModel):
    """GDPR erasure request body."""

    confirmEmail: Optional[str] = None
    reason: Optional[Literal["privacy", "not_using", "switching_service", "other"]] = None
    feedback: Optional[str] = None


class SyncEliteRequest(BaseModel):
    """Elite factor sync request body."""

    artisan_codes: Optional[list[str]] = None
    all: bool = False


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class Dealer(Base):
    """A dealer whose site is scraped for listings."""

    __tablename__ = "dealers"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    name_ja = Column(String)
    domain = Column(String, index=True)
    is_active = Column(Boolean, default=True)

    listings = relationship("Listing", back_populates="dealer")


class Listing(Base):
    """A dealer's for-sale item."""

    __tablename__ = "listings"

    id = Column(Integer, primary_key=True)
    dealer_id = Column(Integer, ForeignKey("dealers.id"), index=True)
    url = Column(String, nullable=False)
    title = Column(String)
    title_en = Column(String)
    description = Column(Text)
    description_en = Column(Text)
    item_type = Column(String, index=True)

    # Status
    status = Column(String, default="available", index=True)
    is_available = Column(Boolean, default=True)
    is_sold = Column(Boolean, default=False)
    admin_hidden = Column(Boolean, default=False)
    is_initial_import = Column(Boolean, default=False)

    # Price
    price_value = Column(Float)
    price_currency = Column(String, default="JPY")
    price_jpy = Column(Float)

    # Attribution
    cert_type = Column(String, index=True)
    smith = Column(String)
    tosogu_maker = Column(String)
    school = Column(String)
    tosogu_school = Column(String)
    era = Column(String)
    province = Column(String)
    mei_type = Column(String)
    signature_status = Column(String)

    # Measurements
    nagasa_cm = Column(Float)
    sori_cm = Column(Float)
    motohaba_cm = Column(Float)
    height_cm = Column(Float)
    width_cm = Column(Float)

    images = Column(JSON)

    # Artisan match
    artisan_id = Column(String, index=True)
    artisan_confidence = Column(String)
    artisan_elite_factor = Column(Float)
    artisan_elite_count = Column(Integer)

    featured_score = Column(Float, index=True)

    first_seen_at = Column(DateTime, default=utc_now, index=True)
    last_scraped_at = Column(DateTime, default=utc_now)

    dealer = relationship("Dealer", back_populates="listings")


class PriceHistory(Base):
    """Price and status changes detected by the scraper."""

    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True, nullable=False)
    old_price = Column(Float)
    new_price = Column(Float)
    old_currency = Column(String)
    new_currency = Column(String)
    change_type = Column(String, index=True)  # increase, decrease, status_change, new
    old_status = Column(String)
    new_status = Column(String)
    detected_at = Column(DateTime, default=utc_now, index=True)


class Profile(Base):
    """A signed-up user."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, index=True)
    display_name = Column(String)
    role = Column(String, default="user")
    preferences = Column(JSON)

    consent_preferences = Column(JSON)
    consent_updated_at = Column(String)
    marketing_opt_out = Column(Boolean, default=False)

    stripe_subscription_id = Column(String)
    subscription_status = Column(String)

    created_at = Column(DateTime, default=utc_now)


class UserFavorite(Base):
    """A listing saved to a user's favorites."""

    __tablename__ = "user_favorites"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("profiles.id"), index=True, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=utc_now, index=True)


class DealerClick(Base):
    """A click-through from a listing to the dealer's site."""

    __tablename__ = "dealer_clicks"

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True, nullable=False)
    dealer_id = Column(Integer)
    session_id = Column(String)
    created_at = Column(DateTime, default=utc_now, index=True)


class ListingView(Base):
    """A deduplicated listing detail view."""

    __tablename__ = "listing_views"

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True, nullable=False)
    session_id = Column(String)
    user_id = Column(String)
    created_at = Column(DateTime, default=utc_now, index=True)


class ActivityEvent(Base):
    """A raw client activity event."""

    __tablename__ = "activity_events"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, index=True, nullable=False)
    user_id = Column(String, index=True)
    event_type = Column(String, index=True, nullable=False)
    event_data = Column(JSON)
    listing_id = Column(Integer, index=True)
    created_at = Column(DateTime, default=utc_now, index=True)


class UserActivity(Base):
    """Per-user activity rows for the admin dashboard."""

    __tablename__ = "user_activity"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True)
    action_type = Column(String)
    page_path = Column(String)
    listing_id = Column(Integer)
    search_query = Column(String)
    duration_seconds = Column(Integer)
    created_at = Column(DateTime, default=utc_now)


class UserSession(Base):
    """A browser session."""

    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, unique=True, nullable=False)
    user_id = Column(String, index=True)
    started_at = Column(DateTime, default=utc_now)
    ended_at = Column(DateTime)
    total_duration_ms = Column(Integer)
    page_views = Column(Integer, default=0)
    user_agent = Column(String)
    screen_width = Column(Integer)
    screen_height = Column(Integer)
    timezone = Column(String)
    language = Column(String)


class Alert(Base):
    """A per-listing alert (price drop, back in stock)."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("profiles.id"), index=True, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True)
    alert_type = Column(String, index=True)  # price_drop, back_in_stock
    is_active = Column(Boolean, default=True)
    last_triggered_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)


class AlertHistory(Base):
    """Delivery record for an alert."""

    __tablename__ = "alert_history"

    id = Column(Integer, primary_key=True)
    alert_id = Column(Integer, ForeignKey("alerts.id"), index=True, nullable=False)
    triggered_at = Column(DateTime, default=utc_now)
    delivery_status = Column(String)  # sent, failed
    delivery_method = Column(String, default="email")
    error_message = Column(String)


class SavedSearch(Base):
    """Search criteria a user asked to be notified about."""

    __tablename__ = "saved_searches"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), index=True, nullable=False)
    name = Column(String)
    search_criteria = Column(JSON, nullable=False)
    notification_frequency = Column(String, default="daily")  # instant, daily, none
    is_active = Column(Boolean, default=True)
    last_notified_at = Column(DateTime)
    last_match_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utc_now)


class SavedSearchNotification(Base):
    """Delivery record for a saved search digest."""

    __tablename__ = "saved_search_notifications"

    id = Column(Integer, primary_key=True)
    saved_search_id = Column(String, ForeignKey("saved_searches.id"), index=True, nullable=False)
    matched_listing_ids = Column(JSON)
    status = Column(String)  # sent, failed
    error_message = Column(String)
    sent_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)


class ConsentHistory(Base):
    """Audit trail of consent changes. Retained after account deletion."""

    __tablename__ = "user_consent_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True)
    preferences = Column(JSON)
    version = Column(String)
    method = Column(String)
    ip_hash = Column(String)
    created_at = Column(DateTime, default=utc_now)


class DataDeletionRequest(Base):
    """Compliance log of account deletion requests."""

    __tablename__ = "data_deletion_requests"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True)
    email = Column(String)
    reason = Column(String)
    feedback = Column(Text)
    status = Column(String, default="processing")  # processing, completed, failed
    processed_at = Column(DateTime)
    processed_by = Column(String)
    created_at = Column(DateTime, default=utc_now)


class Artisan(Base):
    """Swordsmith or fittings maker from the reference database."""

    __tablename__ = "artisans"

    code = Column(String, primary_key=True)
    entity_type = Column(String, index=True, nullable=False)  # smith, tosogu, school
    name = Column(String)
    school = Column(String)
    province = Column(String)
    era = Column(String)

    # Designation counts (deduplicated per object)
    kokuho_count = Column(Integer, default=0)
    jubun_count = Column(Integer, default=0)
    jubi_count = Column(Integer, default=0)
    gyobutsu_count = Column(Integer, default=0)
    tokuju_count = Column(Integer, default=0)
    juyo_count = Column(Integer, default=0)

    total_items = Column(Integer, default=0)
    elite_count = Column(Integer, default=0)
    elite_factor = Column(Float, default=0.0, index=True)
    toko_taikan = Column(Integer)
    provenance_factor = Column(Float)

    provenance = relationship("ArtisanProvenance", back_populates="artisan")


class ArtisanProvenance(Base):
    """Documented owners (denrai) of an artisan's works, grouped by family."""

    __tablename__ = "artisan_provenance"

    id = Column(Integer, primary_key=True)
    artisan_code = Column(String, ForeignKey("artisans.code"), index=True, nullable=False)
    parent = Column(String, nullable=False)  # canonical family or owner name
    owner = Column(String, nullable=False)
    count = Column(Integer, default=1)

    artisan = relationship("Artisan", back_populates="provenance")
