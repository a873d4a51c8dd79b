"""GDPR data export for the signed-in user."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..storage.models import (
    Alert,
    ConsentHistory,
    Profile,
    SavedSearch,
    UserActivity,
    UserFavorite,
)
from ..utils.helpers import utc_now

EXPORT_VERSION = "1.0"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _row(obj, fields: List[str]) -> Dict[str, Any]:
    data = {}
    for name in fields:
        value = getattr(obj, name)
        data[name] = _iso(value) if isinstance(value, datetime) else value
    return data


def export_user_data(session: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Dict]:
    """Collect everything stored about a user.

    Returns:
        Export bundle, or None if the profile does not exist
    """
    profile = session.get(Profile, user_id)
    if profile is None:
        return None

    favorites = (
        session.query(UserFavorite)
        .filter(UserFavorite.user_id == user_id)
        .order_by(UserFavorite.created_at.desc())
        .all()
    )
    alerts = session.query(Alert).filter(Alert.user_id == user_id).all()
    searches = session.query(SavedSearch).filter(SavedSearch.user_id == user_id).all()
    consent = (
        session.query(ConsentHistory)
        .filter(ConsentHistory.user_id == user_id)
        .order_by(ConsentHistory.created_at.desc())
        .all()
    )
    activity = (
        session.query(UserActivity)
        .filter(UserActivity.user_id == user_id)
        .order_by(UserActivity.created_at.desc())
        .all()
    )

    return {
        "exportVersion": EXPORT_VERSION,
        "exportedAt": (now or utc_now()).isoformat(),
        "profile": _row(
            profile,
            [
                "id",
                "email",
                "display_name",
                "role",
                "preferences",
                "consent_preferences",
                "consent_updated_at",
                "marketing_opt_out",
                "created_at",
            ],
        ),
        "favorites": [_row(f, ["listing_id", "created_at"]) for f in favorites],
        "alerts": [
            _row(a, ["id", "listing_id", "alert_type", "is_active", "last_triggered_at", "created_at"])
            for a in alerts
        ],
        "savedSearches": [
            _row(
                s,
                [
                    "id",
                    "name",
                    "search_criteria",
                    "notification_frequency",
                    "is_active",
                    "last_notified_at",
                    "created_at",
                ],
            )
            for s in searches
        ],
        "consentHistory": [
            _row(c, ["preferences", "version", "method", "created_at"]) for c in consent
        ],
        "activity": [
            _row(
                a,
                ["action_type", "page_path", "listing_id", "search_query", "duration_seconds", "created_at"],
            )
            for a in activity
        ],
    }
