"""GDPR cookie consent storage."""

from typing import Dict, Mapping, Optional

from loguru import logger
from sqlalchemy.orm import Session

from ..storage.models import ConsentHistory, ConsentRecord, Profile
from ..utils.helpers import utc_now

CONSENT_CATEGORIES = ("essential", "functional", "analytics", "marketing")
CONSENT_METHODS = ("banner", "preferences", "api", "implicit")
CONSENT_VERSION = "1.0"

DEFAULT_PREFERENCES = {
    "essential": True,
    "functional": False,
    "analytics": False,
    "marketing": False,
}

IP_SALT = "nihontowatch_salt_"


def hash_string(value: str) -> str:
    """32-bit rolling hash (h * 31 + c), absolute value in hex."""
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """First x-forwarded-for hop, else the proxy real-ip headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or headers.get("x-vercel-forwarded-for") or None


def hash_ip(ip: Optional[str]) -> Optional[str]:
    return hash_string(f"{IP_SALT}{ip}") if ip else None


def get_consent(session: Session, user_id: str) -> Optional[Dict]:
    profile = session.get(Profile, user_id)
    if profile is None:
        return None
    return {
        "consent": profile.consent_preferences,
        "updatedAt": profile.consent_updated_at,
        "marketingOptOut": profile.marketing_opt_out,
    }


def _record_history(
    session: Session, user_id: str, preferences: Dict, version: str, method: str, ip: Optional[str]
) -> None:
    session.add(
        ConsentHistory(
            user_id=user_id,
            preferences=preferences,
            version=version,
            method=method,
            ip_hash=hash_ip(ip),
        )
    )


def save_consent(
    session: Session, profile: Profile, record: ConsentRecord, ip: Optional[str] = None
) -> Dict:
    """Store consent on the profile and append it to the audit trail.

    Declining marketing also opts the user out of marketing email.
    """
    preferences = record.preferences.model_dump()
    timestamp = record.timestamp or utc_now().isoformat()

    profile.consent_preferences = preferences
    profile.consent_updated_at = timestamp
    profile.marketing_opt_out = not preferences["marketing"]

    _record_history(session, profile.id, preferences, record.version, record.method, ip)
    logger.info(f"Consent saved for user {profile.id} via {record.method}")

    return {"preferences": preferences, "timestamp": timestamp, "version": record.version}


def revoke_consent(session: Session, profile: Profile, ip: Optional[str] = None) -> None:
    """Reset to essential-only consent."""
    preferences = dict(DEFAULT_PREFERENCES)
    profile.consent_preferences = preferences
    profile.consent_updated_at = utc_now().isoformat()
    profile.marketing_opt_out = True

    _record_history(session, profile.id, preferences, CONSENT_VERSION, "api", ip)
    logger.info(f"Consent revoked for user {profile.id}")
