"""Validation and shaping of client activity event batches."""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..utils.helpers import utc_now

VALID_EVENT_TYPES = (
    "page_view",
    "listing_view",
    "search",
    "filter_change",
    "favorite_add",
    "favorite_remove",
    "alert_create",
    "alert_delete",
    "external_link_click",
    "viewport_dwell",
    "quickview_open",
    "image_pinch_zoom",
)

# Columns stored separately from event_data
BASE_FIELDS = ("type", "timestamp", "sessionId", "userId")

ACTION_TYPES = {
    "page_view": "view",
    "listing_view": "view",
    "search": "search",
    "filter_change": "view",
    "favorite_add": "favorite",
    "favorite_remove": "favorite",
    "alert_create": "alert_create",
    "alert_delete": "alert_delete",
    "external_link_click": "view",
}

SESSION_PREFIX = "sess_"


def _is_number(value: Any) -> bool:
    """Finite int or float. JSON NaN and Infinity are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _is_id(value: Any) -> bool:
    return _is_number(value) and value != 0 and float(value).is_integer()


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value != ""


# Required fields per event type
_FIELD_CHECKS = {
    "page_view": (("path", _is_text),),
    "listing_view": (("listingId", _is_id), ("durationMs", _is_number)),
    "search": (("query", lambda v: isinstance(v, str)),),
    "filter_change": (("changedFilter", _is_text),),
    "favorite_add": (("listingId", _is_id),),
    "favorite_remove": (("listingId", _is_id),),
    "external_link_click": (("url", _is_text),),
    "viewport_dwell": (("listingId", _is_id), ("dwellMs", _is_number)),
    "quickview_open": (("listingId", _is_id),),
    "image_pinch_zoom": (("listingId", _is_id),),
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch milliseconds into naive UTC."""
    try:
        if _is_number(value):
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        elif isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_payload(body: Any, max_events: int = 100) -> bool:
    """Check the batch envelope: a ``sess_`` session id and a bounded event list."""
    if not isinstance(body, dict):
        return False

    session_id = body.get("sessionId")
    if not _is_text(session_id) or not session_id.startswith(SESSION_PREFIX):
        return False

    events = body.get("events")
    if not isinstance(events, list):
        return False
    return len(events) <= max_events


def validate_event(
    event: Any,
    now: Optional[datetime] = None,
    max_age: timedelta = timedelta(hours=24),
    clock_skew: timedelta = timedelta(seconds=60),
) -> bool:
    """Check one event's type, timestamp window and type-specific fields."""
    if not isinstance(event, dict):
        return False
    if not event.get("type") or not event.get("timestamp") or not event.get("sessionId"):
        return False

    event_type = event["type"]
    if event_type not in VALID_EVENT_TYPES:
        return False

    timestamp = parse_timestamp(event["timestamp"])
    if timestamp is None:
        return False

    now = now or utc_now()
    if timestamp < now - max_age or timestamp > now + clock_skew:
        return False

    for field, check in _FIELD_CHECKS.get(event_type, ()):
        if not check(event.get(field)):
            return False
    return True


def extract_event_data(event: Dict) -> Dict:
    """Event payload minus the base fields."""
    return {k: v for k, v in event.items() if k not in BASE_FIELDS}


def map_event_type_to_action_type(event_type: str) -> str:
    return ACTION_TYPES.get(event_type, "view")


def activity_record(event: Dict, user_id: str) -> Dict:
    """Row for the per-user activity table."""
    record: Dict[str, Any] = {
        "user_id": user_id,
        "action_type": map_event_type_to_action_type(event["type"]),
        "created_at": parse_timestamp(event["timestamp"]),
    }

    event_type = event["type"]
    if event_type == "page_view":
        record["page_path"] = event.get("path")
    elif event_type == "listing_view":
        record["listing_id"] = event.get("listingId")
        record["duration_seconds"] = int(event.get("durationMs", 0) / 1000 + 0.5)
    elif event_type == "search":
        record["search_query"] = event.get("query")
    elif event_type in ("favorite_add", "favorite_remove"):
        record["listing_id"] = event.get("listingId")

    return record


def event_record(event: Dict, session_id: str, user_id: Optional[str]) -> Dict:
    """Row for the raw activity events table."""
    listing_id = event.get("listingId")
    return {
        "session_id": session_id,
        "user_id": user_id,
        "event_type": event["type"],
        "event_data": extract_event_data(event),
        "listing_id": int(listing_id) if _is_id(listing_id) else None,
        "created_at": parse_timestamp(event["timestamp"]),
    }


def filter_valid_events(events: List, now: Optional[datetime] = None, **limits) -> List[Dict]:
    return [e for e in events if validate_event(e, now=now, **limits)]
