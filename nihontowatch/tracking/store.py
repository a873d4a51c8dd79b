"""Persist activity events and browser sessions.

Tracking is best-effort: storage failures are logged and never surface to
the client.
"""

import math
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..storage.database import Database
from ..storage.models import ActivityEvent, UserActivity, UserSession
from ..utils.helpers import utc_now
from .events import activity_record, event_record, parse_timestamp

SESSION_ACTIONS = ("create", "end")


def record_events(db: Database, events: List[Dict], session_id: str, user_id: Optional[str]) -> bool:
    """Store validated events, plus user_activity rows for signed-in users.

    Returns:
        Whether the raw events were stored
    """
    stored = True
    try:
        with db.session() as session:
            session.add_all(
                [ActivityEvent(**event_record(e, session_id, user_id)) for e in events]
            )
    except Exception as e:
        stored = False
        logger.error(f"Failed to insert {len(events)} activity events for {session_id}: {e}")

    if user_id:
        try:
            with db.session() as session:
                session.add_all([UserActivity(**activity_record(e, user_id)) for e in events])
        except Exception as e:
            logger.error(f"Failed to update user activity for {user_id}: {e}")

    return stored


def validate_session_payload(body: Any) -> bool:
    if not isinstance(body, dict):
        return False
    if body.get("action") not in SESSION_ACTIONS:
        return False
    session_id = body.get("sessionId")
    return isinstance(session_id, str) and bool(session_id)


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return int(value)


def start_session(db: Database, body: Dict, user_id: Optional[str] = None) -> Dict:
    """Open a session row. A repeated create for the same id is not an error."""
    session_id = body["sessionId"]
    try:
        with db.session() as session:
            session.add(
                UserSession(
                    session_id=session_id,
                    user_id=user_id,
                    started_at=utc_now(),
                    page_views=0,
                    user_agent=body.get("userAgent") or None,
                    screen_width=_int_or_none(body.get("screenWidth")),
                    screen_height=_int_or_none(body.get("screenHeight")),
                    timezone=body.get("timezone") or None,
                    language=body.get("language") or None,
                )
            )
    except IntegrityError:
        logger.debug(f"Session {session_id} already exists")
        return {"success": True, "sessionId": session_id, "existing": True}
    except SQLAlchemyError as e:
        logger.error(f"Failed to create session {session_id}: {e}")

    return {"success": True, "sessionId": session_id}


def end_session(db: Database, body: Dict) -> Dict:
    """Record the end time, duration and page views of a session."""
    session_id = body["sessionId"]
    try:
        with db.session() as session:
            session.query(UserSession).filter(UserSession.session_id == session_id).update(
                {
                    UserSession.ended_at: parse_timestamp(body.get("endedAt")) or utc_now(),
                    UserSession.total_duration_ms: _int_or_none(body.get("totalDurationMs")),
                    UserSession.page_views: _int_or_none(body.get("pageViews")),
                },
                synchronize_session=False,
            )
    except SQLAlchemyError as e:
        logger.error(f"Failed to end session {session_id}: {e}")

    return {"success": True, "sessionId": session_id}
