"""Account erasure and email unsubscribe."""

from typing import Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from ..storage.database import Database
from ..storage.models import (
    Alert,
    AlertHistory,
    DataDeletionRequest,
    DeleteAccountRequest,
    Profile,
    SavedSearch,
    SavedSearchNotification,
    UserActivity,
    UserFavorite,
    UserSession,
)
from ..utils.helpers import utc_now

DELETION_PENDING_STATUSES = ("pending", "processing")


class DeletionRejected(ValueError):
    """Deletion request failed validation."""

    def __init__(self, error: str, message: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.message = message


def check_deletion_request(profile: Profile, request: DeleteAccountRequest) -> None:
    """Raise DeletionRejected unless the account may be deleted."""
    if not request.confirmEmail:
        raise DeletionRejected("Email confirmation required")

    if request.confirmEmail.lower() != (profile.email or "").lower():
        raise DeletionRejected("Email does not match account email")

    if profile.stripe_subscription_id and profile.subscription_status == "active":
        raise DeletionRejected(
            "Active subscription detected",
            "Please cancel your subscription before deleting your account. "
            "You can do this from your account settings.",
        )


def _erase_user_data(session: Session, user_id: str) -> None:
    alert_ids = [a for (a,) in session.query(Alert.id).filter(Alert.user_id == user_id)]
    if alert_ids:
        session.query(AlertHistory).filter(AlertHistory.alert_id.in_(alert_ids)).delete(
            synchronize_session=False
        )
    session.query(Alert).filter(Alert.user_id == user_id).delete(synchronize_session=False)

    search_ids = [
        s for (s,) in session.query(SavedSearch.id).filter(SavedSearch.user_id == user_id)
    ]
    if search_ids:
        session.query(SavedSearchNotification).filter(
            SavedSearchNotification.saved_search_id.in_(search_ids)
        ).delete(synchronize_session=False)
    session.query(SavedSearch).filter(SavedSearch.user_id == user_id).delete(
        synchronize_session=False
    )

    session.query(UserFavorite).filter(UserFavorite.user_id == user_id).delete(
        synchronize_session=False
    )

    # Activity is kept for analytics without the user link
    session.query(UserActivity).filter(UserActivity.user_id == user_id).update(
        {UserActivity.user_id: None}, synchronize_session=False
    )
    session.query(UserSession).filter(UserSession.user_id == user_id).update(
        {UserSession.user_id: None}, synchronize_session=False
    )

    # Consent history stays as part of the audit trail
    session.query(Profile).filter(Profile.id == user_id).delete(synchronize_session=False)


def _finish_request(db: Database, user_id: str, status: str) -> None:
    with db.session() as session:
        values = {
            DataDeletionRequest.status: status,
            DataDeletionRequest.processed_at: utc_now(),
        }
        if status == "completed":
            values[DataDeletionRequest.processed_by] = "system"
        session.query(DataDeletionRequest).filter(
            DataDeletionRequest.user_id == user_id,
            DataDeletionRequest.status == "processing",
        ).update(values, synchronize_session=False)


def delete_account(db: Database, user_id: str, request: DeleteAccountRequest) -> bool:
    """Erase a user's data (GDPR right to erasure).

    The request is logged to data_deletion_requests first, then user rows are
    removed in foreign key order inside one transaction.

    Args:
        db: Database instance
        user_id: Signed-in user
        request: Validated deletion request

    Returns:
        True when the account was deleted, False if the erasure failed

    Raises:
        DeletionRejected: If the request does not confirm the account
        LookupError: If the profile does not exist
    """
    with db.session() as session:
        profile = session.get(Profile, user_id)
        if profile is None:
            raise LookupError(user_id)
        check_deletion_request(profile, request)
        email = profile.email or ""

    try:
        with db.session() as session:
            session.add(
                DataDeletionRequest(
                    user_id=user_id,
                    email=email,
                    reason=request.reason,
                    feedback=request.feedback,
                    status="processing",
                )
            )
    except Exception as e:
        logger.error(f"Error logging deletion request for {user_id}: {e}")

    try:
        with db.session() as session:
            _erase_user_data(session, user_id)
    except Exception as e:
        logger.error(f"Error deleting account {user_id}: {e}")
        _finish_request(db, user_id, "failed")
        return False

    _finish_request(db, user_id, "completed")
    logger.info(f"Deleted account {user_id}")
    return True


def pending_deletion(session: Session, user_id: str) -> Optional[Dict]:
    request = (
        session.query(DataDeletionRequest)
        .filter(
            DataDeletionRequest.user_id == user_id,
            DataDeletionRequest.status.in_(DELETION_PENDING_STATUSES),
        )
        .order_by(DataDeletionRequest.created_at.desc())
        .first()
    )
    if request is None:
        return None
    return {
        "id": request.id,
        "status": request.status,
        "requested_at": request.created_at.isoformat() if request.created_at else None,
    }


def _disable_saved_searches(session: Session, user_id: str, saved_search_id: Optional[str] = None) -> int:
    query = session.query(SavedSearch).filter(SavedSearch.user_id == user_id)
    if saved_search_id is not None:
        query = query.filter(SavedSearch.id == saved_search_id)
    return query.update(
        {SavedSearch.notification_frequency: "none"}, synchronize_session=False
    )


def apply_unsubscribe(
    session: Session, user_id: str, type: str, saved_search_id: Optional[str] = None
) -> None:
    """Apply a verified unsubscribe.

    Raises:
        ValueError: If the type is unknown or a saved search id is missing
    """
    if type == "all":
        session.query(Profile).filter(Profile.id == user_id).update(
            {Profile.marketing_opt_out: True}, synchronize_session=False
        )
        _disable_saved_searches(session, user_id)
    elif type == "marketing":
        session.query(Profile).filter(Profile.id == user_id).update(
            {Profile.marketing_opt_out: True}, synchronize_session=False
        )
    elif type == "saved_search":
        if not saved_search_id:
            raise ValueError("Missing saved search ID")
        _disable_saved_searches(session, user_id, saved_search_id)
    else:
        raise ValueError("Invalid unsubscribe type")

    logger.info(f"Unsubscribed user {user_id} from {type}")


def unsubscribe_email(session: Session, email: str) -> bool:
    """Unsubscribe the profile with this email from everything.

    Returns:
        Whether a profile was found
    """
    profile = session.query(Profile).filter(Profile.email == email.lower()).first()
    if profile is None:
        return False
    apply_unsubscribe(session, profile.id, "all")
    return True
