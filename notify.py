import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from models import Notification

logger = logging.getLogger(__name__)


def emit(
    session: Session,
    user_id: int,
    title: str,
    message: str,
    type: str,
    related_id: Optional[int] = None,
    related_type: Optional[str] = None,
    priority: str = "normal",
) -> Optional[Notification]:
    """
    Store a notification for user_id.

    Runs after the state change it reports has been committed. A failure is
    logged and swallowed so it can never undo or fail that change.
    """
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
        related_type=related_type,
        priority=priority,
    )
    try:
        session.add(notification)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(
            "Notification %r for user %s (%s %s) could not be stored",
            type, user_id, related_type, related_id,
        )
        return None
    return notification
