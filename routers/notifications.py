from fastapi import APIRouter, Response
from sqlalchemy import func, update
from sqlmodel import Session, select

from db import SessionDep
from errors import Forbidden, NotFound
from lifecycle import commit_or_rollback
from models import Notification
from pagination import PageDep, paginate
from schemas import NotificationPage, NotificationRead
from .auth import ActorDep

router = APIRouter(tags=["notifications"])


def _unread_count(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id,
            Notification.read == False,  # noqa: E712
        )
    ).one()


def _own_notification(session: Session, notification_id: int, user_id: int) -> Notification:
    notification = session.get(Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    if notification.user_id != user_id:
        raise Forbidden("You do not have permission to access this notification")
    return notification


@router.get("/", response_model=NotificationPage)
def list_notifications(
    session: SessionDep,
    actor: ActorDep,
    params: PageDep,
    unread_only: bool = False,
):
    """
    The caller's notifications, newest first, with the unread total.
    """
    query = select(Notification).where(Notification.user_id == actor.id)
    if unread_only:
        query = query.where(Notification.read == False)  # noqa: E712
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

    items, pagination = paginate(session, query, params)
    return NotificationPage(
        data=[NotificationRead.model_validate(n) for n in items],
        pagination=pagination,
        unread_count=_unread_count(session, actor.id),
    )


@router.get("/unread-count")
def unread_count(session: SessionDep, actor: ActorDep):
    return {"unread_count": _unread_count(session, actor.id)}


@router.patch("/read-all")
def mark_all_read(session: SessionDep, actor: ActorDep):
    result = session.connection().execute(
        update(Notification)
        .where(
            Notification.user_id == actor.id,
            Notification.read == False,  # noqa: E712
        )
        .values(read=True)
    )
    commit_or_rollback(session, "mark_all_read", actor.id)
    return {"message": "All notifications marked as read", "updated": result.rowcount}


@router.patch("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: int, session: SessionDep, actor: ActorDep):
    notification = _own_notification(session, notification_id, actor.id)
    notification.read = True
    session.add(notification)
    commit_or_rollback(session, "mark_read", notification_id)
    session.refresh(notification)
    return notification


@router.delete("/{notification_id}", status_code=204)
def delete_notification(notification_id: int, session: SessionDep, actor: ActorDep):
    notification = _own_notification(session, notification_id, actor.id)
    session.delete(notification)
    commit_or_rollback(session, "delete_notification", notification_id)
    return Response(status_code=204)
