import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy import func
from sqlmodel import Session, select

import notify
from db import SessionDep
from errors import Forbidden, InvalidState, NotFound
from lifecycle import commit_or_rollback
from models import Donation, DonationStatus, NGODetails, Role, User, VerificationStatus, utcnow
from pagination import PageDep, paginate
from permissions import Actor, require_role
from schemas import NGORead, NGOVerification, Page, UserRead
from .auth import ActorDep, serialize_user
from .users import delete_user_data

logger = logging.getLogger(__name__)


def require_admin(actor: ActorDep) -> Actor:
    require_role(actor, [Role.ADMIN], "Admin access required")
    return actor


router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def count_by(session: Session, column) -> dict:
    rows = session.exec(select(column, func.count()).group_by(column)).all()
    return {key: count for key, count in rows}


@router.get("/users", response_model=Page[UserRead])
def list_users(
    session: SessionDep,
    params: PageDep,
    role: Optional[str] = None,
    verified: Optional[bool] = None,
    active: Optional[bool] = None,
):
    query = select(User)
    if role is not None:
        query = query.where(User.role == role)
    if verified is not None:
        query = query.where(User.verified == verified)
    if active is not None:
        query = query.where(User.active == active)
    query = query.order_by(User.created_at.desc(), User.id.desc())

    items, pagination = paginate(session, query, params)
    return Page[UserRead](
        data=[serialize_user(session, user) for user in items],
        pagination=pagination,
    )


@router.get("/ngos/pending", response_model=Page[NGORead])
def pending_ngos(session: SessionDep, params: PageDep):
    """
    NGOs waiting for verification, oldest first.
    """
    query = (
        select(User)
        .join(NGODetails, NGODetails.user_id == User.id)
        .where(
            User.role == Role.NGO,
            NGODetails.verification_status == VerificationStatus.PENDING,
        )
        .order_by(User.created_at, User.id)
    )
    items, pagination = paginate(session, query, params)
    return Page[NGORead](
        data=[serialize_user(session, user) for user in items],
        pagination=pagination,
    )


@router.patch("/ngos/{user_id}/verify", response_model=NGORead)
def verify_ngo(
    user_id: int,
    verification: NGOVerification,
    session: SessionDep,
    actor: ActorDep,
):
    """
    Verify or reject an NGO that is still pending.
    """
    user = session.get(User, user_id)
    if user is None or user.role != Role.NGO:
        raise NotFound("NGO not found")
    details = session.get(NGODetails, user_id)
    if details is None or details.verification_status != VerificationStatus.PENDING:
        raise InvalidState("This NGO verification is not pending")

    verified = verification.status == VerificationStatus.VERIFIED
    details.verification_status = verification.status
    if verification.reason:
        details.verification_reason = verification.reason
    user.verified = verified
    user.updated_at = utcnow()
    session.add(details)
    session.add(user)
    commit_or_rollback(session, "verify_ngo", user_id)
    logger.info("NGO %s %s by admin %s", user_id, verification.status, actor.id)

    if verified:
        title = "NGO Verified"
        message = "Congratulations! Your NGO has been verified. You can now claim donations."
    else:
        title = "NGO Verification Rejected"
        message = "Your NGO verification was rejected. " + (
            verification.reason or "Please contact support for more information."
        )
    notify.emit(session, user_id, title, message, "verification", priority="high")

    session.refresh(user)
    return serialize_user(session, user)


@router.patch("/users/{user_id}/toggle-status")
def toggle_user_status(user_id: int, session: SessionDep, actor: ActorDep):
    user = _get_user(session, user_id)
    if user.role == Role.ADMIN:
        raise Forbidden("Cannot deactivate admin users")

    user.active = not user.active
    user.updated_at = utcnow()
    session.add(user)
    commit_or_rollback(session, "toggle_user_status", user_id)
    session.refresh(user)
    state = "activated" if user.active else "deactivated"
    logger.info("User %s %s by admin %s", user_id, state, actor.id)

    if user.active:
        message = "Your account has been activated. You can now access all features."
    else:
        message = "Your account has been deactivated. Please contact support for assistance."
    notify.emit(
        session, user_id, f"Account {state.capitalize()}", message, "system", priority="high"
    )
    return {"message": f"User {state} successfully", "active": user.active}


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int, session: SessionDep, actor: ActorDep):
    user = _get_user(session, user_id)
    if user.role == Role.ADMIN:
        raise Forbidden("Cannot delete admin users")

    delete_user_data(session, user)
    logger.info("User %s deleted by admin %s", user_id, actor.id)
    return Response(status_code=204)


@router.get("/stats")
def platform_stats(session: SessionDep):
    users = count_by(session, User.role)
    donations = count_by(session, Donation.status)
    verified_ngos = session.exec(
        select(func.count()).select_from(User).where(
            User.role == Role.NGO, User.verified == True  # noqa: E712
        )
    ).one()
    pending_ngos = session.exec(
        select(func.count()).select_from(NGODetails).where(
            NGODetails.verification_status == VerificationStatus.PENDING
        )
    ).one()

    return {
        "users": {
            "total": sum(users.values()),
            "donors": users.get(Role.DONOR, 0),
            "ngos": users.get(Role.NGO, 0),
            "verified_ngos": verified_ngos,
            "pending_ngos": pending_ngos,
        },
        "donations": {
            "total": sum(donations.values()),
            "available": donations.get(DonationStatus.AVAILABLE, 0),
            "claimed": donations.get(DonationStatus.CLAIMED, 0),
            "delivered": donations.get(DonationStatus.DELIVERED, 0),
            "by_category": count_by(session, Donation.category),
        },
    }
