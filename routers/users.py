# routers/users.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Response
from sqlalchemy import delete, or_, update
from sqlmodel import Session, select

from .auth import ActorDep, UserRoleDep, serialize_user
from db import SessionDep
from errors import Forbidden, InvalidState, NotFound
from lifecycle import commit_or_rollback
from models import (
    Donation,
    DonationStatus,
    DonorStats,
    NGODetails,
    Notification,
    Request,
    Review,
    Role,
    User,
    utcnow,
)
from permissions import require_owner_or_admin, require_role
from schemas import UserRead

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def delete_user_data(session: Session, user: User) -> None:
    """
    Delete a user and everything that hangs off the account.

    A donor's donations go with their requests and reviews. An NGO's requests
    go, and donations it was holding fall back to available. An NGO that has
    taken delivery of a donation keeps the record; such accounts can only be
    deactivated.
    """
    delivered = session.exec(
        select(Donation.id).where(
            Donation.claimed_by == user.id,
            Donation.status == DonationStatus.DELIVERED,
        )
    ).first()
    if delivered is not None:
        raise InvalidState(
            "User has received delivered donations; deactivate the account instead"
        )

    conn = session.connection()

    # 1) Delete all requests *made by* this user
    conn.execute(delete(Request).where(Request.ngo_id == user.id))

    # 2) Release donations this NGO was holding but had not delivered
    conn.execute(
        update(Donation)
        .where(
            Donation.claimed_by == user.id,
            Donation.status.in_([DonationStatus.CLAIMED, DonationStatus.IN_TRANSIT]),
        )
        .values(status=DonationStatus.AVAILABLE, claimed_by=None, claimed_at=None, updated_at=utcnow())
    )

    # 3) Donations *donated by* this user, with their requests and reviews
    own_donations = select(Donation.id).where(Donation.donor_id == user.id)
    conn.execute(delete(Request).where(Request.donation_id.in_(own_donations)))
    conn.execute(delete(Review).where(Review.donation_id.in_(own_donations)))
    conn.execute(delete(Donation).where(Donation.donor_id == user.id))

    # 4) Reviews written by or about the user, notifications, companion rows
    conn.execute(delete(Review).where(or_(Review.donor_id == user.id, Review.ngo_id == user.id)))
    conn.execute(delete(Notification).where(Notification.user_id == user.id))
    conn.execute(delete(NGODetails).where(NGODetails.user_id == user.id))
    conn.execute(delete(DonorStats).where(DonorStats.user_id == user.id))

    # 5) Finally, delete the user record itself
    session.delete(user)
    commit_or_rollback(session, "delete_user", user.id)


@router.get("/", response_model=List[UserRead])
def list_users(session: SessionDep, actor: ActorDep, role: Optional[str] = None):
    """
    List all users (admin only).
    """
    require_role(actor, [Role.ADMIN])
    query = select(User).order_by(User.id)
    if role is not None:
        query = query.where(User.role == role)
    return [serialize_user(session, user) for user in session.exec(query).all()]


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep, actor: ActorDep):
    """
    Get a single user by ID. Users can read themselves, admins anyone.
    """
    require_owner_or_admin(actor, user_id, "You can only view your own account")
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return serialize_user(session, user)


@router.delete("/me", status_code=204)
def delete_own_account(
    session: SessionDep,
    current: UserRoleDep,
):
    user = current["user"]
    if user.role == Role.ADMIN:
        raise Forbidden("Admin accounts cannot be deleted")

    delete_user_data(session, user)
    logger.info("User %s deleted their account", user.id)

    response = Response(status_code=204)
    response.delete_cookie("session")
    return response
