from fastapi import APIRouter
from sqlalchemy import func
from sqlmodel import Session, select

from db import SessionDep
from models import Donation, DonationStatus, NGODetails, Request, RequestStatus, Role, User, VerificationStatus
from schemas import DonationRead, RequestRead
from .auth import ActorDep, serialize_user

router = APIRouter(tags=["dashboard"])

RECENT = 5


def _grouped(session: Session, column, *where) -> dict:
    query = select(column, func.count()).group_by(column)
    if where:
        query = query.where(*where)
    return {key: count for key, count in session.exec(query).all()}


def _donations(session: Session, *where, limit: int = RECENT) -> list:
    rows = session.exec(
        select(Donation)
        .where(*where)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
        .limit(limit)
    ).all()
    return [DonationRead.from_model(d) for d in rows]


def donor_dashboard(session: Session, user_id: int) -> dict:
    counts = _grouped(session, Donation.status, Donation.donor_id == user_id)
    pending = session.exec(
        select(Request)
        .join(Donation, Donation.id == Request.donation_id)
        .where(Donation.donor_id == user_id, Request.status == RequestStatus.PENDING)
        .order_by(Request.created_at.desc(), Request.id.desc())
    ).all()
    return {
        "role": Role.DONOR,
        "stats": {
            "donations": counts,
            "total_donations": sum(counts.values()),
            "pending_requests": len(pending),
        },
        "recent_donations": _donations(session, Donation.donor_id == user_id),
        "pending_requests": [RequestRead.model_validate(r) for r in pending[:RECENT]],
    }


def ngo_dashboard(session: Session, user_id: int) -> dict:
    claimed = _donations(session, Donation.claimed_by == user_id, limit=None)
    counts = _grouped(session, Request.status, Request.ngo_id == user_id)
    return {
        "role": Role.NGO,
        "stats": {
            "claimed": len(claimed),
            "requests": counts,
            "total_requests": sum(counts.values()),
        },
        "claimed_donations": claimed[:RECENT],
        "available_donations": _donations(
            session,
            Donation.status == DonationStatus.AVAILABLE,
            Donation.active == True,  # noqa: E712
        ),
    }


def admin_dashboard(session: Session) -> dict:
    pending_ngos = session.exec(
        select(func.count()).select_from(NGODetails).where(
            NGODetails.verification_status == VerificationStatus.PENDING
        )
    ).one()
    recent_users = session.exec(
        select(User).order_by(User.created_at.desc(), User.id.desc()).limit(RECENT)
    ).all()
    return {
        "role": Role.ADMIN,
        "stats": {
            "users": _grouped(session, User.role),
            "donations": _grouped(session, Donation.status),
            "pending_ngos": pending_ngos,
        },
        "recent_users": [serialize_user(session, u) for u in recent_users],
    }


@router.get("/dashboard")
def get_dashboard(session: SessionDep, actor: ActorDep):
    """
    Summary for the logged-in user, shaped by role.
    """
    if actor.role == Role.DONOR:
        return donor_dashboard(session, actor.id)
    if actor.role == Role.NGO:
        return ngo_dashboard(session, actor.id)
    return admin_dashboard(session)
