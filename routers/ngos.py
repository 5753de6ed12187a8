from typing import Optional

from fastapi import APIRouter
from sqlalchemy import or_
from sqlmodel import select

from db import SessionDep
from errors import NotFound
from models import NGODetails, Role, User, VerificationStatus
from pagination import PageDep, paginate, paginate_list
from schemas import NGORead, Page
from .auth import ActorDep, serialize_user

router = APIRouter(tags=["ngos"])


@router.get("/", response_model=Page[NGORead])
def list_ngos(
    session: SessionDep,
    actor: ActorDep,
    params: PageDep,
    search: Optional[str] = None,
    category: Optional[str] = None,
):
    """
    Directory of verified, active NGOs, by name.
    """
    query = (
        select(User)
        .join(NGODetails, NGODetails.user_id == User.id)
        .where(
            User.role == Role.NGO,
            User.verified == True,  # noqa: E712
            User.active == True,  # noqa: E712
            NGODetails.verification_status == VerificationStatus.VERIFIED,
        )
        .order_by(User.name, User.id)
    )
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(User.name.ilike(pattern), NGODetails.description.ilike(pattern))
        )

    if category:
        # categories is a JSON list; match it here rather than per dialect
        rows = [
            user for user in session.exec(query).all()
            if category in (session.get(NGODetails, user.id).categories or [])
        ]
        items, pagination = paginate_list(rows, params)
    else:
        items, pagination = paginate(session, query, params)

    return Page[NGORead](
        data=[serialize_user(session, user) for user in items],
        pagination=pagination,
    )


@router.get("/{ngo_id}", response_model=NGORead)
def get_ngo(ngo_id: int, session: SessionDep, actor: ActorDep):
    user = session.get(User, ngo_id)
    if user is None or user.role != Role.NGO:
        raise NotFound("NGO not found")
    return serialize_user(session, user)
