from typing import Optional

from fastapi import APIRouter
from sqlmodel import select

import claims
from db import SessionDep
from models import Donation, Request as RequestModel, Role
from pagination import PageDep, paginate
from permissions import require_owner_or_admin
from schemas import Page, RequestCreate, RequestRead, RequestStatusUpdate
from .auth import ActorDep

router = APIRouter(tags=["requests"])


@router.post("/", response_model=RequestRead, status_code=201)
def create_request(request_data: RequestCreate, session: SessionDep, actor: ActorDep):
    """
    Ask for a donation. Verified NGOs only, one pending request per donation.
    """
    return claims.create_request(session, actor, request_data)


@router.get("/", response_model=Page[RequestRead])
def list_requests(
    session: SessionDep,
    actor: ActorDep,
    params: PageDep,
    donation_id: Optional[int] = None,
    status: Optional[str] = None,
):
    """
    NGOs see their own requests, donors the requests made for their donations.
    """
    query = select(RequestModel)
    if actor.role == Role.NGO:
        query = query.where(RequestModel.ngo_id == actor.id)
    elif actor.role == Role.DONOR:
        own_donations = select(Donation.id).where(Donation.donor_id == actor.id)
        query = query.where(RequestModel.donation_id.in_(own_donations))
    if donation_id is not None:
        query = query.where(RequestModel.donation_id == donation_id)
    if status is not None:
        query = query.where(RequestModel.status == status)

    query = query.order_by(RequestModel.created_at.desc(), RequestModel.id.desc())
    items, pagination = paginate(session, query, params)
    return Page[RequestRead](
        data=[RequestRead.model_validate(r) for r in items], pagination=pagination
    )


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: int, session: SessionDep, actor: ActorDep):
    req = claims.get_request(session, request_id)
    if req.ngo_id != actor.id:
        donation = session.get(Donation, req.donation_id)
        require_owner_or_admin(
            actor,
            donation.donor_id if donation else None,
            "You do not have permission to view this request",
        )
    return req


@router.patch("/{request_id}", response_model=RequestRead)
def update_request_status(
    request_id: int,
    update: RequestStatusUpdate,
    session: SessionDep,
    actor: ActorDep,
):
    """
    Approve or reject a pending request (donation owner or admin).
    Approving claims the donation and rejects the competing requests.
    """
    return claims.respond_to_request(
        session, actor, request_id, update.status, update.response
    )


@router.post("/{request_id}/cancel", response_model=RequestRead)
def cancel_request(request_id: int, session: SessionDep, actor: ActorDep):
    """
    Withdraw a pending request (the NGO that made it, or an admin).
    """
    return claims.cancel_request(session, actor, request_id)
