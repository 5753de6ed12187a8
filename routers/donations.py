import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Response
from sqlalchemy import delete, func, or_, update
from sqlmodel import select

import claims
import lifecycle
from db import SessionDep
from errors import InvalidState
from geo import haversine_km
from models import Donation, DonationStatus, Request, Review, Role, utcnow
from pagination import PageDep, paginate
from permissions import require_owner_or_admin
from schemas import (
    CountBucket,
    DonationCreate,
    DonationRead,
    DonationStats,
    DonationStatusUpdate,
    DonationUpdate,
    Page,
)
from .auth import ActorDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["donations"])

# Columns that cannot be cleared through an update
REQUIRED_FIELDS = {"title", "description", "category", "condition", "images", "priority", "tags", "active"}

NEARBY_LIMIT = 20


@router.post("/", response_model=DonationRead, status_code=201)
def create_donation(donation_in: DonationCreate, session: SessionDep, actor: ActorDep):
    """
    Post a new donation. Donors only.
    """
    donation = lifecycle.create_donation(session, actor, donation_in)
    return DonationRead.from_model(donation)


@router.get("/", response_model=Page[DonationRead])
def list_donations(
    session: SessionDep,
    actor: ActorDep,
    params: PageDep,
    category: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    claimed: bool = False,
):
    """
    List active donations, newest first.

    Donors only see their own donations. NGOs see available donations unless
    they ask for another status, or for what they claimed with claimed=true.
    """
    query = select(Donation).where(Donation.active == True)  # noqa: E712

    if category is not None:
        query = query.where(Donation.category == category)
    if status is not None:
        query = query.where(Donation.status == status)
    elif actor.role == Role.NGO and not claimed:
        query = query.where(Donation.status == DonationStatus.AVAILABLE)
    if priority is not None:
        query = query.where(Donation.priority == priority)
    if actor.role == Role.DONOR:
        query = query.where(Donation.donor_id == actor.id)
    if actor.role == Role.NGO and claimed:
        query = query.where(Donation.claimed_by == actor.id)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(Donation.title.ilike(pattern), Donation.description.ilike(pattern))
        )

    query = query.order_by(Donation.created_at.desc(), Donation.id.desc())
    items, pagination = paginate(session, query, params)
    return Page[DonationRead](
        data=[DonationRead.from_model(d) for d in items], pagination=pagination
    )


@router.get("/nearby", response_model=List[DonationRead])
def nearby_donations(
    session: SessionDep,
    actor: ActorDep,
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    max_distance: float = Query(default=50, gt=0, description="Radius in km"),
):
    """
    Available donations within max_distance km of (lat, lng), closest first.
    """
    donations = session.exec(
        select(Donation).where(
            Donation.status == DonationStatus.AVAILABLE,
            Donation.active == True,  # noqa: E712
        )
    ).all()

    scored = []
    for d in donations:
        distance = haversine_km(lat, lng, d.pickup_lat, d.pickup_lng)
        if distance <= max_distance:
            scored.append((distance, d))
    scored.sort(key=lambda pair: pair[0])

    return [
        DonationRead.from_model(d, distance_km=round(distance, 2))
        for distance, d in scored[:NEARBY_LIMIT]
    ]


@router.get("/stats", response_model=DonationStats)
def donation_stats(session: SessionDep, actor: ActorDep):
    """
    Donation counts by status and by category.
    Donors get their own donations, NGOs the ones they claimed.
    """
    def grouped(column):
        query = select(column, func.count()).group_by(column)
        if actor.role == Role.DONOR:
            query = query.where(Donation.donor_id == actor.id)
        elif actor.role == Role.NGO:
            query = query.where(Donation.claimed_by == actor.id)
        return [CountBucket(key=key, count=count) for key, count in session.exec(query).all()]

    return DonationStats(
        status_stats=grouped(Donation.status),
        category_stats=grouped(Donation.category),
    )


@router.get("/{donation_id}", response_model=DonationRead)
def get_donation(donation_id: int, session: SessionDep, actor: ActorDep):
    """
    Get a single donation by ID. Each read counts as a view.
    """
    donation = lifecycle.get_donation(session, donation_id)
    session.connection().execute(
        update(Donation)
        .where(Donation.id == donation_id)
        .values(views=Donation.views + 1)
    )
    session.commit()
    session.refresh(donation)
    return DonationRead.from_model(donation)


@router.put("/{donation_id}", response_model=DonationRead)
def update_donation(
    donation_id: int,
    donation_in: DonationUpdate,
    session: SessionDep,
    actor: ActorDep,
):
    """
    Edit a donation's details. Status and claim fields are not editable here.
    """
    donation = lifecycle.get_donation(session, donation_id)
    require_owner_or_admin(
        actor, donation.donor_id, "You do not have permission to update this donation"
    )

    changes = donation_in.model_dump(exclude_unset=True, exclude={"pickup_location"})
    for key, value in changes.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(donation, key, value)
    if donation_in.pickup_location is not None:
        donation.pickup_lat = donation_in.pickup_location.lat
        donation.pickup_lng = donation_in.pickup_location.lng
        donation.pickup_address = donation_in.pickup_location.address
    donation.updated_at = utcnow()

    session.add(donation)
    lifecycle.commit_or_rollback(session, "update_donation", donation_id)
    session.refresh(donation)
    return DonationRead.from_model(donation)


@router.delete("/{donation_id}", status_code=204)
def delete_donation(donation_id: int, session: SessionDep, actor: ActorDep):
    donation = lifecycle.get_donation(session, donation_id)
    require_owner_or_admin(
        actor, donation.donor_id, "You do not have permission to delete this donation"
    )

    if donation.status in (DonationStatus.CLAIMED, DonationStatus.IN_TRANSIT):
        raise InvalidState("Cannot delete a donation that is already claimed or in transit")

    conn = session.connection()
    conn.execute(delete(Request).where(Request.donation_id == donation_id))
    conn.execute(delete(Review).where(Review.donation_id == donation_id))
    session.delete(donation)
    lifecycle.commit_or_rollback(session, "delete_donation", donation_id)
    logger.info("Donation %s deleted by user %s", donation_id, actor.id)
    return Response(status_code=204)


@router.post("/{donation_id}/claim", response_model=DonationRead)
def claim_donation(donation_id: int, session: SessionDep, actor: ActorDep):
    """
    Claim an available donation. Verified NGOs only; one NGO wins a race.
    """
    donation = claims.claim_donation(session, actor, donation_id)
    return DonationRead.from_model(donation)


@router.patch("/{donation_id}/status", response_model=DonationRead)
def update_donation_status(
    donation_id: int,
    update_in: DonationStatusUpdate,
    session: SessionDep,
    actor: ActorDep,
):
    """
    Move a donation along its lifecycle (donor, claiming NGO or admin).
    """
    donation = lifecycle.update_donation_status(session, actor, donation_id, update_in)
    return DonationRead.from_model(donation)
