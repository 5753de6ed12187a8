"""
Donation lifecycle: the status state machine and the operations that move a
donation through it outside of claiming.

    available  -> claimed, cancelled
    claimed    -> in-transit, available, cancelled
    in-transit -> delivered, claimed
    delivered, cancelled: terminal
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

import notify
from errors import Forbidden, InvalidState, InvalidTransition, NotFound
from models import Donation, DonationStatus, DonorStats, Role, utcnow
from permissions import Actor, require_role
from schemas import DonationCreate, DonationStatusUpdate

logger = logging.getLogger(__name__)

TRANSITIONS = {
    DonationStatus.AVAILABLE: {DonationStatus.CLAIMED, DonationStatus.CANCELLED},
    DonationStatus.CLAIMED: {
        DonationStatus.IN_TRANSIT,
        DonationStatus.AVAILABLE,
        DonationStatus.CANCELLED,
    },
    DonationStatus.IN_TRANSIT: {DonationStatus.DELIVERED, DonationStatus.CLAIMED},
    DonationStatus.DELIVERED: set(),
    DonationStatus.CANCELLED: set(),
}


def can_transition(current: str, next_status: str) -> bool:
    return next_status in TRANSITIONS.get(current, ())


def ensure_transition(current: str, next_status: str) -> None:
    if not can_transition(current, next_status):
        raise InvalidTransition(current, next_status)


def get_donation(session: Session, donation_id: int) -> Donation:
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFound("Donation not found")
    return donation


def guarded_update(session: Session, donation_id: int, expected_status: str, **values) -> bool:
    """
    UPDATE the donation only if its status is still expected_status.

    Returns False when another writer got there first. Runs inside the
    session's transaction; the caller commits.
    """
    values.setdefault("updated_at", utcnow())
    stmt = (
        update(Donation)
        .where(Donation.id == donation_id, Donation.status == expected_status)
        .values(**values)
    )
    result = session.connection().execute(stmt)
    return result.rowcount == 1


def commit_or_rollback(session: Session, operation: str, entity_id: Optional[int]) -> None:
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("%s failed for %s", operation, entity_id)
        raise


def create_donation(session: Session, actor: Actor, payload: DonationCreate) -> Donation:
    require_role(actor, [Role.DONOR], "Only donors can create donations")

    data = payload.model_dump(exclude={"pickup_location"})
    donation = Donation(
        **data,
        donor_id=actor.id,
        pickup_lat=payload.pickup_location.lat,
        pickup_lng=payload.pickup_location.lng,
        pickup_address=payload.pickup_location.address,
    )
    session.add(donation)

    stats = session.get(DonorStats, actor.id) or DonorStats(user_id=actor.id)
    stats.total_donations += 1
    stats.active_donations += 1
    session.add(stats)

    commit_or_rollback(session, "create_donation", actor.id)
    session.refresh(donation)
    logger.info("Donation %s created by donor %s", donation.id, actor.id)
    return donation


def update_donation_status(
    session: Session,
    actor: Actor,
    donation_id: int,
    payload: DonationStatusUpdate,
) -> Donation:
    donation = get_donation(session, donation_id)
    current = donation.status
    target = payload.status

    is_donor = donation.donor_id == actor.id
    is_claiming_ngo = donation.claimed_by is not None and donation.claimed_by == actor.id
    if not (is_donor or is_claiming_ngo or actor.is_admin):
        raise Forbidden("You do not have permission to update this donation status")

    ensure_transition(current, target)
    if current == DonationStatus.AVAILABLE and target == DonationStatus.CLAIMED:
        raise InvalidState("Donations are claimed through a claim or an approved request")

    previous_ngo = donation.claimed_by
    values = {"status": target}
    if target in (DonationStatus.AVAILABLE, DonationStatus.CANCELLED):
        values["claimed_by"] = None
        values["claimed_at"] = None
    if target == DonationStatus.DELIVERED:
        values["delivery_date"] = utcnow()
        if payload.delivery_notes:
            values["delivery_notes"] = payload.delivery_notes
        if payload.delivery_images:
            values["delivery_images"] = payload.delivery_images

    if not guarded_update(session, donation_id, current, **values):
        session.rollback()
        raise InvalidState("Donation status changed while updating, please retry")

    if target == DonationStatus.DELIVERED:
        stats = session.get(DonorStats, donation.donor_id)
        if stats is not None:
            stats.active_donations = max(stats.active_donations - 1, 0)
            stats.completed_donations += 1
            session.add(stats)

    commit_or_rollback(session, "update_donation_status", donation_id)
    session.refresh(donation)
    logger.info(
        "Donation %s moved %s -> %s by user %s", donation_id, current, target, actor.id
    )

    if target == DonationStatus.IN_TRANSIT:
        notify.emit(
            session, donation.donor_id, "Donation In Transit",
            f'Your donation "{donation.title}" is now in transit',
            "delivery", donation_id, "donation",
        )
    elif target == DonationStatus.DELIVERED:
        notify.emit(
            session, donation.donor_id, "Donation Delivered",
            f'Your donation "{donation.title}" has been successfully delivered',
            "delivery", donation_id, "donation", priority="high",
        )
    elif target == DonationStatus.CANCELLED and previous_ngo is not None:
        notify.emit(
            session, previous_ngo, "Donation Cancelled",
            f'The donation "{donation.title}" you claimed was cancelled',
            "donation", donation_id, "donation",
        )

    session.refresh(donation)
    return donation
