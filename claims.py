"""
Claim arbitration: who gets a donation.

Two paths lead to a claimed donation. An NGO can claim an available donation
directly, or a donor can approve one of the NGOs' pending requests. Both
write the donation with an UPDATE guarded on ``status = 'available'`` so a
single winner comes out of any race; the store's row-level atomicity is the
only lock.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import notify
from errors import ClaimConflict, DuplicateRequest, Forbidden, InvalidState, NotFound, ValidationError
from lifecycle import commit_or_rollback, get_donation, guarded_update
from models import Donation, DonationStatus, Request, RequestStatus, User, utcnow
from permissions import Actor, require_owner_or_admin, require_verified_ngo
from schemas import RequestCreate

logger = logging.getLogger(__name__)

AUTO_REJECT_RESPONSE = "Donation was approved for another NGO"


def _claimable(donation: Donation) -> None:
    if not donation.active:
        raise InvalidState("This donation is not active")
    if donation.status in DonationStatus.HELD:
        raise ClaimConflict("This donation is no longer available")
    if donation.status != DonationStatus.AVAILABLE:
        raise InvalidState("This donation is not available")


def _ngo_name(session: Session, ngo_id: int) -> str:
    ngo = session.get(User, ngo_id)
    return ngo.name if ngo else "An NGO"


def claim_donation(session: Session, actor: Actor, donation_id: int) -> Donation:
    require_verified_ngo(actor, "claim donations")
    donation = get_donation(session, donation_id)
    _claimable(donation)

    now = utcnow()
    won = guarded_update(
        session,
        donation_id,
        DonationStatus.AVAILABLE,
        status=DonationStatus.CLAIMED,
        claimed_by=actor.id,
        claimed_at=now,
        updated_at=now,
    )
    if not won:
        session.rollback()
        logger.info("NGO %s lost the claim race for donation %s", actor.id, donation_id)
        raise ClaimConflict("This donation is no longer available")

    commit_or_rollback(session, "claim_donation", donation_id)
    session.refresh(donation)
    logger.info("Donation %s claimed by NGO %s", donation_id, actor.id)

    notify.emit(
        session, donation.donor_id, "Donation Claimed",
        f'Your donation "{donation.title}" has been claimed by {_ngo_name(session, actor.id)}',
        "claim", donation_id, "donation", priority="high",
    )
    session.refresh(donation)
    return donation


def get_request(session: Session, request_id: int) -> Request:
    req = session.get(Request, request_id)
    if req is None:
        raise NotFound("Request not found")
    return req


def create_request(session: Session, actor: Actor, payload: RequestCreate) -> Request:
    require_verified_ngo(actor, "create requests")
    donation = get_donation(session, payload.donation_id)
    if not donation.active or donation.status != DonationStatus.AVAILABLE:
        raise InvalidState("This donation is not available")

    existing = session.exec(
        select(Request.id).where(
            Request.ngo_id == actor.id,
            Request.donation_id == donation.id,
            Request.status == RequestStatus.PENDING,
        )
    ).first()
    if existing is not None:
        raise DuplicateRequest("You have already requested this donation")

    req = Request(ngo_id=actor.id, **payload.model_dump())
    session.add(req)
    try:
        session.commit()
    except IntegrityError:
        # a concurrent insert won the partial unique index
        session.rollback()
        raise DuplicateRequest("You have already requested this donation")
    session.refresh(req)
    logger.info("Request %s created by NGO %s for donation %s", req.id, actor.id, donation.id)

    notify.emit(
        session, donation.donor_id, "New Donation Request",
        f'{_ngo_name(session, actor.id)} has requested your donation "{donation.title}"',
        "request", req.id, "request",
    )
    session.refresh(req)
    return req


def _guarded_request_update(session: Session, request_id: int, **values) -> bool:
    """UPDATE the request only while it is still pending."""
    result = session.connection().execute(
        update(Request)
        .where(Request.id == request_id, Request.status == RequestStatus.PENDING)
        .values(**values)
    )
    return result.rowcount == 1


def respond_to_request(
    session: Session,
    actor: Actor,
    request_id: int,
    status: str,
    response: Optional[str] = None,
) -> Request:
    """
    Approve or reject a pending request as the donation's donor (or an admin).

    The request row is written only while it is still pending, so a
    concurrent cancel or response makes this call fail with InvalidState.
    Approval claims the donation for the request's NGO and rejects every
    other pending request for it, all in one transaction. Only the approved
    NGO is notified; auto-rejected NGOs are not.
    """
    req = get_request(session, request_id)
    donation = session.get(Donation, req.donation_id)
    if donation is None:
        raise NotFound("Related donation not found")
    require_owner_or_admin(actor, donation.donor_id, "You do not have permission to update this request")

    if status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        raise ValidationError(f"Requests can only be approved or rejected, not {status}")
    if req.status != RequestStatus.PENDING:
        raise InvalidState("Only pending requests can be updated")
    if status == RequestStatus.APPROVED:
        _claimable(donation)

    now = utcnow()
    values = {"status": status, "responded_at": now, "updated_at": now}
    if response:
        values["response"] = response
    if not _guarded_request_update(session, request_id, **values):
        session.rollback()
        raise InvalidState("Only pending requests can be updated")

    if status == RequestStatus.APPROVED:
        won = guarded_update(
            session,
            donation.id,
            DonationStatus.AVAILABLE,
            status=DonationStatus.CLAIMED,
            claimed_by=req.ngo_id,
            claimed_at=now,
            updated_at=now,
        )
        if not won:
            session.rollback()
            raise ClaimConflict("This donation is no longer available")

        session.connection().execute(
            update(Request)
            .where(
                Request.donation_id == donation.id,
                Request.id != req.id,
                Request.status == RequestStatus.PENDING,
            )
            .values(
                status=RequestStatus.REJECTED,
                response=AUTO_REJECT_RESPONSE,
                responded_at=now,
                updated_at=now,
            )
        )

    commit_or_rollback(session, "respond_to_request", request_id)
    session.refresh(req)
    logger.info("Request %s %s by user %s", request_id, status, actor.id)

    notify.emit(
        session, req.ngo_id, f"Request {status.capitalize()}",
        f'Your request for "{donation.title}" has been {status}',
        "request", request_id, "request",
        priority="high" if status == RequestStatus.APPROVED else "normal",
    )
    session.refresh(req)
    return req


def cancel_request(session: Session, actor: Actor, request_id: int) -> Request:
    req = get_request(session, request_id)
    if req.ngo_id != actor.id and not actor.is_admin:
        raise Forbidden("You do not have permission to cancel this request")
    if req.status != RequestStatus.PENDING:
        raise InvalidState("Only pending requests can be cancelled")

    if not _guarded_request_update(
        session, request_id, status=RequestStatus.CANCELLED, updated_at=utcnow()
    ):
        session.rollback()
        raise InvalidState("Only pending requests can be cancelled")
    commit_or_rollback(session, "cancel_request", request_id)
    session.refresh(req)
    logger.info("Request %s cancelled by user %s", request_id, actor.id)
    return req
