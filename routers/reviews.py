import logging

from fastapi import APIRouter, Response
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import notify
from db import SessionDep
from errors import Forbidden, InvalidState, NotFound
from lifecycle import commit_or_rollback, get_donation
from models import DonationStatus, Review, Role, utcnow
from pagination import PageDep, paginate
from permissions import require_owner_or_admin, require_role
from schemas import ReviewCreate, ReviewPage, ReviewRead, ReviewReply, ReviewUpdate
from .auth import ActorDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reviews"])


def _get_review(session: Session, review_id: int) -> Review:
    review = session.get(Review, review_id)
    if review is None:
        raise NotFound("Review not found")
    return review


def rating_summary(session: Session, ngo_id: int) -> dict:
    """Average rating (one decimal), count and distribution of visible reviews."""
    rows = session.exec(
        select(Review.rating, func.count())
        .where(Review.ngo_id == ngo_id, Review.reported == False)  # noqa: E712
        .group_by(Review.rating)
    ).all()
    total = sum(count for _, count in rows)
    if not total:
        return {"avg_rating": 0.0, "total_reviews": 0, "distribution": {}}
    avg = sum(rating * count for rating, count in rows) / total
    return {
        "avg_rating": round(avg, 1),
        "total_reviews": total,
        "distribution": {str(rating): count for rating, count in rows},
    }


@router.post("/", response_model=ReviewRead, status_code=201)
def create_review(review_in: ReviewCreate, session: SessionDep, actor: ActorDep):
    """
    Rate the NGO that received one of your delivered donations.
    """
    require_role(actor, [Role.DONOR], "Only donors can create reviews")
    donation = get_donation(session, review_in.donation_id)
    if donation.donor_id != actor.id:
        raise Forbidden("You can only review donations you created")
    if donation.status != DonationStatus.DELIVERED:
        raise InvalidState("You can only review after donation is delivered")
    if donation.claimed_by != review_in.ngo_id:
        raise InvalidState("This NGO did not claim your donation")

    existing = session.exec(
        select(Review.id).where(
            Review.donor_id == actor.id, Review.donation_id == donation.id
        )
    ).first()
    if existing is not None:
        raise InvalidState("You have already reviewed this donation")

    review = Review(donor_id=actor.id, **review_in.model_dump())
    session.add(review)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise InvalidState("You have already reviewed this donation")
    session.refresh(review)
    logger.info(
        "Review %s by donor %s for NGO %s (%s stars)",
        review.id, actor.id, review.ngo_id, review.rating,
    )

    notify.emit(
        session, review.ngo_id, "New Review Received",
        f"You received a {review.rating}-star review from a donor",
        "review", review.id, "review",
    )
    session.refresh(review)
    return review


@router.get("/ngo/{ngo_id}", response_model=ReviewPage)
def list_ngo_reviews(ngo_id: int, session: SessionDep, params: PageDep):
    query = (
        select(Review)
        .where(Review.ngo_id == ngo_id, Review.reported == False)  # noqa: E712
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    items, pagination = paginate(session, query, params)
    return ReviewPage(
        data=[ReviewRead.model_validate(r) for r in items],
        pagination=pagination,
        **rating_summary(session, ngo_id),
    )


@router.put("/{review_id}", response_model=ReviewRead)
def update_review(
    review_id: int,
    review_in: ReviewUpdate,
    session: SessionDep,
    actor: ActorDep,
):
    review = _get_review(session, review_id)
    if review.donor_id != actor.id:
        raise Forbidden("You can only update your own reviews")

    for key, value in review_in.model_dump(exclude_unset=True).items():
        if key == "rating" and value is None:
            continue
        setattr(review, key, value)
    review.updated_at = utcnow()
    session.add(review)
    commit_or_rollback(session, "update_review", review_id)
    session.refresh(review)
    return review


@router.delete("/{review_id}", status_code=204)
def delete_review(review_id: int, session: SessionDep, actor: ActorDep):
    review = _get_review(session, review_id)
    require_owner_or_admin(
        actor, review.donor_id, "You do not have permission to delete this review"
    )
    session.delete(review)
    commit_or_rollback(session, "delete_review", review_id)
    return Response(status_code=204)


@router.put("/{review_id}/respond", response_model=ReviewRead)
def respond_to_review(
    review_id: int,
    reply: ReviewReply,
    session: SessionDep,
    actor: ActorDep,
):
    """
    The reviewed NGO answers a review.
    """
    require_role(actor, [Role.NGO], "Only NGOs can respond to reviews")
    review = _get_review(session, review_id)
    if review.ngo_id != actor.id:
        raise Forbidden("You can only respond to reviews for your NGO")

    now = utcnow()
    review.response = reply.response
    review.responded_at = now
    review.updated_at = now
    session.add(review)
    commit_or_rollback(session, "respond_to_review", review_id)
    session.refresh(review)
    return review
