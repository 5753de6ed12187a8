from fastapi import APIRouter
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from models import Donation, DonationStatus
from schemas import CategoryList, CategorySummary

router = APIRouter(tags=["search"])


@router.get("/categories", response_model=CategoryList)
def list_categories(session: SessionDep):
    """
    Categories that have available donations right now, busiest first.
    Open to anonymous visitors.
    """
    count = func.count(Donation.id)
    rows = session.exec(
        select(
            Donation.category,
            count,
            func.coalesce(func.sum(Donation.quantity), 0),
        )
        .where(
            Donation.active == True,  # noqa: E712
            Donation.status == DonationStatus.AVAILABLE,
        )
        .group_by(Donation.category)
        .order_by(count.desc(), Donation.category)
    ).all()

    categories = [
        CategorySummary(name=name, count=n, total_quantity=quantity)
        for name, n, quantity in rows
    ]
    return CategoryList(categories=categories, total=len(categories))
