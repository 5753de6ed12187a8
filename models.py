from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, Index, JSON, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role:
    DONOR = "donor"
    NGO = "ngo"
    ADMIN = "admin"


class VerificationStatus:
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DonationStatus:
    AVAILABLE = "available"
    CLAIMED = "claimed"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    # claimed_by is set exactly while the donation is in one of these
    HELD = (CLAIMED, IN_TRANSIT, DELIVERED)


class RequestStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    password_hash: str
    role: str = Field(index=True)  # donor | ngo | admin
    phone: Optional[str] = None
    address: Optional[str] = None
    verified: bool = False
    active: bool = True
    # bumped to revoke every session token issued so far
    session_version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NGODetails(SQLModel, table=True):
    user_id: int = Field(foreign_key="user.id", primary_key=True)
    registration_number: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    categories: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    established_year: Optional[int] = None
    verification_status: str = VerificationStatus.PENDING
    verification_reason: Optional[str] = None


class DonorStats(SQLModel, table=True):
    user_id: int = Field(foreign_key="user.id", primary_key=True)
    total_donations: int = 0
    active_donations: int = 0
    completed_donations: int = 0


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    title: str
    description: str
    category: str = Field(index=True)
    quantity: Optional[float] = None
    unit: Optional[str] = None
    condition: str = "good"
    expiry_date: Optional[datetime] = None
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    pickup_lat: float
    pickup_lng: float
    pickup_address: str
    pickup_instructions: Optional[str] = None

    status: str = Field(default=DonationStatus.AVAILABLE, index=True)
    claimed_by: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    claimed_at: Optional[datetime] = None

    delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    delivery_images: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    priority: str = "normal"
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    active: bool = True
    views: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Request(SQLModel, table=True):
    # One pending request per (ngo, donation); terminal rows are unconstrained.
    __table_args__ = (
        Index(
            "uq_request_pending_ngo_donation",
            "ngo_id",
            "donation_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    ngo_id: int = Field(foreign_key="user.id", index=True)
    donation_id: int = Field(foreign_key="donation.id", index=True)

    message: Optional[str] = None
    priority: str = "normal"
    need_by_date: Optional[datetime] = None
    beneficiaries_count: Optional[int] = None
    notes: Optional[str] = None

    status: str = RequestStatus.PENDING  # pending | approved | rejected | cancelled
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    title: str
    message: str
    type: str  # donation | request | claim | delivery | verification | review | system
    related_id: Optional[int] = None
    related_type: Optional[str] = None
    read: bool = False
    action_url: Optional[str] = None
    priority: str = "normal"
    created_at: datetime = Field(default_factory=utcnow)


class Review(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("donor_id", "donation_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)
    ngo_id: int = Field(foreign_key="user.id", index=True)
    donation_id: int = Field(foreign_key="donation.id")
    rating: int
    comment: Optional[str] = None
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    helpful: int = 0
    reported: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
