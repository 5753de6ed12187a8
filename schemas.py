from datetime import datetime
from typing import Annotated, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import Donation

T = TypeVar("T")

Category = Literal["food", "clothes", "books", "medical", "electronics", "furniture", "other"]
Condition = Literal["new", "good", "fair", "used"]
Priority = Literal["low", "normal", "high", "urgent"]
DonationStatusName = Literal["available", "claimed", "in-transit", "delivered", "cancelled"]


# ---- users ----

class NGODetailsIn(BaseModel):
    registration_number: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    website: Optional[str] = None
    categories: List[str] = []
    established_year: Optional[int] = Field(default=None, ge=1900)


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=6)
    role: Literal["donor", "ngo"]
    phone: Optional[str] = None
    address: Optional[str] = None
    ngo_details: Optional[NGODetailsIn] = None


class LoginData(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class NGODetailsUpdate(BaseModel):
    registration_number: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    website: Optional[str] = None
    categories: Optional[List[str]] = None
    established_year: Optional[int] = Field(default=None, ge=1900)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordReset(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class AdminSetup(BaseModel):
    email: EmailStr
    name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=6)
    setup_key: str = Field(min_length=1)


class DonorStatsRead(BaseModel):
    total_donations: int = 0
    active_donations: int = 0
    completed_donations: int = 0

    model_config = ConfigDict(from_attributes=True)


class NGODetailsRead(BaseModel):
    registration_number: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    categories: List[str] = []
    established_year: Optional[int] = None
    verification_status: str
    verification_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class _UserBase(BaseModel):
    id: int
    email: EmailStr
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    verified: bool
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonorRead(_UserBase):
    role: Literal["donor"]
    donor_stats: DonorStatsRead


class NGORead(_UserBase):
    role: Literal["ngo"]
    ngo_details: NGODetailsRead


class AdminRead(_UserBase):
    role: Literal["admin"]


UserRead = Annotated[Union[DonorRead, NGORead, AdminRead], Field(discriminator="role")]


# ---- donations ----

class PickupLocation(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str = Field(min_length=1)


class DonationCreate(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=10, max_length=2000)
    category: Category
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    condition: Condition = "good"
    expiry_date: Optional[datetime] = None
    images: List[str] = []
    pickup_location: PickupLocation
    pickup_instructions: Optional[str] = None
    priority: Priority = "normal"
    tags: List[str] = []


class DonationUpdate(BaseModel):
    """Editable fields; status and ownership only change through the workflow."""

    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    category: Optional[Category] = None
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    condition: Optional[Condition] = None
    expiry_date: Optional[datetime] = None
    images: Optional[List[str]] = None
    pickup_location: Optional[PickupLocation] = None
    pickup_instructions: Optional[str] = None
    priority: Optional[Priority] = None
    tags: Optional[List[str]] = None
    active: Optional[bool] = None


class DonationStatusUpdate(BaseModel):
    status: DonationStatusName
    delivery_notes: Optional[str] = None
    delivery_images: Optional[List[str]] = None


class DonationRead(BaseModel):
    id: int
    donor_id: int
    title: str
    description: str
    category: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    condition: str
    expiry_date: Optional[datetime] = None
    images: List[str] = []
    pickup_location: PickupLocation
    pickup_instructions: Optional[str] = None
    status: str
    claimed_by: Optional[int] = None
    claimed_at: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    delivery_images: List[str] = []
    priority: str
    tags: List[str] = []
    active: bool
    views: int
    created_at: datetime
    updated_at: datetime
    distance_km: Optional[float] = None

    @classmethod
    def from_model(cls, donation: Donation, distance_km: Optional[float] = None) -> "DonationRead":
        data = {
            name: getattr(donation, name)
            for name in cls.model_fields
            if name not in ("pickup_location", "distance_km")
        }
        return cls(
            **data,
            pickup_location=PickupLocation(
                lat=donation.pickup_lat,
                lng=donation.pickup_lng,
                address=donation.pickup_address,
            ),
            distance_km=distance_km,
        )


class CountBucket(BaseModel):
    key: Optional[str]
    count: int


class DonationStats(BaseModel):
    status_stats: List[CountBucket]
    category_stats: List[CountBucket]


class CategorySummary(BaseModel):
    name: str
    count: int
    total_quantity: float


class CategoryList(BaseModel):
    categories: List[CategorySummary]
    total: int


# ---- requests ----

class RequestCreate(BaseModel):
    donation_id: int
    message: Optional[str] = Field(default=None, max_length=1000)
    priority: Priority = "normal"
    need_by_date: Optional[datetime] = None
    beneficiaries_count: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None


class RequestStatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]
    response: Optional[str] = Field(default=None, max_length=1000)


class RequestRead(BaseModel):
    id: int
    ngo_id: int
    donation_id: int
    message: Optional[str] = None
    priority: str
    need_by_date: Optional[datetime] = None
    beneficiaries_count: Optional[int] = None
    notes: Optional[str] = None
    status: str
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---- notifications ----

class NotificationRead(BaseModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    related_id: Optional[int] = None
    related_type: Optional[str] = None
    read: bool
    action_url: Optional[str] = None
    priority: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---- reviews ----

class ReviewCreate(BaseModel):
    ngo_id: int
    donation_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewReply(BaseModel):
    response: str = Field(min_length=1, max_length=2000)


class ReviewRead(BaseModel):
    id: int
    donor_id: int
    ngo_id: int
    donation_id: int
    rating: int
    comment: Optional[str] = None
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    helpful: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---- admin ----

class NGOVerification(BaseModel):
    status: Literal["verified", "rejected"]
    reason: Optional[str] = None


# ---- pagination ----

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class Page(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination


class NotificationPage(Page[NotificationRead]):
    unread_count: int


class ReviewPage(Page[ReviewRead]):
    avg_rating: float
    total_reviews: int
    distribution: dict
