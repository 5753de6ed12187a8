from dataclasses import dataclass
from typing import Iterable, Optional

from sqlmodel import Session

from errors import Forbidden
from models import NGODetails, Role, User, VerificationStatus


@dataclass(frozen=True)
class Actor:
    """The caller of a workflow operation."""

    id: int
    role: str
    verified: bool = False
    verification_status: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_verified_ngo(self) -> bool:
        return (
            self.role == Role.NGO
            and self.verified
            and self.verification_status == VerificationStatus.VERIFIED
        )


def actor_for(session: Session, user: User) -> Actor:
    details = session.get(NGODetails, user.id) if user.role == Role.NGO else None
    return Actor(
        id=user.id,
        role=user.role,
        verified=user.verified,
        verification_status=details.verification_status if details else None,
    )


def require_role(actor: Actor, allowed: Iterable[str], message: Optional[str] = None) -> None:
    allowed = tuple(allowed)
    if actor.role not in allowed:
        raise Forbidden(message or f"Access denied. Required role(s): {', '.join(allowed)}")


def require_verified_ngo(actor: Actor, action: str = "claim donations") -> None:
    require_role(actor, [Role.NGO], f"Only NGOs can {action}")
    if not actor.is_verified_ngo:
        raise Forbidden(f"Your NGO must be verified to {action}")


def require_owner_or_admin(actor: Actor, owner_id: Optional[int], message: str) -> None:
    if actor.id != owner_id and not actor.is_admin:
        raise Forbidden(message)
