import logging
import os
import secrets
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response
from fastapi.responses import JSONResponse
from itsdangerous import BadData, URLSafeTimedSerializer
from passlib.context import CryptContext
from pydantic import TypeAdapter
from sqlmodel import Session, select

from db import SessionDep
from errors import Forbidden
from lifecycle import commit_or_rollback
from models import DonorStats, NGODetails, Role, User, VerificationStatus, utcnow
from permissions import Actor, actor_for
from schemas import (
    DonorStatsRead,
    LoginData,
    NGODetailsRead,
    NGODetailsUpdate,
    PasswordChange,
    ProfileUpdate,
    UserCreate,
    UserRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

SECRET_KEY = os.getenv("SESSION_SECRET") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 8)))
serializer = URLSafeTimedSerializer(SECRET_KEY)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

_user_read = TypeAdapter(UserRead)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int, role: str, version: int = 0) -> str:
    """
    Store user_id + role in the signed token, with the user's session version.
    Example data:
        {"user_id": 3, "role": "donor", "v": 0}
    """
    return serializer.dumps({"user_id": user_id, "role": role, "v": version})


def verify_session_token(token: str, max_age_seconds: int = SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ..., 'role': ..., 'v': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadData:
        return None


def serialize_user(session: Session, user: User) -> UserRead:
    """Render a user as the role-tagged read model."""
    data = {
        field: getattr(user, field)
        for field in ("id", "email", "name", "phone", "address", "verified", "active", "created_at", "role")
    }
    if user.role == Role.DONOR:
        stats = session.get(DonorStats, user.id) or DonorStats(user_id=user.id)
        data["donor_stats"] = DonorStatsRead.model_validate(stats)
    elif user.role == Role.NGO:
        details = session.get(NGODetails, user.id) or NGODetails(user_id=user.id)
        data["ngo_details"] = NGODetailsRead.model_validate(details)
    return _user_read.validate_python(data)


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
    authorization: Optional[str] = Header(default=None),
) -> dict:
    """
    Reads the 'session' cookie (or a Bearer token), verifies it,
    looks up the user, and returns {"user": User, "role": str, "actor": Actor}.
    Raises 401 if not logged in / invalid.
    """
    token = session_token
    if token is None and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(token)
    if not data:
        raise HTTPException(
            status_code=401, detail="Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise HTTPException(
            status_code=401, detail="User not found for this session")
    if data.get("v", 0) != user.session_version:
        raise HTTPException(
            status_code=401, detail="Session has been revoked")
    if not user.active:
        raise HTTPException(
            status_code=401, detail="Your account has been deactivated")

    return {"user": user, "role": user.role, "actor": actor_for(session, user)}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def require_auth(
    user_and_role: Optional[dict] = Depends(get_current_user_and_role),
) -> dict:
    if user_and_role is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    return user_and_role


UserRoleDep = Annotated[dict, Depends(require_auth)]


def get_actor(current: UserRoleDep) -> Actor:
    return current["actor"]


ActorDep = Annotated[Actor, Depends(get_actor)]


def _session_response(body: dict, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(body, status_code=status_code)
    resp.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )
    return resp


@router.post("/register", status_code=201)
def register(user_in: UserCreate, session: SessionDep):
    """
    Register a new donor or NGO with a hashed password.
    NGOs start out pending verification by an admin.
    """
    email = user_in.email.lower()
    existing = session.exec(
        select(User).where(User.email == email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=email,
        name=user_in.name,
        password_hash=hash_password(user_in.password),
        role=user_in.role,
        phone=user_in.phone,
        address=user_in.address,
    )
    session.add(user)
    session.flush()

    if user.role == Role.NGO:
        details = user_in.ngo_details.model_dump() if user_in.ngo_details else {}
        session.add(NGODetails(user_id=user.id, **details))
    else:
        session.add(DonorStats(user_id=user.id))

    session.commit()
    session.refresh(user)
    logger.info("Registered %s user %s", user.role, user.id)

    token = create_session_token(user.id, user.role, user.session_version)
    body = {
        "message": "Registration successful",
        "role": user.role,
        "token": token,
        "user": serialize_user(session, user).model_dump(mode="json"),
    }
    return _session_response(body, token, status_code=201)


@router.post("/login")
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password and set a signed session cookie.
    The same token is returned for use as a Bearer header.
    """
    user = session.exec(
        select(User).where(User.email == payload.email.lower())
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=401, detail="Invalid email or password"
        )
    if not user.active:
        raise HTTPException(
            status_code=401, detail="Your account has been deactivated"
        )

    token = create_session_token(user.id, user.role, user.session_version)
    return _session_response(
        {"message": "Login successful", "role": user.role, "token": token}, token
    )


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie("session")
    return {"message": "Logged out"}


@router.get("/me", response_model=UserRead)
def read_me(current: CurrentUserRoleDep, session: SessionDep):
    """
    Get info about the currently logged-in user.
    """
    return serialize_user(session, current["user"])


@router.put("/me", response_model=UserRead)
def update_me(payload: ProfileUpdate, current: UserRoleDep, session: SessionDep):
    """
    Update the caller's name, phone or address.
    """
    user = current["user"]
    for key, value in payload.model_dump(exclude_unset=True).items():
        if key == "name" and value is None:
            continue
        setattr(user, key, value)
    user.updated_at = utcnow()
    session.add(user)
    commit_or_rollback(session, "update_profile", user.id)
    session.refresh(user)
    return serialize_user(session, user)


@router.put("/me/password")
def change_password(payload: PasswordChange, current: UserRoleDep, session: SessionDep):
    user = current["user"]
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    user.updated_at = utcnow()
    session.add(user)
    commit_or_rollback(session, "change_password", user.id)
    logger.info("User %s changed their password", user.id)
    return {"message": "Password changed successfully"}


@router.put("/me/ngo-details", response_model=UserRead)
def update_ngo_details(payload: NGODetailsUpdate, current: UserRoleDep, session: SessionDep):
    """
    Edit the caller's NGO profile. A new registration number sends the
    NGO back to pending verification.
    """
    user = current["user"]
    if user.role != Role.NGO:
        raise Forbidden("Only NGOs can update NGO details")

    details = session.get(NGODetails, user.id) or NGODetails(user_id=user.id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("categories", []) is None:
        del changes["categories"]

    new_number = changes.get("registration_number", details.registration_number)
    if new_number != details.registration_number:
        details.verification_status = VerificationStatus.PENDING
        details.verification_reason = None
        user.verified = False
        user.updated_at = utcnow()
        session.add(user)
        logger.info("NGO %s changed registration number, verification reset", user.id)

    for key, value in changes.items():
        setattr(details, key, value)
    session.add(details)
    commit_or_rollback(session, "update_ngo_details", user.id)
    session.refresh(user)
    return serialize_user(session, user)


@router.post("/logout-all")
def logout_all(current: UserRoleDep, session: SessionDep):
    """
    Revoke every session token issued to the caller, on any device.
    """
    user = current["user"]
    user.session_version += 1
    session.add(user)
    commit_or_rollback(session, "logout_all", user.id)
    logger.info("User %s logged out of all sessions", user.id)

    resp = JSONResponse({"message": "Logged out from all devices"})
    resp.delete_cookie("session")
    return resp
