import hmac
import logging
import os

from fastapi import APIRouter
from sqlmodel import select

from db import SessionDep
from errors import Forbidden, InvalidState
from lifecycle import commit_or_rollback
from models import Role, User
from schemas import AdminSetup
from .auth import _session_response, create_session_token, hash_password, serialize_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["setup"])

# Unset means first-time setup over HTTP is switched off
ADMIN_SETUP_KEY = os.getenv("ADMIN_SETUP_KEY")


def _admin_exists(session) -> bool:
    return session.exec(select(User.id).where(User.role == Role.ADMIN)).first() is not None


@router.get("/check")
def check_setup(session: SessionDep):
    """
    Tell a fresh deployment whether it still needs its first admin.
    """
    if _admin_exists(session):
        return {"setup_required": False, "message": "Setup already completed"}
    return {"setup_required": True, "message": "First-time setup required"}


@router.post("/admin", status_code=201)
def create_first_admin(payload: AdminSetup, session: SessionDep):
    """
    Create the first admin account. Needs the deployment's setup key and
    only works while no admin exists.
    """
    if not ADMIN_SETUP_KEY or not hmac.compare_digest(payload.setup_key, ADMIN_SETUP_KEY):
        logger.warning("Admin setup attempted with an invalid setup key")
        raise Forbidden("Invalid setup key")
    if _admin_exists(session):
        raise InvalidState("Setup already completed, an admin account exists")

    email = payload.email.lower()
    if session.exec(select(User.id).where(User.email == email)).first() is not None:
        raise InvalidState("Email already registered")

    user = User(
        email=email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=Role.ADMIN,
        verified=True,
        active=True,
    )
    session.add(user)
    commit_or_rollback(session, "create_first_admin", None)
    session.refresh(user)
    logger.info("First admin account %s created", user.id)

    token = create_session_token(user.id, user.role, user.session_version)
    body = {
        "message": "Admin account created successfully",
        "role": user.role,
        "token": token,
        "user": serialize_user(session, user).model_dump(mode="json"),
    }
    return _session_response(body, token, status_code=201)
