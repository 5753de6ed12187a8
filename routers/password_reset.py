import hashlib
import logging
import os
from typing import Optional

from fastapi import APIRouter
from itsdangerous import BadData, URLSafeTimedSerializer
from sqlmodel import Session, select

from db import SessionDep
from errors import ValidationError
from lifecycle import commit_or_rollback
from models import User, utcnow
from schemas import PasswordReset, PasswordResetRequest
from .auth import SECRET_KEY, hash_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["password-reset"])

RESET_MAX_AGE = 60 * 60
# Tokens are only handed back over HTTP in development
APP_ENV = os.getenv("APP_ENV", "production")

reset_serializer = URLSafeTimedSerializer(SECRET_KEY, salt="password-reset")

GENERIC_MESSAGE = "If the email exists, a password reset link will be sent"


def _fingerprint(user: User) -> str:
    # changes with the password, so a token stops working once it has been used
    return hashlib.sha256(user.password_hash.encode()).hexdigest()[:16]


def create_reset_token(user: User) -> str:
    return reset_serializer.dumps({"user_id": user.id, "fp": _fingerprint(user)})


def user_for_token(session: Session, token: str) -> Optional[User]:
    """
    The active user a reset token belongs to, or None if the token is
    invalid, expired or already used.
    """
    try:
        data = reset_serializer.loads(token, max_age=RESET_MAX_AGE)
    except BadData:
        return None
    user = session.get(User, data.get("user_id"))
    if user is None or not user.active or data.get("fp") != _fingerprint(user):
        return None
    return user


@router.post("/request")
def request_password_reset(payload: PasswordResetRequest, session: SessionDep):
    """
    Start a password reset. The answer is the same whether or not the
    email is registered.
    """
    user = session.exec(
        select(User).where(User.email == payload.email.lower())
    ).first()
    if user is None or not user.active:
        return {"message": GENERIC_MESSAGE}

    token = create_reset_token(user)
    if APP_ENV == "development":
        return {"message": "Password reset token generated", "reset_token": token}

    # TODO: hand the token to an e-mail sender once one is configured
    logger.info("Password reset requested for user %s", user.id)
    return {"message": GENERIC_MESSAGE}


@router.get("/verify")
def verify_reset_token(token: str, session: SessionDep):
    if user_for_token(session, token) is None:
        raise ValidationError("Invalid or expired reset token")
    return {"message": "Token is valid"}


@router.post("/reset")
def reset_password(payload: PasswordReset, session: SessionDep):
    """
    Set a new password with a reset token. Every open session of the user
    is signed out.
    """
    user = user_for_token(session, payload.token)
    if user is None:
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(payload.new_password)
    user.session_version += 1
    user.updated_at = utcnow()
    session.add(user)
    commit_or_rollback(session, "reset_password", user.id)
    logger.info("Password reset for user %s", user.id)
    return {"message": "Password reset successfully"}
