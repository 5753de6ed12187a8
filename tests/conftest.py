"""Shared fixtures: a throwaway SQLite database per test and logged-in clients."""

import os

# Never touch the dev Postgres from tests
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SESSION_SECRET", "test-secret")
os.environ.setdefault("ADMIN_SETUP_KEY", "test-setup-key")

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

import lifecycle
from db import get_session, make_engine
from main import app
from models import DonorStats, NGODetails, Role, User, VerificationStatus
from permissions import actor_for
from routers.auth import hash_password
from schemas import DonationCreate

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def app_client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield app
    app.dependency_overrides.clear()


def create_user(
    session: Session,
    email: str,
    role: str,
    verified: bool = False,
    verification_status: Optional[str] = None,
    active: bool = True,
    name: Optional[str] = None,
) -> User:
    user = User(
        email=email,
        name=name or email.split("@")[0].title(),
        password_hash=hash_password(PASSWORD),
        role=role,
        verified=verified,
        active=active,
    )
    session.add(user)
    session.flush()
    if role == Role.NGO:
        if verification_status is None:
            verification_status = (
                VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING
            )
        session.add(NGODetails(
            user_id=user.id,
            description=f"{user.name} feeds families",
            categories=["food"],
            verification_status=verification_status,
        ))
    elif role == Role.DONOR:
        session.add(DonorStats(user_id=user.id))
    session.commit()
    session.refresh(user)
    return user


def donation_payload(**overrides) -> dict:
    data = {
        "title": "Fresh vegetables",
        "description": "Ten crates of fresh vegetables from the farm",
        "category": "food",
        "quantity": 10,
        "unit": "crates",
        "pickup_location": {"lat": 40.7128, "lng": -74.0060, "address": "New York, NY"},
    }
    data.update(overrides)
    return data


@pytest.fixture
def donor(session):
    return create_user(session, "donor@example.com", Role.DONOR)


@pytest.fixture
def ngo1(session):
    return create_user(session, "ngo1@example.com", Role.NGO, verified=True)


@pytest.fixture
def ngo2(session):
    return create_user(session, "ngo2@example.com", Role.NGO, verified=True)


@pytest.fixture
def pending_ngo(session):
    return create_user(session, "pending@example.com", Role.NGO)


@pytest.fixture
def admin(session):
    return create_user(session, "admin@example.com", Role.ADMIN, verified=True)


@pytest.fixture
def actor(session):
    """Build the workflow Actor for a user."""
    return lambda user: actor_for(session, user)


@pytest.fixture
def make_donation(session, actor):
    def _make(owner, **overrides):
        return lifecycle.create_donation(
            session, actor(owner), DonationCreate(**donation_payload(**overrides))
        )

    return _make


@pytest.fixture
def login(app_client):
    """Return a fresh client logged in as the given user; each has its own cookies."""
    clients = []

    def _login(user: User) -> TestClient:
        client = TestClient(app_client)
        resp = client.post("/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        clients.append(client)
        return client

    yield _login
    for client in clients:
        client.close()


@pytest.fixture
def anon(app_client):
    client = TestClient(app_client)
    yield client
    client.close()
