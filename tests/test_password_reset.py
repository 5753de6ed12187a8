import pytest

from conftest import PASSWORD
from routers import password_reset


@pytest.fixture
def dev_mode(monkeypatch):
    monkeypatch.setattr(password_reset, "APP_ENV", "development")


def request_token(anon, email):
    resp = anon.post("/password-reset/request", json={"email": email})
    assert resp.status_code == 200, resp.text
    return resp.json().get("reset_token")


def test_request_does_not_reveal_accounts(anon, donor):
    unknown = anon.post("/password-reset/request", json={"email": "nobody@example.com"})
    known = anon.post("/password-reset/request", json={"email": donor.email})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()
    assert "reset_token" not in known.json()


def test_reset_password_with_token(dev_mode, anon, login, donor):
    old_session = login(donor)
    token = request_token(anon, donor.email)
    assert token

    assert anon.get("/password-reset/verify", params={"token": token}).status_code == 200

    resp = anon.post("/password-reset/reset", json={"token": token, "new_password": "brand-new"})
    assert resp.status_code == 200, resp.text

    assert anon.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 401
    assert anon.post("/login", json={"email": donor.email, "password": "brand-new"}).status_code == 200
    assert old_session.get("/me").status_code == 401


def test_reset_token_is_single_use(dev_mode, anon, donor):
    token = request_token(anon, donor.email)
    assert anon.post("/password-reset/reset", json={"token": token, "new_password": "brand-new"}).status_code == 200

    again = anon.post("/password-reset/reset", json={"token": token, "new_password": "other-one"})
    assert again.status_code == 400
    assert again.json()["code"] == "VALIDATION_ERROR"
    assert anon.get("/password-reset/verify", params={"token": token}).status_code == 400


def test_bad_and_expired_tokens(dev_mode, monkeypatch, anon, donor):
    resp = anon.get("/password-reset/verify", params={"token": "garbage"})
    assert resp.status_code == 400

    token = request_token(anon, donor.email)
    monkeypatch.setattr(password_reset, "RESET_MAX_AGE", -1)
    resp = anon.post("/password-reset/reset", json={"token": token, "new_password": "brand-new"})
    assert resp.status_code == 400
