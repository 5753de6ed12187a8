import logging

from fastapi.testclient import TestClient

from conftest import PASSWORD, create_user
from models import Role


def test_register_donor_logs_in(anon):
    resp = anon.post("/register", json={
        "email": "Giver@Example.com",
        "name": "Giver",
        "password": "secret123",
        "role": "donor",
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["token"]
    assert body["user"]["email"] == "giver@example.com"
    assert body["user"]["donor_stats"]["total_donations"] == 0

    me = anon.get("/me")
    assert me.status_code == 200
    assert me.json()["role"] == "donor"


def test_register_ngo_starts_pending(anon):
    resp = anon.post("/register", json={
        "email": "shelter@example.com",
        "name": "Shelter",
        "password": "secret123",
        "role": "ngo",
        "ngo_details": {"registration_number": "NGO-1", "categories": ["food"]},
    })
    assert resp.status_code == 201, resp.text
    user = resp.json()["user"]
    assert user["verified"] is False
    assert user["ngo_details"]["verification_status"] == "pending"
    assert user["ngo_details"]["categories"] == ["food"]


def test_register_rejects_admin_role_and_duplicates(anon, donor):
    resp = anon.post("/register", json={
        "email": "boss@example.com", "name": "Boss", "password": "secret123", "role": "admin",
    })
    assert resp.status_code == 422

    resp = anon.post("/register", json={
        "email": donor.email, "name": "Again", "password": "secret123", "role": "donor",
    })
    assert resp.status_code == 400


def test_login_with_wrong_password(anon, donor):
    resp = anon.post("/login", json={"email": donor.email, "password": "nope"})
    assert resp.status_code == 401


def test_inactive_user_cannot_login(session, anon):
    user = create_user(session, "gone@example.com", Role.DONOR, active=False)
    resp = anon.post("/login", json={"email": user.email, "password": PASSWORD})
    assert resp.status_code == 401


def test_bearer_token(app_client, anon, donor):
    token = anon.post("/login", json={"email": donor.email, "password": PASSWORD}).json()["token"]

    fresh = TestClient(app_client)
    assert fresh.get("/me").status_code == 401
    resp = fresh.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["id"] == donor.id
    fresh.close()


def test_garbage_token(anon):
    resp = anon.get("/me", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_logout(login, donor):
    client = login(donor)
    assert client.get("/me").status_code == 200
    assert client.post("/logout").status_code == 200
    assert client.get("/me").status_code == 401


def test_domain_errors_carry_code(login, donor):
    resp = login(donor).get("/donations/999")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Donation not found", "code": "NOT_FOUND"}


def test_requests_are_logged(anon, caplog):
    caplog.set_level(logging.INFO, logger="main")
    assert anon.get("/health").json() == {"status": "ok"}
    assert "GET /health - 200 - anonymous" in caplog.text


def test_update_profile(login, donor):
    client = login(donor)
    resp = client.put("/me", json={"name": "Generous Giver", "phone": "555-0100"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["name"] == "Generous Giver"
    assert body["phone"] == "555-0100"
    assert body["email"] == donor.email

    assert client.put("/me", json={"name": "X"}).status_code == 422
    assert client.get("/me").json()["name"] == "Generous Giver"


def test_change_password(login, anon, donor):
    client = login(donor)

    resp = client.put("/me/password", json={"current_password": "wrong", "new_password": "fresh-secret"})
    assert resp.status_code == 401

    resp = client.put("/me/password", json={"current_password": PASSWORD, "new_password": "fresh-secret"})
    assert resp.status_code == 200
    assert anon.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 401
    assert anon.post("/login", json={"email": donor.email, "password": "fresh-secret"}).status_code == 200


def test_ngo_details_update(login, ngo1, donor):
    assert login(donor).put("/me/ngo-details", json={"website": "https://x.org"}).status_code == 403

    client = login(ngo1)
    resp = client.put("/me/ngo-details", json={"website": "https://food.org", "categories": ["food", "clothes"]})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["verified"] is True
    assert body["ngo_details"]["website"] == "https://food.org"
    assert body["ngo_details"]["categories"] == ["food", "clothes"]
    assert body["ngo_details"]["verification_status"] == "verified"


def test_new_registration_number_needs_verification_again(login, donor, ngo1):
    client = login(ngo1)
    resp = client.put("/me/ngo-details", json={"registration_number": "NGO-NEW-42"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["verified"] is False
    assert body["ngo_details"]["registration_number"] == "NGO-NEW-42"
    assert body["ngo_details"]["verification_status"] == "pending"

    donation = login(donor).post("/donations/", json={
        "title": "Fresh vegetables",
        "description": "Ten crates of fresh vegetables from the farm",
        "category": "food",
        "pickup_location": {"lat": 40.7, "lng": -74.0, "address": "New York, NY"},
    }).json()
    assert client.post(f"/donations/{donation['id']}/claim").status_code == 403


def test_logout_all_revokes_every_session(app_client, login, anon, donor):
    laptop = login(donor)
    phone = login(donor)
    token = anon.post("/login", json={"email": donor.email, "password": PASSWORD}).json()["token"]

    assert laptop.post("/logout-all").status_code == 200
    assert laptop.get("/me").status_code == 401
    assert phone.get("/me").status_code == 401
    bearer = TestClient(app_client)
    assert bearer.get("/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401
    bearer.close()

    assert login(donor).get("/me").status_code == 200
