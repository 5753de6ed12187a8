import pytest

from conftest import create_user, donation_payload
from models import Role


@pytest.fixture
def delivered(login, donor, ngo1):
    owner = login(donor)
    donation = owner.post("/donations/", json=donation_payload()).json()
    ngo = login(ngo1)
    ngo.post(f"/donations/{donation['id']}/claim")
    url = f"/donations/{donation['id']}/status"
    ngo.patch(url, json={"status": "in-transit"})
    assert ngo.patch(url, json={"status": "delivered"}).status_code == 200
    return owner, ngo, donation


def test_review_lifecycle(delivered, login, ngo1, ngo2, admin):
    owner, ngo, donation = delivered

    resp = owner.post("/reviews/", json={
        "ngo_id": ngo1.id, "donation_id": donation["id"], "rating": 4, "comment": "Quick pickup",
    })
    assert resp.status_code == 201, resp.text
    review = resp.json()
    assert review["rating"] == 4

    types = [n["type"] for n in ngo.get("/notifications/").json()["data"]]
    assert "review" in types

    again = owner.post("/reviews/", json={
        "ngo_id": ngo1.id, "donation_id": donation["id"], "rating": 5,
    })
    assert again.status_code == 400

    updated = owner.put(f"/reviews/{review['id']}", json={"rating": 5})
    assert updated.json()["rating"] == 5
    assert updated.json()["comment"] == "Quick pickup"

    assert login(ngo2).put(f"/reviews/{review['id']}/respond", json={"response": "Hi"}).status_code == 403
    replied = ngo.put(f"/reviews/{review['id']}/respond", json={"response": "Thank you!"})
    assert replied.json()["response"] == "Thank you!"
    assert replied.json()["responded_at"] is not None

    assert ngo.delete(f"/reviews/{review['id']}").status_code == 403
    assert login(admin).delete(f"/reviews/{review['id']}").status_code == 204


def test_review_needs_delivery_by_that_ngo(login, delivered, donor, ngo1, ngo2):
    owner, ngo, donation = delivered

    wrong_ngo = owner.post("/reviews/", json={
        "ngo_id": ngo2.id, "donation_id": donation["id"], "rating": 3,
    })
    assert wrong_ngo.status_code == 400

    fresh = owner.post("/donations/", json=donation_payload(title="Not yet delivered")).json()
    early = owner.post("/reviews/", json={"ngo_id": ngo1.id, "donation_id": fresh["id"], "rating": 3})
    assert early.status_code == 400

    by_ngo = ngo.post("/reviews/", json={"ngo_id": ngo1.id, "donation_id": donation["id"], "rating": 3})
    assert by_ngo.status_code == 403

    bad_rating = owner.post("/reviews/", json={
        "ngo_id": ngo1.id, "donation_id": donation["id"], "rating": 6,
    })
    assert bad_rating.status_code == 422


def test_ngo_review_summary(session, login, ngo1):
    ratings = [5, 4, 4]
    for n, rating in enumerate(ratings):
        giver = create_user(session, f"giver{n}@example.com", Role.DONOR)
        owner = login(giver)
        donation = owner.post("/donations/", json=donation_payload()).json()
        ngo = login(ngo1)
        ngo.post(f"/donations/{donation['id']}/claim")
        url = f"/donations/{donation['id']}/status"
        ngo.patch(url, json={"status": "in-transit"})
        ngo.patch(url, json={"status": "delivered"})
        owner.post("/reviews/", json={"ngo_id": ngo1.id, "donation_id": donation["id"], "rating": rating})

    summary = login(ngo1).get(f"/reviews/ngo/{ngo1.id}", params={"limit": 2}).json()
    assert summary["avg_rating"] == 4.3
    assert summary["total_reviews"] == 3
    assert summary["distribution"] == {"5": 1, "4": 2}
    assert len(summary["data"]) == 2
    assert summary["pagination"]["total"] == 3


def test_empty_review_summary(anon, ngo1):
    summary = anon.get(f"/reviews/ngo/{ngo1.id}").json()
    assert summary["avg_rating"] == 0
    assert summary["total_reviews"] == 0
    assert summary["distribution"] == {}
