from conftest import donation_payload


def setup_donation(login, donor):
    client = login(donor)
    resp = client.post("/donations/", json=donation_payload())
    assert resp.status_code == 201
    return client, resp.json()


def test_request_flow(login, donor, ngo1, ngo2):
    owner, donation = setup_donation(login, donor)
    first, second = login(ngo1), login(ngo2)

    r1 = first.post("/requests/", json={
        "donation_id": donation["id"], "message": "For our kitchen", "beneficiaries_count": 40,
    })
    assert r1.status_code == 201, r1.text
    assert r1.json()["status"] == "pending"
    r2 = second.post("/requests/", json={"donation_id": donation["id"]})
    assert r2.status_code == 201

    listed = owner.get("/requests/").json()
    assert listed["pagination"]["total"] == 2
    assert [r["ngo_id"] for r in first.get("/requests/").json()["data"]] == [ngo1.id]

    resp = owner.patch(f"/requests/{r1.json()['id']}", json={"status": "approved"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    assert second.get(f"/requests/{r2.json()['id']}").json()["status"] == "rejected"
    claimed = owner.get(f"/donations/{donation['id']}").json()
    assert claimed["status"] == "claimed"
    assert claimed["claimed_by"] == ngo1.id

    pending = owner.get("/requests/", params={"status": "pending"}).json()
    assert pending["data"] == []


def test_duplicate_request_conflicts(login, donor, ngo1):
    _, donation = setup_donation(login, donor)
    ngo = login(ngo1)

    first = ngo.post("/requests/", json={"donation_id": donation["id"]})
    dup = ngo.post("/requests/", json={"donation_id": donation["id"]})
    assert dup.status_code == 409
    assert dup.json()["code"] == "DUPLICATE_REQUEST"

    cancelled = ngo.post(f"/requests/{first.json()['id']}/cancel")
    assert cancelled.json()["status"] == "cancelled"
    assert ngo.post("/requests/", json={"donation_id": donation["id"]}).status_code == 201


def test_request_permissions(login, donor, ngo1, ngo2, pending_ngo):
    _, donation = setup_donation(login, donor)

    resp = login(pending_ngo).post("/requests/", json={"donation_id": donation["id"]})
    assert resp.status_code == 403

    request_id = login(ngo1).post("/requests/", json={"donation_id": donation["id"]}).json()["id"]
    stranger = login(ngo2)
    assert stranger.get(f"/requests/{request_id}").status_code == 403
    assert stranger.patch(f"/requests/{request_id}", json={"status": "approved"}).status_code == 403
    assert stranger.post(f"/requests/{request_id}/cancel").status_code == 403


def test_request_for_missing_donation(login, ngo1):
    resp = login(ngo1).post("/requests/", json={"donation_id": 404})
    assert resp.status_code == 404


def test_response_status_is_validated(login, donor, ngo1):
    owner, donation = setup_donation(login, donor)
    request_id = login(ngo1).post("/requests/", json={"donation_id": donation["id"]}).json()["id"]

    assert owner.patch(f"/requests/{request_id}", json={"status": "cancelled"}).status_code == 422
    rejected = owner.patch(f"/requests/{request_id}", json={"status": "rejected", "response": "Sorry"})
    assert rejected.json()["response"] == "Sorry"
    again = owner.patch(f"/requests/{request_id}", json={"status": "approved"})
    assert again.status_code == 400
