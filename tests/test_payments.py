from datetime import datetime, timedelta, timezone

from bson import ObjectId

from database import CONTESTS, PAYMENTS, SUBMISSIONS
from main import app
from payments import StripeGateway, get_payment_gateway
from tests.helpers import add_contest, add_user, auth_header


def participants(db, cid):
    return db[CONTESTS].find_one({"_id": ObjectId(cid)})["participants"]


def test_submission_requires_payment_then_succeeds_once(client, db):
    add_user(db, "u1")
    cid = add_contest(db, status="approved")
    h = auth_header("u1")
    entry = {"contestId": cid, "task": "https://example.com/my-entry"}

    r = client.post("/submissions", json=entry, headers=h)
    assert r.status_code == 403
    assert "pay" in r.json()["detail"].lower()

    r = client.post("/save-payment", json={"contestId": cid}, headers=h)
    assert r.status_code == 200
    assert r.json() == {"success": True, "alreadyPaid": False}
    assert participants(db, cid) == 1

    r = client.post("/submissions", json=entry, headers=h)
    assert r.status_code == 200, r.text
    stored = db[SUBMISSIONS].find_one({"uid": "u1", "contestId": cid})
    assert stored["task"] == entry["task"]
    assert stored["email"] == "u1@example.com"

    r = client.post("/submissions", json=entry, headers=h)
    assert r.status_code == 400
    assert db[SUBMISSIONS].count_documents({"uid": "u1", "contestId": cid}) == 1


def test_second_payment_is_acknowledged_but_not_counted(client, db):
    cid = add_contest(db, status="approved")
    h = auth_header("u1")

    first = client.post("/save-payment", json={"contestId": cid, "transactionId": "cs_1"}, headers=h)
    second = client.post("/save-payment", json={"contestId": cid, "transactionId": "cs_1"}, headers=h)

    assert first.json()["alreadyPaid"] is False
    assert second.status_code == 200
    assert second.json() == {"success": True, "alreadyPaid": True}
    assert participants(db, cid) == 1
    assert db[PAYMENTS].count_documents({"uid": "u1", "contestId": cid}) == 1


def test_payment_for_unknown_contest(client):
    h = auth_header("u1")
    assert client.post("/save-payment", json={"contestId": str(ObjectId())}, headers=h).status_code == 404
    assert client.post("/save-payment", json={"contestId": "nope"}, headers=h).status_code == 400


def test_existence_probes_are_self_scoped(client, db):
    cid = add_contest(db, status="approved")
    client.post("/save-payment", json={"contestId": cid}, headers=auth_header("u1"))

    r = client.get(f"/check-payment/u1/{cid}", headers=auth_header("u1"))
    assert r.json() == {"paid": True}
    r = client.get(f"/check-submission/u1/{cid}", headers=auth_header("u1"))
    assert r.json() == {"submitted": False}

    assert client.get(f"/check-payment/u1/{cid}", headers=auth_header("u2")).status_code == 403
    assert client.get(f"/check-submission/u1/{cid}", headers=auth_header("u2")).status_code == 403
    assert client.get(f"/check-payment/u1/{cid}").status_code == 401


def test_my_participated_sorted_by_deadline(client, db):
    now = datetime.now(timezone.utc)
    late = add_contest(db, name="late", status="approved", deadline=now + timedelta(days=30))
    soon = add_contest(db, name="soon", status="approved", deadline=now + timedelta(days=2))
    add_contest(db, name="unpaid", status="approved", deadline=now + timedelta(days=1))
    h = auth_header("u1")

    assert client.get("/my-participated", headers=h).json() == []

    for cid in (late, soon):
        client.post("/save-payment", json={"contestId": cid}, headers=h)
    names = [c["name"] for c in client.get("/my-participated", headers=h).json()]
    assert names == ["soon", "late"]


def test_creator_submissions_for_listed_contests(client, db):
    add_user(db, "maker", role="creator")
    mine = add_contest(db, creator_uid="maker")
    theirs = add_contest(db, creator_uid="rival")
    db[SUBMISSIONS].insert_many([
        {"contestId": mine, "uid": "u1", "task": "a"},
        {"contestId": theirs, "uid": "u2", "task": "b"},
    ])
    h = auth_header("maker")

    r = client.post("/creator/submissions", json={"contestIds": [mine]}, headers=h)
    assert [s["uid"] for s in r.json()] == ["u1"]
    assert client.post("/creator/submissions", json={"contestIds": []}, headers=h).json() == []


def test_creator_submissions_trust_the_supplied_ids(client, db):
    # Known gap: ids are not checked against the caller's own contests
    add_user(db, "maker", role="creator")
    theirs = add_contest(db, creator_uid="rival")
    db[SUBMISSIONS].insert_one({"contestId": theirs, "uid": "u2", "task": "b"})

    r = client.post("/creator/submissions", json={"contestIds": [theirs]}, headers=auth_header("maker"))
    assert r.status_code == 200
    assert [s["uid"] for s in r.json()] == ["u2"]


def test_checkout_session_for_open_contest(client, db, gateway):
    cid = add_contest(db, status="approved", price=25)
    r = client.post("/create-checkout-session", json={"contestId": cid}, headers=auth_header("u1"))
    assert r.status_code == 200, r.text
    assert r.json() == {"id": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}
    assert gateway.calls == [{"contest_id": cid, "uid": "u1", "email": "u1@example.com"}]
    # checkout alone records nothing
    assert db[PAYMENTS].count_documents({}) == 0
    assert participants(db, cid) == 0


def test_checkout_rejects_closed_contests(client, db, gateway):
    h = auth_header("u1")
    pending = add_contest(db, status="pending")
    expired = add_contest(db, status="approved", deadline=datetime.now(timezone.utc) - timedelta(hours=1))

    assert client.post("/create-checkout-session", json={"contestId": pending}, headers=h).status_code == 400
    assert client.post("/create-checkout-session", json={"contestId": expired}, headers=h).status_code == 400
    assert client.post("/create-checkout-session", json={"contestId": str(ObjectId())}, headers=h).status_code == 404
    assert client.post("/create-checkout-session", json={"contestId": pending}).status_code == 401
    assert gateway.calls == []


def test_unconfigured_gateway_surfaces_as_server_error(client, db):
    app.dependency_overrides[get_payment_gateway] = lambda: StripeGateway(None, "http://localhost:5173")
    cid = add_contest(db, status="approved")
    r = client.post("/create-checkout-session", json={"contestId": cid}, headers=auth_header("u1"))
    assert r.status_code == 500
    assert r.json() == {"detail": "Payment provider error"}
