from app.extensions import db
from app.models import IndividualVerificationRequest
from app.utils.notify import notify_user
from helpers import auth_headers


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["db"] == "ok"
    assert body["realtime"] is True


def test_login_and_me(client, customer):
    resp = client.post("/api/auth/login", json={"email": " RAM@example.com ", "password": "password123"})
    assert resp.status_code == 200
    token = resp.get_json()["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["data"]["email"] == "ram@example.com"


def test_each_request_authenticates_its_own_token(client, customer, other_customer):
    emails = [
        client.get("/api/auth/me", headers=auth_headers(user)).get_json()["data"]["email"]
        for user in (customer, other_customer, customer)
    ]
    assert emails == ["ram@example.com", "sita@example.com", "ram@example.com"]
    assert client.get("/api/auth/me").status_code == 401


def test_login_rejects_bad_password(client, customer):
    resp = client.post("/api/auth/login", json={"email": "ram@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "message": "Invalid credentials"}


def test_protected_routes_need_a_token(client):
    for path in ("/api/auth/me", "/api/support/tickets", "/api/notifications", "/api/payments/history"):
        resp = client.get(path, headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401, path
        assert resp.get_json()["success"] is False


def test_unknown_api_route_is_json(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_verification_request_lifecycle(client, customer):
    body = {"fullName": "Ram Sharma", "idDocumentType": "Passport", "idDocumentNumber": "PA123"}

    first = client.post("/api/verification/individual", json=body, headers=auth_headers(customer))
    assert first.status_code == 201
    data = first.get_json()["data"]
    assert data["status"] == "pending_payment"
    assert data["idDocumentType"] == "passport"

    again = client.post("/api/verification/individual", json=body, headers=auth_headers(customer))
    assert again.get_json()["data"]["id"] == data["id"]
    assert IndividualVerificationRequest.query.count() == 1

    db.session.get(IndividualVerificationRequest, data["id"]).status = "pending"
    db.session.commit()
    under_review = client.post("/api/verification/individual", json=body, headers=auth_headers(customer))
    assert under_review.status_code == 400

    status = client.get("/api/verification/status", headers=auth_headers(customer)).get_json()["data"]
    assert status["individual"]["status"] == "pending"
    assert status["business"] is None


def test_verification_rejects_unknown_document(client, customer):
    resp = client.post("/api/verification/individual", json={
        "fullName": "Ram", "idDocumentType": "library_card", "idDocumentNumber": "1",
    }, headers=auth_headers(customer))
    assert resp.status_code == 400


def test_notifications_list_and_read(client, customer, other_customer):
    note = notify_user(customer.id, "Ad promoted", "Your ad is featured.")
    db.session.commit()

    listed = client.get("/api/notifications?unread=1", headers=auth_headers(customer)).get_json()
    assert listed["unreadCount"] == 1
    assert listed["data"][0]["title"] == "Ad promoted"

    assert client.post(f"/api/notifications/{note.id}/read", headers=auth_headers(other_customer)).status_code == 404
    read = client.post(f"/api/notifications/{note.id}/read", headers=auth_headers(customer))
    assert read.get_json()["data"]["isRead"] is True
    assert client.get("/api/notifications", headers=auth_headers(customer)).get_json()["unreadCount"] == 0
