import pytest

from app.errors import ForbiddenError, TerminalStateError
from app.extensions import db
from app.models import AuditLog, Notification, SupportMessage, SupportTicket
from app.services import support
from helpers import auth_headers


def _create(client, user, **overrides):
    body = {"subject": "Help", "category": "general", "priority": "normal", "message": "My ad is not showing."}
    body.update(overrides)
    return client.post("/api/support/tickets", json=body, headers=auth_headers(user))


def _ticket_id(client, user):
    return _create(client, user).get_json()["data"]["id"]


def test_create_ticket(client, customer):
    resp = _create(client, customer)

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["status"] == "open"
    assert data["ticketNumber"].startswith("TB-")
    assert [m["content"] for m in data["messages"]] == ["My ad is not showing."]
    assert data["messages"][0]["isOwnMessage"] is True


@pytest.mark.parametrize("overrides", [
    {"subject": ""},
    {"message": "   "},
    {"category": "billing"},
    {"priority": "critical"},
])
def test_create_ticket_validation(client, customer, overrides):
    resp = _create(client, customer, **overrides)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    assert SupportTicket.query.count() == 0


def test_internal_note_hidden_from_ticket_owner(client, customer, staff):
    ticket_id = _ticket_id(client, customer)

    resp = client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "Customer seems to be a reseller", "isInternal": True},
        headers=auth_headers(staff),
    )
    assert resp.status_code == 201
    assert resp.get_json()["data"]["isInternal"] is True

    owner_view = client.get(f"/api/support/tickets/{ticket_id}", headers=auth_headers(customer)).get_json()["data"]
    assert all(not m["isInternal"] for m in owner_view["messages"])
    assert "Customer seems to be a reseller" not in [m["content"] for m in owner_view["messages"]]

    staff_view = client.get(f"/api/support/tickets/{ticket_id}", headers=auth_headers(staff)).get_json()["data"]
    assert "Customer seems to be a reseller" in [m["content"] for m in staff_view["messages"]]

    listed = client.get("/api/support/tickets", headers=auth_headers(customer)).get_json()["data"]
    assert listed[0]["lastMessage"]["content"] == "My ad is not showing."


def test_internal_note_does_not_change_status(client, customer, staff):
    ticket_id = _ticket_id(client, customer)
    client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "checking logs", "isInternal": True},
        headers=auth_headers(staff),
    )
    assert db.session.get(SupportTicket, ticket_id).status == "open"


def test_customer_cannot_post_internal_notes(client, customer):
    ticket_id = _ticket_id(client, customer)

    resp = client.post(
        f"/api/support/tickets/{ticket_id}",
        json={"content": "secret?", "isInternal": True},
        headers=auth_headers(customer),
    )

    assert resp.status_code == 201
    assert resp.get_json()["data"]["isInternal"] is False
    assert SupportMessage.query.filter_by(is_internal=True).count() == 0


def test_reply_status_transitions(client, customer, staff):
    ticket_id = _ticket_id(client, customer)

    staff_reply = client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "Can you share the ad link?"},
        headers=auth_headers(staff),
    ).get_json()
    assert staff_reply["ticketStatus"] == "waiting_on_user"
    assert Notification.query.filter_by(user_id=customer.id, title="Support replied").count() == 1

    customer_reply = client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "Here it is", "clientMessageId": "tmp-1"},
        headers=auth_headers(customer),
    ).get_json()
    assert customer_reply["ticketStatus"] == "in_progress"
    assert customer_reply["clientMessageId"] == "tmp-1"


def test_closed_ticket_rejects_customer_messages(client, customer, staff):
    ticket_id = _ticket_id(client, customer)
    client.patch(f"/api/support/tickets/{ticket_id}", json={"status": "closed"}, headers=auth_headers(staff))
    before = SupportMessage.query.filter_by(ticket_id=ticket_id).count()

    resp = client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "hello?"},
        headers=auth_headers(customer),
    )

    assert resp.status_code == 409
    assert resp.get_json()["success"] is False
    assert SupportMessage.query.filter_by(ticket_id=ticket_id).count() == before

    staff_resp = client.post(
        f"/api/support/tickets/{ticket_id}/messages",
        json={"content": "Closing note"},
        headers=auth_headers(staff),
    )
    assert staff_resp.status_code == 201


def test_other_customers_cannot_read_or_post(client, customer, other_customer):
    ticket_id = _ticket_id(client, customer)

    assert client.get(f"/api/support/tickets/{ticket_id}", headers=auth_headers(other_customer)).status_code == 403
    assert client.post(
        f"/api/support/tickets/{ticket_id}/messages", json={"content": "hi"}, headers=auth_headers(other_customer)
    ).status_code == 403
    assert client.get("/api/support/tickets/999", headers=auth_headers(customer)).status_code == 404
    assert client.get("/api/support/tickets", headers=auth_headers(other_customer)).get_json()["data"] == []


def test_update_ticket_returns_diff(client, customer, staff):
    ticket_id = _ticket_id(client, customer)

    resp = client.patch(
        f"/api/support/tickets/{ticket_id}",
        json={"status": "resolved", "priority": "normal", "assignedTo": staff.id},
        headers=auth_headers(staff),
    )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["changes"] == {"status": "resolved", "assignedTo": staff.id}
    assert body["data"]["resolvedAt"] is not None
    assert body["data"]["assignedTo"]["id"] == staff.id
    assert AuditLog.query.filter_by(action="support_ticket_update").count() == 1

    again = client.patch(f"/api/support/tickets/{ticket_id}", json={"status": "resolved"}, headers=auth_headers(staff))
    assert again.get_json()["changes"] == {}


def test_update_ticket_is_staff_only(client, customer):
    ticket_id = _ticket_id(client, customer)
    resp = client.patch(f"/api/support/tickets/{ticket_id}", json={"status": "closed"}, headers=auth_headers(customer))
    assert resp.status_code == 403


def test_assignee_must_be_staff(client, customer, staff):
    ticket_id = _ticket_id(client, customer)
    resp = client.patch(
        f"/api/support/tickets/{ticket_id}", json={"assignedTo": customer.id}, headers=auth_headers(staff)
    )
    assert resp.status_code == 400


def test_staff_list_filters(client, customer, other_customer, staff):
    first = _ticket_id(client, customer)
    _ticket_id(client, other_customer)
    client.patch(f"/api/support/tickets/{first}", json={"assignedTo": staff.id}, headers=auth_headers(staff))

    def ids(query):
        rows = client.get(f"/api/support/tickets?{query}", headers=auth_headers(staff)).get_json()["data"]
        return sorted(r["id"] for r in rows)

    assert len(ids("")) == 2
    assert ids("assigned=me") == [first]
    assert len(ids("assigned=unassigned")) == 1
    assert ids("limit=1") != ids("limit=1&offset=1")


def test_service_closed_ticket_rule(app, customer, staff):
    ticket = support.create_ticket(customer, subject="Refund", category="payment", message="Charged twice")
    support.update_ticket(staff, ticket.id, {"status": "closed"})

    with pytest.raises(TerminalStateError):
        support.post_message(customer, ticket.id, content="still there?")
    with pytest.raises(ForbiddenError):
        support.update_ticket(customer, ticket.id, {"status": "open"})
    assert db.session.get(SupportTicket, ticket.id).closed_at is not None
