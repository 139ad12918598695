import pytest

from app.extensions import socketio
from app.services import support
from helpers import auth_headers, token_for

pytestmark = pytest.mark.realtime


def _connect(app, user):
    client = socketio.test_client(app, auth={"token": token_for(user)})
    assert client.is_connected()
    return client


def _events(client, name):
    return [e["args"][0] for e in client.get_received() if e["name"] == name]


@pytest.fixture
def ticket(app, customer):
    return support.create_ticket(customer, subject="Help", category="general", priority="normal", message="Hi")


def test_connection_without_valid_token_is_refused(app):
    assert not socketio.test_client(app).is_connected()
    assert not socketio.test_client(app, auth={"token": "not-a-jwt"}).is_connected()


def test_customer_never_receives_internal_notes(app, customer, staff, ticket):
    customer_io = _connect(app, customer)
    staff_io = _connect(app, staff)
    assert customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)["success"] is True
    assert staff_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)["success"] is True
    customer_io.get_received()
    staff_io.get_received()

    ack = staff_io.emit(
        "support:send-message",
        {"ticketId": ticket.id, "content": "Possible duplicate account", "isInternal": True},
        callback=True,
    )

    assert ack["success"] is True
    assert ack["message"]["isInternal"] is True
    assert _events(customer_io, "support:message-new") == []
    staff_messages = _events(staff_io, "support:message-new")
    assert [m["message"]["content"] for m in staff_messages] == ["Possible duplicate account"]


def test_visible_reply_reaches_both_sides_with_client_id(app, customer, staff, ticket):
    customer_io = _connect(app, customer)
    staff_io = _connect(app, staff)
    customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    staff_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    customer_io.get_received()
    staff_io.get_received()

    ack = customer_io.emit(
        "support:send-message",
        {"ticketId": ticket.id, "content": "Any update?", "clientMessageId": "tmp-42"},
        callback=True,
    )

    assert ack["clientMessageId"] == "tmp-42"
    assert ack["ticketStatus"] == "in_progress"
    received = staff_io.get_received()
    new = [e["args"][0] for e in received if e["name"] == "support:message-new"]
    assert new[0]["clientMessageId"] == "tmp-42"
    assert new[0]["message"]["id"] == ack["message"]["id"]
    changed = [e["args"][0] for e in received if e["name"] == "support:ticket-status-changed"]
    assert changed[0]["status"] == "in_progress"
    assert changed[0]["previousStatus"] == "open"


def test_http_staff_reply_is_pushed_with_notification(app, client, customer, staff, ticket):
    customer_io = _connect(app, customer)
    customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    customer_io.get_received()

    client.post(
        f"/api/support/tickets/{ticket.id}/messages",
        json={"content": "We are looking into it"},
        headers=auth_headers(staff),
    )

    received = customer_io.get_received()
    names = [e["name"] for e in received]
    assert "support:message-new" in names
    assert "notification" in names
    note = next(e["args"][0] for e in received if e["name"] == "notification")
    assert note["title"] == "Support replied"


def test_customer_cannot_join_someone_elses_ticket(app, other_customer, ticket):
    intruder = _connect(app, other_customer)
    ack = intruder.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    assert ack == {"success": False, "error": "You do not have access to this ticket"}


def test_closed_ticket_rejects_socket_message(app, customer, staff, ticket):
    support.update_ticket(staff, ticket.id, {"status": "closed"})
    customer_io = _connect(app, customer)
    customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)

    ack = customer_io.emit("support:send-message", {"ticketId": ticket.id, "content": "hello"}, callback=True)

    assert ack["success"] is False
    assert "closed" in ack["error"]


def test_typing_skips_sender_and_carries_expiry(app, customer, staff, ticket):
    customer_io = _connect(app, customer)
    staff_io = _connect(app, staff)
    customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    staff_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    customer_io.get_received()
    staff_io.get_received()

    assert customer_io.emit("support:typing-start", {"ticketId": ticket.id}, callback=True)["success"] is True

    assert _events(customer_io, "support:typing") == []
    typing = _events(staff_io, "support:typing")
    assert typing == [{
        "ticketId": ticket.id,
        "userId": customer.id,
        "fullName": "Ram Sharma",
        "isTyping": True,
        "expiresInMs": 5000,
    }]

    customer_io.disconnect()
    stopped = _events(staff_io, "support:typing")
    assert stopped[0]["isTyping"] is False


def test_staff_update_over_socket_broadcasts_diff(app, customer, staff, ticket):
    customer_io = _connect(app, customer)
    staff_io = _connect(app, staff)
    customer_io.emit("support:join-ticket", {"ticketId": ticket.id}, callback=True)
    assert staff_io.emit("support:join-staff-room", {}, callback=True)["success"] is True
    customer_io.get_received()
    staff_io.get_received()

    ack = staff_io.emit("support:update-ticket", {"ticketId": ticket.id, "priority": "urgent"}, callback=True)

    assert ack["changes"] == {"priority": "urgent"}
    updated = _events(customer_io, "support:ticket-updated")
    assert updated[0]["changes"] == {"priority": "urgent"}
    assert _events(staff_io, "support:ticket-updated")[0]["ticketId"] == ticket.id


def test_customer_cannot_join_staff_room(app, customer):
    ack = _connect(app, customer).emit("support:join-staff-room", {}, callback=True)
    assert ack["success"] is False


@pytest.mark.parametrize("event", ["support:join-ticket", "support:send-message", "support:update-ticket"])
def test_non_object_payload_is_rejected_in_ack(app, staff, ticket, event):
    staff_io = _connect(app, staff)

    ack = staff_io.emit(event, ticket.id, callback=True)

    assert ack == {"success": False, "error": "Event payload must be an object"}
    assert staff_io.is_connected()
