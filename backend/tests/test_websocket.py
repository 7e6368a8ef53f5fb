import pytest
from starlette.websockets import WebSocketDisconnect

DAY = "2031-03-03"


def _connect(api, user_id: str):
    return api.client.websocket_connect(f"/ws?token={api.token_for(user_id)}")


def _join(ws, day: str = DAY) -> dict:
    """Join a date room and wait for the server to answer, so the join is known to be applied."""
    ws.send_json({"event": "join-date-room", "data": day})
    ws.send_json({"event": "get-available-slots", "data": {"date": day}})
    return ws.receive_json()


def test_unauthenticated_socket_is_closed(api):
    with api.client.websocket_connect("/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4401


def test_connection_id_is_announced_on_connect(api):
    api.seed_user("u-1")
    with _connect(api, "u-1") as ws:
        hello = ws.receive_json()
    assert hello["event"] == "connected"
    assert hello["data"]["connectionId"]


def test_available_slots_reflect_bookings(api):
    api.seed_user("u-1")
    api.client.post("/bookings", json={"date": DAY, "time_slot": "08:00 - 08:10"}, headers=api.auth_headers("u-1"))

    with _connect(api, "u-1") as ws:
        ws.receive_json()
        reply = _join(ws)

    assert reply == {"event": "available-slots-updated", "data": {"date": DAY, "bookedSlots": ["08:00 - 08:10"]}}


def test_notifications_reach_peers_but_not_the_sender(api):
    api.seed_user("u-1")
    api.seed_user("u-2")
    with _connect(api, "u-1") as sender, _connect(api, "u-2") as peer:
        sender.receive_json()
        peer.receive_json()
        _join(sender)
        _join(peer)

        sender.send_json({"event": "notify-slot-booked", "data": {"date": DAY, "timeSlot": "08:30 - 08:40"}})

        assert peer.receive_json() == {"event": "slot-booked", "data": {"date": DAY, "timeSlot": "08:30 - 08:40"}}
        sender.send_json({"event": "get-available-slots", "data": DAY})
        assert sender.receive_json()["event"] == "available-slots-updated"


def test_http_booking_is_broadcast_to_the_date_room(api):
    api.seed_user("u-1")
    api.seed_user("u-2")
    with _connect(api, "u-1") as booker, _connect(api, "u-2") as watcher:
        connection_id = booker.receive_json()["data"]["connectionId"]
        watcher.receive_json()
        _join(booker)
        _join(watcher)

        response = api.client.post(
            "/bookings",
            json={"date": DAY, "time_slot": "09:00 - 09:10"},
            headers={**api.auth_headers("u-1"), "x-connection-id": connection_id},
        )
        assert response.status_code == 200

        assert watcher.receive_json() == {"event": "slot-booked", "data": {"date": DAY, "timeSlot": "09:00 - 09:10"}}
        booker.send_json({"event": "get-available-slots", "data": DAY})
        assert booker.receive_json() == {
            "event": "available-slots-updated",
            "data": {"date": DAY, "bookedSlots": ["09:00 - 09:10"]},
        }

        moved = api.client.post(
            "/bookings",
            json={"date": DAY, "time_slot": "09:15 - 09:25"},
            headers={**api.auth_headers("u-1"), "x-connection-id": connection_id},
        )
        assert moved.status_code == 200
        assert watcher.receive_json() == {"event": "slot-unbooked", "data": {"date": DAY, "timeSlot": "09:00 - 09:10"}}
        assert watcher.receive_json() == {"event": "slot-booked", "data": {"date": DAY, "timeSlot": "09:15 - 09:25"}}


def test_bad_messages_get_an_error_reply(api):
    api.seed_user("u-1")
    with _connect(api, "u-1") as ws:
        ws.receive_json()

        ws.send_text("{not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid message"}}

        ws.send_json({"event": "join-date-room", "data": "03/03/2031"})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid message"}}

        ws.send_json({"event": "dance", "data": None})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: dance"}}


def test_failed_teardown_still_broadcasts_both_changes(api):
    api.seed_user("u-1")
    api.seed_user("u-2")
    api.provider.fail_delete = True
    with _connect(api, "u-2") as watcher:
        watcher.receive_json()
        _join(watcher)

        first = api.client.post("/bookings", json={"date": DAY, "time_slot": "10:00 - 10:10"}, headers=api.auth_headers("u-1"))
        assert watcher.receive_json() == {"event": "slot-booked", "data": {"date": DAY, "timeSlot": "10:00 - 10:10"}}

        moved = api.client.post("/bookings", json={"date": DAY, "time_slot": "10:15 - 10:25"}, headers=api.auth_headers("u-1"))

        assert first.status_code == 200
        assert moved.status_code == 200
        assert moved.json()["previous"] == {"date": DAY, "time_slot": "10:00 - 10:10"}
        assert watcher.receive_json() == {"event": "slot-unbooked", "data": {"date": DAY, "timeSlot": "10:00 - 10:10"}}
        assert watcher.receive_json() == {"event": "slot-booked", "data": {"date": DAY, "timeSlot": "10:15 - 10:25"}}
    assert api.provider.deleted == []


def test_joining_a_room_marks_the_user_present(api):
    api.seed_user("u-1", email="anna@example.com")
    with _connect(api, "u-1") as ws:
        ws.receive_json()
        _join(ws)

        assert api.presence_status("u-1") == "active"
        response = api.client.post("/auth/login", json={"email": "anna@example.com"})
        assert response.status_code == 409

    assert api.presence_status("u-1") == "inactive"
    response = api.client.post("/auth/login", json={"email": "anna@example.com"})
    assert response.status_code == 200
