"""
Tests del WebSocket de mensajería en tiempo real
"""
import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import auth_headers
from agrimarket.security import create_access_token

def receive_until(ws, message_type, predicate=lambda data: True, limit=20):
    """Lee frames hasta encontrar el tipo buscado (el orden entre vistas no está garantizado)"""
    for _ in range(limit):
        data = ws.receive_json()
        if data["type"] == message_type and predicate(data):
            return data
    raise AssertionError(f"No llegó ningún '{message_type}'")

def test_invalid_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/not-a-token") as ws:
            ws.receive_json()

def test_live_thread_delivery(client, sync_users):
    buyer, seller = sync_users
    thread_id = client.post("/threads", json={"counterpart_id": seller.id, "product_id": "p7"},
                            headers=auth_headers(buyer)).json()["id"]

    with client.websocket_connect(f"/ws/{create_access_token(buyer.id)}") as ws:
        assert ws.receive_json()["type"] == "connected"
        ws.send_json({"type": "subscribe", "scope": "thread", "id": thread_id})
        initial = receive_until(ws, "messages")
        assert initial["snapshot"] is True
        assert initial["messages"] == []

        response = client.post(f"/threads/{thread_id}/messages", json={"content": "Yes, it is organic"},
                               headers=auth_headers(seller))
        assert response.status_code == 201

        delta = receive_until(ws, "messages", lambda d: d["messages"])
        assert [m["content"] for m in delta["messages"]] == ["Yes, it is organic"]
        assert delta["cursor"] == 1

    # El comprador estaba viendo el thread: el mensaje quedó leído
    contacts = client.get("/contacts", headers=auth_headers(buyer)).json()
    assert contacts[0]["unread_count"] == 0

def test_inbox_subscription_and_actions(client, sync_users):
    buyer, seller = sync_users
    thread_id = client.post("/threads", json={"counterpart_id": seller.id},
                            headers=auth_headers(buyer)).json()["id"]

    with client.websocket_connect(f"/ws/{create_access_token(seller.id)}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe", "scope": "inbox"})
        first = receive_until(ws, "contacts")
        assert first["unread"] == 0

        client.post(f"/threads/{thread_id}/messages", json={"content": "hola"}, headers=auth_headers(buyer))
        update = receive_until(ws, "contacts", lambda d: d["unread"] == 1)
        assert update["contacts"][0]["last_message_preview"] == "hola"

        ws.send_json({"type": "mark_read", "thread_id": thread_id})
        assert receive_until(ws, "messages_read")["updated"] == 1
        assert client.get("/contacts/unread", headers=auth_headers(seller)).json() == {"unread": 0}

        ws.send_json({"type": "send_message", "thread_id": thread_id, "content": "   "})
        assert receive_until(ws, "error")["code"] == "empty_message"

        ws.send_json({"type": "send_message", "thread_id": thread_id, "content": "¡Hola!"})
        sent = receive_until(ws, "message_sent")
        assert sent["message"]["receiver_id"] == buyer.id

        ws.send_json({"type": "unsubscribe", "scope": "inbox"})
        receive_until(ws, "unsubscribed")
        ws.send_json({"type": "ping"})
        assert receive_until(ws, "pong")["type"] == "pong"

def test_unknown_user_and_unknown_thread(client, sync_users):
    buyer, _ = sync_users
    intruder_token = create_access_token("507f1f77bcf86cd799439011")

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/{intruder_token}") as ws:
            ws.receive_json()

    with client.websocket_connect(f"/ws/{create_access_token(buyer.id)}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe", "scope": "thread", "id": "chat:a:b"})
        assert receive_until(ws, "error")["code"] == "not_found"
        ws.send_json({"type": "bogus"})
        assert receive_until(ws, "error")["code"] == "bad_request"

def test_non_object_frames_keep_the_session_open(client, sync_users):
    buyer, _ = sync_users
    with client.websocket_connect(f"/ws/{create_access_token(buyer.id)}") as ws:
        receive_until(ws, "connected")
        assert client.get("/health").json()["live_sessions"] >= 1

        for frame in ([], "hola", 42):
            ws.send_json(frame)
            assert receive_until(ws, "error")["code"] == "bad_request"

        ws.send_json({"type": "ping"})
        assert receive_until(ws, "pong")["type"] == "pong"
