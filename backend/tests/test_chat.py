"""End-to-end tests for the /ws/chat WebSocket protocol.

Each test gets a fresh app, so rooms and messages never leak between tests.
Frames are read with ``receive_until`` because most operations emit several
events; the helper keeps everything it skipped for ordering assertions.
"""
from conftest import join, receive_until


def events(frames):
    return [frame["event"] for frame in frames]


def test_join_handshake_enrolls_default_rooms(api_client):
    """A joining user gets default-room history before init_state, then the ack."""
    with api_client.websocket_connect("/ws/chat") as ws:
        ack, seen = join(ws, "Ada", avatar_color="#2563eb")

        assert ack["ok"] is True
        user = ack["user"]
        assert user["username"] == "Ada"
        assert user["avatarColor"] == "#2563eb"
        assert user["status"] == "online"
        assert user["rooms"] == ["general", "help-desk"]

        names = events(seen)
        assert names.index("room_joined") < names.index("init_state")
        assert names[-3:] == ["user_list", "notification", "ack"]

        init_state = next(f for f in seen if f["event"] == "init_state")["data"]
        assert init_state["user"]["id"] == user["id"]
        assert {room["id"] for room in init_state["rooms"]} == {"general", "help-desk"}
        assert [u["username"] for u in init_state["onlineUsers"]] == ["Ada"]

        history = next(f for f in seen if f["event"] == "messages_history")["data"]
        assert history == {"roomId": "general", "messages": [], "nextCursor": None, "hasMore": False}

        notification = next(f for f in seen if f["event"] == "notification")["data"]
        assert notification["type"] == "user_joined"
        assert notification["message"] == "Ada joined the chat"


def test_join_rejects_blank_username(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"event": "user_join", "data": {"username": "   "}, "ackId": 7})
        ack = ws.receive_json()
        assert ack == {"event": "ack", "ackId": 7, "data": {"ok": False, "error": "Username is required"}}


def test_message_reaches_both_clients(api_client):
    """A room message is acked to the sender and broadcast to every subscriber."""
    with api_client.websocket_connect("/ws/chat") as ada, \
         api_client.websocket_connect("/ws/chat") as bob:
        ada_user = join(ada, "Ada")[0]["user"]
        join(bob, "Bob")
        receive_until(ada, "notification")  # Bob joined

        ada.send_json({
            "event": "send_message",
            "data": {"roomId": "general", "message": "  hello  ", "clientTempId": "t1"},
            "ackId": "m1",
        })
        ack, seen = receive_until(ada, "ack")
        names = events(seen)
        assert names.index("message_ack") < names.index("receive_message") < names.index("notification")

        message = ack["data"]["message"]
        assert ack["data"]["ok"] is True
        assert message["content"] == "hello"
        assert message["clientTempId"] == "t1"
        assert message["senderId"] == ada_user["id"]
        assert message["readBy"] == [ada_user["id"]]
        assert message["createdAt"].endswith("Z")

        received, _ = receive_until(bob, "receive_message")
        assert received["data"] == message
        notice, _ = receive_until(bob, "notification")
        assert notice["data"]["message"] == "Ada: hello"
        assert notice["data"]["roomId"] == "general"


def test_malformed_frames_do_not_close_connection(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        ws.send_text("not json")
        ws.send_json(["not", "an", "object"])
        ws.send_json({"event": "teleport", "data": {}, "ackId": "x1"})

        ack = ws.receive_json()
        assert ack["event"] == "ack"
        assert ack["ackId"] == "x1"
        assert ack["data"] == {"ok": False, "error": "Unknown event: teleport"}

        ws.send_json({"event": "typing", "data": {"roomId": "general", "isTyping": "maybe"}, "ackId": "x2"})
        ack = ws.receive_json()
        assert ack["ackId"] == "x2"
        assert ack["data"]["ok"] is False
        assert "isTyping" in ack["data"]["error"]

        result, _ = join(ws, "Ada")
        assert result["ok"] is True


def test_binary_frames_are_decoded(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        join(ws, "Ada")

        ws.send_bytes(b'{"event": "typing", "data": {"roomId": "general", "isTyping": true}}')
        typing = ws.receive_json()
        assert typing["event"] == "typing_users"
        assert typing["data"] == {"roomId": "general", "users": ["Ada"]}

        # Undecodable bytes are dropped and the connection stays usable
        ws.send_bytes(b"\xff\xfe\x00")
        ws.send_json({"event": "typing", "data": {"roomId": "general", "isTyping": False}})
        typing = ws.receive_json()
        assert typing["data"] == {"roomId": "general", "users": []}


def test_private_message_to_offline_user(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        join(ws, "Ada")
        ws.send_json({
            "event": "private_message",
            "data": {"to": "nobody", "message": "psst"},
            "ackId": "p1",
        })
        ack = ws.receive_json()
        assert ack["data"] == {"ok": False, "error": "User offline"}


def test_private_message_between_two_users(api_client):
    with api_client.websocket_connect("/ws/chat") as ada, \
         api_client.websocket_connect("/ws/chat") as bob:
        ada_user = join(ada, "Ada")[0]["user"]
        bob_user = join(bob, "Bob")[0]["user"]
        receive_until(ada, "notification")

        ada.send_json({
            "event": "private_message",
            "data": {"to": bob_user["id"], "message": "psst", "clientTempId": "dm1"},
            "ackId": "p1",
        })
        ack, _ = receive_until(ada, "ack")
        expected_room = "private:" + ":".join(sorted([ada_user["id"], bob_user["id"]]))
        assert ack["data"]["ok"] is True
        assert ack["data"]["roomId"] == expected_room
        assert ack["data"]["message"]["isPrivate"] is True

        delivered, _ = receive_until(bob, "private_message")
        assert delivered["data"]["roomId"] == expected_room
        assert delivered["data"]["content"] == "psst"


def test_create_room_and_duplicate(api_client):
    with api_client.websocket_connect("/ws/chat") as ada, \
         api_client.websocket_connect("/ws/chat") as bob:
        join(ada, "Ada")
        join(bob, "Bob")
        receive_until(ada, "notification")

        ada.send_json({
            "event": "create_room",
            "data": {"name": "Book  Club", "description": ""},
            "ackId": "c1",
        })
        ack, _ = receive_until(ada, "ack")
        room = ack["data"]["room"]
        assert room["id"] == "book-club"
        assert room["description"] == "Custom room"
        assert room["memberCount"] == 1
        assert "members" not in room

        room_list, _ = receive_until(bob, "room_list")
        assert "book-club" in {r["id"] for r in room_list["data"]}
        notice, _ = receive_until(bob, "notification")
        assert notice["data"]["type"] == "room_created"
        assert notice["data"]["message"] == "Ada created #Book  Club"

        bob.send_json({"event": "create_room", "data": {"name": "book club"}, "ackId": "c2"})
        error, _ = receive_until(bob, "room_error")
        assert error["data"] == {"error": "Room already exists"}
        ack = bob.receive_json()
        assert ack["data"] == {"ok": False, "error": "Room already exists"}


def test_typing_is_broadcast_to_room(api_client):
    with api_client.websocket_connect("/ws/chat") as ada, \
         api_client.websocket_connect("/ws/chat") as bob:
        join(ada, "Ada")
        join(bob, "Bob")
        receive_until(ada, "notification")

        bob.send_json({"event": "typing", "data": {"roomId": "general", "isTyping": True}})
        typing, _ = receive_until(ada, "typing_users")
        assert typing["data"] == {"roomId": "general", "users": ["Bob"]}


def test_disconnect_vacates_rooms(api_client):
    with api_client.websocket_connect("/ws/chat") as ada:
        join(ada, "Ada")
        with api_client.websocket_connect("/ws/chat") as bob:
            join(bob, "Bob")
            receive_until(ada, "notification")

        notice, seen = receive_until(ada, "notification")
        assert notice["data"]["type"] == "user_left"
        assert notice["data"]["message"] == "Bob left the chat"

        room_users = [f["data"] for f in seen if f["event"] == "room_users"]
        assert {update["roomId"] for update in room_users} == {"general", "help-desk"}
        for update in room_users:
            assert [u["username"] for u in update["users"]] == ["Ada"]

        user_list = next(f for f in seen if f["event"] == "user_list")["data"]
        assert [u["username"] for u in user_list] == ["Ada"]
