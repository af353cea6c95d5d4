"""Tests for the client-side state reducer."""
from unittest.mock import MagicMock

import pytest

from app.client.state import ClientState

ADA = {"id": "ada", "username": "Ada", "avatarColor": "#2563eb"}


def server_message(message_id, room_id="general", sender="bob", created_at="2024-05-01T10:00:00.000Z", **extra):
    return {
        "id": message_id,
        "roomId": room_id,
        "senderId": sender,
        "senderName": sender.title(),
        "avatarColor": "#16a34a",
        "content": extra.pop("content", "hi"),
        "attachments": [],
        "createdAt": created_at,
        "readBy": [sender],
        "reactions": {},
        **extra,
    }


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def state(notifier):
    state = ClientState(notifier=notifier)
    state.user = dict(ADA)
    return state


class TestOptimisticSend:

    def test_ack_replaces_optimistic_message(self, state):
        temp_id = state.create_optimistic_message("general", "hello")
        [pending] = state.messages("general")
        assert pending["id"] == temp_id
        assert pending["pending"] is True
        assert pending["readBy"] == ["ada"]

        confirmed = server_message("srv-1", sender="ada", clientTempId=temp_id, content="hello")
        state.apply("message_ack", confirmed)

        [message] = state.messages("general")
        assert message["id"] == "srv-1"
        assert message["pending"] is False

    def test_ack_then_broadcast_never_duplicates(self, state, notifier):
        temp_id = state.create_optimistic_message("general", "hello")
        confirmed = server_message("srv-1", sender="ada", clientTempId=temp_id)

        state.apply("message_ack", confirmed)
        state.apply("receive_message", confirmed)
        state.reconcile(confirmed)

        assert [m["id"] for m in state.messages("general")] == ["srv-1"]
        assert state.unread == {}
        notifier.play_sound.assert_not_called()

    def test_broadcast_before_ack(self, state):
        temp_id = state.create_optimistic_message("general", "hello")
        confirmed = server_message("srv-1", sender="ada", clientTempId=temp_id)
        state.apply("receive_message", confirmed)
        state.apply("message_ack", confirmed)
        assert [m["id"] for m in state.messages("general")] == ["srv-1"]

    def test_ack_without_optimistic_copy_is_appended(self, state):
        state.apply("message_ack", server_message("srv-1", sender="ada", clientTempId="elsewhere"))
        assert [m["id"] for m in state.messages("general")] == ["srv-1"]

    def test_other_pending_messages_survive(self, state):
        first = state.create_optimistic_message("general", "one")
        second = state.create_optimistic_message("general", "two")
        state.reconcile(server_message("srv-1", sender="ada", clientTempId=first))
        ids = {m["id"] for m in state.messages("general")}
        assert ids == {"srv-1", second}

    def test_direct_room_id(self, state):
        assert state.direct_room_id("bob") == "private:ada:bob"


class TestIncomingMessages:

    def test_unread_and_sound_for_other_room(self, state, notifier):
        state.active_room_id = "help-desk"
        state.apply("receive_message", server_message("m1"))
        assert state.unread == {"general": 1}
        notifier.play_sound.assert_called_once()
        notifier.show.assert_not_called()

    def test_no_unread_for_active_room(self, state):
        state.apply("receive_message", server_message("m1"))
        assert state.unread == {}

    def test_replayed_message_counts_once(self, state, notifier):
        state.active_room_id = "help-desk"
        state.apply("receive_message", server_message("m1"))
        state.apply("receive_message", server_message("m1"))
        assert state.unread == {"general": 1}
        assert notifier.play_sound.call_count == 1

    def test_out_of_focus_notification(self, state, notifier):
        state.focused = False
        state.apply("private_message", server_message("m1", room_id="private:ada:bob", content=""))
        notifier.show.assert_called_once_with("New message", "Bob: sent an attachment")

    def test_messages_are_kept_in_time_order(self, state):
        state.apply("receive_message", server_message("late", created_at="2024-05-01T10:00:02.000Z"))
        state.apply("receive_message", server_message("early", created_at="2024-05-01T10:00:01.000Z"))
        assert [m["id"] for m in state.messages("general")] == ["early", "late"]

    def test_message_without_room_is_ignored(self, state):
        state.apply("receive_message", {"id": "x"})
        assert state.messages_by_room == {}


class TestHistory:

    def test_merge_and_has_more(self, state):
        state.apply("receive_message", server_message("m3", created_at="2024-05-01T10:00:03.000Z"))
        state.apply("messages_history", {
            "roomId": "general",
            "messages": [
                server_message("m1", created_at="2024-05-01T10:00:01.000Z"),
                server_message("m3", created_at="2024-05-01T10:00:03.000Z", content="edited"),
            ],
            "nextCursor": "2024-05-01T10:00:01.000Z",
            "hasMore": False,
        })
        messages = state.messages("general")
        assert [m["id"] for m in messages] == ["m1", "m3"]
        assert messages[1]["content"] == "edited"
        assert state.has_more["general"] is False

    def test_has_more_falls_back_to_cursor(self, state):
        state.apply("messages_history", {"roomId": "general", "messages": [], "nextCursor": "x"})
        assert state.has_more["general"] is True

    def test_next_history_request(self, state):
        request = state.next_history_request("general", 25)
        assert request == {"roomId": "general", "cursor": None, "limit": 25}
        assert state.next_history_request("general", 25) is None

        state.apply("messages_history", {
            "roomId": "general",
            "messages": [server_message("m1", created_at="2024-05-01T10:00:01.000Z")],
            "nextCursor": "2024-05-01T10:00:01.000Z",
            "hasMore": True,
        })
        request = state.next_history_request("general", 25)
        assert request["cursor"] == "2024-05-01T10:00:01.000Z"

        state.apply("messages_history", {"roomId": "general", "messages": [], "nextCursor": None, "hasMore": False})
        assert state.next_history_request("general", 25) is None


class TestRoomsAndPresence:

    def test_init_state_replaces_snapshot(self, state):
        state.rooms = {"stale": {"id": "stale", "name": "Stale"}}
        state.apply("init_state", {
            "user": {"id": "ada2", "username": "Ada"},
            "rooms": [{"id": "general", "name": "General"}],
            "onlineUsers": [{"id": "ada2"}],
        })
        assert state.user_id == "ada2"
        assert list(state.rooms) == ["general"]
        assert state.online_users == [{"id": "ada2"}]

    def test_room_list_merges(self, state):
        state.apply("room_joined", {"room": {"id": "private:ada:bob", "name": "Ada & Bob"}})
        state.apply("room_list", [{"id": "zeta", "name": "Zeta"}, {"id": "general", "name": "General"}])
        state.apply("room_list", [{"id": "alpha", "name": "alpha"}])
        assert [room["id"] for room in state.sorted_rooms()] == ["general", "private:ada:bob", "alpha", "zeta"]

    def test_typing_and_room_users(self, state):
        state.apply("typing_users", {"roomId": "general", "users": ["Bob"]})
        state.apply("typing_users", {"roomId": "general", "users": []})
        state.apply("room_users", {"roomId": "general", "users": [{"id": "bob"}]})
        assert state.typing_by_room == {"general": []}
        assert state.room_users == {"general": [{"id": "bob"}]}

    def test_reaction_and_read_patches(self, state):
        state.apply("receive_message", server_message("m1"))
        state.apply("message_reaction", {"roomId": "general", "messageId": "m1", "reactions": {"👍": ["ada"]}})
        state.apply("message_read", {"roomId": "general", "messageId": "m1", "readBy": ["bob", "ada"]})
        state.apply("message_read", {"roomId": "general", "messageId": "missing", "readBy": ["x"]})
        [message] = state.messages("general")
        assert message["reactions"] == {"👍": ["ada"]}
        assert message["readBy"] == ["bob", "ada"]

    def test_mark_room_read(self, state):
        state.active_room_id = "help-desk"
        state.apply("receive_message", server_message("m1"))
        state.apply("receive_message", server_message("m2", created_at="2024-05-01T10:00:01.000Z", readBy=["bob", "ada"]))
        state.create_optimistic_message("general", "pending one")

        receipts = state.mark_room_read("general")
        assert receipts == [{"roomId": "general", "messageId": "m1", "readerId": "ada"}]
        assert state.unread["general"] == 0


class TestNotificationsAndSearch:

    def test_notification_ring(self, state):
        for i in range(30):
            state.apply("notification", {"id": str(i), "type": "message", "message": str(i)})
        assert len(state.notifications) == 25
        assert state.notifications[0]["id"] == "29"

    def test_error_ring(self, state):
        for i in range(30):
            state.apply("notification", {"id": str(i), "type": "message", "message": str(i)})
        notice = state.add_error("Failed to send message")
        assert len(state.notifications) == 20
        assert state.notifications[0] is notice
        assert notice["type"] == "error"

        state.dismiss_notification(notice["id"])
        assert notice not in state.notifications

    def test_room_error_becomes_error_notification(self, state):
        state.apply("room_error", {"error": "Room already exists"})
        assert state.notifications[0]["message"] == "Room already exists"

    def test_search_results(self, state):
        state.apply("search_results", {"roomId": "general", "query": "hi", "results": [server_message("m1")]})
        assert state.search_results["query"] == "hi"
        state.clear_search_results()
        assert state.search_results == {"roomId": None, "query": "", "results": []}

    def test_unknown_event(self, state):
        assert state.apply("mystery", {}) is False

    def test_reset(self, state):
        state.apply("receive_message", server_message("m1"))
        state.active_room_id = "help-desk"
        state.reset()
        assert state.messages_by_room == {}
        assert state.active_room_id == "general"
        assert state.user_id == "ada"
