"""Tests for MessageStore: bounded logs, cursor pagination and search."""
from app.chat.models import Message
from app.chat.store import MessageStore

T0 = "2024-05-01T10:00:00.000Z"


def make_message(content="hi", room_id="general", created_at=T0):
    return Message(
        roomId=room_id,
        senderId="u1",
        senderName="Ada",
        avatarColor="#f97316",
        content=content,
        createdAt=created_at,
        deliveredAt=created_at,
    )


class TestAppend:

    def test_equal_timestamps_are_made_strictly_increasing(self):
        store = MessageStore()
        first = store.append("general", make_message("a"))
        second = store.append("general", make_message("b"))
        assert first.createdAt == T0
        assert second.createdAt == "2024-05-01T10:00:00.001Z"
        assert second.deliveredAt == second.createdAt

    def test_older_timestamp_is_moved_after_previous(self):
        store = MessageStore()
        store.append("general", make_message("a", created_at="2024-05-01T10:00:05.000Z"))
        late = store.append("general", make_message("b", created_at=T0))
        assert late.createdAt == "2024-05-01T10:00:05.001Z"

    def test_rooms_are_independent(self):
        store = MessageStore()
        store.append("general", make_message("a"))
        other = store.append("help-desk", make_message("b", room_id="help-desk"))
        assert other.createdAt == T0
        assert store.count("general") == 1
        assert store.count("help-desk") == 1

    def test_capacity_evicts_oldest_first(self):
        store = MessageStore(capacity=3)
        for i in range(5):
            store.append("general", make_message(f"m{i}"))
        assert [m.content for m in store.history("general")] == ["m2", "m3", "m4"]

    def test_find_by_id(self):
        store = MessageStore()
        message = store.append("general", make_message())
        assert store.find_by_id("general", message.id) is message
        assert store.find_by_id("general", "missing") is None
        assert store.find_by_id("elsewhere", message.id) is None


class TestPagination:

    def test_latest_page_of_empty_room(self):
        page = MessageStore().latest_page("general")
        assert page.messages == []
        assert page.nextCursor is None
        assert page.hasMore is False

    def test_walking_backwards_visits_every_message_once(self):
        store = MessageStore()
        for i in range(60):
            store.append("general", make_message(f"m{i}"))

        seen = []
        cursor = None
        pages = 0
        while True:
            page = store.page_before("general", cursor, 25)
            pages += 1
            seen = [m.content for m in page.messages] + seen
            if not page.hasMore:
                break
            cursor = page.nextCursor

        assert pages == 3
        assert seen == [f"m{i}" for i in range(60)]

    def test_page_is_ascending_and_cursor_is_first_message(self):
        store = MessageStore()
        for i in range(30):
            store.append("general", make_message(f"m{i}"))
        page = store.latest_page("general", 25)
        assert [m.content for m in page.messages] == [f"m{i}" for i in range(5, 30)]
        assert page.nextCursor == page.messages[0].createdAt
        assert page.hasMore is True

    def test_unknown_cursor_reads_from_end(self):
        store = MessageStore()
        for i in range(3):
            store.append("general", make_message(f"m{i}"))
        page = store.page_before("general", "1999-01-01T00:00:00.000Z", 25)
        assert [m.content for m in page.messages] == ["m0", "m1", "m2"]
        assert page.hasMore is False

    def test_cursor_of_oldest_message_returns_empty_page(self):
        store = MessageStore()
        first = store.append("general", make_message("m0"))
        store.append("general", make_message("m1"))
        page = store.page_before("general", first.createdAt, 25)
        assert page.messages == []
        assert page.nextCursor is None
        assert page.hasMore is False

    def test_to_client_shape(self):
        store = MessageStore()
        store.append("general", make_message())
        data = store.latest_page("general").to_client()
        assert set(data) == {"messages", "nextCursor", "hasMore"}
        assert data["messages"][0]["content"] == "hi"


class TestSearch:

    def test_case_insensitive_substring(self):
        store = MessageStore()
        for content in ["Hello there", "general chatter", "HELLO again", "bye"]:
            store.append("general", make_message(content))
        results = store.search("general", "hello")
        assert [m.content for m in results] == ["Hello there", "HELLO again"]

    def test_limit_keeps_newest_matches(self):
        store = MessageStore()
        for i in range(30):
            store.append("general", make_message(f"match {i}"))
        results = store.search("general", "MATCH", limit=20)
        assert len(results) == 20
        assert results[0].content == "match 10"
        assert results[-1].content == "match 29"

    def test_unknown_room(self):
        assert MessageStore().search("nowhere", "x") == []
