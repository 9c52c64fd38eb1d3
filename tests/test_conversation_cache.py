"""Tests for the client-side ConversationCache."""

import pytest

from marketchat.client.cache import ConversationCache

ME = "acct-me"
BOB_PROFILE = "profile-bob"
BOB_ACCOUNT = "acct-bob"


def bob_summary(id_=BOB_PROFILE):
    return {"id": id_, "kind": "Contractor", "accountId": BOB_ACCOUNT, "displayName": "Bob's Renovations"}


def message(id_, cid, created_at, inbound=True, read=False, seq=0, text="hi"):
    other = {"id": BOB_PROFILE, "kind": "Contractor", "accountId": BOB_ACCOUNT}
    me = {"id": ME, "kind": "User", "accountId": ME}
    sender, recipient = (other, me) if inbound else (me, other)
    return {
        "id": id_,
        "conversationId": cid,
        "seq": seq,
        "senderId": sender["id"],
        "senderKind": sender["kind"],
        "senderAccountId": sender["accountId"],
        "recipientId": recipient["id"],
        "recipientKind": recipient["kind"],
        "recipientAccountId": recipient["accountId"],
        "sender": None,
        "recipient": None,
        "text": text,
        "read": read,
        "createdAt": created_at,
    }


def projection(cid, last, unread=0, other=None):
    return {
        "conversationId": cid,
        "otherParticipant": other or bob_summary(),
        "lastMessage": last,
        "unreadCount": unread,
        "participants": [],
    }


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def cache():
    return ConversationCache([ME])


class TestSnapshot:

    def test_fragments_fold_into_earliest(self, cache):
        old = projection("c-old", message("m1", "c-old", "2024-01-01T10:00:00"), unread=2)
        new = projection(
            "c-new",
            message("m2", "c-new", "2024-01-02T10:00:00"),
            unread=3,
            other=bob_summary(BOB_ACCOUNT),
        )
        cache.apply_snapshot([new, old])

        assert list(cache.conversations) == ["c-old"]
        entry = cache.get("c-new")
        assert entry["conversationId"] == "c-old"
        assert entry["lastMessage"]["id"] == "m2"
        assert entry["stale"] is True
        assert entry["unreadCount"] == 2
        assert cache.aliases == {"c-new": "c-old"}

    def test_single_thread_not_stale(self, cache):
        cache.apply_snapshot([projection("c1", message("m1", "c1", "2024-01-01T10:00:00"), unread=1)])
        assert cache.get("c1")["stale"] is False
        assert cache.get("c1")["unreadCount"] == 1

    def test_fetching_messages_clears_stale_and_recounts(self, cache):
        cache.apply_snapshot([
            projection("c-old", message("m1", "c-old", "2024-01-01T10:00:00")),
            projection("c-new", message("m2", "c-new", "2024-01-02T10:00:00"), other=bob_summary(BOB_ACCOUNT)),
        ])
        entry = cache.apply_messages("c-new", [
            message("m1", "c-old", "2024-01-01T10:00:00", read=True),
            message("m2", "c-new", "2024-01-02T10:00:00"),
            message("m3", "c-new", "2024-01-02T11:00:00", inbound=False),
        ])

        assert entry["stale"] is False
        assert entry["unreadCount"] == 1
        assert entry["lastMessage"]["id"] == "m3"
        assert [m["id"] for m in entry["messages"]] == ["m1", "m2", "m3"]

    def test_ordered_by_last_message(self, cache):
        carol = {"id": "acct-carol", "kind": "User", "accountId": "acct-carol", "displayName": "Carol"}
        cache.apply_snapshot([
            projection("c-bob", message("m1", "c-bob", "2024-01-01T10:00:00")),
            projection("c-carol", message("m2", "c-carol", "2024-01-03T10:00:00"), other=carol),
        ])
        assert [e["conversationId"] for e in cache.ordered()] == ["c-carol", "c-bob"]


class TestLiveEvents:

    def test_new_message_synthesizes_entry(self, cache):
        entry = cache.apply_new_message(message("m1", "c1", "2024-01-01T10:00:00"))

        assert entry["conversationId"] == "c1"
        assert entry["otherParticipant"]["id"] == BOB_PROFILE
        assert entry["otherParticipant"]["displayName"] == "Unknown Contractor"
        assert entry["unreadCount"] == 1

    def test_new_message_is_idempotent(self, cache):
        msg = message("m1", "c1", "2024-01-01T10:00:00")
        cache.apply_new_message(msg)
        cache.apply_new_message(msg)
        assert cache.get("c1")["unreadCount"] == 1
        assert len(cache.get("c1")["messages"]) == 1

    def test_outbound_does_not_count_unread(self, cache):
        cache.apply_new_message(message("m1", "c1", "2024-01-01T10:00:00", inbound=False))
        assert cache.get("c1")["unreadCount"] == 0

    def test_open_conversation_does_not_count_unread(self, cache):
        cache.apply_snapshot([projection("c1", message("m1", "c1", "2024-01-01T10:00:00"), unread=1)])
        cache.open_conversation("c1")
        assert cache.get("c1")["unreadCount"] == 0

        cache.apply_new_message(message("m2", "c1", "2024-01-01T11:00:00"))
        assert cache.get("c1")["unreadCount"] == 0

        cache.close_conversation()
        cache.apply_new_message(message("m3", "c1", "2024-01-01T12:00:00"))
        assert cache.get("c1")["unreadCount"] == 1

    def test_new_message_for_unknown_id_joins_same_counterpart(self, cache):
        cache.apply_snapshot([projection("c1", message("m1", "c1", "2024-01-01T10:00:00"))])
        cache.apply_new_message(message("m2", "c2", "2024-01-01T11:00:00"))

        assert list(cache.conversations) == ["c1"]
        assert cache.canonical_id("c2") == "c1"
        assert cache.get("c1")["lastMessage"]["id"] == "m2"

    def test_read_receipt_flips_last_message(self, cache):
        cache.apply_new_message(message("m1", "c1", "2024-01-01T10:00:00", inbound=False))

        assert cache.apply_message_read({"messageId": "m1", "conversationId": "c1", "readerId": BOB_ACCOUNT})
        assert cache.get("c1")["lastMessage"]["read"] is True
        assert cache.get("c1")["messages"][0]["read"] is True
        assert cache.apply_message_read({"messageId": "unknown"}) is False

    def test_apply_event_dispatch(self, cache):
        cache.apply_event({"type": "newMessage", "data": message("m1", "c1", "2024-01-01T10:00:00")})
        cache.apply_event({"type": "typing", "data": {"conversationId": "c1", "userId": BOB_ACCOUNT, "isTyping": True}})
        cache.apply_event({"type": "userOnlineStatus", "data": {"userId": BOB_ACCOUNT, "isOnline": True}})

        assert cache.get("c1") is not None
        assert cache.typing_users("c1") == [BOB_ACCOUNT]


class TestTyping:

    def test_typing_persists_without_ttl(self):
        clock = FakeClock()
        cache = ConversationCache([ME], clock=clock)
        cache.apply_typing({"conversationId": "c1", "userId": "u1", "isTyping": True})
        clock.now = 3600
        assert cache.typing_users("c1") == ["u1"]

        cache.apply_typing({"conversationId": "c1", "userId": "u1", "isTyping": False})
        assert cache.typing_users("c1") == []

    def test_typing_expires_with_ttl(self):
        clock = FakeClock()
        cache = ConversationCache([ME], typing_ttl=5, clock=clock)
        cache.apply_typing({"conversationId": "c1", "userId": "u1", "isTyping": True})
        clock.now = 4
        assert cache.typing_users("c1") == ["u1"]
        clock.now = 6
        assert cache.typing_users("c1") == []


class TestPersistence:

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "cache" / "conversations.json"
        cache = ConversationCache([ME], storage_path=path)
        cache.apply_snapshot([
            projection("c-old", message("m1", "c-old", "2024-01-01T10:00:00")),
            projection("c-new", message("m2", "c-new", "2024-01-02T10:00:00"), other=bob_summary(BOB_ACCOUNT)),
        ])

        restored = ConversationCache([ME], storage_path=path)
        assert restored.load() is True
        assert restored.get("c-new")["conversationId"] == "c-old"
        assert not path.with_suffix(".json.tmp").exists()

    def test_load_missing_or_corrupt(self, tmp_path):
        path = tmp_path / "conversations.json"
        cache = ConversationCache([ME], storage_path=path)
        assert cache.load() is False

        path.write_text("{not json", encoding="utf-8")
        assert cache.load() is False
        assert cache.conversations == {}
