"""Tests for DeliveryChannel, ConnectionManager and PresenceRegistry."""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.utils.presence import PresenceRegistry
from marketchat.utils.websocket_manager import ConnectionManager


def fake_socket():
    ws = Mock()
    ws.send_text = AsyncMock()
    ws.accept = AsyncMock()
    return ws


def frames(ws):
    return [json.loads(call.args[0]) for call in ws.send_text.await_args_list]


def frame_types(ws):
    return [f["type"] for f in frames(ws)]


@pytest.fixture
def channel():
    return DeliveryChannel(ConnectionManager(), PresenceRegistry())


MESSAGE = {
    "id": "m1",
    "conversationId": "c1",
    "senderId": "profile-b",
    "senderAccountId": "acct-b",
    "recipientId": "acct-a",
    "recipientAccountId": "acct-a",
    "text": "Hello",
    "read": False,
}


class TestPresence:

    async def test_register_marks_online_and_broadcasts(self, channel):
        a, b = fake_socket(), fake_socket()
        await channel.register("acct-a", a, "conn-a")
        await channel.register("acct-b", b, "conn-b")

        assert channel.presence.is_online("acct-a")
        assert channel.presence.get("acct-b").connection_id == "conn-b"
        assert {"type": "userOnlineStatus", "data": {"userId": "acct-b", "isOnline": True}} in frames(a)

    async def test_second_device_does_not_rebroadcast(self, channel):
        first, second = fake_socket(), fake_socket()
        await channel.register("acct-a", first, "c1")
        await channel.register("acct-a", second, "c2")

        assert frame_types(first) == ["userOnlineStatus"]

    async def test_disconnect_last_connection_goes_offline(self, channel):
        a, b1, b2 = fake_socket(), fake_socket(), fake_socket()
        await channel.register("acct-a", a, "ca")
        await channel.register("acct-b", b1, "cb1")
        await channel.register("acct-b", b2, "cb2")

        await channel.disconnect("acct-b", b1)
        assert channel.presence.is_online("acct-b")

        await channel.disconnect("acct-b", b2)
        assert not channel.presence.is_online("acct-b")
        assert {"type": "userOnlineStatus", "data": {"userId": "acct-b", "isOnline": False}} in frames(a)
        assert await channel.is_online("acct-b") is False

    async def test_disconnect_unknown_is_harmless(self, channel):
        await channel.disconnect("nobody", fake_socket())
        assert channel.presence.snapshot() == {}


class TestPublish:

    async def test_message_goes_to_both_account_rooms(self, channel):
        a, b, outsider = fake_socket(), fake_socket(), fake_socket()
        await channel.register("acct-a", a, "ca")
        await channel.register("acct-b", b, "cb")
        await channel.register("acct-c", outsider, "cc")

        await channel.publish_message(MESSAGE)

        assert frame_types(a).count("newMessage") == 1
        assert frame_types(b).count("newMessage") == 1
        assert "newMessage" not in frame_types(outsider)
        assert [f for f in frames(a) if f["type"] == "newMessage"][0]["data"]["text"] == "Hello"

    async def test_message_reaches_participant_outside_conversation_room(self, channel):
        a = fake_socket()
        await channel.register("acct-a", a, "ca")
        # acct-a never joined c1
        await channel.publish_message(MESSAGE)
        assert "newMessage" in frame_types(a)

    async def test_typing_goes_to_room_except_origin(self, channel):
        a, b, c = fake_socket(), fake_socket(), fake_socket()
        for account, ws in (("acct-a", a), ("acct-b", b), ("acct-c", c)):
            await channel.register(account, ws, account)
        channel.join_conversation("c1", a)
        channel.join_conversation("c1", b)

        await channel.publish_typing("c1", "acct-a", True, origin=a)

        assert "typing" not in frame_types(a)
        assert "typing" not in frame_types(c)
        typing = [f for f in frames(b) if f["type"] == "typing"]
        assert typing == [{"type": "typing", "data": {"conversationId": "c1", "userId": "acct-a", "isTyping": True}}]

    async def test_leave_conversation_stops_typing(self, channel):
        a, b = fake_socket(), fake_socket()
        channel.join_conversation("c1", b)
        channel.leave_conversation("c1", b)

        await channel.publish_typing("c1", "acct-a", True, origin=a)
        assert frame_types(b) == []
        assert channel.manager.conversation_rooms == {}

    async def test_read_receipt_only_to_sender(self, channel):
        sender, reader = fake_socket(), fake_socket()
        await channel.register("acct-b", sender, "cb")
        await channel.register("acct-a", reader, "ca")

        await channel.publish_read("m1", "c1", "acct-a", "acct-b")

        assert {"type": "messageRead", "data": {"messageId": "m1", "conversationId": "c1", "readerId": "acct-a"}} in frames(sender)
        assert "messageRead" not in frame_types(reader)

    async def test_dead_connection_is_dropped_silently(self, channel):
        dead, alive = fake_socket(), fake_socket()
        dead.send_text.side_effect = RuntimeError("socket closed")
        await channel.register("acct-a", alive, "c1")
        channel.manager.connect("acct-a", dead)

        await channel.publish_message(MESSAGE)

        assert "newMessage" in frame_types(alive)


class TestRedisFanout:

    async def test_account_delivery_goes_through_bus(self):
        bus = Mock(enabled=True)
        bus.publish = AsyncMock()
        bus.set_presence = AsyncMock()
        channel = DeliveryChannel(ConnectionManager(), PresenceRegistry(), bus=bus, presence_ttl_seconds=30)
        a = fake_socket()
        await channel.register("acct-a", a, "ca")
        bus.set_presence.assert_awaited_once_with("acct-a", ttl_seconds=30)

        await channel.publish_message(MESSAGE)

        channels = [call.args[0] for call in bus.publish.await_args_list]
        assert channels == ["user:acct-b", "user:acct-a"]
        assert "newMessage" not in frame_types(a)

    async def test_bus_failure_is_tolerated(self):
        bus = Mock(enabled=True)
        bus.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        channel = DeliveryChannel(ConnectionManager(), PresenceRegistry(), bus=bus)

        await channel.publish_message(MESSAGE)

    async def test_presence_falls_back_to_bus(self):
        bus = Mock(enabled=True)
        bus.is_online = AsyncMock(return_value=True)
        channel = DeliveryChannel(ConnectionManager(), PresenceRegistry(), bus=bus)

        assert await channel.is_online("acct-elsewhere") is True


class TestConnectionManager:

    def test_disconnect_removes_from_every_room(self):
        manager = ConnectionManager()
        ws = fake_socket()
        manager.connect("acct-a", ws)
        manager.join("c1", ws)
        manager.join("c2", ws)

        assert manager.disconnect("acct-a", ws) is True
        assert manager.conversation_rooms == {}
        assert manager.connections_for("acct-a") == []

    def test_all_connections_deduplicates(self):
        manager = ConnectionManager()
        ws = fake_socket()
        manager.connect("acct-a", ws)
        manager.connect("acct-a", ws)
        assert manager.all_connections() == [ws]


class TestPresenceRegistry:

    def test_mark_online_reports_transition(self):
        registry = PresenceRegistry()
        assert registry.mark_online("a", "c1") is True
        assert registry.mark_online("a", "c2") is False
        assert registry.get("a").connection_id == "c2"

    def test_touch_updates_last_seen(self):
        registry = PresenceRegistry()
        registry.mark_online("a", "c1")
        before = registry.get("a").last_seen
        registry.touch("a")
        assert registry.get("a").last_seen >= before
        registry.touch("missing")
        assert registry.mark_offline("a") is True
        assert registry.mark_offline("a") is False
