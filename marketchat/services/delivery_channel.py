import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from marketchat.utils.presence import PresenceRegistry
from marketchat.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


def encode_event(event: str, payload: Any) -> str:
    return json.dumps({"type": event, "data": jsonable_encoder(payload)})


class DeliveryChannel:
    """Presence-aware realtime fanout.

    Delivery is fire-and-forget: a failed send is logged and dropped, the
    message store stays authoritative and clients catch up over REST.
    Message delivery always targets account rooms; conversation rooms only
    carry typing indicators.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        presence: PresenceRegistry,
        bus=None,
        presence_ttl_seconds: int = 60,
    ) -> None:
        self.manager = manager
        self.presence = presence
        self.bus = bus
        self.presence_ttl_seconds = presence_ttl_seconds

    @property
    def fanout_enabled(self) -> bool:
        return bool(getattr(self.bus, "enabled", False))

    async def _send(self, websocket: WebSocket, frame: str) -> None:
        try:
            await websocket.send_text(frame)
        except Exception:
            logger.warning("Dropping realtime frame for a dead connection", exc_info=True)

    async def send_direct(self, websocket: WebSocket, event: str, payload: Any) -> None:
        await self._send(websocket, encode_event(event, payload))

    async def _to_account(self, account_id: str, frame: str) -> None:
        if self.fanout_enabled:
            try:
                await self.bus.publish(f"user:{account_id}", frame)
            except Exception:
                logger.warning("Bus publish to %s failed", account_id, exc_info=True)
            return
        for conn in self.manager.connections_for(account_id):
            await self._send(conn, frame)

    async def _broadcast(self, frame: str) -> None:
        for conn in self.manager.all_connections():
            await self._send(conn, frame)

    async def register(self, account_id: str, websocket: WebSocket, connection_id: str) -> None:
        self.manager.connect(account_id, websocket)
        came_online = self.presence.mark_online(account_id, connection_id)
        if self.fanout_enabled:
            try:
                await self.bus.set_presence(account_id, ttl_seconds=self.presence_ttl_seconds)
            except Exception:
                logger.warning("Could not refresh presence for %s", account_id, exc_info=True)
        logger.info("Account %s registered connection %s", account_id, connection_id)
        if came_online:
            await self._broadcast(encode_event("userOnlineStatus", {"userId": account_id, "isOnline": True}))

    def join_conversation(self, conversation_id: str, websocket: WebSocket) -> None:
        self.manager.join(conversation_id, websocket)

    def leave_conversation(self, conversation_id: str, websocket: WebSocket) -> None:
        self.manager.leave(conversation_id, websocket)

    async def publish_message(self, message: Dict[str, Any]) -> None:
        frame = encode_event("newMessage", message)
        # the sender's own room gets the echo for their other devices
        await self._to_account(message["senderAccountId"], frame)
        if message["recipientAccountId"] != message["senderAccountId"]:
            await self._to_account(message["recipientAccountId"], frame)

    async def publish_typing(self, conversation_id: str, account_id: str, is_typing: bool, origin: Optional[WebSocket] = None) -> None:
        frame = encode_event("typing", {"conversationId": conversation_id, "userId": account_id, "isTyping": is_typing})
        for conn in self.manager.room_members(conversation_id, exclude=origin):
            await self._send(conn, frame)

    async def publish_read(self, message_id: str, conversation_id: str, reader_id: str, sender_account_id: str) -> None:
        frame = encode_event("messageRead", {"messageId": message_id, "conversationId": conversation_id, "readerId": reader_id})
        await self._to_account(sender_account_id, frame)

    async def publish_reads(self, messages) -> None:
        for msg in messages:
            await self.publish_read(msg["_id"], msg["conversation_id"], msg["recipient_id"], msg["sender_account_id"])

    async def disconnect(self, account_id: str, websocket: WebSocket) -> None:
        went_offline = self.manager.disconnect(account_id, websocket)
        if not went_offline:
            return
        self.presence.mark_offline(account_id)
        if self.fanout_enabled:
            try:
                await self.bus.clear_presence(account_id)
            except Exception:
                logger.warning("Could not clear presence for %s", account_id, exc_info=True)
        logger.info("Account %s went offline", account_id)
        await self._broadcast(encode_event("userOnlineStatus", {"userId": account_id, "isOnline": False}))

    async def is_online(self, account_id: str) -> bool:
        if self.presence.is_online(account_id):
            return True
        if self.fanout_enabled:
            try:
                return await self.bus.is_online(account_id)
            except Exception:
                logger.warning("Presence lookup for %s failed", account_id, exc_info=True)
        return False
