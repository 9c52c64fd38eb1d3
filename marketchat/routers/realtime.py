import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pymongo.errors import PyMongoError

from marketchat.core.errors import ChatError, ForbiddenError, ValidationError
from marketchat.database.connection import mongo_db_dependency
from marketchat.repositories.contractor_repository import ContractorRepository
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.repositories.user_repository import UserRepository
from marketchat.services.chat_service import ChatService
from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.services.identity_resolver import IdentityResolver
from marketchat.utils.security import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class RealtimeSession:
    """One authenticated websocket.

    Client frames are ``{"type": <event>, ...}``; server frames are
    ``{"type": <event>, "data": {...}}``.
    """

    def __init__(self, websocket: WebSocket, caller: Dict[str, Any], delivery: DeliveryChannel, service: ChatService) -> None:
        self.websocket = websocket
        self.caller = caller
        self.account_id = caller["_id"]
        self.delivery = delivery
        self.service = service
        self.connection_id = uuid.uuid4().hex
        self.registered = False
        self._subscriber = None
        self._tasks: list = []
        self._handlers = {
            "register": self.on_register,
            "joinConversation": self.on_join,
            "leaveConversation": self.on_leave,
            "typing": self.on_typing,
            "messageRead": self.on_message_read,
            "sendMessage": self.on_send_message,
        }

    async def error(self, detail: str, status: int = 400) -> None:
        await self.delivery.send_direct(self.websocket, "error", {"detail": detail, "status": status})

    async def run(self) -> None:
        while True:
            raw = await self.websocket.receive_text()
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                await self.error("Invalid JSON frame")
                continue
            if not isinstance(event, dict):
                await self.error("Invalid event payload")
                continue
            kind = event.get("type")
            handler = self._handlers.get(kind)
            if handler is None:
                await self.error(f"Unknown event type: {kind}")
                continue
            if kind != "register" and not self.registered:
                await self.error("Send register before other events", 401)
                continue
            try:
                await handler(event)
            except ChatError as exc:
                await self.error(exc.detail, exc.status_code)
            except PyMongoError:
                logger.exception("Store failure while handling %s", kind)
                await self.error("Server Error", 500)
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("Unexpected failure while handling %s", kind)
                await self.error("Server Error", 500)

    async def on_register(self, event: Dict[str, Any]) -> None:
        if event.get("accountId") != self.account_id:
            await self.websocket.close(code=4403)
            raise WebSocketDisconnect(code=4403)
        if self.registered:
            return
        await self.delivery.register(self.account_id, self.websocket, self.connection_id)
        self.registered = True
        if self.delivery.fanout_enabled:
            self._subscriber = await self.delivery.bus.subscribe(f"user:{self.account_id}", self.websocket.send_text)
            self._tasks.append(asyncio.create_task(self._subscriber.run()))
            self._tasks.append(asyncio.create_task(self._presence_heartbeat()))
        # resume: messages addressed to this account since the given timestamp (ms)
        resume_since = event.get("resumeSince")
        if resume_since is None:
            resume_since = self.websocket.query_params.get("resume_since")
        if resume_since is not None:
            try:
                since_ms = int(resume_since)
            except (TypeError, ValueError):
                raise ValidationError("resumeSince must be a millisecond timestamp")
            for message in await self.service.messages_since(self.account_id, since_ms):
                await self.delivery.send_direct(self.websocket, "newMessage", message)

    async def _presence_heartbeat(self) -> None:
        interval = max(self.delivery.presence_ttl_seconds // 2, 1)
        while True:
            try:
                await self.delivery.bus.set_presence(self.account_id, ttl_seconds=self.delivery.presence_ttl_seconds)
                self.delivery.presence.touch(self.account_id)
            except Exception:
                logger.warning("Presence heartbeat for %s failed", self.account_id, exc_info=True)
            await asyncio.sleep(interval)

    def _conversation_id(self, event: Dict[str, Any]) -> str:
        conversation_id = event.get("conversationId")
        if not isinstance(conversation_id, str) or not conversation_id:
            raise ValidationError("conversationId is required")
        return conversation_id

    async def on_join(self, event: Dict[str, Any]) -> None:
        conversation_id = self._conversation_id(event)
        await self.service.get_conversation_for(conversation_id, self.caller)
        self.delivery.join_conversation(conversation_id, self.websocket)

    async def on_leave(self, event: Dict[str, Any]) -> None:
        self.delivery.leave_conversation(self._conversation_id(event), self.websocket)

    async def on_typing(self, event: Dict[str, Any]) -> None:
        conversation_id = self._conversation_id(event)
        if not self.delivery.manager.in_room(conversation_id, self.websocket):
            raise ForbiddenError("Join the conversation before sending typing events")
        await self.delivery.publish_typing(conversation_id, self.account_id, bool(event.get("isTyping")), origin=self.websocket)

    async def on_message_read(self, event: Dict[str, Any]) -> None:
        message_id = event.get("messageId")
        if not isinstance(message_id, str) or not message_id:
            raise ValidationError("messageId is required")
        message, changed = await self.service.mark_read(message_id, self.caller)
        if changed:
            await self.delivery.publish_reads([message])

    async def on_send_message(self, event: Dict[str, Any]) -> None:
        message = await self.service.send_message(self.caller, event.get("recipientRef"), event.get("text"))
        await self.delivery.send_direct(self.websocket, "ack", {"clientMessageId": event.get("clientMessageId"), "message": message})
        await self.delivery.publish_message(message)

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._subscriber is not None:
            await self._subscriber.cancel()
        if self.registered:
            await self.delivery.disconnect(self.account_id, self.websocket)


async def _authenticate(websocket: WebSocket, users: UserRepository) -> Optional[Dict[str, Any]]:
    token = websocket.query_params.get("token")
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except jwt.PyJWTError:
        return None
    return await users.get_user_by_id(payload.get("sub", ""))


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, db=Depends(mongo_db_dependency)):
    # JWT protects the socket: token comes in as ?token=...
    users = UserRepository(db)
    caller = await _authenticate(websocket, users)
    if caller is None:
        await websocket.close(code=4401)
        return

    delivery: DeliveryChannel = websocket.app.state.delivery
    resolver = IdentityResolver(users, ContractorRepository(db))
    service = ChatService(MessageRepository(db), ConversationRepository(db), resolver)
    session = RealtimeSession(websocket, caller, delivery, service)

    await delivery.manager.accept(websocket)
    try:
        await session.run()
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()
