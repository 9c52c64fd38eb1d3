import logging
from typing import Any, Dict, List, Optional

import httpx

from marketchat.client.cache import ConversationCache
from marketchat.core.errors import ChatError, ForbiddenError, NotFoundError, TransientError, ValidationError

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    if response.status_code == 400 or response.status_code == 422:
        raise ValidationError(str(detail))
    if response.status_code in (401, 403):
        raise ForbiddenError(str(detail))
    if response.status_code == 404:
        raise NotFoundError(str(detail))
    if response.status_code >= 500:
        raise TransientError(str(detail))
    raise ChatError(str(detail))


class MessagingClient:
    """REST side of the messaging API, used for full fetches and as the
    fallback path whenever the realtime socket is unavailable."""

    def __init__(self, base_url: str, token: str, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "MessagingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientError(f"{method} {url} failed: {exc}") from exc
        _raise_for_status(response)
        return response.json()

    async def fetch_conversations(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/messages/conversations")

    async def fetch_messages(self, other_ref: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/messages/conversation/{other_ref}")

    async def send_message(self, recipient_ref: str, text: str) -> Dict[str, Any]:
        return await self._request("POST", "/messages", json={"recipientRef": recipient_ref, "text": text})

    async def mark_read(self, message_id: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/messages/{message_id}/read")

    async def find_or_create_conversation(self, participant_ids: List[str]) -> Dict[str, Any]:
        return await self._request("POST", "/messages/find-or-create-conversation", json={"participantIds": participant_ids})

    async def refresh(self, cache: ConversationCache) -> List[Dict[str, Any]]:
        """Full fetch into the cache; the recovery path after a missed live event."""
        projections = await self.fetch_conversations()
        cache.apply_snapshot(projections)
        return cache.ordered()

    async def open_thread(self, cache: ConversationCache, conversation_id: str) -> Dict[str, Any]:
        entry = cache.open_conversation(conversation_id)
        if entry is None:
            raise NotFoundError(f"Conversation {conversation_id} is not cached")
        messages = await self.fetch_messages(entry["otherParticipant"]["id"])
        cache.apply_messages(entry["conversationId"], messages)
        return entry
