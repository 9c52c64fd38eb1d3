import logging
from typing import Any, Dict, List

from marketchat.core.errors import NotFoundError
from marketchat.repositories.message_repository import MessageRepository
from marketchat.services.chat_service import present_message
from marketchat.services.identity_resolver import IdentityResolver

logger = logging.getLogger(__name__)


def _recency(doc: Dict[str, Any]):
    return doc["created_at"], doc["seq"]


class ConversationAggregator:
    """Builds the conversation list of a caller straight from the message log.

    Messages are grouped by whichever end is not one of the caller's ids, so a
    counterpart that addressed the caller both by account id and by contractor
    profile id still shows up as a single group per counterpart id.
    """

    def __init__(self, message_repo: MessageRepository, resolver: IdentityResolver) -> None:
        self._message_repo = message_repo
        self._resolver = resolver

    async def list_conversations(self, caller: Dict[str, Any]) -> List[Dict[str, Any]]:
        mine = await self._resolver.candidate_ids(caller)
        mine_set = set(mine)
        messages = await self._message_repo.find_involving(mine)

        groups: Dict[str, Dict[str, Any]] = {}
        for msg in messages:
            other_id = msg["recipient_id"] if msg["sender_id"] in mine_set else msg["sender_id"]
            group = groups.setdefault(other_id, {"last": msg, "unread": 0})
            if _recency(msg) > _recency(group["last"]):
                group["last"] = msg
            if msg["recipient_id"] in mine_set and not msg["read"]:
                group["unread"] += 1

        me = await self._resolver.describe_caller(caller)
        projections = []
        for other_id, group in groups.items():
            try:
                other = await self._resolver.resolve(other_id)
            except NotFoundError:
                logger.warning("Dropping conversation group with unresolvable participant %s", other_id)
                continue
            last = group["last"]
            projections.append({
                "conversationId": last["conversation_id"],
                "otherParticipant": other.summary(),
                "lastMessage": present_message(last),
                "unreadCount": group["unread"],
                "participants": [me.summary(), other.summary()],
            })
        projections.sort(key=lambda p: (p["lastMessage"]["createdAt"], p["lastMessage"]["seq"]), reverse=True)
        return projections
