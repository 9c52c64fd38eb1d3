import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from marketchat.core.errors import (
    ConversationNotFound,
    ForbiddenError,
    MessageNotFound,
    NotFoundError,
    RecipientNotFound,
    ValidationError,
)
from marketchat.models.participant import ResolvedParticipant
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.services.identity_resolver import IdentityResolver
from marketchat.utils.clock import from_millis

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def present_message(
    doc: Dict[str, Any],
    sender: Optional[ResolvedParticipant] = None,
    recipient: Optional[ResolvedParticipant] = None,
) -> Dict[str, Any]:
    """Wire shape of a message; sender/recipient summaries are embedded when known."""
    return {
        "id": doc["_id"],
        "conversationId": doc["conversation_id"],
        "seq": doc["seq"],
        "senderId": doc["sender_id"],
        "senderKind": doc["sender_kind"],
        "senderAccountId": doc["sender_account_id"],
        "recipientId": doc["recipient_id"],
        "recipientKind": doc["recipient_kind"],
        "recipientAccountId": doc["recipient_account_id"],
        "sender": sender.summary() if sender else None,
        "recipient": recipient.summary() if recipient else None,
        "text": doc["text"],
        "read": doc["read"],
        "createdAt": doc["created_at"],
    }


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        resolver: IdentityResolver,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._resolver = resolver

    async def send_message(self, caller: Dict[str, Any], recipient_ref: Optional[str], text: Optional[str]) -> Dict[str, Any]:
        if not isinstance(recipient_ref, str) or not isinstance(text, str) or not recipient_ref or not text:
            raise ValidationError("Please provide recipientRef and text")
        if not text.strip():
            raise ValidationError("Message text cannot be empty")
        sender = await self._resolver.resolve_caller_send_identity(caller)
        try:
            recipient = await self._resolver.resolve(recipient_ref)
        except NotFoundError as exc:
            raise RecipientNotFound("Recipient not found") from exc
        if sender.account_id == recipient.account_id:
            raise ValidationError("Cannot send a message to yourself")

        convo = await self._conversation_repo.get_or_create_one_to_one(sender, recipient)
        saved = await self._message_repo.save_message(convo["_id"], sender, recipient, text.strip())
        await self._conversation_repo.update_on_new_message(convo["_id"], saved["text"][:PREVIEW_LENGTH], saved["created_at"])
        logger.info(
            "Message stored",
            extra={"context": {"message_id": saved["_id"], "conversation_id": convo["_id"]}},
        )
        return present_message(saved, sender, recipient)

    async def _expand(self, docs: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        cache: Dict[str, Optional[ResolvedParticipant]] = {}

        async def lookup(ref: str) -> Optional[ResolvedParticipant]:
            if ref not in cache:
                try:
                    cache[ref] = await self._resolver.resolve(ref)
                except NotFoundError:
                    cache[ref] = None
            return cache[ref]

        return [present_message(d, await lookup(d["sender_id"]), await lookup(d["recipient_id"])) for d in docs]

    async def _pair_ids(self, caller: Dict[str, Any], other_ref: str) -> Tuple[List[str], List[str], ResolvedParticipant]:
        mine = await self._resolver.candidate_ids(caller)
        other = await self._resolver.resolve(other_ref)
        theirs = await self._resolver.aliases(other)
        return mine, theirs, other

    async def list_messages(self, caller: Dict[str, Any], other_ref: str) -> List[Dict[str, Any]]:
        """Messages between the caller and ``other_ref`` in chronological order. Pure read."""
        mine, theirs, _ = await self._pair_ids(caller, other_ref)
        return await self._expand(await self._message_repo.list_between(mine, theirs))

    async def get_history_page(self, caller: Dict[str, Any], other_ref: str, limit: int = 50, cursor: Optional[str] = None):
        mine, theirs, _ = await self._pair_ids(caller, other_ref)
        docs, next_cursor = await self._message_repo.page_between(mine, theirs, limit=limit, cursor=cursor)
        return await self._expand(docs), next_cursor

    async def mark_read_from(self, caller: Dict[str, Any], other_ref: str) -> List[Dict[str, Any]]:
        """Flip every unread message ``other_ref`` sent the caller. Returns the messages flipped."""
        mine, theirs, _ = await self._pair_ids(caller, other_ref)
        unread = await self._message_repo.get_unread_between(theirs, mine)
        await self._message_repo.mark_many_read([m["_id"] for m in unread])
        return unread

    async def mark_read(self, message_id: str, caller: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        message = await self._message_repo.get_by_id(message_id)
        if not message:
            raise MessageNotFound("Message not found")
        if message["recipient_id"] not in await self._resolver.candidate_ids(caller):
            raise ForbiddenError("Not authorized to mark this message as read")
        changed = await self._message_repo.mark_message_read(message_id)
        message["read"] = True
        return message, changed

    async def get_conversation_for(self, conversation_id: str, caller: Dict[str, Any]) -> Dict[str, Any]:
        conversation = await self._conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFound("Conversation not found")
        if caller["_id"] not in ConversationRepository.account_ids(conversation):
            raise ForbiddenError("Not authorized to access this conversation")
        return conversation

    async def mark_conversation_read(self, conversation_id: str, caller: Dict[str, Any]) -> List[Dict[str, Any]]:
        await self.get_conversation_for(conversation_id, caller)
        mine = await self._resolver.candidate_ids(caller)
        unread = await self._message_repo.get_unread_in_conversation(conversation_id, mine)
        await self._message_repo.mark_many_read([m["_id"] for m in unread])
        return unread

    async def find_or_create_conversation(self, caller: Dict[str, Any], participant_ids: Optional[List[str]]) -> Dict[str, Any]:
        if not isinstance(participant_ids, list) or len(participant_ids) != 2:
            raise ValidationError("Please provide an array of two participant IDs.")
        resolved = []
        for index, ref in enumerate(sorted(participant_ids), start=1):
            try:
                resolved.append(await self._resolver.resolve(ref))
            except NotFoundError as exc:
                raise NotFoundError(f"Participant {index} ({ref}) not found.") from exc
        first, second = resolved
        if first.account_id == second.account_id:
            raise ValidationError("A conversation needs two distinct accounts")
        if caller["_id"] not in (first.account_id, second.account_id):
            raise ForbiddenError("Not authorized to create this conversation")
        convo = await self._conversation_repo.get_or_create_one_to_one(first, second)
        by_account = {p.account_id: p for p in resolved}
        return {
            "conversationId": convo["_id"],
            "participants": [by_account[a].summary() for a in ConversationRepository.account_ids(convo) if a in by_account],
        }

    async def messages_since(self, account_id: str, since_ms: int) -> List[Dict[str, Any]]:
        try:
            since = from_millis(since_ms)
        except ValueError as exc:
            raise ValidationError("resumeSince is out of range") from exc
        docs = await self._message_repo.get_for_recipient_since(account_id, since)
        return await self._expand(docs)
