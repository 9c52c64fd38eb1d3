import logging
from datetime import datetime
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketchat.models.conversation import ConversationDocument
from marketchat.models.participant import ResolvedParticipant
from marketchat.utils.clock import utcnow
from marketchat.utils.ids import normalize_id, to_object_id

logger = logging.getLogger(__name__)


def pair_key(account_a: str, account_b: str) -> str:
    """Order-independent key for a pair of accounts."""
    return ":".join(sorted([account_a, account_b]))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants.account_id", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get_or_create_one_to_one(self, a: ResolvedParticipant, b: ResolvedParticipant) -> ConversationDocument:
        """Return the canonical conversation for the two accounts, creating it if needed.

        The conversation is keyed by account ids, never by contractor profile ids,
        so a contractor addressed either way lands in the same thread. The upsert
        is atomic; a concurrent upsert on the same key surfaces as a duplicate key
        error and the winner's document is read back.
        """
        key = pair_key(a.account_id, b.account_id)
        participants = sorted(
            [
                {"account_id": p.account_id, "participant_id": p.id, "kind": p.kind.value}
                for p in (a, b)
            ],
            key=lambda p: p["account_id"],
        )
        now = utcnow()
        try:
            doc = await self.collection.find_one_and_update(
                {"pair_key": key},
                {
                    "$setOnInsert": {
                        "pair_key": key,
                        "participants": participants,
                        "last_message": None,
                        "last_message_at": now,
                        "created_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            logger.info("Concurrent conversation create for %s, reading winner", key)
            doc = await self.collection.find_one({"pair_key": key})
        return normalize_id(doc)

    async def get_by_id(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    async def update_on_new_message(self, conversation_id: str, preview: str, at: datetime) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id)},
            {"$set": {"last_message": preview, "last_message_at": at}},
        )

    @staticmethod
    def account_ids(conversation: Dict[str, Any]) -> list:
        return [p["account_id"] for p in conversation.get("participants", [])]
