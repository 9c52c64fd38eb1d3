from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from marketchat.core.errors import ValidationError
from marketchat.models.message import MessageDocument
from marketchat.models.participant import ResolvedParticipant
from marketchat.utils.clock import from_millis, to_millis, utcnow
from marketchat.utils.ids import normalize_id, to_object_id


CHRONOLOGICAL = [("created_at", ASCENDING), ("seq", ASCENDING)]


class MessageRepository:
    """Append-only message log.

    The only mutation after insert is the ``read`` flag, always flipped with a
    filter on ``read: False`` so the transition happens at most once.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    @property
    def counters(self):
        return self._db["counters"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("sender_id", ASCENDING), ("recipient_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("recipient_id", ASCENDING), ("read", ASCENDING)])
        await self.collection.create_index([("conversation_id", ASCENDING), ("seq", ASCENDING)])
        await self.collection.create_index([("seq", ASCENDING)], unique=True)

    async def _next_seq(self) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": "messages"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    async def save_message(
        self,
        conversation_id: str,
        sender: ResolvedParticipant,
        recipient: ResolvedParticipant,
        text: str,
    ) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "seq": await self._next_seq(),
            "sender_id": sender.id,
            "sender_kind": sender.kind.value,
            "sender_account_id": sender.account_id,
            "recipient_id": recipient.id,
            "recipient_kind": recipient.kind.value,
            "recipient_account_id": recipient.account_id,
            "text": text,
            "read": False,
            "created_at": utcnow(),
        }
        result = await self.collection.insert_one(doc)
        # read back so callers see the stored representation
        return normalize_id(await self.collection.find_one({"_id": result.inserted_id}))

    async def get_by_id(self, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    @staticmethod
    def _between(ids_a: Sequence[str], ids_b: Sequence[str]) -> Dict[str, Any]:
        return {
            "$or": [
                {"sender_id": {"$in": list(ids_a)}, "recipient_id": {"$in": list(ids_b)}},
                {"sender_id": {"$in": list(ids_b)}, "recipient_id": {"$in": list(ids_a)}},
            ]
        }

    async def list_between(self, ids_a: Sequence[str], ids_b: Sequence[str]) -> List[Dict[str, Any]]:
        cur = self.collection.find(self._between(ids_a, ids_b)).sort(CHRONOLOGICAL)
        return [normalize_id(it) async for it in cur]

    async def page_between(
        self,
        ids_a: Sequence[str],
        ids_b: Sequence[str],
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {"$and": [self._between(ids_a, ids_b)]}
        if cursor:
            # cursor format: ts_ms:seq
            try:
                ts_str, seq_str = cursor.split(":", 1)
                ts = from_millis(int(ts_str))
                seq = int(seq_str)
            except ValueError:
                raise ValidationError("Invalid cursor")
            query["$and"].append({
                "$or": [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "seq": {"$lt": seq}},
                ]
            })
        cur = self.collection.find(query).sort([("created_at", -1), ("seq", -1)]).limit(limit)
        items = [normalize_id(it) for it in await cur.to_list(length=limit)]
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = f"{to_millis(last['created_at'])}:{last['seq']}"
        # pages run newest-first, each page in chronological order
        return list(reversed(items)), next_cursor

    async def find_involving(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        query = {"$or": [{"sender_id": {"$in": list(ids)}}, {"recipient_id": {"$in": list(ids)}}]}
        cur = self.collection.find(query).sort([("seq", ASCENDING)])
        return [normalize_id(it) async for it in cur]

    async def get_unread_between(self, sender_ids: Sequence[str], recipient_ids: Sequence[str]) -> List[Dict[str, Any]]:
        query = {
            "sender_id": {"$in": list(sender_ids)},
            "recipient_id": {"$in": list(recipient_ids)},
            "read": False,
        }
        cur = self.collection.find(query).sort(CHRONOLOGICAL)
        return [normalize_id(it) async for it in cur]

    async def get_unread_in_conversation(self, conversation_id: str, recipient_ids: Sequence[str]) -> List[Dict[str, Any]]:
        query = {"conversation_id": conversation_id, "recipient_id": {"$in": list(recipient_ids)}, "read": False}
        cur = self.collection.find(query).sort(CHRONOLOGICAL)
        return [normalize_id(it) async for it in cur]

    async def get_for_recipient_since(self, account_id: str, since: datetime) -> List[Dict[str, Any]]:
        cur = self.collection.find({"recipient_account_id": account_id, "created_at": {"$gt": since}}).sort(CHRONOLOGICAL)
        return [normalize_id(it) async for it in cur]

    async def mark_message_read(self, message_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(message_id), "read": False},
            {"$set": {"read": True}},
        )
        return bool(result.modified_count)

    async def mark_many_read(self, message_ids: Sequence[str]) -> int:
        oids = [to_object_id(m) for m in message_ids]
        if not oids:
            return 0
        result = await self.collection.update_many(
            {"_id": {"$in": oids}, "read": False},
            {"$set": {"read": True}},
        )
        return result.modified_count or 0
