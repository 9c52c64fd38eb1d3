"""Client-side mirror of the conversation list.

Merges REST snapshots with live socket events and folds duplicate threads
(fragments) for the same counterpart into one canonical entry. Since the
server now keys conversations by account pair, fragments only come from
records written before that, or from a counterpart addressed under two ids;
the folding is kept so such histories still render as a single thread.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


def _ts(value: Union[str, datetime, None]) -> datetime:
    if value is None:
        return datetime.min
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _message_key(message: Dict[str, Any]):
    return _ts(message.get("createdAt")), message.get("seq") or 0


def _identity(participant: Dict[str, Any]) -> str:
    return participant.get("accountId") or participant.get("id")


def _display_name(summary: Dict[str, Any]) -> str:
    if summary.get("displayName"):
        return summary["displayName"]
    if summary.get("kind") == "Contractor":
        return summary.get("businessName") or "Unknown Contractor"
    name = f"{summary.get('firstName', '')} {summary.get('lastName', '')}".strip()
    return name or "Unknown User"


class ConversationCache:

    def __init__(
        self,
        own_ids: Iterable[str],
        storage_path: Union[str, Path, None] = None,
        typing_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.own_ids = set(own_ids)
        self.storage_path = Path(storage_path) if storage_path else None
        self.typing_ttl = typing_ttl
        self._clock = clock
        self.conversations: Dict[str, Dict[str, Any]] = {}
        # fragment id -> canonical id
        self.aliases: Dict[str, str] = {}
        self.typing: Dict[str, Dict[str, float]] = {}
        self.open_conversation_id: Optional[str] = None

    # -- identity helpers

    def canonical_id(self, conversation_id: str) -> str:
        seen = set()
        while conversation_id in self.aliases and conversation_id not in seen:
            seen.add(conversation_id)
            conversation_id = self.aliases[conversation_id]
        return conversation_id

    def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return self.conversations.get(self.canonical_id(conversation_id))

    def _find_by_identity(self, identity: str) -> Optional[Dict[str, Any]]:
        for entry in self.conversations.values():
            if _identity(entry["otherParticipant"]) == identity:
                return entry
        return None

    def _is_inbound(self, message: Dict[str, Any]) -> bool:
        return message.get("recipientId") in self.own_ids or message.get("recipientAccountId") in self.own_ids

    # -- snapshots

    def apply_snapshot(self, projections: Iterable[Dict[str, Any]]) -> None:
        """Replace the list with a fresh REST snapshot, folding fragments.

        Projections sharing a counterpart identity are one thread. The one
        with the earliest last message stays addressable, the others are
        recorded as aliases of it and dropped. Their unread counts are not
        summed; the entry is flagged stale until its messages are refetched.
        """
        groups: Dict[str, List[Dict[str, Any]]] = {}
        for projection in projections:
            groups.setdefault(_identity(projection["otherParticipant"]), []).append(projection)

        fresh: Dict[str, Dict[str, Any]] = {}
        for members in groups.values():
            canonical = min(members, key=lambda p: _message_key(p.get("lastMessage") or {}))
            latest = max(members, key=lambda p: _message_key(p.get("lastMessage") or {}))
            cid = canonical["conversationId"]
            self.aliases.pop(cid, None)

            previous = self.conversations.get(cid)
            entry = dict(canonical)
            entry["lastMessage"] = latest.get("lastMessage")
            entry["messages"] = list(previous["messages"]) if previous else []
            entry["stale"] = len(members) > 1
            for fragment in members:
                fid = fragment["conversationId"]
                if fid == cid:
                    continue
                self.aliases[fid] = cid
                folded = self.conversations.get(fid)
                if folded:
                    self._merge_messages(entry, folded["messages"])
                logger.debug("Folded fragment %s into %s", fid, cid)
            fresh[cid] = entry

        self.conversations = fresh
        if self.open_conversation_id:
            self.open_conversation_id = self.canonical_id(self.open_conversation_id)
        self.save()

    def _merge_messages(self, entry: Dict[str, Any], messages: Iterable[Dict[str, Any]]) -> int:
        known = {m["id"]: m for m in entry["messages"]}
        added = 0
        for message in messages:
            if message["id"] in known:
                known[message["id"]].update(message)
            else:
                known[message["id"]] = dict(message)
                added += 1
        entry["messages"] = sorted(known.values(), key=_message_key)
        return added

    def apply_messages(self, conversation_id: str, messages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Merge a fetched message list (keyed by message id) into an entry."""
        entry = self.get(conversation_id)
        if entry is None:
            return None
        self._merge_messages(entry, messages)
        if entry["messages"]:
            entry["lastMessage"] = entry["messages"][-1]
        entry["unreadCount"] = sum(1 for m in entry["messages"] if self._is_inbound(m) and not m.get("read"))
        entry["stale"] = False
        self.save()
        return entry

    # -- live events

    def apply_new_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        inbound = self._is_inbound(message)
        cid = self.canonical_id(message["conversationId"])
        entry = self.conversations.get(cid)

        summary = dict((message.get("sender") if inbound else message.get("recipient")) or {})
        if not summary:
            prefix = "sender" if inbound else "recipient"
            summary = {
                "id": message[f"{prefix}Id"],
                "kind": message.get(f"{prefix}Kind", "User"),
                "accountId": message.get(f"{prefix}AccountId"),
            }
        summary["displayName"] = _display_name(summary)

        if entry is None:
            entry = self._find_by_identity(_identity(summary))
            if entry is not None:
                self.aliases[cid] = entry["conversationId"]
        if entry is None:
            entry = {
                "conversationId": cid,
                "otherParticipant": summary,
                "lastMessage": None,
                "unreadCount": 0,
                "participants": [],
                "messages": [],
                "stale": False,
            }
            self.conversations[cid] = entry

        last = entry.get("lastMessage") or {}
        if last.get("id") == message["id"] or any(m["id"] == message["id"] for m in entry["messages"]):
            return entry

        self._merge_messages(entry, [message])
        if not last or _message_key(message) >= _message_key(last):
            entry["lastMessage"] = message
        if inbound and not message.get("read") and entry["conversationId"] != self.open_conversation_id:
            entry["unreadCount"] = entry.get("unreadCount", 0) + 1
        self.save()
        return entry

    def apply_message_read(self, event: Dict[str, Any]) -> bool:
        message_id = event["messageId"]
        entry = self.get(event.get("conversationId", ""))
        candidates = [entry] if entry else list(self.conversations.values())
        updated = False
        for candidate in candidates:
            for message in candidate["messages"]:
                if message["id"] == message_id:
                    message["read"] = True
                    updated = True
            last = candidate.get("lastMessage")
            if last and last.get("id") == message_id:
                last["read"] = True
                updated = True
        if updated:
            self.save()
        return updated

    def apply_typing(self, event: Dict[str, Any]) -> None:
        cid = self.canonical_id(event["conversationId"])
        users = self.typing.setdefault(cid, {})
        if event.get("isTyping"):
            users[event["userId"]] = self._clock()
        else:
            users.pop(event["userId"], None)

    def typing_users(self, conversation_id: str) -> List[str]:
        users = self.typing.get(self.canonical_id(conversation_id), {})
        if self.typing_ttl is not None:
            now = self._clock()
            for user_id in [u for u, since in users.items() if now - since > self.typing_ttl]:
                del users[user_id]
        return sorted(users)

    def apply_event(self, frame: Dict[str, Any]) -> None:
        """Dispatch a server frame ``{"type": ..., "data": ...}``."""
        kind, data = frame.get("type"), frame.get("data") or {}
        if kind == "newMessage":
            self.apply_new_message(data)
        elif kind == "messageRead":
            self.apply_message_read(data)
        elif kind == "typing":
            self.apply_typing(data)

    # -- view state

    def open_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        entry = self.get(conversation_id)
        if entry is None:
            return None
        self.open_conversation_id = entry["conversationId"]
        entry["unreadCount"] = 0
        self.save()
        return entry

    def close_conversation(self) -> None:
        self.open_conversation_id = None

    def ordered(self) -> List[Dict[str, Any]]:
        return sorted(
            self.conversations.values(),
            key=lambda e: _message_key(e.get("lastMessage") or {}),
            reverse=True,
        )

    # -- durable mirror

    def save(self) -> None:
        if self.storage_path is None:
            return
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump({"conversations": self.conversations, "aliases": self.aliases}, fh, default=str)
        os.replace(tmp, self.storage_path)

    def load(self) -> bool:
        if self.storage_path is None or not self.storage_path.exists():
            return False
        try:
            with open(self.storage_path, encoding="utf-8") as fh:
                state = json.load(fh)
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable conversation cache at %s", self.storage_path, exc_info=True)
            return False
        self.conversations = state.get("conversations", {})
        self.aliases = state.get("aliases", {})
        return True
