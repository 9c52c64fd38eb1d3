from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from marketchat.utils.clock import utcnow


@dataclass
class PresenceRecord:
    connection_id: str
    last_seen: datetime


class PresenceRegistry:
    """Process-wide map of connected accounts.

    Only the register/disconnect paths of the delivery channel write to it;
    everything else reads.
    """

    def __init__(self) -> None:
        self._records: Dict[str, PresenceRecord] = {}

    def mark_online(self, account_id: str, connection_id: str) -> bool:
        """Record a connection. Returns True if the account was offline before."""
        was_offline = account_id not in self._records
        self._records[account_id] = PresenceRecord(connection_id=connection_id, last_seen=utcnow())
        return was_offline

    def mark_offline(self, account_id: str) -> bool:
        return self._records.pop(account_id, None) is not None

    def touch(self, account_id: str) -> None:
        record = self._records.get(account_id)
        if record:
            record.last_seen = utcnow()

    def get(self, account_id: str) -> Optional[PresenceRecord]:
        return self._records.get(account_id)

    def is_online(self, account_id: str) -> bool:
        return account_id in self._records

    def snapshot(self) -> Dict[str, PresenceRecord]:
        return dict(self._records)
