from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ParticipantKind(str, Enum):
    USER = "User"
    CONTRACTOR = "Contractor"


@dataclass(frozen=True)
class Participant:
    """A message endpoint: a plain account or a contractor business profile."""

    kind: ParticipantKind
    id: str


@dataclass(frozen=True)
class ResolvedParticipant(Participant):
    """Participant with the account used for realtime addressing and display data.

    For users ``account_id == id``; for contractors it is the owning account.
    """

    account_id: str
    display_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    business_name: Optional[str] = None
    profile_picture: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "accountId": self.account_id,
            "displayName": self.display_name,
            "firstName": self.first_name or "",
            "lastName": self.last_name or "",
            "businessName": self.business_name or "",
            "profilePicture": self.profile_picture,
        }
