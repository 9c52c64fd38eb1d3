from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationParticipant(TypedDict):

    account_id: str
    participant_id: str
    kind: str


class ConversationDocument(TypedDict, total=False):
    _id: str
    # sorted account ids, unique per pair
    pair_key: str
    participants: List[ConversationParticipant]
    last_message: Optional[str]
    last_message_at: datetime
    created_at: datetime
