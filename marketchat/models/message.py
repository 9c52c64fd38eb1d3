from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    # store-assigned insertion sequence, tie-break for equal created_at
    seq: int
    sender_id: str
    sender_kind: str
    sender_account_id: str
    recipient_id: str
    recipient_kind: str
    recipient_account_id: str
    text: str
    # flips false -> true once, by the recipient only
    read: bool
    created_at: datetime
