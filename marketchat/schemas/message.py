from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field


class SendMessageRequest(BaseModel):

    # older clients post recipientId / messageText
    recipient_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("recipientRef", "recipientId"))
    text: Optional[str] = Field(default=None, validation_alias=AliasChoices("text", "messageText"))


class FindOrCreateConversationRequest(BaseModel):

    participant_ids: Optional[List[str]] = Field(default=None, validation_alias=AliasChoices("participantIds", "participant_ids"))


class PresenceStatus(BaseModel):

    user_id: str
    online: bool
    last_seen: Optional[str] = None
