from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from marketchat.core.config import get_settings
from marketchat.core.errors import ForbiddenError
from marketchat.schemas.message import FindOrCreateConversationRequest, SendMessageRequest
from marketchat.services.chat_service import ChatService
from marketchat.services.conversation_aggregator import ConversationAggregator
from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.utils.dependencies import get_aggregator, get_chat_service, get_current_user, get_delivery


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    delivery: DeliveryChannel = Depends(get_delivery),
):
    message = await service.send_message(current_user, body.recipient_ref, body.text)
    await delivery.publish_message(message)
    return message


@router.get("/conversations")
async def list_conversations(current_user: dict = Depends(get_current_user), aggregator: ConversationAggregator = Depends(get_aggregator)):
    return await aggregator.list_conversations(current_user)


@router.get("/conversation/{other_ref}")
async def get_conversation(
    other_ref: str,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    delivery: DeliveryChannel = Depends(get_delivery),
):
    """Full history with ``other_ref``.

    Viewing the thread marks every inbound unread message as read, so the
    returned messages already carry ``read: true`` and each sender gets a
    ``messageRead`` receipt.
    """
    flipped = await service.mark_read_from(current_user, other_ref)
    messages = await service.list_messages(current_user, other_ref)
    await delivery.publish_reads(flipped)
    return messages


@router.get("/conversation/{other_ref}/page")
async def get_conversation_page(
    other_ref: str,
    limit: Optional[int] = Query(None, ge=1, le=200),
    cursor: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    limit = limit or get_settings().CONVERSATION_PAGE_LIMIT
    items, next_cursor = await service.get_history_page(current_user, other_ref, limit=limit, cursor=cursor)
    return {"items": items, "next_cursor": next_cursor}


@router.put("/read-conversation/{conversation_id}")
async def read_conversation(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    delivery: DeliveryChannel = Depends(get_delivery),
):
    flipped = await service.mark_conversation_read(conversation_id, current_user)
    await delivery.publish_reads(flipped)
    return {"message": "Messages in conversation marked as read", "updated": len(flipped)}


@router.put("/{message_id}/read")
async def mark_read(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    delivery: DeliveryChannel = Depends(get_delivery),
):
    try:
        message, changed = await service.mark_read(message_id, current_user)
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.detail)
    if changed:
        await delivery.publish_reads([message])
    return {"messageId": message_id, "read": True, "updated": changed}


@router.post("/find-or-create-conversation")
async def find_or_create_conversation(
    body: FindOrCreateConversationRequest,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.find_or_create_conversation(current_user, body.participant_ids)
