from fastapi import APIRouter, Depends

from marketchat.schemas.message import PresenceStatus
from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.utils.dependencies import get_current_user, get_delivery


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}", response_model=PresenceStatus)
async def presence(user_id: str, current_user: dict = Depends(get_current_user), delivery: DeliveryChannel = Depends(get_delivery)):
    """
    Online status of an account. The local registry answers first; with Redis
    fanout enabled the shared presence key covers sockets held by other processes.
    """
    record = delivery.presence.get(user_id)
    online = await delivery.is_online(user_id)
    last_seen = record.last_seen.isoformat() if record else None
    return PresenceStatus(user_id=user_id, online=online, last_seen=last_seen)
