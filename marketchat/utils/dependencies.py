import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketchat.database.connection import mongo_db_dependency
from marketchat.repositories.contractor_repository import ContractorRepository
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.repositories.user_repository import UserRepository
from marketchat.services.chat_service import ChatService
from marketchat.services.conversation_aggregator import ConversationAggregator
from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.services.identity_resolver import IdentityResolver
from marketchat.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db=Depends(mongo_db_dependency),
) -> dict:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise unauthorized
    user = await UserRepository(db).get_user_by_id(payload.get("sub", ""))
    if not user:
        raise unauthorized
    return user


def get_identity_resolver(db=Depends(mongo_db_dependency)) -> IdentityResolver:
    return IdentityResolver(UserRepository(db), ContractorRepository(db))


def get_chat_service(db=Depends(mongo_db_dependency), resolver: IdentityResolver = Depends(get_identity_resolver)) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), resolver)


def get_aggregator(db=Depends(mongo_db_dependency), resolver: IdentityResolver = Depends(get_identity_resolver)) -> ConversationAggregator:
    return ConversationAggregator(MessageRepository(db), resolver)


def get_delivery(request: Request) -> DeliveryChannel:
    return request.app.state.delivery
