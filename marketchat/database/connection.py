import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from marketchat.core.config import get_settings
from marketchat.repositories.contractor_repository import ContractorRepository
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _database
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.MONGO_URL)
    _database = _client[settings.MONGO_DB]
    logger.info("Connected to MongoDB database %s", settings.MONGO_DB)


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
    _client = None
    _database = None


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await ContractorRepository(db).ensure_indexes()
