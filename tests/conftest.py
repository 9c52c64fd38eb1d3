"""Pytest configuration and fixtures."""

import asyncio
from types import SimpleNamespace

import jwt
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from marketchat.core.config import get_settings
from marketchat.database.connection import ensure_indexes, mongo_db_dependency
from marketchat.main import create_app
from marketchat.repositories.contractor_repository import ContractorRepository
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.repositories.user_repository import UserRepository
from marketchat.services.chat_service import ChatService
from marketchat.services.conversation_aggregator import ConversationAggregator
from marketchat.services.identity_resolver import IdentityResolver
from marketchat.utils.realtime_bus import NoopBus


async def _seed(db) -> SimpleNamespace:
    """Alice and Carol are plain users; Bob is a contractor with his own account."""
    await ensure_indexes(db)
    users = UserRepository(db)
    contractors = ContractorRepository(db)
    alice = await users.create_user("alice@example.com", first_name="Alice", last_name="Able")
    bob_account = await users.create_user("bob@example.com", first_name="Bob", last_name="Builder", role="contractor")
    bob = await contractors.create_contractor(bob_account, business_name="Bob's Renovations")
    carol = await users.create_user("carol@example.com", first_name="Carol", last_name="Cole")
    return SimpleNamespace(alice=alice, bob_account=bob_account, bob=bob, carol=carol)


def make_token(account_id: str) -> str:
    settings = get_settings()
    return jwt.encode({"sub": account_id}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth(account_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(account_id)}"}


@pytest.fixture
def db():
    """Fresh in-memory Motor database per test."""
    return AsyncMongoMockClient()["marketchat_test"]


@pytest_asyncio.fixture
async def people(db):
    return await _seed(db)


@pytest.fixture
def people_sync(db):
    return asyncio.run(_seed(db))


@pytest.fixture
def resolver(db):
    return IdentityResolver(UserRepository(db), ContractorRepository(db))


@pytest.fixture
def chat_service(db, resolver):
    return ChatService(MessageRepository(db), ConversationRepository(db), resolver)


@pytest.fixture
def aggregator(db, resolver):
    return ConversationAggregator(MessageRepository(db), resolver)


@pytest_asyncio.fixture
async def callers(db, people):
    users = UserRepository(db)
    return SimpleNamespace(
        alice=await users.get_user_by_id(people.alice),
        bob=await users.get_user_by_id(people.bob_account),
        carol=await users.get_user_by_id(people.carol),
    )


@pytest.fixture
def app(db):
    application = create_app(bus=NoopBus(), lifespan_handler=None)
    application.dependency_overrides[mongo_db_dependency] = lambda: db
    return application


@pytest.fixture
def client(app, people_sync):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return auth


@pytest.fixture
def token_for():
    return make_token
