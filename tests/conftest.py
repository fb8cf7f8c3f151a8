"""
Shared pytest fixtures.

Conversations and messages live in an in-memory Motor stand-in
(mongomock-motor); events go through the in-process bus.
"""

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from groupchat.constants import Topics
from groupchat.repositories.conversation_repository import ConversationRepository
from groupchat.repositories.message_repository import MessageRepository
from groupchat.repositories.user_repository import UserRepository
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.event_bus import LocalEventBus


@pytest.fixture
def db():
    return AsyncMongoMockClient()["groupchat_test"]


@pytest.fixture
def bus():
    return LocalEventBus()


@pytest.fixture
async def events(bus):
    """Every (topic, payload) published on the bus, in order."""
    received = []
    for name in Topics.ALL:
        await bus.topic(name).subscribe(lambda payload, name=name: received.append((name, payload)))
    return received


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def service(conversation_repo, message_repo, db, bus):
    return ConversationService(conversation_repo, message_repo, UserRepository(db), bus)


@pytest.fixture
async def users(db):
    """Three registered users, keyed by first name, as id strings."""
    docs = {
        "alice": {"_id": ObjectId(), "email": "alice@example.com", "full_name": "Alice Martin", "hashed_password": "x"},
        "bob": {"_id": ObjectId(), "email": "bob@example.com", "full_name": "Bob Durand", "hashed_password": "x"},
        "carol": {"_id": ObjectId(), "email": "carol@example.com", "full_name": None, "hashed_password": "x"},
    }
    await db["users"].insert_many(list(docs.values()))
    return {name: str(doc["_id"]) for name, doc in docs.items()}
