"""
Test configuration and fixtures for chat tests.

This module provides:
- User fixtures (alice, bob, carol)
- A direct chat between alice and bob
- Stores: in-memory fakes and the Django ORM store
- Task mocks so no test needs a Celery broker

Usage:
    def test_example(fake_store, fake_feed, fake_chat_id):
        ...

    @pytest.mark.django_db(transaction=True)
    def test_example_db(django_store, direct_chat, alice):
        ...

Async code runs inside sync tests through asgiref's async_to_sync. Tests
that touch the database from async code use django_db(transaction=True):
database_sync_to_async recycles connections, which the plain db fixture's
wrapping transaction does not survive.
"""

import pytest

from authentication.tests.factories import UserFactory
from chat.identity import StaticIdentityProvider
from chat.store import DjangoMessageStore
from chat.tests.factories import DirectChatFactory
from chat.tests.fakes import FakeMessageStore, FakeRealtimeFeed

ALICE_ID = 1
BOB_ID = 2
CAROL_ID = 3


# =============================================================================
# Task Mocks
# =============================================================================


@pytest.fixture(autouse=True)
def mock_chat_tasks(mocker):
    """
    Mock Celery task queueing for all chat tests.

    Message inserts queue apply_message_unread on commit and lost unread
    updates queue a recount; neither needs a broker in tests.
    """
    return {
        "apply_message_unread": mocker.patch("chat.tasks.apply_message_unread.delay"),
        "recalculate_unread_count": mocker.patch(
            "chat.tasks.recalculate_unread_count.delay"
        ),
    }


# =============================================================================
# In-memory Fixtures
# =============================================================================


@pytest.fixture
def fake_feed():
    return FakeRealtimeFeed()


@pytest.fixture
def fake_store(fake_feed):
    """FakeMessageStore with alice, bob and carol; writes publish to fake_feed."""
    store = FakeMessageStore(fake_feed)
    store.add_user(ALICE_ID, "alice")
    store.add_user(BOB_ID, "bob")
    store.add_user(CAROL_ID, "carol")
    return store


@pytest.fixture
def fake_chat_id(fake_store):
    """Chat between alice and bob in fake_store."""
    return fake_store.seed_chat(ALICE_ID, BOB_ID)


@pytest.fixture
def alice_identity():
    return StaticIdentityProvider(ALICE_ID)


@pytest.fixture
def bob_identity():
    return StaticIdentityProvider(BOB_ID)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    return UserFactory(username="alice")


@pytest.fixture
def bob(db):
    return UserFactory(username="bob")


@pytest.fixture
def carol(db):
    return UserFactory(username="carol")


@pytest.fixture
def direct_chat(db, alice, bob):
    """Direct chat between alice and bob with both participants."""
    return DirectChatFactory(user1=alice, user2=bob)


@pytest.fixture
def django_store():
    return DjangoMessageStore()
