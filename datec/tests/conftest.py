"""
Pytest configuration for datec tests.

Services are wired to the in-memory stores from fakes.py; adapter tests
mock the drivers directly.
"""
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from datec.config.settings import Settings
from datec.services.background import BackgroundTasks
from datec.services.comment_service import CommentService
from datec.services.counter_service import CounterService
from datec.services.dataset_service import DatasetService
from datec.services.maintenance import OrphanReaper
from datec.services.message_service import MessageService
from datec.services.notification_service import NotificationFanout
from datec.services.sequence_generator import SequenceGenerator
from datec.services.user_service import UserService
from datec.services.vote_service import VoteService
from datec.tests.fakes import (
    FakeBlobStore,
    FakeEphemeralStore,
    FakeGraphStore,
    FakeMetadataStore,
    identity_of,
    make_user,
)

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def core(settings):
    """All services wired to in-memory stores, with four seeded users"""
    metadata = FakeMetadataStore()
    blobs = FakeBlobStore()
    graph = FakeGraphStore()
    ephemeral = FakeEphemeralStore()
    background = BackgroundTasks()

    counters = CounterService(ephemeral)
    notifications = NotificationFanout(ephemeral, settings.notification_queue_size)
    sequences = SequenceGenerator(metadata)
    datasets = DatasetService(
        metadata, blobs, graph, counters, notifications, sequences, background, settings
    )
    votes = VoteService(metadata, counters)

    users = {}
    for name, is_admin in (("alice", False), ("bob", False), ("carol", False), ("root", True)):
        user = make_user(name, is_admin)
        metadata.users.seed(user)
        users[name] = identity_of(user)

    return SimpleNamespace(
        settings=settings,
        metadata=metadata,
        blobs=blobs,
        graph=graph,
        ephemeral=ephemeral,
        background=background,
        counters=counters,
        notifications=notifications,
        sequences=sequences,
        datasets=datasets,
        comments=CommentService(metadata, settings.max_comment_depth, settings.max_comment_length),
        votes=votes,
        users=UserService(metadata, blobs, graph, notifications, background,
                          search_limit=settings.search_limit),
        messages=MessageService(metadata, settings.max_message_length),
        reaper=OrphanReaper(metadata, graph, counters, blobs, votes, blob_grace=timedelta(hours=1)),
        alice=users["alice"],
        bob=users["bob"],
        carol=users["carol"],
        admin=users["root"],
    )


@pytest.fixture
def fixed_day(monkeypatch):
    """Mint dataset ids as if today were 2025-01-01"""
    day = date(2025, 1, 1)
    monkeypatch.setattr("datec.services.sequence_generator.utc_today", lambda: day)
    return day
