"""
Application container

Builds the four store adapters from Settings, wires every service by
constructor injection and owns the connection lifecycle:

    async with Datec() as app:
        dataset = await app.datasets.create(owner, "Weather 2024", files)
"""
import logging
from datetime import timedelta
from typing import Optional

from datec.config.database import (
    build_blob_store,
    build_ephemeral_store,
    build_graph_store,
    build_metadata_store,
)
from datec.config.settings import Settings, get_settings
from datec.services import (
    BackgroundTasks,
    CommentService,
    CounterService,
    DatasetService,
    MessageService,
    NotificationFanout,
    OrphanReaper,
    SequenceGenerator,
    UserService,
    VoteService,
)

logger = logging.getLogger(__name__)


class Datec:

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # Store adapters
        self.metadata = build_metadata_store(self.settings)
        self.graph = build_graph_store(self.settings)
        self.ephemeral = build_ephemeral_store(self.settings)
        self.blobs = build_blob_store(self.settings)

        # Services
        self.background = BackgroundTasks()
        self.counters = CounterService(self.ephemeral)
        self.notifications = NotificationFanout(self.ephemeral, self.settings.notification_queue_size)
        self.sequences = SequenceGenerator(self.metadata)
        self.datasets = DatasetService(
            self.metadata,
            self.blobs,
            self.graph,
            self.counters,
            self.notifications,
            self.sequences,
            self.background,
            self.settings,
        )
        self.comments = CommentService(
            self.metadata,
            max_depth=self.settings.max_comment_depth,
            max_length=self.settings.max_comment_length,
        )
        self.votes = VoteService(self.metadata, self.counters)
        self.users = UserService(
            self.metadata, self.blobs, self.graph, self.notifications, self.background,
            search_limit=self.settings.search_limit,
        )
        self.messages = MessageService(self.metadata, max_length=self.settings.max_message_length)
        self.reaper = OrphanReaper(
            self.metadata,
            self.graph,
            self.counters,
            self.blobs,
            self.votes,
            blob_grace=timedelta(minutes=self.settings.orphan_blob_grace_minutes),
        )

    async def start(self):
        """Open connections to every store"""
        await self.metadata.connect()
        await self.graph.connect()
        await self.ephemeral.connect()
        await self.blobs.connect()
        logger.info(f"✅ datec ready ({self.settings.environment})")

    async def stop(self):
        """Let background work finish, then close connections"""
        await self.background.drain(timeout=self.settings.store_timeout_seconds)
        await self.blobs.close()
        await self.ephemeral.close()
        await self.graph.close()
        await self.metadata.close()
        logger.info("🔌 datec stopped")

    async def __aenter__(self) -> 'Datec':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
