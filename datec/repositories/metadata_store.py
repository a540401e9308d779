"""
Metadata store - PostgreSQL connection lifecycle and repositories.

The store is constructed explicitly and injected into services; nothing
reaches for a module-level pool.
"""
import json
import logging
from typing import Optional

import asyncpg

from .base import postgres_errors
from .comment_repository import CommentRepository
from .dataset_repository import DatasetRepository
from .message_repository import MessageRepository
from .schema import SCHEMA_STATEMENTS
from .user_repository import UserRepository
from .vote_repository import VoteRepository

logger = logging.getLogger(__name__)


async def _init_connection(conn: asyncpg.Connection):
    """Decode jsonb columns to Python objects on every pooled connection"""
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog',
    )


class MetadataStore:
    """
    PostgreSQL-backed metadata store.

    Repositories are available after connect():
    - users, datasets, comments, votes, messages
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        user: str = "datec_user",
        password: str = "",
        database: str = "datec",
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout

        self.pool: Optional[asyncpg.Pool] = None
        self.users: Optional[UserRepository] = None
        self.datasets: Optional[DatasetRepository] = None
        self.comments: Optional[CommentRepository] = None
        self.votes: Optional[VoteRepository] = None
        self.messages: Optional[MessageRepository] = None

    async def connect(self):
        """Create the connection pool and repositories"""
        if self.pool:
            return
        with postgres_errors("connect"):
            self.pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=_init_connection,
            )
        self.users = UserRepository(self.pool)
        self.datasets = DatasetRepository(self.pool)
        self.comments = CommentRepository(self.pool)
        self.votes = VoteRepository(self.pool)
        self.messages = MessageRepository(self.pool)
        logger.info(f"✅ Connected to PostgreSQL at {self.host}:{self.port}/{self.database}")

    async def close(self):
        """Close the connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("🔌 Closed PostgreSQL pool")

    async def ensure_schema(self):
        """Create tables, constraints and indexes if missing"""
        with postgres_errors("ensure_schema"):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for statement in SCHEMA_STATEMENTS:
                        await conn.execute(statement)
        logger.info("PostgreSQL schema ready")
