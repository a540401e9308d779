"""
Message Repository - PostgreSQL storage for private messages

Storage: PostgreSQL (messages table)
"""
import logging
from typing import List

import asyncpg

from datec.models.domain.message import Message
from .base import postgres_errors

logger = logging.getLogger(__name__)


def _row_to_message(row) -> Message:
    return Message(
        message_id=row['message_id'],
        from_user_id=row['from_user_id'],
        from_username=row['from_username'],
        to_user_id=row['to_user_id'],
        content=row['content'],
        created_at=row['created_at'],
    )


class MessageRepository:
    """
    Repository for Message domain model
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def create(self, message: Message) -> Message:
        with postgres_errors("messages.create"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO messages (
                        message_id, from_user_id, from_username, to_user_id, content, created_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING *
                """,
                    message.message_id,
                    message.from_user_id,
                    message.from_username,
                    message.to_user_id,
                    message.content,
                    message.created_at,
                )

        logger.debug(f"Stored message {message.message_id}")
        return _row_to_message(row)

    async def list_thread(self, user_a: str, user_b: str) -> List[Message]:
        """
        Every message between two users, in both directions.

        Returns:
            Messages oldest first
        """
        with postgres_errors("messages.list_thread"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM messages
                    WHERE (from_user_id = $1 AND to_user_id = $2)
                       OR (from_user_id = $2 AND to_user_id = $1)
                    ORDER BY created_at ASC, message_id ASC
                """, user_a, user_b)
        return [_row_to_message(row) for row in rows]
