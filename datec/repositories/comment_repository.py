"""
Comment Repository - PostgreSQL storage for comments

Storage: PostgreSQL (comments table, plus datasets.comment_count)
"""
import logging
from typing import List, Optional

import asyncpg

from datec.errors import NotFoundError
from datec.models.domain.comment import Comment
from .base import affected_rows, postgres_errors

logger = logging.getLogger(__name__)


def _row_to_comment(row) -> Comment:
    return Comment(
        comment_id=row['comment_id'],
        dataset_id=row['dataset_id'],
        author_user_id=row['author_user_id'],
        author_username=row['author_username'],
        content=row['content'],
        parent_comment_id=row['parent_comment_id'],
        is_active=row['is_active'],
        created_at=row['created_at'],
        disabled_at=row['disabled_at'],
        disabled_by=row['disabled_by'],
        enabled_at=row['enabled_at'],
        enabled_by=row['enabled_by'],
    )


class CommentRepository:
    """
    Repository for Comment domain model

    Handles threaded comments on datasets. The dataset's comment_count is
    maintained here, in the same transaction as the insert.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_by_id(self, comment_id: str) -> Optional[Comment]:
        """
        Retrieve comment by ID.

        Args:
            comment_id: Comment ID (cmt_...)

        Returns:
            Comment model or None
        """
        with postgres_errors("comments.get_by_id"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM comments WHERE comment_id = $1", comment_id)
        return _row_to_comment(row) if row else None

    async def list_by_dataset(self, dataset_id: str) -> List[Comment]:
        """
        Get all comments for a dataset, active and disabled.

        Returns:
            Flat list sorted by creation time
        """
        with postgres_errors("comments.list_by_dataset"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM comments
                    WHERE dataset_id = $1
                    ORDER BY created_at ASC
                """, dataset_id)
        return [_row_to_comment(row) for row in rows]

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def create(self, comment: Comment) -> Comment:
        """
        Insert a comment and bump the dataset's comment_count.

        Raises:
            NotFoundError: the dataset disappeared before the insert
        """
        with postgres_errors("comments.create"):
            async with self.db_pool.acquire() as conn:
                async with conn.transaction():
                    bumped = await conn.execute("""
                        UPDATE datasets SET comment_count = comment_count + 1
                        WHERE dataset_id = $1
                    """, comment.dataset_id)
                    if not affected_rows(bumped):
                        raise NotFoundError("Dataset not found")

                    row = await conn.fetchrow("""
                        INSERT INTO comments (
                            comment_id, dataset_id, author_user_id, author_username,
                            parent_comment_id, content, is_active, created_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, TRUE, $7)
                        RETURNING *
                    """,
                        comment.comment_id,
                        comment.dataset_id,
                        comment.author_user_id,
                        comment.author_username,
                        comment.parent_comment_id,
                        comment.content,
                        comment.created_at,
                    )

        logger.info(f"Created comment {comment.comment_id} on {comment.dataset_id}")
        return _row_to_comment(row)

    async def set_active(self, comment_id: str, is_active: bool, actor: str) -> Optional[Comment]:
        """
        Disable or re-enable a comment, recording who did it.

        Returns:
            Updated comment, or None if it was already in that state
        """
        with postgres_errors("comments.set_active"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    UPDATE comments
                    SET is_active = $2,
                        disabled_at = CASE WHEN $2 THEN disabled_at ELSE now() END,
                        disabled_by = CASE WHEN $2 THEN disabled_by ELSE $3 END,
                        enabled_at = CASE WHEN $2 THEN now() ELSE enabled_at END,
                        enabled_by = CASE WHEN $2 THEN $3 ELSE enabled_by END
                    WHERE comment_id = $1 AND is_active <> $2
                    RETURNING *
                """, comment_id, is_active, actor)
        return _row_to_comment(row) if row else None
