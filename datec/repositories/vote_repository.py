"""
Vote Repository - PostgreSQL storage for ratings

Storage: PostgreSQL (votes table). This table is the source of truth for
vote counts and averages; Redis only mirrors the count.
"""
import logging
from typing import List, Optional, Tuple

import asyncpg

from datec.models.domain.vote import Vote
from .base import postgres_errors

logger = logging.getLogger(__name__)

VOTE_CONFLICTS = {
    'votes_pkey': ("Vote already recorded", False),
    'votes_dataset_voter_key': ("Vote already recorded", False),
}


def _row_to_vote(row) -> Vote:
    return Vote(
        vote_id=row['vote_id'],
        dataset_id=row['target_dataset_id'],
        voter_user_id=row['voter_user_id'],
        rating=row['rating'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


class VoteRepository:
    """Repository for Vote domain model"""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get(self, dataset_id: str, voter_user_id: str) -> Optional[Vote]:
        with postgres_errors("votes.get"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM votes
                    WHERE target_dataset_id = $1 AND voter_user_id = $2
                """, dataset_id, voter_user_id)
        return _row_to_vote(row) if row else None

    async def list_by_dataset(self, dataset_id: str) -> List[Vote]:
        with postgres_errors("votes.list_by_dataset"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM votes
                    WHERE target_dataset_id = $1
                    ORDER BY created_at DESC
                """, dataset_id)
        return [_row_to_vote(row) for row in rows]

    async def stats(self, dataset_id: str) -> Tuple[int, Optional[float]]:
        """(vote count, average rating) computed from the durable rows"""
        with postgres_errors("votes.stats"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT COUNT(*) AS total, AVG(rating)::float AS average
                    FROM votes WHERE target_dataset_id = $1
                """, dataset_id)
        return row['total'], row['average']

    async def insert(self, vote: Vote) -> Vote:
        """
        Raises:
            ConflictError: the voter already has a vote on this dataset
        """
        with postgres_errors("votes.insert", VOTE_CONFLICTS):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO votes (
                        vote_id, target_dataset_id, voter_user_id, rating,
                        created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $5)
                    RETURNING *
                """, vote.vote_id, vote.dataset_id, vote.voter_user_id, vote.rating, vote.created_at)

        logger.info(f"Vote {vote.rating} on {vote.dataset_id} by {vote.voter_user_id}")
        return _row_to_vote(row)

    async def update_rating(self, vote_id: str, rating: int) -> Optional[Vote]:
        with postgres_errors("votes.update_rating"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    UPDATE votes SET rating = $2, updated_at = now()
                    WHERE vote_id = $1
                    RETURNING *
                """, vote_id, rating)
        return _row_to_vote(row) if row else None

    async def delete(self, dataset_id: str, voter_user_id: str) -> Optional[Vote]:
        """
        Returns:
            The deleted vote, or None if there was none
        """
        with postgres_errors("votes.delete"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    DELETE FROM votes
                    WHERE target_dataset_id = $1 AND voter_user_id = $2
                    RETURNING *
                """, dataset_id, voter_user_id)
        return _row_to_vote(row) if row else None
