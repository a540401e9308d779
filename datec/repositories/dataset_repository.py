"""
Dataset Repository - PostgreSQL storage for datasets

Storage: PostgreSQL (datasets table, cascades into comments and votes)
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

import asyncpg

from datec.models.domain.dataset import Dataset, DatasetStatus, FileReference, VideoReference
from .base import affected_rows, contains_pattern, postgres_errors

logger = logging.getLogger(__name__)

DATASET_CONFLICTS = {
    'datasets_pkey': ("Dataset identifier is already taken", True),
    'datasets_owner_name_key': ("You already have a dataset with this name", False),
}

# Columns an owner update may touch
UPDATABLE_COLUMNS = {
    'dataset_name',
    'description',
    'tags',
    'file_references',
    'header_photo_ref',
    'tutorial_video_ref',
}


def _row_to_dataset(row) -> Dataset:
    header = row['header_photo_ref']
    video = row['tutorial_video_ref']
    return Dataset(
        dataset_id=row['dataset_id'],
        owner_user_id=row['owner_user_id'],
        owner_username=row['owner_username'],
        dataset_name=row['dataset_name'],
        description=row['description'],
        tags=list(row['tags'] or []),
        status=DatasetStatus(row['status']),
        is_public=row['is_public'],
        files=[FileReference.from_dict(ref) for ref in row['file_references'] or []],
        header_photo=FileReference.from_dict(header) if header else None,
        video=VideoReference.from_dict(video) if video else None,
        parent_dataset_id=row['parent_dataset_id'],
        download_count=row['download_count'],
        vote_count=row['vote_count'],
        comment_count=row['comment_count'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        reviewed_at=row['reviewed_at'],
        reviewed_by=row['reviewed_by'],
        review_comment=row['review_comment'],
    )


class DatasetRepository:
    """
    Repository for Dataset domain model

    Conditional updates (status, visibility) return None when the row is not
    in the expected state, so callers can tell a lost race from success.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_by_id(self, dataset_id: str) -> Optional[Dataset]:
        with postgres_errors("datasets.get_by_id"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM datasets WHERE dataset_id = $1", dataset_id)
        return _row_to_dataset(row) if row else None

    async def name_taken(self, owner_user_id: str, dataset_name: str,
                         exclude_dataset_id: Optional[str] = None) -> bool:
        """Whether the owner already has a dataset with this normalized name"""
        with postgres_errors("datasets.name_taken"):
            async with self.db_pool.acquire() as conn:
                found = await conn.fetchval("""
                    SELECT 1 FROM datasets
                    WHERE owner_user_id = $1
                      AND dataset_name = $2
                      AND ($3::text IS NULL OR dataset_id <> $3)
                """, owner_user_id, dataset_name, exclude_dataset_id)
        return found is not None

    async def list_ids_with_prefix(self, prefix: str) -> List[str]:
        """Dataset ids starting with `prefix` (literal match, no wildcards)"""
        with postgres_errors("datasets.list_ids_with_prefix"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT dataset_id FROM datasets WHERE starts_with(dataset_id, $1)", prefix
                )
        return [row['dataset_id'] for row in rows]

    async def existing_ids(self, dataset_ids: Iterable[str]) -> Set[str]:
        """Subset of `dataset_ids` that has a metadata record"""
        ids = list(dataset_ids)
        if not ids:
            return set()
        with postgres_errors("datasets.existing_ids"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT dataset_id FROM datasets WHERE dataset_id = ANY($1::text[])", ids
                )
        return {row['dataset_id'] for row in rows}

    async def search(self, query: str, limit: int = 20) -> List[Dataset]:
        """
        Case-insensitive search over name, description and tags.

        Only approved public datasets are returned, newest first.
        """
        pattern = contains_pattern(query.strip())
        with postgres_errors("datasets.search"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM datasets
                    WHERE status = 'approved' AND is_public
                      AND (
                        dataset_name ILIKE $1
                        OR description ILIKE $1
                        OR EXISTS (SELECT 1 FROM unnest(tags) AS tag WHERE tag ILIKE $1)
                      )
                    ORDER BY created_at DESC
                    LIMIT $2
                """, pattern, limit)
        return [_row_to_dataset(row) for row in rows]

    async def list_by_owner(self, owner_user_id: str, listed_only: bool = False) -> List[Dataset]:
        with postgres_errors("datasets.list_by_owner"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM datasets
                    WHERE owner_user_id = $1
                      AND (NOT $2 OR (status = 'approved' AND is_public))
                    ORDER BY created_at DESC
                """, owner_user_id, listed_only)
        return [_row_to_dataset(row) for row in rows]

    async def list_by_status(self, status: DatasetStatus) -> List[Dataset]:
        """Datasets in `status`, oldest first (review queue order)"""
        with postgres_errors("datasets.list_by_status"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM datasets WHERE status = $1 ORDER BY created_at ASC",
                    status.value
                )
        return [_row_to_dataset(row) for row in rows]

    async def list_clones(self, parent_dataset_id: str) -> List[Dataset]:
        with postgres_errors("datasets.list_clones"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM datasets WHERE parent_dataset_id = $1 ORDER BY created_at DESC",
                    parent_dataset_id
                )
        return [_row_to_dataset(row) for row in rows]

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def insert(self, dataset: Dataset) -> Dataset:
        """
        Insert a new dataset record.

        Raises:
            ConflictError: id taken (retryable) or name taken for this owner
        """
        with postgres_errors("datasets.insert", DATASET_CONFLICTS):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO datasets (
                        dataset_id, owner_user_id, owner_username, dataset_name,
                        description, tags, status, is_public, file_references,
                        header_photo_ref, tutorial_video_ref, parent_dataset_id,
                        download_count, vote_count, comment_count,
                        created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                            0, 0, 0, $13, $13)
                    RETURNING *
                """,
                    dataset.dataset_id,
                    dataset.owner_user_id,
                    dataset.owner_username,
                    dataset.dataset_name,
                    dataset.description,
                    list(dataset.tags),
                    dataset.status.value,
                    dataset.is_public,
                    [ref.to_dict() for ref in dataset.files],
                    dataset.header_photo.to_dict() if dataset.header_photo else None,
                    dataset.video.to_dict() if dataset.video else None,
                    dataset.parent_dataset_id,
                    dataset.created_at,
                )

        logger.info(f"Created dataset {dataset.dataset_id} for {dataset.owner_username}")
        return _row_to_dataset(row)

    async def update_fields(self, dataset_id: str, fields: Dict[str, Any]) -> Optional[Dataset]:
        """
        Merge owner-editable columns into the record and refresh updated_at.

        Returns:
            Updated dataset, or None if it no longer exists
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update dataset columns: {sorted(unknown)}")

        columns = list(fields)
        assignments = "".join(f"{col} = ${i}, " for i, col in enumerate(columns, start=2))
        with postgres_errors("datasets.update_fields", DATASET_CONFLICTS):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"UPDATE datasets SET {assignments}updated_at = now() "
                    f"WHERE dataset_id = $1 RETURNING *",
                    dataset_id, *[fields[col] for col in columns]
                )
        return _row_to_dataset(row) if row else None

    async def transition_status(
        self,
        dataset_id: str,
        from_status: DatasetStatus,
        to_status: DatasetStatus,
        reviewed_by: Optional[str] = None,
        review_comment: Optional[str] = None,
    ) -> Optional[Dataset]:
        """
        Move a dataset from `from_status` to `to_status`.

        A review (reviewed_by set) also stamps reviewed_at and the comment.
        Leaving APPROVED always makes the dataset private.

        Returns:
            Updated dataset, or None if it was not in `from_status`
        """
        with postgres_errors("datasets.transition_status"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    UPDATE datasets
                    SET status = $3,
                        is_public = CASE WHEN $3 = 'approved' THEN is_public ELSE FALSE END,
                        reviewed_at = CASE WHEN $4::text IS NULL THEN reviewed_at ELSE now() END,
                        reviewed_by = COALESCE($4, reviewed_by),
                        review_comment = CASE WHEN $4::text IS NULL THEN review_comment ELSE $5 END,
                        updated_at = now()
                    WHERE dataset_id = $1 AND status = $2
                    RETURNING *
                """, dataset_id, from_status.value, to_status.value, reviewed_by, review_comment)

        if row:
            logger.info(f"Dataset {dataset_id}: {from_status.value} -> {to_status.value}")
        return _row_to_dataset(row) if row else None

    async def set_visibility(self, dataset_id: str, is_public: bool) -> Optional[Dataset]:
        """
        Flip is_public if it differs and the status allows it.

        Returns:
            Updated dataset, or None if nothing changed
        """
        with postgres_errors("datasets.set_visibility"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    UPDATE datasets
                    SET is_public = $2, updated_at = now()
                    WHERE dataset_id = $1
                      AND is_public <> $2
                      AND (NOT $2 OR status = 'approved')
                    RETURNING *
                """, dataset_id, is_public)
        return _row_to_dataset(row) if row else None

    async def delete_cascade(self, dataset_id: str) -> bool:
        """
        Delete the dataset with its votes and comments in one transaction.

        Returns:
            True if the dataset record existed
        """
        with postgres_errors("datasets.delete_cascade"):
            async with self.db_pool.acquire() as conn:
                async with conn.transaction():
                    votes = await conn.execute(
                        "DELETE FROM votes WHERE target_dataset_id = $1", dataset_id
                    )
                    comments = await conn.execute(
                        "DELETE FROM comments WHERE dataset_id = $1", dataset_id
                    )
                    deleted = await conn.execute(
                        "DELETE FROM datasets WHERE dataset_id = $1", dataset_id
                    )

        if affected_rows(deleted):
            logger.info(
                f"Deleted dataset {dataset_id} "
                f"({affected_rows(votes)} votes, {affected_rows(comments)} comments)"
            )
            return True
        return False
