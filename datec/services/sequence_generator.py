"""
Dataset identifier minting

Ids are {owner}_{YYYYMMDD}_{NNN}. The next sequence is read from the
metadata store, so two concurrent creates by one owner on one day can mint
the same id; the primary key turns that into a retryable ConflictError.
"""
import logging
from datetime import date
from typing import Optional

from datec.utils.datetime_utils import utc_today
from datec.utils.id_generator import (
    dataset_id_prefix,
    format_dataset_id,
    generate_user_id,
    parse_dataset_sequence,
)

logger = logging.getLogger(__name__)


class SequenceGenerator:

    def __init__(self, metadata):
        self.metadata = metadata

    async def next_dataset_id(self, owner_username: str, on: Optional[date] = None,
                              min_sequence: int = 1) -> str:
        """
        Mint the next dataset id for `owner_username` on `on` (UTC today).

        Args:
            min_sequence: lowest sequence to hand out; retries pass the
                collided sequence + 1 so a stale id is not minted twice
        """
        on = on or utc_today()
        prefix = dataset_id_prefix(owner_username, on)
        existing = await self.metadata.datasets.list_ids_with_prefix(prefix)

        highest = 0
        for dataset_id in existing:
            sequence = parse_dataset_sequence(dataset_id, prefix)
            if sequence is not None and sequence > highest:
                highest = sequence

        return format_dataset_id(owner_username, on, max(highest + 1, min_sequence))

    @staticmethod
    def user_id(username: str, email: str) -> str:
        return generate_user_id(username, email)
