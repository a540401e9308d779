"""
Counter service - floor-clamped counters on the ephemeral store

Keys:
- download_count:dataset:{dataset_id}
- vote_count:dataset:{dataset_id}

A missing key reads as zero. Decrement never goes below zero.
"""
import logging
from typing import Dict, List, Set, Tuple

from .ephemeral_store import EphemeralStore

logger = logging.getLogger(__name__)

DOWNLOAD_COUNT = "download_count"
VOTE_COUNT = "vote_count"
DATASET_METRICS = (DOWNLOAD_COUNT, VOTE_COUNT)


def counter_key(metric: str, dataset_id: str) -> str:
    return f"{metric}:dataset:{dataset_id}"


def dataset_id_from_key(key: str) -> str:
    return key.split(':dataset:', 1)[1]


class CounterService:
    """Atomic increment/decrement/read over Redis"""

    def __init__(self, store: EphemeralStore):
        self.store = store

    async def init(self, key: str, value: int = 0) -> bool:
        """Set if absent; returns whether it took effect"""
        return await self.store.set_if_absent(key, value)

    async def increment(self, key: str, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("Increment amount must be non-negative")
        return await self.store.incr_by(key, amount)

    async def decrement(self, key: str, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("Decrement amount must be non-negative")
        return await self.store.decr_by_clamped(key, amount)

    async def get(self, key: str) -> int:
        return await self.store.get_int(key)

    async def get_many(self, keys: List[str]) -> Dict[str, int]:
        values = await self.store.get_ints(keys)
        return dict(zip(keys, values))

    async def set(self, key: str, value: int):
        await self.store.set_int(key, max(value, 0))

    async def delete(self, *keys: str) -> int:
        return await self.store.delete(*keys)

    async def exists(self, key: str) -> bool:
        return await self.store.exists(key)

    # ===== Dataset counters =====

    async def init_dataset(self, dataset_id: str):
        for metric in DATASET_METRICS:
            await self.init(counter_key(metric, dataset_id), 0)

    async def delete_dataset(self, dataset_id: str) -> int:
        return await self.delete(*(counter_key(metric, dataset_id) for metric in DATASET_METRICS))

    async def dataset_counts(self, dataset_id: str) -> Tuple[int, int]:
        """(downloads, votes)"""
        downloads, votes = await self.store.get_ints(
            [counter_key(metric, dataset_id) for metric in DATASET_METRICS]
        )
        return downloads, votes

    async def datasets_with_counters(self) -> Set[str]:
        """Dataset ids that own at least one counter key"""
        dataset_ids: Set[str] = set()
        for metric in DATASET_METRICS:
            async for key in self.store.scan_keys(f"{metric}:dataset:*"):
                dataset_ids.add(dataset_id_from_key(key))
        return dataset_ids
