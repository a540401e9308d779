"""
Vote aggregator

Durable votes live in PostgreSQL; Redis keeps vote_count:dataset:{id} for
cheap display. The counter tracks the number of votes, not their sum, so a
rating change leaves it where it was. Concurrent voters can make it drift;
reconcile() resets it from the durable rows.
"""
import logging
from typing import Optional

from datec.errors import ConflictError, InvalidInputError, InvalidStateError, NotFoundError
from datec.models.api.identity import Identity
from datec.models.domain.vote import Vote, VoteSummary
from datec.utils.datetime_utils import utc_now
from datec.utils.id_generator import generate_vote_id
from .counter_service import VOTE_COUNT, CounterService, counter_key

logger = logging.getLogger(__name__)


class VoteService:

    def __init__(self, metadata, counters: CounterService):
        self.metadata = metadata
        self.counters = counters

    async def cast(self, dataset_id: str, voter: Identity, rating: int) -> Vote:
        """
        Add a vote or change the voter's existing rating.

        Raises:
            InvalidInputError: rating outside 1-5
            InvalidStateError: dataset is not approved and public
            ConflictError: voter owns the dataset
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidInputError("Rating must be an integer between 1 and 5")

        dataset = await self.metadata.datasets.get_by_id(dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset not found")
        if not dataset.is_listed:
            raise InvalidStateError("Only approved public datasets can be rated")
        if dataset.is_owned_by(voter.user_id):
            raise ConflictError("You cannot vote on your own dataset")

        existing = await self.metadata.votes.get(dataset_id, voter.user_id)
        if existing is not None:
            return await self._change_rating(existing, rating)

        now = utc_now()
        try:
            vote = await self.metadata.votes.insert(Vote(
                vote_id=generate_vote_id(dataset_id, voter.user_id),
                dataset_id=dataset_id,
                voter_user_id=voter.user_id,
                rating=rating,
                created_at=now,
                updated_at=now,
            ))
        except ConflictError:
            # a concurrent request by the same voter inserted first
            existing = await self.metadata.votes.get(dataset_id, voter.user_id)
            if existing is None:
                raise
            return await self._change_rating(existing, rating)

        await self.counters.increment(counter_key(VOTE_COUNT, dataset_id))
        return vote

    async def _change_rating(self, existing: Vote, rating: int) -> Vote:
        if existing.rating == rating:
            return existing

        updated = await self.metadata.votes.update_rating(existing.vote_id, rating)
        if updated is None:
            raise NotFoundError("Vote was removed concurrently")

        key = counter_key(VOTE_COUNT, existing.dataset_id)
        await self.counters.decrement(key)
        await self.counters.increment(key)
        logger.info(f"Vote on {existing.dataset_id} by {existing.voter_user_id}: {existing.rating} -> {rating}")
        return updated

    async def remove(self, dataset_id: str, voter: Identity) -> Vote:
        removed = await self.metadata.votes.delete(dataset_id, voter.user_id)
        if removed is None:
            raise NotFoundError("You have not voted on this dataset")
        await self.counters.decrement(counter_key(VOTE_COUNT, dataset_id))
        return removed

    async def get_user_vote(self, dataset_id: str, voter: Identity) -> Optional[Vote]:
        return await self.metadata.votes.get(dataset_id, voter.user_id)

    async def list_votes(self, dataset_id: str) -> VoteSummary:
        """Votes with the cached total and the durable average (1 decimal)"""
        if await self.metadata.datasets.get_by_id(dataset_id) is None:
            raise NotFoundError("Dataset not found")
        votes = await self.metadata.votes.list_by_dataset(dataset_id)
        total = await self.counters.get(counter_key(VOTE_COUNT, dataset_id))
        _, average = await self.metadata.votes.stats(dataset_id)
        return VoteSummary(
            dataset_id=dataset_id,
            total_votes=total,
            average_rating=round(average, 1) if average is not None else None,
            votes=votes,
        )

    async def reconcile(self, dataset_id: str) -> int:
        """Reset the cached vote count to the number of durable votes"""
        count, _ = await self.metadata.votes.stats(dataset_id)
        key = counter_key(VOTE_COUNT, dataset_id)
        cached = await self.counters.get(key)
        if cached != count:
            logger.info(f"Reconciled {key}: {cached} -> {count}")
        await self.counters.set(key, count)
        return count
