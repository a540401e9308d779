"""
Tests for votes and the cached vote counter.
"""
import pytest

from datec.errors import ConflictError, InvalidInputError, InvalidStateError, NotFoundError
from datec.services.counter_service import VOTE_COUNT, counter_key
from datec.tests.fakes import publish, upload


class TestCast:

    @pytest.mark.asyncio
    async def test_changing_rating_keeps_one_row_and_count(self, core):
        dataset = await publish(core, core.alice)
        key = counter_key(VOTE_COUNT, dataset.dataset_id)

        await core.votes.cast(dataset.dataset_id, core.bob, 3)
        assert await core.counters.get(key) == 1

        vote = await core.votes.cast(dataset.dataset_id, core.bob, 5)
        assert vote.rating == 5
        assert await core.counters.get(key) == 1
        assert len(core.metadata.state.votes) == 1

        summary = await core.votes.list_votes(dataset.dataset_id)
        assert summary.total_votes == 1
        assert summary.average_rating == 5.0

    @pytest.mark.asyncio
    async def test_average_rounded_to_one_decimal(self, core):
        dataset = await publish(core, core.alice)
        await core.votes.cast(dataset.dataset_id, core.bob, 4)
        await core.votes.cast(dataset.dataset_id, core.carol, 5)
        await core.votes.cast(dataset.dataset_id, core.admin, 5)

        summary = await core.votes.list_votes(dataset.dataset_id)
        assert summary.total_votes == 3
        assert summary.average_rating == 4.7

    @pytest.mark.asyncio
    async def test_vote_id_format(self, core):
        dataset = await publish(core, core.alice)
        vote = await core.votes.cast(dataset.dataset_id, core.bob, 2)
        assert vote.vote_id == f"vote_{dataset.dataset_id}_user_{core.bob.user_id.replace('-', '')}"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, 3.5, "4", True])
    async def test_rating_range(self, core, rating):
        dataset = await publish(core, core.alice)
        with pytest.raises(InvalidInputError):
            await core.votes.cast(dataset.dataset_id, core.bob, rating)

    @pytest.mark.asyncio
    async def test_owner_cannot_vote(self, core):
        dataset = await publish(core, core.alice)
        with pytest.raises(ConflictError):
            await core.votes.cast(dataset.dataset_id, core.alice, 5)

    @pytest.mark.asyncio
    async def test_only_listed_datasets(self, core):
        dataset = await core.datasets.create(core.alice, "weather", [upload()])
        with pytest.raises(InvalidStateError):
            await core.votes.cast(dataset.dataset_id, core.bob, 5)
        with pytest.raises(NotFoundError):
            await core.votes.cast("alice_19990101_001", core.bob, 5)


class TestRemoveAndReconcile:

    @pytest.mark.asyncio
    async def test_remove(self, core):
        dataset = await publish(core, core.alice)
        key = counter_key(VOTE_COUNT, dataset.dataset_id)
        await core.votes.cast(dataset.dataset_id, core.bob, 3)

        await core.votes.remove(dataset.dataset_id, core.bob)
        assert await core.counters.get(key) == 0
        assert await core.votes.get_user_vote(dataset.dataset_id, core.bob) is None
        with pytest.raises(NotFoundError):
            await core.votes.remove(dataset.dataset_id, core.bob)

    @pytest.mark.asyncio
    async def test_reconcile_resets_drifted_counter(self, core):
        dataset = await publish(core, core.alice)
        key = counter_key(VOTE_COUNT, dataset.dataset_id)
        await core.votes.cast(dataset.dataset_id, core.bob, 3)
        await core.counters.set(key, 7)

        assert await core.votes.reconcile(dataset.dataset_id) == 1
        assert await core.counters.get(key) == 1
