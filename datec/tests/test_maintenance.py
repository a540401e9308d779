"""
Tests for the orphan reaper.
"""
from datetime import timedelta

import pytest

from datec.errors import UpstreamStoreError
from datec.services.counter_service import VOTE_COUNT, counter_key
from datec.tests.fakes import publish, upload
from datec.utils.datetime_utils import utc_now


async def leave_orphans(core):
    """Simulate a create that aborted after its blobs, graph node and counters were written"""
    stale = (utc_now() - timedelta(hours=3)).isoformat()
    await core.blobs.put("file_alice_20240101_001_001", b"x", "x.csv", "text/csv",
                         {'dataset_id': "alice_20240101_001", 'uploaded_at': stale})
    await core.blobs.put("file_alice_20240101_002_001", b"y", "y.csv", "text/csv",
                         {'dataset_id': "alice_20240101_002", 'uploaded_at': utc_now().isoformat()})
    await core.graph.upsert_dataset("alice_20240101_001", "ghost", core.alice.user_id)
    await core.counters.init_dataset("alice_20240101_001")


class TestOrphanReaper:

    @pytest.mark.asyncio
    async def test_removes_state_without_metadata(self, core):
        live = await publish(core, core.alice)
        await leave_orphans(core)

        report = await core.reaper.run()

        assert report.graph_nodes == ["alice_20240101_001"]
        assert report.counter_datasets == ["alice_20240101_001"]
        assert report.blobs == ["file_alice_20240101_001_001"]
        assert "alice_20240101_001" not in core.graph.datasets
        assert "file_alice_20240101_001_001" not in core.blobs.docs
        assert not any("alice_20240101_001" in key for key in core.ephemeral.values)

        # live dataset untouched, recent orphan blob kept for the grace period
        assert live.dataset_id in core.graph.datasets
        assert live.files[0].document_id in core.blobs.docs
        assert "file_alice_20240101_002_001" in core.blobs.docs

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, core):
        await leave_orphans(core)

        report = await core.reaper.run(dry_run=True)

        assert report.dry_run is True
        assert report.blobs == ["file_alice_20240101_001_001"]
        assert "file_alice_20240101_001_001" in core.blobs.docs
        assert "alice_20240101_001" in core.graph.datasets
        assert report.summary().startswith("would remove 1 graph nodes")

    @pytest.mark.asyncio
    async def test_reconciles_vote_counters(self, core):
        dataset = await publish(core, core.alice)
        await core.votes.cast(dataset.dataset_id, core.bob, 4)
        await core.counters.set(counter_key(VOTE_COUNT, dataset.dataset_id), 9)

        report = await core.reaper.run()

        assert report.reconciled == 1
        assert await core.counters.get(counter_key(VOTE_COUNT, dataset.dataset_id)) == 1

    @pytest.mark.asyncio
    async def test_aborted_create_is_collected(self, core):
        core.metadata.datasets.fail("datasets.insert")
        with pytest.raises(UpstreamStoreError):
            await core.datasets.create(core.alice, "weather", [upload()])
        core.reaper.blob_grace = timedelta(0)

        report = await core.reaper.run()
        assert len(report.blobs) == 1
        assert core.blobs.docs == {}

    @pytest.mark.asyncio
    async def test_avatars_are_never_reaped(self, core):
        await core.blobs.put(f"avatar_{core.alice.user_id}", b"img", "me.png", "image/png",
                             {'type': 'avatar', 'uploaded_at': "2020-01-01T00:00:00+00:00"})

        report = await core.reaper.run()
        assert report.blobs == []
