"""
Adapter tests with mocked drivers.

Neo4j and Redis clients are replaced by AsyncMock; CouchDB runs against an
in-memory httpx.MockTransport; the PostgreSQL pool is a mock whose
connection returns canned rows.
"""
import base64
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import httpx
import pytest
import pytest_asyncio
from neo4j.exceptions import ServiceUnavailable
from redis.exceptions import ConnectionError as RedisConnectionError

from datec.errors import ConflictError, NotFoundError, UpstreamStoreError
from datec.models.domain.dataset import DatasetStatus
from datec.repositories.base import affected_rows, postgres_errors
from datec.repositories.dataset_repository import DATASET_CONFLICTS, DatasetRepository
from datec.repositories.message_repository import MessageRepository
from datec.repositories.user_repository import UserRepository
from datec.services.blob_store import BlobStore
from datec.services.ephemeral_store import EphemeralStore
from datec.services.graph_store import GraphStore


def async_context(value):
    """MagicMock usable as `async with ... as value`"""
    manager = MagicMock()
    manager.__aenter__ = AsyncMock(return_value=value)
    manager.__aexit__ = AsyncMock(return_value=False)
    return manager


# =============================================================================
# Neo4j
# =============================================================================

def graph_with_result(single=None, data=None, error=None):
    result = MagicMock()
    result.single = AsyncMock(return_value=single)
    result.data = AsyncMock(return_value=data or [])

    session = MagicMock()
    session.run = AsyncMock(return_value=result, side_effect=error)

    store = GraphStore(database="datec", timeout=3.0)
    store.driver = MagicMock()
    store.driver.session = MagicMock(return_value=async_context(session))
    return store, session


class TestGraphStore:

    @pytest.mark.asyncio
    async def test_delete_dataset(self):
        store, session = graph_with_result(single={'deleted': 1})

        assert await store.delete_dataset("ds1") is True
        store.driver.session.assert_called_once_with(database="datec")
        query, params = session.run.call_args.args
        assert "DETACH DELETE" in query.text
        assert query.timeout == 3.0
        assert params == {'dataset_id': "ds1"}

    @pytest.mark.asyncio
    async def test_delete_missing_dataset(self):
        store, _ = graph_with_result(single={'deleted': 0})
        assert await store.delete_dataset("ds1") is False

    @pytest.mark.asyncio
    async def test_followers_convert_times(self):
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        store, _ = graph_with_result(data=[{'user_id': "u2", 'username': "bob", 'since': since.isoformat()}])

        followers = await store.followers("u1")
        assert followers == [{'user_id': "u2", 'username': "bob", 'since': since}]
        assert await store.follower_ids("u1") == ["u2"]

    @pytest.mark.asyncio
    async def test_driver_error_translated(self):
        store, _ = graph_with_result(error=ServiceUnavailable("neo4j down"))

        with pytest.raises(UpstreamStoreError) as excinfo:
            await store.record_download("u1", "ds1", "bob")
        assert excinfo.value.store == "graph"
        assert excinfo.value.operation == "record_download"

    @pytest.mark.asyncio
    async def test_unique_downloaders_empty(self):
        store, _ = graph_with_result(data=[])
        assert await store.unique_downloaders("ds1") == 0


# =============================================================================
# Redis
# =============================================================================

@pytest.fixture
def redis_store():
    store = EphemeralStore("redis://localhost:6379/0")
    store.primary = AsyncMock()
    store.replica = store.primary
    return store


class TestEphemeralStore:

    @pytest.mark.asyncio
    async def test_absent_key_reads_zero(self, redis_store):
        redis_store.replica.get.return_value = None
        assert await redis_store.get_int("k") == 0

        redis_store.replica.mget.return_value = ["4", None]
        assert await redis_store.get_ints(["a", "b"]) == [4, 0]

    @pytest.mark.asyncio
    async def test_set_if_absent_uses_nx(self, redis_store):
        redis_store.primary.set.return_value = None
        assert await redis_store.set_if_absent("k", 0) is False
        redis_store.primary.set.assert_awaited_once_with("k", 0, nx=True)

    @pytest.mark.asyncio
    async def test_clamped_decrement_runs_script(self, redis_store):
        redis_store._decr_script = AsyncMock(return_value=0)
        assert await redis_store.decr_by_clamped("k", 3) == 0
        redis_store._decr_script.assert_awaited_once_with(keys=["k"], args=[3])

    @pytest.mark.asyncio
    async def test_push_bounded_trims(self, redis_store):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[51, True])
        redis_store.primary.pipeline = MagicMock(return_value=async_context(pipe))

        assert await redis_store.push_bounded("q", "payload", 50) == 51
        pipe.lpush.assert_called_once_with("q", "payload")
        pipe.ltrim.assert_called_once_with("q", 0, 49)

    @pytest.mark.asyncio
    async def test_redis_error_translated(self, redis_store):
        redis_store.primary.incrby.side_effect = RedisConnectionError("refused")
        with pytest.raises(UpstreamStoreError) as excinfo:
            await redis_store.incr_by("k", 1)
        assert excinfo.value.store == "ephemeral"

    @pytest.mark.asyncio
    async def test_delete_nothing(self, redis_store):
        assert await redis_store.delete() == 0
        redis_store.primary.delete.assert_not_called()


# =============================================================================
# CouchDB
# =============================================================================

class FakeCouch:
    """Just enough of the CouchDB document API for BlobStore"""

    def __init__(self):
        self.docs = {}
        self.revs = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/":
            return httpx.Response(200, json={"couchdb": "Welcome"})
        if path == "/datec":
            return httpx.Response(412, json={"error": "file_exists"})
        if path == "/datec/_all_docs":
            return self._all_docs(request)

        doc_id = path.split("/", 2)[2]
        if request.method == "HEAD":
            if doc_id not in self.docs:
                return httpx.Response(404)
            return httpx.Response(200, headers={"etag": f'"{self.revs[doc_id]}"'})
        if request.method == "PUT":
            body = json.loads(request.content)
            if doc_id in self.docs and body.get('_rev') != self.revs[doc_id]:
                return httpx.Response(409, json={"error": "conflict"})
            self.revs[doc_id] = f"{int(self.revs.get(doc_id, '0-x').split('-')[0]) + 1}-abc"
            self.docs[doc_id] = body
            return httpx.Response(201, json={"ok": True, "rev": self.revs[doc_id]})
        if request.method == "GET":
            if doc_id not in self.docs:
                return httpx.Response(404, json={"error": "not_found"})
            return httpx.Response(200, json=self.docs[doc_id])
        if request.method == "DELETE":
            if request.url.params.get('rev') != self.revs.get(doc_id):
                return httpx.Response(409)
            del self.docs[doc_id]
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(405)

    def _all_docs(self, request):
        limit = int(request.url.params['limit'])
        start = request.url.params.get('startkey')
        ids = sorted(self.docs)
        if start is not None:
            ids = [i for i in ids if i >= json.loads(start)]
        rows = [{'id': i, 'doc': self.docs[i]} for i in ids[:limit]]
        return httpx.Response(200, json={'rows': rows})


@pytest.fixture
def couch():
    return FakeCouch()


@pytest_asyncio.fixture
async def blob_store(couch):
    store = BlobStore("http://couch.test", "datec", transport=httpx.MockTransport(couch))
    await store.connect()
    yield store
    await store.close()


class TestBlobStore:

    @pytest.mark.asyncio
    async def test_put_then_get(self, blob_store, couch):
        await blob_store.put("file_ds1_001", b"a,b\n", "a.csv", "text/csv", {'dataset_id': "ds1"})

        stored = couch.docs["file_ds1_001"]
        assert stored['dataset_id'] == "ds1"
        assert base64.b64decode(stored['_attachments']['a.csv']['data']) == b"a,b\n"

        blob = await blob_store.get("file_ds1_001")
        assert blob.content == b"a,b\n"
        assert blob.filename == "a.csv"
        assert blob.mime_type == "text/csv"
        assert blob.metadata['size'] == 4

    @pytest.mark.asyncio
    async def test_create_only_unless_overwrite(self, blob_store):
        await blob_store.put("photo_ds1_header", b"old", "h.png", "image/png")

        with pytest.raises(ConflictError) as excinfo:
            await blob_store.put("photo_ds1_header", b"new", "h.png", "image/png")
        assert excinfo.value.retryable is True

        await blob_store.put("photo_ds1_header", b"new", "h.png", "image/png", overwrite=True)
        assert (await blob_store.get("photo_ds1_header")).content == b"new"

    @pytest.mark.asyncio
    async def test_missing_blob(self, blob_store):
        with pytest.raises(NotFoundError):
            await blob_store.get("file_nope_001")
        assert await blob_store.delete("file_nope_001") is False

    @pytest.mark.asyncio
    async def test_delete(self, blob_store, couch):
        await blob_store.put("file_ds1_001", b"x", "x.csv", "text/csv")
        assert await blob_store.delete("file_ds1_001") is True
        assert couch.docs == {}

    @pytest.mark.asyncio
    async def test_iter_documents_pages(self, blob_store):
        for i in range(5):
            await blob_store.put(f"file_ds1_{i:03d}", b"x", "x.csv", "text/csv")

        ids = [doc['_id'] async for doc in blob_store.iter_documents(batch_size=2)]
        assert ids == [f"file_ds1_{i:03d}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_ensure_database_existing(self, blob_store):
        assert await blob_store.ensure_database() is False

    @pytest.mark.asyncio
    async def test_server_error_translated(self, couch):
        store = BlobStore(
            "http://couch.test", "datec",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(UpstreamStoreError):
            await store.connect()
        await store.close()


# =============================================================================
# PostgreSQL
# =============================================================================

def unique_violation(constraint):
    error = asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
    error.constraint_name = constraint
    return error


class TestPostgresErrors:

    def test_known_constraint_maps_to_message(self):
        with pytest.raises(ConflictError) as excinfo:
            with postgres_errors("datasets.insert", DATASET_CONFLICTS):
                raise unique_violation("datasets_pkey")
        assert excinfo.value.retryable is True
        assert excinfo.value.constraint == "datasets_pkey"

    def test_unknown_constraint_is_not_retryable(self):
        with pytest.raises(ConflictError) as excinfo:
            with postgres_errors("users.create"):
                raise unique_violation("some_other_key")
        assert excinfo.value.retryable is False

    def test_connection_error_is_upstream_failure(self):
        with pytest.raises(UpstreamStoreError) as excinfo:
            with postgres_errors("datasets.get_by_id"):
                raise ConnectionRefusedError("no server")
        assert excinfo.value.store == "metadata"

    def test_affected_rows(self):
        assert affected_rows("DELETE 3") == 3
        assert affected_rows("UPDATE 0") == 0
        assert affected_rows(None) == 0


def dataset_row(**overrides):
    row = {
        'dataset_id': "alice_20250101_001",
        'owner_user_id': "u1",
        'owner_username': "alice",
        'dataset_name': "weather",
        'description': "",
        'tags': ["climate"],
        'status': "approved",
        'is_public': True,
        'file_references': [{'document_id': "file_alice_20250101_001_001", 'filename': "a.csv",
                             'mime_type': "text/csv", 'size': 3,
                             'uploaded_at': "2025-01-01T00:00:00Z"}],
        'header_photo_ref': None,
        'tutorial_video_ref': None,
        'parent_dataset_id': None,
        'download_count': 0,
        'vote_count': 0,
        'comment_count': 2,
        'created_at': datetime(2025, 1, 1, tzinfo=timezone.utc),
        'updated_at': datetime(2025, 1, 1, tzinfo=timezone.utc),
        'reviewed_at': None,
        'reviewed_by': None,
        'review_comment': None,
    }
    row.update(overrides)
    return row


def pool_with(conn):
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=async_context(conn))
    return pool


class TestDatasetRepository:

    @pytest.mark.asyncio
    async def test_get_by_id_maps_row(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=dataset_row())
        repo = DatasetRepository(pool_with(conn))

        dataset = await repo.get_by_id("alice_20250101_001")
        assert dataset.status is DatasetStatus.APPROVED
        assert dataset.files[0].uploaded_at == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert dataset.comment_count == 2

    @pytest.mark.asyncio
    async def test_transition_lost_race_returns_none(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)
        repo = DatasetRepository(pool_with(conn))

        result = await repo.transition_status(
            "alice_20250101_001", DatasetStatus.PENDING, DatasetStatus.APPROVED, reviewed_by="root"
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self):
        repo = DatasetRepository(pool_with(MagicMock()))
        with pytest.raises(ValueError):
            await repo.update_fields("alice_20250101_001", {'status': "approved"})

    @pytest.mark.asyncio
    async def test_delete_cascade_in_transaction(self):
        conn = MagicMock()
        conn.transaction = MagicMock(return_value=async_context(None))
        conn.execute = AsyncMock(side_effect=["DELETE 2", "DELETE 1", "DELETE 1"])
        repo = DatasetRepository(pool_with(conn))

        assert await repo.delete_cascade("alice_20250101_001") is True
        statements = [call.args[0] for call in conn.execute.call_args_list]
        assert [s.split()[2] for s in statements] == ["votes", "comments", "datasets"]


class TestUserAndMessageRepositories:

    @pytest.mark.asyncio
    async def test_user_search_escapes_wildcards(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[])
        repo = UserRepository(pool_with(conn))

        assert await repo.search("50%_off", limit=5) == []
        sql, pattern, limit = conn.fetch.call_args.args
        assert "ILIKE" in sql
        assert pattern == "%50\\%\\_off%"
        assert limit == 5

    @pytest.mark.asyncio
    async def test_thread_query_covers_both_directions(self):
        row = {
            'message_id': "msg_1735689600000_abc123",
            'from_user_id': "u2",
            'from_username': "bob",
            'to_user_id': "u1",
            'content': "hi",
            'created_at': datetime(2025, 1, 1, tzinfo=timezone.utc),
        }
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[row])
        repo = MessageRepository(pool_with(conn))

        messages = await repo.list_thread("u1", "u2")

        assert messages[0].from_username == "bob"
        sql = conn.fetch.call_args.args[0]
        assert "ORDER BY created_at ASC" in sql
        assert conn.fetch.call_args.args[1:] == ("u1", "u2")

    @pytest.mark.asyncio
    async def test_message_store_error_translated(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=ConnectionResetError("server closed"))
        repo = MessageRepository(pool_with(conn))

        with pytest.raises(UpstreamStoreError):
            await repo.list_thread("u1", "u2")
