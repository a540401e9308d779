"""
Tests for the saga runner and background task registry.
"""
import asyncio
import logging

import pytest

from datec.errors import InvalidInputError, UpstreamStoreError
from datec.services.background import BackgroundTasks
from datec.services.saga import Saga, SagaStep, StepPolicy
from datec.tests.fakes import upload


def recorder(log, name, fail=None, delay=0):
    async def action(ctx):
        if delay:
            await asyncio.sleep(delay)
        if fail is not None:
            raise fail
        log.append(name)
        ctx[name] = True
    return action


class TestSaga:

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self):
        log = []
        saga = Saga("demo", [
            SagaStep("a", recorder(log, "a")),
            SagaStep("b", recorder(log, "b")),
        ], BackgroundTasks())

        context = await saga.run({"input": 1})
        assert log == ["a", "b"]
        assert context == {"input": 1, "a": True, "b": True}
        assert saga.step_names == ["a", "b"]

    @pytest.mark.asyncio
    async def test_fatal_step_aborts_remaining(self, caplog):
        log = []
        failure = UpstreamStoreError("metadata", "insert", RuntimeError("down"))
        saga = Saga("demo", [
            SagaStep("upload", recorder(log, "upload"), residue="orphan blobs"),
            SagaStep("insert", recorder(log, "insert", fail=failure)),
            SagaStep("graph", recorder(log, "graph"), StepPolicy.BEST_EFFORT),
        ], BackgroundTasks())

        with caplog.at_level(logging.INFO, logger="datec.services.saga"):
            with pytest.raises(UpstreamStoreError):
                await saga.run()

        assert log == ["upload"]
        assert "aborted at insert" in caplog.text
        assert "orphan blobs" in caplog.text

    @pytest.mark.asyncio
    async def test_rejection_logged_below_error(self, caplog):
        saga = Saga("demo", [
            SagaStep("validate", recorder([], "validate", fail=InvalidInputError("bad"))),
        ], BackgroundTasks())

        with caplog.at_level(logging.INFO, logger="datec.services.saga"):
            with pytest.raises(InvalidInputError):
                await saga.run()
        assert all(record.levelno < logging.ERROR for record in caplog.records)

    @pytest.mark.asyncio
    async def test_best_effort_step_does_not_block(self):
        log = []
        background = BackgroundTasks()
        saga = Saga("demo", [
            SagaStep("commit", recorder(log, "commit")),
            SagaStep("slow", recorder(log, "slow", delay=0.05), StepPolicy.BEST_EFFORT),
        ], background)

        await saga.run()
        assert log == ["commit"]
        assert background.pending == 1

        await background.drain()
        assert log == ["commit", "slow"]
        assert background.pending == 0

    @pytest.mark.asyncio
    async def test_best_effort_failure_is_logged_only(self, caplog):
        background = BackgroundTasks()
        saga = Saga("demo", [
            SagaStep("commit", recorder([], "commit")),
            SagaStep("notify", recorder([], "notify", fail=RuntimeError("redis down")),
                     StepPolicy.BEST_EFFORT),
        ], background)

        with caplog.at_level(logging.WARNING, logger="datec.services.background"):
            context = await saga.run()
            await background.drain()

        assert context["commit"] is True
        assert background.failures == 1
        assert "demo.notify" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout_is_a_typed_abort(self, caplog):
        saga = Saga("demo", [
            SagaStep("upload", recorder([], "upload"), residue="orphaned blobs"),
            SagaStep("slow", recorder([], "slow", delay=1)),
        ], BackgroundTasks())

        with caplog.at_level(logging.INFO, logger="datec.services.saga"):
            with pytest.raises(UpstreamStoreError) as exc_info:
                await saga.run(timeout=0.01)

        assert exc_info.value.to_dict()["kind"] == "upstream_store_failure"
        assert "timeout" in exc_info.value.message
        assert "aborted at slow" in caplog.text
        assert "orphaned blobs" in caplog.text

    @pytest.mark.asyncio
    async def test_create_timeout_surfaces_typed_error(self, core):
        async def slow_put(*args, **kwargs):
            await asyncio.sleep(1)

        core.blobs.put = slow_put
        core.settings.saga_timeout_seconds = 0.01

        with pytest.raises(UpstreamStoreError):
            await core.datasets.create(core.alice, "weather", [upload()])
        assert core.metadata.state.datasets == {}

    def test_policy_lookup(self):
        saga = Saga("demo", [
            SagaStep("a", recorder([], "a")),
            SagaStep("b", recorder([], "b"), StepPolicy.BEST_EFFORT),
        ], BackgroundTasks())
        assert saga.policy_of("a") is StepPolicy.FATAL
        assert saga.policy_of("b") is StepPolicy.BEST_EFFORT
        with pytest.raises(KeyError):
            saga.policy_of("c")


class TestServiceSagaTables:

    def test_dataset_step_policies(self, core):
        sagas = core.datasets.sagas
        assert sagas["create"].step_names == [
            "validate", "mint_id", "upload_blobs", "insert_metadata", "create_graph_node", "init_counters",
        ]
        assert sagas["create"].policy_of("insert_metadata") is StepPolicy.FATAL
        assert sagas["create"].policy_of("create_graph_node") is StepPolicy.BEST_EFFORT
        assert all(step.policy is StepPolicy.FATAL for step in sagas["delete"].steps)
        assert all(step.is_best_effort for step in sagas["track_download"].steps)
        assert sagas["review"].policy_of("notify_owner") is StepPolicy.BEST_EFFORT
        assert sagas["toggle_visibility"].policy_of("notify_followers") is StepPolicy.BEST_EFFORT

    def test_user_step_policies(self, core):
        sagas = core.users.sagas
        assert sagas["register"].policy_of("create_graph_node") is StepPolicy.BEST_EFFORT
        assert sagas["follow"].policy_of("create_edge") is StepPolicy.FATAL
        assert sagas["follow"].policy_of("notify_followed") is StepPolicy.BEST_EFFORT
