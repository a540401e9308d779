"""
Tests for private messages.
"""
import pytest

from datec.errors import ForbiddenError, InvalidInputError, NotFoundError, UpstreamStoreError


class TestSend:

    @pytest.mark.asyncio
    async def test_send_stores_trimmed_message(self, core):
        message = await core.messages.send(core.alice, "alice", "bob", "  Want to collaborate?  ")

        assert message.message_id.startswith("msg_")
        assert message.from_user_id == core.alice.user_id
        assert message.to_user_id == core.bob.user_id
        assert message.content == "Want to collaborate?"
        assert len(core.metadata.state.messages) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", None, "x" * 5001])
    async def test_content_length(self, core, content):
        with pytest.raises(InvalidInputError):
            await core.messages.send(core.alice, "alice", "bob", content)
        assert core.metadata.state.messages == []

    @pytest.mark.asyncio
    async def test_longest_allowed_message(self, core):
        message = await core.messages.send(core.alice, "alice", "bob", "x" * 5000)
        assert len(message.content) == 5000

    @pytest.mark.asyncio
    async def test_cannot_send_as_someone_else(self, core):
        with pytest.raises(ForbiddenError):
            await core.messages.send(core.alice, "bob", "carol", "hi")

    @pytest.mark.asyncio
    async def test_recipient_must_exist(self, core):
        with pytest.raises(NotFoundError):
            await core.messages.send(core.alice, "alice", "nobody", "hi")

    @pytest.mark.asyncio
    async def test_cannot_message_yourself(self, core):
        with pytest.raises(InvalidInputError):
            await core.messages.send(core.alice, "alice", "alice", "note to self")

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, core):
        core.metadata.messages.fail("messages.create")
        with pytest.raises(UpstreamStoreError):
            await core.messages.send(core.alice, "alice", "bob", "hi")


class TestThread:

    @pytest.mark.asyncio
    async def test_thread_holds_both_directions_oldest_first(self, core):
        await core.messages.send(core.alice, "alice", "bob", "first")
        await core.messages.send(core.bob, "bob", "alice", "second")
        await core.messages.send(core.alice, "alice", "carol", "elsewhere")
        await core.messages.send(core.alice, "alice", "bob", "third")

        thread = await core.messages.thread(core.bob, "alice", "bob")

        assert [m.content for m in thread.messages] == ["first", "second", "third"]
        assert thread.message_count == 3
        data = thread.to_dict()
        assert data["participant_1"] == "alice"
        assert [m["is_own_message"] for m in data["messages"]] == [False, True, False]

    @pytest.mark.asyncio
    async def test_only_participants_can_read(self, core):
        await core.messages.send(core.alice, "alice", "bob", "private")

        with pytest.raises(ForbiddenError):
            await core.messages.thread(core.carol, "alice", "bob")
        with pytest.raises(ForbiddenError):
            await core.messages.thread(core.admin, "alice", "bob")

    @pytest.mark.asyncio
    async def test_unknown_participant(self, core):
        with pytest.raises(NotFoundError):
            await core.messages.thread(core.alice, "alice", "nobody")

    @pytest.mark.asyncio
    async def test_empty_thread(self, core):
        thread = await core.messages.thread(core.alice, "alice", "bob")
        assert thread.messages == []
        assert thread.to_dict()["message_count"] == 0
