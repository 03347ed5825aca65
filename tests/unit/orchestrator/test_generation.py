"""
Unit Tests for response collection
"""
import pytest

from mocks.mock_generator import ScriptedGenerator

from forgeloop.modules.collaborators import GenerationClient
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.orchestrator.generation import collect_response


class SyncStreamGenerator(GenerationClient):
    """generate() returns an async iterator without being a coroutine"""

    def __init__(self, fragments):
        self.fragments = fragments
        self.closed = False

    def generate(self, messages):
        return self._stream()

    async def _stream(self):
        try:
            for fragment in self.fragments:
                yield fragment
        finally:
            self.closed = True


class TestCollectResponse:
    """Tests for collect_response"""

    @pytest.mark.asyncio
    async def test_whole_string(self):
        """Test a non-streaming generator"""
        text, aborted = await collect_response(ScriptedGenerator(["hello"]), [])
        assert text == "hello"
        assert aborted is False

    @pytest.mark.asyncio
    async def test_stream_joined_in_order(self):
        """Test fragments are concatenated with previews along the way"""
        previews = []
        generator = ScriptedGenerator(["abcdefghij"], stream=True, chunk_size=3)

        text, aborted = await collect_response(generator, [], on_preview=previews.append)

        assert text == "abcdefghij"
        assert not aborted
        assert [p.text for p in previews] == ["abc", "abcdef", "abcdefghi", "abcdefghij"]

    @pytest.mark.asyncio
    async def test_plain_async_iterator(self):
        """Test generators that return an iterator directly"""
        text, aborted = await collect_response(SyncStreamGenerator(["<forge-", "delete path=\"a\"/>"]), [])
        assert text == '<forge-delete path="a"/>'
        assert not aborted

    @pytest.mark.asyncio
    async def test_cancel_closes_stream(self):
        """Test cancellation between fragments"""
        token = CancellationToken()
        generator = SyncStreamGenerator(["one", "two", "three"])

        def on_preview(preview):
            token.cancel()

        text, aborted = await collect_response(generator, [], token, on_preview)

        assert text == "one"
        assert aborted is True
        assert generator.closed
