"""Unit tests for the demo comment source."""
import asyncio

import pytest

from streamforge.events import SourceEvent
from streamforge.ingest.demo import DEMO_COMMENTS, DemoChat


@pytest.mark.unit
class TestNextComment:
    def test_rotation_wraps(self):
        chat = DemoChat()

        authors = [chat.next_comment().author for _ in range(len(DEMO_COMMENTS) + 1)]

        assert authors[0] == DEMO_COMMENTS[0]["author"]
        assert authors[-1] == DEMO_COMMENTS[0]["author"]

    def test_ids_are_unique(self):
        chat = DemoChat()

        first, second = chat.next_comment(), chat.next_comment()

        assert first.id.startswith("demo-")
        assert first.id != second.id

    def test_custom_comments(self):
        chat = DemoChat({"comments": [{"author": "a", "message": "hello there"}]})

        comment = chat.next_comment()

        assert comment.platform == "demo"
        assert comment.message == "hello there"


@pytest.mark.unit
@pytest.mark.asyncio
class TestDemoLifecycle:
    async def test_start_emits_and_stop_is_idempotent(self):
        chat = DemoChat({"interval_seconds": 0.01})
        seen = []
        chat.on(SourceEvent.COMMENT, seen.append)

        await chat.start()
        await asyncio.sleep(0.05)
        await chat.stop()
        count = len(seen)
        await chat.stop()
        await asyncio.sleep(0.02)

        assert count >= 1
        assert len(seen) == count
        assert chat.is_running is False
