"""Unit tests for FeedManager: buffer, pins, stats and vMix pushes."""
import asyncio
import xml.etree.ElementTree as ET
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamforge.events import FeedEvent, SourceEvent
from streamforge.feed.manager import FeedManager
from streamforge.ingest.twitch import TwitchChat
from streamforge.moderation.moderator import ContentModerator
from streamforge.schemas.comments import ModerationResult


def make_feed(**kwargs):
    kwargs.setdefault("moderator", ContentModerator(use_ai=False, cache_size=100))
    kwargs.setdefault("vmix", AsyncMock())
    kwargs.setdefault("push_to_vmix", False)
    kwargs.setdefault("max_feed_size", 50)
    return FeedManager(**kwargs)


def record(feed, kind):
    seen = []
    feed.on(kind, seen.append)
    return seen


def ids(entries):
    return [entry.id for entry in entries]


@pytest.mark.unit
@pytest.mark.asyncio
class TestAddComment:
    async def test_blocked_pattern(self, make_comment):
        feed = make_feed()
        blocked = record(feed, FeedEvent.COMMENT_BLOCKED)

        result = await feed.add_comment(
            make_comment("BUY FOLLOWERS NOW CLICK HERE", author="spambot", platform="twitch")
        )

        assert result is None
        assert feed.get_feed() == []
        assert feed.get_stats().blocked == 1
        assert blocked[0]["reason"] == "blocked pattern"

    async def test_spam_pattern(self, make_comment):
        feed = make_feed()
        blocked = record(feed, FeedEvent.COMMENT_BLOCKED)

        await feed.add_comment(make_comment("first!!!!!!!!!!!!!!!!", author="FirstTimer"))

        assert blocked[0]["reason"] == "spam pattern"

    async def test_question_is_highlighted_without_classifier(self, make_comment):
        feed = make_feed()
        approved = record(feed, FeedEvent.COMMENT_APPROVED)
        highlighted = record(feed, FeedEvent.COMMENT_HIGHLIGHTED)

        result = await feed.add_comment(
            make_comment("What switcher are you using?", author="StreamNerd")
        )

        assert result.highlighted is True
        assert result.pinned is False
        assert result.approved_at
        assert ids(approved) == [result.id]
        assert ids(highlighted) == [result.id]

    async def test_mapping_is_validated(self):
        feed = make_feed()

        result = await feed.add_comment(
            {"id": "m1", "platform": "youtube", "author": "viewer", "message": "hello all"}
        )

        assert result.id == "m1"
        assert ids(feed.get_feed()) == ["m1"]

    async def test_invalid_mapping_dropped_without_stats(self):
        feed = make_feed()

        assert await feed.add_comment({"author": "nobody"}) is None
        assert feed.get_stats().total == 0

    async def test_moderator_failure_falls_back_to_rules(self, make_comment):
        moderator = MagicMock()
        moderator.moderate = AsyncMock(side_effect=RuntimeError("broken"))
        feed = make_feed(moderator=moderator)

        allowed = await feed.add_comment(make_comment("great stream"))
        blocked = await feed.add_comment(make_comment("click here for prizes"))

        assert allowed is not None
        assert blocked is None
        assert feed.get_stats().total == 2

    async def test_returned_comment_is_a_copy(self, make_comment):
        feed = make_feed()

        result = await feed.add_comment(make_comment("hello everyone"))
        result.message = "tampered"

        assert feed.get_feed()[0].message == "hello everyone"


@pytest.mark.unit
@pytest.mark.asyncio
class TestBufferBounds:
    async def test_oldest_evicted(self, make_comment):
        feed = make_feed(max_feed_size=2)
        c1, c2, c3 = (make_comment(f"comment number {i}") for i in range(3))

        for c in (c1, c2, c3):
            await feed.add_comment(c)

        assert ids(feed.get_feed(10)) == [c3.id, c2.id]

    async def test_pinned_comment_survives_trim(self, make_comment):
        feed = make_feed(max_feed_size=2)
        c1, c2, c3, c4 = (make_comment(f"comment number {i}") for i in range(4))
        for c in (c1, c2, c3):
            await feed.add_comment(c)

        feed.pin(c2.id)
        await feed.add_comment(c4)

        assert ids(feed.get_feed(10)) == [c2.id, c4.id]

    async def test_size_and_stats_invariants(self, make_comment):
        feed = make_feed(max_feed_size=5, max_pinned=3)
        messages = ["hello there", "click here", "what is this overlay made with?", "k", "nice"]

        for i in range(40):
            added = await feed.add_comment(make_comment(messages[i % len(messages)], author=f"u{i}"))
            if added is not None and i % 3 == 0:
                feed.pin(added.id)

            stats = feed.get_stats()
            assert len(feed.get_feed(None)) <= 5
            assert stats.total == stats.approved + stats.blocked
            assert stats.feed_size == len(feed.get_feed(None))

    async def test_clear_during_moderation_keeps_stats_consistent(self, make_comment):
        release = asyncio.Event()

        async def slow_moderate(comment):
            await release.wait()
            return ModerationResult(allow=True, reason="passed rules")

        moderator = MagicMock()
        moderator.moderate = AsyncMock(side_effect=slow_moderate)
        feed = make_feed(moderator=moderator)

        task = asyncio.create_task(feed.add_comment(make_comment("hello everyone")))
        await asyncio.sleep(0)
        feed.clear()
        release.set()
        await task

        stats = feed.get_stats()
        assert (stats.total, stats.approved, stats.blocked) == (1, 1, 0)


@pytest.mark.unit
@pytest.mark.asyncio
class TestOperatorActions:
    async def test_pin_moves_to_head(self, make_comment):
        feed = make_feed()
        pinned = record(feed, FeedEvent.COMMENT_PINNED)
        c1, c2, c3 = (make_comment(f"comment number {i}") for i in range(3))
        for c in (c1, c2, c3):
            await feed.add_comment(c)

        result = feed.pin(c1.id)
        await feed.add_comment(make_comment("newer comment", id="c4"))

        assert result.pinned is True
        assert ids(pinned) == [c1.id]
        assert ids(feed.get_feed()) == [c1.id, "c4", c3.id, c2.id]

    async def test_pin_cap_releases_oldest_pin(self, make_comment):
        feed = make_feed(max_pinned=2)
        comments = [make_comment(f"comment number {i}") for i in range(3)]
        for c in comments:
            await feed.add_comment(c)

        for c in comments:
            feed.pin(c.id)

        entries = feed.get_feed()
        assert ids(entries) == [comments[2].id, comments[1].id, comments[0].id]
        assert [e.pinned for e in entries] == [True, True, False]

    async def test_pin_unknown_id(self):
        assert make_feed().pin("missing") is None

    async def test_unpin(self, make_comment):
        feed = make_feed()
        unpinned = record(feed, FeedEvent.COMMENT_UNPINNED)
        c1, c2 = make_comment("first comment"), make_comment("second comment")
        await feed.add_comment(c1)
        await feed.add_comment(c2)
        feed.pin(c1.id)

        result = feed.unpin(c1.id)

        assert result.pinned is False
        assert ids(unpinned) == [c1.id]
        assert ids(feed.get_feed()) == [c1.id, c2.id]
        assert feed.unpin(c1.id) is None

    async def test_highlight_pushes_to_vmix(self, make_comment):
        vmix = AsyncMock()
        feed = make_feed(vmix=vmix, push_to_vmix=True, vmix_input="Title1")
        added = await feed.add_comment(make_comment("great stream", author="viewer"))

        result = await feed.highlight(added.id)

        assert result.highlighted is True
        vmix.set_fields.assert_awaited_once_with(
            "Title1", {"Message": "great stream", "Author": "viewer", "Platform": "youtube"}
        )
        vmix.trigger_transition.assert_awaited_once_with("Title1", "TransitionIn")

    async def test_highlight_push_failure_is_swallowed(self, make_comment):
        vmix = AsyncMock()
        vmix.set_fields.side_effect = ConnectionError("vMix offline")
        feed = make_feed(vmix=vmix, push_to_vmix=True, vmix_input="Title1")

        result = await feed.add_comment(make_comment("What switcher are you using?"))

        assert result.highlighted is True
        vmix.trigger_transition.assert_not_called()

    async def test_no_push_without_input(self, make_comment):
        vmix = AsyncMock()
        feed = make_feed(vmix=vmix, push_to_vmix=True, vmix_input="")

        await feed.add_comment(make_comment("What switcher are you using?"))

        vmix.set_fields.assert_not_called()

    async def test_highlight_unknown_id(self):
        assert await make_feed().highlight("missing") is None

    async def test_clear_is_idempotent(self, make_comment):
        feed = make_feed()
        cleared = record(feed, FeedEvent.FEED_CLEARED)
        await feed.add_comment(make_comment("hello everyone"))
        await feed.add_comment(make_comment("click here"))

        feed.clear()
        once = (feed.get_feed(), feed.get_stats())
        feed.clear()

        assert (feed.get_feed(), feed.get_stats()) == once
        assert once[1].total == 0
        assert len(cleared) == 2

    async def test_clear_can_reset_moderation_cache(self, make_comment):
        moderator = ContentModerator(use_ai=False, cache_size=100)
        feed = make_feed(moderator=moderator, clear_resets_moderation_cache=True)
        await feed.add_comment(make_comment("hello everyone"))

        feed.clear()

        assert moderator.cache_size == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestReadSide:
    async def test_stats(self, make_comment):
        feed = make_feed()
        await feed.add_comment(make_comment("hello everyone", platform="youtube"))
        await feed.add_comment(make_comment("hi from twitch", platform="twitch"))
        await feed.add_comment(make_comment("click here", platform="twitch"))

        stats = feed.get_stats()

        assert stats.total == 3
        assert stats.approved == 2
        assert stats.blocked == 1
        assert stats.by_platform == {"youtube": 1, "twitch": 2}
        assert stats.feed_size == 2
        assert stats.approval_rate == 67

    async def test_empty_stats(self):
        assert make_feed().get_stats().approval_rate == 0

    async def test_get_feed_limit(self, make_comment):
        feed = make_feed()
        for i in range(5):
            await feed.add_comment(make_comment(f"comment number {i}"))

        assert len(feed.get_feed(3)) == 3
        assert len(feed.get_feed(None)) == 5
        assert feed.get_feed(0) == []

    async def test_xml(self, make_comment):
        feed = make_feed()
        await feed.add_comment(make_comment("What switcher are you using?", author="StreamNerd"))

        xml = feed.get_xml()

        assert '<field name="Author">StreamNerd</field>' in xml
        assert '<field name="IsHighlighted">1</field>' in xml

    async def test_push_to_vmix_now(self, make_comment):
        feed = make_feed()
        pushes = record(feed, FeedEvent.VMIX_PUSH)

        assert await feed.push_to_vmix_now() is False

        await feed.add_comment(make_comment("hello everyone"))
        assert await feed.push_to_vmix_now() is True
        assert pushes == [{"count": 1}]
        assert "hello everyone" in feed.last_push_xml


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:
    async def test_init_and_stop(self):
        vmix = AsyncMock()
        vmix.ping.return_value = True
        feed = make_feed(vmix=vmix, push_to_vmix=True, push_interval_seconds=60)

        await feed.init()

        assert feed.vmix_online is True
        assert feed.push_task is not None

        await feed.stop()

        assert feed.push_task is None
        vmix.aclose.assert_awaited_once()

    async def test_init_with_vmix_offline(self):
        vmix = AsyncMock()
        vmix.ping.return_value = False
        feed = make_feed(vmix=vmix)

        await feed.init()

        assert feed.vmix_online is False
        assert feed.push_task is None


@pytest.mark.unit
def test_invalid_feed_size():
    with pytest.raises(ValueError):
        FeedManager(
            moderator=ContentModerator(use_ai=False),
            vmix=AsyncMock(),
            max_feed_size=-1,
        )


@pytest.mark.unit
@pytest.mark.parametrize(
    "option",
    [
        {"max_feed_size": 0},
        {"push_batch_size": 0},
        {"push_interval_seconds": 0},
    ],
)
def test_zero_settings_are_rejected_not_defaulted(option):
    with pytest.raises(ValueError):
        make_feed(**option)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_action_message_renders_valid_xml():
    feed = make_feed()
    chat = TwitchChat({"channels": ["x"]})
    comments = []
    chat.on(SourceEvent.COMMENT, comments.append)

    await chat.handle_line(
        "@id=a1;display-name=Foo :foo!foo@foo.tmi.twitch.tv "
        "PRIVMSG #x :\x01ACTION waves at everyone\x01"
    )
    await feed.add_comment(comments[0])

    root = ET.fromstring(feed.get_xml().split("\n", 1)[1])
    fields = {f.get("name"): f.text for f in root.find("Data").find("row")}
    assert fields["Message"] == "waves at everyone"
