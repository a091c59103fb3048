"""Unit tests for the typed event bus."""
import pytest

from streamforge.events import EventBus, FeedEvent, SourceEvent


@pytest.mark.unit
class TestEventBus:
    def test_publish_reaches_every_handler(self):
        bus = EventBus(SourceEvent)
        seen = []
        bus.subscribe(SourceEvent.COMMENT, lambda p: seen.append(("a", p)))
        bus.subscribe(SourceEvent.COMMENT, lambda p: seen.append(("b", p)))

        count = bus.publish(SourceEvent.COMMENT, "hi")

        assert count == 2
        assert seen == [("a", "hi"), ("b", "hi")]

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus(SourceEvent)
        seen = []

        def explode(_):
            raise RuntimeError("boom")

        bus.subscribe(SourceEvent.ERROR, explode)
        bus.subscribe(SourceEvent.ERROR, seen.append)

        bus.publish(SourceEvent.ERROR, "x")

        assert seen == ["x"]

    def test_unknown_kind_rejected(self):
        bus = EventBus(SourceEvent)

        with pytest.raises(ValueError):
            bus.subscribe(FeedEvent.FEED_CLEARED, print)
        with pytest.raises(ValueError):
            bus.publish("vmix:push")

    def test_string_kind_accepted(self):
        bus = EventBus(FeedEvent)
        seen = []
        bus.subscribe("feed:cleared", seen.append)

        bus.publish(FeedEvent.FEED_CLEARED, {})

        assert seen == [{}]

    def test_non_callable_handler_rejected(self):
        with pytest.raises(ValueError):
            EventBus(SourceEvent).subscribe(SourceEvent.DEBUG, "not callable")

    def test_unsubscribe(self):
        bus = EventBus(SourceEvent)
        seen = []
        token = bus.subscribe(SourceEvent.DEBUG, seen.append)

        assert bus.unsubscribe(token) is True
        assert bus.unsubscribe(token) is False
        bus.publish(SourceEvent.DEBUG, "ignored")
        assert seen == []

    def test_clear_and_listener_count(self):
        bus = EventBus(SourceEvent)
        bus.subscribe(SourceEvent.DEBUG, print)
        bus.subscribe(SourceEvent.COMMENT, print)

        assert bus.listener_count() == 2
        assert bus.listener_count(SourceEvent.DEBUG) == 1

        bus.clear()
        assert bus.listener_count() == 0

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus(SourceEvent)

        async def handler(_):
            raise AssertionError("should never run")

        assert bus.publish(SourceEvent.COMMENT, "x") == 0
        bus.subscribe(SourceEvent.COMMENT, handler)
        assert bus.publish(SourceEvent.COMMENT, "x") == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventBusAsync:
    async def test_async_handlers_run_and_drain(self):
        bus = EventBus(SourceEvent)
        seen = []

        async def handler(payload):
            seen.append(payload)

        bus.subscribe(SourceEvent.COMMENT, handler)
        bus.publish(SourceEvent.COMMENT, 1)
        bus.publish(SourceEvent.COMMENT, 2)
        await bus.drain()

        assert seen == [1, 2]

    async def test_async_handler_failure_is_contained(self):
        bus = EventBus(SourceEvent)
        seen = []

        async def broken(_):
            raise RuntimeError("boom")

        bus.subscribe(SourceEvent.COMMENT, broken)
        bus.subscribe(SourceEvent.COMMENT, seen.append)
        bus.publish(SourceEvent.COMMENT, "ok")
        await bus.drain()

        assert seen == ["ok"]
