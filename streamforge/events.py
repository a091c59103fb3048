"""
Event Bus

Small publish/subscribe bus used by source adapters, the source
supervisor and the feed manager. Each publisher declares the event
kinds it emits, so the set of events a component can produce is
enumerable and testable in isolation.

Handlers may be plain callables or coroutine functions. Coroutines are
scheduled on the running loop and tracked until they finish; `drain()`
waits for them. A failing handler is logged and never prevents the
remaining handlers from running.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="system")

Handler = Callable[[Any], Any]


class SourceEvent(str, Enum):
    """Events emitted by a single source adapter."""

    COMMENT = "comment"
    ERROR = "error"
    DEBUG = "debug"


class SupervisorEvent(str, Enum):
    """Events emitted by the source supervisor (tagged with the source name)."""

    COMMENT = "comment"
    ADAPTER_ERROR = "adapter:error"
    DEBUG = "debug"


class FeedEvent(str, Enum):
    """Events emitted by the feed manager."""

    COMMENT_BLOCKED = "comment:blocked"
    COMMENT_APPROVED = "comment:approved"
    COMMENT_HIGHLIGHTED = "comment:highlighted"
    COMMENT_PINNED = "comment:pinned"
    COMMENT_UNPINNED = "comment:unpinned"
    FEED_CLEARED = "feed:cleared"
    VMIX_PUSH = "vmix:push"


class EventBus:
    """Typed publish/subscribe bus restricted to a fixed set of event kinds."""

    def __init__(self, kinds: Iterable[Enum], name: str = "bus"):
        self.name = name
        self._kinds: Set[str] = {self._key(kind) for kind in kinds}
        self._handlers: Dict[str, List[Tuple[int, Handler]]] = defaultdict(list)
        self._tokens = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def _key(kind: Any) -> str:
        return kind.value if isinstance(kind, Enum) else str(kind)

    def _check_kind(self, kind: Any) -> str:
        key = self._key(kind)
        if key not in self._kinds:
            raise ValueError(f"{self.name}: unknown event kind '{key}'")
        return key

    @property
    def kinds(self) -> Set[str]:
        return set(self._kinds)

    def subscribe(self, kind: Any, handler: Handler) -> int:
        """
        Register a handler for one event kind.

        Returns:
            Subscription token for unsubscribe()
        """
        if not callable(handler):
            raise ValueError("Handler must be callable")
        key = self._check_kind(kind)
        token = next(self._tokens)
        self._handlers[key].append((token, handler))
        return token

    def unsubscribe(self, token: int) -> bool:
        for key, handlers in self._handlers.items():
            for index, (existing, _) in enumerate(handlers):
                if existing == token:
                    del handlers[index]
                    return True
        return False

    def clear(self) -> None:
        """Detach every handler."""
        self._handlers.clear()

    def listener_count(self, kind: Optional[Any] = None) -> int:
        if kind is None:
            return sum(len(handlers) for handlers in self._handlers.values())
        return len(self._handlers.get(self._check_kind(kind), []))

    def publish(self, kind: Any, payload: Any = None) -> int:
        """
        Deliver a payload to every handler of `kind`.

        Returns:
            Number of handlers invoked
        """
        key = self._check_kind(kind)
        handlers = list(self._handlers.get(key, []))

        for _, handler in handlers:
            try:
                result = handler(payload)
            except Exception as e:
                logger.error(f"{self.name}: handler for {key} failed: {e}", exc_info=True)
                continue

            if inspect.isawaitable(result):
                self._schedule(key, result)

        return len(handlers)

    def _schedule(self, key: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"{self.name}: no running loop for async handler of {key}")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run(key, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, key: str, awaitable: Any) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: async handler for {key} failed: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
