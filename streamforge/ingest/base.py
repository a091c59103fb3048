"""
Source Adapter contract

Every platform connector turns its own wire format into normalized
Comment objects and reports through three event kinds: comment, error
and debug. start() and stop() are idempotent coroutines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from streamforge.events import EventBus, Handler, SourceEvent
from streamforge.schemas.comments import Comment


class SourceAdapter(ABC):
    """Base class for platform connectors."""

    platform: str = "unknown"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config: Dict[str, Any] = dict(config or {})
        self.events = EventBus(SourceEvent, name=f"{self.platform}-adapter")
        self.is_running = False

    @abstractmethod
    async def start(self) -> None:
        """Connect and begin emitting comments."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect. Safe to call when not running."""

    def on(self, kind: SourceEvent, handler: Handler) -> int:
        return self.events.subscribe(kind, handler)

    def remove_all_listeners(self) -> None:
        self.events.clear()

    def emit_comment(self, comment: Comment) -> None:
        self.events.publish(SourceEvent.COMMENT, comment)

    def emit_error(self, error: BaseException) -> None:
        self.events.publish(SourceEvent.ERROR, error)

    def emit_debug(self, message: str) -> None:
        self.events.publish(SourceEvent.DEBUG, message)
