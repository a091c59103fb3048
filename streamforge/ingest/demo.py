"""
Demo Connector

Injects a fixed rotation of sample comments so the pipeline, dashboard
and vMix output can be tested without a live stream.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from streamforge.config import settings
from streamforge.ingest.base import SourceAdapter
from streamforge.schemas.comments import Comment, utc_now_iso

DEMO_COMMENTS: List[Dict[str, str]] = [
    {"platform": "youtube", "author": "ChurchTech42", "message": "Great production quality today! 🙏"},
    {"platform": "twitch", "author": "esports_fan", "message": "Can we get a replay of that last round?"},
    {"platform": "youtube", "author": "StreamNerd", "message": "What switcher are you using?"},
    {"platform": "tiktok", "author": "viewer123", "message": "This is so cool how do you do this"},
    {"platform": "twitch", "author": "spambot", "message": "BUY FOLLOWERS NOW CLICK HERE"},
    {"platform": "youtube", "author": "TechDirector", "message": "NDI is a game changer for remote production"},
    {"platform": "youtube", "author": "FirstTimer", "message": "first!!!!!!!!!!!!!!!!"},
]


class DemoChat(SourceAdapter):
    """Emits sample comments on a fixed interval."""

    platform = "demo"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.interval = float(
            self.config.get("interval_seconds") or settings.demo_interval_seconds
        )
        self.comments: List[Dict[str, str]] = self.config.get("comments") or DEMO_COMMENTS
        self._index = 0
        self.task: Optional[asyncio.Task] = None

    def next_comment(self) -> Comment:
        base = self.comments[self._index % len(self.comments)]
        self._index += 1
        return Comment(
            id=f"demo-{uuid.uuid4().hex[:12]}",
            platform=base.get("platform", self.platform),
            author=base["author"],
            author_id=base["author"],
            message=base["message"],
            avatar="",
            timestamp=utc_now_iso(),
            raw={},
        )

    async def _loop(self) -> None:
        while self.is_running:
            self.emit_comment(self.next_comment())
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self.task = asyncio.create_task(self._loop())
        self.emit_debug(f"Demo mode started, one comment every {self.interval}s")

    async def stop(self) -> None:
        self.is_running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        self.emit_debug("Demo mode stopped")
