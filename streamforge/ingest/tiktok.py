"""
TikTok Live Connector

Reads live comments through the unofficial TikTok webcast connection
provided by the TikTokLive package. TikTok offers no public chat API, so
a failed connect is reported as an error event instead of raised, and the
rest of the pipeline keeps running.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Optional

from TikTokLive import TikTokLiveClient
from TikTokLive.events import CommentEvent, ConnectEvent, DisconnectEvent

from streamforge.config import settings
from streamforge.errors import AdapterError, ConfigurationError
from streamforge.ingest.base import SourceAdapter
from streamforge.schemas.comments import Comment, utc_now_iso
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="sources")


def _message_id(event: Any) -> str:
    for holder in ("base_message", "common"):
        base = getattr(event, holder, None)
        for name in ("message_id", "msg_id"):
            value = getattr(base, name, None)
            if value:
                return str(value)
    return ""


def _avatar(user: Any) -> str:
    thumb = getattr(user, "avatar_thumb", None)
    urls = getattr(thumb, "m_urls", None) or getattr(thumb, "url_list", None)
    if urls:
        return urls[0]
    return getattr(user, "profile_picture_url", "") or ""


class TikTokChat(SourceAdapter):
    """TikTok live comment reader."""

    platform = "tiktok"

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        client: Optional[TikTokLiveClient] = None,
    ):
        super().__init__(config)
        username = self.config.get("username") or settings.tiktok_username or ""
        self.username = username.strip().lstrip("@")
        self.client = client

    def normalize(self, event: CommentEvent) -> Comment:
        user = getattr(event, "user", None)
        user_id = getattr(user, "id", None) or getattr(user, "user_id", None)
        to_dict = getattr(event, "to_dict", None)

        return Comment(
            id=_message_id(event) or f"tiktok-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}",
            platform=self.platform,
            author=(
                getattr(user, "nickname", None)
                or getattr(user, "unique_id", None)
                or "Unknown"
            ),
            author_id=str(user_id) if user_id else "",
            message=getattr(event, "comment", "") or "",
            avatar=_avatar(user),
            timestamp=utc_now_iso(),
            raw=to_dict() if callable(to_dict) else {},
        )

    async def _on_comment(self, event: CommentEvent) -> None:
        self.emit_comment(self.normalize(event))

    async def _on_connect(self, event: ConnectEvent) -> None:
        room_id = getattr(event, "room_id", None) or getattr(self.client, "room_id", None)
        self.emit_debug(f"TikTok connected to {self.username} ({room_id})")

    async def _on_disconnect(self, event: DisconnectEvent) -> None:
        if self.is_running:
            self.is_running = False
            self.emit_error(AdapterError(self.platform, "TikTok live connection lost"))

    async def start(self) -> None:
        if self.is_running:
            return
        if not self.username:
            raise ConfigurationError("TikTok username is required")

        if self.client is None:
            self.client = TikTokLiveClient(unique_id=f"@{self.username}")
        self.client.add_listener(CommentEvent, self._on_comment)
        self.client.add_listener(ConnectEvent, self._on_connect)
        self.client.add_listener(DisconnectEvent, self._on_disconnect)

        try:
            await self.client.start()
        except Exception as e:
            logger.warning(f"TikTok connect failed for {self.username}: {e}")
            self.emit_error(AdapterError(self.platform, f"TikTok connect failed: {e}"))
            return

        self.is_running = True

    async def stop(self) -> None:
        self.is_running = False

        if self.client is not None:
            if getattr(self.client, "connected", False):
                try:
                    await self.client.disconnect()
                except Exception as e:
                    logger.warning(f"Error disconnecting from TikTok: {e}")
            self.client = None

        self.emit_debug("TikTok chat stopped")
