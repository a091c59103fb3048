"""
YouTube Live Chat Connector

Polls live chat messages through the YouTube Data API v3. Works with an
API key (public streams) or an OAuth access token (channel owner).
YouTube returns the interval it wants between polls; errors back off to
three times the configured interval.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from streamforge.config import settings
from streamforge.errors import AdapterError, ConfigurationError
from streamforge.ingest.base import SourceAdapter
from streamforge.schemas.comments import Comment
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="sources")

API_BASE = "https://www.googleapis.com/youtube/v3"
ERROR_BACKOFF_FACTOR = 3


class YouTubeChat(SourceAdapter):
    """Poll-based YouTube live chat reader."""

    platform = "youtube"

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.api_key = self.config.get("api_key") or settings.youtube_api_key or ""
        self.access_token = (
            self.config.get("access_token") or settings.youtube_access_token or ""
        )
        self.video_id = self.config.get("video_id") or settings.youtube_video_id or ""
        self.live_chat_id = (
            self.config.get("live_chat_id") or settings.youtube_live_chat_id or ""
        )
        self.poll_interval = float(
            self.config.get("poll_interval_seconds")
            or settings.youtube_poll_interval_seconds
        )

        self.http_client = http_client
        self._owns_client = http_client is None
        self._page_token: Optional[str] = None
        self.poll_task: Optional[asyncio.Task] = None

    def _auth(self) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Headers and query params for the configured credentials."""
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}, {}
        return {}, {"key": self.api_key}

    async def _fetch(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        headers, auth_params = self._auth()
        response = await self.http_client.get(
            f"{API_BASE}/{path}", params={**params, **auth_params}, headers=headers
        )
        if response.status_code >= 400:
            raise AdapterError(
                self.platform, f"YouTube API {response.status_code}: {response.text[:200]}"
            )
        return response.json()

    async def _resolve_live_chat_id(self) -> None:
        if self.live_chat_id:
            return
        if not self.video_id:
            raise ConfigurationError("Either video_id or live_chat_id is required")

        data = await self._fetch(
            "videos", {"part": "liveStreamingDetails", "id": self.video_id}
        )
        items = data.get("items") or [{}]
        details = items[0].get("liveStreamingDetails") or {}
        chat_id = details.get("activeLiveChatId")
        if not chat_id:
            raise AdapterError(
                self.platform, f"No active live chat found for video {self.video_id}"
            )
        self.live_chat_id = chat_id
        self.emit_debug(f"Resolved liveChatId: {self.live_chat_id}")

    def normalize(self, item: Dict[str, Any]) -> Comment:
        """Convert a liveChatMessage resource to a Comment."""
        snippet = item.get("snippet") or {}
        author = item.get("authorDetails") or {}
        text_details = snippet.get("textMessageDetails") or {}
        return Comment(
            id=item.get("id") or f"youtube-{datetime.now(timezone.utc).timestamp()}",
            platform=self.platform,
            author=author.get("displayName") or "Unknown",
            author_id=author.get("channelId") or "",
            message=snippet.get("displayMessage") or text_details.get("messageText") or "",
            avatar=author.get("profileImageUrl") or "",
            timestamp=snippet.get("publishedAt") or datetime.now(timezone.utc).isoformat(),
            raw=item,
        )

    async def poll_once(self) -> float:
        """
        Fetch one page of chat messages and emit them.

        Returns:
            Seconds to wait before the next poll
        """
        params = {"liveChatId": self.live_chat_id, "part": "snippet,authorDetails"}
        if self._page_token:
            params["pageToken"] = self._page_token

        data = await self._fetch("liveChat/messages", params)
        self._page_token = data.get("nextPageToken")

        for item in data.get("items") or []:
            self.emit_comment(self.normalize(item))

        interval_ms = data.get("pollingIntervalMillis")
        return interval_ms / 1000 if interval_ms else self.poll_interval

    async def _poll_loop(self) -> None:
        while self.is_running:
            try:
                delay = await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.emit_error(e)
                delay = self.poll_interval * ERROR_BACKOFF_FACTOR
            await asyncio.sleep(delay)

    async def start(self) -> None:
        if self.is_running:
            return
        if not self.api_key and not self.access_token:
            raise ConfigurationError("YouTube needs an api_key or access_token")

        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=30.0)
            self._owns_client = True

        try:
            await self._resolve_live_chat_id()
        except Exception:
            if self._owns_client:
                await self.http_client.aclose()
                self.http_client = None
            raise

        self.is_running = True
        self.poll_task = asyncio.create_task(self._poll_loop())
        self.emit_debug(f"YouTube chat started for {self.live_chat_id}")

    async def stop(self) -> None:
        self.is_running = False

        if self.poll_task:
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                pass
            self.poll_task = None

        if self.http_client is not None and self._owns_client:
            await self.http_client.aclose()
            self.http_client = None

        self.emit_debug("YouTube chat stopped")
