"""
Twitch Chat Connector

Reads Twitch chat over the IRC-over-WebSocket interface. Connects
anonymously (read-only) unless a username and OAuth token are configured,
and can join several channels at once. Dropped connections are retried
with exponential backoff.
"""

from __future__ import annotations

import asyncio
import random
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import websockets

from streamforge.config import settings
from streamforge.errors import AdapterError, ConfigurationError
from streamforge.ingest.base import SourceAdapter
from streamforge.schemas.comments import Comment
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="sources")

TWITCH_IRC_URL = "wss://irc-ws.chat.twitch.tv:443"
RECONNECT_DELAY = 5
MAX_RECONNECT_DELAY = 60

ACTION_PREFIX = "\x01ACTION "

TAG_ESCAPES = {"s": " ", ":": ";", "\\": "\\", "r": "\r", "n": "\n"}
_TAG_ESCAPE_RE = re.compile(r"\\(.)")


def _unescape_tag(value: str) -> str:
    return _TAG_ESCAPE_RE.sub(lambda m: TAG_ESCAPES.get(m.group(1), m.group(1)), value)


def parse_irc_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Split one IRC line into tags, prefix, command and params.

    Example:
        @id=abc;display-name=Foo :foo!foo@foo.tmi.twitch.tv PRIVMSG #chan :hello
    """
    rest = line.strip()
    tags: Dict[str, str] = {}

    if rest.startswith("@"):
        raw_tags, _, rest = rest[1:].partition(" ")
        for pair in raw_tags.split(";"):
            key, _, value = pair.partition("=")
            if key:
                tags[key] = _unescape_tag(value)

    prefix = ""
    if rest.startswith(":"):
        prefix, _, rest = rest[1:].partition(" ")

    trailing = None
    if " :" in rest:
        rest, trailing = rest.split(" :", 1)

    parts = rest.split()
    if not parts:
        return None

    params = parts[1:]
    if trailing is not None:
        params.append(trailing)
    return {"tags": tags, "prefix": prefix, "command": parts[0], "params": params}


def unwrap_action(text: str) -> Tuple[str, bool]:
    """Strip the CTCP wrapper of a /me message: \\x01ACTION waves\\x01 -> ("waves", True)."""
    if text.startswith(ACTION_PREFIX):
        return text[len(ACTION_PREFIX):].rstrip("\x01"), True
    return text, False


def parse_channels(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [c.strip().lstrip("#").lower() for c in raw.split(",") if c.strip()]


class TwitchChat(SourceAdapter):
    """Twitch IRC chat reader."""

    platform = "twitch"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        channels = self.config.get("channels")
        if isinstance(channels, str):
            channels = parse_channels(channels)
        self.channels: List[str] = [
            c.lstrip("#").lower() for c in (channels or parse_channels(settings.twitch_channels))
        ]
        self.username = self.config.get("username") or settings.twitch_username
        self.token = self.config.get("token") or settings.twitch_oauth_token

        # Remove 'oauth:' prefix if present, it is added back on login
        if self.token and self.token.startswith("oauth:"):
            self.token = self.token[6:]

        self.ws = None
        self.read_task: Optional[asyncio.Task] = None
        self.reconnect_delay = RECONNECT_DELAY

    @property
    def anonymous(self) -> bool:
        return not (self.username and self.token)

    async def _connect(self) -> None:
        self.ws = await websockets.connect(
            TWITCH_IRC_URL,
            ping_interval=20,
            ping_timeout=10,
        )
        await self.ws.send("CAP REQ :twitch.tv/tags twitch.tv/commands")
        if self.anonymous:
            await self.ws.send(f"NICK justinfan{random.randint(10000, 99999)}")
        else:
            await self.ws.send(f"PASS oauth:{self.token}")
            await self.ws.send(f"NICK {self.username.lower()}")
        for channel in self.channels:
            await self.ws.send(f"JOIN #{channel}")

        self.emit_debug(f"Twitch chat connected for channels: {', '.join(self.channels)}")

    def normalize(
        self,
        channel: str,
        tags: Dict[str, str],
        message: str,
        prefix: str = "",
        action: bool = False,
    ) -> Comment:
        login = prefix.split("!", 1)[0] if prefix else ""
        sent_ts = tags.get("tmi-sent-ts")
        if sent_ts and sent_ts.isdigit():
            timestamp = datetime.fromtimestamp(int(sent_ts) / 1000, tz=timezone.utc).isoformat()
        else:
            timestamp = datetime.now(timezone.utc).isoformat()

        return Comment(
            id=tags.get("id") or f"twitch-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}",
            platform=self.platform,
            author=tags.get("display-name") or login or "Unknown",
            author_id=tags.get("user-id", ""),
            message=message,
            avatar="",  # IRC carries no avatar
            timestamp=timestamp,
            raw={"channel": channel.lstrip("#"), "tags": tags, "action": action},
        )

    async def handle_line(self, line: str) -> None:
        if line.startswith("PING"):
            await self.ws.send("PONG" + line[4:])
            return

        message = parse_irc_line(line)
        if message is None:
            return

        command = message["command"]
        params = message["params"]

        if command == "PRIVMSG" and len(params) >= 2:
            login = message["prefix"].split("!", 1)[0]
            if self.username and login == self.username.lower():
                return  # ignore own messages
            text, action = unwrap_action(params[1])
            self.emit_comment(
                self.normalize(params[0], message["tags"], text, message["prefix"], action)
            )
        elif command == "RECONNECT":
            raise AdapterError(self.platform, "Twitch requested a reconnect")
        elif command == "NOTICE":
            self.emit_debug(f"Twitch notice: {params[-1] if params else ''}")

    async def _read_loop(self) -> None:
        while self.is_running:
            try:
                if self.ws is None:
                    await self._connect()
                    self.reconnect_delay = RECONNECT_DELAY

                async for raw in self.ws:
                    for line in str(raw).split("\r\n"):
                        if line:
                            await self.handle_line(line)

                if self.is_running:
                    raise AdapterError(self.platform, "Twitch connection closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, AdapterError) else AdapterError(
                    self.platform, f"Twitch disconnected: {e}"
                )
                self.emit_error(error)
                await self._close_ws()
                if not self.is_running:
                    break
                logger.info(f"Reconnecting to Twitch in {self.reconnect_delay}s")
                await asyncio.sleep(self.reconnect_delay)
                self.reconnect_delay = min(self.reconnect_delay * 2, MAX_RECONNECT_DELAY)

    async def _close_ws(self) -> None:
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error closing Twitch websocket: {e}")
            self.ws = None

    async def start(self) -> None:
        if self.is_running:
            return
        if not self.channels:
            raise ConfigurationError("Twitch needs at least one channel")

        try:
            await self._connect()
        except Exception:
            await self._close_ws()
            raise
        self.is_running = True
        self.read_task = asyncio.create_task(self._read_loop())

    async def join_channel(self, channel: str) -> None:
        """Join another channel on the live connection."""
        if self.ws is None:
            raise AdapterError(self.platform, "Twitch client not started")

        channel = channel.lstrip("#").lower()
        await self.ws.send(f"JOIN #{channel}")
        if channel not in self.channels:
            self.channels.append(channel)

    async def leave_channel(self, channel: str) -> None:
        channel = channel.lstrip("#").lower()
        if self.ws is None:
            return

        await self.ws.send(f"PART #{channel}")
        self.channels = [c for c in self.channels if c != channel]

    async def stop(self) -> None:
        self.is_running = False

        if self.read_task:
            self.read_task.cancel()
            try:
                await self.read_task
            except asyncio.CancelledError:
                pass
            self.read_task = None

        await self._close_ws()
        self.emit_debug("Twitch chat stopped")
