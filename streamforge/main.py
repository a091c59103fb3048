"""
StreamForge Service - FastAPI Application

This service:
- Collects live chat from every configured platform
- Moderates it and keeps the live feed
- Serves the feed to the dashboard (REST + WebSocket)
- Serves the vMix Data Source XML that vMix polls

RUNNING THE SERVER:
    uvicorn streamforge.main:app --port 4242

In vMix: Data Sources -> Add -> XML -> http://localhost:4242/vmix/feed.xml
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from streamforge import __version__
from streamforge.config import settings
from streamforge.errors import ConfigurationError
from streamforge.events import FeedEvent, SupervisorEvent
from streamforge.feed.manager import FeedManager
from streamforge.ingest.supervisor import SourceSupervisor
from streamforge.schemas.comments import (
    Comment,
    CommentIn,
    CommentOutcome,
    EnrichedComment,
    FeedStats,
    utc_now_iso,
)
from streamforge.utils.logging import get_logger

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = get_logger(__name__, category="system")
sources_logger = get_logger(f"{__name__}.sources", category="sources")

STATS_BROADCAST_SECONDS = 5
INIT_FEED_SIZE = 50

# vMix polls the XML endpoint and the dashboard polls stats; keep them out of the access log
access_logger = logging.getLogger("uvicorn.access")


def filter_access_log(record):
    message = record.getMessage()
    if message.find("/vmix/feed.xml") != -1:
        return False
    if message.find("/api/stats") != -1:
        return False
    return True


access_logger.addFilter(filter_access_log)

app = FastAPI(
    title="StreamForge",
    description="Multi-platform live chat aggregation and moderation for vMix",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# SERVICE STATE
# ============================================================================

feed_manager = FeedManager()
supervisor = SourceSupervisor()
dashboard_clients: Set[WebSocket] = set()
stats_task: Optional[asyncio.Task] = None


async def broadcast(message: Dict[str, Any]) -> None:
    """Send a message to every connected dashboard."""
    for client in list(dashboard_clients):
        try:
            await client.send_json(message)
        except Exception as exc:
            logger.debug(f"Dropping dashboard client: {exc}")
            dashboard_clients.discard(client)


def _comment_message(kind: str):
    return lambda comment: broadcast({"type": kind, "comment": comment.model_dump()})


feed_manager.on(FeedEvent.COMMENT_APPROVED, _comment_message("comment"))
feed_manager.on(FeedEvent.COMMENT_HIGHLIGHTED, _comment_message("highlighted"))
feed_manager.on(FeedEvent.COMMENT_PINNED, _comment_message("pinned"))
feed_manager.on(FeedEvent.COMMENT_UNPINNED, _comment_message("unpinned"))
feed_manager.on(FeedEvent.FEED_CLEARED, lambda _: broadcast({"type": "cleared"}))

supervisor.events.subscribe(
    SupervisorEvent.COMMENT, lambda event: feed_manager.add_comment(event["comment"])
)
supervisor.events.subscribe(
    SupervisorEvent.DEBUG, lambda event: sources_logger.debug(event["message"])
)
supervisor.events.subscribe(
    SupervisorEvent.ADAPTER_ERROR,
    lambda event: broadcast(
        {"type": "source_error", "source": event["source"], "error": str(event["error"])}
    ),
)


def configured_sources() -> Dict[str, Dict[str, Any]]:
    """Sources to register from settings; demo mode when none is configured."""
    sources: Dict[str, Dict[str, Any]] = {}

    has_youtube_auth = settings.youtube_api_key or settings.youtube_access_token
    has_youtube_chat = settings.youtube_live_chat_id or settings.youtube_video_id
    if has_youtube_auth and has_youtube_chat:
        sources["youtube"] = {}

    if settings.twitch_channels:
        sources["twitch"] = {}

    if settings.tiktok_username:
        sources["tiktok"] = {}

    if not sources and settings.demo_mode:
        logger.warning("No platforms configured, running in demo mode")
        sources["demo"] = {}

    return sources


async def _broadcast_stats_loop() -> None:
    while True:
        await asyncio.sleep(STATS_BROADCAST_SECONDS)
        await broadcast({"type": "stats", "stats": feed_manager.get_stats().model_dump()})


# ============================================================================
# REST API
# ============================================================================


@app.get("/health")
async def health_check():
    moderator = feed_manager.moderator
    return {
        "status": "healthy",
        "service": "streamforge",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sources": supervisor.status(),
        "moderation": {
            "mode": moderator.mode,
            "ai_enabled": moderator.use_ai,
            "ai_available": moderator.ai_available,
        },
        "vmix": {
            "online": feed_manager.vmix_online,
            "input": feed_manager.vmix_input,
        },
    }


@app.get("/vmix/feed.xml")
async def vmix_feed_xml():
    """vMix Data Source endpoint."""
    return Response(content=feed_manager.get_xml(), media_type="application/xml")


@app.get("/api/feed", response_model=List[EnrichedComment])
async def get_feed(limit: int = 20):
    return feed_manager.get_feed(limit)


@app.get("/api/stats", response_model=FeedStats)
async def get_stats():
    return feed_manager.get_stats()


@app.post("/api/comments", response_model=CommentOutcome)
async def submit_comment(payload: CommentIn):
    """Inject a comment by hand (operator or external tool)."""
    comment = Comment(
        id=payload.id or f"manual-{uuid.uuid4().hex[:12]}",
        platform=payload.platform,
        author=payload.author,
        author_id=payload.author_id,
        message=payload.message,
        avatar=payload.avatar,
        timestamp=payload.timestamp or utc_now_iso(),
    )
    enriched = await feed_manager.add_comment(comment)
    return CommentOutcome(
        id=comment.id,
        allowed=enriched is not None,
        highlighted=bool(enriched and enriched.highlighted),
    )


@app.post("/api/comments/{comment_id}/highlight")
async def highlight_comment(comment_id: str):
    found = await feed_manager.highlight(comment_id)
    return {"ok": True, "found": found is not None}


@app.post("/api/comments/{comment_id}/pin")
async def pin_comment(comment_id: str):
    found = feed_manager.pin(comment_id)
    return {"ok": True, "found": found is not None}


@app.post("/api/comments/{comment_id}/unpin")
async def unpin_comment(comment_id: str):
    found = feed_manager.unpin(comment_id)
    return {"ok": True, "found": found is not None}


@app.delete("/api/feed")
async def clear_feed():
    feed_manager.clear()
    return {"ok": True}


@app.get("/api/sources")
async def list_sources():
    return {"sources": supervisor.status()}


# ============================================================================
# DASHBOARD WEBSOCKET
# ============================================================================


async def handle_dashboard_message(message: Any) -> None:
    """Apply an operator action sent over the dashboard socket."""
    if not isinstance(message, dict):
        return

    kind = message.get("type")
    comment_id = message.get("id")
    if kind == "highlight" and comment_id:
        await feed_manager.highlight(comment_id)
    elif kind == "pin" and comment_id:
        feed_manager.pin(comment_id)
    elif kind == "unpin" and comment_id:
        feed_manager.unpin(comment_id)
    elif kind == "clear":
        feed_manager.clear()


@app.websocket("/ws")
async def dashboard_socket(websocket: WebSocket):
    await websocket.accept()
    dashboard_clients.add(websocket)

    try:
        await websocket.send_json(
            {
                "type": "init",
                "feed": [c.model_dump() for c in feed_manager.get_feed(INIT_FEED_SIZE)],
                "stats": feed_manager.get_stats().model_dump(),
            }
        )
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                continue  # ignore malformed messages
            await handle_dashboard_message(message)
    except WebSocketDisconnect:
        pass
    finally:
        dashboard_clients.discard(websocket)


# ============================================================================
# LIFECYCLE
# ============================================================================


@app.on_event("startup")
async def startup_event():
    global stats_task
    logger.info(f"StreamForge v{__version__} starting on {settings.host}:{settings.port}")

    await feed_manager.init()

    for name, config in configured_sources().items():
        try:
            await supervisor.register(name, config)
        except ConfigurationError as exc:
            sources_logger.error(f"Could not register source {name}: {exc}")

    results = await supervisor.start_all()
    for name, started in results.items():
        if started:
            sources_logger.info(f"{name} platform started")
        else:
            sources_logger.warning(f"{name} platform failed to start")

    stats_task = asyncio.create_task(_broadcast_stats_loop())

    moderator = feed_manager.moderator
    logger.info(
        f"Moderation: {'AI' if moderator.ai_available else 'rules only'} ({moderator.mode})"
    )
    logger.info(f"vMix data source: http://localhost:{settings.port}/vmix/feed.xml")


@app.on_event("shutdown")
async def shutdown_event():
    global stats_task
    logger.info("StreamForge shutting down")

    await supervisor.stop_all()

    if stats_task:
        stats_task.cancel()
        try:
            await stats_task
        except asyncio.CancelledError:
            pass
        stats_task = None

    await feed_manager.stop()
