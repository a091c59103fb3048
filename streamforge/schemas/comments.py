"""
Comment Schemas

Pydantic models for the normalized comment that every source adapter
produces, the moderation verdict, and the feed-side views built from
them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Comment(BaseModel):
    """Normalized chat comment from any platform."""

    id: str = Field(..., description="Source-scoped unique id")
    platform: str = Field(..., description="Platform tag", examples=["youtube"])
    author: str = Field(default="Unknown", description="Display name")
    author_id: str = Field(default="", description="Source-scoped author id, may be empty")
    message: str = Field(..., description="Comment text")
    avatar: str = Field(default="", description="Avatar URL, may be empty")
    timestamp: str = Field(default_factory=utc_now_iso, description="ISO-8601 send time")
    raw: Dict[str, Any] = Field(
        default_factory=dict, description="Original platform payload, never interpreted"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "yt-abc123",
                "platform": "youtube",
                "author": "StreamNerd",
                "author_id": "UC123",
                "message": "What switcher are you using?",
                "avatar": "",
                "timestamp": "2025-01-01T00:00:00Z",
                "raw": {},
            }
        }
    )


class ModerationResult(BaseModel):
    """Verdict for one comment. Immutable once produced."""

    allow: bool
    highlight: bool = False
    reason: str = ""

    model_config = ConfigDict(frozen=True)


class EnrichedComment(Comment):
    """Approved comment as held in the feed buffer."""

    highlighted: bool = False
    pinned: bool = False
    approved_at: str = Field(default_factory=utc_now_iso)


class ModeratedComment(Comment):
    """Comment merged with its moderation verdict (batch reprocessing)."""

    allow: bool
    highlight: bool = False
    reason: str = ""


class FeedStats(BaseModel):
    total: int = 0
    approved: int = 0
    blocked: int = 0
    by_platform: Dict[str, int] = Field(default_factory=dict)
    feed_size: int = 0
    approval_rate: int = 0


class CommentIn(BaseModel):
    """Comment submitted through the REST API; id and platform are optional."""

    id: Optional[str] = None
    platform: str = "manual"
    author: str = "Operator"
    author_id: str = ""
    message: str
    avatar: str = ""
    timestamp: Optional[str] = None


class CommentOutcome(BaseModel):
    """Response for a manually submitted comment."""

    id: str
    allowed: bool
    highlighted: bool
