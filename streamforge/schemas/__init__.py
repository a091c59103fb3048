"""
Schemas: normalized comments, moderation verdicts and feed views
"""

from .comments import (
    Comment,
    CommentIn,
    CommentOutcome,
    EnrichedComment,
    FeedStats,
    ModeratedComment,
    ModerationResult,
)

__all__ = [
    "Comment",
    "CommentIn",
    "CommentOutcome",
    "EnrichedComment",
    "FeedStats",
    "ModeratedComment",
    "ModerationResult",
]
