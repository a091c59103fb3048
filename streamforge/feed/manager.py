"""
Feed Manager

Central hub that:
- Receives comments from every source
- Runs moderation on each one
- Maintains the bounded live feed buffer
- Pushes approved comments to vMix
- Emits events for the dashboard

Buffer ordering: pinned comments form a block at the head (most recently
pinned first), the rest follow newest first. Trimming to max_feed_size
evicts the oldest unpinned comments; pinned comments are never trimmed.
The number of pins is capped (max_pinned, at most max_feed_size); pinning
past the cap releases the oldest pin back into the regular feed.

Buffer mutations contain no await, so on the event loop they run as one
step even while other add_comment calls are suspended in moderation.
Everything handed out (events, get_feed, XML) is a copy.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from streamforge.config import settings
from streamforge.events import EventBus, FeedEvent, Handler
from streamforge.moderation.moderator import ContentModerator
from streamforge.moderation.rules import rule_check
from streamforge.schemas.comments import (
    Comment,
    EnrichedComment,
    FeedStats,
    ModerationResult,
    utc_now_iso,
)
from streamforge.sink.vmix import VMixClient, build_data_source_xml
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="feed")

TRANSITION_IN = "TransitionIn"
COMMENT_FIELDS = set(Comment.model_fields)


class FeedManager:
    """Owns the live feed buffer, statistics and vMix push schedule."""

    def __init__(
        self,
        *,
        moderator: Optional[ContentModerator] = None,
        vmix: Optional[VMixClient] = None,
        max_feed_size: Optional[int] = None,
        max_pinned: Optional[int] = None,
        vmix_input: Optional[str] = None,
        vmix_title_field: Optional[str] = None,
        push_to_vmix: Optional[bool] = None,
        push_interval_seconds: Optional[float] = None,
        push_batch_size: Optional[int] = None,
        clear_resets_moderation_cache: Optional[bool] = None,
    ) -> None:
        self.max_feed_size = (
            max_feed_size if max_feed_size is not None else settings.max_feed_size
        )
        if self.max_feed_size < 1:
            raise ValueError("max_feed_size must be at least 1")
        self.max_pinned = max_pinned if max_pinned is not None else settings.max_pinned
        self.vmix_input = vmix_input or settings.vmix_input
        self.vmix_title_field = vmix_title_field or settings.vmix_title_field
        self.push_to_vmix = (
            push_to_vmix if push_to_vmix is not None else settings.push_to_vmix
        )
        self.push_interval = (
            push_interval_seconds
            if push_interval_seconds is not None
            else settings.push_interval_seconds
        )
        if self.push_interval <= 0:
            raise ValueError("push_interval_seconds must be positive")
        self.push_batch_size = (
            push_batch_size if push_batch_size is not None else settings.push_batch_size
        )
        if self.push_batch_size < 1:
            raise ValueError("push_batch_size must be at least 1")
        self.clear_resets_moderation_cache = (
            clear_resets_moderation_cache
            if clear_resets_moderation_cache is not None
            else settings.clear_resets_moderation_cache
        )

        self.moderator = moderator or ContentModerator()
        self.vmix = vmix or VMixClient()
        self.events = EventBus(FeedEvent, name="feed")

        self.feed: List[EnrichedComment] = []  # pinned first, then newest first
        self.stats: Dict[str, Any] = self._empty_stats()
        self.vmix_online = False
        self.last_push_xml: Optional[str] = None
        self.push_task: Optional[asyncio.Task] = None

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {"total": 0, "approved": 0, "blocked": 0, "by_platform": {}}

    @property
    def pin_cap(self) -> int:
        return max(1, min(self.max_pinned, self.max_feed_size))

    def on(self, kind: FeedEvent, handler: Handler) -> int:
        return self.events.subscribe(kind, handler)

    async def init(self) -> None:
        """Initialize moderation, probe vMix and start the periodic push."""
        await self.moderator.init()

        try:
            self.vmix_online = await self.vmix.ping()
        except Exception as e:
            logger.warning(f"vMix ping failed: {e}")
            self.vmix_online = False

        if self.vmix_online:
            logger.info(f"vMix connected at {self.vmix.host}:{self.vmix.port}")
        else:
            logger.warning("vMix not reachable, running in offline mode")

        if self.push_to_vmix and self.push_task is None:
            self.push_task = asyncio.create_task(self._push_loop())

        logger.info("FeedManager ready")

    async def stop(self) -> None:
        """Stop the push timer and close the vMix client."""
        if self.push_task:
            self.push_task.cancel()
            try:
                await self.push_task
            except asyncio.CancelledError:
                pass
            self.push_task = None

        try:
            await self.vmix.aclose()
        except Exception as e:
            logger.warning(f"Error closing vMix client: {e}")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_comment(
        self, comment: Union[Comment, Mapping[str, Any]]
    ) -> Optional[EnrichedComment]:
        """
        Moderate a comment and add it to the feed if approved. Never raises.

        Args:
            comment: Comment, or a mapping with the Comment fields

        Returns:
            Copy of the buffered comment, or None if blocked or invalid
        """
        if not isinstance(comment, Comment):
            try:
                comment = Comment.model_validate(comment)
            except ValidationError as e:
                logger.warning(f"Dropping malformed comment: {e.error_count()} validation error(s)")
                return None

        try:
            result = await self.moderator.moderate(comment)
        except Exception as e:
            logger.error(f"Moderation failed for {comment.id}, using rules only: {e}", exc_info=True)
            result = rule_check(comment)

        return await self._apply(comment, result)

    async def _apply(
        self, comment: Comment, result: ModerationResult
    ) -> Optional[EnrichedComment]:
        # Counted after moderation so a clear() during the await cannot split them
        self.stats["total"] += 1
        by_platform = self.stats["by_platform"]
        by_platform[comment.platform] = by_platform.get(comment.platform, 0) + 1

        if not result.allow:
            self.stats["blocked"] += 1
            self.events.publish(
                FeedEvent.COMMENT_BLOCKED,
                {"comment": comment.model_copy(deep=True), "reason": result.reason},
            )
            return None

        self.stats["approved"] += 1
        enriched = EnrichedComment(
            **comment.model_dump(include=COMMENT_FIELDS),
            highlighted=result.highlight,
            pinned=False,
            approved_at=utc_now_iso(),
        )
        self._insert(enriched)

        snapshot = enriched.model_copy(deep=True)
        self.events.publish(FeedEvent.COMMENT_APPROVED, snapshot.model_copy(deep=True))

        if enriched.highlighted:
            self.events.publish(FeedEvent.COMMENT_HIGHLIGHTED, snapshot.model_copy(deep=True))
            await self._push_single(snapshot)

        return snapshot

    def _pinned_count(self) -> int:
        count = 0
        for entry in self.feed:
            if not entry.pinned:
                break
            count += 1
        return count

    def _insert(self, entry: EnrichedComment) -> None:
        # Newest unpinned comment goes right after the pinned block
        self.feed.insert(self._pinned_count(), entry)
        self._trim()

    def _trim(self) -> None:
        while len(self.feed) > self.max_feed_size:
            for index in range(len(self.feed) - 1, -1, -1):
                if not self.feed[index].pinned:
                    evicted = self.feed.pop(index)
                    break
            else:
                evicted = self.feed.pop()
            logger.debug(f"Evicted comment {evicted.id}")

    def _find(self, comment_id: str) -> Optional[int]:
        for index, entry in enumerate(self.feed):
            if entry.id == comment_id:
                return index
        return None

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def highlight(self, comment_id: str) -> Optional[EnrichedComment]:
        """Mark a buffered comment as highlighted and push it to vMix."""
        index = self._find(comment_id)
        if index is None:
            return None

        entry = self.feed[index]
        entry.highlighted = True
        snapshot = entry.model_copy(deep=True)
        self.events.publish(FeedEvent.COMMENT_HIGHLIGHTED, snapshot.model_copy(deep=True))
        await self._push_single(snapshot)
        return snapshot

    def pin(self, comment_id: str) -> Optional[EnrichedComment]:
        """Move a buffered comment to the head and protect it from trimming."""
        index = self._find(comment_id)
        if index is None:
            return None

        entry = self.feed.pop(index)
        entry.pinned = True
        self.feed.insert(0, entry)

        pinned = self._pinned_count()
        while pinned > self.pin_cap:
            # Oldest pin sits at the end of the block; unpinning it leaves it
            # at the head of the regular comments
            pinned -= 1
            released = self.feed[pinned]
            released.pinned = False
            logger.info(f"Pin limit reached, released {released.id}")

        snapshot = entry.model_copy(deep=True)
        self.events.publish(FeedEvent.COMMENT_PINNED, snapshot.model_copy(deep=True))
        return snapshot

    def unpin(self, comment_id: str) -> Optional[EnrichedComment]:
        """Release a pin; the comment moves to the head of the regular comments."""
        index = self._find(comment_id)
        if index is None or not self.feed[index].pinned:
            return None

        entry = self.feed.pop(index)
        entry.pinned = False
        self.feed.insert(self._pinned_count(), entry)

        snapshot = entry.model_copy(deep=True)
        self.events.publish(FeedEvent.COMMENT_UNPINNED, snapshot.model_copy(deep=True))
        return snapshot

    def clear(self) -> None:
        """Empty the feed and reset statistics."""
        self.feed = []
        self.stats = self._empty_stats()
        if self.clear_resets_moderation_cache:
            self.moderator.clear_cache()
        self.events.publish(FeedEvent.FEED_CLEARED, {})

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_feed(self, limit: Optional[int] = 20) -> List[EnrichedComment]:
        entries = self.feed if limit is None else self.feed[: max(limit, 0)]
        return [entry.model_copy(deep=True) for entry in entries]

    def get_stats(self) -> FeedStats:
        total = self.stats["total"]
        approved = self.stats["approved"]
        return FeedStats(
            total=total,
            approved=approved,
            blocked=self.stats["blocked"],
            by_platform=dict(self.stats["by_platform"]),
            feed_size=len(self.feed),
            # half-up rounding
            approval_rate=int(approved * 100 / total + 0.5) if total > 0 else 0,
        )

    def get_xml(self, limit: Optional[int] = None) -> str:
        """vMix Data Source XML for the head of the feed."""
        return build_data_source_xml(
            self.get_feed(limit if limit is not None else self.push_batch_size)
        )

    # ------------------------------------------------------------------
    # vMix push
    # ------------------------------------------------------------------

    async def _push_loop(self) -> None:
        while True:
            await asyncio.sleep(self.push_interval)
            await self.push_to_vmix_now()

    async def push_to_vmix_now(self) -> bool:
        """Serialize the feed head for vMix. Failures are logged; the next tick retries."""
        if not self.feed:
            return False

        try:
            self.last_push_xml = self.get_xml()
            self.events.publish(FeedEvent.VMIX_PUSH, {"count": len(self.feed)})
            return True
        except Exception as e:
            logger.warning(f"vMix push failed: {e}")
            return False

    async def _push_single(self, comment: EnrichedComment) -> bool:
        """Put one comment on the vMix title input right away."""
        if not self.push_to_vmix or not self.vmix_input:
            return False

        try:
            await self.vmix.set_fields(
                self.vmix_input,
                {
                    self.vmix_title_field: comment.message,
                    "Author": comment.author,
                    "Platform": comment.platform,
                },
            )
            await self.vmix.trigger_transition(self.vmix_input, TRANSITION_IN)
            return True
        except Exception as e:
            # vMix might not be running
            logger.debug(f"vMix title push failed: {e}")
            return False
