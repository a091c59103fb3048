"""
AI Content Moderator

Classifies each comment as allow / block / highlight:
1. Cached verdict for the same (author, message), if any
2. Rule stage (always runs, blocks obvious spam without an AI call)
3. Optional LLM classifier that can refine an allowed verdict

The classifier is reached through the OpenAI SDK against any
OpenAI-compatible endpoint (a local Ollama server by default). It is
probed once at init(); when it is unreachable, times out or replies with
unusable output the rule verdict is used instead, so moderation keeps
working without it.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Dict, Iterable, List, Optional

from openai import OpenAI
from pydantic import ValidationError

from streamforge.config import settings
from streamforge.errors import ClassifierError
from streamforge.moderation.cache import CacheKey, ModerationCache
from streamforge.moderation.rules import rule_check
from streamforge.schemas.comments import Comment, ModeratedComment, ModerationResult
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="moderation")

STANDARD_PROMPT = (
    "You moderate live stream comments for a production broadcast.\n"
    'Reply with JSON: {"allow": true/false, "highlight": true/false, "reason": "brief reason"}\n'
    "Block: spam, hate speech, harassment, repetitive messages, self-promotion.\n"
    "Highlight: insightful questions, interesting reactions, genuinely engaging comments."
)

STRICT_PROMPT = (
    "You moderate live stream comments for a church or family-friendly broadcast.\n"
    'Reply with JSON: {"allow": true/false, "highlight": true/false, "reason": "brief reason"}\n'
    "Block: profanity, hate speech, spam, sexual content, anything not family-friendly.\n"
    "Highlight: genuine questions, meaningful comments, on-topic engagement."
)

AI_PARSE_FAILED = "ai parse failed"

# First flat JSON object in the reply; models like to wrap it in prose
JSON_OBJECT = re.compile(r"\{[^}]+\}")


class ContentModerator:
    """Two-stage comment moderation with a bounded verdict cache."""

    def __init__(
        self,
        *,
        openai_client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        use_ai: Optional[bool] = None,
        strict_mode: Optional[bool] = None,
        parse_fail_open: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        temperature: Optional[float] = None,
        cache_size: Optional[int] = None,
        cache_ttl_seconds: Optional[float] = None,
    ) -> None:
        self.model = model or settings.ai_model
        self.use_ai = use_ai if use_ai is not None else settings.moderation_enabled
        self.strict_mode = (
            strict_mode if strict_mode is not None else settings.strict_mode
        )
        self.parse_fail_open = (
            parse_fail_open
            if parse_fail_open is not None
            else settings.ai_parse_fail_open
        )
        self.timeout_seconds = timeout_seconds or settings.classifier_timeout_seconds
        self.temperature = (
            temperature if temperature is not None else settings.classifier_temperature
        )
        self.system_prompt = STRICT_PROMPT if self.strict_mode else STANDARD_PROMPT
        self.cache = ModerationCache(
            max_entries=cache_size or settings.moderation_cache_size,
            ttl_seconds=(
                cache_ttl_seconds
                if cache_ttl_seconds is not None
                else settings.moderation_cache_ttl_seconds
            ),
        )
        self.ai_available = False
        self._in_flight: Dict[CacheKey, asyncio.Future] = {}

        if openai_client is not None:
            self._client = openai_client
        elif self.use_ai:
            self._client = OpenAI(
                base_url=settings.classifier_base_url,
                api_key=settings.classifier_api_key,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        else:
            self._client = None

    @property
    def mode(self) -> str:
        return "strict" if self.strict_mode else "standard"

    @property
    def cache_size(self) -> int:
        return len(self.cache)

    async def init(self) -> None:
        """Probe the classifier once; it is not re-probed later."""
        if not self.use_ai or self._client is None:
            self.ai_available = False
            logger.info("AI moderation disabled, using rule-based moderation")
            return

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._client.models.list),
                timeout=self.timeout_seconds,
            )
            self.ai_available = True
            logger.info(f"AI moderation ready (model: {self.model}, mode: {self.mode})")
        except Exception as e:
            self.ai_available = False
            logger.warning(f"Classifier not available, using rule-based moderation: {e}")

    async def moderate(self, comment: Comment) -> ModerationResult:
        """
        Moderate a single comment. Never raises. Concurrent calls for the
        same (author, message) share one classification.

        Args:
            comment: Normalized comment

        Returns:
            ModerationResult (possibly from cache)
        """
        key = (comment.author, comment.message)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # the first caller was cancelled; classify again
                return await self.moderate(comment)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            result = await self._moderate_uncached(comment, key)
        except BaseException:
            future.cancel()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    async def _moderate_uncached(self, comment: Comment, key: CacheKey) -> ModerationResult:
        rule_result = rule_check(comment)
        if not rule_result.allow:
            self.cache.set(key, rule_result)
            return rule_result

        if self.use_ai and self.ai_available:
            try:
                ai_result = await self.ai_check(comment)
            except Exception as e:
                logger.warning(f"AI check failed, using rule result: {e}")
            else:
                self.cache.set(key, ai_result)
                return ai_result

        self.cache.set(key, rule_result)
        return rule_result

    def rule_check(self, comment: Comment) -> ModerationResult:
        return rule_check(comment)

    async def ai_check(self, comment: Comment) -> ModerationResult:
        """
        Ask the classifier about one comment.

        Raises:
            ClassifierError: on transport failure, timeout or malformed JSON
        """
        prompt = (
            f"Comment from {comment.author} on {comment.platform}:\n"
            f'"{comment.message}"\n\nModerate this comment.'
        )
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

        try:
            text = await asyncio.wait_for(
                self._call_classifier(messages), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ClassifierError(
                f"classifier timed out after {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            raise ClassifierError(f"classifier call failed: {e}") from e

        return self.parse_response(text)

    async def _call_classifier(self, messages: List[dict]) -> str:
        # The OpenAI client is synchronous; run in a thread to avoid blocking.
        response = await asyncio.to_thread(
            self._client.chat.completions.create,
            model=self.model,
            messages=messages,
            temperature=self.temperature,
        )
        choice = response.choices[0].message
        return choice.content.strip() if choice and choice.content else ""

    def parse_response(self, text: str) -> ModerationResult:
        """Extract the verdict from a free-form classifier reply."""
        match = JSON_OBJECT.search(text or "")
        if not match:
            logger.debug(f"No JSON in classifier reply: {text[:120]!r}")
            return ModerationResult(
                allow=self.parse_fail_open, highlight=False, reason=AI_PARSE_FAILED
            )

        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ClassifierError(f"malformed JSON in classifier reply: {e}") from e

        if not isinstance(data, dict):
            raise ClassifierError("classifier reply is not a JSON object")

        try:
            return ModerationResult.model_validate(data)
        except ValidationError as e:
            raise ClassifierError(f"classifier verdict failed validation: {e}") from e

    async def moderate_batch(self, comments: Iterable[Comment]) -> List[ModeratedComment]:
        """Moderate comments concurrently and keep only the allowed ones."""
        comments = list(comments)
        results = await asyncio.gather(*(self.moderate(c) for c in comments))
        return [
            ModeratedComment(
                **comment.model_dump(include=set(Comment.model_fields)),
                **result.model_dump(),
            )
            for comment, result in zip(comments, results)
            if result.allow
        ]

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Moderation cache cleared")
