"""
Rule-based Moderation

Fast, deterministic checks that run on every comment before the AI
classifier is considered:
- Blocklisted keywords and link flooding
- Structural spam (character runs, symbol-only text, "first!" spam)
- Messages too short to be worth displaying
"""

import re
from typing import List, Pattern

from streamforge.schemas.comments import Comment, ModerationResult
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="moderation")

BLOCKED_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(spam|buy now|click here|free money|onlyfans)\b", re.IGNORECASE),
    re.compile(r"https?://\S+ https?://", re.IGNORECASE),  # multiple links
]

SPAM_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^(.)\1{10,}$"),  # repeated characters: "aaaaaaaaaaa"
    re.compile(r"^\W+$"),  # only symbols
    re.compile(r"first\s*!+$", re.IGNORECASE),  # "first!" spam
]

MIN_MESSAGE_LENGTH = 2
HIGHLIGHT_MIN_LENGTH = 15

BLOCKED_PATTERN = "blocked pattern"
SPAM_PATTERN = "spam pattern"
TOO_SHORT = "too short"
PASSED_RULES = "passed rules"


def matches_blocklist(message: str) -> bool:
    for pattern in BLOCKED_PATTERNS:
        if pattern.search(message):
            logger.debug(f"Blocked pattern matched: {pattern.pattern}")
            return True
    return False


def matches_spam(message: str) -> bool:
    for pattern in SPAM_PATTERNS:
        if pattern.search(message):
            logger.debug(f"Spam pattern matched: {pattern.pattern}")
            return True
    return False


def is_highlight_candidate(message: str) -> bool:
    """Questions long enough to be worth an operator's attention."""
    return "?" in message and len(message) > HIGHLIGHT_MIN_LENGTH


def rule_check(comment: Comment) -> ModerationResult:
    """
    Run the rule stage for one comment.

    Args:
        comment: Normalized comment

    Returns:
        ModerationResult; blocked results carry the rule family as reason
    """
    message = comment.message or ""

    if matches_blocklist(message):
        return ModerationResult(allow=False, highlight=False, reason=BLOCKED_PATTERN)

    if matches_spam(message):
        return ModerationResult(allow=False, highlight=False, reason=SPAM_PATTERN)

    if len(message.strip()) < MIN_MESSAGE_LENGTH:
        return ModerationResult(allow=False, highlight=False, reason=TOO_SHORT)

    return ModerationResult(
        allow=True,
        highlight=is_highlight_candidate(message),
        reason=PASSED_RULES,
    )
