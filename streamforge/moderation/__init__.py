"""
Moderation layer: rule stage, AI classifier stage and verdict cache
"""

from .cache import ModerationCache
from .moderator import ContentModerator
from .rules import rule_check

__all__ = [
    "ContentModerator",
    "ModerationCache",
    "rule_check",
]
