"""
Feed layer: buffer, statistics and vMix push scheduling
"""

from .manager import FeedManager

__all__ = ["FeedManager"]
