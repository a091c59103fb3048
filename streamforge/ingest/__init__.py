"""
Ingest layer: source adapters and the supervisor that isolates them
"""

from .base import SourceAdapter
from .demo import DemoChat
from .supervisor import ADAPTERS, SourceSupervisor
from .tiktok import TikTokChat
from .twitch import TwitchChat
from .youtube import YouTubeChat

__all__ = [
    "ADAPTERS",
    "DemoChat",
    "SourceAdapter",
    "SourceSupervisor",
    "TikTokChat",
    "TwitchChat",
    "YouTubeChat",
]
