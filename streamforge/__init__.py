"""
StreamForge Service
Live chat aggregation, moderation and vMix feed for multi-platform streams
"""

__version__ = "0.1.0"
