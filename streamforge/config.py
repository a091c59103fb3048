"""
Configuration Management

All service settings live here. Values are loaded from environment
variables (and a local .env file) by pydantic-settings, with the
defaults below used when a variable is not set.

Components accept explicit constructor arguments and fall back to the
global `settings` instance, so tests can inject their own values.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application Settings

    Variable names match field names (case-insensitive), e.g.
    MAX_FEED_SIZE=100 or STRICT_MODE=true.
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated categories (sources,moderation,feed,vmix,system). If None, show all logs.
    port: int = 4242
    host: str = "0.0.0.0"

    # vMix Configuration
    vmix_host: str = "localhost"
    vmix_port: int = 8088
    vmix_input: Optional[str] = None  # Title input name or number for instant pushes
    vmix_title_field: str = "Message"
    push_to_vmix: bool = True
    push_interval_seconds: float = 5.0
    push_batch_size: int = 20  # Rows serialized into the data source XML

    # Moderation Configuration
    moderation_enabled: bool = True  # Use the AI classifier when reachable
    strict_mode: bool = False  # Family-friendly prompt
    ai_model: str = "llama3.2"
    classifier_base_url: str = "http://localhost:11434/v1"  # Ollama's OpenAI-compatible endpoint
    classifier_api_key: str = "ollama"
    classifier_timeout_seconds: float = 10.0
    classifier_temperature: float = 0.1
    ai_parse_fail_open: bool = True  # Allow comments when the classifier reply has no JSON
    moderation_cache_size: int = 5000
    moderation_cache_ttl_seconds: Optional[float] = None  # None keeps entries until evicted by size

    # Feed Configuration
    max_feed_size: int = 50
    max_pinned: int = 5
    clear_resets_moderation_cache: bool = False

    # Demo mode (used when no platform is configured)
    demo_mode: bool = True
    demo_interval_seconds: float = 3.0

    # YouTube Configuration
    youtube_api_key: Optional[str] = None
    youtube_access_token: Optional[str] = None
    youtube_live_chat_id: Optional[str] = None
    youtube_video_id: Optional[str] = None
    youtube_poll_interval_seconds: float = 5.0

    # Twitch Configuration
    twitch_channels: Optional[str] = None  # Comma-separated channel names
    twitch_username: Optional[str] = None  # Omit for anonymous read-only access
    twitch_oauth_token: Optional[str] = None

    # TikTok Configuration (unofficial webcast connection)
    tiktok_username: Optional[str] = None  # Streamer unique id, with or without @

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra env vars without validation errors


# Loaded once when the module is imported
settings = Settings()
