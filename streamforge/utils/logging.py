"""
Category-aware logging utility for StreamForge

Provides logging functionality with category filtering and log level control.
Logs can be filtered by category (sources, moderation, feed, vmix, system)
and log level (DEBUG, INFO, WARN, ERROR).

Usage:
    from streamforge.utils.logging import get_logger

    logger = get_logger(__name__, category='feed')
    logger.info('Comment approved')
"""

import logging
from typing import List, Optional
from streamforge.config import settings


# Log level hierarchy (lower number = more verbose)
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_categories(raw: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated category list; None means every category."""
    if not raw:
        return None
    return [cat.strip().lower() for cat in raw.split(",") if cat.strip()]


_allowed_categories = parse_categories(settings.log_categories)


class CategoryFilter(logging.Filter):
    """Filter logs by category if LOG_CATEGORIES is set."""

    def __init__(
        self,
        category: Optional[str] = None,
        allowed: Optional[List[str]] = None,
    ):
        """
        Initialize category filter.

        Args:
            category: Category name for this logger (e.g., 'sources', 'feed')
            allowed: Override for the allowed categories (defaults to LOG_CATEGORIES)
        """
        super().__init__()
        self.category = category.lower() if category else "system"
        self.allowed = allowed if allowed is not None else _allowed_categories

    def filter(self, record: logging.LogRecord) -> bool:
        # If no category filter is set, show all logs
        if self.allowed is None:
            return True

        return self.category in self.allowed


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with category filtering support.

    Args:
        name: Logger name (typically __name__)
        category: Category for filtering (e.g., 'sources', 'moderation', 'feed')
                  If None, defaults to 'system'

    Returns:
        Logger instance with category filter applied
    """
    logger = logging.getLogger(name)

    log_level = LOG_LEVELS.get(settings.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Remove existing category filters to avoid duplicates
    logger.filters = [f for f in logger.filters if not isinstance(f, CategoryFilter)]
    logger.addFilter(CategoryFilter(category))

    return logger
