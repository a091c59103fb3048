import os

# Settings are read at import time; keep tests off the classifier and platforms
os.environ.setdefault("MODERATION_ENABLED", "false")
os.environ.setdefault("DEMO_MODE", "false")
os.environ.setdefault("VMIX_INPUT", "")

import pytest

from streamforge.moderation.moderator import ContentModerator
from streamforge.schemas.comments import Comment


@pytest.fixture
def make_comment():
    """Factory for normalized comments with unique ids."""
    counter = {"n": 0}

    def _make(message="Hello from the stream", author="viewer", platform="youtube", **kwargs):
        counter["n"] += 1
        return Comment(
            id=kwargs.pop("id", f"c{counter['n']}"),
            platform=platform,
            author=author,
            message=message,
            **kwargs,
        )

    return _make


@pytest.fixture
def rules_moderator():
    """Moderator running the rule stage only."""
    return ContentModerator(use_ai=False, cache_size=100)
