"""
Error taxonomy

Only ConfigurationError escapes the pipeline. The others are used to
label failures at external boundaries before they are logged or
published as events.
"""


class StreamForgeError(Exception):
    """Base class for StreamForge errors."""


class ConfigurationError(StreamForgeError, ValueError):
    """Unknown adapter variant, unregistered source or invalid settings."""


class AdapterError(StreamForgeError):
    """A source adapter failed to start, stop or keep running."""

    def __init__(self, source: str, message: str):
        super().__init__(f"[{source}] {message}")
        self.source = source


class ClassifierError(StreamForgeError):
    """The external classifier was unreachable, timed out or replied with bad JSON."""


class SinkError(StreamForgeError):
    """The display sink (vMix) was unreachable or rejected a call."""
