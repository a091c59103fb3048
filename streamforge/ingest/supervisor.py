"""
Source Supervisor

Owns the registry of named source adapters and merges their events into
one stream. Failures are isolated per adapter: an exception raised while
starting, stopping or running one source is published as an
`adapter:error` event and never reaches the caller or the other sources.

Usage:
    supervisor = SourceSupervisor()
    supervisor.events.subscribe(SupervisorEvent.COMMENT, handle_comment)
    await supervisor.register("twitch", {"channels": ["shroud"]})
    await supervisor.start_all()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from streamforge.errors import ConfigurationError
from streamforge.events import EventBus, SourceEvent, SupervisorEvent
from streamforge.ingest.base import SourceAdapter
from streamforge.ingest.demo import DemoChat
from streamforge.ingest.tiktok import TikTokChat
from streamforge.ingest.twitch import TwitchChat
from streamforge.ingest.youtube import YouTubeChat
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="sources")

ADAPTERS: Dict[str, Type[SourceAdapter]] = {
    "youtube": YouTubeChat,
    "twitch": TwitchChat,
    "tiktok": TikTokChat,
    "demo": DemoChat,
}


@dataclass
class _Registration:
    instance: SourceAdapter
    config: Dict[str, Any] = field(default_factory=dict)


class SourceSupervisor:
    """Registers, starts and stops source adapters with per-adapter isolation."""

    def __init__(self, registry: Optional[Dict[str, Type[SourceAdapter]]] = None):
        self.registry: Dict[str, Type[SourceAdapter]] = dict(
            registry if registry is not None else ADAPTERS
        )
        self.events = EventBus(SupervisorEvent, name="supervisor")
        self._sources: Dict[str, _Registration] = {}

    async def register(
        self,
        name: str,
        config: Optional[Dict[str, Any]] = None,
        auto_start: bool = False,
    ) -> SourceAdapter:
        """
        Create (or replace) the adapter for `name` and forward its events.

        Args:
            name: Adapter variant key (youtube, twitch, demo)
            config: Adapter-specific configuration
            auto_start: Start the adapter right away

        Raises:
            ConfigurationError: if `name` is not a known adapter variant
        """
        adapter_cls = self.registry.get(name)
        if adapter_cls is None:
            raise ConfigurationError(
                f"Unknown source: {name} (known: {', '.join(sorted(self.registry))})"
            )

        if name in self._sources:
            await self.unregister(name)

        config = dict(config or {})
        try:
            instance = adapter_cls(config)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Could not create source {name}: {e}") from e

        self._wire(name, instance)
        self._sources[name] = _Registration(instance=instance, config=config)
        logger.info(f"Registered source: {name}")

        if auto_start:
            await self.start(name)
        return instance

    def _wire(self, name: str, instance: SourceAdapter) -> None:
        instance.on(
            SourceEvent.COMMENT,
            lambda comment: self.events.publish(
                SupervisorEvent.COMMENT, {"source": name, "comment": comment}
            ),
        )
        instance.on(SourceEvent.ERROR, lambda error: self._report(name, error))
        instance.on(
            SourceEvent.DEBUG,
            lambda message: self.events.publish(
                SupervisorEvent.DEBUG, {"source": name, "message": f"[{name}] {message}"}
            ),
        )

    def _report(self, name: str, error: BaseException) -> None:
        logger.error(f"Source {name} failed: {error}")
        self.events.publish(
            SupervisorEvent.ADAPTER_ERROR, {"source": name, "error": error}
        )

    async def start(self, name: str) -> bool:
        """
        Start one adapter.

        Returns:
            True if the adapter started, False if it failed (reported as adapter:error)

        Raises:
            ConfigurationError: if `name` is not registered
        """
        registration = self._sources.get(name)
        if registration is None:
            raise ConfigurationError(f"Source not registered: {name}")

        try:
            await registration.instance.start()
        except Exception as e:
            self._report(name, e)
            return False

        logger.info(f"Source started: {name}")
        return True

    async def stop(self, name: str) -> bool:
        """Stop one adapter. Unregistered names are ignored."""
        registration = self._sources.get(name)
        if registration is None:
            return False

        try:
            await registration.instance.stop()
        except Exception as e:
            self._report(name, e)
            return False

        logger.info(f"Source stopped: {name}")
        return True

    async def start_all(self) -> Dict[str, bool]:
        """Start every adapter concurrently; one failure never cancels the others."""
        return await self._settle_all(self.start)

    async def stop_all(self) -> Dict[str, bool]:
        return await self._settle_all(self.stop)

    async def _settle_all(self, action) -> Dict[str, bool]:
        names = list(self._sources)
        results = await asyncio.gather(
            *(action(name) for name in names), return_exceptions=True
        )

        outcome: Dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                self._report(name, result)
                outcome[name] = False
            else:
                outcome[name] = bool(result)
        return outcome

    async def unregister(self, name: str) -> None:
        """Stop the adapter, detach its listeners and forget it."""
        await self.stop(name)
        registration = self._sources.pop(name, None)
        if registration is not None:
            registration.instance.remove_all_listeners()
            logger.info(f"Unregistered source: {name}")

    def get(self, name: str) -> Optional[SourceAdapter]:
        registration = self._sources.get(name)
        return registration.instance if registration else None

    def list(self) -> List[str]:
        return list(self._sources)

    def status(self) -> Dict[str, bool]:
        """Registered sources and whether each is currently running."""
        return {
            name: registration.instance.is_running
            for name, registration in self._sources.items()
        }
