"""
Runtime reload without extensions.

The running runtime is modelled as an owned resource: a RuntimeHandle bundles
the event bus, the loaded extensions and the core services. Reloading
produces a new handle instead of mutating global state, and callers pass the
handle they got back explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from platform_updater.errors import InvalidArgumentError, ReloadError
from platform_updater.logging import get_logger
from platform_updater.updates.events import PhaseEventBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuntimeHandle:
    """
    A live runtime.

    Attributes:
        event_bus: Bus used for event dispatch in this runtime.
        extensions: Identifiers of the extensions loaded in this runtime.
        services: Core services resolvable by name.
        generation: Incremented on every reload.
    """

    event_bus: PhaseEventBus
    extensions: frozenset[str] = frozenset()
    services: Mapping[str, Any] = field(default_factory=dict)
    generation: int = 0

    def get(self, name: str) -> Any:
        """
        Resolve a service by name.

        Raises:
            InvalidArgumentError: If no such service exists.
        """
        try:
            return self.services[name]
        except KeyError:
            raise InvalidArgumentError(
                f"Service '{name}' is not available in this runtime",
                details={"service": name, "generation": self.generation},
            ) from None


class RuntimeReloader(ABC):
    """Owner of the running runtime."""

    @property
    @abstractmethod
    def current(self) -> RuntimeHandle:
        """The handle of the running runtime."""

    @abstractmethod
    async def reload_without_extensions(self) -> RuntimeHandle:
        """
        Rebuild the runtime with an empty extension registry.

        Returns:
            The new live handle.

        Raises:
            ReloadError: If the runtime could not be rebuilt.
        """


class ExtensionRuntime(RuntimeReloader):
    """
    In-process runtime reloader.

    A reload builds a fresh handle with no extensions, an event bus holding
    only core handlers and the same core services. On failure the previous
    handle stays current.
    """

    def __init__(
        self,
        event_bus: PhaseEventBus | None = None,
        extensions: Iterable[str] = (),
        services: Mapping[str, Any] | None = None,
    ) -> None:
        self._current = RuntimeHandle(
            event_bus=event_bus or PhaseEventBus(),
            extensions=frozenset(extensions),
            services=dict(services or {}),
        )

    @property
    def current(self) -> RuntimeHandle:
        return self._current

    async def reload_without_extensions(self) -> RuntimeHandle:
        previous = self._current

        try:
            handle = self._build_handle(previous)
        except Exception as e:
            logger.error(
                f"Runtime reload failed: {e}",
                extra={"generation": previous.generation},
            )
            raise ReloadError(
                f"Runtime could not be reloaded without extensions: {e}",
                details={"generation": previous.generation, "error": str(e)},
            ) from e

        self._current = handle
        logger.info(
            "Runtime reloaded without extensions",
            extra={
                "generation": handle.generation,
                "unloaded_extensions": sorted(previous.extensions),
            },
        )
        return handle

    def _build_handle(self, previous: RuntimeHandle) -> RuntimeHandle:
        return RuntimeHandle(
            event_bus=previous.event_bus.without_extensions(),
            extensions=frozenset(),
            services=dict(previous.services),
            generation=previous.generation + 1,
        )
