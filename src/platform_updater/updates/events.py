"""
Phase events of an update preparation.

Two events bracket the deactivation sequence:
- UpdatePrePrepareEvent: dispatched before the first batch (offset 0).
  Handlers may veto the update.
- UpdatePostPrepareEvent: dispatched once after the runtime has been
  reloaded without extensions, on the reloaded runtime's bus.

Handlers return an explicit HandlerResult. A veto aborts dispatch with
UpdateAborted; an exception raised by a handler propagates unchanged.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from platform_updater.errors import (
    PHASE_POST_PREPARE,
    PHASE_PRE_PREPARE,
    UpdateAborted,
)
from platform_updater.logging import get_logger

logger = get_logger(__name__)


@dataclass
class UpdateContext:
    """
    Context of one orchestration call.

    Attributes:
        request_id: Identifier of the call (generated if not supplied).
        timestamp: When the call was received (UTC).
        metadata: Additional caller-provided context.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert the context to a dictionary for logging."""
        return {
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class UpdatePrePrepareEvent:
    """Dispatched before any extension is deactivated."""

    context: UpdateContext
    current_version: str
    target_version: str


@dataclass(frozen=True)
class UpdatePostPrepareEvent:
    """Dispatched after the runtime was reloaded without extensions."""

    context: UpdateContext
    current_version: str
    target_version: str


PhaseEvent = UpdatePrePrepareEvent | UpdatePostPrepareEvent


@dataclass(frozen=True)
class HandlerResult:
    """
    Answer of an event handler.

    Attributes:
        accepted: False if the handler vetoes the update.
        reason: Why the handler vetoed.
    """

    accepted: bool = True
    reason: str | None = None

    @classmethod
    def accept(cls) -> HandlerResult:
        return cls(accepted=True)

    @classmethod
    def veto(cls, reason: str) -> HandlerResult:
        return cls(accepted=False, reason=reason)


EventHandler = Callable[[Any], HandlerResult | None]


@dataclass(frozen=True)
class _Subscription:
    handler: EventHandler
    source: str | None

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


class PhaseEventBus:
    """
    Ordered event dispatch with veto semantics.

    Each subscription records its source: the identifier of the extension
    that registered it, or None for core handlers. A handler returning None
    counts as accepting.

    Example:
        >>> bus = PhaseEventBus()
        >>> bus.subscribe(UpdatePrePrepareEvent, lambda e: HandlerResult.accept())
        >>> bus.dispatch(UpdatePrePrepareEvent(UpdateContext(), "6.4.0", "6.5.0"))
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type, list[_Subscription]] = {}

    def subscribe(
        self,
        event_type: type,
        handler: EventHandler,
        *,
        source: str | None = None,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: Event class the handler listens to.
            handler: Callable receiving the event.
            source: Extension that owns the handler, None for core handlers.
        """
        self._subscriptions.setdefault(event_type, []).append(
            _Subscription(handler=handler, source=source)
        )

    def handler_count(self, event_type: type) -> int:
        """Return the number of handlers registered for an event type."""
        return len(self._subscriptions.get(event_type, []))

    def sources(self) -> set[str]:
        """Return the extensions owning at least one handler."""
        return {
            s.source
            for subs in self._subscriptions.values()
            for s in subs
            if s.source is not None
        }

    def dispatch(self, event: Any) -> Any:
        """
        Dispatch an event to its handlers in registration order.

        Args:
            event: Event instance.

        Returns:
            The event, once every handler accepted it.

        Raises:
            UpdateAborted: On the first veto. Remaining handlers are not called.
        """
        event_name = type(event).__name__

        for subscription in self._subscriptions.get(type(event), []):
            result = subscription.handler(event)
            if result is None or result.accepted:
                continue

            logger.warning(
                f"{event_name} vetoed by {subscription.name}: {result.reason}",
                extra={"handler": subscription.name, "source": subscription.source},
            )
            raise UpdateAborted(
                f"Update aborted by {subscription.name}: {result.reason}",
                reason=result.reason,
                handler=subscription.name,
                phase=_phase_of(event),
                details={"event": event_name, "source": subscription.source},
            )

        logger.debug(
            f"Dispatched {event_name}",
            extra={"handlers": self.handler_count(type(event))},
        )
        return event

    def without_extensions(self) -> PhaseEventBus:
        """Return a new bus holding only the core handlers."""
        bus = PhaseEventBus()
        for event_type, subscriptions in self._subscriptions.items():
            core = [s for s in subscriptions if s.source is None]
            if core:
                bus._subscriptions[event_type] = list(core)
        return bus


def _phase_of(event: Any) -> str:
    if isinstance(event, UpdatePostPrepareEvent):
        return PHASE_POST_PREPARE
    return PHASE_PRE_PREPARE
