"""
Update operations exposed to transports.

This module implements the operations in the `update.*` namespace:
- update.check: latest release, or an empty object when none applies
- update.check_requirements: one result per environment prerequisite
- update.extension_compatibility: installed extensions classified against
  the latest release
- update.deactivate_extensions: one batch of the deactivation sequence

The runtime reload is not an operation of its own; it happens inside the
deactivation call that finishes the sequence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from platform_updater.errors import InvalidArgumentError
from platform_updater.logging import get_logger

if TYPE_CHECKING:
    from platform_updater.routing import OperationRegistry
    from platform_updater.updates.events import UpdateContext
    from platform_updater.updates.orchestrator import UpdateOrchestrator

logger = get_logger(__name__)


def _parse_offset(params: dict[str, Any]) -> int:
    raw = params.get("offset", 0)
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise InvalidArgumentError(
            "Offset must be an integer",
            details={"offset": raw},
        )
    try:
        offset = int(raw)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(
            "Offset must be an integer",
            details={"offset": raw},
        ) from e
    if offset < 0:
        raise InvalidArgumentError(
            "Offset must not be negative",
            details={"offset": offset},
        )
    return offset


async def handle_update_check(
    orchestrator: UpdateOrchestrator,
    _ctx: UpdateContext,
    _params: dict[str, Any],
) -> dict[str, Any]:
    """
    Handle the update.check operation.

    Returns:
        The UpdateInfo of a newer release, or {} when update checks are
        disabled or the running version is up to date.
    """
    update_info = await orchestrator.check_for_update()
    if update_info is None:
        return {}
    return update_info.model_dump()


async def handle_update_check_requirements(
    orchestrator: UpdateOrchestrator,
    _ctx: UpdateContext,
    _params: dict[str, Any],
) -> list[dict[str, Any]]:
    """Handle the update.check_requirements operation."""
    return [result.model_dump() for result in orchestrator.check_requirements()]


async def handle_update_extension_compatibility(
    orchestrator: UpdateOrchestrator,
    _ctx: UpdateContext,
    _params: dict[str, Any],
) -> list[dict[str, Any]]:
    """Handle the update.extension_compatibility operation."""
    records = await orchestrator.evaluate_compatibility()
    return [record.model_dump(mode="json") for record in records]


async def handle_update_deactivate_extensions(
    orchestrator: UpdateOrchestrator,
    ctx: UpdateContext,
    params: dict[str, Any],
) -> dict[str, Any]:
    """
    Handle the update.deactivate_extensions operation.

    Args:
        orchestrator: The update orchestrator.
        ctx: The UpdateContext for this request.
        params: Request parameters:
            - offset: Continuation token (default 0, which starts a sequence)
            - deactivationFilter: "notCompatible" (default), "unknown" or "all"

    Returns:
        Dictionary with:
        - valid: True while more batches remain, False once finished
        - offset: Offset to send with the next call
        - total: Number of extensions the sequence deactivates
        - success: True
    """
    offset = _parse_offset(params)
    outcome = await orchestrator.run_deactivation_batch(
        offset,
        deactivation_filter=params.get("deactivationFilter"),
        context=ctx,
    )

    logger.debug(
        f"Deactivation batch returned {outcome.kind.value}",
        extra={"offset": outcome.offset, "total": outcome.total},
    )
    return outcome.to_response()


def get_update_operations(orchestrator: UpdateOrchestrator) -> dict[str, Any]:
    """
    Get all update namespace operation handlers bound to an orchestrator.

    Returns:
        Dictionary mapping operation names to handler functions.
    """
    handlers = {
        "update.check": handle_update_check,
        "update.check_requirements": handle_update_check_requirements,
        "update.extension_compatibility": handle_update_extension_compatibility,
        "update.deactivate_extensions": handle_update_deactivate_extensions,
    }

    def bind(handler):
        async def bound(ctx: UpdateContext, params: dict[str, Any]) -> Any:
            return await handler(orchestrator, ctx, params)

        bound.__name__ = handler.__name__
        return bound

    return {name: bind(handler) for name, handler in handlers.items()}


def register_update_operations(
    registry: OperationRegistry,
    orchestrator: UpdateOrchestrator,
) -> None:
    """Register the update namespace operations on a registry."""
    for name, handler in get_update_operations(orchestrator).items():
        registry.register(name, handler)
