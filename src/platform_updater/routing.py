"""
Operation routing for the platform updater.

This module provides:
- OperationRegistry: maps operation names ("update.check", ...) to handlers
- Handler dispatch with error handling

Transports (HTTP endpoints, CLI commands) resolve a request to an operation
name and parameters and call OperationRegistry.invoke().
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from platform_updater.errors import InternalError, UpdateError

if TYPE_CHECKING:
    from platform_updater.updates.events import UpdateContext

OperationHandler = Callable[["UpdateContext", dict[str, Any]], Awaitable[Any]]


class OperationRegistry:
    """
    Registry for mapping operation names to handler functions.

    Example:
        >>> registry = OperationRegistry()
        >>> registry.register("update.check", handle_check)
        >>> result = await registry.invoke("update.check", ctx, {})
    """

    def __init__(self) -> None:
        """Initialize an empty operation registry."""
        self._handlers: dict[str, OperationHandler] = {}

    def register(self, name: str, handler: OperationHandler) -> None:
        """
        Register an operation handler with the given name.

        Raises:
            ValueError: If a handler is already registered for the name.
        """
        if name in self._handlers:
            raise ValueError(f"Operation '{name}' is already registered")
        self._handlers[name] = handler

    def has_operation(self, name: str) -> bool:
        """Check if an operation is registered."""
        return name in self._handlers

    def get_handler(self, name: str) -> OperationHandler | None:
        """Get the handler for an operation by name."""
        return self._handlers.get(name)

    def list_operations(self, namespace: str | None = None) -> list[str]:
        """
        List registered operations, optionally filtered by namespace.

        Args:
            namespace: Optional namespace ("update") to filter by.
        """
        if namespace is None:
            return list(self._handlers)

        return [name for name in self._handlers if name.startswith(f"{namespace}.")]

    async def invoke(
        self,
        name: str,
        ctx: UpdateContext,
        params: dict[str, Any],
    ) -> Any:
        """
        Invoke an operation handler by name.

        Args:
            name: Operation name to invoke.
            ctx: UpdateContext for the request.
            params: Parameters to pass to the handler.

        Returns:
            The handler's return value.

        Raises:
            UpdateError: If the operation is not found or the handler raised an
                UpdateError. Other exceptions are wrapped in InternalError.
        """
        handler = self.get_handler(name)
        if handler is None:
            raise UpdateError(
                error_code="not_found",
                message=f"Operation '{name}' is not registered",
                details={"operation": name},
            )

        try:
            return await handler(ctx, params)
        except UpdateError:
            raise
        except Exception as e:
            raise InternalError(
                message=f"Internal error in operation '{name}': {e!s}",
                details={"operation": name, "exception_type": type(e).__name__},
            ) from e

    def __contains__(self, name: str) -> bool:
        """Check if an operation is registered (for 'in' operator)."""
        return name in self._handlers

    def __len__(self) -> int:
        """Return the number of registered operations."""
        return len(self._handlers)
