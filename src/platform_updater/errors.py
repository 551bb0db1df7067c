"""
Error types for the platform updater.

This module defines the UpdateError base class and the subclasses raised by
each phase of update preparation. Domain errors should be expressed using
UpdateError (or subclasses) instead of returning ad-hoc status values.

Every phase error records the phase that failed in its details so callers
polling the orchestration operations can tell which step blocked progress.
"""

from __future__ import annotations

from typing import Any

# Phase names recorded in error details
PHASE_REQUEST = "request"
PHASE_CHECK = "check"
PHASE_PRE_PREPARE = "pre_prepare"
PHASE_DEACTIVATE = "deactivate"
PHASE_RELOAD = "reload"
PHASE_POST_PREPARE = "post_prepare"


class UpdateError(Exception):
    """
    Base exception class for update preparation errors.

    UpdateError instances are caught at the operation boundary and serialized
    with to_dict() for the caller.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "unavailable", "aborted", "deactivation_failed", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., phase, extension, offset).

    Example:
        >>> raise UpdateError(
        ...     error_code="invalid_argument",
        ...     message="Offset must not be negative",
        ...     details={"offset": -1},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    @property
    def phase(self) -> str | None:
        """Return the phase recorded in the details, if any."""
        return self.details.get("phase")

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


def _with_phase(phase: str, details: dict[str, Any] | None) -> dict[str, Any]:
    merged = {"phase": phase}
    if details:
        merged.update(details)
    return merged


class InvalidArgumentError(UpdateError):
    """
    Error raised when an operation receives invalid input arguments.

    Used for malformed offsets, unknown deactivation filters and invalid
    version strings.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument",
            message=message,
            details=_with_phase(PHASE_REQUEST, details),
        )


class TransportError(UpdateError):
    """
    Error raised when the remote version check cannot be completed.

    The core does not retry; the error is surfaced to the caller as-is.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransportError."""
        super().__init__(
            error_code="unavailable",
            message=message,
            details=_with_phase(PHASE_CHECK, details),
        )


class UpdateAborted(UpdateError):
    """
    Error raised when a phase event handler vetoes the update.

    A pre-prepare veto is raised before any extension is touched, so the
    sequence never starts.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        handler: str | None = None,
        phase: str = PHASE_PRE_PREPARE,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize an UpdateAborted error."""
        extra = {"reason": reason, "handler": handler}
        if details:
            extra.update(details)
        super().__init__(
            error_code="aborted",
            message=message,
            details=_with_phase(phase, extra),
        )
        self.reason = reason
        self.handler = handler


class DeactivationError(UpdateError):
    """
    Error raised when a single extension fails to deactivate.

    The offset is not advanced, so retrying the same offset re-attempts the
    identical batch.

    Attributes:
        extension: Identifier of the extension that blocked progress.
        offset: Offset of the batch that failed.
    """

    def __init__(
        self,
        extension: str,
        offset: int,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a DeactivationError."""
        extra: dict[str, Any] = {"extension": extension, "offset": offset}
        if details:
            extra.update(details)
        super().__init__(
            error_code="deactivation_failed",
            message=message or f"Failed to deactivate extension '{extension}'",
            details=_with_phase(PHASE_DEACTIVATE, extra),
        )
        self.extension = extension
        self.offset = offset


class ReloadError(UpdateError):
    """
    Error raised when the runtime cannot be rebuilt without extensions.

    Fatal to the sequence. Deactivations already performed are not rolled
    back, so the caller must not assume the system is safe for continued
    operation.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ReloadError."""
        super().__init__(
            error_code="reload_failed",
            message=message,
            details=_with_phase(PHASE_RELOAD, details),
        )


class InternalError(UpdateError):
    """
    Error raised for unexpected internal errors.

    Wraps exceptions that escape an operation handler without being an
    UpdateError.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
