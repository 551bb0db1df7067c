"""
Batched, resumable extension deactivation.

A deactivation sequence is driven by the caller: each call processes one
batch starting at the caller-supplied offset and reports either that more
work remains (with the new offset) or that the sequence is finished. No
sequence state is kept between calls.

Sequence states:
- not started: before the first call (offset 0)
- in_progress: offset < total
- finished: offset == total
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from platform_updater.errors import DeactivationError, InvalidArgumentError
from platform_updater.logging import get_logger
from platform_updater.updates.compatibility import (
    DeactivationFilter,
    ExtensionRecord,
    InstalledExtension,
    select_for_deactivation,
)

if TYPE_CHECKING:
    from platform_updater.updates.settings import UpdateSettingsStore

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50


# =============================================================================
# Step outcome
# =============================================================================


class StepKind(str, Enum):
    """Discriminator of a StepOutcome."""

    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class StepOutcome(BaseModel):
    """
    Result of one deactivation batch call.

    A tagged union of two variants, both carrying offset and total:
    - IN_PROGRESS: offset < total, call again with the returned offset
    - FINISHED: offset == total

    Attributes:
        kind: Variant tag.
        offset: Offset to resume from (or total when finished).
        total: Number of extensions the sequence deactivates.
    """

    model_config = ConfigDict(frozen=True)

    kind: StepKind = Field(..., description="Variant tag")
    offset: int = Field(..., ge=0, description="Offset to resume from")
    total: int = Field(..., ge=0, description="Extensions in the sequence")

    @model_validator(mode="after")
    def check_offset(self) -> StepOutcome:
        """Enforce offset <= total and offset == total iff finished."""
        if self.offset > self.total:
            raise ValueError(f"offset {self.offset} exceeds total {self.total}")
        if (self.kind == StepKind.FINISHED) != (self.offset == self.total):
            raise ValueError(
                f"{self.kind.value} outcome inconsistent with offset "
                f"{self.offset} and total {self.total}"
            )
        return self

    @classmethod
    def in_progress(cls, offset: int, total: int) -> StepOutcome:
        """Create an IN_PROGRESS outcome."""
        return cls(kind=StepKind.IN_PROGRESS, offset=offset, total=total)

    @classmethod
    def finished(cls, total: int) -> StepOutcome:
        """Create a FINISHED outcome (offset == total)."""
        return cls(kind=StepKind.FINISHED, offset=total, total=total)

    @property
    def is_finished(self) -> bool:
        """Whether the sequence is complete."""
        return self.kind == StepKind.FINISHED

    def to_response(self) -> dict[str, Any]:
        """
        Serialize for the deactivation operation.

        `valid` is True while more batches remain and False once finished.
        """
        return {
            "valid": not self.is_finished,
            "offset": self.offset,
            "total": self.total,
            "success": True,
        }


# =============================================================================
# Extension lifecycle
# =============================================================================


class ExtensionLifecycle(ABC):
    """
    Access to the active-extension registry.

    The registry is the single shared mutable resource of an update
    preparation. Only the deactivation step mutates it, and only for the
    extensions in its current batch.
    """

    @abstractmethod
    def list_installed(self) -> list[InstalledExtension]:
        """Return all installed extensions."""

    @abstractmethod
    def is_active(self, identifier: str) -> bool:
        """Return whether the extension is currently active."""

    @abstractmethod
    async def deactivate(self, identifier: str) -> None:
        """
        Deactivate an extension.

        Deactivating an already inactive extension must be a no-op.
        """


class ExtensionRegistry(ExtensionLifecycle):
    """In-memory extension registry."""

    def __init__(self, extensions: Iterable[InstalledExtension] | None = None) -> None:
        self._extensions: dict[str, InstalledExtension] = {}
        for extension in extensions or []:
            self.install(extension)

    def install(self, extension: InstalledExtension) -> None:
        """Add an extension to the registry."""
        if extension.identifier in self._extensions:
            raise InvalidArgumentError(
                f"Extension '{extension.identifier}' is already installed",
                details={"extension": extension.identifier},
            )
        self._extensions[extension.identifier] = extension.model_copy()

    def list_installed(self) -> list[InstalledExtension]:
        return [e.model_copy() for e in self._extensions.values()]

    def is_active(self, identifier: str) -> bool:
        return self._get(identifier).active

    async def deactivate(self, identifier: str) -> None:
        extension = self._get(identifier)
        if not extension.active:
            return
        extension.active = False
        logger.debug("Extension deactivated", extra={"extension": identifier})

    def _get(self, identifier: str) -> InstalledExtension:
        try:
            return self._extensions[identifier]
        except KeyError:
            raise InvalidArgumentError(
                f"Extension '{identifier}' is not installed",
                details={"extension": identifier},
            ) from None


# =============================================================================
# Deactivation step
# =============================================================================


class DeactivateExtensionsStep:
    """
    Deactivates one batch of extensions per run() call.

    The records passed in are filtered and ordered by identifier, giving the
    list the offset indexes into. The filter and the record set must stay
    the same for every call of one sequence.

    Attributes:
        deactivation_filter: Filter selecting the extensions to deactivate.
        batch_size: Extensions deactivated per call.
    """

    def __init__(
        self,
        records: Iterable[ExtensionRecord],
        deactivation_filter: DeactivationFilter,
        lifecycle: ExtensionLifecycle,
        batch_size: int = DEFAULT_BATCH_SIZE,
        settings_store: UpdateSettingsStore | None = None,
    ) -> None:
        """
        Initialize the step.

        Args:
            records: Classified extensions.
            deactivation_filter: Filter selecting the extensions to deactivate.
            lifecycle: Registry used to deactivate extensions.
            batch_size: Extensions deactivated per call.
            settings_store: Optional store recording switched-off extensions.
        """
        if batch_size < 1:
            raise InvalidArgumentError(
                "Batch size must be at least 1",
                details={"batch_size": batch_size},
            )

        self.deactivation_filter = deactivation_filter
        self.batch_size = batch_size
        self._lifecycle = lifecycle
        self._settings_store = settings_store
        self._selection = select_for_deactivation(records, deactivation_filter)

    @property
    def total(self) -> int:
        """Number of extensions the sequence deactivates."""
        return len(self._selection)

    @property
    def selection(self) -> list[ExtensionRecord]:
        """The ordered extensions the sequence walks."""
        return list(self._selection)

    async def run(self, offset: int) -> StepOutcome:
        """
        Deactivate the batch starting at offset.

        Args:
            offset: Continuation token returned by the previous call (0 to
                start).

        Returns:
            IN_PROGRESS with the new offset, or FINISHED.

        Raises:
            InvalidArgumentError: If offset is negative or beyond total.
            DeactivationError: If any extension in the batch fails to
                deactivate. The offset is not advanced.
        """
        total = self.total

        if offset < 0 or offset > total:
            raise InvalidArgumentError(
                f"Offset {offset} outside of sequence bounds 0..{total}",
                details={
                    "offset": offset,
                    "total": total,
                    "filter": self.deactivation_filter.value,
                },
            )

        if total == 0:
            logger.info(
                "No extensions match the deactivation filter",
                extra={"filter": self.deactivation_filter.value},
            )
            return StepOutcome.finished(0)

        batch = self._selection[offset : offset + self.batch_size]

        if self._settings_store is not None:
            active = [r.identifier for r in batch if self._lifecycle.is_active(r.identifier)]
            if active:
                self._settings_store.record_deactivated(active)

        for record in batch:
            try:
                await self._lifecycle.deactivate(record.identifier)
            except Exception as e:
                logger.error(
                    f"Failed to deactivate extension {record.identifier}: {e}",
                    extra={
                        "extension": record.identifier,
                        "offset": offset,
                        "total": total,
                    },
                )
                raise DeactivationError(
                    extension=record.identifier,
                    offset=offset,
                    details={"total": total, "error": str(e)},
                ) from e

        new_offset = min(offset + self.batch_size, total)

        logger.info(
            f"Deactivated extensions {offset}..{new_offset} of {total}",
            extra={
                "offset": new_offset,
                "total": total,
                "filter": self.deactivation_filter.value,
            },
        )

        if new_offset < total:
            return StepOutcome.in_progress(new_offset, total)
        return StepOutcome.finished(total)
