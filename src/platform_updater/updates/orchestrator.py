"""
Update preparation orchestrator.

Sequences the phases of a platform self-update before the code replacement
(which happens elsewhere):

1. check_for_update: is a newer release available?
2. check_requirements: are the environment prerequisites met?
3. evaluate_compatibility: which installed extensions work with the release?
4. run_deactivation_batch: deactivate extensions one batch per call. The
   offset-0 call dispatches UpdatePrePrepareEvent first; the call that
   finishes the sequence reloads the runtime without extensions and
   dispatches UpdatePostPrepareEvent on the reloaded runtime.

The orchestrator keeps no sequence state between calls: the offset returned
by one call is the only input needed to resume with the next.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from platform_updater.logging import get_logger
from platform_updater.updates.compatibility import (
    CompatibilityEvaluator,
    DeactivationFilter,
    ExtensionRecord,
    parse_deactivation_filter,
)
from platform_updater.updates.events import (
    UpdateContext,
    UpdatePostPrepareEvent,
    UpdatePrePrepareEvent,
)
from platform_updater.updates.steps import DeactivateExtensionsStep, StepOutcome
from platform_updater.updates.version import is_newer_version

if TYPE_CHECKING:
    from platform_updater.config import UpdatesConfig
    from platform_updater.updates.oracle import UpdateInfo, VersionOracle
    from platform_updater.updates.requirements import (
        RequirementCheckResult,
        RequirementsChecker,
    )
    from platform_updater.updates.runtime import RuntimeReloader
    from platform_updater.updates.settings import UpdateSettingsStore
    from platform_updater.updates.steps import ExtensionLifecycle

logger = get_logger(__name__)


class UpdateOrchestrator:
    """
    Drives the preparation phases of a self-update.

    Only one deactivation sequence may run at a time and its calls must be
    issued sequentially; the orchestrator provides no locking.

    Attributes:
        config: Update configuration (current version, batch size, default
            filter, whether update checks are disabled).
    """

    def __init__(
        self,
        oracle: VersionOracle,
        requirements: RequirementsChecker,
        lifecycle: ExtensionLifecycle,
        runtime: RuntimeReloader,
        config: UpdatesConfig,
        evaluator: CompatibilityEvaluator | None = None,
        settings_store: UpdateSettingsStore | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            oracle: Source of release information.
            requirements: Environment prerequisite checks.
            lifecycle: Extension registry access.
            runtime: Owner of the running runtime.
            config: Update configuration.
            evaluator: Compatibility evaluator (default: CompatibilityEvaluator).
            settings_store: Optional store recording switched-off extensions
                and the version being updated from.
        """
        self.config = config
        self._oracle = oracle
        self._requirements = requirements
        self._lifecycle = lifecycle
        self._runtime = runtime
        self._evaluator = evaluator or CompatibilityEvaluator()
        self._settings_store = settings_store

    @property
    def current_version(self) -> str:
        """Version of the running platform."""
        return self.config.current_version

    @property
    def runtime(self) -> RuntimeReloader:
        """The runtime reloader."""
        return self._runtime

    # -------------------------------------------------------------------------
    # Check phases
    # -------------------------------------------------------------------------

    async def check_for_update(self) -> UpdateInfo | None:
        """
        Check whether a newer release is available.

        Returns:
            UpdateInfo of the newer release, or None when update checks are
            disabled or the running version is not older than the release.

        Raises:
            TransportError: If the release source is unreachable.
        """
        if self.config.disable_update_check:
            logger.info("Update check disabled by configuration")
            return None

        update_info = await self._oracle.check_for_updates()

        if not is_newer_version(update_info.version, self.current_version):
            logger.info(
                f"No update available: running {self.current_version}, "
                f"latest {update_info.version}",
            )
            return None

        logger.info(
            f"Update available: {self.current_version} -> {update_info.version}",
            extra={"target_version": update_info.version},
        )
        return update_info

    def check_requirements(self) -> list[RequirementCheckResult]:
        """Run every environment prerequisite check."""
        return self._requirements.run_checks()

    async def evaluate_compatibility(self) -> list[ExtensionRecord]:
        """
        Classify the installed extensions against the latest release.

        Raises:
            TransportError: If the release source is unreachable.
        """
        update_info = await self._oracle.check_for_updates()
        return self._evaluator.evaluate(update_info, self._lifecycle.list_installed())

    # -------------------------------------------------------------------------
    # Deactivation sequence
    # -------------------------------------------------------------------------

    async def run_deactivation_batch(
        self,
        offset: int = 0,
        deactivation_filter: DeactivationFilter | str | None = None,
        context: UpdateContext | None = None,
    ) -> StepOutcome:
        """
        Process one batch of the deactivation sequence.

        Args:
            offset: 0 to start a sequence, otherwise the offset returned by
                the previous call.
            deactivation_filter: Filter selecting the extensions to
                deactivate. Defaults to the configured filter; must be the
                same for every call of one sequence.
            context: Context passed to the phase events.

        Returns:
            The StepOutcome of this batch.

        Raises:
            TransportError: If the release source is unreachable.
            InvalidArgumentError: If offset or filter is invalid.
            UpdateAborted: If a phase event handler vetoed.
            DeactivationError: If an extension could not be deactivated.
            ReloadError: If the runtime could not be reloaded.
        """
        context = context or UpdateContext()
        resolved_filter = parse_deactivation_filter(
            deactivation_filter,
            default=self.config.default_deactivation_filter,
        )

        update_info = await self._oracle.check_for_updates()

        log_extra = {
            "request_id": context.request_id,
            "offset": offset,
            "filter": resolved_filter.value,
            "target_version": update_info.version,
        }

        if offset == 0:
            logger.info("Starting extension deactivation sequence", extra=log_extra)
            self._runtime.current.event_bus.dispatch(
                UpdatePrePrepareEvent(
                    context=context,
                    current_version=self.current_version,
                    target_version=update_info.version,
                )
            )

        records = self._evaluator.evaluate(update_info, self._lifecycle.list_installed())
        step = DeactivateExtensionsStep(
            records,
            resolved_filter,
            self._lifecycle,
            batch_size=self.config.batch_size,
            settings_store=self._settings_store,
        )

        outcome = await step.run(offset)

        if outcome.is_finished:
            await self._finish_sequence(update_info, context)

        return outcome

    async def _finish_sequence(self, update_info: UpdateInfo, context: UpdateContext) -> None:
        if self._settings_store is not None:
            self._settings_store.record_previous_version(self.current_version)

        # Deactivations are already committed; a reload failure leaves them in place
        reloaded = await self._runtime.reload_without_extensions()

        reloaded.event_bus.dispatch(
            UpdatePostPrepareEvent(
                context=context,
                current_version=self.current_version,
                target_version=update_info.version,
            )
        )

        logger.info(
            "Extension deactivation sequence finished",
            extra={
                "request_id": context.request_id,
                "target_version": update_info.version,
                "generation": reloaded.generation,
            },
        )

    async def run_full_deactivation(
        self,
        deactivation_filter: DeactivationFilter | str | None = None,
        context: UpdateContext | None = None,
    ) -> list[StepOutcome]:
        """
        Drive a deactivation sequence from offset 0 until it finishes.

        This is the polling loop an administration client runs, for callers
        that want the whole sequence in one go.

        Returns:
            The outcome of every batch call, the last one FINISHED.
        """
        context = context or UpdateContext()
        outcomes: list[StepOutcome] = []
        offset = 0

        while True:
            outcome = await self.run_deactivation_batch(
                offset,
                deactivation_filter=deactivation_filter,
                context=context,
            )
            outcomes.append(outcome)
            if outcome.is_finished:
                return outcomes
            offset = outcome.offset
