"""
Tests for the update preparation orchestrator.

Tests cover:
- Update availability checks
- Pre-phase event dispatch and veto on offset 0
- Batched deactivation across calls
- Runtime reload and post-phase event on the reloaded runtime
- Failure handling (deactivation, reload, transport)
"""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest

from platform_updater.config import UpdatesConfig
from platform_updater.errors import (
    DeactivationError,
    InvalidArgumentError,
    ReloadError,
    TransportError,
    UpdateAborted,
)
from platform_updater.updates.compatibility import (
    CompatibilityEvaluator,
    ExtensionCompatibilityStatus,
    InstalledExtension,
)
from platform_updater.updates.events import (
    HandlerResult,
    PhaseEventBus,
    UpdateContext,
    UpdatePostPrepareEvent,
    UpdatePrePrepareEvent,
)
from platform_updater.updates.oracle import StaticVersionOracle, UpdateInfo
from platform_updater.updates.orchestrator import UpdateOrchestrator
from platform_updater.updates.requirements import (
    LicenseCheck,
    RequirementsChecker,
)
from platform_updater.updates.runtime import ExtensionRuntime
from platform_updater.updates.settings import UpdateSettingsStore
from platform_updater.updates.steps import ExtensionRegistry, StepOutcome

IDENTIFIERS = [f"ext-{i:03d}" for i in range(120)]

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def update_info() -> UpdateInfo:
    """Release 6.5.0 marking every test extension incompatible."""
    return UpdateInfo(
        version="6.5.0",
        title="Platform 6.5",
        extension_compatibility={i: False for i in IDENTIFIERS},
    )


@pytest.fixture
def registry() -> ExtensionRegistry:
    """Registry with 120 active extensions."""
    return ExtensionRegistry(InstalledExtension(identifier=i) for i in IDENTIFIERS)


@pytest.fixture
def bus() -> PhaseEventBus:
    """Event bus of the running runtime."""
    return PhaseEventBus()


@pytest.fixture
def runtime(bus: PhaseEventBus) -> ExtensionRuntime:
    """Runtime with every test extension loaded."""
    return ExtensionRuntime(event_bus=bus, extensions=IDENTIFIERS)


@pytest.fixture
def config() -> UpdatesConfig:
    """Update configuration for version 6.4.0."""
    return UpdatesConfig(current_version="6.4.0", batch_size=50)


def _orchestrator(
    update_info: UpdateInfo,
    registry: ExtensionRegistry,
    runtime: ExtensionRuntime,
    config: UpdatesConfig,
    **kwargs,
) -> UpdateOrchestrator:
    return UpdateOrchestrator(
        oracle=StaticVersionOracle(update_info),
        requirements=kwargs.pop("requirements", RequirementsChecker()),
        lifecycle=registry,
        runtime=runtime,
        config=config,
        **kwargs,
    )


@pytest.fixture
def orchestrator(
    update_info: UpdateInfo,
    registry: ExtensionRegistry,
    runtime: ExtensionRuntime,
    config: UpdatesConfig,
) -> UpdateOrchestrator:
    """Orchestrator over the default fixtures."""
    return _orchestrator(update_info, registry, runtime, config)


# =============================================================================
# Check Phase Tests
# =============================================================================


class TestCheckForUpdate:
    """Tests for UpdateOrchestrator.check_for_update()."""

    @pytest.mark.asyncio
    async def test_newer_release(self, orchestrator: UpdateOrchestrator) -> None:
        """Test a newer release is returned."""
        update_info = await orchestrator.check_for_update()

        assert update_info is not None
        assert update_info.version == "6.5.0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("current", ["6.5.0", "6.6.0"])
    async def test_not_newer(
        self,
        current: str,
        update_info: UpdateInfo,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
    ) -> None:
        """Test no update is reported when running the same or a later version."""
        orchestrator = _orchestrator(
            update_info, registry, runtime, UpdatesConfig(current_version=current)
        )

        assert await orchestrator.check_for_update() is None

    @pytest.mark.asyncio
    async def test_disabled(
        self, update_info: UpdateInfo, registry: ExtensionRegistry, runtime: ExtensionRuntime
    ) -> None:
        """Test disabled update checks never contact the oracle."""
        oracle = mock.AsyncMock()
        orchestrator = UpdateOrchestrator(
            oracle=oracle,
            requirements=RequirementsChecker(),
            lifecycle=registry,
            runtime=runtime,
            config=UpdatesConfig(current_version="6.4.0", disable_update_check=True),
        )

        assert await orchestrator.check_for_update() is None
        oracle.check_for_updates.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_propagates(
        self, registry: ExtensionRegistry, runtime: ExtensionRuntime, config: UpdatesConfig
    ) -> None:
        """Test transport failures are surfaced unchanged."""
        oracle = mock.AsyncMock()
        oracle.check_for_updates.side_effect = TransportError("unreachable")
        orchestrator = UpdateOrchestrator(
            oracle=oracle,
            requirements=RequirementsChecker(),
            lifecycle=registry,
            runtime=runtime,
            config=config,
        )

        with pytest.raises(TransportError):
            await orchestrator.check_for_update()


class TestCheckPhases:
    """Tests for requirement and compatibility checks."""

    def test_check_requirements(
        self,
        update_info: UpdateInfo,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
    ) -> None:
        """Test requirement results are returned as produced by the checker."""
        orchestrator = _orchestrator(
            update_info,
            registry,
            runtime,
            config,
            requirements=RequirementsChecker([LicenseCheck(lambda host: False)]),
        )

        results = orchestrator.check_requirements()

        assert [(r.name, r.passed) for r in results] == [("license", False)]

    @pytest.mark.asyncio
    async def test_evaluate_compatibility(self, orchestrator: UpdateOrchestrator) -> None:
        """Test every installed extension is classified."""
        records = await orchestrator.evaluate_compatibility()

        assert len(records) == 120
        assert {r.compatibility_status for r in records} == {
            ExtensionCompatibilityStatus.INCOMPATIBLE
        }


# =============================================================================
# Deactivation Sequence Tests
# =============================================================================


class TestRunDeactivationBatch:
    """Tests for UpdateOrchestrator.run_deactivation_batch()."""

    @pytest.mark.asyncio
    async def test_full_sequence(
        self,
        orchestrator: UpdateOrchestrator,
        registry: ExtensionRegistry,
        bus: PhaseEventBus,
        runtime: ExtensionRuntime,
    ) -> None:
        """Test 0 -> 50 -> 100 -> finished with events at both ends."""
        pre_events: list[UpdatePrePrepareEvent] = []
        post_events: list[UpdatePostPrepareEvent] = []
        bus.subscribe(UpdatePrePrepareEvent, pre_events.append)
        bus.subscribe(UpdatePostPrepareEvent, post_events.append)

        first = await orchestrator.run_deactivation_batch(0)
        second = await orchestrator.run_deactivation_batch(first.offset)
        assert post_events == []
        third = await orchestrator.run_deactivation_batch(second.offset)

        assert [first, second, third] == [
            StepOutcome.in_progress(50, 120),
            StepOutcome.in_progress(100, 120),
            StepOutcome.finished(120),
        ]
        assert len(pre_events) == 1
        assert pre_events[0].target_version == "6.5.0"
        assert len(post_events) == 1
        assert runtime.current.generation == 1
        assert all(not registry.is_active(i) for i in IDENTIFIERS)

    @pytest.mark.asyncio
    async def test_pre_event_only_at_offset_zero(
        self, orchestrator: UpdateOrchestrator, bus: PhaseEventBus
    ) -> None:
        """Test resumed calls do not dispatch the pre-phase event."""
        pre_events: list[UpdatePrePrepareEvent] = []
        bus.subscribe(UpdatePrePrepareEvent, pre_events.append)

        await orchestrator.run_deactivation_batch(50)

        assert pre_events == []

    @pytest.mark.asyncio
    async def test_veto_prevents_deactivation(
        self,
        update_info: UpdateInfo,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
        bus: PhaseEventBus,
    ) -> None:
        """Test a pre-phase veto aborts before any extension is touched."""
        evaluator = mock.Mock(wraps=CompatibilityEvaluator())
        orchestrator = _orchestrator(
            update_info, registry, runtime, config, evaluator=evaluator
        )
        bus.subscribe(
            UpdatePrePrepareEvent,
            lambda e: HandlerResult.veto("backup running"),
            source="SwagBackup",
        )

        with pytest.raises(UpdateAborted) as exc_info:
            await orchestrator.run_deactivation_batch(0)

        assert exc_info.value.reason == "backup running"
        assert all(registry.is_active(i) for i in IDENTIFIERS)
        evaluator.evaluate.assert_not_called()
        assert runtime.current.generation == 0

    @pytest.mark.asyncio
    async def test_empty_selection_still_fires_events(
        self,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
        bus: PhaseEventBus,
    ) -> None:
        """Test total 0 finishes after the pre-phase event and reloads."""
        compatible = UpdateInfo(
            version="6.5.0", extension_compatibility={i: True for i in IDENTIFIERS}
        )
        orchestrator = _orchestrator(compatible, registry, runtime, config)
        calls: list[str] = []
        bus.subscribe(UpdatePrePrepareEvent, lambda e: calls.append("pre"))
        bus.subscribe(UpdatePostPrepareEvent, lambda e: calls.append("post"))

        outcome = await orchestrator.run_deactivation_batch(0)

        assert outcome == StepOutcome.finished(0)
        assert outcome.to_response() == {
            "valid": False,
            "offset": 0,
            "total": 0,
            "success": True,
        }
        assert calls == ["pre", "post"]
        assert all(registry.is_active(i) for i in IDENTIFIERS)

    @pytest.mark.asyncio
    async def test_post_event_on_reloaded_runtime(
        self, orchestrator: UpdateOrchestrator, bus: PhaseEventBus, runtime: ExtensionRuntime
    ) -> None:
        """Test extension handlers no longer receive the post-phase event."""
        calls: list[str] = []
        bus.subscribe(UpdatePostPrepareEvent, lambda e: calls.append("core"))
        bus.subscribe(
            UpdatePostPrepareEvent, lambda e: calls.append("extension"), source="ext-001"
        )

        await orchestrator.run_full_deactivation()

        assert calls == ["core"]
        assert runtime.current.extensions == frozenset()

    @pytest.mark.asyncio
    async def test_deactivation_failure_and_retry(
        self,
        update_info: UpdateInfo,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
    ) -> None:
        """Test a failing extension blocks progress until a retry succeeds."""

        class FlakyRegistry(ExtensionRegistry):
            failing = {"ext-087"}

            async def deactivate(self, identifier: str) -> None:
                if identifier in self.failing:
                    raise RuntimeError("still in use")
                await super().deactivate(identifier)

        registry = FlakyRegistry(InstalledExtension(identifier=i) for i in IDENTIFIERS)
        orchestrator = _orchestrator(update_info, registry, runtime, config)

        first = await orchestrator.run_deactivation_batch(0)
        with pytest.raises(DeactivationError) as exc_info:
            await orchestrator.run_deactivation_batch(first.offset)

        assert exc_info.value.extension == "ext-087"
        assert exc_info.value.offset == 50

        registry.failing = set()
        retry = await orchestrator.run_deactivation_batch(50)
        assert retry == StepOutcome.in_progress(100, 120)

    @pytest.mark.asyncio
    async def test_reload_failure(
        self,
        orchestrator: UpdateOrchestrator,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        bus: PhaseEventBus,
    ) -> None:
        """Test a reload failure keeps deactivations and skips the post event."""
        post_events: list[UpdatePostPrepareEvent] = []
        bus.subscribe(UpdatePostPrepareEvent, post_events.append)

        await orchestrator.run_deactivation_batch(0)
        await orchestrator.run_deactivation_batch(50)
        with mock.patch.object(
            ExtensionRuntime, "_build_handle", side_effect=RuntimeError("boot failed")
        ):
            with pytest.raises(ReloadError):
                await orchestrator.run_deactivation_batch(100)

        assert all(not registry.is_active(i) for i in IDENTIFIERS)
        assert post_events == []
        assert runtime.current.generation == 0

    @pytest.mark.asyncio
    async def test_runs_against_reported_release(
        self, update_info: UpdateInfo, registry: ExtensionRegistry, runtime: ExtensionRuntime
    ) -> None:
        """Test the sequence prepares whatever release the oracle reports."""
        orchestrator = _orchestrator(
            update_info, registry, runtime, UpdatesConfig(current_version="6.5.0")
        )

        outcomes = await orchestrator.run_full_deactivation()

        assert outcomes[-1] == StepOutcome.finished(120)
        assert all(not registry.is_active(i) for i in IDENTIFIERS)

    @pytest.mark.asyncio
    async def test_rc_channel_upgrade(
        self, registry: ExtensionRegistry, runtime: ExtensionRuntime
    ) -> None:
        """Test rc.10 is seen as newer than rc.2 and its sequence runs."""
        info = UpdateInfo(
            version="6.6.0-rc.10",
            extension_compatibility={i: False for i in IDENTIFIERS},
        )
        orchestrator = _orchestrator(
            info,
            registry,
            runtime,
            UpdatesConfig(current_version="6.6.0-rc.2", channel="rc"),
        )

        update = await orchestrator.check_for_update()
        first = await orchestrator.run_deactivation_batch(0)

        assert update is not None
        assert update.version == "6.6.0-rc.10"
        assert first == StepOutcome.in_progress(50, 120)

    @pytest.mark.asyncio
    async def test_configured_default_filter(
        self, registry: ExtensionRegistry, runtime: ExtensionRuntime
    ) -> None:
        """Test the configured filter applies when the caller omits one."""
        info = UpdateInfo(
            version="6.5.0", extension_compatibility={i: True for i in IDENTIFIERS}
        )
        config = UpdatesConfig(current_version="6.4.0", default_deactivation_filter="all")
        orchestrator = _orchestrator(info, registry, runtime, config)

        outcome = await orchestrator.run_deactivation_batch(0)

        assert outcome == StepOutcome.in_progress(50, 120)

    @pytest.mark.asyncio
    async def test_invalid_filter(self, orchestrator: UpdateOrchestrator) -> None:
        """Test an unknown filter is rejected."""
        with pytest.raises(InvalidArgumentError):
            await orchestrator.run_deactivation_batch(0, deactivation_filter="broken")

    @pytest.mark.asyncio
    async def test_offset_beyond_total(self, orchestrator: UpdateOrchestrator) -> None:
        """Test offsets beyond the sequence are rejected."""
        with pytest.raises(InvalidArgumentError):
            await orchestrator.run_deactivation_batch(500)

    @pytest.mark.asyncio
    async def test_not_compatible_filter_skips_unknown(
        self,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
    ) -> None:
        """Test extensions missing from the release map are kept by default."""
        info = UpdateInfo(version="6.5.0", extension_compatibility={"ext-000": False})
        orchestrator = _orchestrator(info, registry, runtime, config)

        outcome = await orchestrator.run_deactivation_batch(
            0, deactivation_filter="notCompatible"
        )
        assert outcome == StepOutcome.finished(1)
        assert registry.is_active("ext-001") is True

    @pytest.mark.asyncio
    async def test_context_passed_to_events(
        self, orchestrator: UpdateOrchestrator, bus: PhaseEventBus
    ) -> None:
        """Test the caller's context reaches the phase events."""
        received: list[UpdatePrePrepareEvent] = []
        bus.subscribe(UpdatePrePrepareEvent, received.append)
        context = UpdateContext(request_id="admin-42")

        await orchestrator.run_deactivation_batch(0, context=context)

        assert received[0].context is context

    @pytest.mark.asyncio
    async def test_settings_store(
        self,
        tmp_path: Path,
        update_info: UpdateInfo,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
    ) -> None:
        """Test the store records switched-off extensions and the old version."""
        store = UpdateSettingsStore(tmp_path / "settings.json")
        orchestrator = _orchestrator(
            update_info, registry, runtime, config, settings_store=store
        )

        await orchestrator.run_full_deactivation()

        settings = store.load()
        assert settings.previous_version == "6.4.0"
        assert settings.deactivated_extensions == IDENTIFIERS


class TestRunFullDeactivation:
    """Tests for UpdateOrchestrator.run_full_deactivation()."""

    @pytest.mark.asyncio
    async def test_returns_every_outcome(self, orchestrator: UpdateOrchestrator) -> None:
        """Test every batch outcome is returned, the last one finished."""
        outcomes = await orchestrator.run_full_deactivation()

        assert [o.offset for o in outcomes] == [50, 100, 120]
        assert outcomes[-1].is_finished

    @pytest.mark.asyncio
    async def test_all_filter(
        self,
        registry: ExtensionRegistry,
        runtime: ExtensionRuntime,
        config: UpdatesConfig,
    ) -> None:
        """Test the all filter deactivates compatible extensions too."""
        info = UpdateInfo(
            version="6.5.0", extension_compatibility={i: True for i in IDENTIFIERS}
        )
        orchestrator = _orchestrator(info, registry, runtime, config)

        outcomes = await orchestrator.run_full_deactivation(deactivation_filter="all")

        assert outcomes[-1] == StepOutcome.finished(120)
        assert all(not registry.is_active(i) for i in IDENTIFIERS)
