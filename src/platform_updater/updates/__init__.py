"""
Update preparation for the platform updater.

This package implements the phases that precede a platform self-update:
- Version checks against the release source
- Environment prerequisite checks
- Extension compatibility classification
- Batched, resumable extension deactivation
- Pre/post phase events with veto support
- Runtime reload without extensions
"""

from platform_updater.updates.compatibility import (
    CompatibilityEvaluator,
    DeactivationFilter,
    ExtensionCompatibilityStatus,
    ExtensionRecord,
    InstalledExtension,
    parse_deactivation_filter,
    select_for_deactivation,
)
from platform_updater.updates.events import (
    HandlerResult,
    PhaseEventBus,
    UpdateContext,
    UpdatePostPrepareEvent,
    UpdatePrePrepareEvent,
)
from platform_updater.updates.oracle import (
    HttpVersionOracle,
    StaticVersionOracle,
    UpdateInfo,
    VersionOracle,
)
from platform_updater.updates.orchestrator import UpdateOrchestrator
from platform_updater.updates.requirements import (
    LicenseCheck,
    RequirementCheck,
    RequirementCheckResult,
    RequirementsChecker,
    WritableCheck,
)
from platform_updater.updates.runtime import (
    ExtensionRuntime,
    RuntimeHandle,
    RuntimeReloader,
)
from platform_updater.updates.settings import UpdateSettings, UpdateSettingsStore
from platform_updater.updates.steps import (
    DeactivateExtensionsStep,
    ExtensionLifecycle,
    ExtensionRegistry,
    StepKind,
    StepOutcome,
)
from platform_updater.updates.version import compare_versions, parse_semantic_version

__all__ = [
    # Version oracle
    "VersionOracle",
    "HttpVersionOracle",
    "StaticVersionOracle",
    "UpdateInfo",
    "compare_versions",
    "parse_semantic_version",
    # Requirements
    "RequirementsChecker",
    "RequirementCheck",
    "RequirementCheckResult",
    "WritableCheck",
    "LicenseCheck",
    # Compatibility
    "CompatibilityEvaluator",
    "DeactivationFilter",
    "ExtensionCompatibilityStatus",
    "ExtensionRecord",
    "InstalledExtension",
    "parse_deactivation_filter",
    "select_for_deactivation",
    # Deactivation steps
    "DeactivateExtensionsStep",
    "ExtensionLifecycle",
    "ExtensionRegistry",
    "StepKind",
    "StepOutcome",
    "UpdateSettings",
    "UpdateSettingsStore",
    # Events
    "PhaseEventBus",
    "HandlerResult",
    "UpdateContext",
    "UpdatePrePrepareEvent",
    "UpdatePostPrepareEvent",
    # Runtime
    "RuntimeReloader",
    "RuntimeHandle",
    "ExtensionRuntime",
    # Orchestration
    "UpdateOrchestrator",
]
