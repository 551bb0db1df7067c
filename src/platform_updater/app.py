"""
Application wiring for the platform updater.

Builds the orchestrator and the operation registry from an AppConfig. The
extension registry and the runtime are owned by the embedding platform and
passed in.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from platform_updater.handlers import register_update_operations
from platform_updater.logging import get_logger, setup_logging
from platform_updater.routing import OperationRegistry
from platform_updater.updates.oracle import HttpVersionOracle
from platform_updater.updates.orchestrator import UpdateOrchestrator
from platform_updater.updates.requirements import (
    LicenseCheck,
    RequirementsChecker,
    WritableCheck,
)

if TYPE_CHECKING:
    from platform_updater.config import AppConfig
    from platform_updater.updates.oracle import VersionOracle
    from platform_updater.updates.runtime import RuntimeReloader
    from platform_updater.updates.settings import UpdateSettingsStore
    from platform_updater.updates.steps import ExtensionLifecycle

logger = get_logger(__name__)


def create_requirements_checker(
    config: AppConfig,
    license_validator: Callable[[str | None], bool] | None = None,
) -> RequirementsChecker:
    """
    Build the prerequisite checks from configuration.

    The writability check always runs; the licence check is added when a
    validator is supplied.
    """
    checker = RequirementsChecker([WritableCheck(config.requirements.writable_paths)])
    if license_validator is not None:
        checker.add_check(
            LicenseCheck(license_validator, license_host=config.requirements.license_host)
        )
    return checker


def create_orchestrator(
    config: AppConfig,
    lifecycle: ExtensionLifecycle,
    runtime: RuntimeReloader,
    *,
    oracle: VersionOracle | None = None,
    license_validator: Callable[[str | None], bool] | None = None,
    settings_store: UpdateSettingsStore | None = None,
) -> UpdateOrchestrator:
    """
    Build an UpdateOrchestrator.

    Args:
        config: Application configuration.
        lifecycle: Extension registry of the platform.
        runtime: Runtime reloader of the platform.
        oracle: Release source (default: HttpVersionOracle from config).
        license_validator: Optional licence validator for the licence check.
        settings_store: Optional store for switched-off extensions.
    """
    return UpdateOrchestrator(
        oracle=oracle or HttpVersionOracle.from_config(config.updates),
        requirements=create_requirements_checker(config, license_validator),
        lifecycle=lifecycle,
        runtime=runtime,
        config=config.updates,
        settings_store=settings_store,
    )


def create_app(
    config: AppConfig,
    lifecycle: ExtensionLifecycle,
    runtime: RuntimeReloader,
    **kwargs,
) -> OperationRegistry:
    """
    Configure logging and return a registry with the update operations.

    Keyword arguments are passed to create_orchestrator().
    """
    setup_logging(config.logging)

    orchestrator = create_orchestrator(config, lifecycle, runtime, **kwargs)
    registry = OperationRegistry()
    register_update_operations(registry, orchestrator)

    logger.info(
        "Platform updater ready",
        extra={
            "current_version": config.updates.current_version,
            "operations": registry.list_operations(),
        },
    )
    return registry
