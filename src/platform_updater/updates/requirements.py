"""
Environment prerequisite checks run before an update is prepared.

Each check is independent: a failing or crashing check never prevents the
others from running, and the checker always returns one result per check.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from platform_updater.logging import get_logger

logger = get_logger(__name__)


class RequirementCheckResult(BaseModel):
    """
    Outcome of one prerequisite check.

    Attributes:
        name: Name of the check.
        passed: Whether the prerequisite is satisfied.
        details: Human-readable explanation.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Name of the check")
    passed: bool = Field(..., description="Whether the prerequisite is satisfied")
    details: str = Field(default="", description="Human-readable explanation")


class RequirementCheck(ABC):
    """A single environment prerequisite."""

    name: str = "requirement"

    @abstractmethod
    def check(self) -> RequirementCheckResult:
        """Run the check and describe the outcome."""


class WritableCheck(RequirementCheck):
    """
    Checks that every configured path exists and is writable.

    The update replaces files in place, so each path must be writable by the
    current process.
    """

    name = "writable"

    def __init__(self, paths: Iterable[Path | str]) -> None:
        self.paths = [Path(p) for p in paths]

    def check(self) -> RequirementCheckResult:
        missing = [str(p) for p in self.paths if not p.exists()]
        read_only = [
            str(p) for p in self.paths if p.exists() and not os.access(p, os.W_OK)
        ]

        if not missing and not read_only:
            return RequirementCheckResult(
                name=self.name,
                passed=True,
                details=f"{len(self.paths)} path(s) writable",
            )

        problems = []
        if missing:
            problems.append(f"missing: {', '.join(missing)}")
        if read_only:
            problems.append(f"not writable: {', '.join(read_only)}")

        return RequirementCheckResult(
            name=self.name,
            passed=False,
            details="; ".join(problems),
        )


class LicenseCheck(RequirementCheck):
    """
    Checks that the platform licence is valid.

    Licence validation itself is done by the caller-supplied validator, which
    receives the licence host and returns True for a valid licence.
    """

    name = "license"

    def __init__(
        self,
        validator: Callable[[str | None], bool],
        license_host: str | None = None,
    ) -> None:
        self.validator = validator
        self.license_host = license_host

    def check(self) -> RequirementCheckResult:
        if self.validator(self.license_host):
            return RequirementCheckResult(
                name=self.name,
                passed=True,
                details=f"Licence valid for {self.license_host or 'this installation'}",
            )
        return RequirementCheckResult(
            name=self.name,
            passed=False,
            details=f"Licence invalid for {self.license_host or 'this installation'}",
        )


class RequirementsChecker:
    """
    Runs every registered prerequisite check.

    Results are returned in registration order. An exception raised by a
    check is logged and reported as a failed result for that check.
    """

    def __init__(self, checks: Iterable[RequirementCheck] | None = None) -> None:
        self._checks: list[RequirementCheck] = list(checks or [])

    @property
    def checks(self) -> list[RequirementCheck]:
        """Get the registered checks."""
        return list(self._checks)

    def add_check(self, check: RequirementCheck) -> None:
        """Register an additional check."""
        self._checks.append(check)

    def run_checks(self) -> list[RequirementCheckResult]:
        """
        Run all checks.

        Returns:
            One RequirementCheckResult per registered check.
        """
        results: list[RequirementCheckResult] = []

        for check in self._checks:
            try:
                result = check.check()
            except Exception as e:
                logger.warning(
                    f"Requirement check '{check.name}' raised: {e}",
                    exc_info=True,
                    extra={"check": check.name},
                )
                result = RequirementCheckResult(
                    name=check.name,
                    passed=False,
                    details=f"Check failed with {type(e).__name__}: {e}",
                )
            results.append(result)

        logger.info(
            "Requirement checks completed",
            extra={
                "passed": sum(1 for r in results if r.passed),
                "failed": sum(1 for r in results if not r.passed),
            },
        )
        return results
