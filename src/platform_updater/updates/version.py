"""
Semantic version parsing and comparison.

Used to decide whether the release reported by the version oracle is newer
than the running platform.
"""

from __future__ import annotations

import re
from typing import Any

from platform_updater.errors import InvalidArgumentError

# Accepts: 1.0.0, 1.2.3, 2.0.0-beta.1, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def parse_semantic_version(version: str) -> dict[str, Any]:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "6.5.0", "6.6.0-rc.1").

    Returns:
        Dictionary with major, minor, patch, prerelease and buildmetadata.

    Raises:
        InvalidArgumentError: If the version string is invalid.
    """
    if not version:
        raise InvalidArgumentError(
            "Version string cannot be empty",
            details={"version": version},
        )

    if version.startswith("v"):
        raise InvalidArgumentError(
            "Version string must not start with 'v' prefix",
            details={"version": version, "hint": "Use '1.0.0' instead of 'v1.0.0'"},
        )

    match = SEMVER_PATTERN.match(version)
    if not match:
        raise InvalidArgumentError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
            },
        )

    return {
        "major": int(match.group("major")),
        "minor": int(match.group("minor")),
        "patch": int(match.group("patch")),
        "prerelease": match.group("prerelease"),
        "buildmetadata": match.group("buildmetadata"),
    }


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two semantic versions.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidArgumentError: If either version is invalid.
    """
    p1 = parse_semantic_version(v1)
    p2 = parse_semantic_version(v2)

    for key in ("major", "minor", "patch"):
        if p1[key] < p2[key]:
            return -1
        if p1[key] > p2[key]:
            return 1

    # A release sorts after any of its pre-releases
    pre1 = p1["prerelease"]
    pre2 = p2["prerelease"]

    if pre1 is None and pre2 is not None:
        return 1
    if pre1 is not None and pre2 is None:
        return -1
    if pre1 is not None and pre2 is not None:
        return _compare_prerelease(pre1, pre2)

    return 0


def _compare_prerelease(pre1: str, pre2: str) -> int:
    ids1 = pre1.split(".")
    ids2 = pre2.split(".")

    for a, b in zip(ids1, ids2):
        if a == b:
            continue
        # Numeric identifiers compare as integers and sort below alphanumeric ones
        if a.isdigit() and b.isdigit():
            return -1 if int(a) < int(b) else 1
        if a.isdigit():
            return -1
        if b.isdigit():
            return 1
        return -1 if a < b else 1

    if len(ids1) < len(ids2):
        return -1
    if len(ids1) > len(ids2):
        return 1
    return 0


def is_newer_version(candidate: str, current: str) -> bool:
    """Return True if candidate is strictly newer than current."""
    return compare_versions(candidate, current) > 0
