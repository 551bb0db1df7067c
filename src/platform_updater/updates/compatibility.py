"""
Extension compatibility classification and deactivation selection.

The evaluator classifies every installed extension against the target
version. The selection helpers turn those records into the ordered list a
deactivation sequence walks with its offset.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from platform_updater.errors import InvalidArgumentError
from platform_updater.updates.oracle import UpdateInfo


class ExtensionCompatibilityStatus(str, Enum):
    """Compatibility of an extension with the target version."""

    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"
    UNKNOWN = "unknown"


class DeactivationFilter(str, Enum):
    """
    Which extensions a deactivation sequence switches off.

    - notCompatible: extensions known to be incompatible
    - unknown: incompatible extensions and those without compatibility data
    - all: every installed extension
    """

    NOT_COMPATIBLE = "notCompatible"
    UNKNOWN = "unknown"
    ALL = "all"


DEFAULT_DEACTIVATION_FILTER = DeactivationFilter.NOT_COMPATIBLE

_ELIGIBLE_STATUSES: dict[DeactivationFilter, frozenset[ExtensionCompatibilityStatus]] = {
    DeactivationFilter.NOT_COMPATIBLE: frozenset(
        {ExtensionCompatibilityStatus.INCOMPATIBLE}
    ),
    DeactivationFilter.UNKNOWN: frozenset(
        {
            ExtensionCompatibilityStatus.INCOMPATIBLE,
            ExtensionCompatibilityStatus.UNKNOWN,
        }
    ),
    DeactivationFilter.ALL: frozenset(ExtensionCompatibilityStatus),
}


class InstalledExtension(BaseModel):
    """
    An extension as reported by the extension registry.

    Attributes:
        identifier: Unique extension name.
        active: Whether the extension is currently active.
        version: Installed extension version, if known.
    """

    identifier: str = Field(..., min_length=1, description="Unique extension name")
    active: bool = Field(default=True, description="Whether the extension is active")
    version: str | None = Field(default=None, description="Installed version")


class ExtensionRecord(BaseModel):
    """
    An installed extension classified against the target version.

    Attributes:
        identifier: Unique extension name.
        currently_active: Whether the extension was active when evaluated.
        compatibility_status: Compatibility with the target version.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Unique extension name")
    currently_active: bool = Field(..., description="Active when evaluated")
    compatibility_status: ExtensionCompatibilityStatus = Field(
        ...,
        description="Compatibility with the target version",
    )


def parse_deactivation_filter(
    value: DeactivationFilter | str | None,
    default: DeactivationFilter = DEFAULT_DEACTIVATION_FILTER,
) -> DeactivationFilter:
    """
    Resolve a caller-supplied deactivation filter.

    Args:
        value: Filter enum, wire string, or None/empty for the default.
        default: Filter used when value is omitted.

    Returns:
        The DeactivationFilter.

    Raises:
        InvalidArgumentError: If value is not a known filter.
    """
    if value is None or value == "":
        return default
    if isinstance(value, DeactivationFilter):
        return value

    try:
        return DeactivationFilter(value)
    except ValueError as e:
        raise InvalidArgumentError(
            f"Unknown deactivation filter: {value}",
            details={
                "deactivation_filter": value,
                "valid_filters": [f.value for f in DeactivationFilter],
            },
        ) from e


class CompatibilityEvaluator:
    """
    Classifies installed extensions against a target version.

    Pure: the result depends only on the compatibility map and the installed
    extensions passed in. Extensions without an entry in the map are
    classified as unknown; whether unknown extensions get deactivated is up to
    the deactivation filter.
    """

    def evaluate(
        self,
        update_info: UpdateInfo,
        installed: Iterable[InstalledExtension],
    ) -> list[ExtensionRecord]:
        """
        Classify every installed extension exactly once.

        Args:
            update_info: Release whose compatibility map is used.
            installed: Installed extensions.

        Returns:
            One ExtensionRecord per installed extension, in input order.

        Raises:
            InvalidArgumentError: If an identifier appears more than once.
        """
        return self.evaluate_map(update_info.extension_compatibility, installed)

    def evaluate_map(
        self,
        compatibility: Mapping[str, bool],
        installed: Iterable[InstalledExtension],
    ) -> list[ExtensionRecord]:
        """Classify installed extensions against a raw compatibility map."""
        records: list[ExtensionRecord] = []
        seen: set[str] = set()

        for extension in installed:
            if extension.identifier in seen:
                raise InvalidArgumentError(
                    f"Extension '{extension.identifier}' is installed more than once",
                    details={"extension": extension.identifier},
                )
            seen.add(extension.identifier)

            records.append(
                ExtensionRecord(
                    identifier=extension.identifier,
                    currently_active=extension.active,
                    compatibility_status=_classify(compatibility, extension.identifier),
                )
            )

        return records


def _classify(
    compatibility: Mapping[str, bool], identifier: str
) -> ExtensionCompatibilityStatus:
    if identifier not in compatibility:
        return ExtensionCompatibilityStatus.UNKNOWN
    if compatibility[identifier]:
        return ExtensionCompatibilityStatus.COMPATIBLE
    return ExtensionCompatibilityStatus.INCOMPATIBLE


def matches_filter(record: ExtensionRecord, deactivation_filter: DeactivationFilter) -> bool:
    """Return True if the record is eligible for deactivation under the filter."""
    return record.compatibility_status in _ELIGIBLE_STATUSES[deactivation_filter]


def select_for_deactivation(
    records: Iterable[ExtensionRecord],
    deactivation_filter: DeactivationFilter,
) -> list[ExtensionRecord]:
    """
    Select and order the records a deactivation sequence walks.

    The active flag is not consulted: the selection and the sequence total
    stay fixed while batches switch extensions off. Records are sorted by
    identifier; the offset indexes into this list.
    """
    eligible = [r for r in records if matches_filter(r, deactivation_filter)]
    return sorted(eligible, key=lambda r: r.identifier)
