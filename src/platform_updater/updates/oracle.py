"""
Version oracle: where the latest release and its extension compatibility
metadata come from.

The oracle is an external collaborator. This module defines the UpdateInfo
model it produces, the VersionOracle interface, an httpx-based HTTP
implementation and a static implementation for embedders that already hold
the release metadata.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from platform_updater.errors import InvalidArgumentError, TransportError
from platform_updater.logging import get_logger
from platform_updater.updates.version import parse_semantic_version

if TYPE_CHECKING:
    from platform_updater.config import UpdatesConfig

logger = get_logger(__name__)


class UpdateInfo(BaseModel):
    """
    The latest available release for one check cycle.

    Immutable once fetched; every other component reads it.

    Attributes:
        version: Target version of the release.
        title: Optional release title.
        release_date: Optional ISO 8601 release date.
        changelog: Optional release notes.
        extension_compatibility: Extension identifier -> whether the
            extension is compatible with the target version. Identifiers
            missing from the map have unknown compatibility.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(
        ...,
        description="Target version of the release",
    )
    title: str | None = Field(
        default=None,
        description="Release title",
    )
    release_date: str | None = Field(
        default=None,
        description="ISO 8601 release date",
    )
    changelog: str | None = Field(
        default=None,
        description="Release notes",
    )
    extension_compatibility: dict[str, bool] = Field(
        default_factory=dict,
        description="Extension identifier to compatibility at the target version",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate the target version is a semantic version."""
        try:
            parse_semantic_version(v)
        except InvalidArgumentError as e:
            raise ValueError(e.message) from e
        return v


class VersionOracle(ABC):
    """
    Abstract source of release information.

    Implementations raise TransportError when the release source cannot be
    reached or returns something unusable.
    """

    @abstractmethod
    async def check_for_updates(self) -> UpdateInfo:
        """
        Fetch the latest available release.

        Returns:
            UpdateInfo describing the latest release.

        Raises:
            TransportError: If the release source is unreachable.
        """


class StaticVersionOracle(VersionOracle):
    """Oracle returning a fixed UpdateInfo."""

    def __init__(self, update_info: UpdateInfo) -> None:
        self._update_info = update_info

    async def check_for_updates(self) -> UpdateInfo:
        return self._update_info


class HttpVersionOracle(VersionOracle):
    """
    Oracle querying a release metadata endpoint over HTTP.

    The endpoint is called with the running version and the release channel
    as query parameters and must answer with a JSON object matching
    UpdateInfo.

    Attributes:
        api_url: Release metadata endpoint.
        current_version: Version of the running platform.
        channel: Release channel.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_url: str,
        current_version: str,
        channel: str = "stable",
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the HttpVersionOracle.

        Args:
            api_url: Release metadata endpoint.
            current_version: Version of the running platform.
            channel: Release channel to query.
            timeout: Request timeout in seconds.
        """
        self.api_url = api_url
        self.current_version = current_version
        self.channel = channel
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: UpdatesConfig) -> HttpVersionOracle:
        """Create an oracle from an UpdatesConfig."""
        return cls(
            api_url=config.api_url,
            current_version=config.current_version,
            channel=config.channel,
            timeout=config.request_timeout_seconds,
        )

    async def check_for_updates(self) -> UpdateInfo:
        """
        Fetch the latest release from the endpoint.

        Raises:
            TransportError: On network errors, non-2xx responses or payloads
                that are not a valid UpdateInfo.
        """
        params = {"current": self.current_version, "channel": self.channel}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.api_url, params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Release endpoint returned HTTP {e.response.status_code}",
                details={"url": self.api_url, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"Release endpoint unreachable: {e}",
                details={"url": self.api_url, "error": str(e)},
            ) from e
        except ValueError as e:
            raise TransportError(
                "Release endpoint returned invalid JSON",
                details={"url": self.api_url, "error": str(e)},
            ) from e

        try:
            update_info = UpdateInfo.model_validate(payload)
        except ValidationError as e:
            raise TransportError(
                "Release endpoint returned an invalid release description",
                details={"url": self.api_url, "errors": [err["msg"] for err in e.errors()]},
            ) from e

        logger.debug(
            "Fetched release information",
            extra={"target_version": update_info.version, "channel": self.channel},
        )
        return update_info
