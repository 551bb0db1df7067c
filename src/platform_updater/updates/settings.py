"""
Persistent update settings.

Records which extensions an update preparation switched off and which
version the platform is being updated from, so the extensions can be
re-enabled once the new code is in place. The settings file is written
atomically (temp file + rename). It is never read by the batch runner to
decide progress; the caller's offset remains the only continuation token.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field

from platform_updater.logging import get_logger

logger = get_logger(__name__)


class UpdateSettings(BaseModel):
    """
    Settings persisted across an update preparation.

    Attributes:
        previous_version: Version the platform is being updated from.
        deactivated_extensions: Extensions switched off by the preparation,
            in the order they were recorded.
    """

    previous_version: str | None = Field(
        default=None,
        description="Version the platform is being updated from",
    )
    deactivated_extensions: list[str] = Field(
        default_factory=list,
        description="Extensions switched off by the update preparation",
    )


class UpdateSettingsStore:
    """
    JSON-file backed store for UpdateSettings.

    Attributes:
        path: Location of the settings file.
    """

    DEFAULT_SETTINGS_FILE = Path("/var/lib/platform-updater/update_settings.json")

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else self.DEFAULT_SETTINGS_FILE

    def load(self) -> UpdateSettings:
        """Load the settings, or defaults if the file does not exist yet."""
        if not self.path.exists():
            return UpdateSettings()

        with open(self.path) as f:
            return UpdateSettings(**json.load(f))

    def save(self, settings: UpdateSettings) -> None:
        """Write the settings atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        temp_file = self.path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(settings.model_dump(), f, indent=2)
        temp_file.rename(self.path)

        logger.debug("Saved update settings", extra={"path": str(self.path)})

    def record_deactivated(self, identifiers: list[str]) -> None:
        """Add identifiers to the deactivated list, keeping it duplicate-free."""
        settings = self.load()
        known = set(settings.deactivated_extensions)
        added = [i for i in identifiers if i not in known]
        if not added:
            return

        settings.deactivated_extensions.extend(added)
        self.save(settings)

    def record_previous_version(self, version: str) -> None:
        """Remember the version the platform is being updated from."""
        settings = self.load()
        settings.previous_version = version
        self.save(settings)
