"""
Settings Service - persists environment paths and the project list
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from config.config import get_paths_config
from models.app_settings import AppSettings
from models.environment import DeploymentEnvironment, EnvironmentPaths
from utils.async_base import ResourceError

logger = logging.getLogger(__name__)


@dataclass
class PathValidationReport:
    """Problems found with the configured environment base paths"""

    unset: List[DeploymentEnvironment] = field(default_factory=list)
    relative: List[DeploymentEnvironment] = field(default_factory=list)
    missing: List[DeploymentEnvironment] = field(default_factory=list)
    created: List[DeploymentEnvironment] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (self.unset or self.relative or self.missing or self.errors)

    def messages(self) -> List[str]:
        lines = [f"{env.display_name} path is not set" for env in self.unset]
        lines += [f"{env.display_name} path is not absolute" for env in self.relative]
        lines += [f"{env.display_name} path does not exist" for env in self.missing]
        lines += [f"Created {env.display_name} path" for env in self.created]
        return lines + self.errors


class SettingsService:
    """Loads and saves the settings document, keeping one textual backup"""

    def __init__(self, settings_file: Optional[str] = None):
        config = get_paths_config()
        self.settings_file = Path(settings_file or config.settings_file).expanduser()
        self.backup_file = self.settings_file.with_name(
            self.settings_file.name + config.backup_suffix
        )

    def _read(self, path: Path) -> AppSettings:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("settings root is not an object")
        return AppSettings.from_dict(data)

    def load(self) -> AppSettings:
        """
        Load settings; a missing file yields defaults, a corrupt one falls
        back to the backup and then to defaults
        """
        if not self.settings_file.exists():
            logger.info("No settings file at %s; using defaults", self.settings_file)
            return AppSettings()

        try:
            settings = self._read(self.settings_file)
            logger.debug(
                "Loaded %d project(s) from %s", len(settings.projects), self.settings_file
            )
            return settings
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error("Error loading settings from %s: %s", self.settings_file, e)

        if self.backup_file.exists():
            try:
                settings = self._read(self.backup_file)
                logger.warning("Restored settings from backup %s", self.backup_file)
                return settings
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.error("Backup settings are unusable too: %s", e)

        return AppSettings()

    def save(self, settings: AppSettings):
        """
        Write settings atomically, copying the previous file to the backup first

        Raises:
            ResourceError: the document could not be written
        """
        directory = self.settings_file.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if self.settings_file.exists():
                shutil.copy2(self.settings_file, self.backup_file)

            fd, temp_path = tempfile.mkstemp(
                prefix=".settings-", suffix=".tmp", dir=str(directory)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self.settings_file)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            raise ResourceError(
                f"Failed to save settings: {e}", resource_path=self.settings_file
            ) from e

        logger.debug("Saved settings to %s", self.settings_file)


def validate_environment_paths(
    paths: EnvironmentPaths, create_missing: bool = False
) -> PathValidationReport:
    """Check that each base path is set, absolute and present"""
    report = PathValidationReport()
    for environment in DeploymentEnvironment.ordered():
        raw = paths.base_path(environment).strip()
        if not raw:
            report.unset.append(environment)
            continue

        path = Path(os.path.expanduser(raw))
        if not path.is_absolute():
            report.relative.append(environment)
            continue

        if path.is_dir():
            continue

        if not create_missing:
            report.missing.append(environment)
            continue

        try:
            path.mkdir(parents=True, exist_ok=True)
            report.created.append(environment)
            logger.info("Created %s base path %s", environment, path)
        except OSError as e:
            report.errors.append(f"Could not create {environment.display_name} path: {e}")
    return report
