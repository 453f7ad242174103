"""
Version Folder Service - deterministic, filesystem-safe names for version folders
"""

import logging
import re

from config.config import get_deployment_config

logger = logging.getLogger(__name__)

# Characters that are illegal in a path segment on any supported platform
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class VersionFolderService:
    """Maps (project name, version) to the folder used in every environment"""

    def __init__(self):
        self.config = get_deployment_config()
        self._version_pattern = re.compile(self.config.version_pattern)

    def is_valid_version(self, version: str) -> bool:
        return bool(version) and bool(self._version_pattern.fullmatch(version))

    def normalize_version(self, version: str) -> str:
        """Return the version unchanged when valid, otherwise the default version"""
        if self.is_valid_version(version):
            return version
        logger.warning(
            "Invalid version format '%s', using default %s",
            version,
            self.config.default_version,
        )
        return self.config.default_version

    def sanitize_name(self, name: str) -> str:
        """Replace characters that cannot appear in a folder name"""
        safe = _ILLEGAL_CHARS.sub("_", (name or "").strip())
        if not safe:
            return self.config.fallback_project_name
        if safe in (".", ".."):
            return "_" * len(safe)
        return safe

    def get_folder_name(self, name: str, version: str) -> str:
        """
        Build '<name>_v<major_minor_patch>'.

        The version suffix is always kept whole; an over-long name is cut
        down first, but never below the configured minimum length.
        """
        safe_name = self.sanitize_name(name)
        suffix = "_v" + self.normalize_version(version).replace(".", "_")
        folder_name = safe_name + suffix

        max_length = self.config.folder_name_max_length
        if len(folder_name) > max_length:
            keep = max(self.config.folder_name_min_name_length, max_length - len(suffix))
            folder_name = safe_name[:keep] + suffix
            logger.debug("Folder name truncated to %s", folder_name)

        return folder_name
