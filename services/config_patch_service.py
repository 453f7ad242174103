"""
Config Patch Service - rewrites environment-specific settings inside a staged folder

Two formats are handled:
- ``*.config``: XML with an ``appSettings`` element of ``<add key=".." value=".."/>``
- ``appsettings*.json``: a flat JSON object

Patching is idempotent. A file is only written when a value actually
changes or a missing key is added, so re-running a deployment with the
same settings leaves every file untouched.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree

from config.config import get_deployment_config
from models.environment import DeploymentEnvironment
from models.project import ConfigSetting
from utils.async_base import (
    AggregateError,
    AsyncError,
    AsyncServiceInterface,
    ConfigFormatError,
    ResourceError,
    ServiceResult,
)
from utils.async_utils import run_in_executor
from utils.cancellation import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)


@dataclass
class ConfigPatchReport:
    """Which files were rewritten, left alone, or could not be patched"""

    environment: DeploymentEnvironment
    updated_files: List[Path] = field(default_factory=list)
    unchanged_files: List[Path] = field(default_factory=list)
    errors: List[AsyncError] = field(default_factory=list)

    @property
    def failed_files(self) -> List[str]:
        return [
            str(getattr(error, "file_path", None) or getattr(error, "resource_path", ""))
            for error in self.errors
        ]

    @property
    def files_processed(self) -> int:
        return len(self.updated_files) + len(self.unchanged_files) + len(self.errors)


class ConfigPatchService(AsyncServiceInterface):
    """Applies a project's per-environment settings to XML and JSON config files"""

    def __init__(self):
        super().__init__("ConfigPatchService")
        self.config = get_deployment_config()

    async def health_check(self):
        return ServiceResult.success_result(
            {
                "status": "healthy",
                "xml_patterns": self.config.xml_config_patterns,
                "json_patterns": self.config.json_config_patterns,
            }
        )

    @staticmethod
    def resolve_settings(
        settings: List[ConfigSetting], environment: DeploymentEnvironment
    ) -> "OrderedDict[str, str]":
        """Key -> value for one environment; a repeated key keeps its last value"""
        resolved: "OrderedDict[str, str]" = OrderedDict()
        for setting in settings or []:
            if not setting.key_name:
                continue
            resolved.pop(setting.key_name, None)
            resolved[setting.key_name] = setting.value_for(environment) or ""
        return resolved

    def find_config_files(self, directory) -> Tuple[List[Path], List[Path]]:
        """Return (xml_files, json_files) below ``directory`` in sorted order"""
        root = Path(directory)
        xml_files = set()
        for pattern in self.config.xml_config_patterns:
            xml_files.update(path for path in root.rglob(pattern) if path.is_file())
        json_files = set()
        for pattern in self.config.json_config_patterns:
            json_files.update(path for path in root.rglob(pattern) if path.is_file())
        return sorted(xml_files), sorted(json_files - xml_files)

    def patch_directory(
        self,
        directory,
        settings: List[ConfigSetting],
        environment: DeploymentEnvironment,
        cancellation: Optional[CancellationToken] = None,
    ) -> ConfigPatchReport:
        """
        Patch every config file below ``directory`` for ``environment``.

        Every file is attempted. When any of them fails, a single
        AggregateError is raised afterwards; its ``report`` attribute is
        the full ConfigPatchReport.
        """
        report = ConfigPatchReport(environment=environment)
        values = self.resolve_settings(settings, environment)
        if not values:
            logger.debug("No config settings for %s; nothing to patch", environment)
            return report

        xml_files, json_files = self.find_config_files(directory)
        logger.info(
            "Patching %d XML and %d JSON config files for %s",
            len(xml_files),
            len(json_files),
            environment,
        )

        for path, patcher in [(p, self.patch_xml_file) for p in xml_files] + [
            (p, self.patch_json_file) for p in json_files
        ]:
            check_cancelled(cancellation, "config patching")
            try:
                changed = patcher(path, values)
            except (ConfigFormatError, ResourceError) as e:
                logger.error("Config patch failed for %s: %s", path, e.message)
                report.errors.append(e)
                continue

            if changed:
                report.updated_files.append(path)
            else:
                report.unchanged_files.append(path)

        if report.errors:
            error = AggregateError(
                f"Failed to patch {len(report.errors)} config file(s) in {directory}",
                report.errors,
            )
            error.report = report
            raise error

        return report

    def patch_xml_file(self, path, values: Dict[str, str]) -> bool:
        """Update or add ``<add key value>`` entries; returns True when the file was written"""
        path = Path(path)
        try:
            parser = ElementTree.XMLParser(
                target=ElementTree.TreeBuilder(insert_comments=True, insert_pis=True)
            )
            tree = ElementTree.parse(path, parser=parser)
        except ElementTree.ParseError as e:
            raise ConfigFormatError(f"Invalid XML in {path}: {e}", file_path=path) from e
        except OSError as e:
            raise ResourceError(f"Failed to read {path}: {e}", resource_path=path) from e

        section_name = self.config.xml_settings_section
        section = next(tree.getroot().iter(section_name), None)
        if section is None:
            raise ConfigFormatError(
                f"No <{section_name}> section found in {path}", file_path=path
            )

        changed = False
        for key, value in values.items():
            entries = [entry for entry in section.findall("add") if entry.get("key") == key]
            if entries:
                for entry in entries:
                    if entry.get("value") != value:
                        logger.debug(
                            "Updated %s: '%s' from '%s' to '%s'",
                            path.name, key, entry.get("value"), value,
                        )
                        entry.set("value", value)
                        changed = True
            else:
                self._append_entry(section, key, value)
                logger.debug("Added %s: '%s' = '%s'", path.name, key, value)
                changed = True

        if not changed:
            logger.debug("No changes made to %s", path)
            return False

        try:
            tree.write(path, encoding="utf-8", xml_declaration=True)
        except OSError as e:
            raise ResourceError(f"Failed to write {path}: {e}", resource_path=path) from e
        logger.info("Saved updated config file %s", path)
        return True

    @staticmethod
    def _append_entry(section, key: str, value: str):
        """Append an <add/> element, keeping the surrounding indentation"""
        children = list(section)
        entry = ElementTree.SubElement(section, "add", {"key": key, "value": value})
        if children:
            last = children[-1]
            entry.tail = last.tail
            last.tail = section.text

    def patch_json_file(self, path, values: Dict[str, str]) -> bool:
        """Update or add top-level keys; returns True when the file was written"""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise ResourceError(f"Failed to read {path}: {e}", resource_path=path) from e

        try:
            data = json.loads(text, object_pairs_hook=OrderedDict)
        except json.JSONDecodeError as e:
            raise ConfigFormatError(f"Invalid JSON in {path}: {e}", file_path=path) from e

        if not isinstance(data, dict):
            raise ConfigFormatError(
                f"JSON root of {path} is not an object", file_path=path
            )

        changed = False
        for key, value in values.items():
            if key in data:
                if data[key] != value:
                    logger.debug(
                        "Updated %s: '%s' from '%s' to '%s'", path.name, key, data[key], value
                    )
                    data[key] = value
                    changed = True
            else:
                data[key] = value
                logger.debug("Added %s: '%s' = '%s'", path.name, key, value)
                changed = True

        if not changed:
            logger.debug("No changes made to %s", path)
            return False

        try:
            path.write_text(
                json.dumps(data, indent=self.config.json_indent, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            raise ResourceError(f"Failed to write {path}: {e}", resource_path=path) from e
        logger.info("Saved updated config file %s", path)
        return True

    async def patch_directory_async(
        self,
        directory,
        settings: List[ConfigSetting],
        environment: DeploymentEnvironment,
        cancellation: Optional[CancellationToken] = None,
    ) -> ServiceResult[ConfigPatchReport]:
        async with self.operation_context("patch_directory"):
            try:
                report = await run_in_executor(
                    self.patch_directory, directory, settings, environment, cancellation
                )
            except AggregateError as e:
                report = getattr(e, "report", None)
                if report is not None and report.updated_files:
                    return ServiceResult.partial_result(report, e, message=e.message)
                return ServiceResult.error_result(e)
            except AsyncError as e:
                return ServiceResult.error_result(e)

            return ServiceResult.success_result(
                report,
                message=f"Updated {len(report.updated_files)} config file(s)",
            )
