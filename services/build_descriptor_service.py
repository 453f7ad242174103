"""
Build Descriptor Service - reads and writes the version in an MSBuild project file
"""

import logging
import re
from pathlib import Path
from typing import List, Optional
from xml.etree import ElementTree

from config.config import get_deployment_config
from models.project import Project
from services.version_folder_service import VersionFolderService
from utils.async_base import ValidationError

logger = logging.getLogger(__name__)

_NAMESPACE = re.compile(r"^\{([^}]*)\}")

MSBUILD_NAMESPACE = "http://schemas.microsoft.com/developer/msbuild/2003"

# Legacy project files use the MSBuild namespace as their default
ElementTree.register_namespace("", MSBUILD_NAMESPACE)


class BuildDescriptorService:
    """Best-effort access to the version recorded in a ``.csproj`` file"""

    def __init__(self, folder_service: Optional[VersionFolderService] = None):
        self.config = get_deployment_config()
        self.folder_service = folder_service or VersionFolderService()

    @staticmethod
    def _parse(path: Path) -> ElementTree.ElementTree:
        parser = ElementTree.XMLParser(
            target=ElementTree.TreeBuilder(insert_comments=True)
        )
        return ElementTree.parse(path, parser=parser)

    @staticmethod
    def _namespace(root) -> str:
        match = _NAMESPACE.match(root.tag)
        return match.group(1) if match else ""

    @staticmethod
    def _qualify(namespace: str, tag: str) -> str:
        return f"{{{namespace}}}{tag}" if namespace else tag

    def _version_elements(self, root, namespace: str) -> List[ElementTree.Element]:
        elements = []
        for name in self.config.descriptor_version_elements:
            elements.extend(root.iter(self._qualify(namespace, name)))
        return elements

    def read_version(self, path) -> Optional[str]:
        """First version element's text, or None"""
        try:
            root = self._parse(Path(path)).getroot()
        except (ElementTree.ParseError, OSError) as e:
            logger.warning("Cannot read build descriptor %s: %s", path, e)
            return None

        for element in self._version_elements(root, self._namespace(root)):
            if element.text and element.text.strip():
                return element.text.strip()
        return None

    def update_version(self, path, new_version: str) -> bool:
        """
        Write ``new_version`` into the descriptor.

        Every known version element is updated; when there is none, a
        <Version> element is appended to the first PropertyGroup. Returns
        False, with a warning, when the file cannot be updated.
        """
        descriptor = Path(path) if path else None
        if descriptor is None or not descriptor.is_file():
            logger.warning("Project file not found: %s", path)
            return False

        try:
            original_text = descriptor.read_text(encoding="utf-8-sig")
            tree = self._parse(descriptor)
        except (ElementTree.ParseError, OSError) as e:
            logger.warning("Cannot parse project file %s: %s", descriptor, e)
            return False

        root = tree.getroot()
        namespace = self._namespace(root)
        elements = self._version_elements(root, namespace)

        for element in elements:
            logger.debug(
                "Updated %s from %s to %s",
                _NAMESPACE.sub("", element.tag),
                element.text,
                new_version,
            )
            element.text = new_version

        if not elements:
            property_group = next(
                root.iter(self._qualify(namespace, "PropertyGroup")), None
            )
            if property_group is None:
                logger.warning(
                    "Could not update version in %s: no PropertyGroup", descriptor
                )
                return False
            version = ElementTree.SubElement(
                property_group, self._qualify(namespace, "Version")
            )
            version.text = new_version
            logger.debug("Added Version element with value %s", new_version)

        try:
            tree.write(
                descriptor,
                encoding="utf-8",
                xml_declaration=original_text.lstrip().startswith("<?xml"),
            )
        except OSError as e:
            logger.warning("Cannot write project file %s: %s", descriptor, e)
            return False

        logger.info("Updated project file version to %s", new_version)
        return True

    def load_project(self, path) -> Project:
        """
        Create a Project from a descriptor file.

        Raises:
            ValidationError: the file does not exist or is not valid XML
        """
        descriptor = Path(path).expanduser()
        if not descriptor.is_file():
            raise ValidationError(
                f"Project file does not exist: {descriptor}", field="project_file_path"
            )

        try:
            root = self._parse(descriptor).getroot()
        except ElementTree.ParseError as e:
            raise ValidationError(
                f"Project file is not valid XML: {descriptor}: {e}",
                field="project_file_path",
            ) from e

        namespace = self._namespace(root)
        assembly_name = next(root.iter(self._qualify(namespace, "AssemblyName")), None)
        name = (
            assembly_name.text.strip()
            if assembly_name is not None and assembly_name.text
            else descriptor.stem
        )

        version = self.folder_service.normalize_version(
            self.read_version(descriptor) or self.config.default_version
        )

        project_dir = descriptor.parent.resolve()
        release_dir = project_dir / "bin" / "Release"
        source_path = release_dir if release_dir.is_dir() else project_dir

        project = Project(
            name=name,
            current_version=version,
            source_path=str(source_path),
            project_file_path=str(descriptor.resolve()),
        )
        logger.info("Imported project %s from %s", project, descriptor)
        return project
