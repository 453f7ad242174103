"""
File Service - version folder copying and removal
"""

import os
import shutil
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass

from utils.async_base import (
    AsyncServiceInterface,
    ServiceResult,
    ValidationError,
    ResourceError,
    AsyncError,
    as_async_error,
)
from utils.async_utils import run_in_executor
from utils.cancellation import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)


@dataclass
class CopyResult:
    """Result of a recursive directory copy"""

    source: Path
    target: Path
    files_copied: int = 0
    directories_created: int = 0
    bytes_copied: int = 0


class FileService(AsyncServiceInterface):
    """Copies build output between environments and deletes version folders"""

    def __init__(self):
        super().__init__("FileService")

    async def health_check(self) -> ServiceResult[Dict[str, Any]]:
        """Check that a temporary directory can be written and removed"""
        import tempfile

        async with self.operation_context("health_check"):
            try:
                with tempfile.TemporaryDirectory() as temp_dir:
                    probe = Path(temp_dir) / "probe.txt"
                    probe.write_text("probe")
                    probe.read_text()
                return ServiceResult.success_result({"status": "healthy"})
            except OSError as e:
                return ServiceResult.error_result(
                    ResourceError(f"File system operations failed: {e}")
                )

    def copy_directory(
        self,
        source_dir,
        target_dir,
        cancellation: Optional[CancellationToken] = None,
    ) -> CopyResult:
        """
        Recursively copy ``source_dir`` into ``target_dir``, overwriting files.

        Files copied before a failure are left in place.

        Raises:
            ResourceError: source missing, a directory symlink found, or I/O failure
            ValidationError: target lies inside the source tree
            OperationCancelledError: cancellation observed between files
        """
        source = Path(source_dir)
        target = Path(target_dir)

        if not source.is_dir():
            raise ResourceError(
                f"Source directory does not exist: {source}", resource_path=source
            )
        if source.is_symlink():
            raise ResourceError(
                f"Source directory is a symbolic link: {source}", resource_path=source
            )

        resolved_source = source.resolve()
        resolved_target = target.resolve()
        if resolved_target == resolved_source or resolved_source in resolved_target.parents:
            raise ValidationError(
                f"Cannot copy {source} into its own subdirectory {target}",
                field="target_dir",
            )

        result = CopyResult(source=source, target=target)
        logger.info("Copying %s -> %s", source, target)
        self._copy_tree(source, target, result, cancellation)
        logger.info(
            "Copied %d files (%d bytes) to %s",
            result.files_copied,
            result.bytes_copied,
            target,
        )
        return result

    def _copy_tree(
        self,
        source: Path,
        target: Path,
        result: CopyResult,
        cancellation: Optional[CancellationToken],
    ):
        try:
            if not target.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                result.directories_created += 1
            entries = sorted(os.scandir(source), key=lambda entry: entry.name)
        except OSError as e:
            raise ResourceError(
                f"Failed to prepare {target}: {e}", resource_path=target
            ) from e

        for entry in entries:
            check_cancelled(cancellation, "copy")
            source_path = Path(entry.path)
            target_path = target / entry.name

            if entry.is_dir(follow_symlinks=False):
                self._copy_tree(source_path, target_path, result, cancellation)
                continue

            if entry.is_symlink() and source_path.is_dir():
                raise ResourceError(
                    f"Refusing to follow directory symbolic link: {source_path}",
                    resource_path=source_path,
                )

            try:
                shutil.copy2(source_path, target_path)
                result.files_copied += 1
                result.bytes_copied += target_path.stat().st_size
            except OSError as e:
                raise ResourceError(
                    f"Failed to copy {source_path} to {target_path}: {e}",
                    resource_path=source_path,
                ) from e

    def remove_directory(self, path) -> bool:
        """
        Delete a version folder; False when there is nothing to delete

        Raises:
            ResourceError: the folder exists but could not be deleted
        """
        directory = Path(path)
        if directory.is_symlink():
            # Remove the link, never the tree it points to
            try:
                directory.unlink()
                return True
            except OSError as e:
                raise ResourceError(
                    f"Failed to remove {directory}: {e}", resource_path=directory
                ) from e

        if not directory.is_dir():
            return False

        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise ResourceError(
                f"Failed to remove {directory}: {e}", resource_path=directory
            ) from e

        logger.info("Removed %s", directory)
        return True

    async def copy_directory_async(
        self,
        source_dir,
        target_dir,
        cancellation: Optional[CancellationToken] = None,
    ) -> ServiceResult[CopyResult]:
        async with self.operation_context("copy_directory"):
            try:
                result = await run_in_executor(
                    self.copy_directory, source_dir, target_dir, cancellation
                )
            except AsyncError as e:
                return ServiceResult.error_result(e)
            except OSError as e:
                return ServiceResult.error_result(as_async_error(e))

            return ServiceResult.success_result(
                result,
                message=f"Copied {result.files_copied} files",
                metadata={"source": str(source_dir), "target": str(target_dir)},
            )

    async def remove_directory_async(self, path) -> ServiceResult[bool]:
        async with self.operation_context("remove_directory"):
            try:
                removed = await run_in_executor(self.remove_directory, path)
            except AsyncError as e:
                return ServiceResult.error_result(e)

            message = f"Removed {path}" if removed else f"Nothing to remove at {path}"
            return ServiceResult.success_result(removed, message=message)
