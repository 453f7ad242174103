"""
Environment Status Service - recomputes per-environment deployment flags from disk
"""

import asyncio
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from models.environment import DeploymentEnvironment, EnvironmentPaths
from models.project import Project
from services.version_folder_service import VersionFolderService
from utils.async_base import (
    AggregateError,
    AsyncServiceInterface,
    OperationCancelledError,
    ServiceResult,
    ValidationError,
    as_async_error,
)
from utils.async_utils import run_in_executor
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class _ProjectLocks:
    __slots__ = ("status", "operation")

    def __init__(self):
        self.status = threading.Lock()
        self.operation = threading.Lock()


class ProjectLockRegistry:
    """
    One pair of locks per project object.

    ``status_lock`` guards the deployment flags; ``operation`` guards a whole
    pipeline operation and is taken without waiting so that a second
    operation on a busy project fails fast. Entries disappear with their
    project.
    """

    def __init__(self):
        self._locks: "weakref.WeakKeyDictionary[Project, _ProjectLocks]" = (
            weakref.WeakKeyDictionary()
        )
        self._guard = threading.Lock()

    def _entry(self, project: Project) -> _ProjectLocks:
        with self._guard:
            entry = self._locks.get(project)
            if entry is None:
                entry = _ProjectLocks()
                self._locks[project] = entry
            return entry

    def status_lock(self, project: Project) -> threading.Lock:
        return self._entry(project).status

    def is_busy(self, project: Project) -> bool:
        return self._entry(project).operation.locked()

    @contextmanager
    def operation(self, project: Project, name: str = "operation") -> Iterator[None]:
        lock = self._entry(project).operation
        if not lock.acquire(blocking=False):
            raise ValidationError(
                f"Cannot start {name} for '{project.name}': "
                "an operation is already in progress",
                field="project",
            )
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every pipeline and tracker in the process
default_lock_registry = ProjectLockRegistry()


class EnvironmentStatusService(AsyncServiceInterface):
    """Keeps a project's deployed_to_* flags in line with the version folders on disk"""

    def __init__(
        self,
        paths: EnvironmentPaths,
        lock_registry: Optional[ProjectLockRegistry] = None,
        folder_service: Optional[VersionFolderService] = None,
    ):
        super().__init__("EnvironmentStatusService")
        self.paths = paths
        self.locks = lock_registry or default_lock_registry
        self.folder_service = folder_service or VersionFolderService()

    async def health_check(self):
        return ServiceResult.success_result(
            {
                "status": "healthy",
                "configured_environments": [
                    str(env) for env in self.paths.configured_environments()
                ],
            }
        )

    def check_deployed(
        self,
        project: Project,
        environment: DeploymentEnvironment,
        cancellation: Optional[CancellationToken] = None,
    ) -> bool:
        """Recompute and store one flag; unconfigured environments read as not deployed"""
        if cancellation is not None:
            cancellation.raise_if_cancelled(f"status check for {environment}")

        with self.locks.status_lock(project):
            folder_name = self.folder_service.get_folder_name(
                project.name, project.current_version
            )
            version_dir = self.paths.version_dir(environment, folder_name)
            deployed = version_dir is not None and version_dir.is_dir()
            project.set_deployed(environment, deployed)

        logger.debug(
            "%s deployed to %s: %s", project.display_name, environment, deployed
        )
        return deployed

    def update_all(
        self, project: Project, cancellation: Optional[CancellationToken] = None
    ) -> Dict[DeploymentEnvironment, bool]:
        """
        Refresh all three flags in promotion order.

        On cancellation the remaining flags keep their previous values.
        """
        statuses: Dict[DeploymentEnvironment, bool] = {}
        for environment in DeploymentEnvironment.ordered():
            if cancellation is not None and cancellation.cancelled:
                logger.info(
                    "Status refresh for %s cancelled after %d of 3 environments",
                    project.display_name,
                    len(statuses),
                )
                break
            statuses[environment] = self.check_deployed(project, environment)
        return statuses

    async def update_all_async(
        self, project: Project, cancellation: Optional[CancellationToken] = None
    ) -> ServiceResult[Dict[DeploymentEnvironment, bool]]:
        async with self.operation_context("update_all"):
            try:
                statuses = await run_in_executor(self.update_all, project, cancellation)
            except OSError as e:
                return ServiceResult.error_result(as_async_error(e))
            return ServiceResult.success_result(statuses)

    async def update_all_projects_async(
        self,
        projects: List[Project],
        cancellation: Optional[CancellationToken] = None,
    ) -> ServiceResult[Dict[str, Dict[DeploymentEnvironment, bool]]]:
        """
        Refresh every project concurrently on the worker pool.

        Succeeds partially when some projects fail; fails only when none
        could be refreshed.
        """
        if not projects:
            return ServiceResult.success_result({}, message="No projects to refresh")

        async with self.operation_context("update_all_projects"):
            outcomes = await asyncio.gather(
                *(
                    run_in_executor(self.update_all, project, cancellation)
                    for project in projects
                ),
                return_exceptions=True,
            )

        statuses: Dict[str, Dict[DeploymentEnvironment, bool]] = {}
        errors = []
        for project, outcome in zip(projects, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    "Status refresh failed for %s: %s", project.display_name, outcome
                )
                errors.append(as_async_error(outcome, f"{project.name}: {outcome}"))
            else:
                statuses[project.name] = outcome

        if cancellation is not None and cancellation.cancelled:
            return ServiceResult.error_result(
                OperationCancelledError("Status refresh cancelled"),
                metadata={"refreshed": list(statuses)},
            )

        if not errors:
            return ServiceResult.success_result(
                statuses, message=f"Refreshed {len(statuses)} project(s)"
            )

        aggregate = AggregateError(
            f"Status refresh failed for {len(errors)} of {len(projects)} project(s)",
            errors,
        )
        if statuses:
            return ServiceResult.partial_result(statuses, aggregate, message=aggregate.message)
        return ServiceResult.error_result(aggregate)
