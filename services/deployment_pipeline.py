"""
Deployment Pipeline - builds a project and promotes it development -> test -> production

A pipeline is created for one operation against one project. Every public
operation holds the project's operation lock, checks the cancellation
token at each stage boundary, and refreshes the project's deployment flags
from disk after anything that touched an environment directory.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from models.environment import DeploymentEnvironment, EnvironmentPaths
from models.project import Project
from services.build_descriptor_service import BuildDescriptorService
from services.config_patch_service import ConfigPatchReport, ConfigPatchService
from services.file_service import CopyResult, FileService
from services.process_runner import ProcessOutput, ProcessRunner
from services.status_service import (
    EnvironmentStatusService,
    ProjectLockRegistry,
    default_lock_registry,
)
from services.version_folder_service import VersionFolderService
from utils.async_base import (
    AggregateError,
    AsyncError,
    AsyncServiceInterface,
    BuildError,
    ServiceResult,
    ValidationError,
    as_async_error,
)
from utils.async_utils import run_in_executor
from utils.cancellation import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "not configured"


class PipelineState(Enum):
    NOT_BUILT = "not_built"
    BUILT = "built"
    STAGED_TO_DEVELOPMENT = "staged_to_development"
    STAGED_TO_TEST = "staged_to_test"
    STAGED_TO_PRODUCTION = "staged_to_production"
    FAILED = "failed"


_STAGED_STATE = {
    DeploymentEnvironment.DEVELOPMENT: PipelineState.STAGED_TO_DEVELOPMENT,
    DeploymentEnvironment.TEST: PipelineState.STAGED_TO_TEST,
    DeploymentEnvironment.PRODUCTION: PipelineState.STAGED_TO_PRODUCTION,
}


@dataclass
class DeploymentOutcome:
    """What a deploy call did; ``deployed`` is False only for expected no-ops"""

    environment: DeploymentEnvironment
    deployed: bool
    target_path: Optional[Path] = None
    reason: str = ""
    copy_result: Optional[CopyResult] = None
    patch_report: Optional[ConfigPatchReport] = None


@dataclass
class RemovalOutcome:
    """Per-environment result of a multi-environment removal"""

    removed: List[DeploymentEnvironment] = field(default_factory=list)
    absent: List[DeploymentEnvironment] = field(default_factory=list)
    errors: Dict[DeploymentEnvironment, AsyncError] = field(default_factory=dict)

    @property
    def any_removed(self) -> bool:
        return bool(self.removed)


class DeploymentPipeline(AsyncServiceInterface):
    """Runs build, staging and removal for one project"""

    def __init__(
        self,
        project: Project,
        paths: EnvironmentPaths,
        runner: Optional[ProcessRunner] = None,
        cancellation: Optional[CancellationToken] = None,
        lock_registry: Optional[ProjectLockRegistry] = None,
        file_service: Optional[FileService] = None,
        patch_service: Optional[ConfigPatchService] = None,
        descriptor_service: Optional[BuildDescriptorService] = None,
        folder_service: Optional[VersionFolderService] = None,
    ):
        super().__init__("DeploymentPipeline")
        self.project = project
        self.paths = paths
        self.runner = runner or ProcessRunner()
        self.cancellation = cancellation
        self.locks = lock_registry or default_lock_registry
        self.file_service = file_service or FileService()
        self.patch_service = patch_service or ConfigPatchService()
        self.folder_service = folder_service or VersionFolderService()
        self.descriptor_service = descriptor_service or BuildDescriptorService(
            self.folder_service
        )
        self.status_service = EnvironmentStatusService(
            paths, self.locks, self.folder_service
        )
        self.state = PipelineState.NOT_BUILT

    async def health_check(self):
        return ServiceResult.success_result(
            {
                "status": "healthy",
                "project": self.project.name,
                "state": self.state.value,
            }
        )

    @property
    def folder_name(self) -> str:
        return self.folder_service.get_folder_name(
            self.project.name, self.project.current_version
        )

    def version_dir(self, environment: DeploymentEnvironment) -> Optional[Path]:
        return self.paths.version_dir(environment, self.folder_name)

    @contextmanager
    def _operation(self, name: str):
        with self.locks.operation(self.project, name):
            yield

    def _with_context(
        self, error: AsyncError, environment: Optional[DeploymentEnvironment] = None
    ) -> AsyncError:
        """Prefix the project (and environment) to an error message, once"""
        if "project" in error.details:
            return error
        where = f"{self.project.name}"
        if environment is not None:
            where += f" [{environment}]"
        error.message = f"{where}: {error.message}"
        error.args = (error.message,)
        error.details["project"] = self.project.name
        if environment is not None:
            error.details["environment"] = str(environment)
        return error

    def _fail(self, error: BaseException, environment=None) -> AsyncError:
        self.state = PipelineState.FAILED
        return self._with_context(as_async_error(error), environment)

    def refresh_status(self) -> Dict[DeploymentEnvironment, bool]:
        """Recompute the project's flags; never observes the cancellation token"""
        return self.status_service.update_all(self.project)

    # Build

    def build_project(self, new_version: str) -> Optional[ProcessOutput]:
        """
        Set the new version and run the build command, if any.

        The descriptor file is updated best-effort. Returns the build output,
        or None when there is no build command.

        Raises:
            BuildError: non-zero exit code or the interpreter could not start
            BuildTimeoutError: the build ran past the timeout
            OperationCancelledError: cancelled before or during the build
        """
        with self._operation("build"):
            try:
                check_cancelled(self.cancellation, "build")
                self.project.current_version = new_version
                if self.project.project_file_path:
                    self.descriptor_service.update_version(
                        self.project.project_file_path, new_version
                    )

                command = (self.project.build_command or "").strip()
                if not command:
                    logger.info("No build command specified, skipping build step")
                    self.state = PipelineState.BUILT
                    return None

                logger.info("Building %s", self.project)
                output = self.runner.run(
                    command, self.project.source_path, cancellation=self.cancellation
                )
                if not output.succeeded:
                    logger.error(
                        "Build failed for %s with exit code %s: %s",
                        self.project,
                        output.exit_code,
                        output.stderr.strip(),
                    )
                    raise BuildError(
                        f"Build failed with exit code {output.exit_code}: "
                        f"{output.stderr.strip() or output.stdout.strip()}",
                        return_code=output.exit_code,
                        stdout=output.stdout,
                        stderr=output.stderr,
                    )
            except AsyncError as e:
                raise self._fail(e) from None

            logger.info("Build completed for %s", self.project)
            self.state = PipelineState.BUILT
            return output

    # Staging

    def deploy_to_development(self) -> DeploymentOutcome:
        return self.deploy(DeploymentEnvironment.DEVELOPMENT)

    def deploy_to_test(self) -> DeploymentOutcome:
        return self.deploy(DeploymentEnvironment.TEST)

    def deploy_to_production(self) -> DeploymentOutcome:
        return self.deploy(DeploymentEnvironment.PRODUCTION)

    def deploy(self, environment: DeploymentEnvironment) -> DeploymentOutcome:
        """
        Stage the version folder into ``environment``.

        Development is seeded from the source path; later tiers only from the
        previous tier's version folder.

        Raises:
            ValidationError: source or previous tier's folder is missing
            ResourceError: copying failed (files already copied stay)
            AggregateError: one or more config files could not be patched
            OperationCancelledError: cancelled at a stage boundary
        """
        with self._operation(f"deployment to {environment}"):
            target = self.version_dir(environment)
            if target is None:
                logger.warning(
                    "%s base path is not configured; skipping deployment of %s",
                    environment.display_name,
                    self.project,
                )
                return DeploymentOutcome(environment, deployed=False, reason=NOT_CONFIGURED)

            try:
                check_cancelled(self.cancellation, f"deployment to {environment}")
                source = self._staging_source(environment)
            except AsyncError as e:
                raise self._fail(e, environment) from None

            logger.info("Deploying %s to %s: %s", self.project, environment, target)
            try:
                copy_result = self.file_service.copy_directory(
                    source, target, self.cancellation
                )
                check_cancelled(self.cancellation, f"config patching for {environment}")
                patch_report = self.patch_service.patch_directory(
                    target, self.project.config_settings, environment, self.cancellation
                )
            except (AsyncError, OSError) as e:
                raise self._fail(e, environment) from None
            finally:
                self.refresh_status()

            self.state = _STAGED_STATE[environment]
            logger.info("Deployed %s to %s", self.project, environment)
            return DeploymentOutcome(
                environment,
                deployed=True,
                target_path=target,
                copy_result=copy_result,
                patch_report=patch_report,
            )

    def _staging_source(self, environment: DeploymentEnvironment) -> Path:
        predecessor = environment.predecessor
        if predecessor is None:
            source = Path(self.project.source_path) if self.project.source_path else None
            if source is None or not source.is_dir():
                raise ValidationError(
                    f"Source path does not exist: {self.project.source_path or '(not set)'}",
                    field="source_path",
                )
            return source

        source = self.version_dir(predecessor)
        if source is None or not source.is_dir():
            raise ValidationError(
                f"Cannot deploy to {environment}: version {self.project.current_version} "
                f"is not deployed to {predecessor} ({source or 'path not configured'})",
                field="environment",
                details={"required": str(predecessor)},
            )
        return source

    # Removal

    def remove_from_development(self) -> bool:
        return self.remove(DeploymentEnvironment.DEVELOPMENT)

    def remove_from_test(self) -> bool:
        return self.remove(DeploymentEnvironment.TEST)

    def remove_from_production(self) -> bool:
        return self.remove(DeploymentEnvironment.PRODUCTION)

    def remove(self, environment: DeploymentEnvironment) -> bool:
        """
        Delete the version folder from one environment

        Returns False when the environment is unconfigured or has no folder.

        Raises:
            ResourceError: the folder could not be deleted
        """
        with self._operation(f"removal from {environment}"):
            check_cancelled(self.cancellation, f"removal from {environment}")
            try:
                return self._remove(environment)
            except AsyncError as e:
                raise self._fail(e, environment) from None
            finally:
                self.refresh_status()

    def _remove(self, environment: DeploymentEnvironment) -> bool:
        target = self.version_dir(environment)
        if target is None:
            logger.debug("%s is not configured; nothing to remove", environment)
            return False
        removed = self.file_service.remove_directory(target)
        if removed:
            logger.info("Removed %s from %s", self.project, environment)
        else:
            logger.debug("%s is not deployed to %s", self.project, environment)
        return removed

    def remove_cascade(self, environment: DeploymentEnvironment) -> RemovalOutcome:
        """
        Remove ``environment`` and every later tier, latest first.

        Each environment is attempted independently. Raises AggregateError
        only when errors occurred and nothing was removed.
        """
        targets = list(reversed([environment] + environment.successors))
        outcome = RemovalOutcome()

        with self._operation(f"removal from {environment} onwards"):
            try:
                for target in targets:
                    check_cancelled(self.cancellation, f"removal from {target}")
                    try:
                        if self._remove(target):
                            outcome.removed.append(target)
                        else:
                            outcome.absent.append(target)
                    except AsyncError as e:
                        logger.error(
                            "Failed to remove %s from %s: %s", self.project, target, e.message
                        )
                        outcome.errors[target] = self._with_context(e, target)
            finally:
                self.refresh_status()

        if outcome.errors and not outcome.removed:
            self.state = PipelineState.FAILED
            raise AggregateError(
                f"{self.project.name}: failed to remove from "
                + ", ".join(str(env) for env in outcome.errors),
                list(outcome.errors.values()),
            )

        if outcome.errors:
            logger.warning(
                "Partially removed %s: removed from %s, failed for %s",
                self.project,
                ", ".join(str(env) for env in outcome.removed),
                ", ".join(str(env) for env in outcome.errors),
            )
        return outcome

    def remove_from_all_environments(self) -> bool:
        """True when at least one environment had its folder removed"""
        return self.remove_cascade(DeploymentEnvironment.DEVELOPMENT).any_removed

    # Async wrappers

    async def _call_async(self, operation: str, func: Callable, *args) -> ServiceResult:
        async with self.operation_context(operation):
            try:
                data = await run_in_executor(func, *args)
            except AsyncError as e:
                return ServiceResult.error_result(e)
            return ServiceResult.success_result(data)

    async def build_project_async(self, new_version: str) -> ServiceResult:
        return await self._call_async("build_project", self.build_project, new_version)

    async def deploy_async(self, environment: DeploymentEnvironment) -> ServiceResult:
        result = await self._call_async("deploy", self.deploy, environment)
        if result.success and not result.data.deployed:
            result.message = f"{environment.display_name} is {result.data.reason}"
        return result

    async def remove_cascade_async(
        self, environment: DeploymentEnvironment
    ) -> ServiceResult[RemovalOutcome]:
        result = await self._call_async("remove_cascade", self.remove_cascade, environment)
        if result.success and result.data.errors:
            outcome = result.data
            return ServiceResult.partial_result(
                outcome,
                AggregateError(
                    f"{self.project.name}: some removals failed",
                    list(outcome.errors.values()),
                ),
                message="Removed from " + ", ".join(str(env) for env in outcome.removed),
            )
        return result

    async def refresh_status_async(self) -> ServiceResult:
        return await self._call_async("refresh_status", self.refresh_status)
