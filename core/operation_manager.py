"""
Operation Manager

Creates a fresh pipeline for every operation, runs the matching command on
the background task manager and allows one active operation per project.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from commands import (
    BuildAndDeployCommand,
    PromoteCommand,
    RemoveDeploymentCommand,
    RefreshStatusCommand,
)
from config.config import get_service_config
from models.app_settings import AppSettings
from models.environment import DeploymentEnvironment
from models.project import Project
from services.deployment_pipeline import DeploymentPipeline
from services.process_runner import ProcessRunner
from services.status_service import (
    EnvironmentStatusService,
    ProjectLockRegistry,
    default_lock_registry,
)
from utils.async_base import AsyncCommand, AsyncResult, ValidationError
from utils.async_utils import (
    ImprovedAsyncTaskManager,
    register_shutdown_hook,
    task_manager,
    unregister_shutdown_hook,
)
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class OperationManager:
    """
    Dispatches deployment commands for the front end.

    Args:
        settings: environment paths and the project list
        progress_callback: called with (message, level) as commands progress
        completion_callback: called with the final AsyncResult of each command
    """

    def __init__(
        self,
        settings: AppSettings,
        progress_callback: Optional[Callable[[str, str], None]] = None,
        completion_callback: Optional[Callable[[AsyncResult], None]] = None,
        runner: Optional[ProcessRunner] = None,
        lock_registry: Optional[ProjectLockRegistry] = None,
        manager: Optional[ImprovedAsyncTaskManager] = None,
    ):
        self.settings = settings
        self.progress_callback = progress_callback
        self.completion_callback = completion_callback
        self.runner = runner or ProcessRunner()
        self.locks = lock_registry or default_lock_registry
        self.task_manager = manager or task_manager
        self.cancellation = CancellationToken()

        self._active: Dict[Project, Future] = {}
        self._active_lock = threading.Lock()
        self._shut_down = False
        register_shutdown_hook(self._on_shutdown)

    def _update_status(self, message: str, level: str):
        log = {
            "error": logger.error,
            "warning": logger.warning,
        }.get(level, logger.info)
        log("%s", message)
        if self.progress_callback:
            self.progress_callback(message, level)

    def create_pipeline(
        self, project: Project, cancellation: Optional[CancellationToken] = None
    ) -> DeploymentPipeline:
        return DeploymentPipeline(
            project,
            self.settings.environment_paths,
            runner=self.runner,
            cancellation=cancellation or self.cancellation.child(),
            lock_registry=self.locks,
        )

    def is_busy(self, project: Project) -> bool:
        with self._active_lock:
            future = self._active.get(project)
            return future is not None and not future.done()

    @property
    def active_operations(self) -> int:
        with self._active_lock:
            return sum(1 for future in self._active.values() if not future.done())

    def _submit(
        self,
        project: Optional[Project],
        command: AsyncCommand,
        task_name: str,
        token: Optional[CancellationToken] = None,
    ) -> Future:
        if self._shut_down:
            raise RuntimeError("Operation manager has been shut down")

        with self._active_lock:
            if project is not None:
                current = self._active.get(project)
                if current is not None and not current.done():
                    if token is not None:
                        token.detach()
                    raise ValidationError(
                        f"An operation is already in progress for '{project.name}'",
                        field="project",
                    )

            command.progress_callback = self._update_status
            command.completion_callback = self.completion_callback
            future = self.task_manager.run_task(
                command.run_with_progress(), task_name=task_name
            )
            if project is not None:
                self._active[project] = future

        def finished(completed: Future):
            if token is not None:
                token.detach()
            if project is not None:
                with self._active_lock:
                    if self._active.get(project) is completed:
                        del self._active[project]

        future.add_done_callback(finished)
        logger.debug("Started %s", task_name)
        return future

    def build_and_deploy(
        self, project: Project, new_version: str, deploy: bool = True
    ) -> Future:
        """Build ``project`` at ``new_version`` then stage it into development"""
        token = self.cancellation.child()
        command = BuildAndDeployCommand(
            self.create_pipeline(project, token), new_version, deploy=deploy
        )
        return self._submit(project, command, f"build-{project.name}", token)

    def deploy(self, project: Project, environment: DeploymentEnvironment) -> Future:
        token = self.cancellation.child()
        command = PromoteCommand(self.create_pipeline(project, token), environment)
        return self._submit(
            project, command, f"deploy-{project.name}-{environment}", token
        )

    def remove(
        self,
        project: Project,
        environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT,
    ) -> Future:
        """Remove from ``environment`` and every later environment"""
        token = self.cancellation.child()
        command = RemoveDeploymentCommand(self.create_pipeline(project, token), environment)
        return self._submit(
            project, command, f"remove-{project.name}-{environment}", token
        )

    def refresh_status(self, projects: Optional[List[Project]] = None) -> Future:
        token = self.cancellation.child()
        status_service = EnvironmentStatusService(
            self.settings.environment_paths, self.locks
        )
        command = RefreshStatusCommand(
            status_service,
            list(projects if projects is not None else self.settings.projects),
            cancellation=token,
        )
        return self._submit(None, command, "refresh-status", token)

    def _on_shutdown(self):
        self.cancellation.cancel("shutdown")
        self.runner.terminate_all()

    def shutdown(self, timeout: Optional[float] = None):
        """
        Cancel running operations, kill build processes and stop the task manager.

        Process-wide resources (the worker pool) are released by
        ``utils.async_utils.shutdown_all``.
        """
        if self._shut_down:
            return
        self._shut_down = True
        timeout = timeout if timeout is not None else get_service_config().shutdown_timeout
        logger.info("Shutting down operation manager")
        try:
            self._on_shutdown()
            self.task_manager.shutdown(timeout=timeout)
        finally:
            unregister_shutdown_hook(self._on_shutdown)
