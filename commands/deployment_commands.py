"""
Deployment command implementations
Wrap pipeline calls so the front end only ever sees an AsyncResult
"""

from typing import Any, Dict, List, Optional

from models.environment import DeploymentEnvironment
from models.project import Project
from services.deployment_pipeline import DeploymentPipeline
from services.status_service import EnvironmentStatusService
from utils.async_base import AsyncCommand, AsyncResult, as_async_error
from utils.cancellation import CancellationToken


class BuildAndDeployCommand(AsyncCommand):
    """Build a new version and stage it into development"""

    def __init__(
        self,
        pipeline: DeploymentPipeline,
        new_version: str,
        deploy: bool = True,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.pipeline = pipeline
        self.new_version = new_version
        self.deploy = deploy

    @property
    def project(self) -> Project:
        return self.pipeline.project

    async def execute(self) -> AsyncResult[Dict[str, Any]]:
        self._update_progress(
            f"Building {self.project.name} version {self.new_version}...", "info"
        )
        build_result = await self.pipeline.build_project_async(self.new_version)
        if build_result.is_error:
            self._update_progress(f"Build failed: {build_result.message}", "error")
            return build_result

        output = build_result.data
        result_data = {
            "project": self.project,
            "version": self.project.current_version,
            "build_output": output,
            "deployment": None,
        }

        if not self.deploy:
            self._update_progress("Build completed", "success")
            return AsyncResult.success_result(
                result_data, message=f"Built {self.project.name} v{self.new_version}"
            )

        self._update_progress("Deploying to development...", "info")
        deploy_result = await self.pipeline.deploy_async(DeploymentEnvironment.DEVELOPMENT)
        if deploy_result.is_error:
            self._update_progress(f"Deployment failed: {deploy_result.message}", "error")
            return AsyncResult.error_result(
                deploy_result.error, metadata={"build_output": output}
            )

        outcome = deploy_result.data
        result_data["deployment"] = outcome
        if not outcome.deployed:
            self._update_progress(deploy_result.message, "warning")
            return AsyncResult.success_result(result_data, message=deploy_result.message)

        self._update_progress("Deployed to development", "success")
        return AsyncResult.success_result(
            result_data,
            message=f"Built and deployed {self.project} to development",
        )


class PromoteCommand(AsyncCommand):
    """Stage the current version into one environment"""

    def __init__(
        self,
        pipeline: DeploymentPipeline,
        environment: DeploymentEnvironment,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.pipeline = pipeline
        self.environment = environment

    async def execute(self) -> AsyncResult:
        project = self.pipeline.project
        source = self.environment.predecessor
        self._update_progress(
            f"Deploying {project} to {self.environment}"
            + (f" from {source}" if source else "")
            + "...",
            "info",
        )

        result = await self.pipeline.deploy_async(self.environment)
        if result.is_error:
            self._update_progress(f"Deployment failed: {result.message}", "error")
            return result

        if not result.data.deployed:
            self._update_progress(result.message, "warning")
            return result

        report = result.data.patch_report
        updated = len(report.updated_files) if report else 0
        self._update_progress(
            f"Deployed to {self.environment} ({updated} config file(s) updated)", "success"
        )
        return AsyncResult.success_result(
            result.data, message=f"Deployed {project} to {self.environment}"
        )


class RemoveDeploymentCommand(AsyncCommand):
    """Remove the current version from an environment and every later one"""

    def __init__(
        self,
        pipeline: DeploymentPipeline,
        environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.pipeline = pipeline
        self.environment = environment

    async def execute(self) -> AsyncResult:
        project = self.pipeline.project
        scope = [self.environment] + self.environment.successors
        self._update_progress(
            f"Removing {project} from {', '.join(str(env) for env in scope)}...",
            "warning",
        )

        result = await self.pipeline.remove_cascade_async(self.environment)
        if result.is_error:
            self._update_progress(f"Removal failed: {result.message}", "error")
            return result

        outcome = result.data
        if result.is_partial:
            self._update_progress(result.error.message, "warning")
            return result

        if not outcome.removed:
            return AsyncResult.success_result(
                outcome, message=f"{project} was not deployed to any of these environments"
            )

        self._update_progress("Removal completed", "success")
        return AsyncResult.success_result(
            outcome,
            message=f"Removed {project} from "
            + ", ".join(str(env) for env in outcome.removed),
        )


class RefreshStatusCommand(AsyncCommand):
    """Recompute deployment flags of every project concurrently"""

    def __init__(
        self,
        status_service: EnvironmentStatusService,
        projects: List[Project],
        cancellation: Optional[CancellationToken] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.status_service = status_service
        self.projects = projects
        self.cancellation = cancellation

    async def execute(self) -> AsyncResult:
        try:
            self._update_progress(
                f"Refreshing status of {len(self.projects)} project(s)...", "info"
            )
            result = await self.status_service.update_all_projects_async(
                self.projects, self.cancellation
            )
        except OSError as e:
            self.logger.exception("Status refresh failed")
            return AsyncResult.error_result(
                as_async_error(e, f"Status refresh failed: {e}")
            )

        level = "success" if result.is_success else "warning" if result.is_partial else "error"
        self._update_progress(result.message or "Status refresh finished", level)
        return result
