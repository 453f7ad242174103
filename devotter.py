"""
Devotter - command-line front end for staged deployments

Exit codes: 0 success, 1 failure, 2 partial success.
"""

import argparse
import os
import logging
import sys
from typing import List, Optional

from config.config import get_config
from core.operation_manager import OperationManager
from models.app_settings import AppSettings
from models.environment import DeploymentEnvironment
from models.project import ConfigSetting, Project
from models.version_info import VersionInfo
from services.build_descriptor_service import BuildDescriptorService
from services.settings_service import SettingsService, validate_environment_paths
from services.status_service import EnvironmentStatusService
from services.version_folder_service import VersionFolderService
from utils.async_base import AsyncError, AsyncResult
from utils.async_utils import ImprovedAsyncTaskManager, shutdown_all
from utils.log_sink import LogSink

logger = logging.getLogger("devotter")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2


def exit_code_for(result: AsyncResult) -> int:
    if result.is_partial:
        return EXIT_PARTIAL
    return EXIT_SUCCESS if result.is_success else EXIT_FAILURE


class DevotterApp:
    """Holds the loaded settings and the operation manager for one CLI run"""

    def __init__(self, settings_service: SettingsService):
        self.settings_service = settings_service
        self.settings: AppSettings = settings_service.load()
        self._manager: Optional[OperationManager] = None

    @property
    def manager(self) -> OperationManager:
        if self._manager is None:
            self._manager = OperationManager(
                self.settings,
                progress_callback=self._print_progress,
                manager=ImprovedAsyncTaskManager(),
            )
        return self._manager

    @staticmethod
    def _print_progress(message: str, level: str):
        prefix = {"error": "!", "warning": "*", "success": "+"}.get(level, "-")
        print(f"{prefix} {message}")

    def require_project(self, name: str) -> Project:
        project = self.settings.find_project(name)
        if project is None:
            raise ValueError(f"Unknown project: {name}")
        return project

    def save(self):
        self.settings_service.save(self.settings)

    def run(self, future) -> int:
        result: AsyncResult = future.result()
        if result.message:
            print(result.message)
        if result.is_error and result.error is not None:
            for error in getattr(result.error, "errors", []):
                print(f"  {error}")
        return exit_code_for(result)

    def shutdown(self):
        if self._manager is not None:
            self._manager.shutdown()


def _format_flags(project: Project) -> str:
    return "  ".join(
        f"{env.display_name}:{'yes' if deployed else 'no'}"
        for env, deployed in project.deployment_flags().items()
    )


def cmd_projects(app: DevotterApp, args) -> int:
    if not app.settings.projects:
        print("No projects configured")
        return EXIT_SUCCESS
    namer = VersionFolderService()
    for project in app.settings.projects:
        folder = namer.get_folder_name(project.name, project.current_version)
        print(f"{project}  [{folder}]  {_format_flags(project)}")
    return EXIT_SUCCESS


def cmd_status(app: DevotterApp, args) -> int:
    projects = (
        [app.require_project(args.project)] if args.project else app.settings.projects
    )
    code = app.run(app.manager.refresh_status(projects))
    for project in projects:
        print(f"{project}: {_format_flags(project)}")
    app.save()
    return code


def cmd_add(app: DevotterApp, args) -> int:
    if args.project_file:
        project = BuildDescriptorService().load_project(args.project_file)
        if args.name:
            project.name = args.name
    else:
        if not args.name:
            raise ValueError("Either a project file or --name is required")
        project = Project(name=args.name)

    if args.source_path:
        project.source_path = args.source_path
    if args.build_command:
        project.build_command = args.build_command
    if args.version:
        project.current_version = _checked_version(args.version)
    for item in args.setting or []:
        project.config_settings.append(_parse_setting(item))

    app.settings.add_project(project)
    EnvironmentStatusService(app.settings.environment_paths).update_all(project)
    app.save()
    print(f"Added {project}")
    return EXIT_SUCCESS


def cmd_edit(app: DevotterApp, args) -> int:
    project = app.require_project(args.project)

    if args.version is not None:
        project.current_version = _checked_version(args.version)
    if args.source_path is not None:
        for warning in _source_path_warnings(args.source_path):
            print(f"* {warning}")
        project.source_path = args.source_path
    if args.build_command is not None:
        project.build_command = args.build_command
    if args.project_file is not None:
        project.project_file_path = args.project_file

    for key in args.remove_setting or []:
        kept = [s for s in project.config_settings if s.key_name != key]
        if len(kept) == len(project.config_settings):
            raise ValueError(f"No setting named {key} on {project.name}")
        project.config_settings = kept
    for item in args.setting or []:
        setting = _parse_setting(item)
        project.config_settings = [
            s for s in project.config_settings if s.key_name != setting.key_name
        ] + [setting]

    # A new version may already be deployed, or not at all
    EnvironmentStatusService(app.settings.environment_paths).update_all(project)
    app.save()
    print(f"Updated {project}  {_format_flags(project)}")
    return EXIT_SUCCESS


def cmd_forget(app: DevotterApp, args) -> int:
    project = app.require_project(args.project)
    app.settings.remove_project(project.name)
    app.save()

    left = [env.display_name for env, deployed in project.deployment_flags().items() if deployed]
    print(f"Forgot project {project.name}")
    if left:
        print(f"* Deployments left in place: {', '.join(left)}")
    return EXIT_SUCCESS


def _checked_version(version: str) -> str:
    if not VersionInfo.is_valid(version):
        raise ValueError(f"Version must be in format x.y.z (e.g. 1.0.0): {version!r}")
    return version


def _source_path_warnings(path: str) -> List[str]:
    warnings = []
    if not path:
        return warnings
    if not os.path.isdir(path):
        warnings.append(f"Source path does not exist: {path}")
    if not os.path.isabs(path):
        warnings.append(f"Source path is relative: {path}")
    return warnings


def _parse_setting(text: str) -> ConfigSetting:
    """KEY=DEV,TEST,PROD"""
    key, sep, values = text.partition("=")
    parts = values.split(",")
    if not sep or not key.strip() or len(parts) != 3:
        raise ValueError(f"Setting must look like KEY=dev,test,prod: {text}")
    return ConfigSetting(key.strip(), *parts)


def cmd_build(app: DevotterApp, args) -> int:
    project = app.require_project(args.project)
    new_version = args.version or VersionInfo.parse(project.current_version).bump(args.bump)
    try:
        return app.run(
            app.manager.build_and_deploy(project, new_version, deploy=not args.no_deploy)
        )
    finally:
        app.save()


def cmd_deploy(app: DevotterApp, args) -> int:
    project = app.require_project(args.project)
    try:
        return app.run(app.manager.deploy(project, DeploymentEnvironment.parse(args.environment)))
    finally:
        app.save()


def cmd_remove(app: DevotterApp, args) -> int:
    project = app.require_project(args.project)
    if args.forget:
        if args.environment:
            raise ValueError("--forget removes the project from every environment")
        environment = DeploymentEnvironment.DEVELOPMENT
    else:
        environment = DeploymentEnvironment.parse(args.environment or "development")

    try:
        code = app.run(app.manager.remove(project, environment))
        if args.forget and code != EXIT_FAILURE:
            app.settings.remove_project(project.name)
            print(f"Forgot project {project.name}")
        return code
    finally:
        app.save()


def cmd_paths(app: DevotterApp, args) -> int:
    changed = False
    for attr, value in (
        ("development_base_path", args.dev),
        ("test_base_path", args.test),
        ("production_base_path", args.prod),
    ):
        if value is not None:
            setattr(app.settings, attr, value)
            changed = True
    if changed:
        app.save()

    paths = app.settings.environment_paths
    for env in DeploymentEnvironment.ordered():
        print(f"{env.display_name:<12} {paths.base_path(env) or '(not set)'}")

    report = validate_environment_paths(paths, create_missing=args.create)
    for message in report.messages():
        print(f"* {message}")
    return EXIT_SUCCESS if report.is_valid else EXIT_FAILURE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devotter", description="Stage builds through development, test and production"
    )
    parser.add_argument("--settings", help="Settings file (default from configuration)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("projects", help="List projects")
    p.set_defaults(handler=cmd_projects)

    p = sub.add_parser("status", help="Refresh deployment status from disk")
    p.add_argument("project", nargs="?")
    p.set_defaults(handler=cmd_status)

    p = sub.add_parser("add", help="Add a project from a .csproj file or by name")
    p.add_argument("project_file", nargs="?")
    p.add_argument("--name")
    p.add_argument("--source-path")
    p.add_argument("--build-command")
    p.add_argument("--version")
    p.add_argument(
        "--setting", action="append", metavar="KEY=DEV,TEST,PROD",
        help="Per-environment config value (repeatable)",
    )
    p.set_defaults(handler=cmd_add)

    p = sub.add_parser("edit", help="Change an existing project's settings")
    p.add_argument("project")
    p.add_argument("--source-path")
    p.add_argument("--build-command")
    p.add_argument("--project-file")
    p.add_argument("--version", help="Current version, x.y.z")
    p.add_argument(
        "--setting", action="append", metavar="KEY=DEV,TEST,PROD",
        help="Add or replace a per-environment config value (repeatable)",
    )
    p.add_argument(
        "--remove-setting", action="append", metavar="KEY",
        help="Drop a config value (repeatable)",
    )
    p.set_defaults(handler=cmd_edit)

    p = sub.add_parser(
        "forget", help="Drop a project from the list; deployed folders stay on disk"
    )
    p.add_argument("project")
    p.set_defaults(handler=cmd_forget)

    p = sub.add_parser("build", help="Build a new version and deploy it to development")
    p.add_argument("project")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--version")
    group.add_argument("--bump", choices=["major", "minor", "patch"], default="patch")
    p.add_argument("--no-deploy", action="store_true", help="Build only")
    p.set_defaults(handler=cmd_build)

    p = sub.add_parser("deploy", help="Deploy the current version to an environment")
    p.add_argument("project")
    p.add_argument("environment", help="development, test or production")
    p.set_defaults(handler=cmd_deploy)

    p = sub.add_parser(
        "remove", help="Remove the current version from an environment and later ones"
    )
    p.add_argument("project")
    p.add_argument("environment", nargs="?")
    p.add_argument(
        "--forget", action="store_true",
        help="Remove from every environment, then drop the project (see also: forget)",
    )
    p.set_defaults(handler=cmd_remove)

    p = sub.add_parser("paths", help="Show, set and validate environment base paths")
    p.add_argument("--dev")
    p.add_argument("--test")
    p.add_argument("--prod")
    p.add_argument("--create", action="store_true", help="Create missing directories")
    p.set_defaults(handler=cmd_paths)

    return parser


def configure_logging(verbose: bool) -> LogSink:
    config = get_config()
    level = logging.DEBUG if verbose or config.debug else getattr(
        logging, config.log_level, logging.INFO
    )

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(console)

    sink = LogSink(level=level).start()
    sink.attach(root)
    return sink


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    sink = configure_logging(args.verbose)
    app = None
    try:
        app = DevotterApp(SettingsService(args.settings))
        return args.handler(app, args)
    except (AsyncError, ValueError) as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        if app is not None:
            app.shutdown()
        shutdown_all(timeout=get_config().service.shutdown_timeout)
        sink.shutdown()


if __name__ == "__main__":
    sys.exit(main())
