"""
Test to verify the test setup is working correctly
"""

import os
import sys
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)


class TestSetup:
    """Test cases to verify test setup"""

    def test_imports(self):
        """Test that all modules can be imported"""
        # Services
        from services.version_folder_service import VersionFolderService
        from services.file_service import FileService, CopyResult
        from services.config_patch_service import ConfigPatchService, ConfigPatchReport
        from services.platform_service import PlatformService
        from services.process_runner import ProcessRunner, ProcessOutput
        from services.status_service import EnvironmentStatusService, ProjectLockRegistry
        from services.deployment_pipeline import DeploymentPipeline, PipelineState
        from services.build_descriptor_service import BuildDescriptorService
        from services.settings_service import SettingsService

        # Models
        from models.project import Project, ConfigSetting
        from models.environment import DeploymentEnvironment, EnvironmentPaths
        from models.app_settings import AppSettings
        from models.version_info import VersionInfo

        # Orchestration
        from commands import BuildAndDeployCommand, PromoteCommand
        from core import OperationManager

        # Utils
        from utils.async_utils import run_in_executor, ImprovedAsyncTaskManager
        from utils.cancellation import CancellationToken
        from utils.log_sink import LogSink

        # Config
        from config.config import get_config

        config = get_config()
        assert config.service.build_timeout == 60.0
        assert config.deployment.folder_name_max_length == 100

    def test_fixtures_available(self, temp_directory, environment_paths, sample_project):
        """Test that pytest fixtures are available"""
        assert temp_directory.exists()
        assert temp_directory.is_dir()
        assert os.path.isdir(environment_paths.development_base_path)
        assert os.path.isdir(sample_project.source_path)

    def test_mock_support(self):
        """Test that mocking works"""
        from unittest.mock import Mock

        mock_obj = Mock()
        mock_obj.method.return_value = "mocked"
        assert mock_obj.method() == "mocked"

    @pytest.mark.asyncio
    async def test_async_support(self):
        """Test that async tests run"""
        import asyncio

        await asyncio.sleep(0)
