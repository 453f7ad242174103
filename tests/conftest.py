"""
Pytest configuration and fixtures for Devotter tests
"""

import os
import sys
import asyncio
import tempfile
import shutil
from pathlib import Path
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)


# Configure asyncio for tests
@pytest.fixture(scope="session")
def event_loop_policy():
    """Set event loop policy for tests"""
    from services.platform_service import PlatformService

    if PlatformService.is_windows():
        # Windows requires special handling
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
    return asyncio.get_event_loop_policy()


@pytest.fixture
def temp_directory():
    """Create a temporary directory for tests"""
    temp_dir = tempfile.mkdtemp(prefix="devotter_test_")
    yield Path(temp_dir)
    # Cleanup
    if os.path.exists(temp_dir):
        shutil.rmtree(temp_dir)


@pytest.fixture
def environment_paths(temp_directory):
    """Three configured, existing environment base directories"""
    from models.environment import EnvironmentPaths

    paths = EnvironmentPaths(
        development_base_path=str(temp_directory / "env" / "dev"),
        test_base_path=str(temp_directory / "env" / "test"),
        production_base_path=str(temp_directory / "env" / "prod"),
    )
    for base in (
        paths.development_base_path,
        paths.test_base_path,
        paths.production_base_path,
    ):
        os.makedirs(base)
    return paths


@pytest.fixture
def sample_project(temp_directory):
    """Project 'Alpha' 1.2.0 with a small build output tree"""
    from models.project import Project, ConfigSetting

    source = temp_directory / "src" / "Alpha" / "bin" / "Release"
    (source / "sub").mkdir(parents=True)
    (source / "app.dll").write_bytes(b"\x00binary")
    (source / "sub" / "readme.txt").write_text("hello")
    (source / "app.config").write_text(
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<configuration>\n"
        "  <appSettings>\n"
        '    <add key="Mode" value="local" />\n'
        "  </appSettings>\n"
        "</configuration>\n"
    )
    (source / "appsettings.json").write_text('{\n  "Mode": "local"\n}')

    return Project(
        name="Alpha",
        current_version="1.2.0",
        source_path=str(source),
        config_settings=[
            ConfigSetting("Mode", "dev", "test", "prod"),
            ConfigSetting("Endpoint", "http://d", "http://t", "http://p"),
        ],
    )


@pytest.fixture
def async_task_manager():
    """Create and setup an async task manager for tests"""
    from utils.async_utils import ImprovedAsyncTaskManager

    manager = ImprovedAsyncTaskManager()
    manager.setup_event_loop()

    yield manager

    # Cleanup
    manager.shutdown(timeout=2.0)


# Test markers
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "posix: requires a POSIX shell")


# Logging configuration for tests
@pytest.fixture(autouse=True)
def configure_logging():
    """Configure logging for tests"""
    import logging

    # Set log level for tests
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Cleanup helpers
@pytest.fixture(autouse=True)
def cleanup_async_resources():
    """Ensure async resources are cleaned up after each test"""
    yield

    # Force cleanup of any remaining async tasks
    try:
        loop = asyncio.get_running_loop()
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
    except RuntimeError:
        pass  # No loop running
