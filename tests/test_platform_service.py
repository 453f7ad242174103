"""
Tests for PlatformService - Tests for platform detection and interpreter commands
"""

import os
import sys
from unittest.mock import patch
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from services.platform_service import PlatformService


class TestPlatformService:
    """Test cases for PlatformService"""

    def test_get_platform(self):
        """Test getting current platform"""
        with patch("platform.system") as mock_system:
            mock_system.return_value = "Windows"
            assert PlatformService.get_platform() == "windows"

            mock_system.return_value = "Linux"
            assert PlatformService.get_platform() == "linux"

            mock_system.return_value = "Darwin"
            assert PlatformService.get_platform() == "darwin"

    def test_is_windows(self):
        """Test Windows platform detection"""
        with patch.object(PlatformService, "get_platform") as mock_platform:
            mock_platform.return_value = "windows"
            assert PlatformService.is_windows() is True
            assert PlatformService.is_unix_like() is False

            mock_platform.return_value = "linux"
            assert PlatformService.is_windows() is False
            assert PlatformService.is_unix_like() is True

    def test_windows_shell_command(self):
        """Windows wraps the command line in cmd.exe /c"""
        with patch.object(PlatformService, "get_platform", return_value="windows"):
            cmd, display = PlatformService.create_shell_command("dotnet build")

        assert cmd == ["cmd.exe", "/c", "dotnet build"]
        assert display == 'cmd.exe /c "dotnet build"'

    def test_unix_shell_command(self):
        """POSIX platforms run the command through bash -c"""
        with patch.object(PlatformService, "get_platform", return_value="linux"), patch(
            "os.path.exists", return_value=True
        ):
            cmd, _ = PlatformService.create_shell_command("make all")

        assert cmd == ["/bin/bash", "-c", "make all"]

    def test_unknown_platform_uses_linux_template(self):
        with patch.object(PlatformService, "get_platform", return_value="sunos"), patch(
            "os.path.exists", return_value=True
        ):
            cmd, _ = PlatformService.create_shell_command("true")

        assert cmd[1:] == ["-c", "true"]

    def test_missing_bash_falls_back_to_path_lookup(self):
        with patch.object(PlatformService, "get_platform", return_value="linux"), patch(
            "os.path.exists", return_value=False
        ), patch("shutil.which", return_value="/usr/local/bin/bash"):
            cmd, _ = PlatformService.create_shell_command("true")

        assert cmd[0] == "/usr/local/bin/bash"
