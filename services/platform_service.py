"""
Platform-specific operations service
"""

import os
import platform
import shutil
from typing import List, Tuple

from config.config import get_service_config


class PlatformService:
    """Service for handling platform-specific operations"""

    @staticmethod
    def get_platform() -> str:
        """Get the current platform (windows, linux, darwin)"""
        return platform.system().lower()

    @staticmethod
    def is_windows() -> bool:
        """Check if running on Windows"""
        return PlatformService.get_platform() == "windows"

    @staticmethod
    def is_unix_like() -> bool:
        return not PlatformService.is_windows()

    @staticmethod
    def create_shell_command(command: str) -> Tuple[List[str], str]:
        """
        Wrap a command line for the platform command interpreter
        Returns (command_list, display_command)
        """
        templates = get_service_config().shell_commands
        current_platform = PlatformService.get_platform()
        template = templates.get(current_platform, templates["linux"])

        formatted_cmd = [
            part.format(command=command) if "{command}" in part else part
            for part in template
        ]

        # Fall back to whatever bash is on PATH when /bin/bash is missing
        interpreter = formatted_cmd[0]
        if os.path.isabs(interpreter) and not os.path.exists(interpreter):
            found = shutil.which(os.path.basename(interpreter))
            if found:
                formatted_cmd[0] = found

        display = " ".join(formatted_cmd[:-1]) + f' "{command}"'
        return formatted_cmd, display
