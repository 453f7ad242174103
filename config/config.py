"""
Unified Configuration Management System
Centralizes all application settings with validation, type checking, and environment support
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from enum import Enum


def _default_app_dir() -> str:
    """Per-user application data directory"""
    base = os.getenv("APPDATA") or os.path.join(Path.home(), ".config")
    return os.path.join(base, "devotter")


class RunMode(Enum):
    """Application run modes"""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""

    pass


@dataclass
class DeploymentConfig:
    """Version folder naming and config patching rules"""

    default_version: str = "1.0.0"
    version_pattern: str = r"^\d+(\.\d+)*$"
    folder_name_max_length: int = 100
    folder_name_min_name_length: int = 10
    fallback_project_name: str = "Project"

    # Config files patched after staging
    xml_config_patterns: List[str] = field(default_factory=lambda: ["*.config"])
    json_config_patterns: List[str] = field(
        default_factory=lambda: ["appsettings*.json"]
    )
    xml_settings_section: str = "appSettings"
    json_indent: int = 2

    # Build descriptor elements that carry a version
    descriptor_version_elements: List[str] = field(
        default_factory=lambda: [
            "Version",
            "AssemblyVersion",
            "FileVersion",
            "PackageVersion",
        ]
    )


@dataclass
class ServiceConfig:
    """Service-specific configuration"""

    # Timeout settings
    build_timeout: float = 60.0
    drain_timeout: float = 5.0
    poll_interval: float = 0.1
    shutdown_timeout: float = 5.0

    # Async settings
    max_worker_threads: int = 4

    # Command interpreters
    shell_commands: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "windows": ["cmd.exe", "/c", "{command}"],
            "linux": ["/bin/bash", "-c", "{command}"],
            "darwin": ["/bin/bash", "-c", "{command}"],
        }
    )


@dataclass
class LoggingConfig:
    """Log sink configuration"""

    log_dir: str = field(default_factory=lambda: os.path.join(_default_app_dir(), "logs"))
    file_name_template: str = "devotter_log_{date}.log"
    line_format: str = "[%(asctime)s] [%(levelname)s] %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    queue_size: int = 10000
    enable_file_logging: bool = True


@dataclass
class PathsConfig:
    """Where the settings document lives"""

    settings_file: str = field(
        default_factory=lambda: os.path.join(_default_app_dir(), "settings.json")
    )
    backup_suffix: str = ".bak"


@dataclass
class UnifiedConfig:
    """Main configuration container"""

    # Sub-configurations
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)

    # Environment settings
    run_mode: RunMode = RunMode.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    # Application metadata
    version: str = "1.0.0"
    config_version: str = "1.0"


class ConfigManager:
    """Manages configuration loading, validation, and access"""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path(__file__).parent
        self.config: Optional[UnifiedConfig] = None
        self.logger = logging.getLogger("ConfigManager")

        # Load configuration
        self._load_config()

    def _load_config(self):
        """Load configuration from files and environment"""
        # Start with default configuration
        self.config = UnifiedConfig()

        # Apply user overrides
        self._apply_user_overrides()

        # Apply environment overrides
        self._apply_environment_overrides()

        # Validate configuration
        self._validate_config()

    def _apply_user_overrides(self):
        """Apply user settings from user_settings.json"""
        user_settings_file = self.config_dir / "user_settings.json"

        if not user_settings_file.exists():
            return

        try:
            with open(user_settings_file, "r", encoding="utf-8") as f:
                user_settings = json.load(f)

            self._apply_settings_dict(user_settings)
            self.logger.info("Applied user settings overrides")

        except (json.JSONDecodeError, FileNotFoundError) as e:
            self.logger.warning(f"Could not load user settings: {e}")

    def _apply_environment_overrides(self):
        """Apply environment-specific overrides"""
        mode_name = os.getenv("DEVOTTER_ENV", "development").lower()
        try:
            self.config.run_mode = RunMode(mode_name)
        except ValueError:
            self.logger.warning(f"Unknown run mode '{mode_name}', using development")
            self.config.run_mode = RunMode.DEVELOPMENT

        # Debug mode
        if os.getenv("DEBUG") is not None:
            self.config.debug = os.getenv("DEBUG").lower() in ("true", "1", "yes", "on")

        # Log level
        if os.getenv("LOG_LEVEL"):
            self.config.log_level = os.getenv("LOG_LEVEL").upper()

        if os.getenv("DEVOTTER_SETTINGS_FILE"):
            self.config.paths.settings_file = os.getenv("DEVOTTER_SETTINGS_FILE")

        if os.getenv("DEVOTTER_LOG_DIR"):
            self.config.logging.log_dir = os.getenv("DEVOTTER_LOG_DIR")

        if os.getenv("DEVOTTER_BUILD_TIMEOUT"):
            try:
                self.config.service.build_timeout = float(
                    os.getenv("DEVOTTER_BUILD_TIMEOUT")
                )
            except ValueError:
                self.logger.warning(
                    "Ignoring non-numeric DEVOTTER_BUILD_TIMEOUT=%s",
                    os.getenv("DEVOTTER_BUILD_TIMEOUT"),
                )

    def _apply_settings_dict(self, settings: Dict[str, Any]):
        """Apply settings from a dictionary using dot notation"""
        for key, value in settings.items():
            self._set_nested_value(self.config, key, value)

    def _set_nested_value(self, obj: Any, key_path: str, value: Any):
        """Set a nested value using dot notation (e.g., 'service.build_timeout')"""
        keys = key_path.split(".")
        current = obj

        # Navigate to the parent object
        for key in keys[:-1]:
            if isinstance(current, dict):
                if key in current:
                    current = current[key]
                else:
                    self.logger.warning(
                        f"Unknown config path: {'.'.join(keys[:keys.index(key)+1])}"
                    )
                    return
            elif hasattr(current, key):
                current = getattr(current, key)
            else:
                self.logger.warning(
                    f"Unknown config path: {'.'.join(keys[:keys.index(key)+1])}"
                )
                return

        # Set the final value
        final_key = keys[-1]

        if isinstance(current, dict):
            if final_key in current:
                if isinstance(current[final_key], dict) and isinstance(value, dict):
                    # Merge dictionaries
                    current[final_key].update(value)
                else:
                    current[final_key] = value
            else:
                self.logger.warning(f"Unknown config key: {key_path}")
        elif hasattr(current, final_key):
            if isinstance(getattr(current, final_key), dict) and isinstance(
                value, dict
            ):
                # Merge dictionaries
                getattr(current, final_key).update(value)
            else:
                setattr(current, final_key, value)
        else:
            self.logger.warning(f"Unknown config key: {key_path}")

    def _validate_config(self):
        """Validate the loaded configuration"""
        service = self.config.service
        deployment = self.config.deployment

        if service.build_timeout <= 0:
            raise ConfigValidationError("Build timeout must be positive")
        if service.drain_timeout <= 0:
            raise ConfigValidationError("Drain timeout must be positive")
        if service.max_worker_threads < 1:
            raise ConfigValidationError("At least one worker thread is required")
        if deployment.folder_name_min_name_length < 1:
            raise ConfigValidationError("Minimum name length must be positive")
        if deployment.folder_name_max_length <= deployment.folder_name_min_name_length:
            raise ConfigValidationError(
                "Folder name limit must exceed the minimum name length"
            )
        if self.config.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            self.logger.warning(
                f"Unknown log level {self.config.log_level}, using INFO"
            )
            self.config.log_level = "INFO"

        self.logger.debug("Configuration validation completed")

    def get_config(self) -> UnifiedConfig:
        """Get the current configuration"""
        if self.config is None:
            raise RuntimeError("Configuration not loaded")
        return self.config

    def reload_config(self):
        """Reload configuration from files"""
        self._load_config()

    def save_user_settings(self, settings: Dict[str, Any]):
        """Save user settings to user_settings.json"""
        user_settings_file = self.config_dir / "user_settings.json"

        try:
            with open(user_settings_file, "w", encoding="utf-8") as f:
                json.dump(settings, f, indent=2)

            # Reload configuration
            self.reload_config()
            self.logger.info("User settings saved and configuration reloaded")

        except Exception as e:
            self.logger.error(f"Failed to save user settings: {e}")
            raise


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def initialize_config(config_dir: Optional[Path] = None) -> ConfigManager:
    """Initialize the global configuration manager"""
    global _config_manager
    _config_manager = ConfigManager(config_dir)
    return _config_manager


def get_config() -> UnifiedConfig:
    """Get the current configuration"""
    if _config_manager is None:
        # Auto-initialize with default settings
        initialize_config()
    return _config_manager.get_config()


def get_config_manager() -> ConfigManager:
    """Get the configuration manager"""
    if _config_manager is None:
        initialize_config()
    return _config_manager


def reload_config():
    """Reload configuration from files"""
    if _config_manager is not None:
        _config_manager.reload_config()


# Convenience functions for common access patterns
def get_deployment_config() -> DeploymentConfig:
    """Get deployment configuration"""
    return get_config().deployment


def get_service_config() -> ServiceConfig:
    """Get service configuration"""
    return get_config().service


def get_logging_config() -> LoggingConfig:
    """Get log sink configuration"""
    return get_config().logging


def get_paths_config() -> PathsConfig:
    """Get settings document location"""
    return get_config().paths
