"""
Data models for deployable projects
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from models.environment import DeploymentEnvironment


@dataclass
class ConfigSetting:
    """One key with a value per environment"""

    key_name: str = ""
    development_value: str = ""
    test_value: str = ""
    production_value: str = ""

    def value_for(self, environment: DeploymentEnvironment) -> str:
        return {
            DeploymentEnvironment.DEVELOPMENT: self.development_value,
            DeploymentEnvironment.TEST: self.test_value,
            DeploymentEnvironment.PRODUCTION: self.production_value,
        }[environment]

    def to_dict(self) -> Dict[str, str]:
        return {
            "key_name": self.key_name,
            "development_value": self.development_value,
            "test_value": self.test_value,
            "production_value": self.production_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigSetting":
        return cls(
            key_name=str(data.get("key_name", "")),
            development_value=str(data.get("development_value", "")),
            test_value=str(data.get("test_value", "")),
            production_value=str(data.get("production_value", "")),
        )


# eq=False keeps identity hashing so a project can key the per-project lock registry
@dataclass(eq=False)
class Project:
    """Represents a deployable project and its deployment record"""

    name: str = ""
    current_version: str = "1.0.0"
    source_path: str = ""
    build_command: str = ""
    project_file_path: str = ""

    deployed_to_development: bool = False
    deployed_to_test: bool = False
    deployed_to_production: bool = False

    config_settings: List[ConfigSetting] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Get the display name for the project"""
        return self.name or "(unnamed)"

    def get_deployed(self, environment: DeploymentEnvironment) -> bool:
        return getattr(self, _FLAG_FIELDS[environment])

    def set_deployed(self, environment: DeploymentEnvironment, value: bool):
        setattr(self, _FLAG_FIELDS[environment], bool(value))

    def deployment_flags(self) -> Dict[DeploymentEnvironment, bool]:
        return {env: self.get_deployed(env) for env in DeploymentEnvironment.ordered()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "current_version": self.current_version,
            "source_path": self.source_path,
            "build_command": self.build_command,
            "project_file_path": self.project_file_path,
            "deployed_to_development": self.deployed_to_development,
            "deployed_to_test": self.deployed_to_test,
            "deployed_to_production": self.deployed_to_production,
            "config_settings": [setting.to_dict() for setting in self.config_settings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            name=str(data.get("name", "")),
            current_version=str(data.get("current_version") or "1.0.0"),
            source_path=str(data.get("source_path", "")),
            build_command=str(data.get("build_command", "")),
            project_file_path=str(data.get("project_file_path", "")),
            deployed_to_development=bool(data.get("deployed_to_development", False)),
            deployed_to_test=bool(data.get("deployed_to_test", False)),
            deployed_to_production=bool(data.get("deployed_to_production", False)),
            config_settings=[
                ConfigSetting.from_dict(item)
                for item in data.get("config_settings") or []
            ],
        )

    def __str__(self) -> str:
        return f"{self.display_name} v{self.current_version}"


_FLAG_FIELDS = {
    DeploymentEnvironment.DEVELOPMENT: "deployed_to_development",
    DeploymentEnvironment.TEST: "deployed_to_test",
    DeploymentEnvironment.PRODUCTION: "deployed_to_production",
}
