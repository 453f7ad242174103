"""
Deployment environments and their base directories
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional


class DeploymentEnvironment(Enum):
    """Ordered promotion tiers"""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @property
    def order(self) -> int:
        return _ORDER.index(self)

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def predecessor(self) -> Optional["DeploymentEnvironment"]:
        """Tier this environment is seeded from (None for development)"""
        index = self.order
        return _ORDER[index - 1] if index > 0 else None

    @property
    def successors(self) -> List["DeploymentEnvironment"]:
        """Later tiers, nearest first"""
        return list(_ORDER[self.order + 1 :])

    @classmethod
    def ordered(cls) -> List["DeploymentEnvironment"]:
        return list(_ORDER)

    @classmethod
    def parse(cls, value: str) -> "DeploymentEnvironment":
        """Accept 'dev', 'development', 'Test', 'prod', ..."""
        normalized = (value or "").strip().lower()
        aliases = {"dev": "development", "prod": "production", "tst": "test"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown environment: {value!r}") from None

    def __str__(self) -> str:
        return self.value


_ORDER = [
    DeploymentEnvironment.DEVELOPMENT,
    DeploymentEnvironment.TEST,
    DeploymentEnvironment.PRODUCTION,
]


@dataclass
class EnvironmentPaths:
    """Base directories of the three environments; empty means unconfigured"""

    development_base_path: str = ""
    test_base_path: str = ""
    production_base_path: str = ""

    def base_path(self, environment: DeploymentEnvironment) -> str:
        return {
            DeploymentEnvironment.DEVELOPMENT: self.development_base_path,
            DeploymentEnvironment.TEST: self.test_base_path,
            DeploymentEnvironment.PRODUCTION: self.production_base_path,
        }[environment] or ""

    def is_configured(self, environment: DeploymentEnvironment) -> bool:
        return bool(self.base_path(environment).strip())

    def version_dir(
        self, environment: DeploymentEnvironment, folder_name: str
    ) -> Optional[Path]:
        """Version folder inside an environment, None when unconfigured"""
        if not self.is_configured(environment):
            return None
        return Path(os.path.expanduser(self.base_path(environment))) / folder_name

    def configured_environments(self) -> List[DeploymentEnvironment]:
        return [env for env in DeploymentEnvironment.ordered() if self.is_configured(env)]
