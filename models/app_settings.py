"""
Application settings document: environment base paths and the project list
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.environment import EnvironmentPaths
from models.project import Project


@dataclass
class AppSettings:
    """Flat settings document owned by the application"""

    development_base_path: str = ""
    test_base_path: str = ""
    production_base_path: str = ""
    projects: List[Project] = field(default_factory=list)

    @property
    def environment_paths(self) -> EnvironmentPaths:
        return EnvironmentPaths(
            development_base_path=self.development_base_path,
            test_base_path=self.test_base_path,
            production_base_path=self.production_base_path,
        )

    def find_project(self, name: str) -> Optional[Project]:
        """Case-insensitive lookup by project name"""
        wanted = (name or "").strip().lower()
        return next(
            (project for project in self.projects if project.name.lower() == wanted),
            None,
        )

    def add_project(self, project: Project):
        """Add a project; duplicates by name or descriptor path are rejected"""
        if self.find_project(project.name) is not None:
            raise ValueError(f"A project named '{project.name}' already exists")
        if project.project_file_path and any(
            existing.project_file_path == project.project_file_path
            for existing in self.projects
        ):
            raise ValueError(
                f"Project file is already registered: {project.project_file_path}"
            )
        self.projects.append(project)

    def remove_project(self, name: str) -> bool:
        project = self.find_project(name)
        if project is None:
            return False
        self.projects.remove(project)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "development_base_path": self.development_base_path,
            "test_base_path": self.test_base_path,
            "production_base_path": self.production_base_path,
            "projects": [project.to_dict() for project in self.projects],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        return cls(
            development_base_path=str(data.get("development_base_path") or ""),
            test_base_path=str(data.get("test_base_path") or ""),
            production_base_path=str(data.get("production_base_path") or ""),
            projects=[Project.from_dict(item) for item in data.get("projects") or []],
        )
