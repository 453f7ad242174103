"""
Tests for the data models - projects, settings, environments and versions
"""

import os
import sys
from pathlib import Path
import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from models.app_settings import AppSettings
from models.environment import DeploymentEnvironment, EnvironmentPaths
from models.project import ConfigSetting, Project
from models.version_info import VersionInfo

DEV = DeploymentEnvironment.DEVELOPMENT
TEST = DeploymentEnvironment.TEST
PROD = DeploymentEnvironment.PRODUCTION


class TestProject:
    """Test cases for Project model"""

    def test_project_defaults(self):
        project = Project(name="Alpha")

        assert project.current_version == "1.0.0"
        assert project.build_command == ""
        assert project.config_settings == []
        assert project.deployment_flags() == {DEV: False, TEST: False, PROD: False}

    def test_display_name_property(self):
        """Test the display_name property"""
        assert Project(name="Alpha").display_name == "Alpha"
        assert Project().display_name == "(unnamed)"

    def test_str_includes_version(self):
        assert str(Project(name="Alpha", current_version="1.2.0")) == "Alpha v1.2.0"

    def test_set_and_get_deployed(self):
        project = Project(name="Alpha")

        project.set_deployed(TEST, True)

        assert project.deployed_to_test is True
        assert project.get_deployed(TEST) is True
        assert project.get_deployed(PROD) is False

    def test_identity_hashing(self):
        """Two projects with equal fields are still distinct keys"""
        first, second = Project(name="Alpha"), Project(name="Alpha")

        assert first != second
        assert len({first, second}) == 2

    def test_round_trip_preserves_settings(self):
        project = Project(
            name="Alpha",
            current_version="2.1.0",
            source_path="/src/alpha",
            build_command="dotnet build",
            deployed_to_test=True,
            config_settings=[ConfigSetting("Mode", "d", "t", "p")],
        )

        restored = Project.from_dict(project.to_dict())

        assert restored.to_dict() == project.to_dict()
        assert restored.config_settings[0].value_for(PROD) == "p"

    def test_from_dict_tolerates_missing_fields(self):
        project = Project.from_dict({"name": "Beta", "current_version": None})

        assert project.name == "Beta"
        assert project.current_version == "1.0.0"
        assert project.config_settings == []


class TestConfigSetting:
    """Test cases for ConfigSetting"""

    def test_value_for_each_environment(self):
        setting = ConfigSetting("Endpoint", "http://d", "http://t", "http://p")

        assert setting.value_for(DEV) == "http://d"
        assert setting.value_for(TEST) == "http://t"
        assert setting.value_for(PROD) == "http://p"

    def test_from_dict_coerces_to_strings(self):
        setting = ConfigSetting.from_dict({"key_name": "Retries", "test_value": 3})
        assert setting.test_value == "3"
        assert setting.production_value == ""


class TestDeploymentEnvironment:
    """Promotion order and parsing"""

    def test_order(self):
        assert DeploymentEnvironment.ordered() == [DEV, TEST, PROD]
        assert [env.order for env in (DEV, TEST, PROD)] == [0, 1, 2]

    def test_predecessor_and_successors(self):
        assert DEV.predecessor is None
        assert TEST.predecessor is DEV
        assert PROD.predecessor is TEST
        assert DEV.successors == [TEST, PROD]
        assert PROD.successors == []

    @pytest.mark.parametrize(
        "text,expected",
        [("dev", DEV), ("Development", DEV), (" test ", TEST), ("PROD", PROD)],
    )
    def test_parse_aliases(self, text, expected):
        assert DeploymentEnvironment.parse(text) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown environment"):
            DeploymentEnvironment.parse("staging")

    def test_display_name(self):
        assert PROD.display_name == "Production"
        assert str(PROD) == "production"


class TestEnvironmentPaths:
    """Test cases for EnvironmentPaths"""

    def test_unconfigured_environment(self):
        paths = EnvironmentPaths(development_base_path="/srv/dev", test_base_path="  ")

        assert paths.is_configured(DEV)
        assert not paths.is_configured(TEST)
        assert paths.version_dir(TEST, "Alpha_v1_0_0") is None
        assert paths.configured_environments() == [DEV]

    def test_version_dir(self):
        paths = EnvironmentPaths(production_base_path="/srv/prod")
        assert paths.version_dir(PROD, "Alpha_v1_0_0") == Path("/srv/prod/Alpha_v1_0_0")

    def test_home_directory_expanded(self):
        paths = EnvironmentPaths(development_base_path="~/deploy")
        assert paths.version_dir(DEV, "A") == Path(os.path.expanduser("~/deploy")) / "A"


class TestAppSettings:
    """Test cases for AppSettings"""

    def test_environment_paths_view(self):
        settings = AppSettings(development_base_path="/d", production_base_path="/p")
        paths = settings.environment_paths

        assert paths.base_path(DEV) == "/d"
        assert not paths.is_configured(TEST)

    def test_find_project_case_insensitive(self):
        settings = AppSettings(projects=[Project(name="Alpha")])
        assert settings.find_project("alpha") is settings.projects[0]
        assert settings.find_project("beta") is None

    def test_duplicate_name_rejected(self):
        settings = AppSettings()
        settings.add_project(Project(name="Alpha"))

        with pytest.raises(ValueError, match="already exists"):
            settings.add_project(Project(name="ALPHA"))

    def test_duplicate_descriptor_rejected(self):
        settings = AppSettings()
        settings.add_project(Project(name="A", project_file_path="/x/A.csproj"))

        with pytest.raises(ValueError, match="already registered"):
            settings.add_project(Project(name="B", project_file_path="/x/A.csproj"))

    def test_remove_project(self):
        settings = AppSettings(projects=[Project(name="Alpha")])

        assert settings.remove_project("Alpha") is True
        assert settings.remove_project("Alpha") is False
        assert settings.projects == []

    def test_round_trip(self):
        settings = AppSettings(
            development_base_path="/d",
            projects=[Project(name="Alpha", config_settings=[ConfigSetting("K", "1", "2", "3")])],
        )

        restored = AppSettings.from_dict(settings.to_dict())

        assert restored.to_dict() == settings.to_dict()

    def test_from_dict_handles_nulls(self):
        restored = AppSettings.from_dict({"test_base_path": None, "projects": None})
        assert restored.test_base_path == ""
        assert restored.projects == []


class TestVersionInfo:
    """Test cases for VersionInfo"""

    def test_parse(self):
        assert VersionInfo.parse("2.5.9") == VersionInfo(2, 5, 9)

    @pytest.mark.parametrize("text", ["", "1.2", "v1.2.3", "1.2.3.4", None])
    def test_parse_invalid_defaults(self, text):
        assert str(VersionInfo.parse(text)) == "1.0.0"

    def test_increments(self):
        assert VersionInfo(1, 2, 3).increment_patch() == "1.2.4"
        assert VersionInfo(1, 2, 3).increment_minor() == "1.3.0"
        assert VersionInfo(1, 2, 3).increment_major() == "2.0.0"

    def test_bump(self):
        assert VersionInfo.parse("1.2.3").bump("minor") == "1.3.0"
        with pytest.raises(ValueError):
            VersionInfo().bump("build")

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1.2.3", True),
            ("10.0.42", True),
            ("1.2", False),
            ("1.2.3\n", False),
            (" 1.2.3", False),
            ("1.2.3-beta", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_valid(self, text, expected):
        assert VersionInfo.is_valid(text) is expected
