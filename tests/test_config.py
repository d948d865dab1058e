"""Tests for configuration schema, validation and config files."""

import json

import pytest

from poller.base import ImageTag
from poller.config import (
    DOCKER_IMAGE,
    DOCKER_TAG_FILTER,
    GCP_PROJECT,
    GCP_REGISTRY_URL,
    GCP_SERVICE_ACCOUNT,
    MaterialProperties,
    MaterialProperty,
    PackageConfig,
    RepositoryConfig,
    ValidationError,
    load_config,
    package_configuration,
    repository_configuration,
    validate_package_configuration,
    validate_repository_configuration,
)
from poller.errors import ConfigurationError


class TestSchemas:
    """Tests for the declared property schemas."""

    def test_package_configuration_keys(self) -> None:
        assert set(package_configuration().keys()) == {DOCKER_IMAGE, DOCKER_TAG_FILTER}

    def test_repository_configuration_keys(self) -> None:
        assert set(repository_configuration().keys()) == {
            GCP_SERVICE_ACCOUNT,
            GCP_PROJECT,
            GCP_REGISTRY_URL,
        }

    def test_service_account_is_secure_and_not_identity(self) -> None:
        prop = repository_configuration().get(GCP_SERVICE_ACCOUNT).to_dict()
        assert prop == {
            "display-name": "GCP Service Account Key",
            "display-order": "0",
            "part-of-identity": False,
            "required": True,
            "secure": True,
        }

    def test_tag_filter_is_optional_identity(self) -> None:
        prop = package_configuration().get(DOCKER_TAG_FILTER)
        assert prop.required is False
        assert prop.part_of_identity is True


class TestValidateRepositoryConfiguration:
    """Tests for validate_repository_configuration."""

    def test_complete_configuration_is_valid(self) -> None:
        config = MaterialProperties.from_values({
            GCP_SERVICE_ACCOUNT: "{}",
            GCP_PROJECT: "my-project",
            GCP_REGISTRY_URL: "gcr.io",
        })
        assert validate_repository_configuration(config).success

    def test_missing_service_account(self) -> None:
        config = MaterialProperties.from_values({GCP_REGISTRY_URL: "gcr.io", GCP_PROJECT: "my-project"})

        result = validate_repository_configuration(config)

        assert result.failure
        assert result.errors == [
            ValidationError(GCP_SERVICE_ACCOUNT, "GCP service account key not provided"),
        ]

    def test_missing_service_account_and_registry_url(self) -> None:
        config = MaterialProperties.from_values({GCP_PROJECT: "my-project"})

        result = validate_repository_configuration(config)

        assert result.errors == [
            ValidationError(GCP_SERVICE_ACCOUNT, "GCP service account key not provided"),
            ValidationError(GCP_REGISTRY_URL, "GCP registry url not specified"),
        ]

    def test_missing_project_and_registry_url(self) -> None:
        config = MaterialProperties.from_values({GCP_SERVICE_ACCOUNT: "{}"})

        result = validate_repository_configuration(config)

        assert result.messages == ["GCP project not specified", "GCP registry url not specified"]

    def test_blank_value_counts_as_missing(self) -> None:
        config = MaterialProperties.from_values({
            GCP_SERVICE_ACCOUNT: "{}",
            GCP_PROJECT: "  ",
            GCP_REGISTRY_URL: "gcr.io",
        })
        assert validate_repository_configuration(config).messages == ["GCP project not specified"]


class TestValidatePackageConfiguration:
    """Tests for validate_package_configuration."""

    def test_missing_image(self) -> None:
        result = validate_package_configuration(MaterialProperties())
        assert result.errors == [ValidationError(DOCKER_IMAGE, "Docker image not specified")]

    def test_null_image(self) -> None:
        config = MaterialProperties().add(DOCKER_IMAGE, MaterialProperty(value=None))
        assert validate_package_configuration(config).messages == ["Docker image is null"]

    def test_empty_image(self) -> None:
        config = MaterialProperties.from_values({DOCKER_IMAGE: ""})
        assert validate_package_configuration(config).errors == [
            ValidationError(DOCKER_IMAGE, "Docker image is empty"),
        ]

    def test_valid_image_without_filter(self) -> None:
        config = MaterialProperties.from_values({DOCKER_IMAGE: "myimage"})
        assert validate_package_configuration(config).success

    def test_invalid_filter(self) -> None:
        config = MaterialProperties.from_values({DOCKER_IMAGE: "myimage", DOCKER_TAG_FILTER: "[bad"})

        result = validate_package_configuration(config)

        assert result.to_list() == [{
            "key": DOCKER_TAG_FILTER,
            "message": "Docker tag filter is not a valid regular expression",
        }]


class TestTypedConfigs:
    """Tests for RepositoryConfig and PackageConfig."""

    def test_repository_from_properties(self) -> None:
        config = MaterialProperties.from_values({
            GCP_SERVICE_ACCOUNT: "{}",
            GCP_PROJECT: " my-project ",
            GCP_REGISTRY_URL: "gcr.io",
        })
        assert RepositoryConfig.from_properties(config) == RepositoryConfig("gcr.io", "my-project", "{}")

    def test_repository_from_incomplete_properties_raises(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig.from_properties(MaterialProperties())
        assert "GCP project not specified" in str(exc_info.value)

    def test_package_from_properties(self) -> None:
        config = MaterialProperties.from_values({DOCKER_IMAGE: "myimage", DOCKER_TAG_FILTER: "^1"})
        assert PackageConfig.from_properties(config) == PackageConfig("myimage", "^1")

    def test_package_round_trips_through_properties(self) -> None:
        package = PackageConfig("myimage", "^v")
        assert PackageConfig.from_properties(package.to_properties()) == package

    def test_properties_accept_plain_values(self) -> None:
        props = MaterialProperties.from_dict({DOCKER_IMAGE: "myimage", DOCKER_TAG_FILTER: {"value": "^1"}})
        assert props.value(DOCKER_IMAGE) == "myimage"
        assert props.value(DOCKER_TAG_FILTER) == "^1"


class TestLoadConfig:
    """Tests for YAML config files."""

    def test_loads_sections(self, tmp_path) -> None:
        (tmp_path / "key.json").write_text(json.dumps({"type": "service_account"}))
        config_file = tmp_path / "poll.yaml"
        config_file.write_text(
            "repository:\n"
            "  registry_url: gcr.io\n"
            "  project: 12345\n"
            "  service_account_file: key.json\n"
            "package:\n"
            "  image: my-service\n"
            "  tag_filter: '^v'\n"
        )

        config = load_config(config_file)

        assert config["repository"].value(GCP_REGISTRY_URL) == "gcr.io"
        assert config["repository"].value(GCP_PROJECT) == "12345"
        assert json.loads(config["repository"].value(GCP_SERVICE_ACCOUNT)) == {"type": "service_account"}
        assert config["package"].value(DOCKER_IMAGE) == "my-service"
        assert config["package"].value(DOCKER_TAG_FILTER) == "^v"
        assert config["previous"] is None

    def test_inline_service_account_mapping(self, tmp_path) -> None:
        config_file = tmp_path / "poll.yaml"
        config_file.write_text("repository:\n  service_account:\n    type: service_account\n")

        config = load_config(config_file)

        assert json.loads(config["repository"].value(GCP_SERVICE_ACCOUNT)) == {"type": "service_account"}

    def test_missing_file_raises(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "absent.yaml")

    def test_non_mapping_raises(self, tmp_path) -> None:
        config_file = tmp_path / "poll.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_config(config_file)

    def test_missing_key_file_raises(self, tmp_path) -> None:
        config_file = tmp_path / "poll.yaml"
        config_file.write_text("repository:\n  service_account_file: nope.json\n")

        with pytest.raises(ConfigurationError):
            load_config(config_file)

    def test_previous_revision(self, tmp_path) -> None:
        config_file = tmp_path / "poll.yaml"
        config_file.write_text("previous:\n  tag: '2.1.0'\n  timestamp: 1550000000000\n")

        assert load_config(config_file)["previous"] == ImageTag("2.1.0", 1550000000000)

    @pytest.mark.parametrize("previous", [
        "previous: v1\n",
        "previous:\n  timestamp: 4\n",
        "previous:\n  tag: v1\n",
        "previous:\n  tag: v1\n  timestamp: soon\n",
        "previous:\n  tag: v1\n  timestamp: -1\n",
    ])
    def test_invalid_previous_revision_raises(self, tmp_path, previous) -> None:
        config_file = tmp_path / "poll.yaml"
        config_file.write_text(previous)

        with pytest.raises(ConfigurationError):
            load_config(config_file)
