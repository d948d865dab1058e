"""
Repository/package configuration: schema, validation and config files

The CD server asks the plugin for two property schemas, one for the registry
("repository") and one for the tracked image ("package"), then sends the
user's values back with every request. The same values can be supplied to the
CLI through a YAML file.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .base import ImageTag
from .errors import ConfigurationError

GCP_SERVICE_ACCOUNT = "GCP_SERVICE_ACCOUNT"
GCP_PROJECT = "GCP_PROJECT"
GCP_REGISTRY_URL = "GCP_REGISTRY_URL"
DOCKER_IMAGE = "DOCKER_IMAGE"
DOCKER_TAG_FILTER = "DOCKER_TAG_FILTER"


@dataclass
class MaterialProperty:
    """One configuration field, either as declared in a schema or as sent by the server"""
    value: Optional[str] = None
    display_name: Optional[str] = None
    display_order: Optional[str] = None
    part_of_identity: Optional[bool] = None
    required: Optional[bool] = None
    secure: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        keys = {
            'value': self.value,
            'display-name': self.display_name,
            'display-order': self.display_order,
            'part-of-identity': self.part_of_identity,
            'required': self.required,
            'secure': self.secure,
        }
        return {k: v for k, v in keys.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Any) -> "MaterialProperty":
        if not isinstance(data, dict):
            # Tolerate {"KEY": "value"} as well as {"KEY": {"value": "value"}}
            return cls(value=None if data is None else str(data))
        return cls(
            value=data.get('value'),
            display_name=data.get('display-name'),
            display_order=data.get('display-order'),
            part_of_identity=data.get('part-of-identity'),
            required=data.get('required'),
            secure=data.get('secure'),
        )


@dataclass
class MaterialProperties:
    """Ordered set of configuration fields keyed by property name"""
    properties: Dict[str, MaterialProperty] = field(default_factory=dict)

    def add(self, key: str, prop: MaterialProperty) -> "MaterialProperties":
        self.properties[key] = prop
        return self

    def get(self, key: str) -> Optional[MaterialProperty]:
        return self.properties.get(key)

    def value(self, key: str) -> Optional[str]:
        prop = self.properties.get(key)
        return prop.value if prop else None

    def keys(self) -> List[str]:
        return list(self.properties)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {k: p.to_dict() for k, p in self.properties.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MaterialProperties":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be an object")
        return cls({k: MaterialProperty.from_dict(v) for k, v in data.items()})

    @classmethod
    def from_values(cls, values: Dict[str, Optional[str]]) -> "MaterialProperties":
        return cls({k: MaterialProperty(value=str(v)) for k, v in values.items() if v is not None})


@dataclass(frozen=True)
class ValidationError:
    """A validation failure for one configuration key"""
    key: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'key': self.key, 'message': self.message}


@dataclass
class ValidationResult:
    """Collected validation errors"""
    errors: List[ValidationError] = field(default_factory=list)

    def add_error(self, key: str, message: str) -> None:
        self.errors.append(ValidationError(key, message))

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def failure(self) -> bool:
        return bool(self.errors)

    @property
    def messages(self) -> List[str]:
        return [e.message for e in self.errors]

    def to_list(self) -> List[Dict[str, str]]:
        return [e.to_dict() for e in self.errors]


def repository_configuration() -> MaterialProperties:
    """Schema of the registry-level fields"""
    return (
        MaterialProperties()
        .add(GCP_SERVICE_ACCOUNT, MaterialProperty(
            display_name="GCP Service Account Key",
            display_order="0",
            part_of_identity=False,
            required=True,
            secure=True,
        ))
        .add(GCP_PROJECT, MaterialProperty(
            display_name="GCP project id",
            display_order="1",
            part_of_identity=True,
            required=True,
        ))
        .add(GCP_REGISTRY_URL, MaterialProperty(
            display_name="GCR url",
            display_order="2",
            part_of_identity=True,
            required=True,
        ))
    )


def package_configuration() -> MaterialProperties:
    """Schema of the image-level fields"""
    return (
        MaterialProperties()
        .add(DOCKER_IMAGE, MaterialProperty(
            display_name="Docker Image Name",
            display_order="0",
            part_of_identity=True,
            required=True,
        ))
        .add(DOCKER_TAG_FILTER, MaterialProperty(
            display_name="Docker Tag Filter Regular Expression",
            display_order="1",
            part_of_identity=True,
            required=False,
        ))
    )


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def validate_repository_configuration(config: MaterialProperties) -> ValidationResult:
    """
    Validate user-supplied registry fields

    Args:
        config: Values sent by the server

    Returns:
        ValidationResult with one error per missing field
    """
    result = ValidationResult()

    if _is_blank(config.value(GCP_SERVICE_ACCOUNT)):
        result.add_error(GCP_SERVICE_ACCOUNT, "GCP service account key not provided")
    if _is_blank(config.value(GCP_PROJECT)):
        result.add_error(GCP_PROJECT, "GCP project not specified")
    if _is_blank(config.value(GCP_REGISTRY_URL)):
        result.add_error(GCP_REGISTRY_URL, "GCP registry url not specified")

    return result


def validate_package_configuration(config: MaterialProperties) -> ValidationResult:
    """
    Validate user-supplied image fields

    Args:
        config: Values sent by the server

    Returns:
        ValidationResult; image problems stop validation at the first one
    """
    result = ValidationResult()

    image = config.get(DOCKER_IMAGE)
    if image is None:
        result.add_error(DOCKER_IMAGE, "Docker image not specified")
        return result
    if image.value is None:
        result.add_error(DOCKER_IMAGE, "Docker image is null")
        return result
    if not image.value.strip():
        result.add_error(DOCKER_IMAGE, "Docker image is empty")
        return result

    tag_filter = config.value(DOCKER_TAG_FILTER)
    if not _is_blank(tag_filter):
        try:
            re.compile(tag_filter)
        except re.error:
            result.add_error(DOCKER_TAG_FILTER, "Docker tag filter is not a valid regular expression")

    return result


@dataclass(frozen=True)
class RepositoryConfig:
    """Registry location and credential"""
    registry_url: str
    project: str
    service_account: str

    @classmethod
    def from_properties(cls, config: MaterialProperties) -> "RepositoryConfig":
        result = validate_repository_configuration(config)
        if result.failure:
            raise ConfigurationError("; ".join(result.messages))
        return cls(
            registry_url=config.value(GCP_REGISTRY_URL).strip(),
            project=config.value(GCP_PROJECT).strip(),
            service_account=config.value(GCP_SERVICE_ACCOUNT),
        )

    def to_properties(self) -> MaterialProperties:
        return MaterialProperties.from_values({
            GCP_SERVICE_ACCOUNT: self.service_account,
            GCP_PROJECT: self.project,
            GCP_REGISTRY_URL: self.registry_url,
        })


@dataclass(frozen=True)
class PackageConfig:
    """Tracked image and tag filter"""
    image: str
    tag_filter: Optional[str] = None

    @classmethod
    def from_properties(cls, config: MaterialProperties) -> "PackageConfig":
        result = validate_package_configuration(config)
        if result.failure:
            raise ConfigurationError("; ".join(result.messages))
        return cls(
            image=config.value(DOCKER_IMAGE).strip(),
            tag_filter=config.value(DOCKER_TAG_FILTER),
        )

    def to_properties(self) -> MaterialProperties:
        return MaterialProperties.from_values({
            DOCKER_IMAGE: self.image,
            DOCKER_TAG_FILTER: self.tag_filter,
        })


def _read_service_account(section: Dict[str, Any], base_dir: Path) -> Optional[str]:
    inline = section.get('service_account')
    if inline is not None:
        # YAML may have parsed an inline key into a mapping
        if isinstance(inline, dict):
            return json.dumps(inline)
        return str(inline)

    key_file = section.get('service_account_file')
    if key_file is None:
        return None

    path = Path(key_file).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    try:
        return path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read service account file: {path}") from e


def _read_previous(section: Any) -> Optional[ImageTag]:
    """
    Read the previously seen revision from a config file

    Args:
        section: Mapping with 'tag' and 'timestamp' (upload time in epoch
            milliseconds), or None

    Returns:
        ImageTag object or None if the section is absent

    Raises:
        ConfigurationError: If the section is not a mapping or a field is missing or invalid
    """
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigurationError("'previous' must be a mapping")

    tag = section.get('tag')
    if tag is None:
        raise ConfigurationError("'previous' has no tag")

    timestamp = section.get('timestamp')
    if isinstance(timestamp, bool) or timestamp is None:
        raise ConfigurationError(f"Previous revision {tag} has no timestamp")
    try:
        millis = int(timestamp)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid previous timestamp: {timestamp}") from e
    if millis < 0:
        raise ConfigurationError(f"Invalid previous timestamp: {timestamp}")

    return ImageTag(name=str(tag), uploaded_at_ms=millis)


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a poll configuration file

    Example:
        repository:
          registry_url: gcr.io
          project: my-project
          service_account_file: key.json
        package:
          image: my-service
          tag_filter: '^v\\d+'
        previous:
          tag: v1.2.0
          timestamp: 1550000000000

    Args:
        config_path: Path to YAML file

    Returns:
        Dict with 'repository' and 'package' sections as MaterialProperties
            and 'previous' as an ImageTag (or None)

    Raises:
        ConfigurationError: If the file is missing or not a mapping
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

    repo = config.get('repository') or {}
    pkg = config.get('package') or {}
    if not isinstance(repo, dict) or not isinstance(pkg, dict):
        raise ConfigurationError("'repository' and 'package' must be mappings")

    base_dir = config_path.parent
    repository = MaterialProperties.from_values({
        GCP_SERVICE_ACCOUNT: _read_service_account(repo, base_dir),
        GCP_PROJECT: repo.get('project'),
        GCP_REGISTRY_URL: repo.get('registry_url'),
    })
    package = MaterialProperties.from_values({
        DOCKER_IMAGE: pkg.get('image'),
        DOCKER_TAG_FILTER: pkg.get('tag_filter'),
    })

    return {
        'repository': repository,
        'package': package,
        'previous': _read_previous(config.get('previous')),
    }
