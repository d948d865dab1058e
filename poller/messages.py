"""
Plugin request and response messages
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .base import EPOCH, ImageTag, millis_to_datetime
from .config import MaterialProperties
from .errors import ConfigurationError

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


def format_timestamp(value: datetime) -> str:
    """Format as yyyy-MM-ddTHH:mm:ss.SSSZ in UTC"""
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp as sent by the server

    Args:
        value: e.g. "2019-03-01T10:00:00.000Z"; naive values are taken as UTC

    Returns:
        Aware datetime
    """
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def datetime_to_millis(value: datetime) -> int:
    return (value - EPOCH) // timedelta(milliseconds=1)


@dataclass
class PackageRevision:
    """A revision as exchanged with the server; empty when revision is None"""
    revision: Optional[str] = None
    timestamp: Optional[datetime] = None
    user: str = ""
    revision_comment: str = ""
    trackback_url: str = ""
    data: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_tag(cls, tag: ImageTag) -> "PackageRevision":
        return cls(revision=tag.name, timestamp=millis_to_datetime(tag.uploaded_at_ms))

    def to_image_tag(self) -> Optional[ImageTag]:
        if self.revision is None or self.timestamp is None:
            return None
        return ImageTag(name=self.revision, uploaded_at_ms=datetime_to_millis(self.timestamp))

    @property
    def is_empty(self) -> bool:
        return self.revision is None

    def to_dict(self) -> Dict[str, Any]:
        if self.is_empty:
            return {}
        result = {
            'revision': self.revision,
            'timestamp': format_timestamp(self.timestamp) if self.timestamp else None,
            'user': self.user,
            'revisionComment': self.revision_comment,
            'trackbackUrl': self.trackback_url,
        }
        if self.data:
            result['data'] = dict(self.data)
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PackageRevision":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("previous-revision must be an object")

        timestamp = None
        if data.get('timestamp'):
            try:
                timestamp = parse_timestamp(str(data['timestamp']))
            except ValueError as e:
                raise ConfigurationError(f"Invalid revision timestamp: {data['timestamp']}") from e
        elif data.get('revision') is not None:
            raise ConfigurationError(f"Revision {data['revision']} has no timestamp")

        return cls(
            revision=data.get('revision'),
            timestamp=timestamp,
            user=data.get('user') or "",
            revision_comment=data.get('revisionComment') or "",
            trackback_url=data.get('trackbackUrl') or "",
            data=dict(data.get('data') or {}),
        )


@dataclass
class CheckConnectionResult:
    """Outcome of a connectivity probe"""
    status: str
    messages: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, message: str) -> "CheckConnectionResult":
        return cls(STATUS_SUCCESS, [message])

    @classmethod
    def failed(cls, message: str) -> "CheckConnectionResult":
        return cls(STATUS_FAILURE, [message])

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'messages': list(self.messages)}


@dataclass
class PluginRequest:
    """Decoded body of any configuration-carrying request"""
    repository: MaterialProperties = field(default_factory=MaterialProperties)
    package: MaterialProperties = field(default_factory=MaterialProperties)
    previous: Optional[PackageRevision] = None

    @classmethod
    def from_json(cls, body: Optional[str]) -> "PluginRequest":
        """
        Decode a request body

        Args:
            body: JSON with optional 'repository-configuration',
                'package-configuration' and 'previous-revision' keys

        Returns:
            PluginRequest object

        Raises:
            ConfigurationError: If the body is not a JSON object
        """
        if not body or not body.strip():
            return cls()

        try:
            data = json.loads(body)
        except ValueError as e:
            raise ConfigurationError(f"Request body is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError("Request body must be a JSON object")

        previous = None
        if data.get('previous-revision'):
            previous = PackageRevision.from_dict(data['previous-revision'])

        return cls(
            repository=MaterialProperties.from_dict(data.get('repository-configuration')),
            package=MaterialProperties.from_dict(data.get('package-configuration')),
            previous=previous,
        )


def to_json(value: Any) -> str:
    """Serialize a message (anything with to_dict/to_list) to compact JSON"""
    if hasattr(value, 'to_dict'):
        value = value.to_dict()
    elif hasattr(value, 'to_list'):
        value = value.to_list()
    return json.dumps(value, separators=(',', ':'))
