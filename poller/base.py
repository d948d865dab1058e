"""
Registry data model and base registry client
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import ManifestError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_millis(value: Any) -> int:
    # bool is an int subclass; the registry never sends one for a timestamp
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    millis = int(value)
    if millis < 0:
        raise ValueError(f"negative timestamp: {millis}")
    return millis


def millis_to_datetime(millis: int) -> datetime:
    """Convert Unix epoch milliseconds to an aware UTC datetime"""
    return EPOCH + timedelta(milliseconds=millis)


@dataclass(frozen=True)
class ImageTag:
    """A tag name paired with the upload time of the manifest carrying it"""
    name: str
    uploaded_at_ms: int

    @property
    def created(self) -> datetime:
        return millis_to_datetime(self.uploaded_at_ms)

    def __repr__(self) -> str:
        return f"ImageTag(name='{self.name}', uploaded='{self.created.isoformat()}')"


@dataclass(frozen=True)
class ImageManifest:
    """One uploaded image as reported by the registry tag listing"""
    digest: str
    tags: Tuple[str, ...]
    uploaded_at_ms: int
    created_at_ms: Optional[int] = None
    media_type: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def from_dict(cls, digest: str, data: Dict[str, Any]) -> "ImageManifest":
        """
        Parse a manifest entry from a registry tags/list response

        Args:
            digest: Manifest digest (the key of the entry)
            data: Entry body, e.g. {"tag": ["1.0"], "timeUploadedMs": "1550000000000"}

        Returns:
            ImageManifest object

        Raises:
            ManifestError: If the upload timestamp is missing or not a
                non-negative integer, or the tag field is not a list of names
        """
        if not isinstance(data, dict):
            raise ManifestError(digest, "entry is not an object")

        try:
            uploaded = _parse_millis(data.get("timeUploadedMs"))
        except (TypeError, ValueError) as e:
            raise ManifestError(digest, f"bad timeUploadedMs: {e}") from e

        raw_tags = data.get("tag") or []
        if not isinstance(raw_tags, (list, tuple)):
            raise ManifestError(digest, "tag field is not a list")
        if any(t is None for t in raw_tags):
            raise ManifestError(digest, "tag list contains null")

        # Creation time and size are informational only
        created = None
        if data.get("timeCreatedMs") is not None:
            try:
                created = _parse_millis(data["timeCreatedMs"])
            except (TypeError, ValueError):
                created = None

        size = None
        if data.get("imageSizeBytes") is not None:
            try:
                size = int(data["imageSizeBytes"])
            except (TypeError, ValueError):
                size = None

        return cls(
            digest=digest,
            tags=tuple(str(t) for t in raw_tags),
            uploaded_at_ms=uploaded,
            created_at_ms=created,
            media_type=data.get("mediaType"),
            size=size,
        )


@dataclass
class TagCatalog:
    """All manifests currently known for an image, keyed by digest"""
    manifests: Dict[str, ImageManifest] = field(default_factory=dict)
    name: Optional[str] = None

    @classmethod
    def from_response(cls, payload: Dict[str, Any], skip_malformed: bool = False) -> "TagCatalog":
        """
        Build a catalog from a registry tags/list JSON payload

        Args:
            payload: Decoded JSON body of /v2/<project>/<image>/tags/list
            skip_malformed: Log and drop entries that fail to parse instead of
                failing the whole catalog (default: False)

        Returns:
            TagCatalog object

        Raises:
            ManifestError: If the manifest field is not an object, or an entry
                is malformed and skip_malformed is False
        """
        entries = payload.get("manifest") or {}
        if not isinstance(entries, dict):
            raise ManifestError(str(payload.get("name") or "listing"), "manifest field is not an object")

        manifests = {}

        for digest, data in entries.items():
            try:
                manifests[digest] = ImageManifest.from_dict(digest, data)
            except ManifestError as e:
                if not skip_malformed:
                    raise
                logger.warning("Skipping manifest: %s", e)

        return cls(manifests=manifests, name=payload.get("name"))

    def __iter__(self) -> Iterator[ImageManifest]:
        return iter(self.manifests.values())

    def __len__(self) -> int:
        return len(self.manifests)

    def tags(self) -> Iterator[ImageTag]:
        """Yield every (tag, upload time) pair in the catalog"""
        for manifest in self:
            for name in manifest.tags:
                yield ImageTag(name=name, uploaded_at_ms=manifest.uploaded_at_ms)


class RegistryClient(ABC):
    """Abstract base class for registry access"""

    def __init__(self, timeout: float = 30.0):
        """
        Initialize client

        Args:
            timeout: Per-request timeout in seconds
        """
        self.timeout = timeout

    @abstractmethod
    def get_catalog_access_token(self, registry_url: str, token: str) -> str:
        """
        Exchange a credential token for a catalog-scoped registry token

        Args:
            registry_url: Registry host or URL (e.g., "gcr.io")
            token: Bearer token from the credential service

        Returns:
            Registry token string
        """
        pass

    @abstractmethod
    def get_image_access_token(self, registry_url: str, project: str, image: str, token: str) -> str:
        """
        Exchange a credential token for a pull-scoped token on one image

        Args:
            registry_url: Registry host or URL
            project: Project/namespace (e.g., "my-gcp-project")
            image: Image name within the project
            token: Bearer token from the credential service

        Returns:
            Registry token string
        """
        pass

    @abstractmethod
    def get_image_tags(self, registry_url: str, project: str, image: str, token: str) -> TagCatalog:
        """
        List all manifests and tags for an image

        Args:
            registry_url: Registry host or URL
            project: Project/namespace
            image: Image name within the project
            token: Pull-scoped registry token

        Returns:
            TagCatalog object
        """
        pass
