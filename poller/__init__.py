"""
GCR Poller - Container registry package-repository material

Tracks the latest tag of a Google Container Registry image so a CD server can
trigger pipelines on new image uploads.
"""

from .base import ImageManifest, ImageTag, RegistryClient, TagCatalog
from .gcr import GcrClient
from .poller import GcrPoller, PollFailed
from .resolver import NewRevision, NoRevision, TagResolver, Unchanged, compile_tag_filter

__all__ = [
    'ImageManifest',
    'ImageTag',
    'TagCatalog',
    'RegistryClient',
    'GcrClient',
    'GcrPoller',
    'PollFailed',
    'TagResolver',
    'NoRevision',
    'Unchanged',
    'NewRevision',
    'compile_tag_filter',
]

__version__ = '0.1.0'
