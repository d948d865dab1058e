"""
GCR poller - ties registry access, filter compilation and tag resolution together
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .base import ImageTag, RegistryClient, TagCatalog
from .config import PackageConfig, RepositoryConfig
from .errors import PollerError
from .messages import CheckConnectionResult
from .resolver import ResolutionOutcome, TagResolver, compile_tag_filter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollFailed(ResolutionOutcome):
    """The registry could not be checked; says nothing about whether the image changed"""
    reason: str


class GcrPoller:
    """Answers connectivity and latest-revision questions for one registry client"""

    def __init__(self, client: RegistryClient, resolver: Optional[TagResolver] = None):
        """
        Initialize poller

        Args:
            client: Registry client used for tokens and tag listings
            resolver: Tag resolver (default: TagResolver())
        """
        self.client = client
        self.resolver = resolver or TagResolver()

    def check_repository_connection(self, repository: RepositoryConfig, token: str) -> CheckConnectionResult:
        """
        Check that the registry accepts the credential at catalog level

        Args:
            repository: Registry configuration
            token: Google OAuth access token

        Returns:
            CheckConnectionResult with a success or error message
        """
        try:
            self.client.get_catalog_access_token(repository.registry_url, token)
        except (PollerError, requests.exceptions.RequestException) as e:
            logger.error("Error checking connection to repository %s: %s", repository.registry_url, e)
            return CheckConnectionResult.failed(str(e))

        return CheckConnectionResult.ok("Successfully connected to repository")

    def check_package_connection(
        self,
        package: PackageConfig,
        repository: RepositoryConfig,
        token: str,
    ) -> CheckConnectionResult:
        """
        Check that the image's tags can be listed

        Args:
            package: Image configuration
            repository: Registry configuration
            token: Google OAuth access token

        Returns:
            CheckConnectionResult with a success or error message
        """
        try:
            self.fetch_catalog(package, repository, token)
        except (PollerError, requests.exceptions.RequestException) as e:
            logger.error("Error checking connection to package %s: %s", package.image, e)
            return CheckConnectionResult.failed(str(e))

        return CheckConnectionResult.ok("Successfully connected to package")

    def fetch_catalog(self, package: PackageConfig, repository: RepositoryConfig, token: str) -> TagCatalog:
        """
        Get an image-scoped token and list the image's manifests

        Args:
            package: Image configuration
            repository: Registry configuration
            token: Google OAuth access token

        Returns:
            TagCatalog object
        """
        image_token = self.client.get_image_access_token(
            repository.registry_url, repository.project, package.image, token
        )
        return self.client.get_image_tags(
            repository.registry_url, repository.project, package.image, image_token
        )

    def latest_revision(self, package: PackageConfig, repository: RepositoryConfig, token: str) -> ResolutionOutcome:
        """
        Report the latest matching tag unconditionally

        Args:
            package: Image configuration
            repository: Registry configuration
            token: Google OAuth access token

        Returns:
            NewRevision, NoRevision or PollFailed
        """
        return self.latest_revision_since(package, repository, None, token)

    def latest_revision_since(
        self,
        package: PackageConfig,
        repository: RepositoryConfig,
        previous: Optional[ImageTag],
        token: str,
    ) -> ResolutionOutcome:
        """
        Report the latest matching tag if it differs from a previous revision

        Args:
            package: Image configuration
            repository: Registry configuration
            previous: Last revision the caller knows about, or None
            token: Google OAuth access token

        Returns:
            NewRevision, Unchanged, NoRevision or PollFailed
        """
        try:
            pattern = compile_tag_filter(package.tag_filter)
            catalog = self.fetch_catalog(package, repository, token)
        except (PollerError, requests.exceptions.RequestException) as e:
            logger.error("Error while getting latest revision of %s: %s", package.image, e)
            return PollFailed(str(e))

        outcome = self.resolver.resolve_change(catalog, pattern, previous)
        logger.debug("Resolved %s against %s: %s", package.image, previous, outcome)
        return outcome
