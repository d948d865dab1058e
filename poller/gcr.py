"""
Google Container Registry client

GCR speaks the Docker Registry V2 API with a token endpoint: a Google OAuth
access token is exchanged for a registry token scoped to the catalog or to a
single image, which is then used to list the image's manifests and tags.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from .base import RegistryClient, TagCatalog
from .errors import CredentialError, TransportError

logger = logging.getLogger(__name__)

CATALOG_SCOPE = "registry:catalog:*"


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class GcrClient(RegistryClient):
    """Client for Google Container Registry (gcr.io and regional hosts)"""

    def __init__(
        self,
        timeout: float = 30.0,
        default_scheme: str = "https",
        session: Optional[requests.Session] = None,
        skip_malformed: bool = False,
    ):
        """
        Initialize GCR client

        Args:
            timeout: Per-request timeout in seconds (default: 30)
            default_scheme: Scheme used when the registry URL is a bare host
            session: Optional pre-configured requests session
            skip_malformed: Drop unparsable manifests instead of failing
        """
        super().__init__(timeout)
        self.default_scheme = default_scheme
        self.skip_malformed = skip_malformed
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'GCR-Poller/0.1.0'
        })

    def _base_url(self, registry_url: str) -> str:
        """
        Normalize a registry location to a base URL

        Args:
            registry_url: Bare host ("gcr.io", "localhost:5000") or full URL

        Returns:
            URL without trailing slash
        """
        registry_url = registry_url.strip().rstrip('/')
        if '://' in registry_url:
            return registry_url
        return f"{self.default_scheme}://{registry_url}"

    def _service(self, registry_url: str) -> str:
        """Registry host used as the token service name"""
        return self._base_url(registry_url).split('://', 1)[1]

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {'Authorization': f'Bearer {token}'}

    def _request_token(self, registry_url: str, scope: str, token: str) -> str:
        """
        Request a registry token for a scope

        Args:
            registry_url: Registry host or URL
            scope: Token scope (e.g., "repository:proj/image:pull")
            token: Google OAuth access token

        Returns:
            Registry token

        Raises:
            CredentialError: On transport failure, non-2xx status, or a body
                without a token
        """
        url = f"{self._base_url(registry_url)}/v2/token"
        params = {
            'service': self._service(registry_url),
            'scope': scope,
        }

        try:
            response = self.session.get(
                url, params=params, headers=self._auth_headers(token), timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error("Unable to get GCR token from %s: %s", url, e)
            raise CredentialError("Unable to get GCR token", {'registry': registry_url}) from e

        if not _is_success(response.status_code):
            raise CredentialError(
                f"Invalid status code while getting GCR token = {response.status_code}",
                {'registry': registry_url, 'scope': scope},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialError("GCR token response is not JSON", {'registry': registry_url}) from e

        registry_token = None
        if isinstance(data, dict):
            registry_token = data.get('token') or data.get('access_token')
        if not registry_token:
            raise CredentialError("GCR token response has no token", {'registry': registry_url})

        return registry_token

    def get_catalog_access_token(self, registry_url: str, token: str) -> str:
        """
        Get a catalog-scoped token; used to validate registry connectivity

        Args:
            registry_url: Registry host or URL
            token: Google OAuth access token

        Returns:
            Registry token
        """
        return self._request_token(registry_url, CATALOG_SCOPE, token)

    def get_image_access_token(self, registry_url: str, project: str, image: str, token: str) -> str:
        """
        Get a pull-scoped token for one image

        Args:
            registry_url: Registry host or URL
            project: GCP project id
            image: Image name within the project
            token: Google OAuth access token

        Returns:
            Registry token
        """
        scope = f"repository:{project}/{image}:pull"
        return self._request_token(registry_url, scope, token)

    def get_image_tags(self, registry_url: str, project: str, image: str, token: str) -> TagCatalog:
        """
        List manifests and tags for an image

        Args:
            registry_url: Registry host or URL
            project: GCP project id
            image: Image name within the project (may contain '/')
            token: Pull-scoped registry token

        Returns:
            TagCatalog object

        Raises:
            TransportError: On transport failure, non-2xx status, or a non-JSON body
            ManifestError: If a manifest entry cannot be parsed
        """
        url = f"{self._base_url(registry_url)}/v2/{quote(project)}/{quote(image)}/tags/list"

        try:
            response = self.session.get(url, headers=self._auth_headers(token), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Unable to get image list %s: %s", url, e)
            raise TransportError("Unable to get image list", details={'url': url}) from e

        if not _is_success(response.status_code):
            raise TransportError(
                "Invalid status code while getting image list",
                status_code=response.status_code,
                details={'url': url},
            )

        try:
            data: Any = response.json()
        except ValueError as e:
            raise TransportError("Image list response is not JSON", details={'url': url}) from e

        if not isinstance(data, dict):
            raise TransportError("Image list response is not an object", details={'url': url})

        catalog = TagCatalog.from_response(data, skip_malformed=self.skip_malformed)
        logger.debug("Fetched %d manifests for %s/%s", len(catalog), project, image)
        return catalog
