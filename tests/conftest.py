"""Shared fixtures for poller tests."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from poller.base import ImageManifest, TagCatalog
from poller.config import PackageConfig, RepositoryConfig

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def image_tags_response():
    """Decoded tags/list body with 1.1.0@2, 1.1.1@3 and 2.1.0@4."""
    return json.loads((FIXTURES / "get_image_tags_resp.json").read_text())


@pytest.fixture
def catalog(image_tags_response):
    return TagCatalog.from_response(image_tags_response)


@pytest.fixture
def repository():
    return RepositoryConfig(registry_url="gcr.io", project="my-gcp-project", service_account="{}")


@pytest.fixture
def package():
    return PackageConfig(image="myimage")


@pytest.fixture
def registry_client(catalog):
    """RegistryClient double returning the fixture catalog."""
    client = MagicMock()
    client.get_catalog_access_token.return_value = "catalog_token"
    client.get_image_access_token.return_value = "image_token"
    client.get_image_tags.return_value = catalog
    return client


@pytest.fixture
def make_catalog():
    """Build a catalog from (tags, uploaded_at_ms) pairs, in order."""

    def _make(*entries):
        manifests = {}
        for i, (tags, uploaded) in enumerate(entries):
            digest = f"sha256:{i:064d}"
            manifests[digest] = ImageManifest(digest=digest, tags=tuple(tags), uploaded_at_ms=uploaded)
        return TagCatalog(manifests=manifests)

    return _make
