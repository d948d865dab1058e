"""
Google service account credentials
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from .errors import CredentialError

logger = logging.getLogger(__name__)

GCR_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/devstorage.read_write",
]


class GoogleCredentialService:
    """Turns a service account key into a short-lived access token"""

    def __init__(self, scopes: Optional[List[str]] = None):
        """
        Initialize credential service

        Args:
            scopes: OAuth scopes to request (default: cloud-platform and GCS read/write)
        """
        self.scopes = list(scopes or GCR_SCOPES)

    def get_gcr_credential(self, service_account_json: Union[str, Dict[str, Any], None]) -> service_account.Credentials:
        """
        Build refreshed credentials able to access GCR

        Args:
            service_account_json: Service account key as a JSON string or
                already-decoded mapping

        Returns:
            Refreshed google-auth credentials

        Raises:
            CredentialError: If the key is empty, not JSON, not a service
                account key, or cannot be refreshed
        """
        if not service_account_json:
            raise CredentialError("Service account key is empty")

        info = service_account_json
        if isinstance(info, str):
            try:
                info = json.loads(info)
            except ValueError as e:
                raise CredentialError("Service account key is not valid JSON") from e

        if not isinstance(info, dict):
            raise CredentialError("Service account key is not a JSON object")

        try:
            credentials = service_account.Credentials.from_service_account_info(
                info, scopes=self.scopes
            )
            credentials.refresh(Request())
        except (GoogleAuthError, ValueError, KeyError) as e:
            logger.error("Unable to get GCR credential: %s", e)
            raise CredentialError("Unable to get GCR credential") from e

        return credentials

    def get_access_token(self, service_account_json: Union[str, Dict[str, Any], None]) -> str:
        """
        Get a bearer token for the registry token endpoint

        Args:
            service_account_json: Service account key (JSON string or mapping)

        Returns:
            Access token string
        """
        credentials = self.get_gcr_credential(service_account_json)
        if not credentials.token:
            raise CredentialError("Service account refresh returned no token")
        return credentials.token
