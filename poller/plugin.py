"""
Package-repository plugin entry point

Maps the CD server's request names to handlers. The set of requests is fixed,
so the table is built once per plugin instance and exposed read-only.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from .config import (
    PackageConfig,
    RepositoryConfig,
    package_configuration,
    repository_configuration,
    validate_package_configuration,
    validate_repository_configuration,
)
from .credentials import GoogleCredentialService
from .errors import PollerError
from .gcr import GcrClient
from .messages import CheckConnectionResult, PackageRevision, PluginRequest, to_json
from .poller import GcrPoller, PollFailed
from .resolver import NewRevision, ResolutionOutcome

logger = logging.getLogger(__name__)

EXTENSION = "package-repository"
SUPPORTED_VERSIONS = ("1.0",)

SUCCESS_CODE = 200
BAD_REQUEST_CODE = 400
ERROR_CODE = 500


class RequestName(str, Enum):
    REPOSITORY_CONFIGURATION = "repository-configuration"
    PACKAGE_CONFIGURATION = "package-configuration"
    VALIDATE_REPOSITORY_CONFIGURATION = "validate-repository-configuration"
    VALIDATE_PACKAGE_CONFIGURATION = "validate-package-configuration"
    CHECK_REPOSITORY_CONNECTION = "check-repository-connection"
    CHECK_PACKAGE_CONNECTION = "check-package-connection"
    LATEST_REVISION = "latest-revision"
    LATEST_REVISION_SINCE = "latest-revision-since"


@dataclass(frozen=True)
class PluginResponse:
    """Status code and JSON body returned to the server"""
    code: int
    body: Optional[str]

    @classmethod
    def success(cls, body: Optional[str]) -> "PluginResponse":
        return cls(SUCCESS_CODE, body)

    @classmethod
    def bad_request(cls, message: str) -> "PluginResponse":
        return cls(BAD_REQUEST_CODE, message)

    @classmethod
    def error(cls, message: str) -> "PluginResponse":
        return cls(ERROR_CODE, message)


Handler = Callable[[PluginRequest], PluginResponse]


def revision_response(outcome: ResolutionOutcome) -> PluginResponse:
    """
    Translate a resolution outcome into a response

    A new revision is serialized; "nothing new" is an empty object. A failed
    poll is an error response so the server does not record it as unchanged.
    """
    if isinstance(outcome, PollFailed):
        return PluginResponse.error(outcome.reason)
    if isinstance(outcome, NewRevision):
        return PluginResponse.success(to_json(PackageRevision.from_tag(outcome.tag)))
    return PluginResponse.success(to_json(PackageRevision()))


class PackageRepositoryMaterial:
    """Handles package-repository requests for GCR images"""

    def __init__(
        self,
        poller: Optional[GcrPoller] = None,
        credential_service: Optional[GoogleCredentialService] = None,
    ):
        """
        Initialize plugin

        Args:
            poller: Poller to use (default: GcrPoller over a GcrClient)
            credential_service: Credential service (default: GoogleCredentialService())
        """
        self.poller = poller or GcrPoller(GcrClient())
        self.credential_service = credential_service or GoogleCredentialService()
        self.handlers: Mapping[RequestName, Handler] = MappingProxyType({
            RequestName.REPOSITORY_CONFIGURATION: self._repository_configuration,
            RequestName.PACKAGE_CONFIGURATION: self._package_configuration,
            RequestName.VALIDATE_REPOSITORY_CONFIGURATION: self._validate_repository_configuration,
            RequestName.VALIDATE_PACKAGE_CONFIGURATION: self._validate_package_configuration,
            RequestName.CHECK_REPOSITORY_CONNECTION: self._check_repository_connection,
            RequestName.CHECK_PACKAGE_CONNECTION: self._check_package_connection,
            RequestName.LATEST_REVISION: self._latest_revision,
            RequestName.LATEST_REVISION_SINCE: self._latest_revision_since,
        })

    def plugin_identifier(self) -> dict:
        return {'extension': EXTENSION, 'versions': list(SUPPORTED_VERSIONS)}

    def handle(self, request_name: str, body: Optional[str] = None) -> PluginResponse:
        """
        Dispatch one request

        Args:
            request_name: Request name sent by the server
            body: JSON request body

        Returns:
            PluginResponse; 400 for unknown names, 500 for any failure
        """
        try:
            name = RequestName(request_name)
        except ValueError:
            return PluginResponse.bad_request(f"Invalid request name {request_name}")

        try:
            request = PluginRequest.from_json(body)
            return self.handlers[name](request)
        except Exception as e:
            logger.error("Error handling %s: %s", name.value, e, exc_info=True)
            return PluginResponse.error(str(e))

    def _repository_configuration(self, request: PluginRequest) -> PluginResponse:
        return PluginResponse.success(to_json(repository_configuration()))

    def _package_configuration(self, request: PluginRequest) -> PluginResponse:
        return PluginResponse.success(to_json(package_configuration()))

    def _validate_repository_configuration(self, request: PluginRequest) -> PluginResponse:
        return PluginResponse.success(to_json(validate_repository_configuration(request.repository)))

    def _validate_package_configuration(self, request: PluginRequest) -> PluginResponse:
        return PluginResponse.success(to_json(validate_package_configuration(request.package)))

    def _check_repository_connection(self, request: PluginRequest) -> PluginResponse:
        try:
            repository = RepositoryConfig.from_properties(request.repository)
            token = self.credential_service.get_access_token(repository.service_account)
        except PollerError as e:
            return PluginResponse.success(to_json(CheckConnectionResult.failed(str(e))))

        result = self.poller.check_repository_connection(repository, token)
        return PluginResponse.success(to_json(result))

    def _check_package_connection(self, request: PluginRequest) -> PluginResponse:
        try:
            repository = RepositoryConfig.from_properties(request.repository)
            package = PackageConfig.from_properties(request.package)
            token = self.credential_service.get_access_token(repository.service_account)
        except PollerError as e:
            return PluginResponse.success(to_json(CheckConnectionResult.failed(str(e))))

        result = self.poller.check_package_connection(package, repository, token)
        return PluginResponse.success(to_json(result))

    def _latest_revision(self, request: PluginRequest) -> PluginResponse:
        repository = RepositoryConfig.from_properties(request.repository)
        package = PackageConfig.from_properties(request.package)
        token = self.credential_service.get_access_token(repository.service_account)

        outcome = self.poller.latest_revision(package, repository, token)
        return revision_response(outcome)

    def _latest_revision_since(self, request: PluginRequest) -> PluginResponse:
        repository = RepositoryConfig.from_properties(request.repository)
        package = PackageConfig.from_properties(request.package)
        previous = request.previous.to_image_tag() if request.previous else None
        token = self.credential_service.get_access_token(repository.service_account)

        outcome = self.poller.latest_revision_since(package, repository, previous, token)
        return revision_response(outcome)
