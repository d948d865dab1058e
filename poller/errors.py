"""
Exception types for the registry poller

Hierarchy:
    PollerError (base)
    ├── ConfigurationError - missing or malformed user configuration
    ├── CredentialError - service account cannot be turned into a token
    ├── TransportError - registry unreachable or returned a non-2xx status
    ├── PatternError - tag filter cannot be compiled or applied
    └── ManifestError - registry returned a manifest we cannot parse
"""

from typing import Any, Dict, Optional


class PollerError(Exception):
    """Base exception for all poller errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize error

        Args:
            message: Human-readable error description
            details: Optional extra context (registry, image, status code...)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(PollerError):
    """Required configuration is missing or malformed"""


class CredentialError(PollerError):
    """Credential is empty, malformed or cannot be exchanged for a token"""


class TransportError(PollerError):
    """Registry request failed or returned a non-success status"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.status_code = status_code


class PatternError(PollerError):
    """Tag filter pattern cannot be compiled or applied"""

    def __init__(self, pattern: Any, reason: str):
        super().__init__(f"Invalid tag filter {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class ManifestError(PollerError):
    """Registry manifest entry cannot be parsed"""

    def __init__(self, digest: str, reason: str):
        super().__init__(f"Malformed manifest {digest}: {reason}")
        self.digest = digest
        self.reason = reason
