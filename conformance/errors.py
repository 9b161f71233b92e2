"""
Error types for the conformance engine.

Two families live here. Test signals (SkipTest, OmitTest, AssertionFailure)
are raised from inside a test body and converted into a recorded outcome by
the sequence runner. Everything else describes a failure of the engine's own
configuration or of one of its collaborators.
"""

from typing import Any


class ConformanceError(Exception):
    """Base exception for all conformance engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# Test outcome signals


class TestSignal(ConformanceError):
    """Base class for signals a test body raises to end itself with an outcome."""

    __test__ = False  # keep pytest from collecting this as a test class


class SkipTest(TestSignal):
    """Nothing to test: a capability or the data the test needs is missing."""

    pass


class OmitTest(TestSignal):
    """The test does not apply to the current run configuration."""

    pass


class AssertionFailure(TestSignal):
    """An expectation about server behavior was violated."""

    pass


# Configuration errors


class ConfigurationError(ConformanceError):
    """Raised when there's a configuration error."""

    pass


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration is missing."""

    def __init__(self, config_key: str, description: str | None = None):
        self.config_key = config_key
        message = f"Missing required configuration: {config_key}"
        if description:
            message += f". {description}"
        super().__init__(
            message,
            details={"config_key": config_key, "description": description},
        )


class ResourceDefinitionError(ConfigurationError):
    """Raised when a resource configuration record is malformed."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(
            f"Invalid resource definition in {source}: {reason}",
            details={"source": source, "reason": reason},
        )


class UnknownResourceTypeError(ConfigurationError):
    """Raised when a run selects a resource type with no configured sequence."""

    def __init__(self, resource_type: str, available: list[str] | None = None):
        self.resource_type = resource_type
        self.available = available or []
        message = f"No sequence configured for resource type: {resource_type}"
        if self.available:
            message += f". Available: {', '.join(self.available)}"
        super().__init__(
            message,
            details={"resource_type": resource_type, "available": self.available},
        )


# Collaborator errors


class CapabilityFetchError(ConformanceError):
    """Raised when the server's CapabilityStatement cannot be retrieved."""

    def __init__(self, endpoint: str, status: int | None = None, reason: str | None = None):
        self.endpoint = endpoint
        self.status = status
        message = f"Failed to fetch CapabilityStatement from {endpoint}"
        if status is not None:
            message += f" (status {status})"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            details={"endpoint": endpoint, "status": status, "reason": reason},
        )


class ProfileValidationError(ConformanceError):
    """Raised when the profile validator service cannot be used."""

    def __init__(self, profile_url: str, reason: str):
        self.profile_url = profile_url
        super().__init__(
            f"Profile validation against {profile_url} failed: {reason}",
            details={"profile_url": profile_url, "reason": reason},
        )
