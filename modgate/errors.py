"""Exception hierarchy for the moderation gateway."""

from typing import Optional


class ModerationGatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, cause: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class FetchError(ModerationGatewayError):
    """Raised when a media reference cannot be downloaded or decoded."""

    pass


class ClassifierError(ModerationGatewayError):
    """Base exception for external classifier failures."""

    pass


class ClassifierTransportError(ClassifierError):
    """Raised when a classifier API is unreachable or answers non-2xx."""

    pass


class ClassifierResponseError(ClassifierError):
    """Raised when a classifier reply cannot be parsed into a verdict."""

    pass


class ExtractionError(ModerationGatewayError):
    """Raised when frames or audio cannot be extracted from a video."""

    pass


class ConfigurationError(ModerationGatewayError):
    """Raised at startup when provider configuration is missing or invalid."""

    pass


class PublishError(ModerationGatewayError):
    """Raised when the social-posting API rejects a post."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
