"""Custom exceptions for JSON Oracle."""

from typing import Optional


class JsonOracleError(Exception):
    """Base class for all JSON Oracle errors."""


class ValidationError(JsonOracleError):
    """Raised when a request is malformed. Rejected synchronously, never retried."""


class AuthError(JsonOracleError):
    """Raised when an API key or identity token is missing or invalid."""


class IntegrationSuspendedError(AuthError):
    """Raised when a valid key belongs to a suspended integration."""

    def __init__(self, integration_id: str):
        self.integration_id = integration_id
        super().__init__(f"Integration {integration_id} is suspended")


class PermissionDeniedError(JsonOracleError):
    """Raised when an owner acts on an integration they do not own."""


class NotFoundError(JsonOracleError):
    """Raised when an integration or analysis does not exist."""


class RateLimitError(JsonOracleError):
    """Raised when an integration exceeds its submission rate."""

    def __init__(self, integration_id: str, retry_after: float):
        self.integration_id = integration_id
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for integration {integration_id}, "
            f"retry after {retry_after:.1f}s"
        )


class ModelError(JsonOracleError):
    """Base class for completion backend failures on a single turn."""

    kind = "model_error"
    retriable = False

    def __init__(self, model_id: str, message: str = ""):
        self.model_id = model_id
        super().__init__(message or f"{self.kind} for model {model_id}")


class ModelTimeout(ModelError):
    """The backend did not answer within the configured timeout."""

    kind = "timeout"
    retriable = True


class ModelUnavailable(ModelError):
    """The backend is unreachable or temporarily failing."""

    kind = "unavailable"
    retriable = True


class InvalidModel(ModelError):
    """The backend does not know the requested model. Terminal for that model."""

    kind = "invalid_model"


class AllModelsUnavailable(JsonOracleError):
    """No requested model produced a usable turn."""


class Cancelled(JsonOracleError):
    """The analysis was cancelled by its owner."""


class DeliveryFailure(JsonOracleError):
    """A webhook delivery attempt failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
