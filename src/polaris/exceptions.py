"""Custom exception hierarchy for Polaris."""


class PolarisError(Exception):
    """Base exception for all Polaris errors."""


class ConfigurationError(PolarisError):
    """Raised when configuration is invalid or required environment variables are missing."""


class StoreError(PolarisError):
    """Raised when the remote key-value store encounters an error."""


class StoreConnectionError(StoreError):
    """Raised when a connection to the remote store cannot be established."""


class CacheSerializationError(PolarisError):
    """Raised when a cached payload cannot be encoded or decoded."""


class BackendError(PolarisError):
    """Raised when a generation backend call fails.

    Attributes:
        status_code: HTTP status returned by the provider, if any.
        error_type: Provider or transport error category
            (e.g. ``rate_limit_error``, ``network_error``, ``timeout``).
        backend: Name of the backend that raised the error.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        backend: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.backend = backend


class BackendUnavailableError(BackendError):
    """Raised when a backend cannot be used at all (e.g. missing credentials)."""

    def __init__(self, message: str, backend: str | None = None):
        super().__init__(message, error_type="unavailable", backend=backend)


class BackendTimeoutError(BackendError):
    """Raised when a backend call exceeds its time budget."""

    def __init__(self, message: str, backend: str | None = None):
        super().__init__(message, status_code=408, error_type="timeout", backend=backend)


class BlueprintValidationError(PolarisError):
    """Raised when a backend response cannot be turned into a blueprint.

    Attributes:
        code: Machine-readable failure code (``INVALID_JSON``,
            ``MISSING_SECTIONS``, ...).
        details: Optional structured context for logging.
    """

    def __init__(self, message: str, code: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class InputValidationError(PolarisError):
    """Raised when a caller-supplied generation context is malformed."""
