class ElementHooksError(RuntimeError):
    """Base class for errors raised by the element webhook core."""


class ScanError(ElementHooksError):
    """Raised when a page snapshot cannot be taken at all."""


class EmptySelectionError(ElementHooksError):
    """Raised when a bulk operation is requested with nothing selected."""


class RemoteError(ElementHooksError):
    """Raised when the remote data platform rejects or fails a request."""

    code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(self, message: str, *, status_code: int | None = None, details=None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TransportError(RemoteError):
    """Network failures, timeouts and 5xx responses."""

    code = "NETWORK_ERROR"
    retryable = True


class NotFoundError(RemoteError):
    code = "NOT_FOUND"


class ValidationError(RemoteError):
    code = "VALIDATION_ERROR"


class DuplicateAssignmentError(ValidationError):
    """Raised when an element already has a webhook binding."""

    code = "WEBHOOK_ALREADY_EXISTS"


class PermissionDeniedError(RemoteError):
    code = "FORBIDDEN"
