"""Error taxonomy raised by the service layer.

Every error carries the human-readable text returned to the client in the
error envelope and the HTTP status it maps to. Internal detail never goes into
``message``; log it instead.
"""


class ErrorCode:
    """Centralized error codes used in logs and for classification."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED_ACTION = "UNAUTHORIZED_ACTION"
    LOGIN_FAILED = "LOGIN_FAILED"
    NOTHING_TO_DO = "NOTHING_TO_DO"
    STORAGE_FAILED = "STORAGE_FAILED"
    INTERNAL = "INTERNAL"


GENERIC_ERROR_TEXT = "Something went wrong. Please try again in a few seconds."
LOGIN_FAILED_TEXT = "Log in failed. Make sure your credentials are correct then try again."


class ServiceError(Exception):
    """Base class for errors that are converted into the error envelope."""

    status_code = 500
    error_code = ErrorCode.INTERNAL
    default_message = GENERIC_ERROR_TEXT

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Bad or missing input."""
    status_code = 422
    error_code = ErrorCode.VALIDATION_FAILED
    default_message = "The given data was invalid."


class NotFoundError(ServiceError):
    """Referenced user or post does not exist."""
    status_code = 404
    error_code = ErrorCode.NOT_FOUND
    default_message = "Not found."


class AuthorizationError(ServiceError):
    """Caller does not own the resource."""
    status_code = 403
    error_code = ErrorCode.UNAUTHORIZED_ACTION
    default_message = "Unauthorized action."


class AuthError(ServiceError):
    """Bad credentials or bearer token. Never says which part was wrong."""
    status_code = 401
    error_code = ErrorCode.LOGIN_FAILED
    default_message = LOGIN_FAILED_TEXT


class BusinessError(ServiceError):
    """Expected "nothing to do" condition (empty list, unchanged value).

    Not a fault: answered with 200 and a non-success envelope.
    """
    status_code = 200
    error_code = ErrorCode.NOTHING_TO_DO


class StorageError(ServiceError):
    """Writing or verifying an uploaded file failed."""
    status_code = 503
    error_code = ErrorCode.STORAGE_FAILED


class InternalError(ServiceError):
    """Persistence did not confirm an expected post-condition."""
    status_code = 500
    error_code = ErrorCode.INTERNAL
