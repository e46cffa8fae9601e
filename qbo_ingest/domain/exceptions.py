"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class AuthRefreshError(DomainException):
    """Token refresh failed or was rejected; the account must be re-authorized"""

    pass


class EncryptionError(AuthRefreshError):
    """Stored token could not be encrypted or decrypted"""

    pass


class TransientNetworkError(DomainException):
    """Timeout, connection reset or 5xx from an upstream service"""

    pass


class ReportAPIError(DomainException):
    """Report API returned a non-retryable error"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MappingError(DomainException):
    """Report payload has an unexpected or malformed shape"""

    pass


class PersistenceError(DomainException):
    """Database transaction failed and was rolled back"""

    pass


class ConnectionNotFoundError(DomainException):
    """Connected account is unknown, inactive, or has no usable token"""

    pass


TRANSIENT_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "connection reset",
)


def is_transient(error: BaseException) -> bool:
    """Classify an error as retryable by type first, then by message inspection."""
    if isinstance(error, TransientNetworkError):
        return True
    if isinstance(error, (AuthRefreshError, MappingError, PersistenceError, ReportAPIError)):
        return False
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)
