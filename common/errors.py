"""Structured error taxonomy shared by sync, aggregation and webhook code.

Every error carries a stable ``code`` plus a human message so the HTTP layer
can convert it into a ``{code, message}`` pair without leaking internals.
"""
from typing import Any, Dict, Optional


class SyncServiceError(Exception):
    """Base exception for transaction sync errors"""

    code = 'INTERNAL_ERROR'
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the ``{code, message}`` pair returned to callers."""
        payload = {'code': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class AuthenticationError(SyncServiceError):
    """Missing/invalid session or platform credentials (re-link required)"""
    code = 'AUTHENTICATION_ERROR'
    http_status = 401


class ValidationError(SyncServiceError):
    """Malformed input (phone format, amount, required field)"""
    code = 'VALIDATION_ERROR'
    http_status = 400

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message, {'field': field})


class ConfigurationError(SyncServiceError):
    """Account or service is missing required configuration"""
    code = 'CONFIGURATION_ERROR'
    http_status = 400


class AccountNotFoundError(SyncServiceError):
    code = 'ACCOUNT_NOT_FOUND'
    http_status = 404


class AccountInactiveError(SyncServiceError):
    code = 'ACCOUNT_INACTIVE'
    http_status = 409


class AccountAlreadyLinkedError(SyncServiceError):
    code = 'ACCOUNT_ALREADY_LINKED'
    http_status = 409


class TransactionNotFoundError(SyncServiceError):
    code = 'TRANSACTION_NOT_FOUND'
    http_status = 404


class NetworkError(SyncServiceError):
    """External source unreachable or timed out"""
    code = 'NETWORK_ERROR'
    http_status = 503
    retryable = True


class ServiceUnavailableError(SyncServiceError):
    """External platform is down or returned 5xx"""
    code = 'SERVICE_UNAVAILABLE'
    http_status = 503
    retryable = True


class SyncInProgressError(SyncServiceError):
    code = 'SYNC_IN_PROGRESS'
    http_status = 409
    retryable = True


class DatabaseError(SyncServiceError):
    """Persistence layer failure"""
    code = 'DATABASE_ERROR'
    http_status = 500
    retryable = True


class SignatureError(SyncServiceError):
    """Webhook authenticity check failed"""
    code = 'SIGNATURE_INVALID'
    http_status = 401


class RateLimitedError(SyncServiceError):
    code = 'RATE_LIMITED'
    http_status = 429
    retryable = True


def to_error_payload(error: Exception) -> Dict[str, Any]:
    """
    Convert any exception into a structured ``{code, message}`` dict.

    Unknown exceptions are reported as INTERNAL_ERROR with a generic message
    so raw tracebacks never reach the caller.

    Example:
        >>> to_error_payload(AccountNotFoundError('Account acc_1 not found'))
        {'code': 'ACCOUNT_NOT_FOUND', 'message': 'Account acc_1 not found'}
        >>> to_error_payload(KeyError('boom'))
        {'code': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'}
    """
    if isinstance(error, SyncServiceError):
        return error.to_dict()
    return {'code': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'}


def http_status_for(error: Exception) -> int:
    if isinstance(error, SyncServiceError):
        return error.http_status
    return 500
