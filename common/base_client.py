"""Base API client utilities for external financial platforms"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests

from common.errors import (
    AccountNotFoundError,
    AuthenticationError,
    NetworkError,
    RateLimitedError,
    ServiceUnavailableError,
    SyncServiceError,
)


class PlatformAPIError(SyncServiceError):
    """Base exception for platform API errors"""
    code = 'PLATFORM_API_ERROR'
    http_status = 502


class PlatformUnauthorizedError(AuthenticationError):
    """401/403 - Invalid or expired platform credentials"""
    pass


class PlatformNotFoundError(AccountNotFoundError):
    """404 - Resource not found"""
    pass


class PlatformRateLimitError(RateLimitedError):
    """429 - Rate limit exceeded"""
    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s")


class PlatformUnavailableError(ServiceUnavailableError):
    """5xx - Platform is down"""
    pass


class PlatformNetworkError(NetworkError):
    """Transport-level failure (DNS, connection reset, timeout)"""
    pass


class BaseAPIClient:
    """Authenticated JSON API client with status-code error mapping"""

    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        """Per-request headers. Subclasses add their authentication."""
        return {'Content-Type': 'application/json'}

    def get(self, endpoint: str, params: Optional[Dict] = None) -> Dict:
        """
        Make authenticated GET request.

        Args:
            endpoint: API endpoint path (e.g., '/v2/accounts/{id}/transactions')
            params: Optional query parameters

        Returns:
            JSON response as dictionary

        Raises:
            PlatformUnauthorizedError: Invalid credentials (401/403)
            PlatformNotFoundError: Resource not found (404)
            PlatformRateLimitError: Rate limit exceeded (429)
            PlatformUnavailableError: Platform error (5xx)
            PlatformNetworkError: Network errors and timeouts
        """
        return self.request('GET', endpoint, params=params)

    def post(self, endpoint: str, payload: Optional[Dict] = None,
             headers: Optional[Dict[str, str]] = None) -> Dict:
        """Make authenticated POST request (same error mapping as ``get``)."""
        return self.request('POST', endpoint, json=payload, headers=headers)

    def request(self, method: str, endpoint: str, params: Optional[Dict] = None,
                json: Optional[Dict] = None,
                headers: Optional[Dict[str, str]] = None) -> Dict:
        url = f'{self.base_url}{endpoint}'
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)

        try:
            response = requests.request(
                method, url, headers=request_headers, params=params,
                json=json, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise PlatformNetworkError(f"Network error: {str(e)}")

        if response.status_code in (200, 201, 202):
            if not response.content:
                return {}
            return response.json()
        elif response.status_code in (401, 403):
            raise PlatformUnauthorizedError(
                f"Unauthorized ({response.status_code}) calling {endpoint}"
            )
        elif response.status_code == 404:
            raise PlatformNotFoundError(f"Resource not found: {endpoint}")
        elif response.status_code == 429:
            retry_after = int(response.headers.get('Retry-After', 60))
            raise PlatformRateLimitError(retry_after)
        elif response.status_code >= 500:
            raise PlatformUnavailableError(
                f"Platform unavailable ({response.status_code}) calling {endpoint}"
            )
        else:
            raise PlatformAPIError(
                f"Platform API error {response.status_code}: {response.text}"
            )


@dataclass
class ClientInitResult:
    """Outcome of a client's ``initialize()`` step."""
    ok: bool
    error: Optional[str] = None
    auth_failed: bool = False


class BankTransactionSource(Protocol):
    """Bank-aggregation source: transactions arrive already typed."""

    async def initialize(self) -> ClientInitResult: ...

    async def get_account_sync_data(self, account_handle: str, start_date: str,
                                    end_date: str) -> Dict[str, Any]: ...

    async def validate_account(self, account_handle: str) -> bool: ...


class MobileMoneyTransactionSource(Protocol):
    """Mobile-money source: raw, untyped transactions."""

    async def initialize(self) -> ClientInitResult: ...

    async def get_transactions(self, phone_number: str, start_date: str,
                               end_date: str) -> List[Dict[str, Any]]: ...
