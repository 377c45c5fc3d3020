"""Mobile-money (MTN MoMo collection) API client."""
import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

from common.base_client import BaseAPIClient, ClientInitResult
from common.errors import AuthenticationError, SyncServiceError

logger = logging.getLogger(__name__)

DEFAULT_MOMO_BASE_URL = 'https://sandbox.momodeveloper.mtn.com'


class MomoClient(BaseAPIClient):
    """
    MTN MoMo collection client.

    ``initialize()`` exchanges the API key/secret for an access token and
    returns the outcome; it never raises.

    Example:
        >>> client = MomoClient(api_key='key', api_secret='secret')
        >>> result = await client.initialize()
        >>> result.ok
        True
        >>> raw = await client.get_transactions('0241234567', '2025-01-01', '2025-01-31')
    """

    def __init__(self, api_key: Optional[str], api_secret: Optional[str],
                 base_url: str = DEFAULT_MOMO_BASE_URL,
                 target_environment: str = 'sandbox', timeout: int = 15):
        super().__init__(base_url, timeout=timeout)
        self.api_key = api_key
        self.api_secret = api_secret
        self.target_environment = target_environment
        self.access_token: Optional[str] = None

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers['Ocp-Apim-Subscription-Key'] = self.api_key or ''
        headers['X-Target-Environment'] = self.target_environment
        if self.access_token:
            headers['Authorization'] = f'Bearer {self.access_token}'
        return headers

    async def initialize(self) -> ClientInitResult:
        if not self.api_key or not self.api_secret:
            logger.error("MoMo API credentials not configured")
            return ClientInitResult(ok=False, error='MoMo API credentials not configured')

        basic = base64.b64encode(f'{self.api_key}:{self.api_secret}'.encode()).decode()
        try:
            response = await asyncio.to_thread(
                self.post, '/collection/token/', None, {'Authorization': f'Basic {basic}'}
            )
        except AuthenticationError as e:
            logger.error(f"MoMo authentication failed: {e}")
            return ClientInitResult(ok=False, error=str(e), auth_failed=True)
        except SyncServiceError as e:
            logger.error(f"MoMo client initialization failed: {e}")
            return ClientInitResult(ok=False, error=f'MoMo service initialization failed: {e}')

        self.access_token = response.get('access_token')
        if not self.access_token:
            return ClientInitResult(ok=False, error='MoMo token response had no access_token',
                                    auth_failed=True)
        return ClientInitResult(ok=True)

    async def get_transactions(self, phone_number: str, start_date: str,
                               end_date: str) -> List[Dict[str, Any]]:
        """
        Fetch raw collection transactions for a wallet.

        Each raw transaction has externalId, amount (string), currency,
        payerMessage, payeeNote, status, payer, financialTransactionId and
        createdAt. They are untyped; the aggregator infers income/expense.
        """
        params = {
            'msisdn': phone_number,
            'startDate': start_date,
            'endDate': end_date,
        }
        response = await asyncio.to_thread(self.get, '/collection/v1_0/transactions', params)
        if isinstance(response, list):
            return response
        return response.get('transactions', [])
