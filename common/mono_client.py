"""Bank-aggregation (Mono) API client.

Explicitly constructed and injected; ``initialize()`` reports readiness as a
``ClientInitResult`` instead of mutating shared module state. Blocking
``requests`` calls run in a worker thread so every call is an await point.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from common.base_client import (
    BaseAPIClient,
    ClientInitResult,
    PlatformNotFoundError,
)
from common.errors import AuthenticationError, SyncServiceError

logger = logging.getLogger(__name__)

DEFAULT_MONO_BASE_URL = 'https://api.withmono.com/v2'


class MonoClient(BaseAPIClient):
    """Mono bank-aggregation client"""

    def __init__(self, secret_key: Optional[str], base_url: str = DEFAULT_MONO_BASE_URL,
                 timeout: int = 15):
        super().__init__(base_url, timeout=timeout)
        self.secret_key = secret_key

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers['mono-sec-key'] = self.secret_key or ''
        return headers

    async def initialize(self) -> ClientInitResult:
        if not self.secret_key:
            logger.error("Mono secret key not configured")
            return ClientInitResult(ok=False, error='Mono secret key not configured')
        return ClientInitResult(ok=True)

    async def get_account_info(self, account_id: str) -> Dict[str, Any]:
        response = await asyncio.to_thread(self.get, f'/accounts/{account_id}')
        account = response.get('account', {})
        institution = response.get('institution', {})
        return {
            'id': account.get('id'),
            'name': account.get('name'),
            'account_number': account.get('accountNumber'),
            'balance': account.get('balance'),
            'currency': account.get('currency'),
            'institution': institution.get('name', ''),
        }

    async def get_transactions(self, account_id: str, start_date: str,
                               end_date: str) -> List[Dict[str, Any]]:
        """
        Fetch transactions in a date range, typed from debit/credit.

        Returns:
            List of dicts with id, amount (absolute), type ('income'|'expense'),
            description, date, reference, category, balance, meta
        """
        params = {'start': start_date, 'end': end_date, 'paginate': 'false'}
        response = await asyncio.to_thread(
            self.get, f'/accounts/{account_id}/transactions', params
        )
        transactions = []
        for txn in response.get('data', []):
            transactions.append({
                'id': txn['id'],
                'amount': abs(txn.get('amount', 0)),
                'type': 'income' if txn.get('type') == 'credit' else 'expense',
                'description': txn.get('narration') or 'Bank transaction',
                'date': txn.get('date'),
                'reference': txn.get('reference'),
                'category': txn.get('category'),
                'balance': txn.get('balance'),
                'meta': txn.get('meta') or {},
            })
        return transactions

    async def get_account_sync_data(self, account_id: str, start_date: str,
                                    end_date: str) -> Dict[str, Any]:
        """Account info plus transactions for one date range."""
        account_info, transactions = await asyncio.gather(
            self.get_account_info(account_id),
            self.get_transactions(account_id, start_date, end_date),
        )
        return {
            'transactions': transactions,
            'account': {
                'name': account_info['name'],
                'balance': account_info['balance'],
                'institution': account_info['institution'],
                'account_number': account_info['account_number'],
            },
            'total_transactions': len(transactions),
        }

    async def validate_account(self, account_id: str) -> bool:
        """
        Check the account exists and is accessible.

        Authentication failures propagate; a missing account is reported as
        ``False``.
        """
        try:
            await self.get_account_info(account_id)
            return True
        except PlatformNotFoundError:
            return False
        except AuthenticationError:
            raise
        except SyncServiceError as e:
            logger.error(f"Mono account validation failed: {e}")
            return False
