"""
Account Aggregator Molecule - Normalize bank and mobile-money sources

Dispatches on the account's platform handle, fetches from the matching
client and converts both source shapes into one ExternalTransaction list.

Part of Layer 2: Molecules (2-3 atom combinations)

Public API:
    - AccountAggregator.get_sync_data(account, start_date, end_date) -> AccountSyncData
    - AccountAggregator.validate_account(account_or_handle) -> Dict
    - infer_momo_type(raw_transaction) -> TransactionType
    - platform_display_name(platform) -> str
    - sync_messages(platform) -> Dict[str, str]

Example:
    >>> aggregator = AccountAggregator(bank_client=MonoClient(key), momo_client=MomoClient(k, s))
    >>> data = await aggregator.get_sync_data(account, date(2025, 1, 1), date(2025, 1, 31))
    >>> data.total_transactions
    2
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from common.base_client import (
    BankTransactionSource,
    ClientInitResult,
    MobileMoneyTransactionSource,
)
from common.errors import (
    AuthenticationError,
    ConfigurationError,
    ServiceUnavailableError,
    SyncServiceError,
)
from common.models import (
    AccountHandle,
    AccountSyncData,
    BankHandle,
    ExternalAccountInfo,
    ExternalTransaction,
    LinkedAccount,
    MobileMoneyHandle,
    Platform,
    TransactionType,
    utc_now,
)

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^(\+233|0)[2-9]\d{8}$')

INCOME_WORDS = ['received', 'credit', 'deposit', 'salary']
EXPENSE_WORDS = ['sent', 'paid', 'purchase', 'bill', 'transfer']

# Source categories that carry no information
PLACEHOLDER_CATEGORIES = {'', 'uncategorized', 'unknown', 'other'}

DISPLAY_NAMES = {
    Platform.BANK: 'Mono Bank',
    Platform.MOBILE_MONEY: 'MTN Mobile Money',
}

SYNC_MESSAGES = {
    Platform.BANK: {
        'fetching': 'Fetching bank account information via Mono...',
        'storing': 'Processing bank transactions...',
        'completed': 'Bank account sync completed',
        'error': 'Failed to sync bank account',
    },
    Platform.MOBILE_MONEY: {
        'fetching': 'Fetching MTN MoMo transactions...',
        'storing': 'Processing mobile money transactions...',
        'completed': 'MTN MoMo sync completed',
        'error': 'Failed to sync MTN MoMo account',
    },
}

DEFAULT_SYNC_MESSAGES = {
    'fetching': 'Fetching account data...',
    'storing': 'Processing transactions...',
    'completed': 'Account sync completed',
    'error': 'Failed to sync account',
}


def platform_display_name(platform: Union[Platform, str]) -> str:
    try:
        return DISPLAY_NAMES[Platform(platform)]
    except ValueError:
        return 'Unknown Platform'


def sync_messages(platform: Union[Platform, str]) -> Dict[str, str]:
    """Per-platform progress messages shown while an account syncs"""
    try:
        return dict(SYNC_MESSAGES[Platform(platform)])
    except ValueError:
        return dict(DEFAULT_SYNC_MESSAGES)


def infer_momo_type(raw: Dict[str, Any]) -> TransactionType:
    """
    Decide income/expense for an untyped mobile-money transaction.

    A negative amount is always an expense. Otherwise the payer message is
    scanned for income words, then expense words; anything unmatched is
    treated as an expense since most wallet activity is outgoing.

    Example:
        >>> infer_momo_type({'amount': '50.00', 'payerMessage': 'Sent to John for groceries'})
        <TransactionType.EXPENSE: 'expense'>
        >>> infer_momo_type({'amount': '80.00', 'payerMessage': 'Received payment for invoice'})
        <TransactionType.INCOME: 'income'>
    """
    amount = str(raw.get('amount') or '').strip()
    if amount.startswith('-'):
        return TransactionType.EXPENSE

    message = (raw.get('payerMessage') or '').lower()
    if any(word in message for word in INCOME_WORDS):
        return TransactionType.INCOME
    if any(word in message for word in EXPENSE_WORDS):
        return TransactionType.EXPENSE
    return TransactionType.EXPENSE


def _as_date_param(value: Union[date, datetime, str]) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _source_category(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip().lower() in PLACEHOLDER_CATEGORIES:
        return None
    return value


def _raise_for_init(result: ClientInitResult, platform: Platform) -> None:
    if result.ok:
        return
    message = result.error or f"{platform_display_name(platform)} client failed to initialize"
    if result.auth_failed:
        raise AuthenticationError(message)
    raise ServiceUnavailableError(message)


class AccountAggregator:
    """Platform dispatch over injected bank and mobile-money clients"""

    def __init__(self, bank_client: Optional[BankTransactionSource] = None,
                 momo_client: Optional[MobileMoneyTransactionSource] = None):
        self.bank_client = bank_client
        self.momo_client = momo_client

    async def get_sync_data(self, account: LinkedAccount,
                            start_date: Union[date, datetime, str],
                            end_date: Union[date, datetime, str]) -> AccountSyncData:
        """
        Fetch and normalize one account's transactions for a date range.

        Records that cannot be normalized are reported in ``errors`` and
        skipped; the rest are returned in source order.

        Raises:
            AuthenticationError: Client credentials rejected
            ConfigurationError: No client configured for the platform
            SyncServiceError: Any fetch failure from the client
        """
        start, end = _as_date_param(start_date), _as_date_param(end_date)

        if isinstance(account.handle, BankHandle):
            return await self._get_bank_data(account, account.handle, start, end)
        return await self._get_momo_data(account, account.handle, start, end)

    async def _get_bank_data(self, account: LinkedAccount, handle: BankHandle,
                             start: str, end: str) -> AccountSyncData:
        if self.bank_client is None:
            raise ConfigurationError('Bank client is not configured')

        _raise_for_init(await self.bank_client.initialize(), Platform.BANK)
        logger.info(f"Fetching bank data for account: {handle.account_id}")
        raw = await self.bank_client.get_account_sync_data(handle.account_id, start, end)

        transactions: List[ExternalTransaction] = []
        errors: List[str] = []
        for txn in raw.get('transactions', []):
            try:
                transactions.append(ExternalTransaction(
                    id=txn['id'],
                    amount=Decimal(str(txn['amount'])),
                    type=txn['type'],
                    description=txn.get('description') or 'Bank transaction',
                    date=txn.get('date') or utc_now(),
                    reference=txn.get('reference'),
                    category=_source_category(txn.get('category')),
                    currency=txn.get('currency'),
                    meta=txn.get('meta') or {},
                ))
            except (KeyError, InvalidOperation, PydanticValidationError) as e:
                errors.append(f"Malformed bank transaction {txn.get('id')!r}: {e}")

        info = raw.get('account') or {}
        balance = info.get('balance')
        return AccountSyncData(
            platform=Platform.BANK,
            transactions=transactions,
            account=ExternalAccountInfo(
                name=info.get('name') or account.account_name or 'Bank account',
                balance=Decimal(str(balance)) if balance is not None else None,
                institution=info.get('institution') or account.institution_name,
                account_number=info.get('account_number'),
            ),
            total_transactions=len(transactions),
            errors=errors,
        )

    async def _get_momo_data(self, account: LinkedAccount, handle: MobileMoneyHandle,
                             start: str, end: str) -> AccountSyncData:
        if self.momo_client is None:
            raise ConfigurationError('Mobile money client is not configured')

        _raise_for_init(await self.momo_client.initialize(), Platform.MOBILE_MONEY)
        logger.info(f"Fetching mobile money data for phone: {handle.phone_number}")
        raw_transactions = await self.momo_client.get_transactions(handle.phone_number, start, end)

        transactions: List[ExternalTransaction] = []
        errors: List[str] = []
        for raw in raw_transactions:
            try:
                transactions.append(ExternalTransaction(
                    id=raw['externalId'],
                    amount=abs(Decimal(str(raw['amount']).strip())),
                    type=infer_momo_type(raw),
                    description=raw.get('payerMessage') or 'MTN MoMo transaction',
                    date=raw.get('createdAt') or utc_now(),
                    reference=raw['externalId'],
                    currency=raw.get('currency'),
                    status=raw.get('status'),
                    financial_transaction_id=raw.get('financialTransactionId'),
                    payee_note=raw.get('payeeNote'),
                    meta={'payer': raw.get('payer')} if raw.get('payer') else {},
                ))
            except (KeyError, InvalidOperation, PydanticValidationError) as e:
                errors.append(f"Malformed mobile money transaction {raw.get('externalId')!r}: {e}")

        return AccountSyncData(
            platform=Platform.MOBILE_MONEY,
            transactions=transactions,
            account=ExternalAccountInfo(
                name=account.account_name or f"MTN MoMo ({handle.phone_number})",
                institution=account.institution_name,
            ),
            total_transactions=len(transactions),
            errors=errors,
        )

    async def validate_account(self, account: Union[LinkedAccount, AccountHandle]) -> Dict[str, Any]:
        """
        Check an account (or bare handle) can be synced.

        Returns:
            {'valid': bool, 'platform': str, 'error': str}  # error only when invalid
        """
        handle = account.handle if isinstance(account, LinkedAccount) else account
        platform = Platform(handle.platform)

        try:
            if isinstance(handle, BankHandle):
                if self.bank_client is None:
                    raise ConfigurationError('Bank client is not configured')
                valid = await self.bank_client.validate_account(handle.account_id)
                error = None if valid else 'Invalid Mono account or access denied'
            else:
                valid = bool(PHONE_PATTERN.match(handle.phone_number))
                error = None if valid else 'Invalid MTN MoMo phone number format'
        except SyncServiceError as e:
            logger.warning(f"Account validation failed for {platform.value}: {e}")
            return {'valid': False, 'platform': platform.value, 'error': e.message}

        result = {'valid': valid, 'platform': platform.value}
        if error:
            result['error'] = error
        return result
