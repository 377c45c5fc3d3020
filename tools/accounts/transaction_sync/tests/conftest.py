"""
Shared pytest fixtures for transaction sync tests.

These fixtures provide an in-memory repository, fake bank and mobile-money
sources and a fixed clock so every layer can be tested deterministically
without network or database access.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from common.base_client import ClientInitResult
from common.models import (
    BankHandle,
    LinkedAccount,
    MobileMoneyHandle,
    SyncConfig,
    Transaction,
    TransactionType,
)
from common.repository import InMemoryRepository
from tools.accounts.transaction_sync.atoms.event_bus import EventBus
from tools.accounts.transaction_sync.molecules.account_aggregator import AccountAggregator
from tools.accounts.transaction_sync.molecules.sync_reconciler import SyncReconciler
from tools.accounts.transaction_sync.organisms.alert_processor import LoggingNotifier

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Fixed clock returning NOW."""
    return lambda: NOW


@pytest.fixture
def repository():
    return InMemoryRepository(SyncConfig())


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def momo_raw_transactions():
    """Two raw mobile-money transactions as the MoMo API returns them."""
    return [
        {
            'externalId': 'momo_ext_1',
            'amount': '50.00',
            'currency': 'GHS',
            'payerMessage': 'Test transaction',
            'payeeNote': '',
            'status': 'SUCCESSFUL',
            'financialTransactionId': 'fin_1',
            'createdAt': '2025-01-10T09:30:00+00:00',
        },
        {
            'externalId': 'momo_ext_2',
            'amount': '25.50',
            'currency': 'GHS',
            'payerMessage': 'Another transaction',
            'payeeNote': '',
            'status': 'SUCCESSFUL',
            'financialTransactionId': 'fin_2',
            'createdAt': '2025-01-11T13:00:00+00:00',
        },
    ]


@pytest.fixture
def momo_client(momo_raw_transactions):
    """Fake mobile-money source returning the two raw transactions."""
    client = AsyncMock()
    client.initialize.return_value = ClientInitResult(ok=True)
    client.get_transactions.return_value = momo_raw_transactions
    return client


@pytest.fixture
def bank_client():
    """Fake bank source returning two typed transactions."""
    client = AsyncMock()
    client.initialize.return_value = ClientInitResult(ok=True)
    client.get_account_sync_data.return_value = {
        'transactions': [
            {
                'id': 'bank_ext_1',
                'amount': 3000,
                'type': 'income',
                'description': 'Monthly salary payment',
                'date': '2025-01-01T08:00:00+00:00',
                'reference': 'ref_1',
                'category': None,
                'meta': {},
            },
            {
                'id': 'bank_ext_2',
                'amount': 120,
                'type': 'expense',
                'description': 'ECG prepaid electricity',
                'date': '2025-01-02T08:00:00+00:00',
                'reference': 'ref_2',
                'category': 'bills',
                'meta': {},
            },
        ],
        'account': {
            'name': 'Current Account',
            'balance': 5400.25,
            'institution': 'GCB Bank',
            'account_number': '0123456789',
        },
        'total_transactions': 2,
    }
    client.validate_account.return_value = True
    return client


@pytest.fixture
def aggregator(bank_client, momo_client):
    return AccountAggregator(bank_client=bank_client, momo_client=momo_client)


@pytest.fixture
def reconciler(repository, aggregator, event_bus, clock):
    return SyncReconciler(repository, aggregator, event_bus, clock=clock)


def make_momo_account(account_id='acc_momo', **overrides) -> LinkedAccount:
    fields = {
        'id': account_id,
        'user_id': 'user_1',
        'handle': MobileMoneyHandle(phone_number='0241234567'),
        'institution_name': 'MTN',
    }
    fields.update(overrides)
    return LinkedAccount(**fields)


def make_bank_account(account_id='acc_bank', **overrides) -> LinkedAccount:
    fields = {
        'id': account_id,
        'user_id': 'user_1',
        'handle': BankHandle(account_id='mono_123'),
        'institution_name': 'GCB Bank',
    }
    fields.update(overrides)
    return LinkedAccount(**fields)


@pytest_asyncio.fixture
async def momo_account(repository):
    return await repository.save_account(make_momo_account())


@pytest_asyncio.fixture
async def bank_account(repository):
    return await repository.save_account(make_bank_account())


@pytest_asyncio.fixture
async def stored_transaction(repository):
    """An existing synced mobile-money transaction for webhook tests."""
    return await repository.insert_transaction(Transaction(
        user_id='user_1',
        account_id='acc_momo',
        amount=Decimal('75.00'),
        type=TransactionType.EXPENSE,
        category_id='shopping',
        description='Payment to Kwesi Stores',
        transaction_date=NOW - timedelta(days=1),
        external_id='momo_ext_webhook',
        external_status='PENDING',
        is_synced=True,
    ))


@pytest.fixture
def account_factory():
    """Build accounts: account_factory('bank', 'acc_2', sync_status=...)."""
    def _make(platform='mobile_money', **overrides):
        if platform == 'bank':
            return make_bank_account(**overrides)
        return make_momo_account(**overrides)
    return _make
