"""
Test Suite for Web Server Template

Tests all endpoints of the Quart web server against an in-memory service
graph with fake external sources.
"""

import json

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from common.base_client import ClientInitResult
from common.models import (
    AccountSyncStatus,
    LinkedAccount,
    MobileMoneyHandle,
    SyncConfig,
    Transaction,
    TransactionType,
)
from common.repository import InMemoryRepository
from templates.web_server import app
from tools.accounts.transaction_sync.atoms.signature import compute_signature
from tools.accounts.transaction_sync.organisms.alert_processor import LoggingNotifier
from tools.accounts.transaction_sync.templates.sync_workflow import build_services

SECRET = 'whsec_test'


def momo_source():
    client = AsyncMock()
    client.initialize.return_value = ClientInitResult(ok=True)
    client.get_transactions.return_value = [
        {'externalId': 'momo_ext_1', 'amount': '50.00', 'payerMessage': 'Test transaction',
         'status': 'SUCCESSFUL', 'createdAt': '2025-01-10T09:30:00+00:00'},
        {'externalId': 'momo_ext_2', 'amount': '25.50', 'payerMessage': 'Another transaction',
         'status': 'SUCCESSFUL', 'createdAt': '2025-01-11T13:00:00+00:00'},
    ]
    return client


@pytest.fixture
def repository():
    return InMemoryRepository(SyncConfig())


@pytest.fixture
def services(repository):
    cfg = MagicMock()
    cfg.large_transaction_threshold = 1000
    cfg.get_webhook_secret.return_value = SECRET
    bank = AsyncMock()
    bank.initialize.return_value = ClientInitResult(ok=True)
    bank.validate_account.return_value = True
    return build_services(cfg, repository=repository, notifier=LoggingNotifier(),
                          bank_client=bank, momo_client=momo_source())


@pytest.fixture
def client(services):
    """Create test client"""
    app.config['TESTING'] = True
    app.config['SERVICES'] = services
    yield app.test_client()
    app.config['SERVICES'] = None


async def add_account(repository, account_id='acc_1', **overrides):
    fields = {'id': account_id, 'user_id': 'user_1',
              'handle': MobileMoneyHandle(phone_number='0241234567')}
    fields.update(overrides)
    return await repository.save_account(LinkedAccount(**fields))


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get('/health')
        assert response.status_code == 200
        assert await response.get_json() == {'status': 'ok'}

    @pytest.mark.asyncio
    async def test_unknown_route_is_json_404(self, client):
        response = await client.get('/nope')
        data = await response.get_json()
        assert response.status_code == 404
        assert data['error']['code'] == 'NOT_FOUND'


class TestWebhookEndpoint:
    """Tests for POST /api/webhooks/momo"""

    @pytest_asyncio.fixture
    async def stored(self, repository):
        return await repository.insert_transaction(Transaction(
            user_id='user_1', account_id='acc_1', amount=Decimal('75.00'),
            type=TransactionType.EXPENSE, description='Payment', external_id='momo_ext_9',
            transaction_date=datetime(2025, 1, 14, tzinfo=timezone.utc), external_status='PENDING',
        ))

    @pytest.mark.asyncio
    async def test_valid_signature(self, client, repository, stored):
        body = json.dumps({'externalId': 'momo_ext_9', 'status': 'SUCCESSFUL',
                           'financialTransactionId': 'fin_9'}).encode()

        response = await client.post('/api/webhooks/momo', data=body, headers={
            'Content-Type': 'application/json',
            'X-Momo-Signature': 'sha256=' + compute_signature(body, SECRET),
        })
        data = await response.get_json()

        assert response.status_code == 200
        assert data['success'] is True
        assert data['transactionId'] == stored.id
        txn = await repository.find_transaction_by_external_id_any('momo_ext_9')
        assert txn.external_status == 'SUCCESSFUL'
        assert txn.external_financial_id == 'fin_9'

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client, repository, stored):
        body = json.dumps({'externalId': 'momo_ext_9', 'status': 'SUCCESSFUL'}).encode()

        response = await client.post('/api/webhooks/momo', data=body,
                                     headers={'X-Momo-Signature': 'sha256=bad'})
        data = await response.get_json()

        assert response.status_code == 401
        assert data['status'] == 'error'
        assert data['error']['code'] == 'SIGNATURE_INVALID'
        txn = await repository.find_transaction_by_external_id_any('momo_ext_9')
        assert txn.external_status == 'PENDING'

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, client):
        body = json.dumps({'externalId': 'missing', 'status': 'SUCCESSFUL'}).encode()

        response = await client.post('/api/webhooks/momo', data=body,
                                     headers={'X-Momo-Signature': compute_signature(body, SECRET)})

        assert response.status_code == 404


class TestBackgroundSyncEndpoint:
    """Tests for POST /api/background-sync"""

    @pytest.mark.asyncio
    async def test_runs_sync(self, client, repository):
        await add_account(repository)

        response = await client.post('/api/background-sync',
                                     json={'forceSync': True, 'maxConcurrentAccounts': 2})
        data = await response.get_json()

        assert response.status_code == 200
        assert data['success'] is True
        assert data['accountsProcessed'] == 1
        assert data['totalTransactionsSynced'] == 2
        assert data['results'][0]['accountId'] == 'acc_1'
        assert data['results'][0]['newTransactions'] == 2
        assert 'duration' in data

    @pytest.mark.asyncio
    async def test_empty_body_uses_defaults(self, client):
        response = await client.post('/api/background-sync')
        data = await response.get_json()

        assert response.status_code == 200
        assert data['accountsProcessed'] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize('payload', [
        {'maxConcurrentAccounts': 0},
        {'maxConcurrentAccounts': 51},
        {'maxConcurrentAccounts': 'five'},
        {'forceSync': 'yes'},
    ])
    async def test_invalid_parameters(self, client, payload):
        response = await client.post('/api/background-sync', json=payload)
        data = await response.get_json()

        assert response.status_code == 400
        assert data['error']['code'] == 'VALIDATION_ERROR'


class TestAccountEndpoints:

    @pytest.mark.asyncio
    async def test_manual_sync(self, client, repository):
        await add_account(repository)

        response = await client.post('/api/accounts/acc_1/sync')
        data = await response.get_json()

        assert response.status_code == 200
        assert data['status'] == 'success'
        assert data['newTransactions'] == 2

    @pytest.mark.asyncio
    async def test_manual_sync_unknown_account(self, client):
        response = await client.post('/api/accounts/missing/sync')
        data = await response.get_json()

        assert response.status_code == 404
        assert data['error']['code'] == 'ACCOUNT_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_manual_sync_in_progress(self, client, repository):
        await add_account(repository, sync_status=AccountSyncStatus.IN_PROGRESS,
                          last_sync_attempt=datetime.now(timezone.utc))

        response = await client.post('/api/accounts/acc_1/sync')

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_manual_sync_rate_limited(self, client, repository):
        await add_account(repository)

        await client.post('/api/accounts/acc_1/sync')
        response = await client.post('/api/accounts/acc_1/sync')
        data = await response.get_json()

        assert response.status_code == 429
        assert data['error']['code'] == 'RATE_LIMITED'

    @pytest.mark.asyncio
    async def test_validate_account(self, client):
        response = await client.post('/api/accounts/validate',
                                     json={'platform': 'mobile_money', 'phoneNumber': '12345'})
        data = await response.get_json()

        assert response.status_code == 200
        assert data['valid'] is False

    @pytest.mark.asyncio
    async def test_validate_requires_json(self, client):
        response = await client.post('/api/accounts/validate')
        assert response.status_code == 400


class TestSyncHealthAndConfig:

    @pytest.mark.asyncio
    async def test_sync_health(self, client, repository):
        await add_account(repository, sync_status=AccountSyncStatus.AUTH_REQUIRED,
                          last_synced_at=datetime.now(timezone.utc))

        response = await client.get('/api/sync-health')
        data = await response.get_json()

        assert response.status_code == 200
        assert data['is_healthy'] is False
        assert data['issues'] == ['1 account(s) need re-authentication']

    @pytest.mark.asyncio
    async def test_get_config(self, client):
        response = await client.get('/api/sync-config')
        data = await response.get_json()

        assert response.status_code == 200
        assert data['max_concurrent_accounts'] == 5

    @pytest.mark.asyncio
    async def test_put_config(self, client, repository):
        response = await client.put('/api/sync-config', json={'enabled': False})

        assert response.status_code == 200
        assert (await repository.get_sync_config()).enabled is False

    @pytest.mark.asyncio
    async def test_put_invalid_config(self, client):
        response = await client.put('/api/sync-config', json={'syncFrequencyHours': 0})
        assert response.status_code == 400


class TestErrorShape:

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic(self, client, services):
        services.orchestrator.check_sync_health = AsyncMock(side_effect=KeyError('secret detail'))

        response = await client.get('/api/sync-health')
        data = await response.get_json()

        assert response.status_code == 500
        assert data == {'status': 'error', 'error': {'code': 'INTERNAL_ERROR',
                                                     'message': 'An unexpected error occurred'}}
