"""
Test suite for Webhook Ingestion Molecule.

Tests signature enforcement, payload validation, the update-only contract
and the webhook Sync Log entry.
"""

import json

import pytest
from unittest.mock import AsyncMock

from common.errors import DatabaseError
from common.models import SyncLogStatus, SyncType
from tools.accounts.transaction_sync.atoms.signature import compute_signature
from tools.accounts.transaction_sync.molecules.webhook_ingestion import process_webhook

SECRET = 'whsec_test'


def make_body(**overrides) -> bytes:
    payload = {
        'externalId': 'momo_ext_webhook',
        'status': 'SUCCESSFUL',
        'amount': '75.00',
        'currency': 'GHS',
        'financialTransactionId': 'fin_99',
        'timestamp': '2025-01-15T12:00:00Z',
    }
    payload.update(overrides)
    return json.dumps(payload).encode('utf-8')


class TestSignatureEnforcement:

    @pytest.mark.asyncio
    async def test_valid_signature_updates_transaction(self, repository, stored_transaction):
        body = make_body()

        result = await process_webhook(body, compute_signature(body, SECRET), repository, secret=SECRET)

        assert result.status_code == 200
        assert result.body == {
            'success': True,
            'message': 'Webhook processed successfully',
            'transactionId': stored_transaction.id,
            'status': 'SUCCESSFUL',
        }
        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.external_status == 'SUCCESSFUL'
        assert txn.external_financial_id == 'fin_99'

    @pytest.mark.asyncio
    async def test_prefixed_signature_accepted(self, repository, stored_transaction):
        body = make_body()
        signature = 'sha256=' + compute_signature(body, SECRET)

        result = await process_webhook(body, signature, repository, secret=SECRET)

        assert result.status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_signature_rejected_and_unmodified(self, repository, stored_transaction):
        body = make_body()

        result = await process_webhook(body, 'deadbeef', repository, secret=SECRET)

        assert result.status_code == 401
        assert result.body['error']['code'] == 'SIGNATURE_INVALID'
        assert result.body['error']['message'] == 'Invalid signature'
        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.external_status == 'PENDING'
        assert txn.external_financial_id is None
        assert repository.sync_logs == {}

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, repository, stored_transaction):
        result = await process_webhook(make_body(), None, repository, secret=SECRET)

        assert result.status_code == 401
        assert result.body['error']['message'] == 'Missing signature'

    @pytest.mark.asyncio
    async def test_no_secret_accepts_unsigned(self, repository, stored_transaction):
        result = await process_webhook(make_body(), None, repository, secret=None)

        assert result.status_code == 200


class TestPayloadHandling:

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, repository, stored_transaction):
        body = make_body(externalId='does_not_exist')

        result = await process_webhook(body, compute_signature(body, SECRET), repository, secret=SECRET)

        assert result.status_code == 404
        assert result.body['error']['code'] == 'TRANSACTION_NOT_FOUND'
        assert result.body['error']['details'] == {'externalId': 'does_not_exist'}
        assert await repository.find_transaction_by_external_id_any('does_not_exist') is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, repository):
        body = b'not json'

        result = await process_webhook(body, compute_signature(body, SECRET), repository, secret=SECRET)

        assert result.status_code == 400
        assert result.body['error']['code'] == 'VALIDATION_ERROR'

    @pytest.mark.asyncio
    async def test_missing_external_id_is_400(self, repository):
        body = json.dumps({'status': 'SUCCESSFUL'}).encode()

        result = await process_webhook(body, None, repository)

        assert result.status_code == 400
        assert 'externalId' in result.body['error']['message']

    @pytest.mark.asyncio
    async def test_unknown_status_is_400_and_unmodified(self, repository, stored_transaction):
        body = make_body(status='BOGUS')

        result = await process_webhook(body, compute_signature(body, SECRET), repository, secret=SECRET)

        assert result.status_code == 400
        assert result.body['error']['code'] == 'VALIDATION_ERROR'
        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.external_status == 'PENDING'

    @pytest.mark.asyncio
    async def test_missing_financial_id_keeps_stored_value(self, repository, stored_transaction):
        await repository.update_transaction(stored_transaction.id, {'external_financial_id': 'fin_keep'})
        body = json.dumps({'externalId': 'momo_ext_webhook', 'status': 'PENDING'}).encode()

        result = await process_webhook(body, compute_signature(body, SECRET), repository, secret=SECRET)

        assert result.status_code == 200
        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.external_financial_id == 'fin_keep'

    @pytest.mark.asyncio
    async def test_failed_status_appends_reason(self, repository, stored_transaction):
        body = make_body(status='FAILED', reason='INSUFFICIENT_FUNDS', financialTransactionId=None)

        result = await process_webhook(body, None, repository)

        assert result.status_code == 200
        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.external_status == 'FAILED'
        assert txn.description == 'Payment to Kwesi Stores (Failed: INSUFFICIENT_FUNDS)'

    @pytest.mark.asyncio
    async def test_webhook_never_changes_amount(self, repository, stored_transaction):
        body = make_body(amount='9999.00')

        await process_webhook(body, None, repository)

        txn = await repository.find_transaction_by_external_id_any('momo_ext_webhook')
        assert txn.amount == stored_transaction.amount


class TestSyncLog:

    @pytest.mark.asyncio
    async def test_success_writes_webhook_log(self, repository, stored_transaction):
        await process_webhook(make_body(), None, repository)

        logs = await repository.list_sync_logs()
        assert len(logs) == 1
        assert logs[0].sync_type == SyncType.WEBHOOK
        assert logs[0].sync_status == SyncLogStatus.SUCCESS
        assert logs[0].transactions_synced == 1
        assert logs[0].account_id == 'acc_momo'

    @pytest.mark.asyncio
    async def test_update_failure_is_500_and_logged(self, repository, stored_transaction):
        repository.update_transaction = AsyncMock(side_effect=DatabaseError('connection lost'))

        result = await process_webhook(make_body(), None, repository)

        assert result.status_code == 500
        assert result.body['error']['code'] == 'DATABASE_ERROR'
        logs = await repository.list_sync_logs()
        assert logs[0].sync_status == SyncLogStatus.FAILED
        assert logs[0].error_message == 'connection lost'
