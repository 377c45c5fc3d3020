"""
Webhook Ingestion Molecule - Apply a mobile-money status callback

Verifies the HMAC signature over the raw body, then updates the status
fields of exactly one existing transaction found by external id. A webhook
never creates a transaction.

Part of Layer 2: Molecules (2-3 atom combinations)

Public API:
    - process_webhook(raw_body, signature, repository, secret) -> WebhookResult

Responses:
    200  {'success': True, 'message', 'transactionId', 'status'}
    400  malformed payload
    401  missing or invalid signature (only when a secret is configured)
    404  no transaction with that external id
    500  persistence failure

Example:
    >>> result = await process_webhook(body, 'sha256=9f2c...', repository, secret='s3cret')
    >>> result.status_code, result.body['status']
    (200, 'SUCCESSFUL')
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from common.errors import (
    SignatureError,
    SyncServiceError,
    TransactionNotFoundError,
    ValidationError,
    to_error_payload,
)
from common.models import SyncLogEntry, SyncLogStatus, SyncType, utc_now
from common.repository import SyncRepository
from tools.accounts.transaction_sync.atoms.signature import verify_signature

logger = logging.getLogger(__name__)

STATUS_FAILED = 'FAILED'


class WebhookPayload(BaseModel):
    """Mobile-money transaction status callback"""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    external_id: str = Field(..., alias='externalId', min_length=1)
    status: Literal['PENDING', 'SUCCESSFUL', 'FAILED']
    amount: Optional[str] = None
    currency: Optional[str] = None
    financial_transaction_id: Optional[str] = Field(default=None, alias='financialTransactionId')
    reason: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class WebhookResult:
    status_code: int
    body: Dict[str, Any]


def _error(error: SyncServiceError) -> WebhookResult:
    return WebhookResult(error.http_status, {'status': 'error', 'error': to_error_payload(error)})


def _parse_payload(raw_body: Union[bytes, str]) -> WebhookPayload:
    try:
        data = json.loads(raw_body)
    except (ValueError, TypeError) as e:
        raise ValidationError('body', f"Webhook body is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError('body', 'Webhook body must be a JSON object')
    try:
        return WebhookPayload.model_validate(data)
    except PydanticValidationError as e:
        fields = ', '.join('.'.join(str(p) for p in err['loc']) for err in e.errors())
        raise ValidationError(fields or 'body', f"Invalid webhook payload: missing or invalid {fields}")


async def process_webhook(
    raw_body: Union[bytes, str],
    signature: Optional[str],
    repository: SyncRepository,
    secret: Optional[str] = None
) -> WebhookResult:
    """
    Verify and apply one webhook delivery.

    Args:
        raw_body: Exact request body bytes (the signature covers these)
        signature: Value of the X-Momo-Signature header, or None
        repository: Persistence used to find and update the transaction
        secret: Shared secret; when unset, unsigned deliveries are accepted

    Returns:
        WebhookResult with the HTTP status code and JSON body
    """
    # 1. Authenticity
    if secret:
        if not signature:
            logger.warning("Webhook received without signature but secret is configured")
            return _error(SignatureError('Missing signature'))
        if not verify_signature(raw_body, signature, secret):
            logger.warning("Invalid webhook signature")
            return _error(SignatureError('Invalid signature'))
    else:
        logger.warning("Webhook signature verification disabled (no secret configured)")

    # 2. Payload
    try:
        payload = _parse_payload(raw_body)
    except ValidationError as e:
        logger.warning(f"Rejected webhook payload: {e.message}")
        return _error(e)

    logger.info(f"Webhook received: externalId={payload.external_id}, status={payload.status}, "
                f"amount={payload.amount}, timestamp={payload.timestamp}")

    # 3. Target transaction
    try:
        transaction = await repository.find_transaction_by_external_id_any(payload.external_id)
    except SyncServiceError as e:
        logger.error(f"Webhook lookup failed for {payload.external_id}: {e}")
        return _error(e)

    if transaction is None:
        logger.error(f"Transaction not found: {payload.external_id}")
        error = TransactionNotFoundError('Transaction not found',
                                         {'externalId': payload.external_id})
        return _error(error)

    log_id = await _open_sync_log(repository, transaction.user_id, transaction.account_id)

    # 4. Status update
    fields: Dict[str, Any] = {'external_status': payload.status}
    if payload.financial_transaction_id:
        fields['external_financial_id'] = payload.financial_transaction_id
    if payload.status == STATUS_FAILED and payload.reason:
        fields['description'] = f"{transaction.description or ''} (Failed: {payload.reason})".strip()

    try:
        await repository.update_transaction(transaction.id, fields)
    except SyncServiceError as e:
        logger.error(f"Failed to update transaction {transaction.id}: {e}")
        await _close_sync_log(repository, log_id, SyncLogStatus.FAILED, 0, e.message)
        return _error(e)

    await _close_sync_log(repository, log_id, SyncLogStatus.SUCCESS, 1, None)

    logger.info(f"Transaction updated successfully: {transaction.id} "
                f"(externalId={payload.external_id}, status={payload.status})")
    return WebhookResult(200, {
        'success': True,
        'message': 'Webhook processed successfully',
        'transactionId': transaction.id,
        'status': payload.status,
    })


async def _open_sync_log(repository: SyncRepository, user_id: str,
                         account_id: Optional[str]) -> Optional[str]:
    try:
        log = await repository.insert_sync_log(SyncLogEntry(
            user_id=user_id,
            account_id=account_id,
            sync_type=SyncType.WEBHOOK,
            sync_status=SyncLogStatus.IN_PROGRESS,
        ))
        return log.id
    except SyncServiceError as e:
        logger.warning(f"Failed to log webhook event: {e}")
        return None


async def _close_sync_log(repository: SyncRepository, log_id: Optional[str],
                          status: SyncLogStatus, synced: int, error: Optional[str]) -> None:
    if log_id is None:
        return
    try:
        await repository.update_sync_log(log_id, {
            'sync_status': status,
            'transactions_synced': synced,
            'completed_at': utc_now(),
            'error_message': error,
        })
    except SyncServiceError as e:
        logger.warning(f"Failed to finalize webhook sync log {log_id}: {e}")
