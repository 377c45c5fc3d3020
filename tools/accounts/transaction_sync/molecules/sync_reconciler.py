"""
Sync Reconciler Molecule - Reconcile one account's external transactions

Fetches a date range through the account aggregator, deduplicates against
stored rows by (user_id, external_id), inserts new rows (categorized and
merchant-tagged) and updates rows whose amount, type, status or description
changed. Re-running the same range converges to the same stored state.

Part of Layer 2: Molecules (2-3 atom combinations)

Per-account state machine:
    idle -> in_progress -> success | failed

The Sync Log entry is created when the attempt starts and finalized before
``reconcile`` returns. Per-transaction failures are collected in ``errors``;
the run only fails when the fetch fails or every transaction errored.

Public API:
    - SyncReconciler.reconcile(account, start_date=None, end_date=None, sync_type) -> SyncResult

Example:
    >>> reconciler = SyncReconciler(repository, aggregator, event_bus)
    >>> result = await reconciler.reconcile(account, sync_type=SyncType.MANUAL)
    >>> result.to_dict()
    {'account_id': 'acc_1', 'platform': 'mobile_money', 'status': 'success',
     'total_transactions': 2, 'new_transactions': 2, 'updated_transactions': 0,
     'errors': [], 'error': None, 'duration': 0.04, 'sync_log_id': 'log_...'}
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.errors import AuthenticationError, DatabaseError, SyncServiceError
from common.models import (
    AccountSyncStatus,
    ExternalTransaction,
    LinkedAccount,
    SyncLogEntry,
    SyncLogStatus,
    SyncType,
    Transaction,
    utc_now,
)
from common.repository import SyncRepository
from tools.accounts.transaction_sync.atoms.categorizer import categorize
from tools.accounts.transaction_sync.atoms.event_bus import EventBus, TRANSACTION_CREATED
from tools.accounts.transaction_sync.atoms.merchant_extractor import extract_merchant
from tools.accounts.transaction_sync.molecules.account_aggregator import AccountAggregator

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'
STATUS_AUTH_ERROR = 'auth_error'


@dataclass
class SyncResult:
    """Outcome of one reconciliation attempt"""
    account_id: str
    platform: str
    status: str = STATUS_SUCCESS
    total_transactions: int = 0
    new_transactions: int = 0
    updated_transactions: int = 0
    errors: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration: float = 0.0
    sync_log_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def transactions_synced(self) -> int:
        return self.new_transactions + self.updated_transactions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'platform': self.platform,
            'status': self.status,
            'total_transactions': self.total_transactions,
            'new_transactions': self.new_transactions,
            'updated_transactions': self.updated_transactions,
            'errors': list(self.errors),
            'error': self.error,
            'duration': round(self.duration, 3),
            'sync_log_id': self.sync_log_id,
        }


def default_sync_window(account: LinkedAccount, now: datetime) -> Tuple[datetime, datetime]:
    """Incremental window: since last successful sync, else the last 30 days."""
    start = account.last_synced_at or now - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    return start, now


class SyncReconciler:
    """Idempotent insert-or-update of external transactions for one account"""

    def __init__(self, repository: SyncRepository, aggregator: AccountAggregator,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.aggregator = aggregator
        self.event_bus = event_bus
        self.clock = clock

    async def reconcile(self, account: LinkedAccount,
                        start_date: Optional[datetime] = None,
                        end_date: Optional[datetime] = None,
                        sync_type: SyncType = SyncType.MANUAL) -> SyncResult:
        """
        Run one reconciliation attempt for ``account``.

        Never raises once the Sync Log entry exists: source failures and
        persistence failures alike are reported through the returned
        SyncResult, the account's sync_status and the Sync Log. Only a
        failure to open the Sync Log entry itself propagates.
        """
        started = time.monotonic()
        now = self.clock()
        if start_date is None or end_date is None:
            default_start, default_end = default_sync_window(account, now)
            start_date = start_date or default_start
            end_date = end_date or default_end

        result = SyncResult(account_id=account.id, platform=account.platform.value)

        log = await self.repository.insert_sync_log(SyncLogEntry(
            user_id=account.user_id,
            account_id=account.id,
            sync_type=sync_type,
            sync_status=SyncLogStatus.IN_PROGRESS,
            started_at=now,
        ))
        result.sync_log_id = log.id

        try:
            await self.repository.update_account(account.id, {
                'sync_status': AccountSyncStatus.IN_PROGRESS,
                'last_sync_attempt': now,
            })
            logger.info(f"Starting {sync_type.value} sync for account {account.id} ({account.platform.value})")
            return await self._run(account, result, log.id, start_date, end_date, started)
        except SyncServiceError as e:
            logger.error(f"Sync aborted for account {account.id}: {e}")
            return await self._fail(account, result, log.id, e.message,
                                    auth=isinstance(e, AuthenticationError), started=started)
        except Exception as e:
            logger.exception(f"Unexpected error syncing account {account.id}")
            return await self._fail(account, result, log.id, f"Unexpected sync error: {e}",
                                    auth=False, started=started)

    async def _run(self, account: LinkedAccount, result: SyncResult, log_id: str,
                   start_date: datetime, end_date: datetime, started: float) -> SyncResult:
        data = await self.aggregator.get_sync_data(account, start_date, end_date)

        result.errors.extend(data.errors)
        result.total_transactions = data.total_transactions
        processed = 0

        # Source order is preserved
        for external in data.transactions:
            try:
                outcome = await self._process_transaction(account, external)
            except (SyncServiceError, ValueError) as e:
                logger.warning(f"Failed to process transaction {external.id}: {e}")
                result.errors.append(f"{external.id}: {e}")
                continue
            processed += 1
            if outcome == 'inserted':
                result.new_transactions += 1
            elif outcome == 'updated':
                result.updated_transactions += 1

        attempted = len(data.transactions) + len(data.errors)
        if attempted > 0 and processed == 0:
            return await self._fail(account, result, log_id,
                                    f"All {attempted} transactions failed to process",
                                    auth=False, started=started)

        account_update: Dict[str, Any] = {
            'sync_status': AccountSyncStatus.ACTIVE,
            'last_synced_at': self.clock(),
            'last_error': None,
        }
        if data.account.balance is not None:
            account_update['balance'] = data.account.balance
        await self.repository.update_account(account.id, account_update)
        await self.repository.update_sync_log(log_id, {
            'sync_status': SyncLogStatus.SUCCESS,
            'transactions_synced': result.transactions_synced,
            'completed_at': self.clock(),
            'error_message': '; '.join(result.errors) or None,
        })

        result.duration = time.monotonic() - started
        logger.info(f"Sync completed for account {account.id}: {result.total_transactions} total, "
                    f"{result.new_transactions} new, {result.updated_transactions} updated, "
                    f"{len(result.errors)} errors")
        return result

    async def _fail(self, account: LinkedAccount, result: SyncResult, log_id: str,
                    message: str, auth: bool, started: float) -> SyncResult:
        """Mark the attempt failed. Persistence errors here are logged, not raised."""
        status = AccountSyncStatus.AUTH_REQUIRED if auth else AccountSyncStatus.ERROR
        logger.error(f"Sync failed for account {account.id}: {message}")

        try:
            await self.repository.update_account(account.id, {
                'sync_status': status,
                'last_error': message,
            })
        except Exception as e:
            logger.error(f"Could not mark account {account.id} as {status.value}: {e}")
        try:
            await self.repository.update_sync_log(log_id, {
                'sync_status': SyncLogStatus.FAILED,
                'transactions_synced': result.transactions_synced,
                'completed_at': self.clock(),
                'error_message': message,
            })
        except Exception as e:
            logger.error(f"Could not finalize sync log {log_id}: {e}")

        result.status = STATUS_AUTH_ERROR if auth else STATUS_FAILED
        result.error = message
        result.duration = time.monotonic() - started
        return result

    async def _process_transaction(self, account: LinkedAccount,
                                   external: ExternalTransaction) -> str:
        """Returns 'inserted', 'updated' or 'unchanged'."""
        existing = await self.repository.find_transaction_by_external_id(account.user_id, external.id)

        if existing is None:
            try:
                created = await self.repository.insert_transaction(self._build_transaction(account, external))
            except DatabaseError:
                # Lost a race with a concurrent run for the same account
                existing = await self.repository.find_transaction_by_external_id(
                    account.user_id, external.id
                )
                if existing is None:
                    raise
            else:
                self._publish_created(created)
                return 'inserted'

        changes = self._diff(existing, external)
        if not changes:
            return 'unchanged'

        await self.repository.update_transaction(existing.id, changes)
        logger.debug(f"Updated transaction {existing.id}: {sorted(changes)}")
        return 'updated'

    def _build_transaction(self, account: LinkedAccount, external: ExternalTransaction) -> Transaction:
        merchant = extract_merchant(external.description, external.payee_note)

        if external.category:
            category_id, auto_categorized, confidence = external.category, False, None
        else:
            category = categorize(external.description, external.amount)
            category_id, auto_categorized, confidence = (
                category.category_id, True, category.confidence
            )

        return Transaction(
            user_id=account.user_id,
            account_id=account.id,
            amount=external.amount,
            type=external.type,
            category_id=category_id,
            description=external.description,
            merchant_name=merchant,
            currency=external.currency,
            transaction_date=external.date,
            external_id=external.id,
            external_status=external.status,
            external_financial_id=external.financial_transaction_id,
            is_synced=True,
            auto_categorized=auto_categorized,
            categorization_confidence=confidence,
        )

    @staticmethod
    def _diff(existing: Transaction, external: ExternalTransaction) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if existing.amount != external.amount:
            changes['amount'] = external.amount
        if existing.type != external.type:
            changes['type'] = external.type
        if external.status is not None and existing.external_status != external.status:
            changes['external_status'] = external.status
        if (external.financial_transaction_id is not None
                and existing.external_financial_id != external.financial_transaction_id):
            changes['external_financial_id'] = external.financial_transaction_id
        if existing.description != external.description:
            changes['description'] = external.description

        # Only rows that never received a category are categorized here
        if existing.category_id is None:
            category = categorize(external.description, external.amount)
            changes['category_id'] = category.category_id
            changes['auto_categorized'] = True
            changes['categorization_confidence'] = category.confidence
        return changes

    def _publish_created(self, transaction: Transaction) -> None:
        if self.event_bus is None:
            return
        self.event_bus.publish(TRANSACTION_CREATED, {
            'transaction_id': transaction.id,
            'user_id': transaction.user_id,
            'account_id': transaction.account_id,
            'amount': transaction.amount,
            'type': transaction.type.value,
            'category_id': transaction.category_id,
            'description': transaction.description,
            'merchant_name': transaction.merchant_name,
        })
