"""
Background Sync Organism - Scheduled reconciliation across all accounts

Loads active linked accounts, orders them by sync priority and reconciles
them with bounded concurrency. Non-authentication failures are retried with
exponential backoff; authentication failures are never retried and trigger a
re-link notification. Also exposes the sync health check.

Part of Layer 3: Organisms (complete features)

Public API:
    - BackgroundSyncOrchestrator.run(force=False, max_concurrent=None) -> RunSummary
    - BackgroundSyncOrchestrator.sync_account(account) -> SyncResult
    - BackgroundSyncOrchestrator.check_sync_health() -> Dict
    - calculate_priority(account, now) -> int

Example:
    >>> orchestrator = BackgroundSyncOrchestrator(repository, reconciler, notifier)
    >>> summary = await orchestrator.run(force=True, max_concurrent=3)
    >>> summary.to_dict()['successful_syncs']
    4
    >>> await orchestrator.check_sync_health()
    {'is_healthy': True, 'issues': [], 'recommendations': []}
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from common.models import AccountSyncStatus, LinkedAccount, SyncType, utc_now
from common.repository import SyncRepository
from tools.accounts.transaction_sync.molecules.account_aggregator import platform_display_name
from tools.accounts.transaction_sync.molecules.sync_reconciler import (
    STATUS_AUTH_ERROR,
    STATUS_FAILED,
    STATUS_SUCCESS,
    SyncReconciler,
    SyncResult,
)
from tools.accounts.transaction_sync.organisms.alert_processor import (
    Notifier,
    reauth_notification,
    sync_completion_notification,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0

# Health check issue -> fixed recommendation
ISSUE_DISABLED = 'Background sync is disabled'
RECOMMEND_ENABLE = 'Enable background sync in settings'
RECOMMEND_RELINK = 'Re-link your accounts in account settings'
RECOMMEND_MANUAL_SYNC = 'Check account settings and try manual sync'
RECOMMEND_CONNECTION = 'Check your internet connection and account settings'


def calculate_priority(account: LinkedAccount, now: datetime) -> int:
    """
    Sync priority between 1 and 100 (higher runs first).

    Base 50; never synced +30, otherwise +2 per day since the last sync
    (capped at +20); auth_required -20; error +10.
    """
    priority = 50.0

    if account.last_synced_at is None:
        priority += 30
    else:
        days_since = (now - account.last_synced_at).total_seconds() / 86400
        priority += min(max(days_since, 0) * 2, 20)

    if account.sync_status == AccountSyncStatus.AUTH_REQUIRED:
        priority -= 20
    elif account.sync_status == AccountSyncStatus.ERROR:
        priority += 10

    return int(max(1, min(100, priority)))


@dataclass
class RunSummary:
    """Metrics for one orchestrator run"""
    total_accounts: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    auth_error_syncs: int = 0
    total_transactions_synced: int = 0
    average_sync_duration: float = 0.0
    notifications_sent: int = 0
    notification_errors: int = 0
    duration: float = 0.0
    skipped: bool = False
    results: List[SyncResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.failed_syncs == 0 and self.auth_error_syncs == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'all_succeeded': self.all_succeeded,
            'total_accounts': self.total_accounts,
            'successful_syncs': self.successful_syncs,
            'failed_syncs': self.failed_syncs,
            'auth_error_syncs': self.auth_error_syncs,
            'total_transactions_synced': self.total_transactions_synced,
            'average_sync_duration': round(self.average_sync_duration, 3),
            'notifications_sent': self.notifications_sent,
            'notification_errors': self.notification_errors,
            'duration': round(self.duration, 3),
            'skipped': self.skipped,
            'results': [result.to_dict() for result in self.results],
        }


class BackgroundSyncOrchestrator:
    """Bounded-concurrency reconciliation over every active linked account"""

    def __init__(self, repository: SyncRepository, reconciler: SyncReconciler,
                 notifier: Optional[Notifier] = None,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 base_delay: float = DEFAULT_BASE_DELAY,
                 clock: Callable[[], datetime] = utc_now,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.repository = repository
        self.reconciler = reconciler
        self.notifier = notifier
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.clock = clock
        self.sleep = sleep

    async def load_accounts(self, force: bool, frequency_hours: int) -> List[LinkedAccount]:
        """
        Active accounts due for sync, highest priority first.

        Unless forced, only accounts never synced or last synced longer ago
        than ``frequency_hours`` are returned.
        """
        now = self.clock()
        accounts = await self.repository.list_active_accounts()

        if not force:
            cutoff = now - timedelta(hours=frequency_hours)
            accounts = [
                account for account in accounts
                if account.last_synced_at is None or account.last_synced_at < cutoff
            ]

        accounts.sort(key=lambda account: calculate_priority(account, now), reverse=True)
        logger.info(f"Loaded {len(accounts)} accounts for syncing")
        return accounts

    async def run(self, force: bool = False,
                  max_concurrent: Optional[int] = None) -> RunSummary:
        """
        Execute one background sync run.

        Args:
            force: Sync every active account even when recently synced or
                when background sync is disabled
            max_concurrent: In-flight reconciliation bound; defaults to the
                stored sync config value

        Returns:
            RunSummary with per-account results in completion order
        """
        started = time.monotonic()
        summary = RunSummary()
        config = await self.repository.get_sync_config()

        if not config.enabled and not force:
            logger.info("Background sync is disabled, skipping run")
            summary.skipped = True
            return summary

        limit = max(1, max_concurrent or config.max_concurrent_accounts)
        accounts = await self.load_accounts(force, config.sync_frequency_hours)
        summary.total_accounts = len(accounts)
        logger.info(f"Starting background sync: {len(accounts)} accounts, max concurrency {limit}")

        semaphore = asyncio.Semaphore(limit)

        async def bounded(account: LinkedAccount) -> SyncResult:
            async with semaphore:
                return await self._sync_guarded(account, summary)

        # Tasks are created in priority order; the semaphore admits waiters FIFO
        tasks = [asyncio.create_task(bounded(account)) for account in accounts]
        for completed in asyncio.as_completed(tasks):
            result = await completed
            summary.results.append(result)
            if result.status == STATUS_SUCCESS:
                summary.successful_syncs += 1
                summary.total_transactions_synced += result.transactions_synced
            elif result.status == STATUS_AUTH_ERROR:
                summary.auth_error_syncs += 1
            else:
                summary.failed_syncs += 1

        if summary.results:
            summary.average_sync_duration = (
                sum(result.duration for result in summary.results) / len(summary.results)
            )

        now = self.clock()
        await self.repository.update_sync_config({
            'last_run_at': now,
            'next_run_at': now + timedelta(hours=config.sync_frequency_hours),
        })

        summary.duration = time.monotonic() - started
        logger.info(f"Background sync completed: {summary.successful_syncs} succeeded, "
                    f"{summary.failed_syncs} failed, {summary.auth_error_syncs} need re-auth, "
                    f"{summary.total_transactions_synced} transactions synced")
        return summary

    async def _sync_guarded(self, account: LinkedAccount, summary: RunSummary) -> SyncResult:
        try:
            return await self.sync_account(account, summary)
        except Exception as e:
            # One account's persistence failure must not abort the whole run
            logger.exception(f"Unexpected error syncing account {account.id}")
            return SyncResult(account_id=account.id, platform=account.platform.value,
                              status=STATUS_FAILED, error=str(e))

    async def sync_account(self, account: LinkedAccount,
                           summary: Optional[RunSummary] = None) -> SyncResult:
        """
        Reconcile one account, retrying non-authentication failures.

        Each retry is a new reconciliation attempt with its own Sync Log
        entry. Delay before retry ``n`` (0-based) is ``base_delay * 2**n``.
        """
        summary = summary or RunSummary()
        name = account.account_name or platform_display_name(account.platform)

        for attempt in range(self.max_retries + 1):
            logger.info(f"Syncing account {account.id} (attempt {attempt + 1}/{self.max_retries + 1})")
            result = await self.reconciler.reconcile(account, sync_type=SyncType.BACKGROUND)

            if result.status == STATUS_SUCCESS:
                if result.new_transactions > 0:
                    text = sync_completion_notification(name, account.platform, result.new_transactions)
                    await self._notify(account, text, 'sync_completion', summary)
                return result

            if result.status == STATUS_AUTH_ERROR:
                await self._notify(account, reauth_notification(name, account.platform),
                                   'reauth_required', summary)
                return result

            if attempt == self.max_retries:
                logger.error(f"Account {account.id} failed after {attempt + 1} attempts: {result.error}")
                return result

            delay = self.base_delay * (2 ** attempt)
            logger.info(f"Retrying account {account.id} in {delay}s")
            await self.sleep(delay)

    async def _notify(self, account: LinkedAccount, text: Dict[str, str], kind: str,
                      summary: RunSummary) -> None:
        if self.notifier is None:
            logger.info(f"Notifier not configured, skipping {kind} notification for {account.id}")
            return
        try:
            delivered = await self.notifier.send(
                account.user_id, text['title'], text['message'],
                {'type': kind, 'account_id': account.id, 'platform': account.platform.value},
            )
        except Exception as e:
            summary.notification_errors += 1
            logger.warning(f"Error sending {kind} notification for account {account.id}: {e}")
            return

        if delivered:
            summary.notifications_sent += 1
        else:
            summary.notification_errors += 1
            logger.warning(f"Failed to send {kind} notification for account {account.id}")

    async def check_sync_health(self) -> Dict[str, Any]:
        """
        Diagnose background sync state.

        Returns:
            {
                'is_healthy': bool,
                'issues': List[str],
                'recommendations': List[str]  # one per issue, same order
            }
        """
        config = await self.repository.get_sync_config()
        accounts = await self.repository.list_active_accounts()
        now = self.clock()
        stale_cutoff = now - timedelta(days=config.stale_after_days)

        issues: List[str] = []
        recommendations: List[str] = []

        if not config.enabled:
            issues.append(ISSUE_DISABLED)
            recommendations.append(RECOMMEND_ENABLE)

        auth_required = [a for a in accounts if a.sync_status == AccountSyncStatus.AUTH_REQUIRED]
        if auth_required:
            issues.append(f"{len(auth_required)} account(s) need re-authentication")
            recommendations.append(RECOMMEND_RELINK)

        errored = [a for a in accounts if a.sync_status == AccountSyncStatus.ERROR]
        if errored:
            issues.append(f"{len(errored)} account(s) have sync errors")
            recommendations.append(RECOMMEND_MANUAL_SYNC)

        stale = [a for a in accounts if a.last_synced_at is None or a.last_synced_at < stale_cutoff]
        if stale:
            issues.append(f"{len(stale)} account(s) haven't synced recently")
            recommendations.append(RECOMMEND_CONNECTION)

        return {
            'is_healthy': not issues,
            'issues': issues,
            'recommendations': recommendations,
        }
