"""
Sync Workflow Template - Wire services and run sync operations

Layer 4: Templates (full workflow orchestration)
Composes the repository, clients, molecules and organisms into one
SyncServices bundle and exposes the operations behind the HTTP endpoints.

Public API:
    - build_services(cfg, repository=None, notifier=None) -> SyncServices
    - run_background_sync(services, force, max_concurrent) -> RunSummary
    - sync_account_now(services, account_id) -> SyncResult
    - validate_account_request(services, data) -> Dict
    - get_sync_health(services) -> Dict
    - get_sync_config(services) / update_sync_config(services, data) -> Dict

Example:
    >>> services = build_services(config)
    >>> summary = await run_background_sync(services, force=True)
    >>> result = await sync_account_now(services, 'acc_123')
    >>> result.new_transactions
    3
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from common.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    RateLimitedError,
    SyncInProgressError,
    ValidationError,
)
from common.models import (
    AccountSyncStatus,
    BankHandle,
    MobileMoneyHandle,
    Platform,
    SyncConfig,
    SyncType,
    utc_now,
)
from common.momo_client import MomoClient
from common.mono_client import MonoClient
from common.repository import InMemoryRepository, SyncRepository
from tools.accounts.transaction_sync.atoms.event_bus import EventBus
from tools.accounts.transaction_sync.atoms.rate_limiter import RateLimiter
from tools.accounts.transaction_sync.config import Config
from tools.accounts.transaction_sync.molecules.account_aggregator import AccountAggregator
from tools.accounts.transaction_sync.molecules.sync_reconciler import SyncReconciler, SyncResult
from tools.accounts.transaction_sync.organisms.alert_processor import (
    AlertProcessor,
    LoggingNotifier,
    Notifier,
)
from tools.accounts.transaction_sync.organisms.background_sync import (
    BackgroundSyncOrchestrator,
    RunSummary,
)

logger = logging.getLogger(__name__)

# An in_progress account whose last attempt is older than this is treated as abandoned
SYNC_IN_PROGRESS_TIMEOUT = timedelta(minutes=30)

CONFIG_FIELDS = {
    'enabled': 'enabled',
    'syncFrequencyHours': 'sync_frequency_hours',
    'sync_frequency_hours': 'sync_frequency_hours',
    'maxConcurrentAccounts': 'max_concurrent_accounts',
    'max_concurrent_accounts': 'max_concurrent_accounts',
    'staleAfterDays': 'stale_after_days',
    'stale_after_days': 'stale_after_days',
}


@dataclass
class SyncServices:
    """Everything a request handler needs, built once per process"""
    repository: SyncRepository
    aggregator: AccountAggregator
    reconciler: SyncReconciler
    orchestrator: BackgroundSyncOrchestrator
    event_bus: EventBus
    alert_processor: AlertProcessor
    notifier: Notifier
    rate_limiter: RateLimiter
    webhook_secret: Optional[str] = None


def _create_repository(cfg: Config) -> SyncRepository:
    if cfg.backend == 'postgres':
        # psycopg2 is only needed for this backend
        from common.db_connection import DatabaseConnection
        from common.pg_repository import PostgresRepository
        logger.info("Using PostgreSQL sync repository")
        return PostgresRepository(DatabaseConnection(cfg.get_database_credentials()))

    logger.info("Using in-memory sync repository")
    return InMemoryRepository(SyncConfig(
        max_concurrent_accounts=cfg.max_concurrent_accounts,
        stale_after_days=cfg.stale_after_days,
    ))


def build_services(
    cfg: Config,
    repository: Optional[SyncRepository] = None,
    notifier: Optional[Notifier] = None,
    bank_client: Optional[MonoClient] = None,
    momo_client: Optional[MomoClient] = None,
    rate_limiter: Optional[RateLimiter] = None
) -> SyncServices:
    """
    Construct the service graph from configuration.

    Explicit arguments override what the configuration would build.
    """
    repository = repository or _create_repository(cfg)

    if bank_client is None:
        mono = cfg.get_mono_credentials()
        bank_client = MonoClient(mono['secret_key'], base_url=mono['base_url'])
    if momo_client is None:
        momo = cfg.get_momo_credentials()
        momo_client = MomoClient(momo['api_key'], momo['api_secret'], base_url=momo['base_url'])

    notifier = notifier or LoggingNotifier()
    event_bus = EventBus()
    alert_processor = AlertProcessor(notifier, threshold=cfg.large_transaction_threshold)
    alert_processor.subscribe(event_bus)

    aggregator = AccountAggregator(bank_client=bank_client, momo_client=momo_client)
    reconciler = SyncReconciler(repository, aggregator, event_bus)
    orchestrator = BackgroundSyncOrchestrator(repository, reconciler, notifier)

    webhook_secret = cfg.get_webhook_secret()
    if not webhook_secret:
        logger.warning("No webhook secret configured; webhook signatures will not be verified")

    return SyncServices(
        repository=repository,
        aggregator=aggregator,
        reconciler=reconciler,
        orchestrator=orchestrator,
        event_bus=event_bus,
        alert_processor=alert_processor,
        notifier=notifier,
        rate_limiter=rate_limiter or RateLimiter(),
        webhook_secret=webhook_secret,
    )


async def run_background_sync(services: SyncServices, force: bool = False,
                              max_concurrent: Optional[int] = None) -> RunSummary:
    summary = await services.orchestrator.run(force=force, max_concurrent=max_concurrent)
    await services.event_bus.drain()
    return summary


async def sync_account_now(services: SyncServices, account_id: str) -> SyncResult:
    """
    Manual, user-triggered sync for one account.

    Raises:
        AccountNotFoundError: Unknown account id
        AccountInactiveError: Account was unlinked
        SyncInProgressError: Another attempt started less than 30 minutes ago
        RateLimitedError: Too many manual syncs for this account
    """
    account = await services.repository.get_account(account_id)
    if account is None:
        raise AccountNotFoundError(f"Account {account_id} not found")
    if not account.is_active:
        raise AccountInactiveError(f"Account {account_id} is not active")

    if (account.sync_status == AccountSyncStatus.IN_PROGRESS
            and account.last_sync_attempt is not None
            and utc_now() - account.last_sync_attempt < SYNC_IN_PROGRESS_TIMEOUT):
        raise SyncInProgressError(f"A sync is already in progress for account {account_id}")

    limit = services.rate_limiter.check_and_increment(f"manual_sync:{account_id}")
    if not limit['can_send']:
        raise RateLimitedError(
            'Too many sync requests for this account, please try again later',
            {'next_allowed_at': limit['next_allowed_at'],
             'remaining_attempts': limit['remaining_attempts']},
        )

    result = await services.reconciler.reconcile(account, sync_type=SyncType.MANUAL)
    await services.event_bus.drain()
    return result


async def validate_account_request(services: SyncServices, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a prospective account link.

    Expected payload:
        {"platform": "bank", "accountId": "..."} or
        {"platform": "mobile_money", "phoneNumber": "0241234567"}
    """
    platform = (data or {}).get('platform')
    if platform == Platform.BANK.value:
        account_id = data.get('accountId') or data.get('account_id')
        if not account_id:
            raise ValidationError('accountId', 'accountId is required for bank accounts')
        handle = BankHandle(account_id=account_id)
    elif platform == Platform.MOBILE_MONEY.value:
        phone = data.get('phoneNumber') or data.get('phone_number')
        if not phone:
            raise ValidationError('phoneNumber', 'phoneNumber is required for mobile money accounts')
        handle = MobileMoneyHandle(phone_number=phone)
    else:
        raise ValidationError('platform', "platform must be 'bank' or 'mobile_money'", platform)

    return await services.aggregator.validate_account(handle)


async def get_sync_health(services: SyncServices) -> Dict[str, Any]:
    return await services.orchestrator.check_sync_health()


async def get_sync_config(services: SyncServices) -> Dict[str, Any]:
    config = await services.repository.get_sync_config()
    return config.model_dump(mode='json')


async def update_sync_config(services: SyncServices, data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial update to the sync config (camelCase or snake_case keys)."""
    if not isinstance(data, dict) or not data:
        raise ValidationError('body', 'Request body must be a non-empty object')

    fields: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in CONFIG_FIELDS:
            raise ValidationError(key, f"Unknown sync config field: {key}", value)
        fields[CONFIG_FIELDS[key]] = value

    try:
        SyncConfig(**fields)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = '.'.join(str(part) for part in first['loc'])
        raise ValidationError(field, f"Invalid value for {field}: {first['msg']}")

    config = await services.repository.update_sync_config(fields)
    logger.info(f"Sync config updated: {sorted(fields)}")
    return config.model_dump(mode='json')
