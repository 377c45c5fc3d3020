"""Domain models for transaction sync.

Pydantic models for the reconciled Transaction, the Linked Account (with an
explicit platform handle union), Sync Log entries, the background sync config
record and the normalized external transaction shape produced by the
account aggregator.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from common.errors import ConfigurationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    BANK = 'bank'
    MOBILE_MONEY = 'mobile_money'


class TransactionType(str, Enum):
    INCOME = 'income'
    EXPENSE = 'expense'


class AccountSyncStatus(str, Enum):
    ACTIVE = 'active'
    AUTH_REQUIRED = 'auth_required'
    ERROR = 'error'
    IN_PROGRESS = 'in_progress'


class SyncType(str, Enum):
    MANUAL = 'manual'
    WEBHOOK = 'webhook'
    BACKGROUND = 'background'


class SyncLogStatus(str, Enum):
    IN_PROGRESS = 'in_progress'
    SUCCESS = 'success'
    FAILED = 'failed'


class BankHandle(BaseModel):
    """Bank-aggregation account handle."""

    platform: Literal['bank'] = 'bank'
    account_id: str = Field(..., min_length=1)


class MobileMoneyHandle(BaseModel):
    """Mobile-money account handle (wallet phone number)."""

    platform: Literal['mobile_money'] = 'mobile_money'
    phone_number: str = Field(..., min_length=1)


AccountHandle = Union[BankHandle, MobileMoneyHandle]


class LinkedAccount(BaseModel):
    """A user's connection to one external platform."""

    id: str
    user_id: str
    handle: AccountHandle = Field(..., discriminator='platform')
    institution_name: str = ''
    account_name: Optional[str] = None
    is_active: bool = True
    sync_status: AccountSyncStatus = AccountSyncStatus.ACTIVE
    balance: Optional[Decimal] = None
    last_synced_at: Optional[datetime] = None
    last_sync_attempt: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def platform(self) -> Platform:
        return Platform(self.handle.platform)

    @property
    def external_handle(self) -> str:
        if isinstance(self.handle, BankHandle):
            return self.handle.account_id
        return self.handle.phone_number

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'LinkedAccount':
        """
        Build an account from a flat storage row.

        The row carries ``platform`` plus either ``bank_account_id`` or
        ``phone_number``. A row whose platform handle is missing is a
        configuration error; the platform is never guessed.

        Raises:
            ConfigurationError: If the platform or its handle is missing
        """
        platform = record.get('platform')
        if platform == Platform.BANK.value:
            if not record.get('bank_account_id'):
                raise ConfigurationError('Bank account is missing bank account id')
            handle = BankHandle(account_id=record['bank_account_id'])
        elif platform == Platform.MOBILE_MONEY.value:
            if not record.get('phone_number'):
                raise ConfigurationError('Mobile money account is missing phone number')
            handle = MobileMoneyHandle(phone_number=record['phone_number'])
        else:
            raise ConfigurationError(f"Unable to determine platform for account: {platform!r}")

        fields = {
            k: v for k, v in record.items()
            if k in cls.model_fields and k != 'handle' and v is not None
        }
        return cls(handle=handle, **fields)

    def to_record(self) -> Dict[str, Any]:
        """Flatten to a storage row (inverse of ``from_record``)."""
        record = self.model_dump(exclude={'handle'})
        record['platform'] = self.platform.value
        record['bank_account_id'] = self.handle.account_id if isinstance(self.handle, BankHandle) else None
        record['phone_number'] = self.handle.phone_number if isinstance(self.handle, MobileMoneyHandle) else None
        for key in ('sync_status',):
            record[key] = record[key].value
        return record


class Transaction(BaseModel):
    """The reconciled financial record."""

    id: Optional[str] = None
    user_id: str
    account_id: Optional[str] = None
    amount: Decimal
    type: TransactionType
    category_id: Optional[str] = None
    description: str = ''
    merchant_name: Optional[str] = None
    currency: Optional[str] = None
    transaction_date: datetime
    external_id: Optional[str] = None
    external_status: Optional[str] = None
    external_financial_id: Optional[str] = None
    is_synced: bool = False
    auto_categorized: bool = False
    categorization_confidence: Optional[float] = Field(default=None, ge=0, le=100)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('amount')
    @classmethod
    def amount_is_absolute(cls, value: Decimal) -> Decimal:
        """Sign lives in ``type``; stored amounts are always absolute."""
        return abs(value)


class SyncLogEntry(BaseModel):
    """Audit record of one reconciliation attempt."""

    id: Optional[str] = None
    user_id: str
    account_id: Optional[str] = None
    sync_type: SyncType
    sync_status: SyncLogStatus = SyncLogStatus.IN_PROGRESS
    transactions_synced: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class SyncConfig(BaseModel):
    """Single mutable background sync configuration record."""

    enabled: bool = True
    sync_frequency_hours: int = Field(default=24, ge=1)
    max_concurrent_accounts: int = Field(default=5, ge=1, le=50)
    stale_after_days: int = Field(default=5, ge=1)
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


class ExternalTransaction(BaseModel):
    """Unified transaction shape produced by the account aggregator."""

    id: str
    amount: Decimal
    type: TransactionType
    description: str = ''
    date: datetime
    reference: Optional[str] = None
    category: Optional[str] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    financial_transaction_id: Optional[str] = None
    payee_note: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class ExternalAccountInfo(BaseModel):
    name: str
    balance: Optional[Decimal] = None
    institution: str = ''
    account_number: Optional[str] = None


class AccountSyncData(BaseModel):
    platform: Platform
    transactions: List[ExternalTransaction]
    account: ExternalAccountInfo
    total_transactions: int
    errors: List[str] = Field(default_factory=list)
