"""Persistence contract for transaction sync.

``SyncRepository`` is the typed interface the reconciler, webhook ingestion
and orchestrator depend on. All operations are single-row atomic; no
multi-row transactions are required. ``InMemoryRepository`` backs tests and
local development; ``common.pg_repository.PostgresRepository`` backs
production.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from common.errors import AccountNotFoundError, DatabaseError, TransactionNotFoundError
from common.models import (
    LinkedAccount,
    SyncConfig,
    SyncLogEntry,
    Transaction,
    utc_now,
)

logger = logging.getLogger(__name__)


class SyncRepository(ABC):
    """Named-method repository over transactions, linked_accounts, sync_log and sync_config."""

    @abstractmethod
    async def find_transaction_by_external_id(self, user_id: str,
                                              external_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def find_transaction_by_external_id_any(self, external_id: str) -> Optional[Transaction]:
        """Lookup across users (webhooks carry no user context)."""
        ...

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    async def update_transaction(self, transaction_id: str,
                                 fields: Dict[str, Any]) -> Transaction:
        ...

    @abstractmethod
    async def upsert_transaction(self, transaction: Transaction) -> Tuple[Transaction, bool]:
        """Insert-or-update keyed on (user_id, external_id). Returns (row, inserted)."""
        ...

    @abstractmethod
    async def list_transactions(self, user_id: str,
                                account_id: Optional[str] = None) -> List[Transaction]:
        ...

    @abstractmethod
    async def insert_sync_log(self, entry: SyncLogEntry) -> SyncLogEntry:
        ...

    @abstractmethod
    async def update_sync_log(self, log_id: str, fields: Dict[str, Any]) -> SyncLogEntry:
        ...

    @abstractmethod
    async def list_sync_logs(self, account_id: Optional[str] = None,
                             limit: int = 20) -> List[SyncLogEntry]:
        """Most recent first."""
        ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[LinkedAccount]:
        ...

    @abstractmethod
    async def list_accounts(self, active_only: bool = True) -> List[LinkedAccount]:
        ...

    async def list_active_accounts(self) -> List[LinkedAccount]:
        return await self.list_accounts(active_only=True)

    @abstractmethod
    async def save_account(self, account: LinkedAccount) -> LinkedAccount:
        ...

    @abstractmethod
    async def update_account(self, account_id: str, fields: Dict[str, Any]) -> LinkedAccount:
        ...

    @abstractmethod
    async def get_sync_config(self) -> SyncConfig:
        ...

    @abstractmethod
    async def update_sync_config(self, fields: Dict[str, Any]) -> SyncConfig:
        ...


class InMemoryRepository(SyncRepository):
    """
    Dictionary-backed repository.

    Stored models are copied in and out so callers never share mutable state
    with the store, matching the behaviour of a real database.
    """

    def __init__(self, config: Optional[SyncConfig] = None):
        self.transactions: Dict[str, Transaction] = {}
        self.accounts: Dict[str, LinkedAccount] = {}
        self.sync_logs: Dict[str, SyncLogEntry] = {}
        self.config = config or SyncConfig()

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f'{prefix}_{uuid.uuid4().hex[:12]}'

    async def find_transaction_by_external_id(self, user_id, external_id):
        for txn in self.transactions.values():
            if txn.user_id == user_id and txn.external_id == external_id:
                return txn.model_copy(deep=True)
        return None

    async def find_transaction_by_external_id_any(self, external_id):
        for txn in self.transactions.values():
            if txn.external_id == external_id:
                return txn.model_copy(deep=True)
        return None

    async def insert_transaction(self, transaction):
        if transaction.external_id is not None:
            existing = await self.find_transaction_by_external_id(
                transaction.user_id, transaction.external_id
            )
            if existing:
                raise DatabaseError(
                    f"Duplicate transaction for external_id {transaction.external_id}"
                )
        stored = transaction.model_copy(deep=True)
        stored.id = stored.id or self._new_id('txn')
        self.transactions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def update_transaction(self, transaction_id, fields):
        if transaction_id not in self.transactions:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        current = self.transactions[transaction_id]
        updated = current.model_copy(update={**fields, 'updated_at': utc_now()})
        self.transactions[transaction_id] = updated
        return updated.model_copy(deep=True)

    async def upsert_transaction(self, transaction):
        existing = None
        if transaction.external_id is not None:
            existing = await self.find_transaction_by_external_id(
                transaction.user_id, transaction.external_id
            )
        if existing is None:
            return await self.insert_transaction(transaction), True
        fields = transaction.model_dump(exclude={'id', 'created_at', 'updated_at'})
        return await self.update_transaction(existing.id, fields), False

    async def list_transactions(self, user_id, account_id=None):
        return [
            txn.model_copy(deep=True) for txn in self.transactions.values()
            if txn.user_id == user_id and (account_id is None or txn.account_id == account_id)
        ]

    async def insert_sync_log(self, entry):
        stored = entry.model_copy(deep=True)
        stored.id = stored.id or self._new_id('log')
        self.sync_logs[stored.id] = stored
        return stored.model_copy(deep=True)

    async def update_sync_log(self, log_id, fields):
        if log_id not in self.sync_logs:
            raise DatabaseError(f"Sync log {log_id} not found")
        updated = self.sync_logs[log_id].model_copy(update=fields)
        self.sync_logs[log_id] = updated
        return updated.model_copy(deep=True)

    async def list_sync_logs(self, account_id=None, limit=20):
        logs = [
            log for log in self.sync_logs.values()
            if account_id is None or log.account_id == account_id
        ]
        logs.sort(key=lambda log: log.started_at, reverse=True)
        return [log.model_copy(deep=True) for log in logs[:limit]]

    async def get_account(self, account_id):
        account = self.accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(self, active_only=True):
        return [
            account.model_copy(deep=True) for account in self.accounts.values()
            if account.is_active or not active_only
        ]

    async def save_account(self, account):
        self.accounts[account.id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    async def update_account(self, account_id, fields):
        if account_id not in self.accounts:
            raise AccountNotFoundError(f"Account {account_id} not found")
        updated = self.accounts[account_id].model_copy(update=fields)
        self.accounts[account_id] = updated
        return updated.model_copy(deep=True)

    async def get_sync_config(self):
        return self.config.model_copy(deep=True)

    async def update_sync_config(self, fields):
        # Validate through the model so bad values never reach the stored record
        self.config = SyncConfig(**{**self.config.model_dump(), **fields})
        return self.config.model_copy(deep=True)
