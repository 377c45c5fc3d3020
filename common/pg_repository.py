"""
PostgreSQL implementation of the sync repository.

Uses DatabaseConnection (psycopg2) with parameterized SQL. psycopg2 is
blocking, so each statement runs in a worker thread via asyncio.to_thread;
callers still see every persistence call as an await point.

Schema: sql/init_sync_db.sql
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from common.db_connection import (
    DatabaseConnection,
    DatabaseConnectionError,
    DatabaseExecutionError,
)
from common.errors import AccountNotFoundError, DatabaseError, TransactionNotFoundError
from common.models import LinkedAccount, SyncConfig, SyncLogEntry, Transaction, utc_now
from common.repository import SyncRepository

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = [
    'id', 'user_id', 'account_id', 'amount', 'type', 'category_id', 'description',
    'merchant_name', 'currency', 'transaction_date', 'external_id', 'external_status',
    'external_financial_id', 'is_synced', 'auto_categorized',
    'categorization_confidence', 'created_at', 'updated_at',
]

ACCOUNT_COLUMNS = [
    'id', 'user_id', 'platform', 'bank_account_id', 'phone_number', 'institution_name',
    'account_name', 'is_active', 'sync_status', 'balance', 'last_synced_at',
    'last_sync_attempt', 'last_error',
]

SYNC_LOG_COLUMNS = [
    'id', 'user_id', 'account_id', 'sync_type', 'sync_status', 'transactions_synced',
    'started_at', 'completed_at', 'error_message',
]

CONFIG_COLUMNS = [
    'enabled', 'sync_frequency_hours', 'max_concurrent_accounts', 'stale_after_days',
    'last_run_at', 'next_run_at',
]


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _set_clause(fields: Dict[str, Any], allowed: List[str]) -> Tuple[str, List[Any]]:
    """Build ``col = %s, ...`` for whitelisted columns only."""
    unknown = [k for k in fields if k not in allowed]
    if unknown:
        raise DatabaseError(f"Unknown columns in update: {unknown}")
    clause = ', '.join(f'{column} = %s' for column in fields)
    return clause, [_db_value(v) for v in fields.values()]


class PostgresRepository(SyncRepository):
    """psycopg2-backed repository over the sync schema."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def _query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self.db.query, sql, params)
        except (DatabaseConnectionError, DatabaseExecutionError) as e:
            logger.error(f"Database query failed: {e}")
            raise DatabaseError(str(e))

    # Transactions

    async def find_transaction_by_external_id(self, user_id, external_id):
        rows = await self._query(
            f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM transactions "
            "WHERE user_id = %s AND external_id = %s LIMIT 1;",
            (user_id, external_id),
        )
        return Transaction(**rows[0]) if rows else None

    async def find_transaction_by_external_id_any(self, external_id):
        rows = await self._query(
            f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM transactions "
            "WHERE external_id = %s ORDER BY created_at LIMIT 1;",
            (external_id,),
        )
        return Transaction(**rows[0]) if rows else None

    async def insert_transaction(self, transaction):
        data = transaction.model_dump()
        data['id'] = data['id'] or f'txn_{uuid.uuid4().hex[:12]}'
        placeholders = ', '.join(['%s'] * len(TRANSACTION_COLUMNS))
        rows = await self._query(
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
            f"VALUES ({placeholders}) RETURNING {', '.join(TRANSACTION_COLUMNS)};",
            [_db_value(data[c]) for c in TRANSACTION_COLUMNS],
        )
        return Transaction(**rows[0])

    async def update_transaction(self, transaction_id, fields):
        fields = {**fields, 'updated_at': utc_now()}
        clause, values = _set_clause(fields, TRANSACTION_COLUMNS)
        rows = await self._query(
            f"UPDATE transactions SET {clause} WHERE id = %s "
            f"RETURNING {', '.join(TRANSACTION_COLUMNS)};",
            values + [transaction_id],
        )
        if not rows:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**rows[0])

    async def upsert_transaction(self, transaction):
        """
        ON CONFLICT (user_id, external_id) DO UPDATE.

        ``xmax = 0`` distinguishes a fresh insert from a conflict update.
        """
        data = transaction.model_dump()
        data['id'] = data['id'] or f'txn_{uuid.uuid4().hex[:12]}'
        mutable = [c for c in TRANSACTION_COLUMNS if c not in ('id', 'user_id', 'created_at')]
        placeholders = ', '.join(['%s'] * len(TRANSACTION_COLUMNS))
        updates = ', '.join(f'{c} = EXCLUDED.{c}' for c in mutable)
        rows = await self._query(
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
            f"VALUES ({placeholders}) "
            "ON CONFLICT (user_id, external_id) WHERE external_id IS NOT NULL "
            f"DO UPDATE SET {updates} "
            f"RETURNING {', '.join(TRANSACTION_COLUMNS)}, (xmax = 0) AS inserted;",
            [_db_value(data[c]) for c in TRANSACTION_COLUMNS],
        )
        row = rows[0]
        inserted = bool(row.pop('inserted'))
        return Transaction(**row), inserted

    async def list_transactions(self, user_id, account_id=None):
        sql = f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM transactions WHERE user_id = %s"
        params: List[Any] = [user_id]
        if account_id is not None:
            sql += " AND account_id = %s"
            params.append(account_id)
        rows = await self._query(sql + " ORDER BY transaction_date DESC;", params)
        return [Transaction(**row) for row in rows]

    # Sync log

    async def insert_sync_log(self, entry):
        data = entry.model_dump()
        data['id'] = data['id'] or f'log_{uuid.uuid4().hex[:12]}'
        placeholders = ', '.join(['%s'] * len(SYNC_LOG_COLUMNS))
        rows = await self._query(
            f"INSERT INTO sync_log ({', '.join(SYNC_LOG_COLUMNS)}) VALUES ({placeholders}) "
            f"RETURNING {', '.join(SYNC_LOG_COLUMNS)};",
            [_db_value(data[c]) for c in SYNC_LOG_COLUMNS],
        )
        return SyncLogEntry(**rows[0])

    async def update_sync_log(self, log_id, fields):
        clause, values = _set_clause(fields, SYNC_LOG_COLUMNS)
        rows = await self._query(
            f"UPDATE sync_log SET {clause} WHERE id = %s RETURNING {', '.join(SYNC_LOG_COLUMNS)};",
            values + [log_id],
        )
        if not rows:
            raise DatabaseError(f"Sync log {log_id} not found")
        return SyncLogEntry(**rows[0])

    async def list_sync_logs(self, account_id=None, limit=20):
        sql = f"SELECT {', '.join(SYNC_LOG_COLUMNS)} FROM sync_log"
        params: List[Any] = []
        if account_id is not None:
            sql += " WHERE account_id = %s"
            params.append(account_id)
        sql += " ORDER BY started_at DESC LIMIT %s;"
        params.append(limit)
        return [SyncLogEntry(**row) for row in await self._query(sql, params)]

    # Linked accounts

    async def get_account(self, account_id):
        rows = await self._query(
            f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM linked_accounts WHERE id = %s;",
            (account_id,),
        )
        return LinkedAccount.from_record(rows[0]) if rows else None

    async def list_accounts(self, active_only=True):
        sql = f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM linked_accounts"
        if active_only:
            sql += " WHERE is_active = TRUE"
        rows = await self._query(sql + " ORDER BY last_synced_at ASC NULLS FIRST;")
        return [LinkedAccount.from_record(row) for row in rows]

    async def save_account(self, account):
        record = account.to_record()
        placeholders = ', '.join(['%s'] * len(ACCOUNT_COLUMNS))
        updates = ', '.join(f'{c} = EXCLUDED.{c}' for c in ACCOUNT_COLUMNS if c != 'id')
        rows = await self._query(
            f"INSERT INTO linked_accounts ({', '.join(ACCOUNT_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT (id) DO UPDATE SET {updates} RETURNING {', '.join(ACCOUNT_COLUMNS)};",
            [_db_value(record[c]) for c in ACCOUNT_COLUMNS],
        )
        return LinkedAccount.from_record(rows[0])

    async def update_account(self, account_id, fields):
        clause, values = _set_clause(fields, ACCOUNT_COLUMNS)
        rows = await self._query(
            f"UPDATE linked_accounts SET {clause} WHERE id = %s "
            f"RETURNING {', '.join(ACCOUNT_COLUMNS)};",
            values + [account_id],
        )
        if not rows:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return LinkedAccount.from_record(rows[0])

    # Config

    async def get_sync_config(self):
        rows = await self._query(
            f"SELECT {', '.join(CONFIG_COLUMNS)} FROM sync_config WHERE id = 1;"
        )
        return SyncConfig(**rows[0]) if rows else SyncConfig()

    async def update_sync_config(self, fields):
        # Validate before writing
        current = await self.get_sync_config()
        SyncConfig(**{**current.model_dump(), **fields})
        clause, values = _set_clause(fields, CONFIG_COLUMNS)
        rows = await self._query(
            f"UPDATE sync_config SET {clause} WHERE id = 1 RETURNING {', '.join(CONFIG_COLUMNS)};",
            values,
        )
        return SyncConfig(**rows[0])
