"""PostgreSQL connection for the sync repository"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import Error
from psycopg2.extras import RealDictCursor


logger = logging.getLogger(__name__)

REQUIRED_KEYS = ('host', 'port', 'database', 'user', 'password')


class DatabaseConnectionError(Exception):
    """Raised when database connection cannot be established"""
    pass


class DatabaseExecutionError(Exception):
    """Raised when SQL execution fails"""
    pass


class DatabaseConnection:
    """
    Lazily opened psycopg2 connection with a dict-row query interface.

    Credentials are resolved by the caller (see ``Config.get_database_credentials``).
    Every statement is committed on success and rolled back on failure, so
    ``INSERT ... RETURNING`` and ``UPDATE ... RETURNING`` go through ``query``
    like plain selects.

    Example:
        >>> db = DatabaseConnection({'host': 'localhost', 'port': 5432, 'database': 'sync_db',
        ...                          'user': 'sync', 'password': '...'})
        >>> db.query("SELECT id FROM linked_accounts WHERE user_id = %s", ('user_1',))
        [{'id': 'acc_1'}]
    """

    def __init__(self, credentials: Dict[str, Any]):
        missing = [k for k in REQUIRED_KEYS if not credentials.get(k)]
        if missing:
            raise DatabaseConnectionError(f"Incomplete database credentials. Missing: {missing}")
        self._credentials = credentials
        self._connection = None

    def get_connection(self):
        if self._connection is None or self._connection.closed:
            try:
                self._connection = psycopg2.connect(
                    **{k: self._credentials[k] for k in REQUIRED_KEYS}
                )
                logger.debug(f"Connected to {self._credentials['host']}/{self._credentials['database']}")
            except Error as e:
                raise DatabaseConnectionError(f"Failed to connect to database: {e}")
        return self._connection

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        Run one parameterized statement and return its rows as dicts.

        Raises:
            DatabaseConnectionError: If no connection can be opened
            DatabaseExecutionError: If the statement fails
        """
        conn = self.get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(sql, params)
                rows = cursor.fetchall() if cursor.description else []
            conn.commit()
        except Error as e:
            conn.rollback()
            raise DatabaseExecutionError(f"Query execution failed: {e}")
        return [dict(row) for row in rows]

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    def close(self):
        if self.is_connected:
            self._connection.close()
            logger.debug("Database connection closed")
