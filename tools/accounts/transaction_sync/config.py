"""
Transaction Sync - Configuration Management

Secrets come from Vault first and fall back to environment variables.
Tunables come from the environment with defaults.
"""
import logging
import os
from typing import Any, Dict, Optional

from common.errors import ConfigurationError
from common.vault_client import VaultClient
from common.mono_client import DEFAULT_MONO_BASE_URL
from common.momo_client import DEFAULT_MOMO_BASE_URL

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


class Config:
    """Application configuration"""

    def __init__(self, vault: Optional[VaultClient] = None):
        self.vault = vault or VaultClient()

    def _secret(self, path: str) -> Dict[str, Any]:
        return self.vault.read_secret(path) or {}

    def get_webhook_secret(self) -> Optional[str]:
        """Shared secret for webhook signatures (None disables verification)"""
        secret = self._secret("secret/momo/webhook").get('secret')
        return secret or os.getenv('MOMO_WEBHOOK_SECRET') or None

    def get_momo_credentials(self) -> Dict[str, Optional[str]]:
        """Mobile-money API base URL, key and secret"""
        creds = self._secret("secret/momo/api")
        return {
            'base_url': creds.get('base_url') or os.getenv('MOMO_API_BASE_URL', DEFAULT_MOMO_BASE_URL),
            'api_key': creds.get('api_key') or os.getenv('MOMO_API_KEY'),
            'api_secret': creds.get('api_secret') or os.getenv('MOMO_API_SECRET'),
        }

    def get_mono_credentials(self) -> Dict[str, Optional[str]]:
        """Bank-aggregation API base URL and secret key"""
        creds = self._secret("secret/mono/api")
        return {
            'base_url': creds.get('base_url') or os.getenv('MONO_API_BASE_URL', DEFAULT_MONO_BASE_URL),
            'secret_key': creds.get('secret_key') or os.getenv('MONO_SECRET_KEY'),
        }

    def get_database_credentials(self) -> Dict[str, Any]:
        """
        PostgreSQL credentials from Vault (secret/postgres/sync_db) or POSTGRES_* variables.

        Raises:
            ConfigurationError: If neither source has a complete set
        """
        creds = self._secret("secret/postgres/sync_db")
        if all(creds.get(k) for k in ('host', 'port', 'database', 'username', 'password')):
            logger.info("Loaded database credentials from Vault")
            return {
                'host': creds['host'],
                'port': int(creds['port']),
                'database': creds['database'],
                'user': creds['username'],
                'password': creds['password'],
            }

        env = {
            'host': os.getenv('POSTGRES_HOST'),
            'port': os.getenv('POSTGRES_PORT', '5432'),
            'database': os.getenv('POSTGRES_DB'),
            'user': os.getenv('POSTGRES_USER'),
            'password': os.getenv('POSTGRES_PASSWORD'),
        }
        if all(env.values()):
            logger.info("Loaded database credentials from environment variables")
            return {**env, 'port': int(env['port'])}

        raise ConfigurationError(
            "No database credentials found. Configure Vault (secret/postgres/sync_db) or set "
            "POSTGRES_HOST, POSTGRES_DB, POSTGRES_USER and POSTGRES_PASSWORD"
        )

    @property
    def max_concurrent_accounts(self) -> int:
        return _env_int('SYNC_MAX_CONCURRENT_ACCOUNTS', 5)

    @property
    def stale_after_days(self) -> int:
        return _env_int('SYNC_STALE_AFTER_DAYS', 5)

    @property
    def large_transaction_threshold(self) -> int:
        return _env_int('SYNC_LARGE_TRANSACTION_THRESHOLD', 1000)

    @property
    def backend(self) -> str:
        """'memory' or 'postgres'"""
        return os.getenv('SYNC_BACKEND', 'memory').lower()


config = Config()
