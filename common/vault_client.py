"""Vault client wrapper for secrets management"""
import logging
import os
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class VaultClient:
    """Read-only HashiCorp Vault KV client"""

    def __init__(self, addr: Optional[str] = None, token: Optional[str] = None):
        self.addr = addr or os.getenv('VAULT_ADDR', 'http://127.0.0.1:8200')
        self.token = token or os.getenv('VAULT_TOKEN', 'dev-token')

    def is_connected(self) -> bool:
        try:
            return requests.get(f"{self.addr}/v1/sys/health", timeout=2).status_code == 200
        except requests.RequestException:
            return False

    def _get(self, path: str) -> Optional[Dict[str, Any]]:
        resp = requests.get(f"{self.addr}/v1/{path}", headers={"X-Vault-Token": self.token}, timeout=5)
        if resp.status_code != 200:
            return None
        return resp.json().get('data') or {}

    def kv_get(self, path: str) -> Optional[Dict[str, Any]]:
        """Read a secret, trying the KV v2 layout before KV v1"""
        mount, _, rest = path.partition('/')
        if rest and not rest.startswith('data/'):
            v2 = self._get(f"{mount}/data/{rest}")
            if v2 and 'data' in v2:
                return v2['data']
        return self._get(path)

    def read_secret(self, path: str) -> Optional[Dict[str, Any]]:
        """
        Read a secret, returning None when Vault is unreachable or empty.

        Used by configuration loaders that fall back to environment variables.
        """
        try:
            if not self.is_connected():
                return None
            return self.kv_get(path)
        except requests.RequestException as e:
            logger.warning(f"Vault read failed for {path}: {e}")
            return None
