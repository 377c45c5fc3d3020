"""Global pytest configuration for the transaction sync service

Sets Vault and backend environment defaults before any project module is
imported, so module-level configuration resolves without a live Vault.
"""

import os

# Set Vault environment variables for all tests
os.environ.setdefault('VAULT_ADDR', 'http://127.0.0.1:8200')
os.environ.setdefault('VAULT_TOKEN', 'dev-token')

# Tests never touch PostgreSQL unless they mock it explicitly
os.environ['SYNC_BACKEND'] = 'memory'
