"""Templates layer - Full workflow orchestration"""
from .sync_workflow import (
    SyncServices,
    build_services,
    run_background_sync,
    sync_account_now,
    validate_account_request,
    get_sync_health,
    get_sync_config,
    update_sync_config,
)

__all__ = [
    'SyncServices',
    'build_services',
    'run_background_sync',
    'sync_account_now',
    'validate_account_request',
    'get_sync_health',
    'get_sync_config',
    'update_sync_config',
]
