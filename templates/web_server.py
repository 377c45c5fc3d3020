"""
Web Server Template for Transaction Sync

Provides HTTP endpoints for transaction synchronization:
- POST /api/webhooks/momo - Mobile-money transaction status callback
- POST /api/background-sync - Trigger a background sync run
- POST /api/accounts/<account_id>/sync - Manual sync for one account
- POST /api/accounts/validate - Validate a prospective account link
- GET /api/sync-health - Sync health diagnostics
- GET|PUT /api/sync-config - Read or update background sync configuration
- GET /health - Liveness probe
"""

# Vault environment must be set before importing common modules
import os
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

if 'VAULT_ADDR' not in os.environ:
    os.environ['VAULT_ADDR'] = 'http://127.0.0.1:8200'
if 'VAULT_TOKEN' not in os.environ:
    # Read token from ~/.vault-token file
    try:
        with open(os.path.expanduser('~/.vault-token'), 'r') as f:
            os.environ['VAULT_TOKEN'] = f.read().strip()
    except OSError:
        os.environ['VAULT_TOKEN'] = 'dev-token'

from quart import Quart, request, jsonify
import logging
import traceback

from common.errors import SyncServiceError, ValidationError, http_status_for, to_error_payload
from tools.accounts.transaction_sync.config import config
from tools.accounts.transaction_sync.molecules.webhook_ingestion import process_webhook
from tools.accounts.transaction_sync.templates.sync_workflow import (
    SyncServices,
    build_services,
    get_sync_config,
    get_sync_health,
    run_background_sync,
    sync_account_now,
    update_sync_config,
    validate_account_request,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Quart app
app = Quart(__name__)


def get_services() -> SyncServices:
    """Services bundle for this app, built from configuration on first use."""
    services = app.config.get('SERVICES')
    if services is None:
        services = build_services(config)
        app.config['SERVICES'] = services
    return services


def _error_response(error: Exception):
    """Convert any exception into the ``{status, error: {code, message}}`` shape."""
    if not isinstance(error, SyncServiceError):
        logger.error(f"Unhandled error: {error}")
        logger.error(traceback.format_exc())
    return jsonify({
        'status': 'error',
        'error': to_error_payload(error)
    }), http_status_for(error)


def _result_to_json(result) -> dict:
    return {
        'accountId': result.account_id,
        'platform': result.platform,
        'status': result.status,
        'totalTransactions': result.total_transactions,
        'newTransactions': result.new_transactions,
        'updatedTransactions': result.updated_transactions,
        'errors': result.errors,
        'error': result.error,
        'duration': round(result.duration, 3),
    }


@app.after_serving
async def drain_events():
    """Let in-flight alert handlers finish on shutdown."""
    services = app.config.get('SERVICES')
    if services is not None:
        await services.event_bus.drain()


@app.route('/health', methods=['GET'])
async def health():
    return jsonify({'status': 'ok'}), 200


@app.route('/api/webhooks/momo', methods=['POST'])
async def momo_webhook():
    """
    Apply a mobile-money transaction status callback.

    The raw body is verified against the X-Momo-Signature header before it
    is parsed.
    """
    try:
        services = get_services()
        raw_body = await request.get_data()
        signature = request.headers.get('X-Momo-Signature')

        result = await process_webhook(raw_body, signature, services.repository,
                                       secret=services.webhook_secret)
        return jsonify(result.body), result.status_code

    except Exception as e:
        logger.error(f"Webhook processing error: {e}")
        return _error_response(e)


@app.route('/api/background-sync', methods=['POST'])
async def background_sync():
    """
    Trigger a background sync run.

    Expected payload (all optional):
    {
        "forceSync": false,
        "maxConcurrentAccounts": 5
    }

    Returns:
        {success, accountsProcessed, totalTransactionsSynced, results[], duration, ...}
    """
    try:
        data = await request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError('body', 'Request body must be a JSON object')

        force = data.get('forceSync', False)
        if not isinstance(force, bool):
            raise ValidationError('forceSync', '"forceSync" must be a boolean', force)

        max_concurrent = data.get('maxConcurrentAccounts')
        if max_concurrent is not None and (
                isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int)
                or not 1 <= max_concurrent <= 50):
            raise ValidationError('maxConcurrentAccounts',
                                  '"maxConcurrentAccounts" must be an integer between 1 and 50',
                                  max_concurrent)

        logger.info(f"Background sync requested (force={force}, max_concurrent={max_concurrent})")
        summary = await run_background_sync(get_services(), force=force, max_concurrent=max_concurrent)

        return jsonify({
            'success': True,
            'skipped': summary.skipped,
            'accountsProcessed': summary.total_accounts,
            'successfulSyncs': summary.successful_syncs,
            'failedSyncs': summary.failed_syncs,
            'authErrorSyncs': summary.auth_error_syncs,
            'totalTransactionsSynced': summary.total_transactions_synced,
            'averageSyncDuration': round(summary.average_sync_duration, 3),
            'notificationsSent': summary.notifications_sent,
            'results': [_result_to_json(result) for result in summary.results],
            'duration': round(summary.duration, 3),
        }), 200

    except Exception as e:
        logger.error(f"Error in background sync: {e}")
        return _error_response(e)


@app.route('/api/accounts/<account_id>/sync', methods=['POST'])
async def sync_account(account_id: str):
    """Manual sync for one account (rate limited per account)."""
    try:
        result = await sync_account_now(get_services(), account_id)
        body = {'status': 'success' if result.ok else 'error', **_result_to_json(result)}
        # A failed fetch is reported in the body; the request itself succeeded
        return jsonify(body), 200

    except Exception as e:
        logger.error(f"Error syncing account {account_id}: {e}")
        return _error_response(e)


@app.route('/api/accounts/validate', methods=['POST'])
async def validate_account():
    """
    Validate a prospective account link.

    Expected payload:
        {"platform": "bank", "accountId": "..."} or
        {"platform": "mobile_money", "phoneNumber": "0241234567"}
    """
    try:
        data = await request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('body', 'Request body must be a JSON object')

        result = await validate_account_request(get_services(), data)
        return jsonify(result), 200

    except Exception as e:
        logger.error(f"Error validating account: {e}")
        return _error_response(e)


@app.route('/api/sync-health', methods=['GET'])
async def sync_health():
    try:
        return jsonify(await get_sync_health(get_services())), 200
    except Exception as e:
        logger.error(f"Error checking sync health: {e}")
        return _error_response(e)


@app.route('/api/sync-config', methods=['GET', 'PUT'])
async def sync_config():
    try:
        services = get_services()
        if request.method == 'GET':
            return jsonify(await get_sync_config(services)), 200

        data = await request.get_json(silent=True)
        return jsonify(await update_sync_config(services, data)), 200

    except Exception as e:
        logger.error(f"Error handling sync config: {e}")
        return _error_response(e)


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({
        'status': 'error',
        'error': {'code': 'NOT_FOUND', 'message': 'Endpoint not found'}
    }), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error(f"Internal server error: {error}")
    return jsonify({
        'status': 'error',
        'error': {'code': 'INTERNAL_ERROR', 'message': 'Internal server error'}
    }), 500


if __name__ == '__main__':
    logger.info("Starting transaction sync web server")
    app.run(debug=True, host='0.0.0.0', port=5001)
