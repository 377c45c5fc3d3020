#!/usr/bin/env python3
"""
Transaction Sync Service - Main Entry Point

Starts the web server exposing the webhook, background sync and account
sync endpoints.
"""

import asyncio
import logging
import os
from templates.web_server import app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 5000


def get_bind_address():
    """
    Host and port to listen on.

    Returns:
        Tuple of (host, port) from SYNC_HOST / SYNC_PORT, falling back to
        127.0.0.1:5000
    """
    host = os.environ.get('SYNC_HOST', DEFAULT_HOST)
    try:
        port = int(os.environ.get('SYNC_PORT', DEFAULT_PORT))
    except ValueError:
        logger.warning(f"Invalid SYNC_PORT, using {DEFAULT_PORT}")
        port = DEFAULT_PORT
    return host, port


async def run_server():
    """Run the Quart web server"""
    host, port = get_bind_address()

    logger.info('='*60)
    logger.info('Transaction Sync Service')
    logger.info('='*60)
    logger.info(f'Starting server on http://{host}:{port}')
    logger.info('Press CTRL+C to quit')
    logger.info('='*60)

    await app.run_task(host=host, port=port, debug=False)


def main():
    """Main entry point"""
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info('\nServer stopped by user')
    except Exception as e:
        logger.error(f'Error running server: {e}')
        raise


if __name__ == '__main__':
    main()
