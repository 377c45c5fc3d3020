"""
Signature Atom - Webhook authenticity check

HMAC-SHA256 over the raw request body, hex encoded. The provider sends the
digest in a header, optionally prefixed with ``sha256=``.

Part of Layer 1 Atoms - Single-purpose, pure functions.
"""

import hashlib
import hmac
import logging
from typing import Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = 'sha256='


def compute_signature(raw_body: Union[bytes, str], secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``raw_body`` keyed by ``secret``."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: Union[bytes, str], signature: str, secret: str) -> bool:
    """
    Check a webhook signature header against the body.

    Args:
        raw_body: Exact bytes received (not re-serialized JSON)
        signature: Header value, with or without the ``sha256=`` prefix
        secret: Shared webhook secret

    Returns:
        True when the digests match (case-insensitive hex, constant time)
    """
    if not signature or not secret:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode('ascii'), provided.lower().encode('utf-8'))
