"""Transaction Sync - Atoms Package

Layer 1: Pure, single-purpose functions for categorization, merchant
extraction, throttling, webhook signatures and event fan-out.
"""

from .categorizer import categorize, normalize_text, CategoryResult
from .merchant_extractor import extract_merchant
from .rate_limiter import RateLimiter
from .signature import compute_signature, verify_signature
from .event_bus import EventBus, TRANSACTION_CREATED

__all__ = [
    'categorize',
    'normalize_text',
    'CategoryResult',
    'extract_merchant',
    'RateLimiter',
    'compute_signature',
    'verify_signature',
    'EventBus',
    'TRANSACTION_CREATED',
]
