"""
Merchant Extractor Atom - Derive a readable merchant name from free text

Part of Layer 1 Atoms - Single-purpose, pure functions.
"""

import re
from typing import Optional

UNKNOWN_MERCHANT = 'Unknown Merchant'

KNOWN_MERCHANTS = [
    'uber', 'bolt', 'lyft', 'taxi',
    'kfc', 'mcdonald', 'pizza', 'burger',
    'mtn', 'vodafone', 'airteltigo', 'airtel',
    'ecg', 'gwcl', 'ghana water',
    'shoprite', 'melcom', 'palace',
    'netflix', 'spotify', 'youtube',
]

STOP_WORDS = {'Payment', 'Transaction', 'Transfer', 'From', 'To', 'For', 'At', 'The', 'And',
              'Ride', 'Bill'}

LOCATION_WORDS = {'Mall', 'Street', 'Road', 'Avenue', 'Center', 'Centre', 'Plaza', 'Market'}


def extract_merchant(description: str, note: Optional[str] = None) -> str:
    """
    Extract a merchant name from a description and optional payee note.

    Resolution order:
    1. Empty text, or the generic ("Payment", "Transaction") pair -> Unknown Merchant
    2. Known brand appearing earliest in the text, in its original case
    3. First capitalized description word longer than two characters that is
       neither a generic transaction word nor a location word
    4. Unknown Merchant

    Example:
        >>> extract_merchant("Uber ride home")
        'Uber'
        >>> extract_merchant("Payment", "Transaction")
        'Unknown Merchant'
    """
    desc = (description or '').strip()
    note = (note or '').strip()
    full_text = f"{desc} {note}".strip()

    if not full_text or (desc == 'Payment' and note == 'Transaction'):
        return UNKNOWN_MERCHANT

    matches = [m for m in (re.search(re.escape(brand), full_text, re.IGNORECASE)
                           for brand in KNOWN_MERCHANTS) if m]
    if matches:
        # Earliest in the text wins; the longer brand wins at the same position
        first = min(matches, key=lambda m: (m.start(), -len(m.group(0))))
        return first.group(0)

    for word in desc.split():
        if (len(word) > 2 and word[0].isupper()
                and word not in STOP_WORDS and word not in LOCATION_WORDS):
            return word

    return UNKNOWN_MERCHANT
