"""
Categorizer Atom - Heuristic transaction categorization

Maps a transaction's free-text description (plus optional merchant hint) and
amount to a best-guess category with a 0-100 confidence score. Matching is
substring based over normalized text, so a keyword inside a larger word
still counts ("bar" matches "barber").

Part of Layer 1 Atoms - Single-purpose, pure functions.

Scoring per category:
    0.6 x keyword hit + 0.2 x pattern hit + 0.2 x amount plausibility

Amount plausibility:
    1.0  within 20% of a typical value
    0.7  inside [min, max]
    0.2  outside [min, max]
    0.5  category has no amount profile

Confidence below 40 falls back to amount-based rules; every path returns a
category.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Pattern, Union

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

MIN_CONFIDENCE = 40
MAX_CONFIDENCE = 95


@dataclass(frozen=True)
class CategoryRule:
    id: str
    name: str
    type: str
    keywords: List[str]
    patterns: List[Pattern]


def _patterns(*expressions: str) -> List[Pattern]:
    return [re.compile(expr, re.IGNORECASE) for expr in expressions]


# Table order is the tie-break order: income categories first
CATEGORY_RULES: List[CategoryRule] = [
    CategoryRule(
        'salary', 'Salary', 'income',
        ['salary', 'wages', 'pay', 'payroll', 'employment', 'monthly pay'],
        _patterns(r'salary', r'wages', r'payroll', r'monthly.*pay'),
    ),
    CategoryRule(
        'business_income', 'Business Income', 'income',
        ['business', 'sale', 'revenue', 'client', 'customer', 'service', 'invoice'],
        _patterns(r'business', r'sale', r'client', r'invoice'),
    ),
    CategoryRule(
        'transfer_received', 'Money Received', 'income',
        ['transfer', 'received', 'sent to you', 'deposit', 'refund', 'cashback'],
        _patterns(r'transfer', r'received', r'deposit', r'refund'),
    ),
    CategoryRule(
        'food_dining', 'Food & Dining', 'expense',
        ['restaurant', 'food', 'dining', 'breakfast', 'lunch', 'dinner', 'cafe', 'bar',
         'kfc', 'mcdonald', 'pizza'],
        _patterns(r'restaurant', r'cafe', r'bar', r'food', r'kfc', r'mcdonald', r'pizza'),
    ),
    CategoryRule(
        'transportation', 'Transportation', 'expense',
        ['uber', 'bolt', 'taxi', 'trotro', 'fuel', 'petrol', 'transport', 'bus', 'kantanka'],
        _patterns(r'uber', r'bolt', r'taxi', r'trotro', r'fuel', r'petrol', r'transport',
                  r'kantanka'),
    ),
    CategoryRule(
        'utilities', 'Utilities', 'expense',
        ['electricity', 'water', 'ecg', 'gwcl', 'internet', 'phone', 'airtime', 'data',
         'airteltigo'],
        _patterns(r'ecg', r'gwcl', r'electricity', r'water', r'internet', r'airtime', r'data',
                  r'airteltigo'),
    ),
    CategoryRule(
        'shopping', 'Shopping', 'expense',
        ['shop', 'store', 'market', 'purchase', 'buy', 'clothing', 'fashion', 'melcom',
         'palace shopping'],
        _patterns(r'shop', r'store', r'market', r'fashion', r'clothing', r'melcom',
                  r'palace.*shopping'),
    ),
    CategoryRule(
        'transfer_sent', 'Money Sent', 'expense',
        ['transfer to friend', 'sent money', 'send money', 'remittance', 'money transfer'],
        _patterns(r'transfer.*friend', r'sent.*money', r'send money', r'remittance',
                  r'money transfer'),
    ),
    CategoryRule(
        'banking_fees', 'Banking & Fees', 'expense',
        ['fee', 'charge', 'bank', 'service charge', 'commission', 'penalty'],
        _patterns(r'fee', r'charge', r'commission', r'penalty', r'service charge'),
    ),
]

CATEGORIES_BY_ID: Dict[str, CategoryRule] = {rule.id: rule for rule in CATEGORY_RULES}

AMOUNT_PROFILES: Dict[str, Dict[str, Any]] = {
    'utilities': {'min': 10, 'max': 500, 'typical': [20, 50, 100, 150]},
    'transportation': {'min': 2, 'max': 100, 'typical': [5, 10, 15, 20, 30]},
    'food_dining': {'min': 5, 'max': 200, 'typical': [10, 15, 25, 35, 50]},
    'salary': {'min': 500, 'max': 10000, 'typical': [1000, 2000, 3000, 5000]},
    'shopping': {'min': 1, 'max': 2000, 'typical': [10, 25, 50, 100, 200]},
    'banking_fees': {'min': 0.5, 'max': 20, 'typical': [1, 2, 5]},
}

INCOME_INDICATORS = ['deposit', 'salary', 'pay', 'income', 'received']


@dataclass
class CategoryResult:
    """Transient classification result written onto a Transaction"""
    category_id: str
    confidence: float
    suggested_type: str
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category_id': self.category_id,
            'confidence': self.confidence,
            'suggested_type': self.suggested_type,
            'reasons': list(self.reasons),
        }


def normalize_text(text: str) -> str:
    """
    Lowercase, turn punctuation into whitespace, collapse whitespace.

    Example:
        >>> normalize_text("Lunch @ KFC,  Accra-Mall!")
        'lunch kfc accra mall'
    """
    text = re.sub(r'[^\w\s]', ' ', (text or '').lower())
    return re.sub(r'\s+', ' ', text).strip()


def amount_score(amount: float, category_id: str) -> float:
    profile = AMOUNT_PROFILES.get(category_id)
    if profile is None:
        return 0.5

    if profile['min'] <= amount <= profile['max']:
        if any(abs(amount - typical) <= typical * 0.2 for typical in profile['typical']):
            return 1.0
        return 0.7

    return 0.2


def _score_category(text: str, rule: CategoryRule, amount: float, reasons: List[str]) -> float:
    score = 0.0

    keyword_hits = [keyword for keyword in rule.keywords if keyword in text]
    if keyword_hits:
        score += 0.6
        reasons.append(f"Matched keywords: {', '.join(keyword_hits)}")

    if any(pattern.search(text) for pattern in rule.patterns):
        score += 0.2
        reasons.append("Matched merchant patterns")

    score += 0.2 * amount_score(amount, rule.id)
    return score


def _fallback(text: str, amount: float) -> CategoryResult:
    if not text:
        return CategoryResult('shopping', 20, 'expense',
                              ['Empty description - manual categorization recommended'])

    if amount == 0:
        return CategoryResult('banking_fees', 30, 'expense',
                              ['Zero amount transaction - may be fee or adjustment'])

    if amount < 5:
        return CategoryResult('banking_fees', 45, 'expense',
                              ['Small amount suggests fee or service charge'])

    if amount > 1000:
        if any(word in text for word in INCOME_INDICATORS):
            return CategoryResult('salary', 65, 'income', ['Large amount with income indicators'])
        return CategoryResult('shopping', 55, 'expense', ['Large amount suggests major purchase'])

    return CategoryResult('shopping', 40, 'expense',
                          ['Default categorization for unrecognized transaction'])


def categorize(
    description: str,
    amount: Number,
    merchant_hint: Optional[str] = None
) -> CategoryResult:
    """
    Classify a transaction into one of the static categories.

    Args:
        description: Free-text description (payer message, narration)
        amount: Absolute transaction amount
        merchant_hint: Optional merchant name appended to the text

    Returns:
        CategoryResult with category_id, confidence (0-95), suggested_type
        ('income'|'expense') and the reasons that drove the decision

    Example:
        >>> result = categorize("Lunch at KFC Accra Mall", 25.50)
        >>> result.category_id, result.confidence
        ('food_dining', 95)
    """
    text = normalize_text(f"{description or ''} {merchant_hint or ''}")
    value = abs(float(amount or 0))
    reasons: List[str] = []

    best_rule: Optional[CategoryRule] = None
    best_score = -1.0
    for rule in CATEGORY_RULES:
        score = _score_category(text, rule, value, reasons)
        if score > best_score:
            best_rule, best_score = rule, score

    confidence = min(round(best_score * 100, 2), MAX_CONFIDENCE)

    if confidence < MIN_CONFIDENCE:
        result = _fallback(text, value)
        result.reasons = reasons + result.reasons
        logger.debug(f"Fallback categorization for {description!r}: {result.category_id}")
        return result

    return CategoryResult(best_rule.id, confidence, best_rule.type, reasons)
