"""
Test suite for Categorizer Atom.

Tests keyword/pattern/amount scoring, tie-breaking, the confidence cap and
the amount-based fallback that guarantees every transaction gets a category.
"""

import pytest
from decimal import Decimal

from tools.accounts.transaction_sync.atoms.categorizer import (
    CATEGORIES_BY_ID,
    MAX_CONFIDENCE,
    amount_score,
    categorize,
    normalize_text,
)


class TestNormalizeText:

    def test_strips_punctuation_and_case(self):
        assert normalize_text("Lunch @ KFC,  Accra-Mall!") == 'lunch kfc accra mall'

    def test_handles_none_and_empty(self):
        assert normalize_text(None) == ''
        assert normalize_text('   ') == ''


class TestAmountScore:

    def test_near_typical_value(self):
        assert amount_score(25.5, 'food_dining') == 1.0

    def test_inside_range(self):
        assert amount_score(80, 'food_dining') == 0.7

    def test_outside_range(self):
        assert amount_score(900, 'food_dining') == 0.2

    def test_category_without_profile(self):
        assert amount_score(80, 'transfer_sent') == 0.5


class TestCategorize:

    def test_kfc_lunch_is_food_dining(self):
        """Test the canonical restaurant example."""
        result = categorize("Lunch at KFC Accra Mall", 25.50)

        assert result.category_id == 'food_dining'
        assert result.confidence > 40
        assert result.confidence == MAX_CONFIDENCE
        assert result.suggested_type == 'expense'
        assert any('kfc' in reason for reason in result.reasons)

    def test_deterministic(self):
        first = categorize("Lunch at KFC Accra Mall", 25.50)
        second = categorize("Lunch at KFC Accra Mall", 25.50)
        assert first.to_dict() == second.to_dict()

    def test_transportation(self):
        result = categorize("Uber ride to Airport", 25)
        assert result.category_id == 'transportation'
        assert result.suggested_type == 'expense'

    def test_salary_is_income(self):
        result = categorize("Monthly salary payment", 3000)
        assert result.category_id == 'salary'
        assert result.suggested_type == 'income'

    def test_accepts_decimal_amount(self):
        result = categorize("Lunch at KFC Accra Mall", Decimal('25.50'))
        assert result.category_id == 'food_dining'

    def test_merchant_hint_contributes(self):
        result = categorize("Card payment", 20, merchant_hint="Bolt")
        assert result.category_id == 'transportation'

    def test_confidence_never_exceeds_cap(self):
        result = categorize("restaurant food dining kfc pizza cafe", 25)
        assert result.confidence <= MAX_CONFIDENCE

    def test_result_is_known_category(self):
        result = categorize("Melcom store purchase", 100)
        assert result.category_id in CATEGORIES_BY_ID


class TestFallback:
    """Tests for the amount-based fallback (confidence below 40)"""

    def test_empty_description(self):
        result = categorize("", 0)
        assert result.category_id == 'shopping'
        assert result.confidence == 20

    def test_zero_amount(self):
        result = categorize("xyz", 0)
        assert result.category_id == 'banking_fees'
        assert result.confidence == 30

    def test_small_amount_is_fee(self):
        result = categorize("qwerty", 3)
        assert result.category_id == 'banking_fees'
        assert result.confidence == 45

    def test_large_amount_with_income_indicator(self):
        result = categorize("qwerty income", 5000)
        assert result.category_id == 'salary'
        assert result.suggested_type == 'income'

    def test_large_amount_without_indicator(self):
        result = categorize("qwerty", 5000)
        assert result.category_id == 'shopping'
        assert result.confidence == 55

    def test_default_fallback(self):
        result = categorize("qwerty", 300)
        assert result.category_id == 'shopping'
        assert result.confidence == 40

    @pytest.mark.parametrize('description,amount', [
        ('', 0), ('zzz', 1), ('zzz', 10000), (None, None),
    ])
    def test_always_returns_category(self, description, amount):
        result = categorize(description, amount)
        assert result.category_id
        assert 0 <= result.confidence <= MAX_CONFIDENCE
        assert result.reasons
