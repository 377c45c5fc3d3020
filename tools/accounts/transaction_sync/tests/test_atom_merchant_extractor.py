"""Tests for Merchant Extractor Atom."""

import pytest

from tools.accounts.transaction_sync.atoms.merchant_extractor import (
    UNKNOWN_MERCHANT,
    extract_merchant,
)


class TestExtractMerchant:

    def test_known_brand(self):
        assert 'Uber' in extract_merchant("Uber ride home")

    def test_generic_pair_is_unknown(self):
        assert extract_merchant("Payment", "Transaction") == UNKNOWN_MERCHANT

    @pytest.mark.parametrize('description', ['', '   ', None])
    def test_empty_is_unknown(self, description):
        assert extract_merchant(description) == UNKNOWN_MERCHANT

    def test_brand_keeps_original_case(self):
        assert extract_merchant("Lunch at KFC Accra Mall") == 'KFC'

    def test_brand_found_in_note(self):
        assert extract_merchant("Payment", "NETFLIX subscription") == 'NETFLIX'

    def test_first_capitalized_word(self):
        assert extract_merchant("payment to Kwesi Stores") == 'Kwesi'

    def test_skips_stop_and_location_words(self):
        assert extract_merchant("Transfer From Accra Mall") == 'Accra'

    def test_only_generic_words_is_unknown(self):
        assert extract_merchant("Payment at Mall Street") == UNKNOWN_MERCHANT

    def test_short_words_ignored(self):
        assert extract_merchant("to Ab cd") == UNKNOWN_MERCHANT

    def test_earliest_brand_in_text_wins(self):
        assert extract_merchant("Paid KFC then Uber") == 'KFC'

    def test_longer_brand_wins_at_same_position(self):
        assert extract_merchant("AirtelTigo bundle") == 'AirtelTigo'
