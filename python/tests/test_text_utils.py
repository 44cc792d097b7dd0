"""
Tests for log sanitising, name/value normalisation and numeric coercion
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from text_utils import (
    contains_control_characters,
    normalize_name,
    normalize_text,
    normalize_value,
    parse_number,
    sanitize_for_logging,
)


class TestSanitizeForLogging:
    """Log injection prevention"""

    def test_newlines_removed(self):
        assert sanitize_for_logging("line1\nFAKE ENTRY\rline3") == "line1 FAKE ENTRY line3"

    def test_control_characters_removed(self):
        assert "\x00" not in sanitize_for_logging("null\x00byte")

    def test_truncated(self):
        assert len(sanitize_for_logging("x" * 1000)) == 500

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        assert sanitize_for_logging(value) == ""

    def test_non_string(self):
        assert sanitize_for_logging(42) == "42"


class TestNormalizeName:

    def test_accents_and_dotted_abbreviation(self):
        assert normalize_name("Société Générale, S.A.") == "societe generale sa"
        assert normalize_name("Société Générale, S.A.") == normalize_name("societe generale sa")

    def test_apostrophes_removed(self):
        assert normalize_name("O'Neil Trading") == "oneil trading"
        assert normalize_name("O’Neil Trading") == "oneil trading"

    def test_other_punctuation_separates_words(self):
        assert normalize_name("Caspian-Horizon/Trading") == "caspian horizon trading"

    def test_empty(self):
        assert normalize_name("") == ""


class TestNormalisation:

    def test_normalize_text(self):
        assert normalize_text("  PORT   Klang ") == "port klang"

    def test_normalize_value_numbers_by_magnitude(self):
        assert normalize_value("40,000.00") == normalize_value(40000)

    def test_control_character_detection(self):
        assert contains_control_characters("bad\u200bname") is True
        assert contains_control_characters("Good Name") is False

    @pytest.mark.parametrize("value,expected", [
        ("$ 40,000", 40000.0), ("1e3", 1000.0), (7, 7.0), ("abc", None), (True, None), ("inf", None),
    ])
    def test_parse_number(self, value, expected):
        assert parse_number(value) == expected
