"""
Input sanitization primitives.

Covers:
  - escape_html entity mapping
  - sanitize_text trimming / truncation
  - sanitize_number prefix parsing, range and NaN handling
  - sanitize_date / sanitize_time / is_valid_email
  - sanitize_object recursion
"""

from datetime import date, datetime

from sitebooks.utils.sanitize import (
    escape_html,
    is_valid_email,
    remove_special_chars,
    sanitize_date,
    sanitize_number,
    sanitize_object,
    sanitize_text,
    sanitize_time,
)


class TestText:
    def test_escape_html_replaces_all_six_characters(self):
        assert escape_html("<a href='/x'>&\"</a>") == (
            "&lt;a href=&#x27;&#x2F;x&#x27;&gt;&amp;&quot;&lt;&#x2F;a&gt;"
        )

    def test_escape_html_non_string(self):
        assert escape_html(None) == ""

    def test_sanitize_text_trims_and_truncates(self):
        assert sanitize_text("  Acme Steel  ") == "Acme Steel"
        assert sanitize_text("abcdef", 3) == "abc"

    def test_sanitize_text_does_not_escape(self):
        assert sanitize_text(" <b> ") == "<b>"

    def test_sanitize_text_non_string(self):
        assert sanitize_text(42) == ""
        assert sanitize_text(None) == ""

    def test_remove_special_chars(self):
        assert remove_special_chars("a\x00b\x1fc\x7f") == "abc"

    def test_remove_special_chars_strips_c1_range(self):
        assert remove_special_chars("a\x80b\x9fc\xa0") == "abc\xa0"


class TestNumber:
    def test_numeric_prefix(self):
        assert sanitize_number("12.5kg") == 12.5

    def test_integral_value_returns_int(self):
        value = sanitize_number("40")
        assert value == 40 and isinstance(value, int)

    def test_out_of_range(self):
        assert sanitize_number(-1) is None
        assert sanitize_number(150, 0, 100) is None

    def test_garbage_and_nan(self):
        assert sanitize_number("abc") is None
        assert sanitize_number(float("nan")) is None
        assert sanitize_number(None) is None
        assert sanitize_number(True) is None

    def test_oversized_and_infinite_values(self):
        assert sanitize_number(10**400) is None
        assert sanitize_number(float("inf")) is None
        assert sanitize_number("1e999") is None

    def test_negative_allowed_with_lower_bound(self):
        assert sanitize_number("-5", -10) == -5


class TestDatesAndFormats:
    def test_sanitize_date(self):
        assert sanitize_date("2026-03-10T14:30:00Z") == "2026-03-10"
        assert sanitize_date("2026-03-10") == "2026-03-10"
        assert sanitize_date(date(2026, 3, 10)) == "2026-03-10"
        assert sanitize_date(datetime(2026, 3, 10, 8)) == "2026-03-10"
        assert sanitize_date("not a date") is None
        assert sanitize_date("") is None

    def test_sanitize_time(self):
        assert sanitize_time("9:05") == "9:05"
        assert sanitize_time("23:59") == "23:59"
        assert sanitize_time("24:00") is None
        assert sanitize_time("12:60") is None

    def test_is_valid_email(self):
        assert is_valid_email("ap@builder.com")
        assert not is_valid_email("ap@builder")
        assert not is_valid_email("a p@builder.com")
        assert not is_valid_email(None)


class TestObject:
    def test_sanitize_object_recurses_into_dicts(self):
        record = {
            "supplier": "  Acme  ",
            "totals": {"net": " 100 ", "qty": 3},
            "lines": [" keep "],
            "flag": True,
        }
        assert sanitize_object(record) == {
            "supplier": "Acme",
            "totals": {"net": "100", "qty": 3},
            "lines": [" keep "],
            "flag": True,
        }

    def test_sanitize_object_passes_max_length_down(self):
        record = {"note": "abcdef", "nested": {"memo": " abcdef "}}
        assert sanitize_object(record, 3) == {"note": "abc", "nested": {"memo": "abc"}}
