"""Unit tests for phone normalization"""

from clinic_ledger.utils.phone import format_phone_number


def test_local_number_gets_country_code():
    assert format_phone_number("024 123 4567") == "233241234567"


def test_international_number_kept():
    assert format_phone_number("+233 24 123 4567") == "233241234567"


def test_bare_subscriber_number():
    assert format_phone_number("241234567") == "233241234567"


def test_other_country_code():
    assert format_phone_number("0712345678", country_code="254") == "254712345678"


def test_empty():
    assert format_phone_number(None) == ""
