"""
🧪 Тесты для input_validators
"""

from datetime import date

import pytest
from pydantic import ValidationError

from rental_bot.exceptions import InvalidFormatError
from rental_bot.input_validators import (
    SignupForm, is_valid_email, is_valid_license, is_valid_phone, parse_date, parse_id,
)


class TestFieldValidators:
    """Email / phone / license"""

    @pytest.mark.parametrize("value", ["a@b.com", "first.last+tag@mail.example.org"])
    def test_valid_emails(self, value):
        assert is_valid_email(value)

    @pytest.mark.parametrize("value", ["", "plain", "a@b", "@b.com", "a b@c.com"])
    def test_invalid_emails(self, value):
        assert not is_valid_email(value)

    @pytest.mark.parametrize("value", ["+79990000000", "+12025550123"])
    def test_valid_phones(self, value):
        assert is_valid_phone(value)

    @pytest.mark.parametrize("value", ["", "79990000000", "+0123456789", "+7999", "+7999abc0000"])
    def test_invalid_phones(self, value):
        assert not is_valid_phone(value)

    def test_license(self):
        assert is_valid_license("AB12345678")
        assert not is_valid_license("ab12345678")
        assert not is_valid_license("AB1234567")
        assert not is_valid_license("AB123456789")
        assert not is_valid_license("AB-2345678")


class TestParsing:
    """Dates and ids"""

    def test_parse_date(self):
        assert parse_date("01.01.2030") == date(2030, 1, 1)
        assert parse_date(" 05.01.2030 ") == date(2030, 1, 5)

    @pytest.mark.parametrize("value", ["2030-01-01", "32.01.2030", "01/01/2030", "", "tomorrow"])
    def test_parse_date_rejects(self, value):
        with pytest.raises(InvalidFormatError):
            parse_date(value)

    def test_parse_id(self):
        assert parse_id("12") == 12
        assert parse_id(" #7 ") == 7
        assert parse_id("seven") is None
        assert parse_id("-1") is None
        assert parse_id(None) is None

    @pytest.mark.parametrize("value", ["²", "١٢", "３", "12\n3"])
    def test_parse_id_ascii_digits_only(self, value):
        assert parse_id(value) is None

    def test_parse_id_sqlite_integer_range(self):
        assert parse_id(str(2 ** 63 - 1)) == 2 ** 63 - 1
        assert parse_id(str(2 ** 63)) is None
        assert parse_id("99999999999999999999999") is None


class TestSignupForm:
    """Final signup validation"""

    def test_valid(self):
        form = SignupForm(login="alice", password="p1", email="a@b.com",
                          phone="+79990000000", license_id="AB12345678")
        assert form.login == "alice"

    def test_missing_field(self):
        with pytest.raises(ValidationError):
            SignupForm(login="alice", password="p1", email="a@b.com", license_id="AB12345678")

    def test_bad_license(self):
        with pytest.raises(ValidationError):
            SignupForm(login="alice", password="p1", email="a@b.com",
                       phone="+79990000000", license_id="short")
