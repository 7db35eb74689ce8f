"""
Tests for exceptions.handle_exception
"""

import logging

from rental_bot.exceptions import (
    ErrorKind, InvalidFormatError, RentalConflictError, StoreError, handle_exception,
)


class TestHandleException:
    """User-facing text and logging"""

    def test_domain_error_message(self, caplog):
        with caplog.at_level(logging.WARNING, logger="exceptions"):
            text = handle_exception(RentalConflictError("car 1 taken"), identity=7, context="text")
        assert text == "This car is no longer available."
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.identity == 7
        assert "RentalConflictError (text): car 1 taken" in record.getMessage()

    def test_store_error_hides_details(self):
        error = StoreError("disk I/O error", kind=ErrorKind.FATAL)
        assert not error.is_transient
        assert handle_exception(error) == "Database error occurred. Please try again later."

    def test_transient_flag(self):
        assert StoreError("database is locked", kind=ErrorKind.TRANSIENT).is_transient

    def test_format_error(self):
        assert handle_exception(InvalidFormatError("bad date")) == "Invalid format. Please check your input."

    def test_unexpected_error_logged_as_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="exceptions"):
            text = handle_exception(KeyError("boom"), identity=3)
        assert text == "Unknown error. Please try again later."
        assert caplog.records[-1].levelno == logging.ERROR
