"""
Custom exception classes for the car rental bot.
Provides standardized error handling across the application.
"""

import logging
from enum import Enum

logger = logging.getLogger("exceptions")


class RentalBotException(Exception):
    """Base exception for all rental bot errors."""

    def __init__(self, message: str, error_code: str = None, context: dict = None):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        super().__init__(self.message)

    def to_user_message(self) -> str:
        """Return a user-friendly error message."""
        return f"❌ {self.message}"


# ============================================================================
# DATABASE ERRORS
# ============================================================================

class ErrorKind(Enum):
    """Whether a store failure is worth retrying unchanged."""
    TRANSIENT = "transient"
    FATAL = "fatal"


class DatabaseError(RentalBotException):
    """Base exception for database-related errors."""
    pass


class StoreError(DatabaseError):
    """Raised by the store for any failed statement, tagged with its kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL, context: dict = None):
        self.kind = kind
        super().__init__(message, context=context)

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def to_user_message(self) -> str:
        return "Database error occurred. Please try again later."


# ============================================================================
# VALIDATION ERRORS
# ============================================================================

class ValidationError(RentalBotException):
    """Base exception for input validation errors."""
    pass


class InvalidFormatError(ValidationError):
    """Raised when input format is invalid."""

    def to_user_message(self) -> str:
        return "Invalid format. Please check your input."


# ============================================================================
# BUSINESS LOGIC ERRORS
# ============================================================================

class BusinessLogicError(RentalBotException):
    """Base exception for business logic errors."""
    pass


class RentalConflictError(BusinessLogicError):
    """Raised inside a transaction when a rental change cannot be applied."""

    def to_user_message(self) -> str:
        return "This car is no longer available."


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def handle_exception(exc: Exception, identity: int = None, context: str = None) -> str:
    """
    Convert any exception to user-friendly message.

    Args:
        exc: The exception to handle
        identity: Chat id of the user (for logging)
        context: Additional context (for logging)

    Returns:
        User-friendly error message
    """
    where = f" ({context})" if context else ""
    if isinstance(exc, RentalBotException):
        logger.warning(f"⚠️ {exc.error_code}{where}: {exc.message}", extra={"identity": identity})
        return exc.to_user_message()
    else:
        logger.error(f"❌ Unexpected {exc.__class__.__name__}{where}: {exc}",
                     extra={"identity": identity}, exc_info=exc)
        return "Unknown error. Please try again later."
