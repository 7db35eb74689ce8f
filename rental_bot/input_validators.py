"""
Input Validators v1.0
Валидация пользовательского ввода для регистрации и дат аренды.
"""

import re
import logging
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import InvalidFormatError
from .schemas import DATE_FORMAT

logger = logging.getLogger(__name__)

EMAIL_REGEX = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
PHONE_REGEX = r"^\+[1-9]\d{7,14}$"
DRIVER_LICENSE_REGEX = r"^[A-Z0-9]{10}$"

MAX_FIELD_LENGTH = 255

# ids are sqlite INTEGER primary keys
ID_REGEX = r"\d+"
MAX_ID = 2 ** 63 - 1


def is_valid_email(text: str) -> bool:
    return bool(text) and re.match(EMAIL_REGEX, text) is not None


def is_valid_phone(text: str) -> bool:
    return bool(text) and re.match(PHONE_REGEX, text) is not None


def is_valid_license(text: str) -> bool:
    return bool(text) and re.match(DRIVER_LICENSE_REGEX, text) is not None


def parse_date(text: str) -> date:
    """Parse DD.MM.YYYY, raise InvalidFormatError otherwise"""
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT).date()
    except (ValueError, AttributeError) as e:
        raise InvalidFormatError(f"expected DD.MM.YYYY, got {text!r}") from e


def parse_id(text: str) -> Optional[int]:
    """Typed numeric id (a leading '#' is allowed), None if not a number"""
    text = (text or "").strip().lstrip("#")
    if re.fullmatch(ID_REGEX, text, re.ASCII) is None:
        return None
    value = int(text)
    return value if value <= MAX_ID else None


class SignupForm(BaseModel):
    """Fully collected signup, validated once more before the user row is written"""
    login: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    phone: str
    license_id: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not is_valid_email(v):
            raise ValueError("invalid email")
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not is_valid_phone(v):
            raise ValueError("invalid phone")
        return v

    @field_validator('license_id')
    @classmethod
    def validate_license(cls, v: str) -> str:
        if not is_valid_license(v):
            raise ValueError("invalid driver license")
        return v
