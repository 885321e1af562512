from __future__ import annotations

from medaccess.core.settings import get_settings


def _digits(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit())


def national_number(
    phone: str,
    country_code: str | None = None,
    min_digits: int | None = None,
) -> str:
    """Digits of ``phone`` with the country code stripped when present."""
    settings = get_settings()
    country_code = country_code if country_code is not None else settings.phone_country_code
    min_digits = min_digits if min_digits is not None else settings.phone_min_digits
    digits = _digits(phone)
    if country_code and digits.startswith(country_code):
        rest = digits[len(country_code):]
        if len(rest) >= min_digits:
            return rest
    return digits


def is_valid_phone(
    phone: str,
    country_code: str | None = None,
    min_digits: int | None = None,
) -> bool:
    min_digits = min_digits if min_digits is not None else get_settings().phone_min_digits
    return len(national_number(phone, country_code, min_digits)) >= min_digits


def normalize_phone(
    phone: str,
    country_code: str | None = None,
    min_digits: int | None = None,
) -> str:
    country_code = country_code if country_code is not None else get_settings().phone_country_code
    national = national_number(phone, country_code, min_digits)
    if not national:
        return ""
    return f"{country_code}{national}"


def mask_phone(phone: str) -> str:
    digits = _digits(phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"
