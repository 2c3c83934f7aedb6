import re

COUNTRY_CODE = "91"

_MOBILE_RE = re.compile(r"^[6-9]\d{9}$")
_MOBILE_WITH_CC_RE = re.compile(r"^91[6-9]\d{9}$")


def clean_phone(phone: str | None) -> str:
    """Strip everything but digits; ``None`` and blanks become ``""``."""
    if not phone:
        return ""
    return re.sub(r"\D", "", str(phone))


def normalize_phone(phone: str | None) -> str:
    """Return the canonical 10-digit key for an Indian mobile number.

    A 12-digit value carrying the ``91`` country code is reduced to its last
    ten digits; anything else is returned cleaned but otherwise untouched so
    that :func:`is_valid_phone` can reject it.
    """
    digits = clean_phone(phone)
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return digits[len(COUNTRY_CODE):]
    return digits


def is_valid_phone(phone: str | None) -> bool:
    digits = clean_phone(phone)
    if len(digits) == 10:
        return bool(_MOBILE_RE.match(digits))
    if len(digits) == 12:
        return bool(_MOBILE_WITH_CC_RE.match(digits))
    return False


def mask_phone(phone: str | None, visible_digits: int = 2) -> str:
    if not phone:
        return ""
    digits = clean_phone(phone)
    if len(digits) <= visible_digits:
        return digits
    return "*" * (len(digits) - visible_digits) + digits[-visible_digits:]
