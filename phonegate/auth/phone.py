"""Phone number normalisation and validation."""
import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")
_VALID_PHONE = re.compile(r"^[2-9]\d{9}$")


def normalize_phone(phone: Optional[str]) -> str:
    """Reduce a phone number to its 10-digit national form.

    Strips formatting, then a leading ``91`` country code from 12-digit
    numbers or a leading ``1`` from 11-digit numbers. Longer inputs keep
    their last ten digits.
    """
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", str(phone))
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    if len(digits) > 10:
        return digits[-10:]
    return digits


def is_valid_phone(phone: str) -> bool:
    return bool(_VALID_PHONE.match(phone or ""))
