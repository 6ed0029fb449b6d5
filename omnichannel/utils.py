"""Shared utilities used across the session manager."""

import re
import time


def normalize_phone(value: str) -> str:
    """Normalize a phone number to E.164, assuming NANP when no ``+`` is given.

    Everything except digits and a leading ``+`` is stripped. A bare
    10-digit number gets ``+1``; an 11-digit number starting with ``1``
    gets ``+``; anything else gets ``+``.

    Examples:
        >>> normalize_phone("(415) 555-0100")
        '+14155550100'
        >>> normalize_phone("1-415-555-0100")
        '+14155550100'
        >>> normalize_phone("+44 20 7946 0958")
        '+442079460958'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    digits = re.sub(r"[^\d]", "", value)
    if len(digits) == 10:
        return "+1" + digits
    return "+" + digits


def mask_phone(value: str) -> str:
    """Keep only the last four digits of a phone number for logging."""
    if not value:
        return ""
    return "***" + value[-4:]


def mask_email(value: str) -> str:
    """Keep the first two characters and the domain of an e-mail for logging."""
    return re.sub(r"(.{2}).*(@.*)", r"\1***\2", value)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
