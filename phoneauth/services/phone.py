from __future__ import annotations

import re
from typing import Optional

_SEPARATORS_RE = re.compile(r"[\s\-().]")
_E164_RE = re.compile(r"^\+[1-9][0-9]{6,14}$", re.ASCII)
_DIGITS_RE = re.compile(r"[0-9]+", re.ASCII)
_DOMESTIC_LENGTH = 10


def normalize_phone(raw: Optional[str], default_country_code: str = "1") -> Optional[str]:
    """
    Canonicalize user input to '+<country><national>'.

    Separators (spaces, hyphens, parentheses, dots) are dropped. Input without
    a leading '+' is treated as domestic when it has exactly ten digits and
    gets ``default_country_code``; otherwise '+' is simply prefixed.
    Returns None when the result is not a plausible E.164 number.
    """
    if raw is None:
        return None
    cleaned = _SEPARATORS_RE.sub("", str(raw))
    if not cleaned:
        return None

    if not cleaned.startswith("+"):
        if len(cleaned) == _DOMESTIC_LENGTH and _DIGITS_RE.fullmatch(cleaned):
            cleaned = f"+{default_country_code}{cleaned}"
        else:
            cleaned = f"+{cleaned}"

    if not _E164_RE.match(cleaned):
        return None
    return cleaned


def phone_digits(phone: str) -> str:
    return phone.lstrip("+")


__all__ = ["normalize_phone", "phone_digits"]
