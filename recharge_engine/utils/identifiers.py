"""Identifier generation and normalisation utilities.

Generates record ids for codes, purchases and customers, and normalises
code tokens and phone numbers coming from operators and checkout forms.
"""

import re
import time
import uuid
from typing import Optional


def generate_id(prefix: str) -> str:
    """Generate a record id.

    Format: {prefix}_{16 hex chars}
    Example: code_a1b2c3d4e5f6a7b8
    """
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def generate_code_id() -> str:
    return generate_id("code")


def generate_purchase_id() -> str:
    return generate_id("pur")


def generate_customer_id() -> str:
    return generate_id("cus")


def generate_payment_id(timestamp_millis: Optional[int] = None) -> str:
    """Generate a payment reference for checkouts without a gateway id.

    Format: pay_{unix millis}_{6 hex chars}
    """
    if timestamp_millis is None:
        timestamp_millis = int(time.time() * 1000)
    return f"pay_{timestamp_millis}_{uuid.uuid4().hex[:6]}"


def normalize_code(raw: str) -> str:
    """Trim and upper-case a code token. Inner spaces are kept."""
    return raw.strip().upper()


def normalize_phone(phone: str, country_code: str = "55") -> str:
    """Digits-only phone with the country code prefixed when missing.

    Examples:
        >>> normalize_phone("(11) 98888-7777")
        '5511988887777'
        >>> normalize_phone("+55 11 98888-7777")
        '5511988887777'
    """
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""
    if digits.startswith(country_code):
        return digits
    return f"{country_code}{digits}"
