"""Utility functions and helpers for the engine."""

from recharge_engine.utils.calendar import (
    day_bounds,
    days_until_expiry,
    ensure_utc,
    format_date,
    get_timezone,
    is_same_local_day,
    local_date,
    start_of_day,
)
from recharge_engine.utils.identifiers import (
    generate_code_id,
    generate_customer_id,
    generate_id,
    generate_payment_id,
    generate_purchase_id,
    normalize_code,
    normalize_phone,
)

__all__ = [
    # Calendar days
    "day_bounds",
    "days_until_expiry",
    "ensure_utc",
    "format_date",
    "get_timezone",
    "is_same_local_day",
    "local_date",
    "start_of_day",
    # Identifiers
    "generate_code_id",
    "generate_customer_id",
    "generate_id",
    "generate_payment_id",
    "generate_purchase_id",
    "normalize_code",
    "normalize_phone",
]
