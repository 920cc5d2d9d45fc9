"""Audit logging for recharge code, purchase and reminder state changes.

Tracks transitions with before/after values for debugging and reconciliation.
"""

from datetime import datetime
from typing import Any, Optional

from recharge_engine.logging_config import get_logger

logger = get_logger(__name__)


def log_code_status_change(
    code_id: str,
    code: str,
    plan_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log recharge code status change.

    Args:
        code_id: Code record id
        code: Code token (masked by the logging pipeline)
        plan_id: Owning plan
        old_status: Previous status value
        new_status: New status value
        reason: Reason for the change
        **extra_context: Additional context
    """
    logger.info(
        "code_status_changed",
        code_id=code_id,
        code=code,
        plan_id=plan_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_purchase_status_change(
    purchase_id: str,
    plan_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log purchase status change.

    Args:
        purchase_id: Purchase id
        plan_id: Purchased plan
        old_status: Previous status value
        new_status: New status value
        reason: Reason for the change
        **extra_context: Additional context (customer_id, code_id, etc.)
    """
    logger.info(
        "purchase_status_changed",
        purchase_id=purchase_id,
        plan_id=plan_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_purchase_recorded(
    purchase_id: str,
    plan_id: str,
    status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a purchase entering the ledger."""
    logger.info(
        "purchase_recorded",
        purchase_id=purchase_id,
        plan_id=plan_id,
        status=str(status),
        reason=reason,
        **extra_context,
    )


def log_reminder_marked_sent(
    purchase_id: str,
    milestone: Any,
    sent_at: datetime,
    message_id: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a reminder latch being set.

    Args:
        purchase_id: Purchase id
        milestone: Reminder milestone
        sent_at: When the message went out
        message_id: Transport message id
        **extra_context: Additional context
    """
    logger.info(
        "reminder_marked_sent",
        purchase_id=purchase_id,
        milestone=str(milestone),
        sent_at=sent_at.isoformat(),
        message_id=message_id,
        **extra_context,
    )
