"""Recharge code models.

A recharge code is an opaque token sold once and never deleted.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CodeStatus(str, Enum):
    """Lifecycle status of a recharge code."""

    AVAILABLE = "available"  # In the pool, can be sold
    SOLD = "sold"  # Bound to a purchase
    EXPIRED = "expired"  # Horizon passed before it was sold


# Allowed transitions: available -> sold | expired, nothing else
CODE_TRANSITIONS = {
    CodeStatus.AVAILABLE: {CodeStatus.SOLD, CodeStatus.EXPIRED},
    CodeStatus.SOLD: set(),
    CodeStatus.EXPIRED: set(),
}


class InvalidCodeTransitionError(Exception):
    """Raised when a code status change breaks the lifecycle."""

    pass


class RechargeCode(BaseModel):
    """Internal record for one recharge code in the pool."""

    id: str = Field(..., description="Unique code record id")
    code: str = Field(..., description="Upper-cased code token")
    value: Decimal = Field(..., description="Value copied from the plan at import time")
    status: CodeStatus = Field(default=CodeStatus.AVAILABLE, description="Lifecycle status")
    created_at: datetime = Field(..., description="Import time")
    expires_at: datetime = Field(..., description="End of the code's sellable horizon")
    sold_at: Optional[datetime] = Field(None, description="When the code was sold")
    plan_id: str = Field(..., description="Owning plan")
    # Snapshot of the plan's app name at import; not updated if the plan changes
    app_name: str = Field(..., description="App label copied from the plan")

    def set_status(self, new_status: CodeStatus, reason: Optional[str] = None) -> None:
        """Change code status and log the transition.

        Args:
            new_status: New status
            reason: Reason for the change

        Raises:
            InvalidCodeTransitionError: If the lifecycle forbids the transition
        """
        from recharge_engine.state_logger import log_code_status_change

        old_status = self.status
        if old_status == new_status:
            return
        if new_status not in CODE_TRANSITIONS[old_status]:
            raise InvalidCodeTransitionError(
                f"Code {self.id} cannot move from {old_status.value} to {new_status.value}"
            )
        self.status = new_status
        log_code_status_change(
            code_id=self.id,
            code=self.code,
            plan_id=self.plan_id,
            old_status=old_status.value,
            new_status=new_status.value,
            reason=reason,
        )

    def mark_sold(self, sold_at: datetime) -> None:
        """Transition to sold and stamp the sale time."""
        self.set_status(CodeStatus.SOLD, reason="allocated")
        self.sold_at = sold_at

    def mark_expired(self) -> None:
        """Transition to expired."""
        self.set_status(CodeStatus.EXPIRED, reason="horizon_passed")

    @property
    def is_available(self) -> bool:
        return self.status == CodeStatus.AVAILABLE

    class Config:
        json_schema_extra = {
            "example": {
                "id": "code_3f2a9c1e7b4d4e0f",
                "code": "AB12CD34EF56GH78",
                "value": "29.90",
                "status": "available",
                "created_at": "2026-10-01T12:00:00Z",
                "expires_at": "2026-10-31T12:00:00Z",
                "sold_at": None,
                "plan_id": "recarga-mensal",
                "app_name": "TV Box Pro",
            }
        }
