"""Result values returned by the engine services.

Routine failures (pool exhausted, stale ids) are results, not exceptions.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from recharge_engine.models.purchase import Purchase
from recharge_engine.models.recharge_code import RechargeCode


class FailureReason(str, Enum):
    """Why an allocation or assignment did not happen."""

    CODE_UNAVAILABLE = "code_unavailable"
    PLAN_NOT_FOUND = "plan_not_found"
    PURCHASE_NOT_FOUND = "purchase_not_found"
    CODE_NOT_FOUND = "code_not_found"
    CODE_NOT_AVAILABLE = "code_not_available"


class AllocationResult(BaseModel):
    """Outcome of selling a code for a plan."""

    success: bool
    reason: Optional[FailureReason] = None
    code: Optional[RechargeCode] = None
    purchase: Optional[Purchase] = None

    @classmethod
    def failed(cls, reason: FailureReason) -> "AllocationResult":
        return cls(success=False, reason=reason)


class AssignmentResult(BaseModel):
    """Outcome of assigning a code to a parked purchase."""

    success: bool
    reason: Optional[FailureReason] = None
    code: Optional[RechargeCode] = None
    purchase: Optional[Purchase] = None

    @classmethod
    def failed(cls, reason: FailureReason) -> "AssignmentResult":
        return cls(success=False, reason=reason)


class PaymentResult(BaseModel):
    """Result handed over by the payment gateway."""

    success: bool = Field(..., description="Whether the charge went through")
    payment_id: Optional[str] = Field(None, description="Gateway reference")
    error: Optional[str] = Field(None, description="Gateway error message")


class SendResult(BaseModel):
    """Outcome reported by a notification transport."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ImportResult(BaseModel):
    """Outcome of a bulk code import."""

    codes: list[RechargeCode] = Field(default_factory=list)
    total_count: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.codes)

    @property
    def skipped_count(self) -> int:
        return self.total_count - self.inserted_count


class CheckoutOutcome(BaseModel):
    """Outcome of a checkout after the payment result is known."""

    status: str = Field(..., description="approved, pending_code_delivery or rejected")
    purchase: Purchase
    recharge_code: Optional[str] = None
    message: str = ""


class SweepReport(BaseModel):
    """Counters for one reminder sweep."""

    sweep_id: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    transport_configured: bool = True
    checked: int = 0
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped_missing_plan: int = 0
    skipped_missing_contact: int = 0
    skipped_unconfigured: int = 0
    errors: int = 0
    expired_codes: int = 0


class DashboardStats(BaseModel):
    """Read-side snapshot for the admin dashboard."""

    total_revenue: Decimal = Decimal("0")
    today_revenue: Decimal = Decimal("0")
    expiring_today: int = 0
    pending_code_deliveries: int = 0
    active_plans: int = 0
    sold_codes: int = 0
    available_codes: int = 0
