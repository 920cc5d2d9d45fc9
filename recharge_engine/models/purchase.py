"""Purchase models - purchase records, buyer snapshot and expiry reminder latches.

Represents checkout attempts and their assigned recharge code.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PurchaseStatus(str, Enum):
    """Purchase status."""

    PENDING = "pending"  # Checkout started, payment not confirmed
    PENDING_CODE_DELIVERY = "pending_code_delivery"  # Paid, waiting for a code
    APPROVED = "approved"  # Paid and code assigned
    REJECTED = "rejected"  # Payment declined
    EXPIRED = "expired"  # Validity window passed


PURCHASE_TRANSITIONS = {
    PurchaseStatus.PENDING: {
        PurchaseStatus.APPROVED,
        PurchaseStatus.PENDING_CODE_DELIVERY,
        PurchaseStatus.REJECTED,
    },
    PurchaseStatus.PENDING_CODE_DELIVERY: {PurchaseStatus.APPROVED},
    PurchaseStatus.APPROVED: {PurchaseStatus.EXPIRED},
    PurchaseStatus.REJECTED: set(),
    PurchaseStatus.EXPIRED: set(),
}


class PaymentMethod(str, Enum):
    """Payment methods accepted at checkout."""

    CREDIT_CARD = "credit_card"
    PIX = "pix"


class InvalidPurchaseTransitionError(Exception):
    """Raised when a purchase status change is not allowed."""

    pass


class ReminderAlreadySentError(Exception):
    """Raised when a reminder latch is set twice."""

    pass


class ReminderMilestone(str, Enum):
    """Expiry reminder milestones."""

    REMINDER_3_DAYS = "reminder_3_days"
    REMINDER_1_DAY = "reminder_1_day"
    REMINDER_TODAY = "reminder_today"

    @property
    def days(self) -> int:
        """Days before expiry at which this milestone fires."""
        return MILESTONE_DAYS[self]

    @classmethod
    def for_days(cls, days_until_expiry: int) -> Optional["ReminderMilestone"]:
        """Milestone due at the given calendar-day distance, if any."""
        for milestone, days in MILESTONE_DAYS.items():
            if days == days_until_expiry:
                return milestone
        return None


MILESTONE_DAYS = {
    ReminderMilestone.REMINDER_3_DAYS: 3,
    ReminderMilestone.REMINDER_1_DAY: 1,
    ReminderMilestone.REMINDER_TODAY: 0,
}


class CustomerData(BaseModel):
    """Buyer contact snapshot taken at checkout."""

    name: str = Field(..., description="Customer name")
    phone: str = Field(..., description="Customer phone number")
    email: str = Field(default="", description="Customer e-mail")
    cpf: str = Field(default="", description="Customer tax id")


class ReminderRecord(BaseModel):
    """One reminder latch. Goes sent=False -> True exactly once."""

    sent: bool = False
    sent_at: Optional[datetime] = None
    message_id: Optional[str] = None


class ExpiryReminders(BaseModel):
    """The three independent reminder latches of a purchase."""

    reminder_3_days: ReminderRecord = Field(default_factory=ReminderRecord)
    reminder_1_day: ReminderRecord = Field(default_factory=ReminderRecord)
    reminder_today: ReminderRecord = Field(default_factory=ReminderRecord)

    def get(self, milestone: ReminderMilestone) -> ReminderRecord:
        return getattr(self, milestone.value)

    def is_sent(self, milestone: ReminderMilestone) -> bool:
        return self.get(milestone).sent

    def mark_sent(
        self,
        milestone: ReminderMilestone,
        sent_at: datetime,
        message_id: Optional[str] = None,
    ) -> None:
        """Latch a milestone.

        Raises:
            ReminderAlreadySentError: If the milestone was already latched
        """
        if self.is_sent(milestone):
            raise ReminderAlreadySentError(f"{milestone.value} already sent")
        setattr(
            self,
            milestone.value,
            ReminderRecord(sent=True, sent_at=sent_at, message_id=message_id),
        )


class Purchase(BaseModel):
    """Internal record for a purchase of one recharge code."""

    id: str = Field(..., description="Unique purchase id")
    customer_id: str = Field(..., description="Buyer identifier")
    plan_id: str = Field(..., description="Purchased plan")
    recharge_code: str = Field(default="", description="Assigned code, empty until approved")
    amount: Decimal = Field(..., description="Amount paid")
    status: PurchaseStatus = Field(default=PurchaseStatus.PENDING, description="Purchase status")
    payment_method: PaymentMethod = Field(default=PaymentMethod.CREDIT_CARD, description="Payment method")
    payment_id: str = Field(..., description="Payment gateway reference")
    created_at: datetime = Field(..., description="Checkout time")
    approved_at: Optional[datetime] = Field(None, description="Approval time")
    expires_at: datetime = Field(..., description="End of the purchase validity")
    reseller_id: str = Field(..., description="Selling reseller")
    assigned_code_id: Optional[str] = Field(None, description="Id of the sold code record")
    code_delivery_failure_reason: Optional[str] = Field(None, description="Why no code was delivered")
    customer_data: CustomerData = Field(..., description="Buyer contact snapshot")
    expiry_reminders: ExpiryReminders = Field(default_factory=ExpiryReminders)

    def set_status(self, new_status: PurchaseStatus, reason: Optional[str] = None) -> None:
        """Change purchase status and log the transition.

        Args:
            new_status: New purchase status
            reason: Reason for status change

        Raises:
            InvalidPurchaseTransitionError: If the transition is not allowed
        """
        from recharge_engine.state_logger import log_purchase_status_change

        old_status = self.status
        if old_status == new_status:
            return
        if new_status not in PURCHASE_TRANSITIONS[old_status]:
            raise InvalidPurchaseTransitionError(
                f"Purchase {self.id} cannot move from {old_status.value} to {new_status.value}"
            )
        self.status = new_status
        log_purchase_status_change(
            purchase_id=self.id,
            plan_id=self.plan_id,
            old_status=old_status.value,
            new_status=new_status.value,
            reason=reason,
            customer_id=self.customer_id,
        )

    def approve(self, code_id: str, code: str, approved_at: datetime, reason: str) -> None:
        """Attach a sold code and move to approved.

        Reminder latches start unsent for the newly delivered code.
        """
        self.set_status(PurchaseStatus.APPROVED, reason=reason)
        self.recharge_code = code
        self.assigned_code_id = code_id
        self.approved_at = approved_at
        self.expiry_reminders = ExpiryReminders()

    @property
    def is_awaiting_code(self) -> bool:
        return self.status == PurchaseStatus.PENDING_CODE_DELIVERY

    class Config:
        json_schema_extra = {
            "example": {
                "id": "pur_8c1d2e3f4a5b6c7d",
                "customer_id": "cus_1a2b3c4d5e6f7a8b",
                "plan_id": "recarga-mensal",
                "recharge_code": "AB12CD34EF56GH78",
                "amount": "29.90",
                "status": "approved",
                "payment_method": "pix",
                "payment_id": "pay_1760000000000",
                "created_at": "2026-10-01T12:00:00Z",
                "approved_at": "2026-10-01T12:00:00Z",
                "expires_at": "2026-10-31T12:00:00Z",
                "reseller_id": "system",
                "assigned_code_id": "code_3f2a9c1e7b4d4e0f",
                "customer_data": {"name": "Maria", "phone": "11988887777"},
            }
        }


class BuyerInfo(BaseModel):
    """Who is buying and how they paid, as handed over by checkout."""

    customer_id: str = Field(..., description="Buyer identifier")
    customer_data: CustomerData = Field(..., description="Buyer contact snapshot")
    payment_method: PaymentMethod = Field(default=PaymentMethod.CREDIT_CARD)
    payment_id: Optional[str] = Field(None, description="Gateway reference, generated when missing")
    reseller_id: Optional[str] = Field(None, description="Selling reseller, defaults to the engine's")
