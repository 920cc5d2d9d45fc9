"""API request models for the inventory, sales and control endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .purchase import CustomerData, PaymentMethod
from .results import PaymentResult


class ImportCodesRequest(BaseModel):
    """Request to replenish a plan's pool with new codes."""

    codes: List[str] = Field(..., min_length=1, description="Code strings; trimmed and upper-cased on import")

    class Config:
        json_schema_extra = {
            "example": {
                "codes": ["ab12cd34ef56gh78", "IJ90KL12MN34OP56"],
            }
        }


class CheckoutRequest(BaseModel):
    """Request to resolve a checkout after the payment gateway answered."""

    plan_id: str = Field(..., description="Plan being purchased")
    customer: CustomerData = Field(..., description="Buyer contact details")
    customer_id: Optional[str] = Field(None, description="Buyer id (generated when missing)")
    payment_method: PaymentMethod = Field(default=PaymentMethod.CREDIT_CARD, description="Payment method")
    payment: PaymentResult = Field(..., description="Payment gateway result")
    reseller_id: Optional[str] = Field(None, description="Selling reseller")

    class Config:
        json_schema_extra = {
            "example": {
                "plan_id": "recarga-mensal",
                "customer": {"name": "Maria Silva", "phone": "(11) 98888-7777", "email": "maria@example.com"},
                "payment_method": "pix",
                "payment": {"success": True, "payment_id": "pay_1760000000000_a1b2c3"},
            }
        }


class SellRequest(BaseModel):
    """Request to sell a code directly, payment already confirmed."""

    customer: CustomerData = Field(..., description="Buyer contact details")
    customer_id: Optional[str] = Field(None, description="Buyer id (generated when missing)")
    payment_method: PaymentMethod = Field(default=PaymentMethod.CREDIT_CARD, description="Payment method")
    payment_id: Optional[str] = Field(None, description="Gateway reference")
    reseller_id: Optional[str] = Field(None, description="Selling reseller")

    class Config:
        json_schema_extra = {
            "example": {
                "customer": {"name": "João Souza", "phone": "21977776666"},
                "payment_method": "credit_card",
            }
        }


class AssignCodeRequest(BaseModel):
    """Operator request to deliver a specific code to a parked purchase."""

    code_id: str = Field(..., description="Id of an available code")

    class Config:
        json_schema_extra = {"example": {"code_id": "code_3f2a9c1e7b4d4e0f"}}


class AdvanceTimeRequest(BaseModel):
    """Request to fast-forward the virtual clock."""

    days: int = Field(default=0, ge=0, description="Days to advance")
    hours: int = Field(default=0, ge=0, description="Hours to advance")
    minutes: int = Field(default=0, ge=0, description="Minutes to advance")
    run_sweep: bool = Field(default=False, description="Run a scheduler tick after advancing")

    class Config:
        json_schema_extra = {
            "example": {"days": 27, "hours": 0, "minutes": 0, "run_sweep": True}
        }


class SetTimeRequest(BaseModel):
    """Request to jump the virtual clock forward to a timestamp."""

    timestamp_millis: int = Field(..., description="Target Unix time in milliseconds")
    run_sweep: bool = Field(default=False, description="Run a scheduler tick after jumping")

    class Config:
        json_schema_extra = {"example": {"timestamp_millis": 1762000000000}}
