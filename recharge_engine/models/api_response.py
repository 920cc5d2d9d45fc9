"""API response models for the inventory, sales and control endpoints."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .purchase import Purchase
from .recharge_code import RechargeCode
from .results import SweepReport


class ImportCodesResponse(BaseModel):
    """Response after a code import."""

    plan_id: str = Field(..., description="Plan the codes were imported into")
    inserted_count: int = Field(..., description="Codes added to the pool")
    skipped_count: int = Field(..., description="Duplicates skipped")
    total_count: int = Field(..., description="Non-blank codes submitted")
    codes: List[RechargeCode] = Field(default_factory=list, description="Inserted codes")

    class Config:
        json_schema_extra = {
            "example": {
                "plan_id": "recarga-mensal",
                "inserted_count": 2,
                "skipped_count": 0,
                "total_count": 2,
                "codes": [],
            }
        }


class CodeCountsResponse(BaseModel):
    """Code counts per status for one plan."""

    plan_id: str
    available: int = 0
    sold: int = 0
    expired: int = 0
    total: int = 0


class CodePage(BaseModel):
    """One page of codes."""

    items: List[RechargeCode]
    total: int = Field(..., description="Matching codes across all pages")
    page: int
    limit: int
    total_pages: int


class PurchasePage(BaseModel):
    """One page of purchases."""

    items: List[Purchase]
    total: int = Field(..., description="Matching purchases across all pages")
    page: int
    limit: int
    total_pages: int


class TimeResponse(BaseModel):
    """Current state of the virtual clock."""

    current_time_millis: int = Field(..., description="Virtual time (Unix millis)")
    current_time: str = Field(..., description="Virtual time (ISO 8601, UTC)")
    offset_millis: int = Field(..., description="Time moved forward since last reset")
    frozen: bool = Field(..., description="Whether the clock ignores the wall clock")


class TimeChangeResponse(BaseModel):
    """Response after moving the virtual clock."""

    old_time_millis: int
    new_time_millis: int
    time_advanced_millis: int = 0
    sweep: Optional[SweepReport] = Field(None, description="Tick report when a sweep was requested")
    message: str


class ResetResponse(BaseModel):
    """Response after wiping engine state."""

    message: str
    codes_removed: int
    purchases_removed: int


class SchedulerStatusResponse(BaseModel):
    """Reminder scheduler state."""

    running: bool
    sweep_in_progress: bool
    interval_seconds: int
    transport_configured: bool
    last_report: Optional[SweepReport] = None


class TransportStatusResponse(BaseModel):
    """WhatsApp transport state."""

    configured: bool
    success: Optional[bool] = Field(None, description="Connection test result, if run")
    error: Optional[str] = None
    details: Optional[Any] = None
