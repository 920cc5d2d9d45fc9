"""Reminders API - manual sweeps and scheduler/transport status.

Implements:
- POST /reminders/sweep - Run one scheduler tick now
- GET /reminders/scheduler - Scheduler state and last report
- GET /reminders/transport - WhatsApp transport state (optionally tested)
"""

from fastapi import APIRouter, HTTPException, Query

from recharge_engine.logging_config import get_logger
from recharge_engine.models import SweepReport
from recharge_engine.models.api_response import SchedulerStatusResponse, TransportStatusResponse
from recharge_engine.services.reminder_scheduler import get_reminder_scheduler
from recharge_engine.services.whatsapp import get_notification_transport

logger = get_logger(__name__)
router = APIRouter(tags=["Reminders"], prefix="/reminders")


@router.post("/sweep", response_model=SweepReport, summary="Run reminder sweep")
def run_sweep() -> SweepReport:
    """Run one scheduler tick: the reminder sweep plus the code expiry pass
    when it is enabled.

    Raises:
        409: A sweep is already running
    """
    report = get_reminder_scheduler().run_tick()
    if report is None:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "sweep_in_progress",
                "message": "A reminder sweep is already running",
            },
        )
    return report


@router.get("/scheduler", response_model=SchedulerStatusResponse, summary="Scheduler status")
def scheduler_status() -> SchedulerStatusResponse:
    return SchedulerStatusResponse(**get_reminder_scheduler().status())


@router.get("/transport", response_model=TransportStatusResponse, summary="Transport status")
def transport_status(
    test: bool = Query(False, description="Also query the provider's instance status"),
) -> TransportStatusResponse:
    transport = get_notification_transport()
    if not test:
        return TransportStatusResponse(configured=transport.is_configured)

    result = transport.test_connection()
    logger.info("transport_connection_tested", success=result["success"])
    return TransportStatusResponse(
        configured=transport.is_configured,
        success=result["success"],
        error=result.get("error"),
        details=result.get("details"),
    )
