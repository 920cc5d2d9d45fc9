"""Control API for operators and rehearsal environments.

Implements:
- GET /engine/time - Current virtual time
- POST /engine/time/advance - Fast-forward time
- POST /engine/time/set - Jump forward to a timestamp
- POST /engine/time/reset - Back to the wall clock
- POST /engine/reset - Reset all state
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException

from recharge_engine.logging_config import get_logger
from recharge_engine.models import SweepReport
from recharge_engine.models.api_request import AdvanceTimeRequest, SetTimeRequest
from recharge_engine.models.api_response import ResetResponse, TimeChangeResponse, TimeResponse
from recharge_engine.repositories.storage import get_store
from recharge_engine.services import reset_services
from recharge_engine.services.reminder_scheduler import get_reminder_scheduler
from recharge_engine.services.time_controller import get_time_controller, reset_time_controller

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/engine")


def _run_tick(requested: bool) -> Optional[SweepReport]:
    if not requested:
        return None
    return get_reminder_scheduler().run_tick()


def _format_millis(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


@router.get("/time", response_model=TimeResponse, summary="Current virtual time")
def current_time() -> TimeResponse:
    clock = get_time_controller()
    millis = clock.get_current_time_millis()
    return TimeResponse(
        current_time_millis=millis,
        current_time=_format_millis(millis),
        offset_millis=clock.offset_millis,
        frozen=clock.is_frozen,
    )


@router.post("/time/advance", response_model=TimeChangeResponse, summary="Advance virtual time")
def advance_time(request: AdvanceTimeRequest) -> TimeChangeResponse:
    """Fast-forward the virtual clock.

    With run_sweep set, one scheduler tick runs right after the jump so the
    reminders due at the new time go out in the same call.

    Raises:
        400: Invalid duration
    """
    logger.info(
        "advance_time_request",
        days=request.days,
        hours=request.hours,
        minutes=request.minutes,
        run_sweep=request.run_sweep,
    )
    try:
        result = get_time_controller().advance_time(
            days=request.days, hours=request.hours, minutes=request.minutes
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_time", "message": str(e)})

    return TimeChangeResponse(
        **result,
        sweep=_run_tick(request.run_sweep),
        message=f"Advanced {request.days}d {request.hours}h {request.minutes}m",
    )


@router.post("/time/set", response_model=TimeChangeResponse, summary="Set virtual time")
def set_time(request: SetTimeRequest) -> TimeChangeResponse:
    """Jump the virtual clock forward to a timestamp.

    Raises:
        400: Timestamp in the virtual past
    """
    try:
        result = get_time_controller().set_time(request.timestamp_millis)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_time", "message": str(e)})

    return TimeChangeResponse(
        **result,
        sweep=_run_tick(request.run_sweep),
        message=f"Virtual time set to {_format_millis(result['new_time_millis'])}",
    )


@router.post("/time/reset", response_model=TimeChangeResponse, summary="Reset virtual time")
def reset_time() -> TimeChangeResponse:
    result = get_time_controller().reset_time()
    return TimeChangeResponse(**result, message="Virtual time reset to the wall clock")


@router.post("/reset", response_model=ResetResponse, summary="Reset engine state")
def reset_engine() -> ResetResponse:
    """Wipe codes and purchases, reset the clock and rebuild the services."""
    store = get_store()
    stats = store.get_statistics()
    store.clear()
    reset_services()
    reset_time_controller()

    logger.warning(
        "engine_reset",
        codes_removed=stats["total_codes"],
        purchases_removed=stats["total_purchases"],
    )
    return ResetResponse(
        message="Engine state reset",
        codes_removed=stats["total_codes"],
        purchases_removed=stats["total_purchases"],
    )
