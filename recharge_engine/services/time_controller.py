"""Virtual clock shared by every engine service.

Responsibilities:
- Maintain the virtual current time (wall clock plus an offset)
- Advance time (days, hours, minutes) or jump forward to a timestamp
- Reset back to the wall clock

Reminder milestones and code horizons are all read against this clock, so
operators can rehearse a reminder schedule without waiting for real days.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Optional

from recharge_engine.logging_config import get_logger
from recharge_engine.utils.calendar import ensure_utc

logger = get_logger(__name__)

MILLIS_PER_MINUTE = 60 * 1000
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR


def _wall_clock_millis() -> int:
    return int(time.time() * 1000)


class TimeController:
    """Virtual clock for time manipulation and fast-forwarding.

    Without a start time the clock follows the wall clock shifted by the
    accumulated offset. With a start time it is frozen there and only moves
    when advanced, which keeps tests deterministic.

    Args:
        start_time: optional frozen initial virtual time
    """

    def __init__(self, start_time: Optional[datetime] = None) -> None:
        self._lock = threading.RLock()
        self._frozen_millis: Optional[int] = None
        if start_time is not None:
            self._frozen_millis = int(ensure_utc(start_time).timestamp() * 1000)
        self._time_offset_millis = 0

        logger.debug(
            "time_controller_initialized",
            frozen=self._frozen_millis is not None,
            virtual_time_millis=self.get_current_time_millis(),
        )

    def _base_millis(self) -> int:
        if self._frozen_millis is not None:
            return self._frozen_millis
        return _wall_clock_millis()

    def get_current_time_millis(self) -> int:
        """Current virtual time as Unix timestamp in milliseconds."""
        with self._lock:
            return self._base_millis() + self._time_offset_millis

    def now(self) -> datetime:
        """Current virtual time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.get_current_time_millis() / 1000, tz=timezone.utc)

    @property
    def offset_millis(self) -> int:
        """Total time moved forward since the last reset."""
        with self._lock:
            return self._time_offset_millis

    @property
    def is_frozen(self) -> bool:
        return self._frozen_millis is not None

    def advance_time(self, days: int = 0, hours: int = 0, minutes: int = 0) -> dict:
        """Advance virtual time.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance

        Returns:
            Dictionary with old_time_millis, new_time_millis and time_advanced_millis

        Raises:
            ValueError: if any value is negative
        """
        if days < 0 or hours < 0 or minutes < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed")

        millis = days * MILLIS_PER_DAY + hours * MILLIS_PER_HOUR + minutes * MILLIS_PER_MINUTE

        with self._lock:
            old_time = self.get_current_time_millis()
            self._time_offset_millis += millis
            new_time = old_time + millis

        if millis:
            logger.info(
                "time_advanced",
                old_time_millis=old_time,
                new_time_millis=new_time,
                days=days,
                hours=hours,
                minutes=minutes,
            )

        return {
            "old_time_millis": old_time,
            "new_time_millis": new_time,
            "time_advanced_millis": millis,
        }

    def set_time(self, timestamp_millis: int) -> dict:
        """Jump virtual time forward to a specific timestamp.

        Raises:
            ValueError: If timestamp is before the current virtual time
        """
        with self._lock:
            old_time = self.get_current_time_millis()
            if timestamp_millis < old_time:
                raise ValueError(
                    f"Cannot set time backwards, current: {old_time}, requested: {timestamp_millis}"
                )
            jump = timestamp_millis - old_time
            self._time_offset_millis += jump

        logger.info("time_set", old_time_millis=old_time, new_time_millis=timestamp_millis, time_jump=jump)
        return {
            "old_time_millis": old_time,
            "new_time_millis": timestamp_millis,
            "time_advanced_millis": jump,
        }

    def reset_time(self) -> dict:
        """Reset virtual time back to the live wall clock."""
        with self._lock:
            old_time = self.get_current_time_millis()
            self._frozen_millis = None
            self._time_offset_millis = 0
            real_time = _wall_clock_millis()

        logger.info("time_reset", old_time_millis=old_time, new_time_millis=real_time)
        return {"old_time_millis": old_time, "new_time_millis": real_time}


_time_controller_instance: Optional[TimeController] = None
_controller_lock = threading.Lock()


def get_time_controller() -> TimeController:
    global _time_controller_instance
    if _time_controller_instance is None:
        with _controller_lock:
            if _time_controller_instance is None:
                _time_controller_instance = TimeController()
    return _time_controller_instance


def set_time_controller(controller: Optional[TimeController]) -> None:
    """Replace the global clock (None drops it)."""
    global _time_controller_instance
    with _controller_lock:
        _time_controller_instance = controller


def reset_time_controller() -> None:
    global _time_controller_instance
    with _controller_lock:
        _time_controller_instance = TimeController()
