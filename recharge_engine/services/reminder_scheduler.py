"""Reminder Scheduler - expiry reminders with at-most-once delivery per milestone.

A sweep walks every approved purchase that has not expired yet, computes the
calendar-day distance to expiry in the business timezone and sends the
reminder for the matching milestone (3, 1 or 0 days) if its latch is unset.

Rules:
- Only one sweep runs at a time; an overlapping call returns immediately.
- A milestone is latched only after the transport confirms the send.
- Transport failures and timeouts leave the latch unset for the next sweep.
- An unconfigured transport turns the sweep into pure observation.
- One purchase failing never aborts the sweep for the others.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import List, Optional

from recharge_engine.config import get_config
from recharge_engine.logging_config import get_logger, logging_context
from recharge_engine.models import (
    EngineSettings,
    Purchase,
    PurchaseStatus,
    ReminderMilestone,
    SchedulerConfig,
    SendResult,
    SweepReport,
)
from recharge_engine.repositories.plan_repository import PlanRepository, get_plan_repository
from recharge_engine.repositories.storage import Store, get_store
from recharge_engine.services.code_pool import CodePool
from recharge_engine.services.messages import format_expiry_reminder
from recharge_engine.services.time_controller import TimeController, get_time_controller
from recharge_engine.services.whatsapp import ZApiTransport, get_notification_transport
from recharge_engine.utils.calendar import days_until_expiry, ensure_utc, format_date
from recharge_engine.utils.identifiers import generate_id

logger = get_logger(__name__)


@dataclass
class DueReminder:
    """A reminder that should go out in this sweep."""

    purchase_id: str
    milestone: ReminderMilestone
    days_until_expiry: int
    phone: str
    message: str


class ReminderScheduler:
    """Periodic expiry-reminder sweep plus the code expiry pass.

    Args:
        store: Storage backend (uses global if not provided)
        plan_repository: Plan catalogue (uses global if not provided)
        transport: Notification transport with is_configured and send_reminder
        time_controller: Clock (uses global if not provided)
        settings: Scheduler settings (uses global configuration if not provided)
        engine_settings: Engine settings, for the business timezone
        company_name: Signature on reminder messages
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        plan_repository: Optional[PlanRepository] = None,
        transport: Optional[ZApiTransport] = None,
        time_controller: Optional[TimeController] = None,
        settings: Optional[SchedulerConfig] = None,
        engine_settings: Optional[EngineSettings] = None,
        company_name: Optional[str] = None,
    ):
        self._store = store if store is not None else get_store()
        self._plans = plan_repository if plan_repository is not None else get_plan_repository()
        self._transport = transport if transport is not None else get_notification_transport()
        self._clock = time_controller if time_controller is not None else get_time_controller()
        if settings is None or engine_settings is None or company_name is None:
            config = get_config()
            settings = settings or config.scheduler_settings
            engine_settings = engine_settings or config.engine_settings
            company_name = company_name or config.company_name
        self._settings = settings
        self._engine_settings = engine_settings
        self._company_name = company_name
        self._code_pool = CodePool(
            store=self._store,
            plan_repository=self._plans,
            time_controller=self._clock,
            settings=self._engine_settings,
        )

        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_report: Optional[SweepReport] = None

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    @property
    def last_report(self) -> Optional[SweepReport]:
        return self._last_report

    def run_sweep(self, expire_codes: bool = False) -> Optional[SweepReport]:
        """Run one reminder sweep.

        Args:
            expire_codes: Also run the code expiry pass inside the same lock

        Returns:
            SweepReport, or None if another sweep is already running
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.warning("reminder_sweep_skipped", reason="sweep_already_running")
            return None
        sweep_id = generate_id("swp")
        try:
            with logging_context(sweep_id=sweep_id):
                report = self._sweep(sweep_id)
                if expire_codes:
                    report.expired_codes = len(self._code_pool.expire_stale_codes())
            report.finished_at = self._clock.now()
            self._last_report = report
            return report
        finally:
            self._sweep_lock.release()

    def run_tick(self) -> Optional[SweepReport]:
        """One scheduler tick: reminder sweep plus, if enabled, the code expiry pass."""
        return self.run_sweep(expire_codes=self._settings.expire_codes)

    def _sweep(self, sweep_id: str) -> SweepReport:
        now = self._clock.now()
        report = SweepReport(
            sweep_id=sweep_id, started_at=now, transport_configured=self._transport.is_configured
        )
        logger.info("reminder_sweep_started", now=now.isoformat(), transport_configured=report.transport_configured)

        due: List[DueReminder] = []
        for purchase in self._store.get_purchases_by_status(PurchaseStatus.APPROVED):
            if ensure_utc(purchase.expires_at) <= now:
                continue
            report.checked += 1
            try:
                reminder = self._evaluate(purchase, now, report)
            except Exception:
                report.errors += 1
                logger.exception("reminder_evaluation_failed", purchase_id=purchase.id)
                continue
            if reminder is not None:
                due.append(reminder)

        if not report.transport_configured:
            report.skipped_unconfigured = len(due)
            if due:
                logger.info("reminder_transport_unconfigured", due=len(due))
        elif due:
            self._deliver(due, report)

        logger.info(
            "reminder_sweep_completed",
            checked=report.checked,
            due=report.due,
            sent=report.sent,
            failed=report.failed,
            skipped_missing_plan=report.skipped_missing_plan,
            skipped_missing_contact=report.skipped_missing_contact,
            skipped_unconfigured=report.skipped_unconfigured,
            errors=report.errors,
        )
        return report

    def _evaluate(self, purchase: Purchase, now, report: SweepReport) -> Optional[DueReminder]:
        tz_name = self._engine_settings.timezone
        days = days_until_expiry(purchase.expires_at, now, tz_name)
        milestone = ReminderMilestone.for_days(days)
        if milestone is None or purchase.expiry_reminders.is_sent(milestone):
            return None

        report.due += 1
        plan = self._plans.find_by_id(purchase.plan_id)
        if plan is None:
            report.skipped_missing_plan += 1
            logger.warning("reminder_plan_not_found", purchase_id=purchase.id, plan_id=purchase.plan_id)
            return None

        contact = purchase.customer_data
        if contact is None or not contact.phone:
            report.skipped_missing_contact += 1
            logger.warning("reminder_contact_missing", purchase_id=purchase.id)
            return None

        message = format_expiry_reminder(
            contact.name,
            plan.name,
            days,
            format_date(purchase.expires_at, tz_name),
            self._company_name,
        )
        return DueReminder(
            purchase_id=purchase.id,
            milestone=milestone,
            days_until_expiry=days,
            phone=contact.phone,
            message=message,
        )

    def _deliver(self, due: List[DueReminder], report: SweepReport) -> None:
        executor = ThreadPoolExecutor(
            max_workers=self._settings.max_workers, thread_name_prefix="reminder-send"
        )
        try:
            futures = [
                (reminder, executor.submit(self._transport.send_reminder, reminder.phone, reminder.message))
                for reminder in due
            ]
            for reminder, future in futures:
                self._collect(reminder, future, report)
        finally:
            # Stalled sends are abandoned; their results are never latched
            executor.shutdown(wait=False, cancel_futures=True)

    def _collect(self, reminder: DueReminder, future, report: SweepReport) -> None:
        log = logger.bind(purchase_id=reminder.purchase_id, milestone=reminder.milestone.value)
        try:
            result: SendResult = future.result(timeout=self._settings.send_timeout_seconds)
        except FutureTimeoutError:
            report.failed += 1
            log.warning("reminder_send_timeout", timeout_seconds=self._settings.send_timeout_seconds)
            return
        except Exception:
            report.failed += 1
            log.exception("reminder_send_error")
            return

        if not result.success:
            report.failed += 1
            log.warning("reminder_send_failed", error=result.error)
            return

        try:
            latched = self._store.mark_reminder_sent(
                reminder.purchase_id, reminder.milestone, self._clock.now(), result.message_id
            )
        except Exception:
            report.errors += 1
            log.exception("reminder_latch_failed")
            return

        if latched:
            report.sent += 1
            log.info("reminder_sent", days_until_expiry=reminder.days_until_expiry, message_id=result.message_id)
        else:
            log.warning("reminder_latch_already_set")

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start ticking in a background thread."""
        if self.is_running:
            logger.warning("reminder_scheduler_already_running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reminder-scheduler", daemon=True)
        self._thread.start()
        logger.info("reminder_scheduler_started", interval_seconds=self._settings.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread. An in-flight sweep is allowed to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("reminder_scheduler_stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception:
                logger.exception("reminder_scheduler_tick_failed")
            self._stop_event.wait(self._settings.interval_seconds)

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "sweep_in_progress": self.sweep_in_progress,
            "interval_seconds": self._settings.interval_seconds,
            "transport_configured": self._transport.is_configured,
            "last_report": self._last_report,
        }


_scheduler: Optional[ReminderScheduler] = None


def get_reminder_scheduler() -> ReminderScheduler:
    """Get global reminder scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = ReminderScheduler()
    return _scheduler


def reset_reminder_scheduler() -> None:
    """Stop and drop the global scheduler (useful for testing)."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
    _scheduler = None
