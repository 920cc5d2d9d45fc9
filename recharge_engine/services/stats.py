"""Stats Aggregator - dashboard counters derived from the pool and the ledger."""

from decimal import Decimal
from typing import Optional

from recharge_engine.config import get_config
from recharge_engine.models import CodeStatus, DashboardStats, EngineSettings, PurchaseStatus
from recharge_engine.repositories.plan_repository import PlanRepository, get_plan_repository
from recharge_engine.repositories.storage import Store, get_store
from recharge_engine.services.time_controller import TimeController, get_time_controller
from recharge_engine.utils.calendar import day_bounds, ensure_utc, is_same_local_day


class StatsAggregator:
    """Read-only reduction over codes and purchases. No side effects."""

    def __init__(
        self,
        store: Optional[Store] = None,
        plan_repository: Optional[PlanRepository] = None,
        time_controller: Optional[TimeController] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store if store is not None else get_store()
        self._plans = plan_repository if plan_repository is not None else get_plan_repository()
        self._clock = time_controller if time_controller is not None else get_time_controller()
        self._settings = settings if settings is not None else get_config().engine_settings

    def get_stats(self) -> DashboardStats:
        """Snapshot of revenue, expiries and backlog for "today" in the business timezone.

        Revenue counts sold codes at their pool value; today's revenue is
        limited to codes sold within the current calendar day.
        """
        now = self._clock.now()
        tz_name = self._settings.timezone
        day_start, day_end = day_bounds(now, tz_name)

        sold = self._store.get_codes_by_status(CodeStatus.SOLD)
        total_revenue = sum((c.value for c in sold), Decimal("0"))
        today_revenue = sum(
            (c.value for c in sold if c.sold_at and day_start <= ensure_utc(c.sold_at) < day_end),
            Decimal("0"),
        )

        expiring_today = sum(
            1 for p in self._store.get_purchases_by_status(PurchaseStatus.APPROVED)
            if is_same_local_day(p.expires_at, now, tz_name)
        )

        return DashboardStats(
            total_revenue=total_revenue,
            today_revenue=today_revenue,
            expiring_today=expiring_today,
            pending_code_deliveries=self._store.count_purchases(PurchaseStatus.PENDING_CODE_DELIVERY),
            active_plans=len(self._plans.get_active()),
            sold_codes=len(sold),
            available_codes=self._store.count_codes(status=CodeStatus.AVAILABLE),
        )


_aggregator: Optional[StatsAggregator] = None


def get_stats_aggregator() -> StatsAggregator:
    global _aggregator
    if _aggregator is None:
        _aggregator = StatsAggregator()
    return _aggregator


def reset_stats_aggregator() -> None:
    global _aggregator
    _aggregator = None
