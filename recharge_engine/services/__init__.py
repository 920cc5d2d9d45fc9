"""Engine services: code pool, allocator, ledger, checkout, reminders and stats."""

from recharge_engine.services.allocator import reset_allocator
from recharge_engine.services.checkout import reset_checkout_service
from recharge_engine.services.code_pool import reset_code_pool
from recharge_engine.services.purchase_ledger import reset_purchase_ledger
from recharge_engine.services.reminder_scheduler import reset_reminder_scheduler
from recharge_engine.services.stats import reset_stats_aggregator


def reset_services() -> None:
    """Drop every service singleton so the next call rebuilds it from the
    current store, clock, plan repository and transport."""
    reset_reminder_scheduler()
    reset_checkout_service()
    reset_allocator()
    reset_code_pool()
    reset_purchase_ledger()
    reset_stats_aggregator()
