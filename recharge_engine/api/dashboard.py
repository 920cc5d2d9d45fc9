"""Dashboard API - read-side figures for the admin panel."""

from fastapi import APIRouter

from recharge_engine.models import DashboardStats
from recharge_engine.services.stats import get_stats_aggregator

router = APIRouter(tags=["Dashboard"], prefix="/dashboard")


@router.get("/stats", response_model=DashboardStats, summary="Dashboard stats")
def dashboard_stats() -> DashboardStats:
    """Revenue, today's revenue, purchases expiring today, the pending
    delivery backlog and code/plan counts."""
    return get_stats_aggregator().get_stats()
