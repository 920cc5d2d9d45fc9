"""Plan catalogue and persistence for codes and purchases."""

from recharge_engine.repositories.errors import (
    CodeNotAvailableError,
    CodeNotFoundError,
    DuplicateRecordError,
    PurchaseNotFoundError,
    PurchaseNotPendingError,
    StoreError,
)
from recharge_engine.repositories.memory_store import InMemoryStore
from recharge_engine.repositories.plan_repository import (
    PlanNotFoundError,
    PlanRepository,
    get_plan_repository,
    reset_plan_repository,
)
from recharge_engine.repositories.sql_store import SqlStore
from recharge_engine.repositories.storage import (
    Store,
    create_store,
    get_store,
    reset_store,
    set_store,
)

__all__ = [
    "CodeNotAvailableError",
    "CodeNotFoundError",
    "DuplicateRecordError",
    "InMemoryStore",
    "PlanNotFoundError",
    "PlanRepository",
    "PurchaseNotFoundError",
    "PurchaseNotPendingError",
    "SqlStore",
    "Store",
    "StoreError",
    "create_store",
    "get_plan_repository",
    "get_store",
    "reset_plan_repository",
    "reset_store",
    "set_store",
]
