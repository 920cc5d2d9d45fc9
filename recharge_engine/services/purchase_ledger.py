"""Purchase Ledger - read model over purchase records.

Writes happen through the Allocator and the Reminder Scheduler; this service
only answers queries.
"""

from typing import List, Optional, Tuple

from recharge_engine.models import Purchase, PurchaseStatus
from recharge_engine.repositories.errors import PurchaseNotFoundError
from recharge_engine.repositories.storage import Store, get_store


class PurchaseLedger:
    """Queries over purchases and their reminder state."""

    def __init__(self, store: Optional[Store] = None):
        self._store = store if store is not None else get_store()

    def get_purchase(self, purchase_id: str) -> Purchase:
        """Get purchase by id.

        Raises:
            PurchaseNotFoundError: If purchase not found
        """
        purchase = self._store.find_purchase(purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(f"Purchase not found: {purchase_id}")
        return purchase

    def find_purchase(self, purchase_id: str) -> Optional[Purchase]:
        """Find purchase by id (returns None if not found)."""
        return self._store.find_purchase(purchase_id)

    def list_pending_deliveries(self) -> List[Purchase]:
        """Paid purchases waiting for a code, oldest first."""
        pending = self._store.get_purchases_by_status(PurchaseStatus.PENDING_CODE_DELIVERY)
        return sorted(pending, key=lambda p: p.created_at)

    def list_approved(self) -> List[Purchase]:
        return self._store.get_purchases_by_status(PurchaseStatus.APPROVED)

    def count_pending_deliveries(self) -> int:
        return self._store.count_purchases(PurchaseStatus.PENDING_CODE_DELIVERY)

    def list_purchases(
        self,
        status: Optional[PurchaseStatus] = None,
        customer_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        reseller_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Purchase], int]:
        """Filtered page of purchases, newest first, and the total matching count."""
        return self._store.list_purchases(
            status=status,
            customer_id=customer_id,
            plan_id=plan_id,
            reseller_id=reseller_id,
            offset=offset,
            limit=limit,
        )


_ledger: Optional[PurchaseLedger] = None


def get_purchase_ledger() -> PurchaseLedger:
    global _ledger
    if _ledger is None:
        _ledger = PurchaseLedger()
    return _ledger


def reset_purchase_ledger() -> None:
    global _ledger
    _ledger = None
