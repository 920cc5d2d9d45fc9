"""In-memory store for the code pool and the purchase ledger.

Thread-safe dictionary-based storage. One re-entrant lock guards both
collections so composite operations (claim a code and record the purchase)
happen as a single unit. Reads return copies.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from recharge_engine.models.purchase import Purchase, PurchaseStatus, ReminderMilestone
from recharge_engine.models.recharge_code import CodeStatus, RechargeCode
from recharge_engine.repositories.errors import (
    CodeNotAvailableError,
    CodeNotFoundError,
    DuplicateRecordError,
    PurchaseNotFoundError,
    PurchaseNotPendingError,
)
from recharge_engine.state_logger import log_purchase_recorded, log_reminder_marked_sent
from recharge_engine.utils.calendar import ensure_utc


def _is_claimable(code: RechargeCode, now: datetime) -> bool:
    return code.status == CodeStatus.AVAILABLE and ensure_utc(code.expires_at) > ensure_utc(now)


def _check_claimable(code: RechargeCode, sold_at: datetime) -> None:
    if code.status != CodeStatus.AVAILABLE:
        raise CodeNotAvailableError(f"Code {code.id} is {code.status.value}")
    if not _is_claimable(code, sold_at):
        raise CodeNotAvailableError(f"Code {code.id} is past its expiry date")


class InMemoryStore:
    """In-memory storage for recharge codes and purchases.

    Codes are indexed by id and by token; purchases by id.
    """

    def __init__(self):
        """Initialize store with empty storage."""
        self._codes: Dict[str, RechargeCode] = {}
        self._code_ids_by_token: Dict[str, str] = {}
        self._purchases: Dict[str, Purchase] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Code pool
    # ------------------------------------------------------------------

    def add_codes(self, codes: List[RechargeCode]) -> List[RechargeCode]:
        """Add codes, skipping tokens already in the pool or repeated in the batch.

        Args:
            codes: New code records

        Returns:
            Copies of the codes actually inserted
        """
        inserted = []
        with self._lock:
            for code in codes:
                if code.code in self._code_ids_by_token:
                    continue
                if code.id in self._codes:
                    raise DuplicateRecordError(f"Code with id '{code.id}' already exists")
                stored = code.model_copy(deep=True)
                self._codes[stored.id] = stored
                self._code_ids_by_token[stored.code] = stored.id
                inserted.append(stored.model_copy(deep=True))
        return inserted

    def find_code(self, code_id: str) -> Optional[RechargeCode]:
        """Find code by id (returns None if not found)."""
        with self._lock:
            code = self._codes.get(code_id)
            return code.model_copy(deep=True) if code else None

    def code_exists(self, token: str) -> bool:
        """Check whether a code token is already in the pool."""
        with self._lock:
            return token in self._code_ids_by_token

    def find_available_code(self, plan_id: str, now: datetime) -> Optional[RechargeCode]:
        """Oldest available, unexpired code for a plan, or None."""
        with self._lock:
            candidates = [
                c for c in self._codes.values()
                if c.plan_id == plan_id and _is_claimable(c, now)
            ]
            if not candidates:
                return None
            oldest = min(candidates, key=lambda c: c.created_at)
            return oldest.model_copy(deep=True)

    def count_codes(self, plan_id: Optional[str] = None, status: Optional[CodeStatus] = None) -> int:
        with self._lock:
            return sum(
                1 for c in self._codes.values()
                if (plan_id is None or c.plan_id == plan_id)
                and (status is None or c.status == status)
            )

    def get_codes_by_status(self, status: CodeStatus, plan_id: Optional[str] = None) -> List[RechargeCode]:
        with self._lock:
            return [
                c.model_copy(deep=True) for c in self._codes.values()
                if c.status == status and (plan_id is None or c.plan_id == plan_id)
            ]

    def list_codes(
        self,
        plan_id: Optional[str] = None,
        status: Optional[CodeStatus] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RechargeCode], int]:
        """Filtered page of codes, newest first.

        Returns:
            (codes on the page, total matching count)
        """
        needle = search.upper() if search else None
        with self._lock:
            matching = [
                c for c in self._codes.values()
                if (plan_id is None or c.plan_id == plan_id)
                and (status is None or c.status == status)
                and (needle is None or needle in c.code)
            ]
            matching.sort(key=lambda c: c.created_at, reverse=True)
            page = matching[offset:offset + limit]
            return [c.model_copy(deep=True) for c in page], len(matching)

    def expire_codes(self, now: datetime) -> List[RechargeCode]:
        """Move available codes whose horizon has passed to expired."""
        now = ensure_utc(now)
        expired = []
        with self._lock:
            for code in self._codes.values():
                if code.status == CodeStatus.AVAILABLE and ensure_utc(code.expires_at) <= now:
                    code.mark_expired()
                    expired.append(code.model_copy(deep=True))
        return expired

    # ------------------------------------------------------------------
    # Purchase ledger
    # ------------------------------------------------------------------

    def add_purchase(self, purchase: Purchase) -> Purchase:
        """Add a purchase to the ledger.

        Raises:
            DuplicateRecordError: If the purchase id already exists
        """
        with self._lock:
            if purchase.id in self._purchases:
                raise DuplicateRecordError(f"Purchase with id '{purchase.id}' already exists")
            self._purchases[purchase.id] = purchase.model_copy(deep=True)
        log_purchase_recorded(
            purchase_id=purchase.id,
            plan_id=purchase.plan_id,
            status=purchase.status.value,
            reason=purchase.code_delivery_failure_reason,
        )
        return purchase.model_copy(deep=True)

    def find_purchase(self, purchase_id: str) -> Optional[Purchase]:
        """Find purchase by id (returns None if not found)."""
        with self._lock:
            purchase = self._purchases.get(purchase_id)
            return purchase.model_copy(deep=True) if purchase else None

    def get_purchases_by_status(self, status: PurchaseStatus) -> List[Purchase]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._purchases.values() if p.status == status]

    def count_purchases(self, status: Optional[PurchaseStatus] = None) -> int:
        with self._lock:
            return sum(1 for p in self._purchases.values() if status is None or p.status == status)

    def list_purchases(
        self,
        status: Optional[PurchaseStatus] = None,
        customer_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        reseller_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Purchase], int]:
        """Filtered page of purchases, newest first.

        Returns:
            (purchases on the page, total matching count)
        """
        with self._lock:
            matching = [
                p for p in self._purchases.values()
                if (status is None or p.status == status)
                and (customer_id is None or p.customer_id == customer_id)
                and (plan_id is None or p.plan_id == plan_id)
                and (reseller_id is None or p.reseller_id == reseller_id)
            ]
            matching.sort(key=lambda p: p.created_at, reverse=True)
            page = matching[offset:offset + limit]
            return [p.model_copy(deep=True) for p in page], len(matching)

    # ------------------------------------------------------------------
    # Atomic composite operations
    # ------------------------------------------------------------------

    def claim_code_for_new_purchase(
        self, code_id: str, sold_at: datetime, purchase: Purchase
    ) -> Tuple[RechargeCode, Purchase]:
        """Mark a code sold and record its purchase in one step.

        Raises:
            CodeNotFoundError: If the code id is unknown
            CodeNotAvailableError: If the code is no longer available or past its expiry date
            DuplicateRecordError: If the purchase id already exists
        """
        with self._lock:
            code = self._codes.get(code_id)
            if code is None:
                raise CodeNotFoundError(f"Code not found: {code_id}")
            _check_claimable(code, sold_at)
            if purchase.id in self._purchases:
                raise DuplicateRecordError(f"Purchase with id '{purchase.id}' already exists")

            code.mark_sold(sold_at)
            self._purchases[purchase.id] = purchase.model_copy(deep=True)
            claimed = code.model_copy(deep=True)

        log_purchase_recorded(
            purchase_id=purchase.id,
            plan_id=purchase.plan_id,
            status=purchase.status.value,
            code_id=code_id,
        )
        return claimed, purchase.model_copy(deep=True)

    def claim_code_for_pending(
        self, code_id: str, purchase_id: str, sold_at: datetime
    ) -> Tuple[RechargeCode, Purchase]:
        """Mark a code sold and approve a parked purchase with it in one step.

        Raises:
            PurchaseNotFoundError: If the purchase id is unknown
            PurchaseNotPendingError: If the purchase is not waiting for a code
            CodeNotFoundError: If the code id is unknown
            CodeNotAvailableError: If the code is not available or past its expiry date
        """
        with self._lock:
            purchase = self._purchases.get(purchase_id)
            if purchase is None:
                raise PurchaseNotFoundError(f"Purchase not found: {purchase_id}")
            if purchase.status != PurchaseStatus.PENDING_CODE_DELIVERY:
                raise PurchaseNotPendingError(f"Purchase {purchase_id} is {purchase.status.value}")

            code = self._codes.get(code_id)
            if code is None:
                raise CodeNotFoundError(f"Code not found: {code_id}")
            _check_claimable(code, sold_at)

            code.mark_sold(sold_at)
            purchase.approve(code.id, code.code, sold_at, reason="manual_assignment")
            return code.model_copy(deep=True), purchase.model_copy(deep=True)

    def mark_reminder_sent(
        self,
        purchase_id: str,
        milestone: ReminderMilestone,
        sent_at: datetime,
        message_id: Optional[str] = None,
    ) -> bool:
        """Latch a reminder milestone if it is still unsent.

        Returns:
            True if this call set the latch, False if it was already set
            or the purchase is not approved

        Raises:
            PurchaseNotFoundError: If the purchase id is unknown
        """
        with self._lock:
            purchase = self._purchases.get(purchase_id)
            if purchase is None:
                raise PurchaseNotFoundError(f"Purchase not found: {purchase_id}")
            if purchase.status != PurchaseStatus.APPROVED:
                return False
            if purchase.expiry_reminders.is_sent(milestone):
                return False
            purchase.expiry_reminders.mark_sent(milestone, sent_at, message_id)

        log_reminder_marked_sent(
            purchase_id=purchase_id,
            milestone=milestone.value,
            sent_at=sent_at,
            message_id=message_id,
        )
        return True

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Clear all codes and purchases.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._codes.clear()
            self._code_ids_by_token.clear()
            self._purchases.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Record counts per collection."""
        with self._lock:
            return {
                "total_codes": len(self._codes),
                "total_purchases": len(self._purchases),
                "unique_plans": len({c.plan_id for c in self._codes.values()}),
            }

    def __repr__(self) -> str:
        with self._lock:
            return f"InMemoryStore(codes={len(self._codes)}, purchases={len(self._purchases)})"
