"""Allocator - binds purchases to recharge codes.

Sells a code for a plan, parks paid purchases when the pool is exhausted,
and resolves parked purchases when an operator assigns a code. Routine
failures are returned as result values; only unexpected storage errors
propagate.
"""

from datetime import datetime, timedelta
from typing import Optional

from recharge_engine.config import get_config
from recharge_engine.logging_config import get_logger
from recharge_engine.models import (
    AllocationResult,
    AssignmentResult,
    BuyerInfo,
    EngineSettings,
    FailureReason,
    PlanDefinition,
    Purchase,
    PurchaseStatus,
    RechargeCode,
)
from recharge_engine.repositories.errors import (
    CodeNotAvailableError,
    CodeNotFoundError,
    PurchaseNotFoundError,
    PurchaseNotPendingError,
)
from recharge_engine.repositories.plan_repository import PlanRepository, get_plan_repository
from recharge_engine.repositories.storage import Store, get_store
from recharge_engine.services.code_pool import CodePool
from recharge_engine.services.time_controller import TimeController, get_time_controller
from recharge_engine.utils.identifiers import generate_payment_id, generate_purchase_id

logger = get_logger(__name__)

# Store errors raised by a pending assignment, mapped to result reasons
ASSIGNMENT_FAILURES = {
    PurchaseNotFoundError: FailureReason.PURCHASE_NOT_FOUND,
    PurchaseNotPendingError: FailureReason.PURCHASE_NOT_FOUND,
    CodeNotFoundError: FailureReason.CODE_NOT_FOUND,
    CodeNotAvailableError: FailureReason.CODE_NOT_AVAILABLE,
}


class Allocator:
    """Hands out codes from the pool, one purchase per code.

    All writes go through the store's compare-and-set operations, so two
    concurrent callers can never receive the same code.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        plan_repository: Optional[PlanRepository] = None,
        time_controller: Optional[TimeController] = None,
        settings: Optional[EngineSettings] = None,
        code_pool: Optional[CodePool] = None,
    ):
        """Initialize allocator.

        Args:
            store: Storage backend (uses global if not provided)
            plan_repository: Plan catalogue (uses global if not provided)
            time_controller: Clock (uses global if not provided)
            settings: Engine settings (uses global configuration if not provided)
            code_pool: Code pool over the same store (built if not provided)
        """
        self._store = store if store is not None else get_store()
        self._plans = plan_repository if plan_repository is not None else get_plan_repository()
        self._clock = time_controller if time_controller is not None else get_time_controller()
        self._settings = settings if settings is not None else get_config().engine_settings
        self._pool = code_pool if code_pool is not None else CodePool(
            store=self._store,
            plan_repository=self._plans,
            time_controller=self._clock,
            settings=self._settings,
        )

    def _new_purchase(
        self,
        plan: PlanDefinition,
        buyer: BuyerInfo,
        now: datetime,
        status: PurchaseStatus,
        code: Optional[RechargeCode] = None,
        failure_reason: Optional[str] = None,
    ) -> Purchase:
        return Purchase(
            id=generate_purchase_id(),
            customer_id=buyer.customer_id,
            plan_id=plan.id,
            recharge_code=code.code if code else "",
            amount=code.value if code else plan.value,
            status=status,
            payment_method=buyer.payment_method,
            payment_id=buyer.payment_id or generate_payment_id(self._clock.get_current_time_millis()),
            created_at=now,
            approved_at=now if code else None,
            expires_at=now + timedelta(days=plan.validity_days),
            reseller_id=buyer.reseller_id or self._settings.default_reseller_id,
            assigned_code_id=code.id if code else None,
            code_delivery_failure_reason=failure_reason,
            customer_data=buyer.customer_data,
        )

    def sell(self, plan_id: str, buyer: BuyerInfo) -> AllocationResult:
        """Sell the oldest available code of a plan to a buyer.

        On a lost race the next available code is tried, until one is
        claimed or the pool is exhausted.

        Args:
            plan_id: Plan to sell
            buyer: Buyer and payment details

        Returns:
            AllocationResult with the sold code and approved purchase, or a
            failure with reason code_unavailable or plan_not_found
        """
        plan = self._plans.find_by_id(plan_id)
        if plan is None:
            logger.warning("sell_plan_not_found", plan_id=plan_id)
            return AllocationResult.failed(FailureReason.PLAN_NOT_FOUND)

        while True:
            now = self._clock.now()
            candidate = self._pool.find_available(plan_id, now)
            if candidate is None:
                logger.info("sell_code_unavailable", plan_id=plan_id, customer_id=buyer.customer_id)
                return AllocationResult.failed(FailureReason.CODE_UNAVAILABLE)

            purchase = self._new_purchase(plan, buyer, now, PurchaseStatus.APPROVED, code=candidate)
            try:
                code, recorded = self._store.claim_code_for_new_purchase(candidate.id, now, purchase)
            except (CodeNotAvailableError, CodeNotFoundError):
                logger.debug("sell_claim_lost", plan_id=plan_id, code_id=candidate.id)
                continue

            logger.info(
                "code_sold",
                plan_id=plan_id,
                code_id=code.id,
                purchase_id=recorded.id,
                customer_id=buyer.customer_id,
            )
            return AllocationResult(success=True, code=code, purchase=recorded)

    def park_pending_delivery(
        self, plan_id: str, buyer: BuyerInfo, reason: Optional[str] = None
    ) -> Purchase:
        """Record a paid purchase that could not get a code.

        Args:
            plan_id: Purchased plan
            buyer: Buyer and payment details
            reason: Failure reason (defaults to the configured one)

        Returns:
            The pending_code_delivery purchase

        Raises:
            PlanNotFoundError: If plan_id does not resolve
        """
        plan = self._plans.get_by_id(plan_id)
        purchase = self._new_purchase(
            plan,
            buyer,
            self._clock.now(),
            PurchaseStatus.PENDING_CODE_DELIVERY,
            failure_reason=reason or self._settings.pending_delivery_reason,
        )
        recorded = self._store.add_purchase(purchase)
        logger.warning(
            "purchase_parked",
            plan_id=plan_id,
            purchase_id=recorded.id,
            reason=recorded.code_delivery_failure_reason,
        )
        return recorded

    def record_rejected_payment(self, plan_id: str, buyer: BuyerInfo) -> Purchase:
        """Record a checkout whose payment was declined.

        Raises:
            PlanNotFoundError: If plan_id does not resolve
        """
        plan = self._plans.get_by_id(plan_id)
        purchase = self._new_purchase(plan, buyer, self._clock.now(), PurchaseStatus.REJECTED)
        return self._store.add_purchase(purchase)

    def assign_code_to_pending(self, purchase_id: str, code_id: str) -> AssignmentResult:
        """Resolve a parked purchase with a specific code.

        Args:
            purchase_id: Purchase in pending_code_delivery
            code_id: Available code to deliver

        Returns:
            AssignmentResult with the sold code and approved purchase, or a
            failure with reason purchase_not_found, code_not_found or
            code_not_available (nothing is mutated on failure)
        """
        try:
            code, purchase = self._store.claim_code_for_pending(
                code_id, purchase_id, self._clock.now()
            )
        except tuple(ASSIGNMENT_FAILURES) as e:
            reason = ASSIGNMENT_FAILURES[type(e)]
            logger.info(
                "assignment_rejected",
                purchase_id=purchase_id,
                code_id=code_id,
                reason=reason.value,
            )
            return AssignmentResult.failed(reason)

        if code.plan_id != purchase.plan_id:
            logger.warning(
                "assigned_code_from_other_plan",
                purchase_id=purchase_id,
                code_id=code_id,
                purchase_plan_id=purchase.plan_id,
                code_plan_id=code.plan_id,
            )
        logger.info("pending_purchase_assigned", purchase_id=purchase_id, code_id=code_id)
        return AssignmentResult(success=True, code=code, purchase=purchase)


_allocator: Optional[Allocator] = None


def get_allocator() -> Allocator:
    """Get global allocator instance."""
    global _allocator
    if _allocator is None:
        _allocator = Allocator()
    return _allocator


def reset_allocator() -> None:
    """Reset global allocator instance (useful for testing)."""
    global _allocator
    _allocator = None
