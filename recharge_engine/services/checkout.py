"""Checkout orchestration - turns a payment result into a resolved purchase.

A paid checkout always ends either approved with a code or parked as
pending_code_delivery; a declined one is recorded as rejected. Customer
messages are sent best-effort afterwards.
"""

from typing import Optional

from recharge_engine.config import get_config
from recharge_engine.logging_config import get_logger
from recharge_engine.models import (
    AssignmentResult,
    BuyerInfo,
    CheckoutOutcome,
    FailureReason,
    PaymentResult,
    Purchase,
)
from recharge_engine.repositories.plan_repository import PlanRepository, get_plan_repository
from recharge_engine.services.allocator import Allocator, get_allocator
from recharge_engine.services.messages import format_pending_code, format_purchase_confirmation
from recharge_engine.services.whatsapp import ZApiTransport, get_notification_transport

logger = get_logger(__name__)


class CheckoutService:
    """Completes checkouts and operator deliveries, then notifies the buyer."""

    def __init__(
        self,
        allocator: Optional[Allocator] = None,
        plan_repository: Optional[PlanRepository] = None,
        transport: Optional[ZApiTransport] = None,
        company_name: Optional[str] = None,
    ):
        self._allocator = allocator if allocator is not None else get_allocator()
        self._plans = plan_repository if plan_repository is not None else get_plan_repository()
        self._transport = transport if transport is not None else get_notification_transport()
        self._company_name = company_name or get_config().company_name

    def complete_checkout(self, plan_id: str, buyer: BuyerInfo, payment: PaymentResult) -> CheckoutOutcome:
        """Resolve a checkout once the payment result is known.

        Args:
            plan_id: Purchased plan
            buyer: Buyer details
            payment: Payment gateway result

        Returns:
            CheckoutOutcome with status approved, pending_code_delivery or rejected

        Raises:
            PlanNotFoundError: If plan_id does not resolve
        """
        plan = self._plans.get_by_id(plan_id)
        if payment.payment_id:
            buyer = buyer.model_copy(update={"payment_id": payment.payment_id})

        if not payment.success:
            purchase = self._allocator.record_rejected_payment(plan_id, buyer)
            logger.info("checkout_payment_rejected", plan_id=plan_id, purchase_id=purchase.id, error=payment.error)
            return CheckoutOutcome(
                status=purchase.status.value,
                purchase=purchase,
                message=payment.error or "Pagamento recusado",
            )

        result = self._allocator.sell(plan_id, buyer)
        if result.success:
            purchase = result.purchase
            self._notify(purchase, format_purchase_confirmation(
                purchase.customer_data.name, plan.name, purchase.recharge_code, self._company_name
            ))
            return CheckoutOutcome(
                status=purchase.status.value,
                purchase=purchase,
                recharge_code=purchase.recharge_code,
                message="Compra aprovada",
            )

        if result.reason != FailureReason.CODE_UNAVAILABLE:
            # The plan was resolved above, so only exhaustion is expected here
            raise RuntimeError(f"Unexpected allocation failure: {result.reason}")

        purchase = self._allocator.park_pending_delivery(plan_id, buyer)
        self._notify(purchase, format_pending_code(
            purchase.customer_data.name, plan.name, self._company_name
        ))
        return CheckoutOutcome(
            status=purchase.status.value,
            purchase=purchase,
            message="Pagamento aprovado, código será entregue em breve",
        )

    def deliver_pending(self, purchase_id: str, code_id: str) -> AssignmentResult:
        """Operator path: assign a code to a parked purchase and notify the buyer."""
        result = self._allocator.assign_code_to_pending(purchase_id, code_id)
        if result.success:
            purchase = result.purchase
            plan = self._plans.find_by_id(purchase.plan_id)
            plan_name = plan.name if plan else purchase.plan_id
            self._notify(purchase, format_purchase_confirmation(
                purchase.customer_data.name, plan_name, purchase.recharge_code, self._company_name
            ))
        return result

    def _notify(self, purchase: Purchase, message: str) -> None:
        if not self._transport.is_configured:
            logger.debug("customer_message_skipped", purchase_id=purchase.id, reason="transport_unconfigured")
            return
        try:
            result = self._transport.send_message(purchase.customer_data.phone, message)
        except Exception:
            logger.exception("customer_message_error", purchase_id=purchase.id)
            return
        if result.success:
            logger.info("customer_message_sent", purchase_id=purchase.id, message_id=result.message_id)
        else:
            logger.warning("customer_message_failed", purchase_id=purchase.id, error=result.error)


_checkout_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service


def reset_checkout_service() -> None:
    global _checkout_service
    _checkout_service = None
