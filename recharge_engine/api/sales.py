"""Sales API - checkout, direct sale and the purchase ledger.

Implements:
- POST /checkout - Resolve a checkout from a payment result
- POST /plans/{plan_id}/sell - Sell a code (payment already confirmed)
- GET /purchases - Paged purchase listing with filters
- GET /purchases/pending - Purchases waiting for a code
- GET /purchases/{purchase_id} - Purchase details
- POST /purchases/{purchase_id}/assign - Deliver a code to a parked purchase
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from recharge_engine.api.inventory import plan_not_found, total_pages
from recharge_engine.logging_config import get_logger
from recharge_engine.models import (
    AllocationResult,
    AssignmentResult,
    BuyerInfo,
    CheckoutOutcome,
    FailureReason,
    Purchase,
    PurchaseStatus,
)
from recharge_engine.models.api_request import AssignCodeRequest, CheckoutRequest, SellRequest
from recharge_engine.models.api_response import PurchasePage
from recharge_engine.repositories.plan_repository import PlanNotFoundError
from recharge_engine.services.allocator import get_allocator
from recharge_engine.services.checkout import get_checkout_service
from recharge_engine.services.purchase_ledger import get_purchase_ledger
from recharge_engine.utils.identifiers import generate_customer_id

logger = get_logger(__name__)
router = APIRouter(tags=["Sales"])

ASSIGNMENT_STATUS_CODES = {
    FailureReason.PURCHASE_NOT_FOUND: 404,
    FailureReason.CODE_NOT_FOUND: 404,
    FailureReason.CODE_NOT_AVAILABLE: 409,
}


@router.post("/checkout", response_model=CheckoutOutcome, summary="Complete checkout")
def checkout(request: CheckoutRequest) -> CheckoutOutcome:
    """Resolve a checkout once the payment gateway has answered.

    A paid checkout ends approved with a code, or parked as
    pending_code_delivery when the plan's pool is empty.

    Raises:
        404: Plan not found
    """
    logger.info(
        "checkout_request",
        plan_id=request.plan_id,
        payment_success=request.payment.success,
        payment_method=request.payment_method.value,
    )
    buyer = BuyerInfo(
        customer_id=request.customer_id or generate_customer_id(),
        customer_data=request.customer,
        payment_method=request.payment_method,
        payment_id=request.payment.payment_id,
        reseller_id=request.reseller_id,
    )
    try:
        outcome = get_checkout_service().complete_checkout(request.plan_id, buyer, request.payment)
    except PlanNotFoundError:
        logger.warning("plan_not_found", plan_id=request.plan_id)
        raise plan_not_found(request.plan_id)

    logger.info("checkout_completed", purchase_id=outcome.purchase.id, status=outcome.status)
    return outcome


@router.post("/plans/{plan_id}/sell", response_model=AllocationResult, summary="Sell a code")
def sell(plan_id: str, request: SellRequest) -> AllocationResult:
    """Sell the oldest available code of a plan.

    The payment is already confirmed, so an exhausted pool parks the purchase
    as pending_code_delivery and answers success false, reason
    code_unavailable, with the parked purchase. It is not an HTTP error.

    Raises:
        404: Plan not found
    """
    buyer = BuyerInfo(
        customer_id=request.customer_id or generate_customer_id(),
        customer_data=request.customer,
        payment_method=request.payment_method,
        payment_id=request.payment_id,
        reseller_id=request.reseller_id,
    )
    allocator = get_allocator()
    result = allocator.sell(plan_id, buyer)
    if result.reason == FailureReason.PLAN_NOT_FOUND:
        raise plan_not_found(plan_id)
    if result.reason == FailureReason.CODE_UNAVAILABLE:
        parked = allocator.park_pending_delivery(plan_id, buyer)
        return AllocationResult(success=False, reason=result.reason, purchase=parked)
    return result


@router.get("/purchases", response_model=PurchasePage, summary="List purchases")
def list_purchases(
    status: Optional[PurchaseStatus] = None,
    customer_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    reseller_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
) -> PurchasePage:
    items, total = get_purchase_ledger().list_purchases(
        status=status,
        customer_id=customer_id,
        plan_id=plan_id,
        reseller_id=reseller_id,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return PurchasePage(items=items, total=total, page=page, limit=limit, total_pages=total_pages(total, limit))


@router.get("/purchases/pending", response_model=List[Purchase], summary="Pending code deliveries")
def list_pending_deliveries() -> List[Purchase]:
    return get_purchase_ledger().list_pending_deliveries()


@router.get("/purchases/{purchase_id}", response_model=Purchase, summary="Get purchase")
def get_purchase(purchase_id: str) -> Purchase:
    purchase = get_purchase_ledger().find_purchase(purchase_id)
    if purchase is None:
        raise HTTPException(
            status_code=404,
            detail={
                "error": FailureReason.PURCHASE_NOT_FOUND.value,
                "message": f"Purchase '{purchase_id}' not found",
            },
        )
    return purchase


@router.post(
    "/purchases/{purchase_id}/assign",
    response_model=AssignmentResult,
    summary="Assign code to pending purchase",
)
def assign_code(purchase_id: str, request: AssignCodeRequest) -> AssignmentResult:
    """Deliver a specific code to a purchase parked as pending_code_delivery.

    Raises:
        404: Purchase not found (or no longer pending), or code not found
        409: Code not available
    """
    logger.info("assign_code_request", purchase_id=purchase_id, code_id=request.code_id)
    result = get_checkout_service().deliver_pending(purchase_id, request.code_id)
    if not result.success:
        raise HTTPException(
            status_code=ASSIGNMENT_STATUS_CODES[result.reason],
            detail={
                "error": result.reason.value,
                "message": f"Cannot assign code '{request.code_id}' to purchase '{purchase_id}'",
            },
        )
    return result
