"""Inventory API - plan catalogue and the code pool.

Implements:
- GET /plans - List plans
- POST /plans/{plan_id}/codes/import - Replenish a plan's pool
- GET /plans/{plan_id}/codes/counts - Code counts per status
- GET /codes - Paged code listing with filters
"""

import math
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from recharge_engine.logging_config import get_logger
from recharge_engine.models import CodeStatus, PlanDefinition
from recharge_engine.models.api_request import ImportCodesRequest
from recharge_engine.models.api_response import CodeCountsResponse, CodePage, ImportCodesResponse
from recharge_engine.repositories.plan_repository import PlanNotFoundError, get_plan_repository
from recharge_engine.services.code_pool import get_code_pool

logger = get_logger(__name__)
router = APIRouter(tags=["Inventory"])


def plan_not_found(plan_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": "plan_not_found",
            "message": f"Plan '{plan_id}' does not exist in the catalogue",
        },
    )


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


@router.get("/plans", response_model=List[PlanDefinition], summary="List plans")
def list_plans(active_only: bool = Query(False, description="Only plans on sale")) -> List[PlanDefinition]:
    repository = get_plan_repository()
    return repository.get_active() if active_only else repository.get_all()


@router.post(
    "/plans/{plan_id}/codes/import",
    response_model=ImportCodesResponse,
    status_code=201,
    summary="Import recharge codes",
)
def import_codes(plan_id: str, request: ImportCodesRequest) -> ImportCodesResponse:
    """Replenish a plan's pool.

    Codes are upper-cased; blanks and duplicates are skipped.

    Raises:
        404: Plan not found
    """
    logger.info("import_codes_request", plan_id=plan_id, submitted=len(request.codes))
    try:
        result = get_code_pool().import_codes(plan_id, request.codes)
    except PlanNotFoundError:
        logger.warning("plan_not_found", plan_id=plan_id)
        raise plan_not_found(plan_id)

    return ImportCodesResponse(
        plan_id=plan_id,
        inserted_count=result.inserted_count,
        skipped_count=result.skipped_count,
        total_count=result.total_count,
        codes=result.codes,
    )


@router.get(
    "/plans/{plan_id}/codes/counts",
    response_model=CodeCountsResponse,
    summary="Code counts per status",
)
def code_counts(plan_id: str) -> CodeCountsResponse:
    if not get_plan_repository().exists(plan_id):
        raise plan_not_found(plan_id)
    counts = get_code_pool().status_counts(plan_id)
    return CodeCountsResponse(plan_id=plan_id, **counts)


@router.get("/codes", response_model=CodePage, summary="List codes")
def list_codes(
    plan_id: Optional[str] = None,
    status: Optional[CodeStatus] = None,
    search: Optional[str] = Query(None, description="Substring of the code"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
) -> CodePage:
    items, total = get_code_pool().list_codes(
        plan_id=plan_id,
        status=status,
        search=search,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return CodePage(items=items, total=total, page=page, limit=limit, total_pages=total_pages(total, limit))
