"""
Return endpoints

Customers create, edit and cancel their own Pending returns; admins approve
(which triggers the refund) or reject them.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from ...core.security import get_current_admin, get_current_user
from ...database.return_db import ReturnOrder
from ...models.returns import (
    AdminApproveRequest,
    AdminRejectRequest,
    ApproveReturnResponse,
    CreateReturnRequest,
    ReturnListResponse,
    ReturnResponse,
    UpdateReturnRequest,
)
from ...models.status import ReturnStatus
from ...services.return_service import ReturnService, get_return_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/returns", tags=["returns"])


def to_response(return_order: ReturnOrder) -> ReturnResponse:
    return ReturnResponse.model_validate(return_order)


@router.post("", response_model=ReturnResponse, status_code=status.HTTP_201_CREATED)
async def create_return(
    request: CreateReturnRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    return to_response(await service.create_return(current_user["user_id"], request))


@router.get("", response_model=ReturnListResponse)
async def list_my_returns(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    returns, next_cursor = await service.list_for_user(current_user["user_id"], limit, cursor)
    return ReturnListResponse(returns=[to_response(r) for r in returns], next_cursor=next_cursor)


@router.get("/admin/list", response_model=ReturnListResponse)
async def admin_list_returns(
    return_status: ReturnStatus = Query(ReturnStatus.PENDING, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = None,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: ReturnService = Depends(get_return_service),
):
    returns, next_cursor = await service.list_by_status(return_status, limit, cursor)
    return ReturnListResponse(returns=[to_response(r) for r in returns], next_cursor=next_cursor)


@router.get("/order/{order_number:path}", response_model=ReturnListResponse)
async def list_returns_for_order(
    order_number: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    """Returns raised against an order; customers only see their own"""
    is_admin = current_user["role"] in ("admin", "super_admin")
    returns = await service.list_for_order(order_number, None if is_admin else current_user["user_id"])
    return ReturnListResponse(returns=[to_response(r) for r in returns])


@router.get("/{return_id}", response_model=ReturnResponse)
async def get_return(
    return_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    owner = None if current_user["role"] in ("admin", "super_admin") else current_user["user_id"]
    return to_response(await service.get(return_id, owner))


@router.patch("/{return_id}", response_model=ReturnResponse)
async def update_return(
    return_id: str,
    request: UpdateReturnRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    updated = await service.update_by_user(return_id, current_user["user_id"], request.reason, request.images)
    return to_response(updated)


@router.post("/{return_id}/cancel", response_model=ReturnResponse)
async def cancel_return(
    return_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: ReturnService = Depends(get_return_service),
):
    return to_response(await service.cancel(return_id, current_user["user_id"]))


@router.post("/{return_id}/approve", response_model=ApproveReturnResponse)
async def approve_return(
    return_id: str,
    request: Optional[AdminApproveRequest] = None,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: ReturnService = Depends(get_return_service),
):
    """
    Approve a Pending return and refund it through the payment gateway.

    The approval sticks even when the refund fails; the response then
    carries the refund error with a non-2xx status.
    """
    request = request or AdminApproveRequest()
    result = await service.approve(return_id, admin["user_id"], request.admin_remarks,
                                   request.use_instant_refund)

    body = ApproveReturnResponse(
        success=result.success,
        return_order=to_response(result.return_order),
        refund_id=result.return_order.refund_id,
        refund_status=result.return_order.refund_status,
        error=result.error,
    )
    if not result.success:
        return JSONResponse(status_code=result.status_code, content=body.model_dump(mode="json"))
    return body


@router.post("/{return_id}/reject", response_model=ReturnResponse)
async def reject_return(
    return_id: str,
    request: Optional[AdminRejectRequest] = None,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: ReturnService = Depends(get_return_service),
):
    remarks = request.admin_remarks if request else None
    return to_response(await service.reject(return_id, admin["user_id"], remarks))
