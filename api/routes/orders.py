"""
订单查询API路由
"""
from fastapi import APIRouter, Depends, Query

from application.dtos.payments import OrderView, TransactionView
from application.services.payment_service import PaymentService
from api.dependencies import get_current_client, get_payment_service
from core.config import settings
from core.response import (
    success_response,
    paginated_response,
    Response as ApiResponse,
    PaginatedData,
)


router = APIRouter(
    prefix="/orders",
    tags=["订单查询"],
    dependencies=[Depends(get_current_client)],
)


@router.get("", summary="订单列表", response_model=ApiResponse[PaginatedData[OrderView]])
async def list_orders(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    service: PaymentService = Depends(get_payment_service),
):
    """按创建时间倒序分页"""
    items, total = await service.list_orders(page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderView])
async def get_order(
    order_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    """order_id 可以是订单ID或订单号，返回脱敏支付方式与全部交易"""
    order = await service.get_order(order_id)
    return success_response(data=order)


@router.get(
    "/{order_id}/transactions",
    summary="订单交易记录",
    response_model=ApiResponse[list[TransactionView]],
)
async def list_order_transactions(
    order_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    transactions = await service.list_order_transactions(order_id)
    return success_response(data=transactions)
