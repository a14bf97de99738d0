"""
支付API路由 - FastAPI表现层

只做参数解析与响应封装；资格判定、记账与网关调用全部在应用服务中完成。
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from application.dtos.payments import (
    CaptureRequest,
    ExecuteParams,
    OrderView,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
)
from application.services.payment_service import PaymentService
from api.dependencies import get_current_client, get_payment_service
from core.response import success_response, Response as ApiResponse


router = APIRouter(
    prefix="/payments",
    tags=["支付交易"],
    dependencies=[Depends(get_current_client)],
)


@router.post(
    "/purchase",
    summary="授权并扣款",
    response_model=ApiResponse[PaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def purchase(
    request: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    一步完成授权与扣款

    - **idempotency_key**: 必填；时间窗口内重复提交返回 409
    - **card**: 完整卡数据仅用于本次网关调用，只持久化后四位与有效期
    """
    result = await service.purchase(request)
    return success_response(data=result, message="Payment captured")


@router.post(
    "/authorize",
    summary="仅授权",
    response_model=ApiResponse[PaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def authorize(
    request: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """冻结资金，之后通过 capture 扣款或 void 撤销"""
    result = await service.authorize(request)
    return success_response(data=result, message="Payment authorized")


@router.post("/orders", summary="创建订单（不发起扣款）", response_model=ApiResponse[OrderView],
             status_code=status.HTTP_201_CREATED)
async def create_order(
    request: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """只记录订单与脱敏卡信息；幂等键不在此占用，留给之后的 purchase/authorize"""
    order = await service.create_order(request)
    return success_response(data=order, message="Order created")


@router.post("/capture/{transaction_ref}", summary="扣取授权资金", response_model=ApiResponse[PaymentResult])
async def capture(
    transaction_ref: str,
    request: Optional[CaptureRequest] = None,
    service: PaymentService = Depends(get_payment_service),
):
    """不传 amount 时扣取剩余全部授权金额"""
    result = await service.capture(transaction_ref, request)
    return success_response(data=result, message="Payment captured")


@router.post("/void/{transaction_ref}", summary="撤销未结算交易", response_model=ApiResponse[PaymentResult])
async def void(
    transaction_ref: str,
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.void(transaction_ref)
    return success_response(data=result, message="Transaction voided")


@router.post("/refund/{transaction_ref}", summary="退款", response_model=ApiResponse[PaymentResult])
async def refund(
    transaction_ref: str,
    request: RefundRequest,
    force: bool = Query(False, description="忽略结算窗口判断，直接交由网关裁决"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    对已结算的 Purchase/Capture 退款

    结算窗口内默认拒绝并建议改用 void；force=true 时仍交由网关裁决。
    """
    result = await service.refund(transaction_ref, request, force=force)
    return success_response(data=result, message="Refund processed")


@router.post(
    "/orders/{order_id}/operations/{operation}",
    summary="对订单内交易执行后续操作",
    response_model=ApiResponse[PaymentResult],
)
async def execute_operation(
    order_id: str,
    operation: str,
    params: ExecuteParams,
    service: PaymentService = Depends(get_payment_service),
):
    """operation 取值：Capture / Void / Refund"""
    result = await service.execute(order_id, operation, params)
    return success_response(data=result, message=f"{operation} processed")
