"""
诊断API路由 - 配置、数据库与退款资格检查
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from application.dtos.payments import EligibilityView
from application.services.payment_service import PaymentService
from api.dependencies import get_current_client, get_payment_service
from core.config import settings
from core.logging_config import get_logger
from core.response import success_response, Response as ApiResponse
from core.settings import payment_settings
from domain.payment.entity import TransactionType


router = APIRouter(
    prefix="/diagnostics",
    tags=["诊断"],
    dependencies=[Depends(get_current_client)],
)
logger = get_logger(__name__)


def mask_credential(value: Optional[str], visible: int = 4) -> Optional[str]:
    """只保留前几位，例如 abcd****"""
    if not value:
        return None
    return value[:visible] + "****"


@router.get("/config-test", summary="网关配置检查")
async def config_test():
    anet = payment_settings.authorize_net
    data = {
        "provider": payment_settings.provider,
        "environment": anet.environment,
        "endpoint": anet.endpoint,
        "configured": anet.configured,
        "api_login_id": mask_credential(anet.api_login_id),
        "transaction_key": mask_credential(anet.transaction_key),
        "settlement_window_hours": payment_settings.settlement.window_hours,
        "timeout_seconds": payment_settings.timeouts.total,
        "debug": settings.DEBUG,
    }
    return success_response(data=data)


@router.get("/database-test", summary="数据库连通性检查")
async def database_test(service: PaymentService = Depends(get_payment_service)):
    try:
        counts = await service.ledger_counts()
    except SQLAlchemyError as e:
        logger.error("database_check_failed", error=str(e))
        return success_response(
            data={"connected": False, "error": type(e).__name__},
            message="Database unreachable",
        )
    return success_response(data={"connected": True, **counts})


@router.get(
    "/transaction-refund-check/{transaction_ref}",
    summary="交易退款资格检查",
    response_model=ApiResponse[EligibilityView],
)
async def transaction_refund_check(
    transaction_ref: str,
    service: PaymentService = Depends(get_payment_service),
):
    """返回交易年龄、能否退款、是否应改用 void 以及推荐操作"""
    view = await service.evaluate(transaction_ref, TransactionType.REFUND)
    return success_response(data=view)
