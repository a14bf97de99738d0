"""
API依赖项 - 认证与服务装配（组合根）
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentService
from application.services.token_service import TokenService
from core.exceptions import UnauthorizedException
from infrastructure.external.payments import get_payment_gateway as build_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token issued by /api/v1/auth/token",
    auto_error=False,
)

# 网关客户端持有连接池（沙箱网关持有内存状态），进程内共享一个实例
_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway


async def shutdown_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None


def get_token_service() -> TokenService:
    return TokenService()


async def get_payment_service(
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(gateway=gateway, uow_factory=SQLAlchemyUnitOfWork)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从 Authorization: Bearer 头中提取token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing authentication credentials")


async def get_current_client(
    token: str = Depends(get_token),
    service: TokenService = Depends(get_token_service),
) -> str:
    """校验访问令牌，返回调用方 client_id"""
    return service.verify_access_token(token)
