"""
认证API路由 - API 客户端换取访问令牌
"""
from fastapi import APIRouter, Depends

from application.dto import TokenRequestDTO, TokenDTO
from application.services.token_service import TokenService
from api.dependencies import get_token_service


router = APIRouter(
    prefix="/auth",
    tags=["认证"]
)


@router.post("/token", summary="获取访问令牌", response_model=TokenDTO)
async def issue_token(
    credentials: TokenRequestDTO,
    service: TokenService = Depends(get_token_service),
):
    """
    使用已配置的 client_id / client_secret 换取 Bearer 令牌

    返回扁平结构，便于直接放入 Authorization 头
    """
    return service.authenticate_client(credentials.client_id, credentials.client_secret)
