"""
令牌服务 - 为已配置的 API 客户端签发与校验 JWT 访问令牌
"""
from typing import Optional
from datetime import datetime, timedelta, timezone
import hmac
import jwt
import uuid

from application.dto import TokenDTO
from core.config import Settings, settings as default_settings
from core.exceptions import InvalidTokenException, TokenExpiredException
from domain.common.exceptions import InvalidCredentialsException
from core.logging_config import get_logger


logger = get_logger(__name__)


class TokenService:
    """
    令牌服务

    安全特性：
    1. 客户端密钥使用常量时间比较
    2. 访问令牌携带 type=access 与唯一 jti
    3. 未配置客户端凭据时拒绝所有签发请求
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def _generate_jti(self) -> str:
        """生成唯一的JWT Token ID"""
        return str(uuid.uuid4())

    def authenticate_client(self, client_id: str, client_secret: str) -> TokenDTO:
        """校验 API 客户端凭据并签发访问令牌"""
        configured = self.settings.api_client
        if not configured.client_id or not configured.client_secret:
            logger.warning("api_client_not_configured")
            raise InvalidCredentialsException()

        id_ok = hmac.compare_digest(client_id.encode(), configured.client_id.encode())
        secret_ok = hmac.compare_digest(client_secret.encode(), configured.client_secret.encode())
        if not (id_ok and secret_ok):
            logger.warning("api_client_login_failed", client_id=client_id)
            raise InvalidCredentialsException()

        logger.info("api_client_login", client_id=client_id)
        return TokenDTO(
            access_token=self.create_access_token(client_id),
            token_type="bearer",
            expires_in=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    def create_access_token(self, subject: str) -> str:
        """创建访问令牌"""
        now = datetime.now(timezone.utc)
        expire = now + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode = {
            "sub": subject,
            "iat": now,
            "exp": expire,
            "type": "access",
            "jti": self._generate_jti(),  # 添加JTI用于追踪
        }
        return jwt.encode(to_encode, self.settings.SECRET_KEY, algorithm=self.settings.ALGORITHM)

    def verify_access_token(self, token: str) -> str:
        """Verify an access JWT and return its subject.

        - Expired token: raise TokenExpiredException
        - Invalid token or wrong type: raise InvalidTokenException
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.SECRET_KEY,
                algorithms=[self.settings.ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError as e:
            logger.warning("invalid_access_token", error=str(e))
            raise InvalidTokenException()

        if payload.get("type") != "access" or not payload.get("sub"):
            raise InvalidTokenException()
        return str(payload["sub"])
