"""
应用配置（pydantic-settings，支持 .env 与嵌套环境变量 DATABASE__URL）

网关相关配置见 core.settings.PaymentSettings。
"""
import json
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """账本数据库；同步驱动 URL 会在建引擎时改写为异步驱动"""
    url: str = "sqlite+aiosqlite:///./payments.db"
    echo: bool = False


class ApiClientSettings(BaseModel):
    """允许换取访问令牌的 API 客户端凭据，任一为空则拒绝签发"""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class Settings(BaseSettings):
    PROJECT_NAME: str = Field(
        default="Payment Transactions Service",
        validation_alias=AliasChoices("PROJECT_NAME", "APP_NAME"),
    )
    VERSION: str = Field(default="1.0.0", validation_alias=AliasChoices("VERSION", "APP_VERSION"))
    # DEBUG 下启动时自动建表并输出彩色控制台日志
    DEBUG: bool = True

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    api_client: ApiClientSettings = Field(default_factory=ApiClientSettings)

    # JWT
    SECRET_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SECRET_KEY", "JWT_SECRET_KEY"),
        description="访问令牌签名密钥，必须显式配置",
    )
    ALGORITHM: str = Field(default="HS256", validation_alias=AliasChoices("ALGORITHM", "JWT_ALGORITHM"))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=30,
        validation_alias=AliasChoices("ACCESS_TOKEN_EXPIRE_MINUTES", "JWT_EXPIRATION_MINUTES"),
    )

    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    # 订单列表分页
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # 请求体日志（卡号、CVV 在记录前脱敏）
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = True
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _require_secret_key(self):
        if not self.SECRET_KEY:
            raise ValueError("SECRET_KEY 未配置。请在环境变量或 .env 中设置 SECRET_KEY（或 JWT_SECRET_KEY）")
        return self

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """接受 JSON 数组字符串或逗号分隔字符串"""
        if not isinstance(v, str):
            return v
        s = v.strip()
        if s.startswith("["):
            try:
                return json.loads(s)
            except json.JSONDecodeError as e:
                raise ValueError(f"CORS_ORIGINS 不是合法的 JSON 数组: {e}") from e
        return [item.strip() for item in s.split(",") if item.strip()]


settings = Settings()
