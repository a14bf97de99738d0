"""领域层异常基类。

所有可以被调用方处理的失败都继承 BusinessException，并携带一个
业务码（shared.codes）与稳定的 error_type；HTTP 状态码的映射
放在 core.exceptions，领域层不依赖 web 框架。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """可预期的业务失败

    details 中只允许放脱敏后的数据（交易参考号、金额、网关原始码等），
    绝不能出现完整卡号或 CVV。
    """

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={int(self.code)}, type={self.error_type!r}, message={self.message!r})"


class DomainValidationException(BusinessException):
    """输入不合法，在写入账本或调用网关之前即被拒绝"""

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class InvalidCredentialsException(BusinessException):
    """API 客户端 id/secret 不匹配（不区分是哪一个错误）"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message="Invalid credentials",
            error_type="InvalidCredentials",
        )
