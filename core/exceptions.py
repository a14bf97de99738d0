"""
异常到 HTTP 响应的映射与全局异常处理器

业务码决定 HTTP 状态码；网关返回的原始代码只会出现在 error.details 中。
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode, PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


class UnauthorizedException(BusinessException):
    """缺少或无法识别的访问令牌"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
        )


class InvalidTokenException(BusinessException):
    def __init__(self, message: str = "Invalid access token"):
        super().__init__(
            code=BusinessCode.TOKEN_INVALID,
            message=message,
            error_type="InvalidToken",
        )


class TokenExpiredException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
        )


# 业务码 → HTTP 状态码，未列出的按 400 处理
_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.TOKEN_INVALID: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
    # 网关拒绝：卡被拒或风控挂起
    PaymentCode.GATEWAY_DECLINED: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.GATEWAY_FAULT: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.GATEWAY_RECOVERABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.GATEWAY_TIMEOUT: http_status.HTTP_504_GATEWAY_TIMEOUT,
    PaymentCode.INELIGIBLE_OPERATION: http_status.HTTP_409_CONFLICT,
    PaymentCode.DUPLICATE_SUBMISSION: http_status.HTTP_409_CONFLICT,
    PaymentCode.CONCURRENT_OPERATION: http_status.HTTP_409_CONFLICT,
    PaymentCode.REFUND_EXCEEDS_BALANCE: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.DATA_INTEGRITY: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# HTTPException（路由 404、方法不允许等）→ 业务码
_CODE_BY_HTTP_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    return _HTTP_STATUS_BY_CODE.get(int(code), http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def _json(status_code: int, response, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    """注册全局异常处理器"""

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        if exc.code == PaymentCode.DATA_INTEGRITY:
            # 账本与网关可能不一致，需要人工对账
            logger.error("data_integrity_error", request_id=request_id, message=exc.message, details=exc.details)
        elif status_code >= 500:
            logger.warning("gateway_unavailable", request_id=request_id, error_type=exc.error_type, message=exc.message)

        response = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        headers = {"WWW-Authenticate": "Bearer"} if status_code == http_status.HTTP_401_UNAUTHORIZED else None
        return _json(status_code, response, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # 不回显 input，请求体里可能有卡号
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", [])],
                "msg": err.get("msg"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        first = errors[0] if errors else {}
        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": errors},
            field=".".join(first.get("loc", [])[1:]),
            request_id=_request_id(request),
        )
        return _json(http_status.HTTP_422_UNPROCESSABLE_ENTITY, response)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        response = error_response(
            code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _json(exc.status_code, response, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)

        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return _json(http_status.HTTP_500_INTERNAL_SERVER_ERROR, response)
