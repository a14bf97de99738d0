"""
访问日志中间件

每个请求记录开始/结束两条结构化日志；request_id 由外层 RequestIDMiddleware
绑定到 contextvars。请求体只在 DEBUG 或 X-Log-Body 打开时记录，且先脱敏：
卡号、CVV、密钥整体替换为 ***，其余字符串中的卡号只保留后四位。
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import SENSITIVE_KEYS, get_logger, mask_card_numbers


logger = get_logger(__name__)

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
_TRUTHY = frozenset({"true", "1", "yes"})
_FALSY = frozenset({"false", "0", "no"})


class LoggingMiddleware(BaseHTTPMiddleware):
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    SENSITIVE_FIELDS = SENSITIVE_KEYS | {"token", "secret", "access_token"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        request_info = await self._describe_request(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response.status_code, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _describe_request(self, request: Request) -> dict:
        info: dict = {}
        if request.query_params:
            info["query_params"] = dict(request.query_params)
        if request.method in _BODY_METHODS and self._should_log_body(request):
            body = await self._read_sanitized_body(request)
            if body is not None:
                info["body"] = body
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        override = (request.headers.get("X-Log-Body") or "").lower()
        if override in _TRUTHY:
            return True
        if override in _FALSY:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _read_sanitized_body(self, request: Request) -> Optional[Any]:
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        if "application/json" in request.headers.get("content-type", "").lower():
            try:
                return self.sanitize(json.loads(text))
            except json.JSONDecodeError:
                # 截断后的 JSON 按文本处理
                return mask_card_numbers(text)
        return mask_card_numbers(text)

    @classmethod
    def sanitize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: "***" if str(k).lower() in cls.SENSITIVE_FIELDS else cls.sanitize(v)
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [cls.sanitize(v) for v in data]
        if isinstance(data, str):
            return mask_card_numbers(data)
        return data

    @staticmethod
    def _log_response(status_code: int, duration: float, request_info: dict) -> None:
        fields = {"status_code": status_code, "duration": round(duration, 4), **request_info}
        if status_code < 400:
            logger.info("request_completed", **fields)
        elif status_code < 500:
            logger.warning("request_client_error", **fields)
        else:
            logger.error("request_server_error", **fields)
