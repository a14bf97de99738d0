"""
Request ID 中间件（纯 ASGI 实现）
生成或透传追踪ID，并绑定到 structlog contextvars，使同一请求内的
订单、交易、网关日志都带上相同的 request_id
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

HEADER_NAME = "X-Request-ID"


def _client_ip(scope: Scope, headers: Headers) -> str:
    # 代理场景优先取 X-Forwarded-For 的第一个地址
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    client = scope.get("client")
    return client[0] if client else "unknown"


class RequestIDMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(HEADER_NAME) or str(uuid.uuid4())
        client_ip = _client_ip(scope, headers)

        # request.state 读取自 scope["state"]
        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id
        scope["state"]["client_ip"] = client_ip

        token = request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=scope["method"],
            path=scope["path"],
        )

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER_NAME] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_id_var.reset(token)


def get_request_id() -> Optional[str]:
    """当前请求的 request_id；不在请求上下文中时为 None"""
    return request_id_var.get()
