"""
structlog 日志配置

DEBUG 下输出彩色控制台日志，其余环境输出单行 JSON；标准库 logging
（uvicorn、sqlalchemy、httpx）通过 ProcessorFormatter 走同一条处理链。
"""
import json
import logging
import re
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# 日志中绝不允许出现的字段：完整卡号、CVV、网关密钥
SENSITIVE_KEYS = frozenset({"card_number", "cvv", "card_code", "transaction_key", "client_secret", "password"})
_PAN_PATTERN = re.compile(r"\b(\d{9,15})(\d{4})\b")


def mask_card_numbers(text: str) -> str:
    """把文本中疑似卡号的数字串替换为仅保留后四位"""
    return _PAN_PATTERN.sub(lambda m: "*" * len(m.group(1)) + m.group(2), text)


def _redact_card_data(_, __, event_dict: dict) -> dict:
    """敏感字段整体替换；其余字符串值中的卡号数字串做掩码"""
    for key, value in event_dict.items():
        if value is None:
            continue
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "***"
        elif isinstance(value, str):
            event_dict[key] = mask_card_numbers(value)
    return event_dict


def _json_dumps(obj, default=None, **kwargs):
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def get_renderer() -> Any:
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)
    return JSONRenderer(serializer=_json_dumps)


def configure_logging() -> None:
    """配置 structlog 并接管 root logger 的输出"""
    pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        _redact_card_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    # httpx 每次请求都会打 INFO，网关调用已有自己的结构化日志
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
