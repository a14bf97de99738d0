"""
Business codes shared by the domain, core and API layers.

`BusinessCode` covers request, auth and system failures; everything that
comes out of a payment lifecycle lives in `PaymentCode`. Both are plain
IntEnums so they serialize straight into the `code` field of a response.
"""
from enum import IntEnum

from shared.codes.payment_codes import PaymentCode


class BusinessCode(IntEnum):
    """Non-payment status codes."""

    SUCCESS = 0

    # Request validation (1xxxx)
    PARAM_VALIDATION_ERROR = 10003

    # Lookups (2xxxx)
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006

    # API client auth (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # Infrastructure (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode", "PaymentCode"]
