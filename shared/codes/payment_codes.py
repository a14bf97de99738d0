"""
Payment specific codes and gateway response-code mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Gateway/Network errors (6xxxx)
    GATEWAY_FAULT = 60000
    GATEWAY_RECOVERABLE = 60001
    GATEWAY_DECLINED = 60002
    GATEWAY_TIMEOUT = 60003

    # Lifecycle errors (61xxx)
    INELIGIBLE_OPERATION = 61000
    DUPLICATE_SUBMISSION = 61001
    CONCURRENT_OPERATION = 61002
    REFUND_EXCEEDS_BALANCE = 61003

    # Ledger integrity (69xxx)
    DATA_INTEGRITY = 69000


# Gateway outcome labels used by adapters when building GatewayResult
OUTCOME_APPROVED = "approved"
OUTCOME_DECLINED = "declined"
OUTCOME_ERROR = "error"
OUTCOME_HELD_FOR_REVIEW = "held_for_review"


# Provider responseCode → outcome label
GATEWAY_RESPONSE_CODES = {
    "authorize_net": {
        "1": OUTCOME_APPROVED,
        "2": OUTCOME_DECLINED,
        "3": OUTCOME_ERROR,
        "4": OUTCOME_HELD_FOR_REVIEW,
    },
}


# Locally synthesized codes for calls without a gateway reply
LOCAL_TIMEOUT_CODE = "TIMEOUT"
LOCAL_TRANSPORT_CODE = "TRANSPORT"
LOCAL_UNKNOWN_CODE = "UNKNOWN"
