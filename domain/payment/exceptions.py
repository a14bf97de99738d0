"""
支付生命周期异常分类

- DomainValidationException（见 domain.common）：输入错误，不发起远程调用
- IneligibleOperationException：资格判定拒绝，附带原因与建议操作
- GatewayDeclinedException：网关明确拒绝，属于预期结果，不记为应用错误
- GatewayFaultException：网关错误或传输失败，可对同一操作退避重试
- DataIntegrityException：本地不变量被破坏，需要告警

网关原始代码/消息只放在 details 中，调用方的主信号始终是本地分类。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class IneligibleOperationException(BusinessException):
    def __init__(
        self,
        reason: str,
        *,
        operation: str,
        transaction_ref: Optional[str] = None,
        suggested_alternative: Optional[str] = None,
    ):
        details = {"operation": operation, "reason": reason}
        if transaction_ref:
            details["transaction_ref"] = transaction_ref
        if suggested_alternative:
            details["suggested_alternative"] = suggested_alternative
        super().__init__(
            code=PaymentCode.INELIGIBLE_OPERATION,
            message=reason,
            error_type="IneligibleOperation",
            details=details,
        )
        self.reason = reason
        self.suggested_alternative = suggested_alternative


class GatewayDeclinedException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        transaction_id: str,
        transaction_ref: str,
        remote_code: Optional[str] = None,
        remote_message: Optional[str] = None,
        held_for_review: bool = False,
    ):
        super().__init__(
            code=PaymentCode.GATEWAY_DECLINED,
            message=message,
            error_type="GatewayDeclined",
            details={
                "transaction_id": transaction_id,
                "transaction_ref": transaction_ref,
                "remote_code": remote_code,
                "remote_message": remote_message,
                "held_for_review": held_for_review,
            },
        )
        self.transaction_id = transaction_id
        self.remote_message = remote_message
        self.held_for_review = held_for_review


def _fault_code(retryable: bool, timed_out: bool) -> PaymentCode:
    if timed_out:
        return PaymentCode.GATEWAY_TIMEOUT
    if retryable:
        return PaymentCode.GATEWAY_RECOVERABLE
    return PaymentCode.GATEWAY_FAULT


class GatewayFaultException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        transaction_id: str,
        transaction_ref: str,
        retryable: bool,
        timed_out: bool = False,
        remote_code: Optional[str] = None,
        remote_message: Optional[str] = None,
    ):
        super().__init__(
            code=_fault_code(retryable, timed_out),
            message=message,
            error_type="GatewayFault",
            details={
                "transaction_id": transaction_id,
                "transaction_ref": transaction_ref,
                "retryable": retryable,
                "remote_code": remote_code,
                "remote_message": remote_message,
            },
        )
        self.transaction_id = transaction_id
        self.retryable = retryable
        self.timed_out = timed_out


class DataIntegrityException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.DATA_INTEGRITY,
            message=message,
            error_type="DataIntegrityError",
            details=details,
        )


class DuplicateSubmissionException(BusinessException):
    """同一幂等键在时间窗口内重复提交"""

    def __init__(self, idempotency_key: str, existing_order_id: Optional[str]):
        super().__init__(
            code=PaymentCode.DUPLICATE_SUBMISSION,
            message="Duplicate submission for idempotency key",
            error_type="DuplicateSubmission",
            details={"idempotency_key": idempotency_key, "order_id": existing_order_id},
            field="idempotency_key",
        )
        self.existing_order_id = existing_order_id


class ConcurrentOperationException(BusinessException):
    """目标交易上已有进行中的后续操作"""

    def __init__(self, transaction_ref: str):
        super().__init__(
            code=PaymentCode.CONCURRENT_OPERATION,
            message="Another operation is already in flight for this transaction",
            error_type="ConcurrentOperation",
            details={"transaction_ref": transaction_ref},
        )


class RefundExceedsBalanceException(BusinessException):
    def __init__(self, amount: Decimal, available: Decimal):
        super().__init__(
            code=PaymentCode.REFUND_EXCEEDS_BALANCE,
            message=f"Refund amount {amount} exceeds refundable balance {available}",
            error_type="RefundExceedsBalance",
            details={"amount": str(amount), "available": str(available)},
            field="amount",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Order not found: {order_id}",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, transaction_ref: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Transaction not found: {transaction_ref}",
            error_type="TransactionNotFound",
            details={"transaction_ref": transaction_ref},
        )
