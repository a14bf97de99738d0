"""
支付领域服务 - 订单账本上的余额计算与不变量校验
"""
from typing import Iterable, List
from decimal import Decimal
from datetime import datetime

from .entity import (
    Order,
    OrderLedger,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .events import (
    TransactionCancelled,
    TransactionEvent,
    TransactionFailed,
    TransactionSucceeded,
)
from .exceptions import DataIntegrityException, RefundExceedsBalanceException
from domain.common.exceptions import DomainValidationException


ZERO = Decimal("0")

# 计入占用额度的状态：已成功或结果未知（Pending）
_RESERVING = (TransactionStatus.SUCCESS, TransactionStatus.PENDING)


def _sum(transactions: Iterable[Transaction]) -> Decimal:
    return sum((tx.amount for tx in transactions), ZERO)


class LedgerDomainService:
    """
    账本领域服务

    职责：
    1. 计算可扣款金额与可退款余额
    2. 校验退款守恒：Σ成功退款 ≤ Σ成功的 Purchase + Capture
    3. 交易落定后推导订单状态并产生领域事件
    """

    def __init__(self):
        self.events: List[TransactionEvent] = []  # 领域事件收集

    @staticmethod
    def capturable_amount(target: Transaction, transactions: Iterable[Transaction]) -> Decimal:
        """授权剩余可扣款金额（扣除已成功及进行中的 Capture）"""
        captured = _sum(
            tx for tx in transactions
            if tx.parent_id == target.id
            and tx.type == TransactionType.CAPTURE
            and tx.status in _RESERVING
        )
        return max(target.amount - captured, ZERO)

    @staticmethod
    def refundable_balance(target: Transaction, ledger: OrderLedger) -> Decimal:
        """
        目标交易当前可退余额

        同时受目标交易本身金额与订单整体已收款金额约束，
        进行中的退款也计入占用，避免并发退款超额。
        """
        txs = ledger.transactions
        refunded_on_target = _sum(
            tx for tx in txs
            if tx.parent_id == target.id
            and tx.type == TransactionType.REFUND
            and tx.status in _RESERVING
        )
        collected = _sum(
            tx for tx in txs
            if tx.type in (TransactionType.PURCHASE, TransactionType.CAPTURE)
            and tx.status == TransactionStatus.SUCCESS
        )
        refunded_on_order = _sum(
            tx for tx in txs
            if tx.type == TransactionType.REFUND and tx.status in _RESERVING
        )
        return max(min(target.amount - refunded_on_target, collected - refunded_on_order), ZERO)

    def ensure_capture_amount(self, target: Transaction, amount: Decimal, transactions: Iterable[Transaction]) -> None:
        if amount <= 0:
            raise DomainValidationException("Capture amount must be greater than 0", field="amount")
        available = self.capturable_amount(target, transactions)
        if amount > available:
            raise DomainValidationException(
                f"Capture amount {amount} exceeds authorized amount {available}",
                field="amount",
                details={"amount": str(amount), "available": str(available)},
            )

    def ensure_refund_amount(self, target: Transaction, amount: Decimal, ledger: OrderLedger) -> None:
        if amount <= 0:
            raise DomainValidationException("Refund amount must be greater than 0", field="amount")
        available = self.refundable_balance(target, ledger)
        if amount > available:
            raise RefundExceedsBalanceException(amount, available)

    @staticmethod
    def verify(ledger: OrderLedger) -> None:
        """校验账本不变量，违反时抛出 DataIntegrityException"""
        for tx in ledger.transactions:
            if tx.order_id != ledger.order.id:
                raise DataIntegrityException(
                    "Transaction does not belong to order",
                    details={"order_id": ledger.order.id, "transaction_id": tx.id},
                )
            if tx.status == TransactionStatus.SUCCESS and not tx.remote_reference:
                raise DataIntegrityException(
                    "Successful transaction without remote reference",
                    details={"transaction_id": tx.id},
                )
        succeeded = [tx for tx in ledger.transactions if tx.status == TransactionStatus.SUCCESS]
        collected = _sum(
            tx for tx in succeeded
            if tx.type in (TransactionType.PURCHASE, TransactionType.CAPTURE)
        )
        refunded = _sum(tx for tx in succeeded if tx.type == TransactionType.REFUND)
        if refunded > collected:
            raise DataIntegrityException(
                "Refunded total exceeds collected total",
                details={
                    "order_id": ledger.order.id,
                    "refunded": str(refunded),
                    "collected": str(collected),
                },
            )

    def settle(self, order: Order, transaction: Transaction, now: datetime) -> bool:
        """交易进入终态后推导订单状态，并记录领域事件"""
        changed = order.apply_outcome(transaction, now)
        common = dict(
            order_id=order.id,
            transaction_id=transaction.id,
            transaction_ref=transaction.reference,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            remote_reference=transaction.remote_reference,
        )
        if transaction.status == TransactionStatus.SUCCESS:
            self.events.append(TransactionSucceeded(order_status=order.status.value, **common))
        elif transaction.status == TransactionStatus.FAILED:
            self.events.append(TransactionFailed(
                response_code=transaction.response_code,
                response_message=transaction.response_message,
                **common,
            ))
        elif transaction.status == TransactionStatus.CANCELLED:
            self.events.append(TransactionCancelled(reason=transaction.response_message, **common))
        return changed

    def drain_events(self) -> List[TransactionEvent]:
        events, self.events = self.events, []
        return events
