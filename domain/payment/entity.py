"""
支付领域实体 - 订单聚合与交易记录
"""
from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import DataIntegrityException


class OrderStatus(str, Enum):
    """订单状态枚举（仅由交易结果推导）"""
    PENDING = "Pending"
    AUTHORIZED = "Authorized"
    CAPTURED = "Captured"
    VOIDED = "Voided"
    REFUNDED = "Refunded"
    FAILED = "Failed"


class TransactionType(str, Enum):
    """交易类型枚举"""
    PURCHASE = "Purchase"      # 授权并扣款
    AUTHORIZE = "Authorize"    # 仅授权
    CAPTURE = "Capture"        # 扣取已授权资金
    VOID = "Void"              # 结算前撤销
    REFUND = "Refund"          # 结算后退款


class TransactionStatus(str, Enum):
    """交易状态枚举"""
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"    # 本地中止，从未联系网关


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
)

# 交易成功后订单应进入的状态
_ORDER_STATUS_ON_SUCCESS = {
    TransactionType.PURCHASE: OrderStatus.CAPTURED,
    TransactionType.AUTHORIZE: OrderStatus.AUTHORIZED,
    TransactionType.CAPTURE: OrderStatus.CAPTURED,
    TransactionType.VOID: OrderStatus.VOIDED,
    TransactionType.REFUND: OrderStatus.REFUNDED,
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_order_number(now: datetime) -> str:
    # 同一秒内的订单靠 8 位随机十六进制后缀区分
    return f"ORD_{now:%Y%m%d%H%M%S}_{secrets.token_hex(4).upper()}"


def generate_transaction_reference(now: datetime) -> str:
    return f"TXN_{now:%Y%m%d%H%M%S}_{uuid.uuid4().hex}"


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Order:
    """
    订单聚合根 - 一次客户购买意图

    业务规则：
    1. 金额必须大于0，创建后不可修改
    2. 货币代码必须是3位字母
    3. 状态只能由交易结果推导，不允许直接赋值
    4. 订单永不删除
    """

    id: str
    order_number: str
    customer_id: str
    amount: Decimal
    currency: str
    status: OrderStatus = OrderStatus.PENDING
    description: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Order amount must be greater than 0: {self.amount}",
                field="amount"
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency"
            )
        self.currency = self.currency.upper()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def apply_outcome(self, transaction: "Transaction", now: datetime) -> bool:
        """
        根据交易结果推导订单状态

        - 成功：按交易类型映射（Purchase→Captured、Authorize→Authorized …）
        - 失败：仅 Purchase/Authorize 失败会使订单进入 Failed
        - 其他情况保持不变

        返回状态是否发生变化
        """
        if transaction.order_id != self.id:
            raise DataIntegrityException(
                "Transaction does not belong to order",
                details={"order_id": self.id, "transaction_id": transaction.id},
            )
        target: Optional[OrderStatus] = None
        if transaction.status == TransactionStatus.SUCCESS:
            target = _ORDER_STATUS_ON_SUCCESS[transaction.type]
        elif transaction.status == TransactionStatus.FAILED and transaction.type in (
            TransactionType.PURCHASE,
            TransactionType.AUTHORIZE,
        ):
            target = OrderStatus.FAILED

        if target is None or target == self.status:
            return False
        self.status = target
        self.updated_at = _ensure_utc(now)
        return True


@dataclass
class Transaction:
    """
    交易实体 - 对网关的一次操作尝试

    业务规则：
    1. 在远程调用之前以 Pending 状态落库
    2. 只允许一次从 Pending 到终态的转换
    3. 终态（Success/Failed/Cancelled）后 status、remote_reference、
       response_code、response_message 不可再修改
    4. Success 必须带 remote_reference
    """

    id: str
    order_id: str
    reference: str
    type: TransactionType
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    parent_id: Optional[str] = None
    remote_reference: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Transaction amount must be greater than 0: {self.amount}",
                field="amount"
            )
        if self.status == TransactionStatus.SUCCESS and not self.remote_reference:
            raise DataIntegrityException(
                "Successful transaction without remote reference",
                details={"transaction_id": self.id},
            )
        self.created_at = _ensure_utc(self.created_at)
        self.completed_at = _ensure_utc(self.completed_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_pending(self, target: TransactionStatus) -> None:
        if self.is_terminal:
            raise DataIntegrityException(
                f"Transaction already terminal ({self.status.value}), cannot move to {target.value}",
                details={"transaction_id": self.id, "status": self.status.value},
            )

    def mark_succeeded(
        self,
        remote_reference: Optional[str],
        now: datetime,
        response_code: Optional[str] = None,
        response_message: Optional[str] = None,
    ) -> None:
        """标记成功，必须附带远程引用"""
        self._ensure_pending(TransactionStatus.SUCCESS)
        if not remote_reference:
            raise DataIntegrityException(
                "Gateway reported success without a remote reference",
                details={"transaction_id": self.id},
            )
        self.status = TransactionStatus.SUCCESS
        self.remote_reference = remote_reference
        self.response_code = response_code
        self.response_message = response_message
        self.completed_at = _ensure_utc(now)

    def mark_failed(
        self,
        now: datetime,
        response_code: Optional[str] = None,
        response_message: Optional[str] = None,
    ) -> None:
        """标记失败，remote_reference 保持为空"""
        self._ensure_pending(TransactionStatus.FAILED)
        self.status = TransactionStatus.FAILED
        self.response_code = response_code
        self.response_message = response_message
        self.completed_at = _ensure_utc(now)

    def mark_cancelled(self, now: datetime, reason: str) -> None:
        """本地中止：从未联系网关"""
        self._ensure_pending(TransactionStatus.CANCELLED)
        self.status = TransactionStatus.CANCELLED
        self.response_message = reason
        self.completed_at = _ensure_utc(now)

    def note_unresolved(self, response_code: str, response_message: str) -> None:
        """超时等结果未知的情况：保持 Pending，仅记录诊断信息"""
        self._ensure_pending(TransactionStatus.PENDING)
        self.response_code = response_code
        self.response_message = response_message


@dataclass
class PaymentMethodReference:
    """
    支付工具脱敏记录 - 与订单一对一

    只保存卡号后四位、有效期与卡组织，绝不保存完整卡号或 CVV。
    """

    id: str
    order_id: str
    last_four: str
    expiration_month: int
    expiration_year: int
    card_brand: Optional[str] = None
    name_on_card: Optional[str] = None

    def __post_init__(self):
        if len(self.last_four) != 4 or not self.last_four.isdigit():
            raise DomainValidationException(
                "last_four must be exactly four digits",
                field="last_four"
            )
        if not 1 <= self.expiration_month <= 12:
            raise DomainValidationException(
                f"Invalid expiration month: {self.expiration_month}",
                field="expiration_month"
            )

    @property
    def masked_card_number(self) -> str:
        return self.last_four.rjust(16, "X")

    @property
    def expiration_date(self) -> str:
        """YYYY-MM"""
        return f"{self.expiration_year:04d}-{self.expiration_month:02d}"


@dataclass
class OrderLedger:
    """订单及其全部交易的只读快照，用于余额与不变量计算"""

    order: Order
    transactions: list[Transaction] = field(default_factory=list)
    payment_method: Optional[PaymentMethodReference] = None
