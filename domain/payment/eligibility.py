"""
交易后续操作资格判定 - 纯函数，无 I/O、无隐藏状态

给定目标交易与请求的后续操作（Capture / Void / Refund）以及参考时间 now，
返回 Allowed 或 Denied(reason, suggested_alternative)。

网关才是结算的最终裁决者：这里只用于快速拒绝明显非法的请求，
并给出可直接展示给调用方的建议（例如"请改用 Void"）。
结算窗口判断是乐观的启发式规则，编排层仍需处理网关的拒绝。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from domain.payment.entity import TransactionStatus, TransactionType


DEFAULT_SETTLEMENT_WINDOW = timedelta(hours=24)

FOLLOW_UP_OPERATIONS = frozenset(
    {TransactionType.CAPTURE, TransactionType.VOID, TransactionType.REFUND}
)
VOIDABLE_TYPES = frozenset(
    {TransactionType.AUTHORIZE, TransactionType.PURCHASE, TransactionType.CAPTURE}
)
REFUNDABLE_TYPES = frozenset({TransactionType.PURCHASE, TransactionType.CAPTURE})


# 拒绝原因代码，供调用方做机器判断（reason 为人类可读文本）
NO_REMOTE_REFERENCE = "no_remote_reference"
VOID_NOT_APPLICABLE = "void_not_applicable"
CAPTURE_NOT_APPLICABLE = "capture_not_applicable"
AUTHORIZATION_NOT_REFUNDABLE = "authorization_not_refundable"
TYPE_NOT_REFUNDABLE = "type_not_refundable"
UNDERLYING_NOT_SUCCESSFUL = "underlying_not_successful"
NOT_YET_SETTLED = "not_yet_settled"
UNRECOGNIZED_STATE = "unrecognized_state"


@dataclass(frozen=True)
class Allowed:
    allowed: bool = True


@dataclass(frozen=True)
class Denied:
    reason: str
    code: str
    suggested_alternative: Optional[TransactionType] = None
    allowed: bool = False

    @property
    def advisory(self) -> bool:
        """仅由结算窗口启发式产生的拒绝，调用方可选择强制尝试"""
        return self.code == NOT_YET_SETTLED


EligibilityResult = Union[Allowed, Denied]


def _coerce(enum_cls, value: Any):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def evaluate(
    target: Any,
    operation: Any,
    now: datetime,
    settlement_window: timedelta = DEFAULT_SETTLEMENT_WINDOW,
) -> EligibilityResult:
    """
    判定能否对 target 发起 operation

    target 只需具备 type、status、created_at、remote_reference 四个属性。
    规则按优先级依次匹配，首个命中即返回。
    """
    tx_type = _coerce(TransactionType, getattr(target, "type", None))
    tx_status = _coerce(TransactionStatus, getattr(target, "status", None))
    op = _coerce(TransactionType, operation)
    created_at = getattr(target, "created_at", None)
    if (
        tx_type is None
        or tx_status is None
        or op not in FOLLOW_UP_OPERATIONS
        or not isinstance(created_at, datetime)
    ):
        return Denied("unrecognized transaction state", UNRECOGNIZED_STATE)

    # 1. 没有远程引用：原操作很可能根本没到达网关
    if not getattr(target, "remote_reference", None):
        return Denied(
            "no remote reference — original operation likely failed before reaching "
            "the gateway; do not retry this op, create a new originating transaction instead",
            NO_REMOTE_REFERENCE,
        )

    # 2. Void 是未结算交易的通用撤销；已结算时由网关拒绝
    if op == TransactionType.VOID:
        if tx_status == TransactionStatus.SUCCESS and tx_type in VOIDABLE_TYPES:
            return Allowed()
        return Denied(
            "void only valid against a successful authorization, purchase or capture",
            VOID_NOT_APPLICABLE,
        )

    # 3. Capture 只能针对成功的授权
    if op == TransactionType.CAPTURE:
        if tx_type == TransactionType.AUTHORIZE and tx_status == TransactionStatus.SUCCESS:
            return Allowed()
        return Denied("capture only valid against a successful authorization", CAPTURE_NOT_APPLICABLE)

    # 4. Refund
    if tx_type == TransactionType.AUTHORIZE:
        return Denied(
            "authorization-only transactions cannot be refunded",
            AUTHORIZATION_NOT_REFUNDABLE,
            suggested_alternative=TransactionType.VOID,
        )
    if tx_type not in REFUNDABLE_TYPES:
        return Denied(
            "only settled purchase/capture transactions may be refunded",
            TYPE_NOT_REFUNDABLE,
        )
    if tx_status != TransactionStatus.SUCCESS:
        return Denied("underlying transaction did not succeed", UNDERLYING_NOT_SUCCESSFUL)
    if _as_utc(now) - _as_utc(created_at) < settlement_window:
        return Denied(
            "not yet settled by remote gateway",
            NOT_YET_SETTLED,
            suggested_alternative=TransactionType.VOID,
        )
    return Allowed()


def recommend(
    target: Any,
    now: datetime,
    settlement_window: timedelta = DEFAULT_SETTLEMENT_WINDOW,
) -> Optional[TransactionType]:
    """推荐下一步应使用的操作；没有合法操作时返回 None"""
    tx_type = _coerce(TransactionType, getattr(target, "type", None))
    if tx_type == TransactionType.AUTHORIZE:
        candidates = (TransactionType.CAPTURE, TransactionType.VOID)
    else:
        candidates = (TransactionType.REFUND, TransactionType.VOID)
    for op in candidates:
        if evaluate(target, op, now, settlement_window).allowed:
            return op
    return None


class EligibilityEvaluator:
    """绑定结算窗口配置的判定器"""

    def __init__(self, settlement_window: timedelta = DEFAULT_SETTLEMENT_WINDOW):
        if settlement_window < timedelta(0):
            raise ValueError("settlement_window must not be negative")
        self.settlement_window = settlement_window

    def evaluate(self, target: Any, operation: Any, now: datetime) -> EligibilityResult:
        return evaluate(target, operation, now, self.settlement_window)

    def recommend(self, target: Any, now: datetime) -> Optional[TransactionType]:
        return recommend(target, now, self.settlement_window)
