"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class OrderModel(Base):
    """
    订单数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Order 中
    """
    __tablename__ = "orders"

    # 主键
    id = Column(String(36), primary_key=True, comment="订单ID(UUID)")

    # 订单信息
    order_number = Column(String(50), unique=True, nullable=False, comment="订单号 ORD_...")
    customer_id = Column(String(100), nullable=False, index=True, comment="客户ID")
    description = Column(String(500), nullable=True, comment="订单描述")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=18, scale=2), nullable=False, comment="订单金额")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="Pending",
        index=True,
        comment="订单状态: Pending/Authorized/Captured/Voided/Refunded/Failed"
    )

    # 发起时使用的幂等键；唯一性由 idempotency_keys 表保证
    idempotency_key = Column(String(100), nullable=True, index=True, comment="客户端幂等键")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="更新时间"
    )

    # 关系
    transactions = relationship(
        "TransactionModel",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )
    payment_method = relationship(
        "PaymentMethodModel",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
        lazy="select",
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', order_number='{self.order_number}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class TransactionModel(Base):
    """
    交易数据库模型

    每次对网关的操作尝试一行，远程调用前以 Pending 落库
    """
    __tablename__ = "transactions"

    # 主键
    id = Column(String(36), primary_key=True, comment="交易ID(UUID)")

    # 关联订单
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的订单ID"
    )
    parent_id = Column(
        String(36),
        ForeignKey("transactions.id"),
        nullable=True,
        index=True,
        comment="后续操作所针对的原交易ID"
    )

    reference = Column(String(100), unique=True, nullable=False, comment="本地交易号 TXN_...")
    type = Column(String(20), nullable=False, comment="交易类型: Purchase/Authorize/Capture/Void/Refund")
    amount = Column(Numeric(precision=18, scale=2), nullable=False, comment="交易金额")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="Pending",
        index=True,
        comment="交易状态: Pending/Success/Failed/Cancelled"
    )

    # 网关结果
    remote_reference = Column(String(100), nullable=True, index=True, comment="网关交易ID")
    response_code = Column(String(10), nullable=True, comment="网关响应码")
    response_message = Column(String(500), nullable=True, comment="网关响应消息")
    reason = Column(String(500), nullable=True, comment="退款原因")

    # 同一目标交易上进行中的操作（比较并交换锁）
    in_flight_operation_id = Column(String(36), nullable=True, comment="进行中的后续操作ID")
    claimed_at = Column(DateTime(timezone=True), nullable=True, comment="加锁时间，超时后可被接管")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
        comment="创建时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="进入终态时间")

    # 关系
    order = relationship("OrderModel", back_populates="transactions")

    # 索引
    __table_args__ = (
        Index("ix_transactions_order_created", "order_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<TransactionModel(id='{self.id}', reference='{self.reference}', "
            f"type='{self.type}', amount={self.amount}, status='{self.status}')>"
        )


class PaymentMethodModel(Base):
    """
    支付工具脱敏记录，与订单一对一

    只保存后四位与有效期，不保存完整卡号与 CVV
    """
    __tablename__ = "payment_methods"

    id = Column(String(36), primary_key=True, comment="记录ID(UUID)")
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        comment="关联的订单ID"
    )
    last_four = Column(String(4), nullable=False, comment="卡号后四位")
    expiration_month = Column(Integer, nullable=False, comment="有效期月")
    expiration_year = Column(Integer, nullable=False, comment="有效期年")
    card_brand = Column(String(20), nullable=True, comment="卡组织")
    name_on_card = Column(String(100), nullable=True, comment="持卡人姓名")

    order = relationship("OrderModel", back_populates="payment_method")

    def __repr__(self):
        return f"<PaymentMethodModel(order_id='{self.order_id}', last_four='{self.last_four}')>"


class IdempotencyKeyModel(Base):
    """
    幂等键占用记录

    key 为主键，并发的同键提交在插入时由数据库唯一约束裁决；
    过期行在下一次占用同一键时删除。
    """
    __tablename__ = "idempotency_keys"

    key = Column(String(100), primary_key=True, comment="客户端幂等键")
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="占用该键的订单ID"
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, comment="占用时间")
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True, comment="过期时间")

    def __repr__(self):
        return f"<IdempotencyKeyModel(key='{self.key}', order_id='{self.order_id}')>"
